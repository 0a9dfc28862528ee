"""Knowledge retrieval with confidence-gated answers.

Steps for a query:

1. Embed the query and run cosine similarity search over active, embedded
   entries of the same embedder family (confidence = similarity x 100).
2. If that yields nothing, or the best hit is below the answer threshold,
   score keyword/substring candidates and merge them in. BM25 breaks ties
   between keyword candidates.
3. Exactly one strong candidate (confidence >= threshold) is returned as
   is. Otherwise the top candidates go to answer synthesis; a synthesis
   that says it cannot answer, or that fails on every backend, yields no
   answer.
4. The attempt is written to the auto-reply log.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

from rank_bm25 import BM25Okapi

from ..backends.errors import BackendError
from ..backends.orchestrator import BackendOrchestrator
from ..backends.prompts import MAX_SYNTHESIS_ENTRIES
from ..models import AutoReplyLog, KnowledgeEntry
from ..repository import MonitorRepository
from .embeddings import EmbeddingError, EmbeddingService

logger = logging.getLogger(__name__)

KEYWORD_HIT_SCORE = 70.0
QUESTION_MATCH_SCORE = 60.0
ANSWER_MATCH_SCORE = 40.0
TOKEN_OVERLAP_WEIGHT = 20.0
MAX_KEYWORD_CONFIDENCE = 95.0

_STOPWORDS = frozenset(
    """
    a an and are as at be can do does for from how i in is it me my of on or our
    the this to we what when where which who why with you your
    """.split()
)


def _tokenize(text: str) -> List[str]:
    """Lowercase and keep only alpha-numeric runs."""
    return [
        t.lower()
        for t in "".join(c if c.isalnum() else " " for c in text).split()
        if t
    ]


def query_terms(query: str) -> List[str]:
    terms = [t for t in _tokenize(query) if t not in _STOPWORDS and len(t) > 1]
    return list(dict.fromkeys(terms))


def keyword_confidence(query: str, entry: KnowledgeEntry) -> float:
    """Score an entry against ``query`` from its strongest matching field."""

    q = " ".join(_tokenize(query))
    if not q:
        return 0.0
    question = " ".join(_tokenize(entry.question))
    answer = " ".join(_tokenize(entry.answer))
    keywords = [" ".join(_tokenize(k)) for k in entry.keywords]

    base = 0.0
    if any(k and (k in q or q in k) for k in keywords):
        base = KEYWORD_HIT_SCORE
    elif q in question or (question and question in q):
        base = QUESTION_MATCH_SCORE
    elif q in answer:
        base = ANSWER_MATCH_SCORE

    terms = query_terms(query)
    if not terms:
        return base
    entry_tokens = set(question.split()) | set(answer.split()) | {
        t for k in keywords for t in k.split()
    }
    overlap = sum(1 for t in terms if t in entry_tokens) / len(terms)
    if base == 0.0 and overlap == 0.0:
        return 0.0
    return min(base + TOKEN_OVERLAP_WEIGHT * overlap, MAX_KEYWORD_CONFIDENCE)


@dataclass
class KnowledgeMatch:
    entry: KnowledgeEntry
    confidence: float
    source: str


@dataclass
class KnowledgeAnswer:
    matched: bool
    confidence: float
    answer: Optional[str] = None
    category: Optional[str] = None
    is_generated: bool = False
    entry_id: Optional[int] = None
    source: Optional[str] = None

    @classmethod
    def no_match(cls, confidence: float = 0.0) -> "KnowledgeAnswer":
        return cls(matched=False, confidence=round(confidence, 1))

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class KnowledgeRetrievalEngine:
    def __init__(
        self,
        repository: MonitorRepository,
        embeddings: EmbeddingService,
        orchestrator: Optional[BackendOrchestrator] = None,
        *,
        similarity_threshold: float = 0.5,
        result_limit: int = 5,
        confidence_threshold: float = 50,
    ) -> None:
        self._repository = repository
        self._embeddings = embeddings
        self._orchestrator = orchestrator
        self.similarity_threshold = similarity_threshold
        self.result_limit = result_limit
        self.confidence_threshold = confidence_threshold

    # ------------------------------------------------------------------
    # Candidate search

    def vector_matches(
        self, query: str, categories: Optional[Sequence[str]] = None
    ) -> List[KnowledgeMatch]:
        try:
            embedded = self._embeddings.embed(query)
        except EmbeddingError as exc:
            logger.warning("Query embedding failed, using keyword search: %s", exc)
            return []
        rows = self._repository.vector_search(
            embedded.vector,
            embedded.provider,
            threshold=self.similarity_threshold,
            limit=self.result_limit,
            categories=categories,
        )
        return [
            KnowledgeMatch(entry=entry, confidence=round(similarity * 100, 1), source="vector")
            for entry, similarity in rows
        ]

    def keyword_matches(
        self, query: str, categories: Optional[Sequence[str]] = None
    ) -> List[KnowledgeMatch]:
        terms = query_terms(query)
        phrase = " ".join(_tokenize(query))
        search_terms = terms + ([phrase] if phrase and phrase not in terms else [])
        entries = self._repository.keyword_candidates(
            search_terms, limit=self.result_limit * 4, categories=categories
        )
        scored = [
            KnowledgeMatch(entry=e, confidence=round(keyword_confidence(query, e), 1), source="keyword")
            for e in entries
        ]
        scored = [m for m in scored if m.confidence > 0]
        if len(scored) > 1:
            scored = self._bm25_order(query, scored)
        return scored[: self.result_limit]

    @staticmethod
    def _bm25_order(query: str, matches: List[KnowledgeMatch]) -> List[KnowledgeMatch]:
        corpus = [
            _tokenize(f"{m.entry.question} {m.entry.answer} {' '.join(m.entry.keywords)}")
            for m in matches
        ]
        scores = BM25Okapi(corpus).get_scores(_tokenize(query))
        ranked = sorted(zip(matches, scores), key=lambda p: (p[0].confidence, p[1]), reverse=True)
        return [m for m, _ in ranked]

    def find_candidates(
        self, query: str, categories: Optional[Sequence[str]] = None
    ) -> List[KnowledgeMatch]:
        matches = self.vector_matches(query, categories)
        if matches and matches[0].confidence >= self.confidence_threshold:
            return matches
        merged: Dict[int, KnowledgeMatch] = {m.entry.id: m for m in matches}
        for match in self.keyword_matches(query, categories):
            current = merged.get(match.entry.id)
            if current is None or match.confidence > current.confidence:
                merged[match.entry.id] = match
        ordered = sorted(merged.values(), key=lambda m: m.confidence, reverse=True)
        return ordered[: self.result_limit]

    # ------------------------------------------------------------------
    # Answering

    def answer(self, query: str, candidates: Sequence[KnowledgeMatch]) -> KnowledgeAnswer:
        if not candidates:
            return KnowledgeAnswer.no_match()
        top = candidates[0]
        strong = [c for c in candidates if c.confidence >= self.confidence_threshold]
        if len(strong) == 1:
            match = strong[0]
            return KnowledgeAnswer(
                matched=True,
                confidence=match.confidence,
                answer=match.entry.answer,
                category=match.entry.category,
                is_generated=False,
                entry_id=match.entry.id,
                source=match.source,
            )
        if self._orchestrator is None:
            return KnowledgeAnswer.no_match(top.confidence)

        pool = list(candidates[:MAX_SYNTHESIS_ENTRIES])
        try:
            synthesized = self._orchestrator.synthesize_answer(query, [c.entry for c in pool])
        except BackendError as exc:
            logger.warning("Answer synthesis failed: %s", exc)
            return KnowledgeAnswer.no_match(top.confidence)
        if not synthesized.can_answer or not synthesized.answer.strip():
            logger.info("Synthesis declined to answer %r", query[:80])
            return KnowledgeAnswer.no_match(top.confidence)

        used = synthesized.used_entry_indices(len(pool))
        basis = pool[used[0]] if used else top
        return KnowledgeAnswer(
            matched=True,
            confidence=round(synthesized.confidence, 1),
            answer=synthesized.answer.strip(),
            category=basis.entry.category,
            is_generated=True,
            entry_id=basis.entry.id,
            source="synthesis",
        )

    def search_knowledge(
        self,
        query: str,
        conversation_id: Optional[int] = None,
        *,
        message_id: Optional[int] = None,
        log: bool = True,
    ) -> KnowledgeAnswer:
        query = (query or "").strip()
        if not query:
            raise ValueError("query must not be empty")

        categories: Optional[List[str]] = None
        if conversation_id is not None:
            conversation = self._repository.get_conversation(conversation_id)
            if conversation is not None and conversation.knowledge_categories:
                categories = list(conversation.knowledge_categories)

        candidates = self.find_candidates(query, categories)
        result = self.answer(query, candidates)
        if result.matched and result.entry_id is not None:
            self._repository.increment_knowledge_usage(result.entry_id)
        logger.info(
            "Knowledge search matched=%s confidence=%.1f source=%s",
            result.matched,
            result.confidence,
            result.source,
        )
        if log:
            self._repository.add_auto_reply_log(
                AutoReplyLog(
                    question=query,
                    answer=result.answer,
                    matched=result.matched,
                    confidence=result.confidence,
                    knowledge_id=result.entry_id,
                    conversation_id=conversation_id,
                    message_id=message_id,
                )
            )
        return result
