import pytest

from conftest import ScriptedBackend, StaticEmbedder
from issuewatch.backends.errors import BackendTimeoutError
from issuewatch.backends.orchestrator import BackendOrchestrator
from issuewatch.knowledge.embeddings import EmbeddingService
from issuewatch.knowledge.retrieval import KnowledgeRetrievalEngine, keyword_confidence, query_terms
from issuewatch.models import KnowledgeEntry

QUERY = "How do I reset my password?"
STRONG = [0.75, 0.6614378277661477]  # cosine 0.75 against [1, 0]


def _engine(repo, embedders=(), backend=None, **kwargs):
    orchestrator = BackendOrchestrator([backend]) if backend is not None else None
    return KnowledgeRetrievalEngine(repo, EmbeddingService(list(embedders)), orchestrator, **kwargs)


def test_query_terms_drop_stopwords_and_repeats():
    assert query_terms("How do I reset my password, password?") == ["reset", "password"]


def test_keyword_confidence_prefers_keyword_hits():
    entry = KnowledgeEntry(id=1, question="Changing plans", answer="Go to billing.", keywords=["upgrade"])
    assert keyword_confidence("upgrade", entry) == pytest.approx(90)
    assert keyword_confidence("weather today", entry) == 0.0


def test_keyword_fallback_without_embeddings(repo):
    entry = repo.add_knowledge_entry(QUERY, "Use the 'forgot password' link.", category="account")
    engine = _engine(repo)

    answer = engine.search_knowledge(QUERY, message_id=42)

    assert answer.matched is True
    assert answer.source == "keyword"
    assert answer.entry_id == entry.id
    assert answer.confidence == pytest.approx(80)
    assert answer.is_generated is False
    assert answer.category == "account"
    assert repo.knowledge[entry.id].usage_count == 1
    log = repo.auto_reply_logs[-1]
    assert (log.question, log.matched, log.knowledge_id, log.message_id) == (QUERY, True, entry.id, 42)


def test_keyword_fallback_ranks_before_limiting(repo):
    for i in range(20):
        repo.add_knowledge_entry(f"Password rule {i}", "Passwords need twelve characters.")
    entry = repo.add_knowledge_entry(QUERY, "Use the 'forgot password' link.", keywords=["reset password"])
    engine = _engine(repo, result_limit=5)

    answer = engine.search_knowledge(QUERY)

    assert answer.matched is True
    assert answer.entry_id == entry.id
    assert answer.confidence == pytest.approx(80)


def test_keyword_candidates_put_best_matches_first(repo):
    loose = [repo.add_knowledge_entry(f"Password rule {i}", "Rotate it yearly.") for i in range(3)]
    tagged = repo.add_knowledge_entry("Locked out", "Contact support.", keywords=["reset"])
    both = repo.add_knowledge_entry("Reset a password", "Use the link.")

    found = repo.keyword_candidates(["reset", "password"], limit=2)

    assert [e.id for e in found] == [tagged.id, both.id]
    assert loose[0].id not in {e.id for e in found}


def test_single_strong_vector_match_is_returned_directly(repo):
    entry = repo.add_knowledge_entry(
        "Password reset", "Use the reset link.", embedding=STRONG, embedding_provider="static"
    )
    repo.add_knowledge_entry(
        "Billing address", "Edit it in settings.", embedding=[0, 1], embedding_provider="static"
    )
    engine = _engine(repo, [StaticEmbedder({"reset": [1, 0]})])

    answer = engine.search_knowledge(QUERY)

    assert answer.matched is True
    assert answer.source == "vector"
    assert answer.entry_id == entry.id
    assert answer.confidence == pytest.approx(75.0)


def test_vectors_from_other_embedders_are_not_compared(repo):
    repo.add_knowledge_entry("Password reset", "x", embedding=STRONG, embedding_provider="gemini")
    engine = _engine(repo, [StaticEmbedder({"reset": [1, 0]})])
    assert engine.vector_matches(QUERY) == []


def test_synthesis_declining_means_no_answer(repo):
    repo.add_knowledge_entry("Reset password on web", "Web steps", keywords=["reset"])
    repo.add_knowledge_entry("Reset password on mobile", "App steps", keywords=["reset"])
    backend = ScriptedBackend(synthesize={"canAnswer": False, "answer": "", "confidence": 0})
    engine = _engine(repo, backend=backend)

    answer = engine.search_knowledge(QUERY)

    assert answer.matched is False
    assert answer.answer is None
    assert backend.operations() == ["synthesize"]
    assert repo.auto_reply_logs[-1].matched is False


def test_synthesis_combines_several_strong_matches(repo):
    repo.add_knowledge_entry("Reset password on web", "Web steps", keywords=["reset"], category="web")
    mobile = repo.add_knowledge_entry(
        "Reset password on mobile", "App steps", keywords=["reset"], category="mobile"
    )
    backend = ScriptedBackend(
        synthesize={"canAnswer": True, "answer": " Tap 'forgot password'. ", "confidence": 82, "usedKnowledge": [9, 2]}
    )
    engine = _engine(repo, backend=backend)

    answer = engine.search_knowledge(QUERY)

    assert answer.matched is True
    assert answer.is_generated is True
    assert answer.source == "synthesis"
    assert answer.answer == "Tap 'forgot password'."
    assert answer.confidence == 82
    assert answer.entry_id == mobile.id
    assert answer.category == "mobile"
    prompt = backend.calls[0][1]
    assert "[1] Reset password on web" in prompt and "[2] Reset password on mobile" in prompt


def test_synthesis_failure_is_no_answer(repo):
    repo.add_knowledge_entry("Reset password on web", "Web steps", keywords=["reset"])
    repo.add_knowledge_entry("Reset password on mobile", "App steps", keywords=["reset"])
    engine = _engine(repo, backend=ScriptedBackend(synthesize=BackendTimeoutError("slow")))

    answer = engine.search_knowledge(QUERY)

    assert answer.matched is False


def test_conversation_categories_limit_the_search(repo):
    repo.add_knowledge_entry(QUERY, "Account answer", category="account")
    conversation = repo.add_conversation(knowledge_categories=["billing"])
    engine = _engine(repo)

    answer = engine.search_knowledge(QUERY, conversation.id)

    assert answer.matched is False
    assert repo.auto_reply_logs[-1].conversation_id == conversation.id


def test_inactive_entries_are_ignored(repo):
    repo.add_knowledge_entry(QUERY, "Old answer", is_active=False)
    assert _engine(repo).search_knowledge(QUERY).matched is False


def test_empty_query_is_rejected(repo):
    with pytest.raises(ValueError):
        _engine(repo).search_knowledge("   ")


def test_search_without_logging(repo):
    repo.add_knowledge_entry(QUERY, "answer")
    _engine(repo).search_knowledge(QUERY, log=False)
    assert repo.auto_reply_logs == []
