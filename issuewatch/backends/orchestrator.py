"""Ordered fallback across the configured AI backends."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import TypeVar

from ..models import KnowledgeEntry
from .base import AIBackend
from .errors import AllBackendsExhaustedError, BackendError, BackendUnavailableError
from .schemas import (
    QuestionAnalysis,
    ReplyEvaluation,
    SentimentAnalysis,
    SynthesizedAnswer,
    TagSimilarity,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackendOrchestrator:
    """Call backends in preference order, the configured primary first.

    With ``fallback=False`` only the primary is used and its failure surfaces
    unchanged. With ``fallback=True`` every backend is attempted at most once
    per call; if all of them fail :class:`AllBackendsExhaustedError` is raised.
    """

    def __init__(self, backends: Sequence[AIBackend]) -> None:
        self._backends = list(backends)

    @property
    def names(self) -> list[str]:
        return [backend.name for backend in self._backends]

    @property
    def primary(self) -> AIBackend:
        if not self._backends:
            raise BackendUnavailableError("No AI backend configured")
        return self._backends[0]

    def call(
        self,
        operation: Callable[[AIBackend], T],
        *,
        fallback: bool,
        label: str = "call",
    ) -> T:
        if not fallback:
            return operation(self.primary)

        failures: dict[str, BaseException] = {}
        for backend in self._backends:
            if backend.name in failures:
                continue
            try:
                result = operation(backend)
            except BackendError as exc:
                logger.warning("%s failed on %s: %s", label, backend.name, exc)
                failures[backend.name] = exc
                continue
            if failures:
                logger.info("%s succeeded on fallback backend %s", label, backend.name)
            else:
                logger.debug("%s succeeded on %s", label, backend.name)
            return result
        logger.error("%s failed on every backend (%s)", label, ", ".join(failures) or "none")
        raise AllBackendsExhaustedError(failures)

    # ------------------------------------------------------------------
    # Capability shortcuts

    def classify_question(self, text: str, *, fallback: bool = False) -> QuestionAnalysis:
        return self.call(lambda b: b.classify_question(text), fallback=fallback, label="classify_question")

    def evaluate_reply(self, question: str, reply: str, *, fallback: bool = False) -> ReplyEvaluation:
        return self.call(
            lambda b: b.evaluate_reply(question, reply), fallback=fallback, label="evaluate_reply"
        )

    def deduplicate_tag(
        self, new_tag: str, existing_tags: Sequence[str], *, fallback: bool = False
    ) -> TagSimilarity:
        return self.call(
            lambda b: b.deduplicate_tag(new_tag, existing_tags),
            fallback=fallback,
            label="deduplicate_tag",
        )

    def aggregate_sentiment(
        self, messages: Sequence[str], *, fallback: bool = False
    ) -> SentimentAnalysis:
        return self.call(
            lambda b: b.aggregate_sentiment(messages), fallback=fallback, label="aggregate_sentiment"
        )

    def synthesize_answer(
        self, query: str, entries: Sequence[KnowledgeEntry]
    ) -> SynthesizedAnswer:
        return self.call(
            lambda b: b.synthesize_answer(query, entries), fallback=True, label="synthesize_answer"
        )
