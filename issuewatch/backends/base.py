"""Common contract for AI backends.

Each variant only knows how to turn a prompt into text (:meth:`AIBackend.generate`)
and, where the service offers it, text into a vector (:meth:`AIBackend.embed`).
Prompt construction and strict parsing of the answers live here so every
variant returns the same typed results.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, Optional, Type, TypeVar

import requests
from pydantic import BaseModel

from ..models import KnowledgeEntry
from . import prompts
from .errors import BackendError, BackendResponseError, BackendTimeoutError, BackendUnavailableError
from .parsing import parse_response
from .schemas import (
    QuestionAnalysis,
    ReplyEvaluation,
    SentimentAnalysis,
    SynthesizedAnswer,
    TagSimilarity,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

T = TypeVar("T", bound=BaseModel)


class AIBackend(ABC):
    """One interchangeable AI service."""

    name: str = ""

    def __init__(self, *, model: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.model = model
        self.timeout = timeout

    @abstractmethod
    def generate(self, prompt: str, *, max_tokens: int = 1024) -> str:
        """Return the model's text answer or raise :class:`BackendError`."""

    def embed(self, text: str) -> list[float]:
        raise BackendUnavailableError(
            f"{self.name} does not provide embeddings", backend=self.name
        )

    # ------------------------------------------------------------------
    # Capability operations

    def classify_question(self, text: str) -> QuestionAnalysis:
        return self._ask(prompts.classify_question(text), QuestionAnalysis)

    def evaluate_reply(self, question: str, reply: str) -> ReplyEvaluation:
        return self._ask(prompts.evaluate_reply(question, reply), ReplyEvaluation)

    def deduplicate_tag(self, new_tag: str, existing_tags: Sequence[str]) -> TagSimilarity:
        if not existing_tags:
            return TagSimilarity(similar_tag=None, should_merge=False)
        return self._ask(
            prompts.deduplicate_tag(new_tag, existing_tags), TagSimilarity, max_tokens=256
        )

    def aggregate_sentiment(self, messages: Sequence[str]) -> SentimentAnalysis:
        return self._ask(prompts.aggregate_sentiment(messages), SentimentAnalysis, max_tokens=512)

    def synthesize_answer(
        self, query: str, entries: Sequence[KnowledgeEntry]
    ) -> SynthesizedAnswer:
        if not entries:
            return SynthesizedAnswer(can_answer=False)
        return self._ask(prompts.synthesize_answer(query, entries), SynthesizedAnswer)

    def _ask(self, prompt: str, model: Type[T], *, max_tokens: int = 1024) -> T:
        raw = self.generate(prompt, max_tokens=max_tokens)
        try:
            return parse_response(raw, model)
        except BackendResponseError as exc:
            exc.backend = self.name
            logger.debug("Unparseable %s answer from %s: %.200r", model.__name__, self.name, raw)
            raise

    def __repr__(self) -> str:
        return f"<{type(self).__name__} model={self.model!r}>"


def post_json(
    session: requests.Session,
    url: str,
    payload: Mapping[str, Any],
    *,
    timeout: float,
    backend: str,
    headers: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    """POST ``payload`` and return the decoded JSON body.

    Transport failures map onto the backend error hierarchy so callers only
    ever see :class:`BackendError`.
    """

    try:
        response = session.post(url, json=payload, headers=dict(headers or {}), timeout=timeout)
    except requests.Timeout as exc:
        raise BackendTimeoutError(f"{backend} timed out after {timeout}s", backend=backend) from exc
    except requests.RequestException as exc:
        raise BackendError(f"{backend} request failed: {exc}", backend=backend) from exc
    if response.status_code >= 400:
        raise BackendError(
            f"{backend} returned HTTP {response.status_code}: {response.text[:200]}",
            backend=backend,
        )
    try:
        data = response.json()
    except ValueError as exc:
        raise BackendResponseError(f"{backend} returned non-JSON body", backend=backend) from exc
    if not isinstance(data, dict):
        raise BackendResponseError(f"{backend} returned unexpected payload", backend=backend)
    return data
