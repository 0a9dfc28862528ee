"""Question classification of external-party messages."""

from __future__ import annotations

import logging
from typing import Optional

from ..backends.orchestrator import BackendOrchestrator
from ..backends.schemas import QuestionAnalysis
from ..models import Message

logger = logging.getLogger(__name__)


class QuestionClassifier:
    """Ask the backends whether a customer message is a question.

    Staff messages and messages without text are never sent to a backend;
    :meth:`classify` returns ``None`` for them. Backend failures propagate as
    :class:`~issuewatch.backends.errors.BackendError` so a timeout is never
    mistaken for "not a question".
    """

    def __init__(self, orchestrator: BackendOrchestrator, *, fallback: bool = False) -> None:
        self._orchestrator = orchestrator
        self.fallback = fallback

    def classify(self, message: Message) -> Optional[QuestionAnalysis]:
        if message.is_staff or not message.has_text:
            return None
        analysis = self._orchestrator.classify_question(
            (message.content or "").strip(), fallback=self.fallback
        )
        logger.debug(
            "Message %s classified: question=%s confidence=%.0f",
            message.id,
            analysis.is_question,
            analysis.confidence,
        )
        return analysis
