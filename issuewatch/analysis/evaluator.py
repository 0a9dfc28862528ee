"""Relevance scoring of staff replies against a customer question."""

from __future__ import annotations

from ..backends.orchestrator import BackendOrchestrator
from ..backends.schemas import ReplyEvaluation


class ReplyEvaluator:
    def __init__(self, orchestrator: BackendOrchestrator, *, fallback: bool = False) -> None:
        self._orchestrator = orchestrator
        self.fallback = fallback

    def evaluate(self, question: str, reply: str) -> ReplyEvaluation:
        return self._orchestrator.evaluate_reply(question, reply, fallback=self.fallback)

    __call__ = evaluate
