"""Customer sentiment rollup."""

from __future__ import annotations

import logging
from typing import Optional

from ..backends.errors import BackendError
from ..backends.orchestrator import BackendOrchestrator
from ..models import Sentiment
from ..repository import MonitorRepository

logger = logging.getLogger(__name__)

RECENT_MESSAGE_WINDOW = 20


class SentimentAggregator:
    """Recompute a customer's sentiment from their latest messages.

    The result replaces the stored value. Customers with no qualifying
    messages, or whose rollup fails, keep their current sentiment.
    """

    def __init__(
        self,
        orchestrator: BackendOrchestrator,
        repository: MonitorRepository,
        *,
        fallback: bool = False,
        window: int = RECENT_MESSAGE_WINDOW,
    ) -> None:
        self._orchestrator = orchestrator
        self._repository = repository
        self.fallback = fallback
        self.window = window

    def refresh(self, customer_id: int) -> Optional[Sentiment]:
        recent = self._repository.recent_customer_messages(customer_id, limit=self.window)
        if not recent:
            return None
        texts = [m.content.strip() for m in reversed(recent) if m.content]
        try:
            result = self._orchestrator.aggregate_sentiment(texts, fallback=self.fallback)
        except BackendError as exc:
            logger.warning("Sentiment rollup for customer %s failed: %s", customer_id, exc)
            return None
        self._repository.update_customer_sentiment(customer_id, result.sentiment)
        logger.debug("Customer %s sentiment -> %s (%s)", customer_id, result.sentiment.value, result.reason)
        return result.sentiment
