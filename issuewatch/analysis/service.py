"""Batch analysis over a window of stored messages."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Dict, Optional, Set

from ..backends.errors import BackendError
from ..backends.orchestrator import BackendOrchestrator
from ..models import IssueStatus, Message, as_utc
from ..repository import MonitorRepository
from .classifier import QuestionClassifier
from .evaluator import ReplyEvaluator
from .lifecycle import IssueLifecycleEngine
from .sentiment import SentimentAggregator
from .tags import TagCache, TagDeduplicator

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    messages_analyzed: int = 0
    issues_created: int = 0
    issues_replied: int = 0
    tags_created: int = 0
    issues_timed_out: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class AnalysisService:
    """Turn stored messages into issues, tags and customer sentiment.

    Messages are processed one at a time; the tag vocabulary cache belongs
    to a single :meth:`run_analysis` call.
    """

    def __init__(
        self,
        repository: MonitorRepository,
        orchestrator: BackendOrchestrator,
        *,
        timeout_minutes: int = 15,
        reply_threshold: float = 60,
        fallback: bool = True,
        lifecycle: Optional[IssueLifecycleEngine] = None,
    ) -> None:
        self._repository = repository
        self.classifier = QuestionClassifier(orchestrator, fallback=fallback)
        self.evaluator = ReplyEvaluator(orchestrator, fallback=fallback)
        self.tagger = TagDeduplicator(orchestrator, repository, fallback=fallback)
        self.sentiment = SentimentAggregator(orchestrator, repository, fallback=fallback)
        self.lifecycle = lifecycle or IssueLifecycleEngine(
            repository, timeout_minutes=timeout_minutes, reply_threshold=reply_threshold
        )

    def run_analysis(
        self,
        conversation_id: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> AnalysisResult:
        if since is not None:
            since = as_utc(since)
        result = AnalysisResult()
        cache = TagCache.load(self._repository)
        customers: Set[int] = set()

        messages = self._repository.list_messages(conversation_id=conversation_id, since=since)
        logger.info(
            "Analysis run over %d message(s) (conversation=%s, since=%s)",
            len(messages),
            conversation_id,
            since,
        )
        for message in messages:
            if message.is_staff or not message.has_text:
                continue
            result.messages_analyzed += 1
            customer_id = self._customer_for(message)
            if customer_id is not None:
                customers.add(customer_id)
            try:
                self._analyze_message(message, customer_id, cache, result)
            except BackendError as exc:
                logger.warning("Analysis of message %s failed: %s", message.id, exc)
            except Exception:
                logger.exception("Unexpected error analysing message %s", message.id)

        result.tags_created = cache.created
        for customer_id in sorted(customers):
            try:
                self.sentiment.refresh(customer_id)
            except Exception:
                logger.exception("Sentiment refresh for customer %s failed", customer_id)
        result.issues_timed_out = self.lifecycle.sweep_timeouts()
        logger.info("Analysis run finished: %s", result.as_dict())
        return result

    def _customer_for(self, message: Message) -> Optional[int]:
        conversation = self._repository.get_conversation(message.conversation_id)
        return conversation.customer_id if conversation else None

    def _analyze_message(
        self,
        message: Message,
        customer_id: Optional[int],
        cache: TagCache,
        result: AnalysisResult,
    ) -> None:
        if self._repository.get_issue_by_trigger(message.id) is not None:
            return
        analysis = self.classifier.classify(message)
        if analysis is None or not analysis.is_question:
            return

        issue = self.lifecycle.create_issue(
            message,
            summary=analysis.summary,
            sentiment=analysis.sentiment,
            suggested_reply=analysis.suggested_reply,
            customer_id=customer_id,
        )
        if issue is None:
            return
        result.issues_created += 1

        self.tagger.attach_suggested(issue, analysis.suggested_tags, cache)
        issue = self.lifecycle.scan_staff_replies(issue, message.content or "", self.evaluator)
        if issue.status is IssueStatus.REPLIED:
            result.issues_replied += 1
