"""Issue lifecycle state machine.

::

    PENDING ──► REPLIED ──► RESOLVED
       │
       └──► WAITING_CUSTOMER ──► TIMEOUT
    PENDING ──► TIMEOUT
    PENDING / REPLIED / WAITING_CUSTOMER ──► IGNORED   (manual)

Only :class:`IssueLifecycleEngine` mutates issues. Deadlines are checked
lazily on read (:meth:`IssueLifecycleEngine.get_issue`) and by
:meth:`IssueLifecycleEngine.sweep_timeouts`; there is no timer thread.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional

from ..backends.errors import BackendError
from ..backends.schemas import ReplyEvaluation
from ..models import Issue, IssueDraft, IssueStatus, Message, Sentiment, as_utc, utcnow
from ..repository import DuplicateIssueError, MonitorRepository, NotFoundError

logger = logging.getLogger(__name__)

MAX_REPLY_CANDIDATES = 5
AUTO_REPLY_PARTY = "auto-reply"

ALLOWED_TRANSITIONS: Dict[IssueStatus, FrozenSet[IssueStatus]] = {
    IssueStatus.PENDING: frozenset(
        {IssueStatus.REPLIED, IssueStatus.WAITING_CUSTOMER, IssueStatus.TIMEOUT, IssueStatus.IGNORED}
    ),
    IssueStatus.REPLIED: frozenset({IssueStatus.RESOLVED, IssueStatus.IGNORED}),
    IssueStatus.WAITING_CUSTOMER: frozenset({IssueStatus.TIMEOUT, IssueStatus.IGNORED}),
    IssueStatus.RESOLVED: frozenset(),
    IssueStatus.TIMEOUT: frozenset(),
    IssueStatus.IGNORED: frozenset(),
}

# Statuses an operator may set directly.
MANUAL_STATUSES = frozenset({IssueStatus.RESOLVED, IssueStatus.IGNORED})


class InvalidTransitionError(ValueError):
    """Raised when a status change is not an edge of the lifecycle."""

    def __init__(self, current: IssueStatus, target: IssueStatus) -> None:
        super().__init__(f"Cannot move issue from {current.value} to {target.value}")
        self.current = current
        self.target = target


def can_transition(current: IssueStatus, target: IssueStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class IssueLifecycleEngine:
    def __init__(
        self,
        repository: MonitorRepository,
        *,
        timeout_minutes: int = 15,
        reply_threshold: float = 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self.timeout_minutes = timeout_minutes
        self.reply_threshold = reply_threshold
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation

    def create_issue(
        self,
        message: Message,
        *,
        summary: str,
        sentiment: Sentiment = Sentiment.NEUTRAL,
        suggested_reply: Optional[str] = None,
        customer_id: Optional[int] = None,
        auto_reply: Optional[str] = None,
    ) -> Optional[Issue]:
        """Open an issue for ``message``; ``None`` if one already exists.

        With ``auto_reply`` the issue starts in ``REPLIED`` because the bot
        already answered.
        """

        if message.is_staff:
            raise ValueError("Staff messages cannot open issues")
        if self._repository.get_issue_by_trigger(message.id) is not None:
            return None

        draft = IssueDraft(
            trigger_message_id=message.id,
            conversation_id=message.conversation_id,
            question_summary=summary or (message.content or "")[:200],
            sentiment=sentiment,
            timeout_at=as_utc(message.created_at) + timedelta(minutes=self.timeout_minutes),
            customer_id=customer_id,
            suggested_reply=suggested_reply,
        )
        if auto_reply is not None:
            draft.status = IssueStatus.REPLIED
            draft.suggested_reply = auto_reply
            draft.replied_by = AUTO_REPLY_PARTY
            draft.replied_at = self._clock()
        try:
            issue = self._repository.create_issue(draft)
        except DuplicateIssueError:
            logger.info("Issue for message %s already exists", message.id)
            return None
        logger.info("Opened issue %s for message %s (%s)", issue.id, message.id, issue.status.value)
        return issue

    # ------------------------------------------------------------------
    # Transitions

    def transition(self, issue: Issue, target: IssueStatus, **changes) -> Issue:
        if not can_transition(issue.status, target):
            raise InvalidTransitionError(issue.status, target)
        updated = replace(issue, status=target, **changes)
        stored = self._repository.update_issue(updated)
        logger.info("Issue %s: %s -> %s", issue.id, issue.status.value, target.value)
        return stored

    def apply_evaluation(
        self, issue: Issue, reply: Message, evaluation: ReplyEvaluation
    ) -> Optional[Issue]:
        """Apply one evaluated staff reply; ``None`` when it changes nothing."""

        fields = dict(
            reply_message_id=reply.id,
            replied_by=reply.sender_id,
            replied_at=reply.created_at,
            reply_relevance_score=evaluation.relevance_score,
        )
        if evaluation.relevance_score >= self.reply_threshold:
            return self.transition(issue, IssueStatus.REPLIED, **fields)
        if evaluation.is_counter_question:
            return self.transition(issue, IssueStatus.WAITING_CUSTOMER, **fields)
        return None

    def mark_auto_replied(self, issue: Issue, answer: str) -> Issue:
        """Record a delivered bot reply on an issue that is still open."""

        if issue.status is IssueStatus.REPLIED:
            return issue
        return self.transition(
            issue,
            IssueStatus.REPLIED,
            suggested_reply=answer,
            replied_by=AUTO_REPLY_PARTY,
            replied_at=self._clock(),
        )

    def scan_staff_replies(
        self,
        issue: Issue,
        question: str,
        evaluate: Callable[[str, str], ReplyEvaluation],
    ) -> Issue:
        """Evaluate the first staff replies after the trigger, in order.

        The first accepted reply or counter-question ends the scan. A failed
        evaluation skips that candidate.
        """

        if issue.status is not IssueStatus.PENDING:
            return issue
        trigger = self._repository.get_message(issue.trigger_message_id)
        if trigger is None:
            raise NotFoundError(f"Trigger message {issue.trigger_message_id} not found")

        candidates = self._repository.list_staff_replies_after(
            issue.conversation_id, trigger.created_at, limit=MAX_REPLY_CANDIDATES
        )
        for reply in candidates:
            if not reply.has_text:
                continue
            try:
                evaluation = evaluate(question, reply.content or "")
            except BackendError as exc:
                logger.warning(
                    "Evaluating reply %s for issue %s failed, skipping: %s", reply.id, issue.id, exc
                )
                continue
            updated = self.apply_evaluation(issue, reply, evaluation)
            if updated is not None:
                return updated
        return issue

    def update_status(self, issue_id: int, status: IssueStatus) -> Issue:
        """Operator status change; only ``RESOLVED`` and ``IGNORED`` are accepted."""

        issue = self.get_issue(issue_id)
        if status not in MANUAL_STATUSES:
            raise InvalidTransitionError(issue.status, status)
        changes = {}
        if status is IssueStatus.RESOLVED:
            changes["resolved_at"] = self._clock()
        return self.transition(issue, status, **changes)

    # ------------------------------------------------------------------
    # Timeouts

    def refresh_timeout(self, issue: Issue, now: Optional[datetime] = None) -> Issue:
        now = now or self._clock()
        if issue.status.awaits_deadline and now > as_utc(issue.timeout_at):
            return self.transition(issue, IssueStatus.TIMEOUT)
        return issue

    def sweep_timeouts(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        expired = 0
        open_issues = self._repository.list_issues(
            statuses=(IssueStatus.PENDING, IssueStatus.WAITING_CUSTOMER)
        )
        for issue in open_issues:
            if self.refresh_timeout(issue, now) is not issue:
                expired += 1
        if expired:
            logger.info("Timed out %d issue(s)", expired)
        return expired

    def get_issue(self, issue_id: int) -> Issue:
        issue = self._repository.get_issue(issue_id)
        if issue is None:
            raise NotFoundError(f"Issue {issue_id} not found")
        return self.refresh_timeout(issue)
