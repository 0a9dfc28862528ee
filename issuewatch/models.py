"""Domain records shared by the analysis, knowledge and auto-reply pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Read naive timestamps as UTC so they compare with :func:`utcnow`."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class IssueStatus(str, enum.Enum):
    """Reply lifecycle of a tracked customer question."""

    PENDING = "PENDING"
    REPLIED = "REPLIED"
    WAITING_CUSTOMER = "WAITING_CUSTOMER"
    RESOLVED = "RESOLVED"
    TIMEOUT = "TIMEOUT"
    IGNORED = "IGNORED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    @property
    def awaits_deadline(self) -> bool:
        """Whether the timeout deadline still applies in this status."""

        return self in (IssueStatus.PENDING, IssueStatus.WAITING_CUSTOMER)


_TERMINAL_STATUSES = frozenset(
    {IssueStatus.RESOLVED, IssueStatus.TIMEOUT, IssueStatus.IGNORED}
)


class Sentiment(str, enum.Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    AT_RISK = "at_risk"


@dataclass(frozen=True)
class Message:
    """Immutable chat message as persisted by channel ingestion."""

    id: int
    conversation_id: int
    sender_id: str
    is_staff: bool
    content: str | None
    created_at: datetime

    @property
    def has_text(self) -> bool:
        return bool(self.content and self.content.strip())


@dataclass
class Conversation:
    id: int
    customer_id: int | None = None
    external_id: str | None = None
    auto_reply_enabled: bool = True
    knowledge_categories: list[str] = field(default_factory=list)


@dataclass
class Customer:
    id: int
    name: str
    sentiment: Sentiment = Sentiment.NEUTRAL
    sentiment_updated_at: datetime | None = None


@dataclass
class Tag:
    id: int
    name: str
    usage_count: int = 0


@dataclass
class IssueDraft:
    """Fields required to open a new :class:`Issue`."""

    trigger_message_id: int
    conversation_id: int
    question_summary: str
    sentiment: Sentiment
    timeout_at: datetime
    status: IssueStatus = IssueStatus.PENDING
    customer_id: int | None = None
    suggested_reply: str | None = None
    replied_by: str | None = None
    replied_at: datetime | None = None


@dataclass
class Issue:
    id: int
    trigger_message_id: int
    conversation_id: int
    status: IssueStatus
    question_summary: str
    sentiment: Sentiment
    timeout_at: datetime
    created_at: datetime
    customer_id: int | None = None
    suggested_reply: str | None = None
    reply_message_id: int | None = None
    replied_by: str | None = None
    replied_at: datetime | None = None
    reply_relevance_score: float | None = None
    resolved_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class KnowledgeEntry:
    id: int
    question: str
    answer: str
    category: str | None = None
    keywords: list[str] = field(default_factory=list)
    embedding: list[float] | None = None
    embedding_provider: str | None = None
    is_active: bool = True
    usage_count: int = 0

    @property
    def is_embedded(self) -> bool:
        return bool(self.embedding)


@dataclass
class AutoReplyLog:
    """Audit row for one retrieval decision; ``id`` is assigned on insert."""

    question: str
    matched: bool
    confidence: float
    answer: str | None = None
    knowledge_id: int | None = None
    conversation_id: int | None = None
    message_id: int | None = None
    replied: bool = False
    id: int | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class InboundEvent:
    """Normalized message event emitted by conversation ingestion.

    ``message_id`` is the stored message when ingestion already persisted it;
    without it the gate records the message before handling it.
    """

    conversation_id: int
    external_party_id: str
    is_staff_author: bool
    text: str | None
    timestamp: datetime
    message_id: int | None = None
