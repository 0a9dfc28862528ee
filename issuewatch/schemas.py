"""Pydantic schemas for the HTTP API."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from .models import InboundEvent, Issue, IssueStatus, Sentiment, as_utc


class AnalysisRunRequest(BaseModel):
    conversation_id: int | None = None
    since: datetime | None = None

    @field_validator("since")
    @classmethod
    def _since_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class AnalysisRunResponse(BaseModel):
    messages_analyzed: int
    issues_created: int
    issues_replied: int
    tags_created: int
    issues_timed_out: int = 0


class InboundEventIn(BaseModel):
    """Normalized message event as emitted by channel ingestion."""

    conversation_id: int
    external_party_id: str
    is_staff_author: bool = False
    text: str | None = None
    timestamp: datetime
    message_id: int | None = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def to_event(self) -> InboundEvent:
        return InboundEvent(**self.model_dump())


class KnowledgeSearchRequest(BaseModel):
    query: str = Field(min_length=1, max_length=5000)
    conversation_id: int | None = None


class KnowledgeAnswerOut(BaseModel):
    matched: bool
    confidence: float
    answer: str | None = None
    category: str | None = None
    is_generated: bool = False
    entry_id: int | None = None
    source: str | None = None


class InboundOutcomeOut(BaseModel):
    processed: bool
    mentioned: bool = False
    is_question: bool = False
    confidence: float = 0.0
    replied: bool = False
    reply_text: str | None = None
    issue_id: int | None = None
    knowledge: KnowledgeAnswerOut | None = None
    error: str | None = None


class EmbedRequest(BaseModel):
    force: bool = False


class EmbeddingStatsOut(BaseModel):
    success: int
    failed: int
    skipped: int


class EmbeddingCoverageOut(BaseModel):
    total: int
    embedded: int
    percentage: float


class IssueOut(BaseModel):
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
    tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_issue(cls, issue: Issue, tags: list[str] | None = None) -> "IssueOut":
        return cls(**asdict(issue), tags=tags or [])


class IssueStatusUpdate(BaseModel):
    status: IssueStatus
