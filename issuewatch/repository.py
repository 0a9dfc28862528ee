"""Persistence contract for the monitoring pipeline.

:class:`MonitorRepository` is what the services depend on. The in-memory
implementation below backs the tests and the no-database mode; the
PostgreSQL one lives in :mod:`issuewatch.postgres`. Both enforce the same
uniqueness rules: one Issue per trigger message, one Tag per name and one
relation per (issue, tag) pair.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple

from .models import (
    AutoReplyLog,
    Conversation,
    Customer,
    Issue,
    IssueDraft,
    IssueStatus,
    KnowledgeEntry,
    Message,
    Sentiment,
    Tag,
    utcnow,
)


class NotFoundError(LookupError):
    """Raised when a referenced record does not exist."""


class DuplicateIssueError(RuntimeError):
    """An Issue already exists for the trigger message."""

    def __init__(self, trigger_message_id: int) -> None:
        super().__init__(f"Issue already exists for message {trigger_message_id}")
        self.trigger_message_id = trigger_message_id


class DuplicateTagError(RuntimeError):
    """A Tag with the same name already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tag {name!r} already exists")
        self.name = name


class MonitorRepository(Protocol):
    """Persistence abstraction used by the analysis and retrieval services."""

    # messages and conversations
    def add_message(
        self,
        conversation_id: int,
        sender_id: str,
        *,
        is_staff: bool,
        content: Optional[str],
        created_at: datetime,
    ) -> Message: ...

    def get_message(self, message_id: int) -> Optional[Message]: ...

    def list_messages(
        self, *, conversation_id: Optional[int] = None, since: Optional[datetime] = None
    ) -> List[Message]: ...

    def list_staff_replies_after(
        self, conversation_id: int, after: datetime, *, limit: int = 5
    ) -> List[Message]: ...

    def recent_customer_messages(self, customer_id: int, *, limit: int = 20) -> List[Message]: ...

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]: ...

    # customers
    def get_customer(self, customer_id: int) -> Optional[Customer]: ...

    def update_customer_sentiment(self, customer_id: int, sentiment: Sentiment) -> Customer: ...

    # issues
    def create_issue(self, draft: IssueDraft) -> Issue: ...

    def get_issue(self, issue_id: int) -> Optional[Issue]: ...

    def get_issue_by_trigger(self, message_id: int) -> Optional[Issue]: ...

    def update_issue(self, issue: Issue) -> Issue: ...

    def list_issues(self, *, statuses: Optional[Iterable[IssueStatus]] = None) -> List[Issue]: ...

    # tags
    def list_tags(self) -> List[Tag]: ...

    def get_tag_by_name(self, name: str) -> Optional[Tag]: ...

    def create_tag(self, name: str) -> Tag: ...

    def attach_tag(self, issue_id: int, tag_id: int) -> bool: ...

    def list_issue_tags(self, issue_id: int) -> List[Tag]: ...

    # knowledge
    def list_knowledge_entries(self, *, active_only: bool = True) -> List[KnowledgeEntry]: ...

    def get_knowledge_entry(self, entry_id: int) -> Optional[KnowledgeEntry]: ...

    def set_knowledge_embedding(self, entry_id: int, vector: Sequence[float], provider: str) -> None: ...

    def vector_search(
        self,
        vector: Sequence[float],
        provider: str,
        *,
        threshold: float,
        limit: int,
        categories: Optional[Sequence[str]] = None,
    ) -> List[Tuple[KnowledgeEntry, float]]: ...

    def keyword_candidates(
        self,
        terms: Sequence[str],
        *,
        limit: int,
        categories: Optional[Sequence[str]] = None,
    ) -> List[KnowledgeEntry]: ...

    def increment_knowledge_usage(self, entry_id: int) -> None: ...

    # audit
    def add_auto_reply_log(self, log: AutoReplyLog) -> AutoReplyLog: ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        return 0.0
    dot = math.fsum(x * y for x, y in zip(a, b))
    norm = math.sqrt(math.fsum(x * x for x in a)) * math.sqrt(math.fsum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


def _category_allowed(entry: KnowledgeEntry, categories: Optional[Sequence[str]]) -> bool:
    return not categories or entry.category in categories


class InMemoryMonitorRepository:
    """Thread-safe in-memory repository used in tests and without a database."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.messages: Dict[int, Message] = {}
        self.conversations: Dict[int, Conversation] = {}
        self.customers: Dict[int, Customer] = {}
        self.issues: Dict[int, Issue] = {}
        self.tags: Dict[int, Tag] = {}
        self.issue_tags: Dict[int, List[int]] = {}
        self.knowledge: Dict[int, KnowledgeEntry] = {}
        self.auto_reply_logs: List[AutoReplyLog] = []
        self._ids: Dict[str, int] = {}

    def _next_id(self, kind: str) -> int:
        self._ids[kind] = self._ids.get(kind, 0) + 1
        return self._ids[kind]

    # ------------------------------------------------------------------
    # Seeding helpers (ingestion and administration live outside this package)

    def add_customer(self, name: str, sentiment: Sentiment = Sentiment.NEUTRAL) -> Customer:
        with self._lock:
            customer = Customer(id=self._next_id("customer"), name=name, sentiment=sentiment)
            self.customers[customer.id] = customer
            return customer

    def add_conversation(
        self,
        *,
        customer_id: Optional[int] = None,
        external_id: Optional[str] = None,
        auto_reply_enabled: bool = True,
        knowledge_categories: Sequence[str] = (),
    ) -> Conversation:
        with self._lock:
            conversation = Conversation(
                id=self._next_id("conversation"),
                customer_id=customer_id,
                external_id=external_id,
                auto_reply_enabled=auto_reply_enabled,
                knowledge_categories=list(knowledge_categories),
            )
            self.conversations[conversation.id] = conversation
            return conversation

    def add_knowledge_entry(
        self,
        question: str,
        answer: str,
        *,
        category: Optional[str] = None,
        keywords: Sequence[str] = (),
        is_active: bool = True,
        embedding: Optional[Sequence[float]] = None,
        embedding_provider: Optional[str] = None,
    ) -> KnowledgeEntry:
        with self._lock:
            entry = KnowledgeEntry(
                id=self._next_id("knowledge"),
                question=question,
                answer=answer,
                category=category,
                keywords=list(keywords),
                is_active=is_active,
                embedding=list(embedding) if embedding is not None else None,
                embedding_provider=embedding_provider,
            )
            self.knowledge[entry.id] = entry
            return entry

    # ------------------------------------------------------------------
    # Messages and conversations

    def add_message(
        self,
        conversation_id: int,
        sender_id: str,
        *,
        is_staff: bool,
        content: Optional[str],
        created_at: datetime,
    ) -> Message:
        with self._lock:
            message = Message(
                id=self._next_id("message"),
                conversation_id=conversation_id,
                sender_id=sender_id,
                is_staff=is_staff,
                content=content,
                created_at=created_at,
            )
            self.messages[message.id] = message
            return message

    def get_message(self, message_id: int) -> Optional[Message]:
        return self.messages.get(message_id)

    def list_messages(
        self, *, conversation_id: Optional[int] = None, since: Optional[datetime] = None
    ) -> List[Message]:
        with self._lock:
            rows = [
                m
                for m in self.messages.values()
                if (conversation_id is None or m.conversation_id == conversation_id)
                and (since is None or m.created_at >= since)
            ]
        return sorted(rows, key=lambda m: (m.created_at, m.id))

    def list_staff_replies_after(
        self, conversation_id: int, after: datetime, *, limit: int = 5
    ) -> List[Message]:
        rows = [
            m
            for m in self.list_messages(conversation_id=conversation_id)
            if m.is_staff and m.created_at > after
        ]
        return rows[:limit]

    def recent_customer_messages(self, customer_id: int, *, limit: int = 20) -> List[Message]:
        with self._lock:
            conversation_ids = {
                c.id for c in self.conversations.values() if c.customer_id == customer_id
            }
            rows = [
                m
                for m in self.messages.values()
                if m.conversation_id in conversation_ids and not m.is_staff and m.has_text
            ]
        rows.sort(key=lambda m: (m.created_at, m.id), reverse=True)
        return rows[:limit]

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        return self.conversations.get(conversation_id)

    # ------------------------------------------------------------------
    # Customers

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        return self.customers.get(customer_id)

    def update_customer_sentiment(self, customer_id: int, sentiment: Sentiment) -> Customer:
        with self._lock:
            customer = self.customers.get(customer_id)
            if customer is None:
                raise NotFoundError(f"Customer {customer_id} not found")
            customer.sentiment = sentiment
            customer.sentiment_updated_at = utcnow()
            return customer

    # ------------------------------------------------------------------
    # Issues

    def create_issue(self, draft: IssueDraft) -> Issue:
        with self._lock:
            if any(i.trigger_message_id == draft.trigger_message_id for i in self.issues.values()):
                raise DuplicateIssueError(draft.trigger_message_id)
            now = utcnow()
            issue = Issue(
                id=self._next_id("issue"),
                trigger_message_id=draft.trigger_message_id,
                conversation_id=draft.conversation_id,
                status=draft.status,
                question_summary=draft.question_summary,
                sentiment=draft.sentiment,
                timeout_at=draft.timeout_at,
                created_at=now,
                customer_id=draft.customer_id,
                suggested_reply=draft.suggested_reply,
                replied_by=draft.replied_by,
                replied_at=draft.replied_at,
                updated_at=now,
            )
            self.issues[issue.id] = issue
            return replace(issue)

    def get_issue(self, issue_id: int) -> Optional[Issue]:
        issue = self.issues.get(issue_id)
        return replace(issue) if issue else None

    def get_issue_by_trigger(self, message_id: int) -> Optional[Issue]:
        with self._lock:
            for issue in self.issues.values():
                if issue.trigger_message_id == message_id:
                    return replace(issue)
        return None

    def update_issue(self, issue: Issue) -> Issue:
        with self._lock:
            if issue.id not in self.issues:
                raise NotFoundError(f"Issue {issue.id} not found")
            stored = replace(issue, updated_at=utcnow())
            self.issues[issue.id] = stored
            return replace(stored)

    def list_issues(self, *, statuses: Optional[Iterable[IssueStatus]] = None) -> List[Issue]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            return [
                replace(i)
                for i in sorted(self.issues.values(), key=lambda i: i.id)
                if wanted is None or i.status in wanted
            ]

    # ------------------------------------------------------------------
    # Tags

    def list_tags(self) -> List[Tag]:
        with self._lock:
            return [replace(t) for t in sorted(self.tags.values(), key=lambda t: t.id)]

    def get_tag_by_name(self, name: str) -> Optional[Tag]:
        with self._lock:
            for tag in self.tags.values():
                if tag.name == name:
                    return replace(tag)
        return None

    def create_tag(self, name: str) -> Tag:
        with self._lock:
            if any(t.name == name for t in self.tags.values()):
                raise DuplicateTagError(name)
            tag = Tag(id=self._next_id("tag"), name=name)
            self.tags[tag.id] = tag
            return replace(tag)

    def attach_tag(self, issue_id: int, tag_id: int) -> bool:
        """Relate the tag to the issue; returns ``False`` if already related."""

        with self._lock:
            if tag_id not in self.tags:
                raise NotFoundError(f"Tag {tag_id} not found")
            attached = self.issue_tags.setdefault(issue_id, [])
            if tag_id in attached:
                return False
            attached.append(tag_id)
            self.tags[tag_id].usage_count += 1
            return True

    def list_issue_tags(self, issue_id: int) -> List[Tag]:
        with self._lock:
            return [replace(self.tags[t]) for t in self.issue_tags.get(issue_id, [])]

    # ------------------------------------------------------------------
    # Knowledge

    def list_knowledge_entries(self, *, active_only: bool = True) -> List[KnowledgeEntry]:
        with self._lock:
            return [
                replace(e)
                for e in sorted(self.knowledge.values(), key=lambda e: e.id)
                if e.is_active or not active_only
            ]

    def get_knowledge_entry(self, entry_id: int) -> Optional[KnowledgeEntry]:
        entry = self.knowledge.get(entry_id)
        return replace(entry) if entry else None

    def set_knowledge_embedding(self, entry_id: int, vector: Sequence[float], provider: str) -> None:
        with self._lock:
            entry = self.knowledge.get(entry_id)
            if entry is None:
                raise NotFoundError(f"Knowledge entry {entry_id} not found")
            entry.embedding = list(vector)
            entry.embedding_provider = provider

    def vector_search(
        self,
        vector: Sequence[float],
        provider: str,
        *,
        threshold: float,
        limit: int,
        categories: Optional[Sequence[str]] = None,
    ) -> List[Tuple[KnowledgeEntry, float]]:
        scored = []
        for entry in self.list_knowledge_entries():
            if not entry.is_embedded or entry.embedding_provider != provider:
                continue
            if not _category_allowed(entry, categories):
                continue
            similarity = cosine_similarity(vector, entry.embedding or [])
            if similarity >= threshold:
                scored.append((entry, similarity))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]

    def keyword_candidates(
        self,
        terms: Sequence[str],
        *,
        limit: int,
        categories: Optional[Sequence[str]] = None,
    ) -> List[KnowledgeEntry]:
        lowered = [t.lower() for t in terms if t]
        if not lowered:
            return []
        scored = []
        for entry in self.list_knowledge_entries():
            if not _category_allowed(entry, categories):
                continue
            haystack = f"{entry.question}\n{entry.answer}".lower()
            keywords = {k.lower() for k in entry.keywords}
            # Keyword hits count twice, matching the SQL ordering.
            relevance = sum(t in haystack for t in lowered) + 2 * sum(t in keywords for t in lowered)
            if relevance:
                scored.append((relevance, entry))
        scored.sort(key=lambda pair: (-pair[0], -pair[1].usage_count, pair[1].id))
        return [entry for _, entry in scored[:limit]]

    def increment_knowledge_usage(self, entry_id: int) -> None:
        with self._lock:
            entry = self.knowledge.get(entry_id)
            if entry is not None:
                entry.usage_count += 1

    # ------------------------------------------------------------------
    # Audit

    def add_auto_reply_log(self, log: AutoReplyLog) -> AutoReplyLog:
        with self._lock:
            stored = replace(log, id=self._next_id("auto_reply_log"))
            self.auto_reply_logs.append(stored)
            return replace(stored)
