"""PostgreSQL implementation of :class:`~issuewatch.repository.MonitorRepository`.

Statements run on a connection in autocommit mode; multi-statement writes
use short ``conn.transaction()`` blocks, so no transaction stays open while
the services wait on an AI backend. Knowledge embeddings are stored in a
pgvector column together with the name of the embedder that produced them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import psycopg
from pgvector.psycopg import register_vector
from psycopg.rows import dict_row

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
)
from .repository import DuplicateIssueError, DuplicateTagError, NotFoundError

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS: tuple[str, ...] = (
    "CREATE EXTENSION IF NOT EXISTS vector",
    """
    CREATE TABLE IF NOT EXISTS customers (
        id SERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        sentiment TEXT NOT NULL DEFAULT 'neutral',
        sentiment_updated_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id SERIAL PRIMARY KEY,
        external_id TEXT UNIQUE,
        customer_id INTEGER REFERENCES customers(id) ON DELETE SET NULL,
        auto_reply_enabled BOOLEAN NOT NULL DEFAULT TRUE,
        knowledge_categories TEXT[] NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id SERIAL PRIMARY KEY,
        conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
        sender_id TEXT NOT NULL,
        is_staff BOOLEAN NOT NULL DEFAULT FALSE,
        content TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS messages_conversation_created_idx ON messages (conversation_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS issues (
        id SERIAL PRIMARY KEY,
        trigger_message_id INTEGER NOT NULL UNIQUE REFERENCES messages(id),
        conversation_id INTEGER NOT NULL REFERENCES conversations(id),
        customer_id INTEGER REFERENCES customers(id) ON DELETE SET NULL,
        status TEXT NOT NULL DEFAULT 'PENDING',
        question_summary TEXT NOT NULL DEFAULT '',
        sentiment TEXT NOT NULL DEFAULT 'neutral',
        suggested_reply TEXT,
        timeout_at TIMESTAMPTZ NOT NULL,
        reply_message_id INTEGER UNIQUE REFERENCES messages(id),
        replied_by TEXT,
        replied_at TIMESTAMPTZ,
        reply_relevance_score DOUBLE PRECISION,
        resolved_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS issues_status_timeout_idx ON issues (status, timeout_at)",
    """
    CREATE TABLE IF NOT EXISTS issue_tags (
        id SERIAL PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        usage_count INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS issue_tag_relations (
        issue_id INTEGER NOT NULL REFERENCES issues(id) ON DELETE CASCADE,
        tag_id INTEGER NOT NULL REFERENCES issue_tags(id) ON DELETE CASCADE,
        PRIMARY KEY (issue_id, tag_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS knowledge_entries (
        id SERIAL PRIMARY KEY,
        question TEXT NOT NULL,
        answer TEXT NOT NULL,
        category TEXT,
        keywords TEXT[] NOT NULL DEFAULT '{}',
        embedding vector,
        embedding_provider TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        usage_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auto_reply_logs (
        id SERIAL PRIMARY KEY,
        question TEXT NOT NULL,
        answer TEXT,
        matched BOOLEAN NOT NULL,
        confidence DOUBLE PRECISION NOT NULL DEFAULT 0,
        knowledge_id INTEGER REFERENCES knowledge_entries(id) ON DELETE SET NULL,
        conversation_id INTEGER REFERENCES conversations(id) ON DELETE SET NULL,
        message_id INTEGER REFERENCES messages(id) ON DELETE SET NULL,
        replied BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
)

_ISSUE_COLUMNS = """
    id, trigger_message_id, conversation_id, customer_id, status, question_summary,
    sentiment, suggested_reply, timeout_at, reply_message_id, replied_by, replied_at,
    reply_relevance_score, resolved_at, created_at, updated_at
"""
_MESSAGE_COLUMNS = "id, conversation_id, sender_id, is_staff, content, created_at"
_KNOWLEDGE_COLUMNS = """
    id, question, answer, category, keywords, embedding, embedding_provider,
    is_active, usage_count
"""


def create_schema(conn: psycopg.Connection) -> None:
    """Create the monitoring tables if they do not exist yet."""

    with conn.transaction():
        with conn.cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)


def connect(dsn: str) -> psycopg.Connection:
    conn = psycopg.connect(dsn, autocommit=True)
    register_vector(conn)
    return conn


def _vector(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float32)


class PostgresMonitorRepository:
    """PostgreSQL-backed monitoring repository."""

    def __init__(self, connection: psycopg.Connection):
        self._conn = connection

    @classmethod
    def from_dsn(cls, dsn: str) -> "PostgresMonitorRepository":
        return cls(connect(dsn))

    def close(self) -> None:
        self._conn.close()

    def cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    # ------------------------------------------------------------------
    # Seeding helpers

    def add_customer(self, name: str, sentiment: Sentiment = Sentiment.NEUTRAL) -> Customer:
        with self.cursor() as cur:
            cur.execute(
                "INSERT INTO customers (name, sentiment) VALUES (%s, %s) "
                "RETURNING id, name, sentiment, sentiment_updated_at",
                (name, sentiment.value),
            )
            return self._row_to_customer(cur.fetchone())

    def add_conversation(
        self,
        *,
        customer_id: Optional[int] = None,
        external_id: Optional[str] = None,
        auto_reply_enabled: bool = True,
        knowledge_categories: Sequence[str] = (),
    ) -> Conversation:
        with self.cursor() as cur:
            cur.execute(
                """
                INSERT INTO conversations (external_id, customer_id, auto_reply_enabled, knowledge_categories)
                VALUES (%s, %s, %s, %s)
                RETURNING id, external_id, customer_id, auto_reply_enabled, knowledge_categories
                """,
                (external_id, customer_id, auto_reply_enabled, list(knowledge_categories)),
            )
            return self._row_to_conversation(cur.fetchone())

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
        with self.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO knowledge_entries
                    (question, answer, category, keywords, is_active, embedding, embedding_provider)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING {_KNOWLEDGE_COLUMNS}
                """,
                (
                    question,
                    answer,
                    category,
                    list(keywords),
                    is_active,
                    _vector(embedding) if embedding is not None else None,
                    embedding_provider,
                ),
            )
            return self._row_to_entry(cur.fetchone())

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
        with self.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO messages (conversation_id, sender_id, is_staff, content, created_at)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {_MESSAGE_COLUMNS}
                """,
                (conversation_id, sender_id, is_staff, content, created_at),
            )
            return self._row_to_message(cur.fetchone())

    def get_message(self, message_id: int) -> Optional[Message]:
        with self.cursor() as cur:
            cur.execute(f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = %s", (message_id,))
            row = cur.fetchone()
        return self._row_to_message(row) if row else None

    def list_messages(
        self, *, conversation_id: Optional[int] = None, since: Optional[datetime] = None
    ) -> List[Message]:
        clauses: List[str] = []
        params: List[Any] = []
        if conversation_id is not None:
            clauses.append("conversation_id = %s")
            params.append(conversation_id)
        if since is not None:
            clauses.append("created_at >= %s")
            params.append(since)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.cursor() as cur:
            cur.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages {where} ORDER BY created_at, id",
                params,
            )
            rows = cur.fetchall()
        return [self._row_to_message(row) for row in rows]

    def list_staff_replies_after(
        self, conversation_id: int, after: datetime, *, limit: int = 5
    ) -> List[Message]:
        with self.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE conversation_id = %s AND is_staff AND created_at > %s
                ORDER BY created_at, id
                LIMIT %s
                """,
                (conversation_id, after, limit),
            )
            rows = cur.fetchall()
        return [self._row_to_message(row) for row in rows]

    def recent_customer_messages(self, customer_id: int, *, limit: int = 20) -> List[Message]:
        with self.cursor() as cur:
            cur.execute(
                """
                SELECT m.id, m.conversation_id, m.sender_id, m.is_staff, m.content, m.created_at
                FROM messages m
                JOIN conversations c ON c.id = m.conversation_id
                WHERE c.customer_id = %s
                  AND NOT m.is_staff
                  AND m.content IS NOT NULL
                  AND btrim(m.content) <> ''
                ORDER BY m.created_at DESC, m.id DESC
                LIMIT %s
                """,
                (customer_id, limit),
            )
            rows = cur.fetchall()
        return [self._row_to_message(row) for row in rows]

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        with self.cursor() as cur:
            cur.execute(
                """
                SELECT id, external_id, customer_id, auto_reply_enabled, knowledge_categories
                FROM conversations WHERE id = %s
                """,
                (conversation_id,),
            )
            row = cur.fetchone()
        return self._row_to_conversation(row) if row else None

    # ------------------------------------------------------------------
    # Customers

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        with self.cursor() as cur:
            cur.execute(
                "SELECT id, name, sentiment, sentiment_updated_at FROM customers WHERE id = %s",
                (customer_id,),
            )
            row = cur.fetchone()
        return self._row_to_customer(row) if row else None

    def update_customer_sentiment(self, customer_id: int, sentiment: Sentiment) -> Customer:
        with self.cursor() as cur:
            cur.execute(
                """
                UPDATE customers SET sentiment = %s, sentiment_updated_at = now()
                WHERE id = %s
                RETURNING id, name, sentiment, sentiment_updated_at
                """,
                (sentiment.value, customer_id),
            )
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Customer {customer_id} not found")
        return self._row_to_customer(row)

    # ------------------------------------------------------------------
    # Issues

    def create_issue(self, draft: IssueDraft) -> Issue:
        try:
            with self._conn.transaction():
                with self.cursor() as cur:
                    cur.execute(
                        f"""
                        INSERT INTO issues (
                            trigger_message_id, conversation_id, customer_id, status,
                            question_summary, sentiment, suggested_reply, timeout_at,
                            replied_by, replied_at
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_ISSUE_COLUMNS}
                        """,
                        (
                            draft.trigger_message_id,
                            draft.conversation_id,
                            draft.customer_id,
                            draft.status.value,
                            draft.question_summary,
                            draft.sentiment.value,
                            draft.suggested_reply,
                            draft.timeout_at,
                            draft.replied_by,
                            draft.replied_at,
                        ),
                    )
                    row = cur.fetchone()
        except psycopg.errors.UniqueViolation as exc:
            raise DuplicateIssueError(draft.trigger_message_id) from exc
        return self._row_to_issue(row)

    def get_issue(self, issue_id: int) -> Optional[Issue]:
        with self.cursor() as cur:
            cur.execute(f"SELECT {_ISSUE_COLUMNS} FROM issues WHERE id = %s", (issue_id,))
            row = cur.fetchone()
        return self._row_to_issue(row) if row else None

    def get_issue_by_trigger(self, message_id: int) -> Optional[Issue]:
        with self.cursor() as cur:
            cur.execute(
                f"SELECT {_ISSUE_COLUMNS} FROM issues WHERE trigger_message_id = %s",
                (message_id,),
            )
            row = cur.fetchone()
        return self._row_to_issue(row) if row else None

    def update_issue(self, issue: Issue) -> Issue:
        with self.cursor() as cur:
            cur.execute(
                f"""
                UPDATE issues SET
                    status = %s,
                    question_summary = %s,
                    sentiment = %s,
                    suggested_reply = %s,
                    timeout_at = %s,
                    reply_message_id = %s,
                    replied_by = %s,
                    replied_at = %s,
                    reply_relevance_score = %s,
                    resolved_at = %s,
                    updated_at = now()
                WHERE id = %s
                RETURNING {_ISSUE_COLUMNS}
                """,
                (
                    issue.status.value,
                    issue.question_summary,
                    issue.sentiment.value,
                    issue.suggested_reply,
                    issue.timeout_at,
                    issue.reply_message_id,
                    issue.replied_by,
                    issue.replied_at,
                    issue.reply_relevance_score,
                    issue.resolved_at,
                    issue.id,
                ),
            )
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Issue {issue.id} not found")
        return self._row_to_issue(row)

    def list_issues(self, *, statuses: Optional[Iterable[IssueStatus]] = None) -> List[Issue]:
        with self.cursor() as cur:
            if statuses is None:
                cur.execute(f"SELECT {_ISSUE_COLUMNS} FROM issues ORDER BY id")
            else:
                cur.execute(
                    f"SELECT {_ISSUE_COLUMNS} FROM issues WHERE status = ANY(%s) ORDER BY id",
                    ([s.value for s in statuses],),
                )
            rows = cur.fetchall()
        return [self._row_to_issue(row) for row in rows]

    # ------------------------------------------------------------------
    # Tags

    def list_tags(self) -> List[Tag]:
        with self.cursor() as cur:
            cur.execute("SELECT id, name, usage_count FROM issue_tags ORDER BY id")
            rows = cur.fetchall()
        return [Tag(**row) for row in rows]

    def get_tag_by_name(self, name: str) -> Optional[Tag]:
        with self.cursor() as cur:
            cur.execute("SELECT id, name, usage_count FROM issue_tags WHERE name = %s", (name,))
            row = cur.fetchone()
        return Tag(**row) if row else None

    def create_tag(self, name: str) -> Tag:
        try:
            with self._conn.transaction():
                with self.cursor() as cur:
                    cur.execute(
                        "INSERT INTO issue_tags (name) VALUES (%s) RETURNING id, name, usage_count",
                        (name,),
                    )
                    row = cur.fetchone()
        except psycopg.errors.UniqueViolation as exc:
            raise DuplicateTagError(name) from exc
        return Tag(**row)

    def attach_tag(self, issue_id: int, tag_id: int) -> bool:
        with self._conn.transaction():
            with self.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO issue_tag_relations (issue_id, tag_id) VALUES (%s, %s)
                    ON CONFLICT DO NOTHING
                    RETURNING tag_id
                    """,
                    (issue_id, tag_id),
                )
                if cur.fetchone() is None:
                    return False
                cur.execute(
                    "UPDATE issue_tags SET usage_count = usage_count + 1 WHERE id = %s",
                    (tag_id,),
                )
        return True

    def list_issue_tags(self, issue_id: int) -> List[Tag]:
        with self.cursor() as cur:
            cur.execute(
                """
                SELECT t.id, t.name, t.usage_count
                FROM issue_tags t
                JOIN issue_tag_relations r ON r.tag_id = t.id
                WHERE r.issue_id = %s
                ORDER BY t.id
                """,
                (issue_id,),
            )
            rows = cur.fetchall()
        return [Tag(**row) for row in rows]

    # ------------------------------------------------------------------
    # Knowledge

    def list_knowledge_entries(self, *, active_only: bool = True) -> List[KnowledgeEntry]:
        where = "WHERE is_active" if active_only else ""
        with self.cursor() as cur:
            cur.execute(f"SELECT {_KNOWLEDGE_COLUMNS} FROM knowledge_entries {where} ORDER BY id")
            rows = cur.fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_knowledge_entry(self, entry_id: int) -> Optional[KnowledgeEntry]:
        with self.cursor() as cur:
            cur.execute(
                f"SELECT {_KNOWLEDGE_COLUMNS} FROM knowledge_entries WHERE id = %s", (entry_id,)
            )
            row = cur.fetchone()
        return self._row_to_entry(row) if row else None

    def set_knowledge_embedding(self, entry_id: int, vector: Sequence[float], provider: str) -> None:
        with self.cursor() as cur:
            cur.execute(
                "UPDATE knowledge_entries SET embedding = %s, embedding_provider = %s WHERE id = %s",
                (_vector(vector), provider, entry_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Knowledge entry {entry_id} not found")

    def vector_search(
        self,
        vector: Sequence[float],
        provider: str,
        *,
        threshold: float,
        limit: int,
        categories: Optional[Sequence[str]] = None,
    ) -> List[Tuple[KnowledgeEntry, float]]:
        # ``<=>`` is pgvector's cosine distance; similarity = 1 - distance.
        # OFFSET 0 keeps the similarity filter from being evaluated on rows of
        # another dimension before the provider and dimension checks.
        query_vec = _vector(vector)
        category_filter = "AND category = ANY(%s)" if categories else ""
        params: List[Any] = [query_vec, provider, len(query_vec)]
        if categories:
            params.append(list(categories))
        params.extend([query_vec, threshold, limit])
        sql = f"""
            SELECT * FROM (
                SELECT {_KNOWLEDGE_COLUMNS}, 1 - (embedding <=> %s) AS similarity
                FROM knowledge_entries
                WHERE is_active
                  AND embedding IS NOT NULL
                  AND embedding_provider = %s
                  AND vector_dims(embedding) = %s
                  {category_filter}
                ORDER BY embedding <=> %s
                OFFSET 0
            ) ranked
            WHERE similarity >= %s
            LIMIT %s
        """
        with self.cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [(self._row_to_entry(row), float(row["similarity"])) for row in rows]

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
        category_filter = "AND category = ANY(%s)" if categories else ""
        params: List[Any] = [lowered, lowered]
        if categories:
            params.append(list(categories))
        params.append(limit)
        # Rank before limiting: matched terms, keyword hits counting twice.
        with self.cursor() as cur:
            cur.execute(
                f"""
                SELECT * FROM (
                    SELECT {_KNOWLEDGE_COLUMNS},
                        (SELECT count(*) FROM unnest(%s::text[]) AS t(term)
                         WHERE strpos(lower(question || ' ' || answer), t.term) > 0)
                        + 2 * (SELECT count(*) FROM unnest(keywords) k WHERE lower(k) = ANY(%s))
                        AS relevance
                    FROM knowledge_entries
                    WHERE is_active
                      {category_filter}
                ) scored
                WHERE relevance > 0
                ORDER BY relevance DESC, usage_count DESC, id
                LIMIT %s
                """,
                params,
            )
            rows = cur.fetchall()
        return [self._row_to_entry(row) for row in rows]

    def increment_knowledge_usage(self, entry_id: int) -> None:
        with self.cursor() as cur:
            cur.execute(
                "UPDATE knowledge_entries SET usage_count = usage_count + 1 WHERE id = %s",
                (entry_id,),
            )

    # ------------------------------------------------------------------
    # Audit

    def add_auto_reply_log(self, log: AutoReplyLog) -> AutoReplyLog:
        with self.cursor() as cur:
            cur.execute(
                """
                INSERT INTO auto_reply_logs (
                    question, answer, matched, confidence, knowledge_id,
                    conversation_id, message_id, replied, created_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    log.question,
                    log.answer,
                    log.matched,
                    log.confidence,
                    log.knowledge_id,
                    log.conversation_id,
                    log.message_id,
                    log.replied,
                    log.created_at,
                ),
            )
            row = cur.fetchone()
        log.id = row["id"]
        return log

    # ------------------------------------------------------------------
    # Row mapping

    @staticmethod
    def _row_to_message(row: Dict[str, Any]) -> Message:
        return Message(**row)

    @staticmethod
    def _row_to_conversation(row: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=row["id"],
            external_id=row["external_id"],
            customer_id=row["customer_id"],
            auto_reply_enabled=row["auto_reply_enabled"],
            knowledge_categories=list(row["knowledge_categories"] or []),
        )

    @staticmethod
    def _row_to_customer(row: Dict[str, Any]) -> Customer:
        return Customer(
            id=row["id"],
            name=row["name"],
            sentiment=Sentiment(row["sentiment"]),
            sentiment_updated_at=row["sentiment_updated_at"],
        )

    @staticmethod
    def _row_to_issue(row: Dict[str, Any]) -> Issue:
        data = dict(row)
        data["status"] = IssueStatus(data["status"])
        data["sentiment"] = Sentiment(data["sentiment"])
        return Issue(**data)

    @staticmethod
    def _row_to_entry(row: Dict[str, Any]) -> KnowledgeEntry:
        embedding = row.get("embedding")
        if embedding is not None and hasattr(embedding, "tolist"):
            embedding = embedding.tolist()
        return KnowledgeEntry(
            id=row["id"],
            question=row["question"],
            answer=row["answer"],
            category=row["category"],
            keywords=list(row["keywords"] or []),
            embedding=list(embedding) if embedding is not None else None,
            embedding_provider=row["embedding_provider"],
            is_active=row["is_active"],
            usage_count=row["usage_count"],
        )
