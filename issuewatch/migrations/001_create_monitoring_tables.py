"""Create tables for messages, issues, tags, knowledge entries and reply logs."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001_create_monitoring_tables"
down_revision = None
branch_labels = None
depends_on = None


_TEXT_ARRAY = postgresql.ARRAY(sa.Text())


def _timestamp(name: str, *, nullable: bool = True, default: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.text("now()") if default else None,
    )


def upgrade() -> None:
    """Create the monitoring schema and the pgvector extension."""

    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("sentiment", sa.Text(), nullable=False, server_default=sa.text("'neutral'")),
        _timestamp("sentiment_updated_at"),
    )

    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_id", sa.Text(), unique=True),
        sa.Column(
            "customer_id",
            sa.Integer(),
            sa.ForeignKey("customers.id", ondelete="SET NULL"),
        ),
        sa.Column("auto_reply_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "knowledge_categories",
            _TEXT_ARRAY,
            nullable=False,
            server_default=sa.text("'{}'"),
        ),
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "conversation_id",
            sa.Integer(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sender_id", sa.Text(), nullable=False),
        sa.Column("is_staff", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("content", sa.Text()),
        _timestamp("created_at", nullable=False, default=True),
    )
    op.create_index(
        "messages_conversation_created_idx", "messages", ["conversation_id", "created_at"]
    )

    op.create_table(
        "issues",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "trigger_message_id",
            sa.Integer(),
            sa.ForeignKey("messages.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("conversation_id", sa.Integer(), sa.ForeignKey("conversations.id"), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id", ondelete="SET NULL")),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("question_summary", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("sentiment", sa.Text(), nullable=False, server_default=sa.text("'neutral'")),
        sa.Column("suggested_reply", sa.Text()),
        _timestamp("timeout_at", nullable=False),
        sa.Column("reply_message_id", sa.Integer(), sa.ForeignKey("messages.id"), unique=True),
        sa.Column("replied_by", sa.Text()),
        _timestamp("replied_at"),
        sa.Column("reply_relevance_score", sa.Float()),
        _timestamp("resolved_at"),
        _timestamp("created_at", nullable=False, default=True),
        _timestamp("updated_at", nullable=False, default=True),
    )
    op.create_index("issues_status_timeout_idx", "issues", ["status", "timeout_at"])

    op.create_table(
        "issue_tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )
    op.create_table(
        "issue_tag_relations",
        sa.Column(
            "issue_id",
            sa.Integer(),
            sa.ForeignKey("issues.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "tag_id",
            sa.Integer(),
            sa.ForeignKey("issue_tags.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    op.create_table(
        "knowledge_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=False),
        sa.Column("category", sa.Text()),
        sa.Column("keywords", _TEXT_ARRAY, nullable=False, server_default=sa.text("'{}'")),
        sa.Column("embedding_provider", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _timestamp("created_at", nullable=False, default=True),
    )
    # Dimension is left open: gemini, vertex and local embedders differ.
    op.execute("ALTER TABLE knowledge_entries ADD COLUMN embedding vector")

    op.create_table(
        "auto_reply_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text()),
        sa.Column("matched", sa.Boolean(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "knowledge_id",
            sa.Integer(),
            sa.ForeignKey("knowledge_entries.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "conversation_id",
            sa.Integer(),
            sa.ForeignKey("conversations.id", ondelete="SET NULL"),
        ),
        sa.Column("message_id", sa.Integer(), sa.ForeignKey("messages.id", ondelete="SET NULL")),
        sa.Column("replied", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at", nullable=False, default=True),
    )


def downgrade() -> None:
    """Drop the monitoring tables in dependency order."""

    op.drop_table("auto_reply_logs")
    op.drop_table("knowledge_entries")
    op.drop_table("issue_tag_relations")
    op.drop_table("issue_tags")
    op.drop_index("issues_status_timeout_idx", table_name="issues")
    op.drop_table("issues")
    op.drop_index("messages_conversation_created_idx", table_name="messages")
    op.drop_table("messages")
    op.drop_table("conversations")
    op.drop_table("customers")
