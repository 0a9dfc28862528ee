from datetime import datetime, timedelta, timezone

import pytest

import analyze
import query
from conftest import ScriptedBackend, StaticEmbedder
from issuewatch.backends.orchestrator import BackendOrchestrator
from issuewatch.knowledge.embeddings import EmbeddingService
from issuewatch.models import IssueDraft, IssueStatus, Sentiment
from issuewatch.repository import InMemoryMonitorRepository


class ClosableRepository(InMemoryMonitorRepository):
    closed = False

    def close(self):
        self.closed = True


@pytest.fixture
def cli_repo(monkeypatch):
    repo = ClosableRepository()
    dsns = []

    def fake_from_dsn(dsn):
        dsns.append(dsn)
        return repo

    monkeypatch.setattr(analyze.PostgresMonitorRepository, "from_dsn", staticmethod(fake_from_dsn))
    monkeypatch.setattr(query.PostgresMonitorRepository, "from_dsn", staticmethod(fake_from_dsn))
    repo.dsns = dsns
    return repo


def _use_backend(monkeypatch, backend):
    monkeypatch.setattr(
        "issuewatch.services.build_orchestrator",
        lambda settings: BackendOrchestrator([backend]),
    )


def test_analyze_run_prints_counts(cli_repo, monkeypatch, capsys):
    conversation = cli_repo.add_conversation(customer_id=cli_repo.add_customer("Acme").id)
    cli_repo.add_message(
        conversation.id,
        "cust-1",
        is_staff=False,
        content="How do I reset my password?",
        created_at=datetime.now(timezone.utc),
    )
    _use_backend(
        monkeypatch,
        ScriptedBackend(
            classify={"isQuestion": True, "confidence": 90, "summary": "Password reset"},
            sentiment={"sentiment": "neutral"},
        ),
    )

    assert analyze.main(["--dsn", "postgresql://db/test", "run"]) == 0

    out = capsys.readouterr().out
    assert "messages_analyzed: 1" in out
    assert "issues_created: 1" in out
    assert cli_repo.dsns == ["postgresql://db/test"]
    assert cli_repo.closed


def test_analyze_embed_reports_coverage(cli_repo, monkeypatch, capsys):
    cli_repo.add_knowledge_entry("How do refunds work?", "Refunds take five days.")
    cli_repo.add_knowledge_entry("Unembeddable", "No vector exists for this one.")
    embedder = StaticEmbedder({"refunds": [1.0, 0.0]})
    monkeypatch.setattr(analyze, "build_embedding_service", lambda settings: EmbeddingService([embedder]))

    analyze.main(["--dsn", "postgresql://db/test", "embed"])

    out = capsys.readouterr().out
    assert "embedded: 1  failed: 1  skipped: 0" in out
    assert "coverage: 1/2 (50.0%)" in out


def test_analyze_sweep_times_out_overdue_issues(cli_repo, capsys):
    conversation = cli_repo.add_conversation()
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    message = cli_repo.add_message(
        conversation.id, "cust-1", is_staff=False, content="Anyone there?", created_at=past
    )
    cli_repo.create_issue(
        IssueDraft(
            trigger_message_id=message.id,
            conversation_id=conversation.id,
            question_summary="Anyone there?",
            sentiment=Sentiment.NEUTRAL,
            timeout_at=past + timedelta(minutes=15),
        )
    )

    analyze.main(["--dsn", "postgresql://db/test", "sweep"])

    assert "timed out: 1" in capsys.readouterr().out
    assert cli_repo.get_issue_by_trigger(message.id).status is IssueStatus.TIMEOUT


def test_analyze_requires_a_dsn(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(SystemExit):
        analyze.main(["sweep"])


def test_query_cli_prints_the_answer(cli_repo, monkeypatch, capsys):
    cli_repo.add_knowledge_entry(
        "How do I reset my password?",
        "Use the reset link on the login page.",
        category="account",
        embedding=[1.0, 0.0],
        embedding_provider="static",
    )
    monkeypatch.setattr(
        "issuewatch.services.build_embedding_service",
        lambda settings: EmbeddingService([StaticEmbedder({"password": [1.0, 0.0]})]),
    )
    _use_backend(monkeypatch, ScriptedBackend())

    code = query.main(["--q", "reset password", "--dsn", "postgresql://db/test"])

    out = capsys.readouterr().out
    assert code == 0
    assert "Matched: yes" in out
    assert "Confidence: 100.0" in out
    assert "Source: vector" in out
    assert "Use the reset link on the login page." in out
    assert len(cli_repo.auto_reply_logs) == 1
    assert cli_repo.closed


def test_query_cli_without_match_exits_non_zero(cli_repo, monkeypatch, capsys):
    monkeypatch.setattr(
        "issuewatch.services.build_embedding_service",
        lambda settings: EmbeddingService([StaticEmbedder({})]),
    )
    _use_backend(monkeypatch, ScriptedBackend())

    code = query.main(["--q", "shipping times", "--dsn", "postgresql://db/test"])

    assert code == 1
    assert "(no answer)" in capsys.readouterr().out
