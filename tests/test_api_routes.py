from datetime import datetime, timezone

import pytest
from starlette.testclient import TestClient

from conftest import RecordingSender, ScriptedBackend, StaticEmbedder
from issuewatch.backends.orchestrator import BackendOrchestrator
from issuewatch.knowledge.embeddings import EmbeddingService
from issuewatch.main import create_app
from issuewatch.models import IssueDraft, IssueStatus, Sentiment

QUESTION = "How do I reset my password?"


@pytest.fixture
def backend():
    return ScriptedBackend(
        classify={"isQuestion": True, "confidence": 90, "summary": "Password reset", "suggestedTags": ["account"]},
        evaluate={"relevanceScore": 75},
        sentiment={"sentiment": "neutral"},
    )


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def client(monkeypatch, tmp_path, repo, backend, sender):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("BOT_AUTO_REPLY", "true")
    monkeypatch.setenv("BOT_NAME", "Helper")
    monkeypatch.delenv("AI_PROVIDER", raising=False)
    app = create_app(
        repository=repo,
        orchestrator=BackendOrchestrator([backend]),
        embeddings=EmbeddingService([StaticEmbedder({"reset": [1, 0], "Reset": [1, 0]}, name="static")]),
        reply_sender=sender,
    )
    with TestClient(app) as test_client:
        yield test_client


def test_health_and_version(client):
    assert client.get("/api/health").json() == {"status": "ok"}
    body = client.get("/api/version").json()
    assert body["version"]


def test_inbound_event_auto_replies(client, repo, sender, conversation_with_customer):
    repo.add_knowledge_entry(QUESTION, "Use the reset link.", embedding=[1, 0], embedding_provider="static")

    resp = client.post(
        "/api/events",
        json={
            "conversation_id": conversation_with_customer.id,
            "external_party_id": "cust-1",
            "text": QUESTION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["processed"] is True
    assert body["replied"] is True
    assert body["knowledge"]["matched"] is True
    assert sender.sent == [(conversation_with_customer.id, "Use the reset link.")]

    issue = client.get(f"/api/issues/{body['issue_id']}").json()
    assert issue["status"] == "REPLIED"


def test_naive_event_timestamp_is_read_as_utc(client, repo, conversation_with_customer):
    resp = client.post(
        "/api/events",
        json={
            "conversation_id": conversation_with_customer.id,
            "external_party_id": "cust-1",
            "text": QUESTION,
            "timestamp": "2024-05-06T09:00:00",
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    issue = repo.issues[body["issue_id"]]
    assert issue.timeout_at == datetime(2024, 5, 6, 9, 15, tzinfo=timezone.utc)

    read = client.get(f"/api/issues/{body['issue_id']}")
    assert read.status_code == 200
    assert read.json()["status"] == "TIMEOUT"


def test_analysis_run_accepts_naive_since(client, repo, conversation_with_customer):
    repo.add_message(
        conversation_with_customer.id,
        "cust",
        is_staff=False,
        content=QUESTION,
        created_at=datetime.now(timezone.utc),
    )

    resp = client.post("/api/analysis/run", json={"since": "2024-05-06T09:00:00"})

    assert resp.status_code == 200
    assert resp.json()["messages_analyzed"] == 1


def test_knowledge_search_and_validation(client, repo):
    repo.add_knowledge_entry(QUESTION, "Use the reset link.", category="account")

    resp = client.post("/api/knowledge/search", json={"query": QUESTION})
    assert resp.status_code == 200
    assert resp.json()["matched"] is True
    assert resp.json()["source"] == "keyword"
    assert len(repo.auto_reply_logs) == 1

    assert client.post("/api/knowledge/search", json={"query": ""}).status_code == 422
    assert client.post("/api/knowledge/search", json={"query": "   "}).status_code == 400


def test_embed_and_coverage(client, repo):
    repo.add_knowledge_entry("Reset password", "Use the link")
    repo.add_knowledge_entry("Unrelated", "No vector for this one")

    stats = client.post("/api/knowledge/embed", json={}).json()
    assert stats == {"success": 1, "failed": 1, "skipped": 0}

    coverage = client.get("/api/knowledge/coverage").json()
    assert coverage == {"total": 2, "embedded": 1, "percentage": 50.0}


def test_analysis_run(client, repo, conversation_with_customer):
    now = datetime.now(timezone.utc)
    repo.add_message(conversation_with_customer.id, "cust", is_staff=False, content=QUESTION, created_at=now)

    resp = client.post("/api/analysis/run", json={"conversation_id": conversation_with_customer.id})

    assert resp.status_code == 200
    assert resp.json()["issues_created"] == 1
    issue = next(iter(repo.issues.values()))
    assert client.get(f"/api/issues/{issue.id}").json()["tags"] == ["account"]


def _old_issue(repo, conversation, status=IssueStatus.PENDING):
    message = repo.add_message(
        conversation.id,
        "cust",
        is_staff=False,
        content=QUESTION,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    return repo.create_issue(
        IssueDraft(
            trigger_message_id=message.id,
            conversation_id=conversation.id,
            question_summary="old",
            sentiment=Sentiment.NEUTRAL,
            timeout_at=datetime(2024, 1, 1, 0, 15, tzinfo=timezone.utc),
            status=status,
        )
    )


def test_reading_issue_applies_timeout(client, repo, conversation_with_customer):
    issue = _old_issue(repo, conversation_with_customer)
    assert client.get(f"/api/issues/{issue.id}").json()["status"] == "TIMEOUT"


def test_issue_status_updates(client, repo, conversation_with_customer):
    issue = _old_issue(repo, conversation_with_customer, status=IssueStatus.REPLIED)

    resp = client.put(f"/api/issues/{issue.id}/status", json={"status": "RESOLVED"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "RESOLVED"
    assert resp.json()["resolved_at"] is not None

    resp = client.put(f"/api/issues/{issue.id}/status", json={"status": "IGNORED"})
    assert resp.status_code == 409


def test_issue_errors(client):
    assert client.get("/api/issues/999").status_code == 404
    assert client.put("/api/issues/1/status", json={"status": "BOGUS"}).status_code == 422


def test_metrics_exposed(client):
    resp = client.get("/api/metrics")
    assert resp.status_code == 200
