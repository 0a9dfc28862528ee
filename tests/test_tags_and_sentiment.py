from conftest import ScriptedBackend, at
from issuewatch.analysis.sentiment import SentimentAggregator
from issuewatch.analysis.tags import TagCache, TagDeduplicator
from issuewatch.backends.errors import BackendTimeoutError
from issuewatch.backends.orchestrator import BackendOrchestrator
from issuewatch.models import IssueDraft, Sentiment


def _issue(repo, conversation, message_id=1):
    return repo.create_issue(
        IssueDraft(
            trigger_message_id=message_id,
            conversation_id=conversation.id,
            question_summary="s",
            sentiment=Sentiment.NEUTRAL,
            timeout_at=at(15),
        )
    )


def test_first_tag_is_created_without_asking(repo):
    backend = ScriptedBackend()
    tagger = TagDeduplicator(BackendOrchestrator([backend]), repo)
    cache = TagCache.load(repo)

    tag = tagger.resolve("  login ", cache)

    assert tag.name == "login"
    assert cache.created == 1
    assert backend.calls == []


def test_merge_reuses_existing_tag(repo, conversation_with_customer):
    existing = repo.create_tag("login")
    backend = ScriptedBackend(tag={"similarTag": "login", "shouldMerge": True})
    tagger = TagDeduplicator(BackendOrchestrator([backend]), repo)
    cache = TagCache.load(repo)
    issue = _issue(repo, conversation_with_customer)

    attached = tagger.attach_suggested(issue, ["sign-in", "log in"], cache)

    assert [t.id for t in attached] == [existing.id]
    assert cache.created == 0
    assert [t.name for t in repo.list_tags()] == ["login"]
    assert repo.tags[existing.id].usage_count == 1
    assert "Existing tags: login" in backend.calls[0][1]


def test_merge_into_unknown_tag_creates_new_one(repo):
    repo.create_tag("billing")
    backend = ScriptedBackend(tag={"similarTag": "payments", "shouldMerge": True})
    tagger = TagDeduplicator(BackendOrchestrator([backend]), repo)
    cache = TagCache.load(repo)

    tag = tagger.resolve("refunds", cache)

    assert tag.name == "refunds"
    assert repo.get_tag_by_name("payments") is None


def test_failed_deduplication_skips_only_that_tag(repo, conversation_with_customer):
    repo.create_tag("billing")
    backend = ScriptedBackend(
        tag=[BackendTimeoutError("slow"), {"similarTag": None, "shouldMerge": False}]
    )
    tagger = TagDeduplicator(BackendOrchestrator([backend]), repo)
    cache = TagCache.load(repo)
    issue = _issue(repo, conversation_with_customer)

    attached = tagger.attach_suggested(issue, ["refunds", "invoices"], cache)

    assert [t.name for t in attached] == ["invoices"]


def test_sentiment_uses_latest_messages_oldest_first(repo, conversation_with_customer):
    customer_id = conversation_with_customer.customer_id
    for minute, text in enumerate(["first", "", "second", "third"]):
        repo.add_message(
            conversation_with_customer.id, "c", is_staff=False, content=text, created_at=at(minute)
        )
    repo.add_message(
        conversation_with_customer.id, "agent", is_staff=True, content="staff", created_at=at(9)
    )
    backend = ScriptedBackend(sentiment={"sentiment": "negative", "reason": "annoyed"})
    aggregator = SentimentAggregator(BackendOrchestrator([backend]), repo, window=2)

    assert aggregator.refresh(customer_id) is Sentiment.NEGATIVE

    prompt = backend.calls[0][1]
    assert "1. second\n2. third" in prompt
    assert "first" not in prompt.split("Recent messages:")[1]
    assert repo.customers[customer_id].sentiment is Sentiment.NEGATIVE
    assert repo.customers[customer_id].sentiment_updated_at is not None


def test_sentiment_failure_keeps_stored_value(repo, conversation_with_customer):
    customer_id = conversation_with_customer.customer_id
    repo.customers[customer_id].sentiment = Sentiment.POSITIVE
    repo.add_message(
        conversation_with_customer.id, "c", is_staff=False, content="hi", created_at=at(0)
    )
    backend = ScriptedBackend(sentiment="garbage")
    aggregator = SentimentAggregator(BackendOrchestrator([backend]), repo)

    assert aggregator.refresh(customer_id) is None
    assert repo.customers[customer_id].sentiment is Sentiment.POSITIVE


def test_sentiment_without_messages_is_skipped(repo, conversation_with_customer):
    backend = ScriptedBackend()
    aggregator = SentimentAggregator(BackendOrchestrator([backend]), repo)
    assert aggregator.refresh(conversation_with_customer.customer_id) is None
    assert backend.calls == []
