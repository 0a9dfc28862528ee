import pytest
import requests

from issuewatch.autoreply.sender import LoggingReplySender, ReplyDeliveryError, WebhookReplySender


class _Response:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.text = "error body"

    def json(self):
        if self._payload is None:
            raise ValueError("empty")
        return self._payload


class _Session:
    def __init__(self, outcome):
        self.outcome = outcome
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append((url, json, headers))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def test_webhook_returns_gateway_message_id():
    session = _Session(_Response(payload={"message_id": 991}))
    sender = WebhookReplySender("http://gw/send", headers={"X-Token": "t"}, session=session)

    assert sender.send(7, "hello") == "991"
    assert session.posts == [("http://gw/send", {"conversation_id": 7, "text": "hello"}, {"X-Token": "t"})]


def test_webhook_without_message_id_still_counts_as_delivered():
    sender = WebhookReplySender("http://gw/send", session=_Session(_Response()))
    assert sender.send(7, "hello") == ""


@pytest.mark.parametrize("outcome", [_Response(status_code=502), requests.ConnectionError("down")])
def test_webhook_failures_raise(outcome):
    sender = WebhookReplySender("http://gw/send", session=_Session(outcome))
    with pytest.raises(ReplyDeliveryError):
        sender.send(7, "hello")


def test_logging_sender_does_not_deliver(caplog):
    with caplog.at_level("INFO", logger="issuewatch.autoreply.sender"):
        assert LoggingReplySender().send(3, "text") is None
    assert "not delivered" in caplog.text
