"""Outbound reply delivery."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)


class ReplyDeliveryError(RuntimeError):
    """The channel did not accept the outbound reply."""


class ReplySender(ABC):
    """Send a bot reply into a conversation.

    Implementations return the channel message id (an empty string when the
    channel assigns none). ``None`` or :class:`ReplyDeliveryError` means the
    reply was not delivered.
    """

    @abstractmethod
    def send(self, conversation_id: int, text: str) -> Optional[str]:
        """Deliver ``text`` to the conversation."""


class WebhookReplySender(ReplySender):
    """POST replies to a channel gateway that owns the wire format."""

    def __init__(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self._headers = dict(headers or {})
        self.timeout = timeout
        self._session = session or requests.Session()

    def send(self, conversation_id: int, text: str) -> Optional[str]:
        try:
            response = self._session.post(
                self.url,
                json={"conversation_id": conversation_id, "text": text},
                headers=self._headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ReplyDeliveryError(f"Reply delivery failed: {exc}") from exc
        if response.status_code >= 400:
            raise ReplyDeliveryError(
                f"Reply gateway returned HTTP {response.status_code}: {response.text[:200]}"
            )
        payload: Any
        try:
            payload = response.json()
        except ValueError:
            return ""
        message_id = payload.get("message_id") if isinstance(payload, dict) else None
        return str(message_id) if message_id is not None else ""


class LoggingReplySender(ReplySender):
    """Record replies in the log instead of sending them (no gateway configured)."""

    def send(self, conversation_id: int, text: str) -> Optional[str]:
        logger.info("Reply for conversation %s (not delivered): %s", conversation_id, text)
        return None
