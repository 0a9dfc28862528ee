"""Anthropic Messages API through the official SDK."""

from __future__ import annotations

from typing import Any, Optional

import anthropic

from .base import DEFAULT_TIMEOUT_SECONDS, AIBackend
from .errors import BackendError, BackendResponseError, BackendTimeoutError, BackendUnavailableError

DEFAULT_MODEL = "claude-sonnet-4-5"


class AnthropicBackend(AIBackend):
    name = "anthropic"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Any = None,
    ) -> None:
        super().__init__(model=model, timeout=timeout)
        if client is None:
            if not api_key:
                raise BackendUnavailableError("Anthropic API key not configured", backend=self.name)
            client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client

    def generate(self, prompt: str, *, max_tokens: int = 1024) -> str:
        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as exc:
            raise BackendTimeoutError(f"Anthropic timed out after {self.timeout}s", backend=self.name) from exc
        except anthropic.AnthropicError as exc:
            raise BackendError(f"Anthropic request failed: {exc}", backend=self.name) from exc

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text:
            raise BackendResponseError("Unexpected response type from Anthropic", backend=self.name)
        return text
