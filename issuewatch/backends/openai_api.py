"""OpenAI chat completions and embeddings through the official SDK."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Optional

from openai import APITimeoutError, OpenAI, OpenAIError

from .base import DEFAULT_TIMEOUT_SECONDS, AIBackend
from .errors import BackendError, BackendResponseError, BackendTimeoutError, BackendUnavailableError

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


class OpenAIBackend(AIBackend):
    name = "openai"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Any = None,
    ) -> None:
        super().__init__(model=model, timeout=timeout)
        if client is None:
            if not api_key:
                raise BackendUnavailableError("OpenAI API key not configured", backend=self.name)
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client
        self.embedding_model = embedding_model

    def generate(self, prompt: str, *, max_tokens: int = 1024) -> str:
        try:
            completion = self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
            )
        except APITimeoutError as exc:
            raise BackendTimeoutError(f"OpenAI timed out after {self.timeout}s", backend=self.name) from exc
        except OpenAIError as exc:
            raise BackendError(f"OpenAI request failed: {exc}", backend=self.name) from exc

        content: Any = completion.choices[0].message.content if completion.choices else None
        if isinstance(content, str) and content.strip():
            return content
        if isinstance(content, Sequence):
            combined = "".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            )
            if combined:
                return combined
        raise BackendResponseError("OpenAI completion has no text", backend=self.name)

    def embed(self, text: str) -> list[float]:
        try:
            response = self._client.embeddings.create(model=self.embedding_model, input=text)
        except APITimeoutError as exc:
            raise BackendTimeoutError(f"OpenAI timed out after {self.timeout}s", backend=self.name) from exc
        except OpenAIError as exc:
            raise BackendError(f"OpenAI embedding failed: {exc}", backend=self.name) from exc
        if not response.data:
            raise BackendResponseError("No embedding in OpenAI response", backend=self.name)
        return [float(v) for v in response.data[0].embedding]
