"""Google Gemini through the Generative Language REST API."""

from __future__ import annotations

from typing import Any, Optional

import requests

from .base import DEFAULT_TIMEOUT_SECONDS, AIBackend, post_json
from .errors import BackendResponseError, BackendUnavailableError

API_ROOT = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.0-flash"
# text-embedding-004 collapses CJK text to near-identical vectors
DEFAULT_EMBEDDING_MODEL = "gemini-embedding-001"


class GeminiBackend(AIBackend):
    name = "gemini"

    def __init__(
        self,
        *,
        api_key: str,
        model: str = DEFAULT_MODEL,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_key:
            raise BackendUnavailableError("Gemini API key not configured", backend=self.name)
        super().__init__(model=model, timeout=timeout)
        self.embedding_model = embedding_model
        self._api_key = api_key
        self._session = session or requests.Session()

    @property
    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key}

    def generate(self, prompt: str, *, max_tokens: int = 1024) -> str:
        data = post_json(
            self._session,
            f"{API_ROOT}/models/{self.model}:generateContent",
            {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {"maxOutputTokens": max_tokens},
            },
            timeout=self.timeout,
            backend=self.name,
            headers=self._headers,
        )
        return _candidate_text(data)

    def embed(self, text: str) -> list[float]:
        data = post_json(
            self._session,
            f"{API_ROOT}/models/{self.embedding_model}:embedContent",
            {"content": {"parts": [{"text": text}]}},
            timeout=self.timeout,
            backend=self.name,
            headers=self._headers,
        )
        values = (data.get("embedding") or {}).get("values")
        if not values:
            raise BackendResponseError("No embedding in Gemini response", backend=self.name)
        return [float(v) for v in values]


def _candidate_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        raise BackendResponseError("Gemini returned no candidates", backend=GeminiBackend.name)
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
    if not text:
        raise BackendResponseError("Gemini candidate has no text", backend=GeminiBackend.name)
    return text
