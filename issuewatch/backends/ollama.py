"""Local Ollama model server."""

from __future__ import annotations

from typing import Optional

import requests

from .base import DEFAULT_TIMEOUT_SECONDS, AIBackend, post_json
from .errors import BackendResponseError

DEFAULT_MODEL = "llama3.2"
DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"


class OllamaBackend(AIBackend):
    name = "ollama"

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:11434",
        model: str = DEFAULT_MODEL,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(model=model, timeout=timeout)
        self.base_url = base_url.rstrip("/")
        self.embedding_model = embedding_model
        self._session = session or requests.Session()

    def generate(self, prompt: str, *, max_tokens: int = 1024) -> str:
        data = post_json(
            self._session,
            f"{self.base_url}/api/generate",
            {
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "options": {"num_predict": max_tokens},
            },
            timeout=self.timeout,
            backend=self.name,
        )
        text = data.get("response")
        if not isinstance(text, str):
            raise BackendResponseError("Ollama response has no text", backend=self.name)
        return text

    def embed(self, text: str) -> list[float]:
        data = post_json(
            self._session,
            f"{self.base_url}/api/embeddings",
            {"model": self.embedding_model, "prompt": text},
            timeout=self.timeout,
            backend=self.name,
        )
        vector = data.get("embedding")
        if not vector:
            raise BackendResponseError("No embedding in Ollama response", backend=self.name)
        return [float(v) for v in vector]
