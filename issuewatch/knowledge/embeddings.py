"""Embedding generation for knowledge entries and queries.

Embedders are tried in order (by default Gemini API key, then Vertex AI
with the Gemini CLI OAuth login, then a local fastembed model). Vectors from
different embedders live in different spaces, so every vector carries the
name of the embedder that produced it and search only compares like with
like.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import requests
from fastembed import TextEmbedding

from ..backends.base import AIBackend, post_json
from ..backends.errors import BackendError
from ..backends.gemini import GeminiBackend
from ..backends.ollama import OllamaBackend
from ..backends.openai_api import OpenAIBackend
from ..backends.providers import ProviderRegistry
from ..models import KnowledgeEntry
from ..repository import MonitorRepository
from ..settings import MonitorSettings

logger = logging.getLogger(__name__)

ENTRY_ANSWER_CHARS = 500
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_CREDENTIALS_PATH = Path.home() / ".gemini" / "oauth_creds.json"
VERTEX_EMBEDDING_MODEL = "text-embedding-004"


class EmbeddingError(RuntimeError):
    """No embedder could produce a vector."""


@dataclass(frozen=True)
class EmbeddingResult:
    vector: List[float]
    provider: str


@dataclass
class EmbeddingStats:
    success: int = 0
    failed: int = 0
    skipped: int = 0


class Embedder(Protocol):
    name: str

    def embed(self, text: str) -> List[float]: ...


def clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def entry_embedding_text(entry: KnowledgeEntry) -> str:
    return f"Question: {entry.question}\nAnswer: {entry.answer[:ENTRY_ANSWER_CHARS]}"


# ----------------------------------------------------------------------
# Embedders


class BackendEmbedder:
    """Expose an AI backend's embedding endpoint as an embedder."""

    def __init__(self, backend: AIBackend) -> None:
        self._backend = backend
        self.name = backend.name

    def embed(self, text: str) -> List[float]:
        return self._backend.embed(text)


class VertexEmbedder:
    """Vertex AI embeddings authorised with the Gemini CLI OAuth login.

    The access token is read from the CLI's credential file; an expired
    token is refreshed at the Google token endpoint when the OAuth client
    id and secret are configured.
    """

    name = "vertex"

    def __init__(
        self,
        *,
        project_id: str,
        location: str = "us-central1",
        credentials_path: Path = DEFAULT_CREDENTIALS_PATH,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.project_id = project_id
        self.location = location
        self.credentials_path = Path(credentials_path)
        self._client_id = client_id
        self._client_secret = client_secret
        self.timeout = timeout
        self._session = session or requests.Session()
        self._clock = clock

    @property
    def endpoint(self) -> str:
        return (
            f"https://{self.location}-aiplatform.googleapis.com/v1/projects/{self.project_id}"
            f"/locations/{self.location}/publishers/google/models/{VERTEX_EMBEDDING_MODEL}:predict"
        )

    def _read_credentials(self) -> Dict[str, Any]:
        try:
            return json.loads(self.credentials_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise EmbeddingError(f"No Gemini OAuth credentials at {self.credentials_path}") from exc
        except (OSError, ValueError) as exc:
            raise EmbeddingError(f"Unreadable Gemini OAuth credentials: {exc}") from exc

    def _refresh(self, refresh_token: str) -> Optional[str]:
        if not (self._client_id and self._client_secret):
            return None
        try:
            response = self._session.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("OAuth token refresh failed: %s", exc)
            return None
        if response.status_code >= 400:
            logger.warning("OAuth token refresh returned HTTP %s", response.status_code)
            return None
        return response.json().get("access_token")

    def access_token(self) -> str:
        creds = self._read_credentials()
        expiry_ms = creds.get("expiry_date")
        expired = bool(expiry_ms) and self._clock() * 1000 >= float(expiry_ms)
        token = creds.get("access_token")
        if token and not expired:
            return token
        if creds.get("refresh_token"):
            refreshed = self._refresh(creds["refresh_token"])
            if refreshed:
                return refreshed
        if token:
            return token
        raise EmbeddingError("No usable Gemini OAuth access token")

    def embed(self, text: str) -> List[float]:
        data = post_json(
            self._session,
            self.endpoint,
            {"instances": [{"content": text}]},
            timeout=self.timeout,
            backend=self.name,
            headers={"Authorization": f"Bearer {self.access_token()}"},
        )
        predictions = data.get("predictions") or []
        values = ((predictions[0] if predictions else {}).get("embeddings") or {}).get("values")
        if not values:
            raise EmbeddingError("No embedding in Vertex AI response")
        return [float(v) for v in values]


class LocalEmbedder:
    """fastembed model running in-process; the model loads on first use."""

    name = "local"

    def __init__(self, model_name: str) -> None:
        self.model_name = model_name
        self._model: Optional[TextEmbedding] = None

    def embed(self, text: str) -> List[float]:
        if self._model is None:
            self._model = TextEmbedding(model_name=self.model_name)
        vector = list(self._model.embed([text]))[0]
        return [float(v) for v in vector]


# ----------------------------------------------------------------------
# Service


class EmbeddingService:
    def __init__(self, embedders: Sequence[Embedder]) -> None:
        self._embedders = list(embedders)

    @property
    def providers(self) -> List[str]:
        return [e.name for e in self._embedders]

    def embed(self, text: str) -> EmbeddingResult:
        cleaned = clean_text(text)
        if not cleaned:
            raise EmbeddingError("Cannot embed empty text")
        for embedder in self._embedders:
            try:
                vector = embedder.embed(cleaned)
            except (BackendError, EmbeddingError, requests.RequestException) as exc:
                logger.warning("Embedding with %s failed: %s", embedder.name, exc)
                continue
            except Exception:
                logger.exception("Embedding with %s failed unexpectedly", embedder.name)
                continue
            if not vector:
                logger.warning("Embedder %s returned an empty vector", embedder.name)
                continue
            return EmbeddingResult(vector=vector, provider=embedder.name)
        raise EmbeddingError("All embedding providers failed")

    def embed_entry(self, entry: KnowledgeEntry) -> EmbeddingResult:
        return self.embed(entry_embedding_text(entry))


def embed_all_entries(
    repository: MonitorRepository,
    service: EmbeddingService,
    *,
    force: bool = False,
    batch_size: int = 10,
    pause: float = 0.1,
    sleep: Callable[[float], None] = time.sleep,
) -> EmbeddingStats:
    """Embed every active entry; already embedded ones are skipped unless ``force``.

    One entry's failure is counted and does not stop the batch. ``pause``
    seconds separate groups of ``batch_size`` entries.
    """

    stats = EmbeddingStats()
    pending: List[KnowledgeEntry] = []
    for entry in repository.list_knowledge_entries(active_only=True):
        if entry.is_embedded and not force:
            stats.skipped += 1
        else:
            pending.append(entry)

    for start in range(0, len(pending), batch_size):
        if start:
            sleep(pause)
        for entry in pending[start : start + batch_size]:
            try:
                result = service.embed_entry(entry)
                repository.set_knowledge_embedding(entry.id, result.vector, result.provider)
            except Exception as exc:
                logger.warning("Embedding knowledge entry %s failed: %s", entry.id, exc)
                stats.failed += 1
            else:
                stats.success += 1
    logger.info(
        "Embedded knowledge entries: %d ok, %d failed, %d skipped",
        stats.success,
        stats.failed,
        stats.skipped,
    )
    return stats


def embedding_coverage(repository: MonitorRepository) -> Dict[str, float]:
    entries = repository.list_knowledge_entries(active_only=True)
    total = len(entries)
    embedded = sum(1 for e in entries if e.is_embedded)
    percentage = round(embedded / total * 100, 1) if total else 0.0
    return {"total": total, "embedded": embedded, "percentage": percentage}


def build_embedding_service(
    settings: MonitorSettings,
    registry: Optional[ProviderRegistry] = None,
) -> EmbeddingService:
    """Create the embedder chain named by ``settings.embedding_order``.

    Embedders whose credentials are missing are left out.
    """

    registry = registry or ProviderRegistry()
    embedders: List[Embedder] = []
    for name in settings.embedding_order:
        if name == "gemini":
            creds = registry.get_credentials("gemini")
            if creds.configured:
                embedders.append(
                    BackendEmbedder(GeminiBackend(api_key=creds.api_key or "", timeout=settings.ai_timeout_seconds))
                )
        elif name == "vertex":
            if settings.vertex_project_id:
                embedders.append(
                    VertexEmbedder(
                        project_id=settings.vertex_project_id,
                        location=settings.vertex_location,
                        client_id=os.getenv("GOOGLE_OAUTH_CLIENT_ID"),
                        client_secret=os.getenv("GOOGLE_OAUTH_CLIENT_SECRET"),
                        timeout=settings.ai_timeout_seconds,
                    )
                )
        elif name == "local":
            embedders.append(LocalEmbedder(settings.local_embedding_model))
        elif name == "ollama":
            embedders.append(
                BackendEmbedder(
                    OllamaBackend(base_url=settings.ollama_base_url, timeout=settings.ai_timeout_seconds)
                )
            )
        elif name == "openai":
            creds = registry.get_credentials("openai")
            if creds.configured:
                embedders.append(
                    BackendEmbedder(OpenAIBackend(api_key=creds.api_key, timeout=settings.ai_timeout_seconds))
                )
        else:
            raise ValueError(f"Unknown embedder {name!r}")
    if not embedders:
        logger.warning("No embedding provider configured; retrieval will use keyword matching only")
    return EmbeddingService(embedders)
