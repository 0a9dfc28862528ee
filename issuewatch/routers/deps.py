"""Shared FastAPI dependencies for the pipeline routers."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg
from fastapi import HTTPException, Request
from slowapi import Limiter

from ..analysis.lifecycle import InvalidTransitionError
from ..autoreply.sender import ReplySender
from ..backends.factory import build_orchestrator
from ..backends.orchestrator import BackendOrchestrator
from ..knowledge.embeddings import EmbeddingService, build_embedding_service
from ..postgres import PostgresMonitorRepository, connect
from ..repository import MonitorRepository, NotFoundError
from ..services import build_reply_sender
from ..settings import MonitorSettings, load_settings

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Key for rate limiting: first ``X-Forwarded-For`` hop, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=get_client_ip)


def get_settings() -> MonitorSettings:
    try:
        return load_settings()
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def get_repository(request: Request) -> Iterator[MonitorRepository]:
    """Yield the app-wide repository, or a per-request PostgreSQL one."""

    shared = getattr(request.app.state, "repository", None)
    if shared is not None:
        yield shared
        return
    dsn = os.getenv("DATABASE_URL")
    if not dsn:
        raise HTTPException(status_code=500, detail="DATABASE_URL not configured")
    try:
        conn = connect(dsn)
    except psycopg.Error as exc:
        logger.error("Database connection failed: %s", exc)
        raise HTTPException(status_code=503, detail="Database unavailable") from exc
    try:
        yield PostgresMonitorRepository(conn)
    finally:
        conn.close()


def get_orchestrator(request: Request) -> BackendOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is not None:
        return orchestrator
    return build_orchestrator(get_settings())


def get_embedding_service(request: Request) -> EmbeddingService:
    # Kept on the app so the local model loads once.
    service = getattr(request.app.state, "embeddings", None)
    if service is None:
        service = build_embedding_service(get_settings())
        request.app.state.embeddings = service
    return service


def get_reply_sender(request: Request) -> ReplySender:
    sender = getattr(request.app.state, "reply_sender", None)
    if sender is not None:
        return sender
    return build_reply_sender(get_settings())


@contextmanager
def translate_errors() -> Iterator[None]:
    """Map domain errors onto HTTP status codes."""

    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
