"""FastAPI application wiring for issuewatch.

- Configures logging, optional CORS, Prometheus metrics and rate limiting.
- Mounts the analysis, inbound event, knowledge and issue routers.
- Without an injected repository every request opens its own PostgreSQL
  connection from ``DATABASE_URL``; tests pass an in-memory repository and
  fake backends to :func:`create_app`.
"""

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .autoreply.sender import ReplySender
from .backends.orchestrator import BackendOrchestrator
from .knowledge.embeddings import EmbeddingService
from .repository import MonitorRepository
from .routers import analysis, events, issues, knowledge
from .routers.deps import limiter
from .settings import load_settings

logger = logging.getLogger(__name__)


def create_app(
    repository: MonitorRepository | None = None,
    orchestrator: BackendOrchestrator | None = None,
    embeddings: EmbeddingService | None = None,
    reply_sender: ReplySender | None = None,
) -> FastAPI:
    """Build the API; any collaborator left as ``None`` is created per request."""

    app = FastAPI(title="issuewatch", version=__version__)
    init_logging(app)

    app.state.repository = repository
    app.state.orchestrator = orchestrator
    app.state.embeddings = embeddings
    app.state.reply_sender = reply_sender

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    dashboard_origins = os.getenv("DASHBOARD_ORIGINS")
    if dashboard_origins:
        origins = [o.strip() for o in dashboard_origins.split(",") if o.strip()]
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(analysis.router)
    app.include_router(events.router)
    app.include_router(knowledge.router)
    app.include_router(issues.router)

    Instrumentator().instrument(app).expose(
        app, include_in_schema=False, endpoint="/api/metrics"
    )

    @app.get("/api/health")
    async def health():
        """Liveness probe with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    @app.get("/api/config")
    def config():
        """Non-secret pipeline configuration for the dashboard."""
        settings = load_settings()
        return {
            "ai_provider": settings.ai_provider,
            "auto_reply_enabled": settings.auto_reply_enabled,
            "confidence_threshold": settings.confidence_threshold,
            "reply_threshold": settings.reply_threshold,
            "issue_timeout_minutes": settings.issue_timeout_minutes,
            "embedding_order": list(settings.embedding_order),
        }

    if repository is None and not os.getenv("DATABASE_URL"):
        logger.warning("DATABASE_URL is not set; data routes will fail until it is configured")
    return app


app = create_app()
