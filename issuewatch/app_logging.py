"""Application and access logging for the monitoring service.

- Application records (everything under the ``issuewatch`` logger) go to
  ``app.log``; HTTP access records go to ``access.log``. Both rotate at
  midnight and keep ``LOG_RETENTION_DAYS`` files.
- ``LOG_JSON=true`` switches both files to one JSON object per line.
- The access middleware writes one JSON line per request with an
  ``X-Request-Id`` (echoed back to the caller), latency and status. Header
  and body fields that look like credentials are masked; message text in
  request bodies is only logged with ``LOG_REQUEST_BODIES=true`` and is
  truncated to ``LOG_BODY_MAX_CHARS``.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_BODY_MAX_CHARS, LOG_RETENTION_DAYS, LOG_ROTATE_UTC, LOG_CONSOLE.
"""

from __future__ import annotations

import json
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

APP_LOGGER_NAME = "issuewatch"
ACCESS_LOGGER_NAME = "uvicorn.access"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - simple
        payload = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


SENSITIVE_FIELDS = {
    "authorization",
    "cookie",
    "set-cookie",
    "password",
    "client_secret",
    "x-goog-api-key",
}
SENSITIVE_MARKERS = ("token", "api_key", "api-key", "apikey", "secret")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return lowered in SENSITIVE_FIELDS or any(m in lowered for m in SENSITIVE_MARKERS)


def _scrub(data: object) -> object:
    """Mask credential-like keys at any depth of dicts and lists."""

    if isinstance(data, dict):
        return {k: ("***" if _is_sensitive(str(k)) else _scrub(v)) for k, v in data.items()}
    if isinstance(data, list):
        return [_scrub(v) for v in data]
    return data


def _truncate(data: object, limit: int) -> object:
    if isinstance(data, str) and len(data) > limit:
        return data[:limit] + "…"
    if isinstance(data, dict):
        return {k: _truncate(v, limit) for k, v in data.items()}
    if isinstance(data, list):
        return [_truncate(v, limit) for v in data]
    return data


def _install_access_logging(app: FastAPI) -> None:
    log_request_bodies = os.getenv("LOG_REQUEST_BODIES", "false").lower() == "true"
    body_limit = int(os.getenv("LOG_BODY_MAX_CHARS", "500"))
    skip_paths = {"/api/health", "/api/metrics"}
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in skip_paths:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        start = time.perf_counter()

        body_content = None
        if log_request_bodies:
            body_bytes = await request.body()

            async def receive() -> dict:  # pragma: no cover - internal
                return {"type": "http.request", "body": body_bytes, "more_body": False}

            request._receive = receive  # type: ignore[attr-defined]

            if body_bytes:
                try:
                    body_content = _truncate(_scrub(json.loads(body_bytes)), body_limit)
                except ValueError:
                    body_content = body_bytes.decode("utf-8", errors="replace")[:body_limit]

        response = await call_next(request)

        client_ip = request.headers.get("X-Forwarded-For")
        if not client_ip and request.client is not None:
            client_ip = request.client.host

        record: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
            "client_ip": client_ip,
            "headers": _scrub(dict(request.headers)),
        }
        if body_content is not None:
            record["body"] = body_content

        response.headers["X-Request-Id"] = request_id
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        access_logger.log(level, json.dumps(record, default=str))
        return response


def _rotating_handler(path: str, retention_days: int, rotate_utc: bool) -> TimedRotatingFileHandler:
    return TimedRotatingFileHandler(
        path, when="midnight", backupCount=retention_days, utc=rotate_utc, encoding="utf-8"
    )


def init_logging(app: FastAPI | None = None) -> None:
    """Configure the application and access loggers, and install the middleware."""

    log_dir = os.getenv("LOG_DIR", "logs")
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_json = os.getenv("LOG_JSON", "false").lower() == "true"
    retention_days = int(os.getenv("LOG_RETENTION_DAYS", "7"))
    rotate_utc = os.getenv("LOG_ROTATE_UTC", "false").lower() == "true"
    log_console = os.getenv("LOG_CONSOLE", "false").lower() == "true"

    os.makedirs(log_dir, exist_ok=True)
    formatter = _get_formatter(log_json)
    log_level = getattr(logging, log_level_str, logging.INFO)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if not app_logger.handlers:
        handler = _rotating_handler(os.path.join(log_dir, "app.log"), retention_days, rotate_utc)
        handler.setFormatter(formatter)
        app_logger.addHandler(handler)
        if log_console:
            console = logging.StreamHandler()
            console.setFormatter(formatter)
            app_logger.addHandler(console)
    app_logger.setLevel(log_level)

    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    handler = _rotating_handler(os.path.join(log_dir, "access.log"), retention_days, rotate_utc)
    handler.setFormatter(formatter)
    access_logger.addHandler(handler)
    access_logger.setLevel(log_level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app)
