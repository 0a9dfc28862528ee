import json
import logging
from logging.handlers import TimedRotatingFileHandler

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from issuewatch.app_logging import APP_LOGGER_NAME, JsonFormatter, init_logging


def _clear_handlers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    return logger


@pytest.fixture
def log_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    yield tmp_path
    _clear_handlers(APP_LOGGER_NAME)
    _clear_handlers("uvicorn.access")


def test_init_logging_adds_rotating_handlers(log_dir, monkeypatch):
    monkeypatch.setenv("LOG_RETENTION_DAYS", "5")
    app_logger = _clear_handlers(APP_LOGGER_NAME)
    access_logger = _clear_handlers("uvicorn.access")

    init_logging(FastAPI())

    for logger in (app_logger, access_logger):
        handler = next(h for h in logger.handlers if isinstance(h, TimedRotatingFileHandler))
        assert handler.when == "MIDNIGHT"
        assert handler.backupCount == 5


def test_init_logging_replaces_existing_access_handlers(log_dir):
    access_logger = _clear_handlers("uvicorn.access")
    stream_handler = logging.StreamHandler()
    access_logger.addHandler(stream_handler)

    init_logging()

    assert stream_handler not in access_logger.handlers
    assert any(isinstance(h, TimedRotatingFileHandler) for h in access_logger.handlers)


def test_json_formatter_when_enabled(log_dir, monkeypatch):
    monkeypatch.setenv("LOG_JSON", "true")
    app_logger = _clear_handlers(APP_LOGGER_NAME)

    init_logging()

    assert isinstance(app_logger.handlers[0].formatter, JsonFormatter)


def test_module_loggers_reach_app_log(log_dir, app_factory):
    _clear_handlers(APP_LOGGER_NAME)
    app = app_factory(log_dir, log_request_bodies=True)

    logging.getLogger("issuewatch.analysis.service").warning("analysis finished")

    with TestClient(app) as client:
        resp = client.post(
            "/echo",
            json={"api_key": "secret", "conversation_id": 3},
            headers={"Authorization": "Bearer secret", "x-goog-api-key": "k"},
        )
        assert resp.status_code == 200

    for name in (APP_LOGGER_NAME, "uvicorn.access"):
        for handler in logging.getLogger(name).handlers:
            handler.flush()

    assert "analysis finished" in (log_dir / "app.log").read_text()
    access_line = (log_dir / "access.log").read_text().splitlines()[-1]
    data = json.loads(access_line.split(": ", 1)[1])
    assert data["headers"]["authorization"] == "***"
    assert data["headers"]["x-goog-api-key"] == "***"
    assert data["body"] == {"api_key": "***", "conversation_id": 3}
