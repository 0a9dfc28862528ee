import json
import pathlib
import sys
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from issuewatch.app_logging import init_logging
from issuewatch.backends.base import AIBackend
from issuewatch.backends.orchestrator import BackendOrchestrator
from issuewatch.repository import InMemoryMonitorRepository

# Opening line of each capability prompt, used to route scripted answers.
PROMPT_MARKERS = {
    "classify": "Decide whether the following customer message",
    "evaluate": "Judge whether the reply",
    "tag": "Decide whether a new tag",
    "sentiment": "Assess the overall sentiment",
    "synthesize": "You are a customer support assistant",
}

T0 = datetime(2024, 5, 6, 9, 0, tzinfo=timezone.utc)


class ScriptedBackend(AIBackend):
    """Backend whose answers are scripted per operation.

    A script entry is a dict (returned as JSON), a string (returned as is),
    an exception instance (raised), or a callable taking the prompt and
    returning one of those. A list is consumed one item per call.
    """

    def __init__(self, name="fake", **scripts):
        super().__init__(model="fake-model", timeout=1)
        self.name = name
        self.scripts = scripts
        self.calls = []
        self.embeddings = {}

    def _operation(self, prompt):
        for operation, marker in PROMPT_MARKERS.items():
            if prompt.startswith(marker):
                return operation
        raise AssertionError(f"unrecognised prompt: {prompt[:60]!r}")

    def generate(self, prompt, *, max_tokens=1024):
        operation = self._operation(prompt)
        self.calls.append((operation, prompt))
        script = self.scripts.get(operation)
        if script is None:
            raise AssertionError(f"{self.name} has no script for {operation}")
        if isinstance(script, list):
            script = script.pop(0)
        if callable(script) and not isinstance(script, Exception):
            script = script(prompt)
        if isinstance(script, Exception):
            raise script
        if isinstance(script, dict):
            return json.dumps(script)
        return script

    def embed(self, text):
        for needle, vector in self.embeddings.items():
            if needle in text:
                return list(vector)
        return super().embed(text)

    def operations(self):
        return [op for op, _ in self.calls]


class StaticEmbedder:
    """Embedder returning fixed vectors for texts containing a given needle."""

    def __init__(self, vectors, name="static"):
        self.vectors = vectors
        self.name = name
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        for needle, vector in self.vectors.items():
            if needle in text:
                return list(vector)
        raise RuntimeError(f"no vector for {text[:40]!r}")


class RecordingSender:
    def __init__(self, result="msg-1", error=None):
        self.result = result
        self.error = error
        self.sent = []

    def send(self, conversation_id, text):
        self.sent.append((conversation_id, text))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def repo():
    return InMemoryMonitorRepository()


@pytest.fixture
def make_backend():
    return ScriptedBackend


@pytest.fixture
def orchestrator_for():
    def _build(*backends):
        return BackendOrchestrator(list(backends))

    return _build


@pytest.fixture
def conversation_with_customer(repo):
    customer = repo.add_customer("Acme")
    conversation = repo.add_conversation(customer_id=customer.id, external_id="chat-1")
    return conversation


def at(minutes=0, seconds=0):
    return T0 + timedelta(minutes=minutes, seconds=seconds)


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app
