"""Runtime configuration for the monitoring pipeline.

Values come from environment variables (``.env`` is honoured through
python-dotenv) and may be overlaid by the dashboard's settings table, which
stores them under dotted keys such as ``issue.timeoutMinutes`` or
``bot.confidenceThreshold``. Pass that table as ``overrides`` to
:func:`load_settings`.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from dotenv import load_dotenv

load_dotenv()

DEFAULT_NOT_FOUND_REPLY = (
    "Sorry, I can't answer that right now. "
    "A member of our team will follow up shortly."
)
DEFAULT_PROVIDER = "claude-cli"
BACKEND_NAMES = ("claude-cli", "anthropic", "openai", "gemini", "ollama")
EMBEDDER_NAMES = ("gemini", "vertex", "local", "ollama", "openai")


@dataclass(frozen=True)
class MonitorSettings:
    issue_timeout_minutes: int = 15
    reply_threshold: int = 60
    auto_reply_enabled: bool = False
    bot_names: tuple[str, ...] = ()
    confidence_threshold: int = 50
    not_found_reply: str = DEFAULT_NOT_FOUND_REPLY
    ai_provider: str = DEFAULT_PROVIDER
    ai_timeout_seconds: float = 30.0
    analysis_fallback: bool = True
    backend_models: dict[str, str] = field(default_factory=dict)
    ollama_base_url: str = "http://localhost:11434"
    claude_cli_path: str = "claude"
    similarity_threshold: float = 0.5
    result_limit: int = 5
    embedding_order: tuple[str, ...] = ("gemini", "vertex", "local")
    embedding_batch_size: int = 10
    local_embedding_model: str = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"
    vertex_project_id: str | None = None
    vertex_location: str = "us-central1"
    reply_webhook_url: str | None = None

    def model_for(self, backend: str, default: str) -> str:
        return self.backend_models.get(backend, default)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off", ""}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _parse_percent(value: str) -> int:
    number = int(float(value))
    if not 0 <= number <= 100:
        raise ValueError(f"must be between 0 and 100, got {number}")
    return number


def _parse_positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise ValueError(f"must be positive, got {number}")
    return number


def _parse_positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise ValueError(f"must be positive, got {number}")
    return number


def _parse_similarity(value: str) -> float:
    number = float(value)
    if not 0.0 <= number <= 1.0:
        raise ValueError(f"must be between 0 and 1, got {number}")
    return number


def _parse_provider(value: str) -> str:
    name = value.strip().lower()
    if name not in BACKEND_NAMES:
        raise ValueError(f"unknown provider {value!r}; expected one of {', '.join(BACKEND_NAMES)}")
    return name


def _parse_embedding_order(value: str) -> tuple[str, ...]:
    names = tuple(name.lower() for name in _parse_list(value))
    unknown = [name for name in names if name not in EMBEDDER_NAMES]
    if unknown or not names:
        raise ValueError(f"unknown embedders {unknown or value!r}")
    return names


def _optional_str(value: str) -> str | None:
    return value.strip() or None


# dotted settings key -> (environment variable, attribute, parser)
_FIELDS: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "issue.timeoutMinutes": ("ISSUE_TIMEOUT_MINUTES", "issue_timeout_minutes", _parse_positive_int),
    "issue.replyThreshold": ("ISSUE_REPLY_THRESHOLD", "reply_threshold", _parse_percent),
    "bot.autoReply": ("BOT_AUTO_REPLY", "auto_reply_enabled", _parse_bool),
    "bot.name": ("BOT_NAME", "bot_names", _parse_list),
    "bot.confidenceThreshold": ("BOT_CONFIDENCE_THRESHOLD", "confidence_threshold", _parse_percent),
    "bot.notFoundReply": ("BOT_NOT_FOUND_REPLY", "not_found_reply", str),
    "ai.provider": ("AI_PROVIDER", "ai_provider", _parse_provider),
    "ai.timeoutSeconds": ("AI_TIMEOUT_SECONDS", "ai_timeout_seconds", _parse_positive_float),
    "ai.ollama.baseUrl": ("OLLAMA_BASE_URL", "ollama_base_url", str),
    "ai.claude.cliPath": ("CLAUDE_CLI_PATH", "claude_cli_path", str),
    "analysis.fallback": ("ANALYSIS_FALLBACK", "analysis_fallback", _parse_bool),
    "knowledge.similarityThreshold": ("KNOWLEDGE_SIMILARITY_THRESHOLD", "similarity_threshold", _parse_similarity),
    "knowledge.resultLimit": ("KNOWLEDGE_RESULT_LIMIT", "result_limit", _parse_positive_int),
    "embedding.order": ("EMBEDDING_ORDER", "embedding_order", _parse_embedding_order),
    "embedding.batchSize": ("EMBEDDING_BATCH_SIZE", "embedding_batch_size", _parse_positive_int),
    "embedding.localModel": ("LOCAL_EMBEDDING_MODEL", "local_embedding_model", str),
    "embedding.vertex.projectId": ("VERTEX_PROJECT_ID", "vertex_project_id", _optional_str),
    "embedding.vertex.location": ("VERTEX_LOCATION", "vertex_location", str),
    "reply.webhookUrl": ("REPLY_WEBHOOK_URL", "reply_webhook_url", _optional_str),
}

# ``ai.claude.model`` names the Anthropic model for both Claude variants.
_MODEL_KEYS: dict[str, tuple[str, tuple[str, ...]]] = {
    "ai.claude.model": ("CLAUDE_MODEL", ("claude-cli", "anthropic")),
    "ai.openai.model": ("OPENAI_MODEL", ("openai",)),
    "ai.gemini.model": ("GEMINI_MODEL", ("gemini",)),
    "ai.ollama.model": ("OLLAMA_MODEL", ("ollama",)),
}


def load_settings(
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
) -> MonitorSettings:
    """Build :class:`MonitorSettings` from ``env`` overlaid by ``overrides``.

    ``env`` defaults to ``os.environ``. Keys of ``overrides`` not known to the
    pipeline are ignored, because the settings table also stores dashboard
    options. Invalid values raise :class:`ValueError` naming the key.
    """

    source_env = os.environ if env is None else env
    overrides = overrides or {}
    values: dict[str, Any] = {}

    for key, (env_var, attr, parser) in _FIELDS.items():
        raw = overrides.get(key)
        origin = key
        if raw is None:
            raw = source_env.get(env_var)
            origin = env_var
        if raw is None:
            continue
        try:
            values[attr] = parser(str(raw))
        except ValueError as exc:
            raise ValueError(f"Invalid value for {origin}: {exc}") from exc

    models: dict[str, str] = {}
    for key, (env_var, backends) in _MODEL_KEYS.items():
        raw = overrides.get(key) or source_env.get(env_var)
        if raw and str(raw).strip():
            for backend in backends:
                models[backend] = str(raw).strip()
    values["backend_models"] = models

    return replace(MonitorSettings(), **values)
