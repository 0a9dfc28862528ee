"""Build backends and the orchestrator from configuration."""

from __future__ import annotations

import logging
from typing import Optional

from ..settings import BACKEND_NAMES, MonitorSettings
from .anthropic_api import AnthropicBackend
from .anthropic_api import DEFAULT_MODEL as ANTHROPIC_DEFAULT_MODEL
from .base import AIBackend
from .claude_cli import DEFAULT_MODEL as CLAUDE_CLI_DEFAULT_MODEL
from .claude_cli import ClaudeCliBackend
from .gemini import DEFAULT_MODEL as GEMINI_DEFAULT_MODEL
from .gemini import GeminiBackend
from .ollama import DEFAULT_MODEL as OLLAMA_DEFAULT_MODEL
from .ollama import OllamaBackend
from .openai_api import DEFAULT_MODEL as OPENAI_DEFAULT_MODEL
from .openai_api import OpenAIBackend
from .orchestrator import BackendOrchestrator
from .providers import ProviderRegistry

logger = logging.getLogger(__name__)

FALLBACK_ORDER = ("claude-cli", "anthropic", "openai", "gemini", "ollama")


def create_backend(
    name: str,
    settings: MonitorSettings,
    registry: Optional[ProviderRegistry] = None,
) -> Optional[AIBackend]:
    """Instantiate backend ``name`` or return ``None`` when it lacks credentials."""

    registry = registry or ProviderRegistry()
    timeout = settings.ai_timeout_seconds
    if name == "claude-cli":
        return ClaudeCliBackend(
            model=settings.model_for(name, CLAUDE_CLI_DEFAULT_MODEL),
            timeout=timeout,
            executable=settings.claude_cli_path,
        )
    if name == "ollama":
        return OllamaBackend(
            base_url=settings.ollama_base_url,
            model=settings.model_for(name, OLLAMA_DEFAULT_MODEL),
            timeout=timeout,
        )

    credentials = registry.get_credentials(name)
    if not credentials.configured:
        return None
    if name == "anthropic":
        return AnthropicBackend(
            api_key=credentials.api_key,
            model=settings.model_for(name, ANTHROPIC_DEFAULT_MODEL),
            timeout=timeout,
        )
    if name == "openai":
        return OpenAIBackend(
            api_key=credentials.api_key,
            model=settings.model_for(name, OPENAI_DEFAULT_MODEL),
            timeout=timeout,
        )
    if name == "gemini":
        return GeminiBackend(
            api_key=credentials.api_key,  # type: ignore[arg-type]
            model=settings.model_for(name, GEMINI_DEFAULT_MODEL),
            timeout=timeout,
        )
    raise ValueError(f"Unknown AI backend {name!r}; expected one of {', '.join(BACKEND_NAMES)}")


def build_orchestrator(
    settings: MonitorSettings,
    registry: Optional[ProviderRegistry] = None,
) -> BackendOrchestrator:
    """Return an orchestrator with the configured primary followed by the fallbacks."""

    registry = registry or ProviderRegistry()
    order = [settings.ai_provider] + [n for n in FALLBACK_ORDER if n != settings.ai_provider]
    backends = []
    for name in order:
        backend = create_backend(name, settings, registry)
        if backend is None:
            logger.debug("Skipping AI backend %s: no credentials", name)
            continue
        backends.append(backend)
    if backends[0].name != settings.ai_provider:
        logger.warning(
            "Configured AI provider %s is not available; using %s as primary",
            settings.ai_provider,
            backends[0].name,
        )
    return BackendOrchestrator(backends)
