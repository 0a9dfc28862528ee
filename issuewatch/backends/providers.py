"""Credential lookup for the configured AI backends."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ProviderCredentials:
    """Credentials and endpoint options resolved for one backend."""

    provider: str
    api_key: str | None
    extras: dict[str, str] = field(default_factory=dict)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


class ProviderRegistry:
    """Resolve backend credentials from explicit overrides or the environment.

    Overrides come from the dashboard settings table (``ai.<backend>.apiKey``)
    or from tests; environment variables are the fallback.
    """

    _DEFAULT_ENV_MAP: Mapping[str, str] = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "gemini": "GEMINI_API_KEY",
    }
    _SETTINGS_KEY_MAP: Mapping[str, str] = {
        "ai.openai.apiKey": "openai",
        "ai.claude.apiKey": "anthropic",
        "ai.gemini.apiKey": "gemini",
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, str]] | None = None):
        self._overrides = {
            k.lower(): dict(v) for k, v in (overrides or {}).items()
        }

    @classmethod
    def from_settings_table(cls, table: Mapping[str, object]) -> "ProviderRegistry":
        overrides: dict[str, dict[str, str]] = {}
        for key, provider in cls._SETTINGS_KEY_MAP.items():
            value = table.get(key)
            if value:
                overrides[provider] = {"api_key": str(value)}
        return cls(overrides)

    def get_credentials(self, provider: str) -> ProviderCredentials:
        """Return credentials for ``provider``; overrides win over the environment."""

        key = provider.lower()
        if key in self._overrides:
            override = self._overrides[key]
            return ProviderCredentials(
                provider=key,
                api_key=override.get("api_key") or None,
                extras={k: v for k, v in override.items() if k != "api_key"},
            )
        env_var = self._DEFAULT_ENV_MAP.get(key)
        api_key = os.getenv(env_var) if env_var else None
        if key == "gemini" and not api_key:
            api_key = os.getenv("GOOGLE_API_KEY")
        return ProviderCredentials(provider=key, api_key=api_key or None)

    def list_configured_providers(self) -> list[str]:
        providers = set(self._DEFAULT_ENV_MAP) | set(self._overrides)
        return sorted(name for name in providers if self.get_credentials(name).configured)
