"""Failures raised by AI backends and the orchestrator."""

from __future__ import annotations

from collections.abc import Mapping


class BackendError(RuntimeError):
    """A backend call did not produce a usable result."""

    def __init__(self, message: str, *, backend: str | None = None) -> None:
        super().__init__(message)
        self.backend = backend


class BackendTimeoutError(BackendError):
    """The backend did not answer before its deadline."""


class BackendResponseError(BackendError):
    """The backend answered with text that failed strict parsing."""


class BackendUnavailableError(BackendError):
    """The backend is not configured or cannot serve the operation."""


class AllBackendsExhaustedError(BackendError):
    """Every backend in the fallback order failed for one call."""

    def __init__(self, failures: Mapping[str, BaseException]) -> None:
        self.failures = dict(failures)
        if self.failures:
            detail = "; ".join(f"{name}: {exc}" for name, exc in self.failures.items())
        else:
            detail = "no backends configured"
        super().__init__(f"All AI providers failed ({detail})")
