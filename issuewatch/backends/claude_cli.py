"""Claude Code CLI run as a one-shot subprocess.

The CLI authenticates with the operator's OAuth login, so no API key is
needed. Each call spawns ``claude --print`` with a hard deadline; the child
is killed and reaped on every exit path.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping
from typing import Optional

from .base import DEFAULT_TIMEOUT_SECONDS, AIBackend
from .errors import BackendError, BackendTimeoutError, BackendUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sonnet"


class ClaudeCliBackend(AIBackend):
    name = "claude-cli"

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        executable: str = "claude",
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(model=model, timeout=timeout)
        self.executable = executable
        self._env = dict(env) if env is not None else None

    def command(self, prompt: str) -> list[str]:
        return [
            self.executable,
            "--print",
            "--output-format",
            "text",
            "--max-turns",
            "1",
            "--model",
            self.model,
            prompt,
        ]

    def generate(self, prompt: str, *, max_tokens: int = 1024) -> str:
        # The CLI has no output-token flag; max_tokens is accepted for the common contract.
        env = {**os.environ, **self._env} if self._env is not None else None
        try:
            process = subprocess.Popen(
                self.command(prompt),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
            )
        except OSError as exc:
            raise BackendUnavailableError(
                f"Failed to spawn Claude CLI: {exc}", backend=self.name
            ) from exc

        try:
            stdout, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise BackendTimeoutError(
                f"Claude CLI timed out after {self.timeout}s", backend=self.name
            ) from exc
        finally:
            if process.poll() is None:
                process.kill()
                process.communicate()

        if process.returncode != 0:
            detail = (stderr or "").strip()[:200]
            raise BackendError(
                f"Claude CLI exited with code {process.returncode}: {detail}",
                backend=self.name,
            )
        output = (stdout or "").strip()
        logger.debug("Claude CLI answered with %d characters", len(output))
        return output
