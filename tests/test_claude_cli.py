import os
import stat

import pytest

from issuewatch.backends.claude_cli import ClaudeCliBackend
from issuewatch.backends.errors import BackendError, BackendTimeoutError, BackendUnavailableError


def _script(tmp_path, body):
    path = tmp_path / "claude"
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return str(path)


def test_command_line_shape():
    backend = ClaudeCliBackend(model="opus", executable="/usr/bin/claude")
    assert backend.command("hello") == [
        "/usr/bin/claude",
        "--print",
        "--output-format",
        "text",
        "--max-turns",
        "1",
        "--model",
        "opus",
        "hello",
    ]


def test_generate_returns_stdout(tmp_path):
    exe = _script(tmp_path, 'echo \'{"isQuestion": true, "confidence": 91}\'')
    backend = ClaudeCliBackend(executable=exe, timeout=5)

    analysis = backend.classify_question("Where is my invoice?")

    assert analysis.is_question is True
    assert analysis.confidence == 91


def test_prompt_is_passed_as_last_argument(tmp_path):
    exe = _script(tmp_path, 'for last; do :; done; printf "%s" "$last"')
    backend = ClaudeCliBackend(executable=exe, timeout=5)
    assert backend.generate("just the prompt") == "just the prompt"


def test_timeout_kills_the_child(tmp_path):
    exe = _script(tmp_path, "exec sleep 5")
    backend = ClaudeCliBackend(executable=exe, timeout=0.3)
    with pytest.raises(BackendTimeoutError) as excinfo:
        backend.generate("slow")
    assert excinfo.value.backend == "claude-cli"


def test_nonzero_exit_is_backend_error(tmp_path):
    exe = _script(tmp_path, 'echo "not logged in" >&2; exit 3')
    backend = ClaudeCliBackend(executable=exe, timeout=5)
    with pytest.raises(BackendError, match="code 3: not logged in"):
        backend.generate("hi")


def test_missing_executable_is_unavailable(tmp_path):
    backend = ClaudeCliBackend(executable=str(tmp_path / "nope"), timeout=5)
    with pytest.raises(BackendUnavailableError):
        backend.generate("hi")


def test_extra_environment_reaches_the_child(tmp_path):
    exe = _script(tmp_path, 'printf "%s" "$ISSUEWATCH_TEST_VALUE"')
    backend = ClaudeCliBackend(executable=exe, timeout=5, env={"ISSUEWATCH_TEST_VALUE": "abc"})
    assert backend.generate("x") == "abc"
    assert "ISSUEWATCH_TEST_VALUE" not in os.environ
