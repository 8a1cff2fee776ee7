import os
import sys
import textwrap
from pathlib import Path

import pytest

from providers.base import BaseProvider
from providers.types import InstallationStatus

# Make scripts/ importable
SCRIPTS_DIR = Path(__file__).parent.parent / "scripts"
sys.path.insert(0, str(SCRIPTS_DIR))


@pytest.fixture
def fake_cli(tmp_path):
    """Write an executable Python script standing in for a backend CLI.

    ``fake_cli(body)`` returns the script path; *body* is dedented Python
    with ``sys``, ``os``, ``json``, ``time`` and ``signal`` already imported.
    """
    counter = {"n": 0}

    def make(body: str, name: str | None = None) -> str:
        counter["n"] += 1
        path = tmp_path / (name or f"fake-cli-{counter['n']}")
        path.write_text(
            f"#!{sys.executable}\n"
            "import json, os, signal, sys, time\n"
            + textwrap.dedent(body)
        )
        path.chmod(0o755)
        return str(path)

    return make


@pytest.fixture
def clean_env(monkeypatch):
    """Remove credentials and CLI overrides that would leak from the host."""
    for key in (
        "ANTHROPIC_API_KEY",
        "CLAUDE_CODE_OAUTH_TOKEN",
        "CURSOR_API_KEY",
        "OPENAI_API_KEY",
        "CODEX_API_KEY",
        "CURSOR_AGENT_PATH",
        "CODEX_PATH",
        "CLAUDE_CLI_PATH",
        "AGENT_EXEC_DATA_DIR",
        "AGENT_EXEC_BACKLOG_MODEL",
        "AGENT_EXEC_AUTO_LOAD_CLAUDE_MD",
        "AGENT_EXEC_TERMINATE_GRACE",
        "AGENT_EXEC_MAX_LINE_BYTES",
    ):
        monkeypatch.delenv(key, raising=False)


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class ScriptedProvider(BaseProvider):
    """Synthetic provider yielding a fixed message list.

    ``hang=True`` blocks after the scripted messages until cancelled;
    ``raise_exc`` is raised after the messages. Every call's options are
    recorded, and ``closed`` counts streams that were finalized.
    """

    name = "scripted"

    def __init__(self, messages=(), *, hang=False, raise_exc=None):
        super().__init__()
        self.messages = list(messages)
        self.hang = hang
        self.raise_exc = raise_exc
        self.calls = []
        self.closed = 0

    async def execute_query(self, options):
        self.calls.append(options)
        try:
            for msg in self.messages:
                yield msg
            if self.raise_exc is not None:
                raise self.raise_exc
            if self.hang and options.cancel is not None:
                await options.cancel.wait()
        finally:
            self.closed += 1

    async def check_installation(self):
        return InstallationStatus(installed=True, authenticated=True)
