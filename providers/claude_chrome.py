"""ClaudeChromeProvider — Claude Code driving the user's Chrome via Claude in Chrome."""

from __future__ import annotations

import logging
import re
import shutil
import sys
from collections.abc import AsyncIterator, Iterable
from pathlib import Path
from typing import Any

from .auth import ClaudeAuth
from .cli import CliProvider, translate_stream_json
from .errors import DEFAULT_ERROR_PATTERNS, ErrorCode, ErrorPattern, ProviderNotInstalledError
from .models import CHROME_DEFAULT_ID, CHROME_PREFIX, claude_model_definitions, strip_chrome_prefix, thinking_budget
from .types import (
    ExecuteOptions,
    InstallationStatus,
    ModelDefinition,
    ProviderMessage,
)

logger = logging.getLogger(__name__)

CHROME_BINARIES = (
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "chrome",
)

CHROME_APP_PATHS = {
    "darwin": (
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "~/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "/Applications/Chromium.app/Contents/MacOS/Chromium",
    ),
    "win32": (
        r"C:\Program Files\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
    ),
}

CHROME_HINT = "Install Google Chrome and the Claude in Chrome extension."

CHROME_ERROR_PATTERNS: tuple[ErrorPattern, ...] = (
    (
        re.compile(r"(chrome|chromium).{0,40}(not found|not installed|could not be found)", re.I),
        ErrorCode.CHROME_NOT_FOUND, False, CHROME_HINT,
    ),
    (
        re.compile(r"extension.{0,40}(not connected|not installed|not found|disconnected)|"
                   r"no (browser|chrome) connection", re.I),
        ErrorCode.EXTENSION_NOT_CONNECTED, True,
        "Open Chrome and make sure the Claude in Chrome extension is enabled and signed in.",
    ),
) + DEFAULT_ERROR_PATTERNS


def find_chrome() -> str | None:
    """Locate a Chrome or Chromium binary."""
    for name in CHROME_BINARIES:
        found = shutil.which(name)
        if found:
            return found
    for candidate in CHROME_APP_PATHS.get(sys.platform, ()):
        path = Path(candidate).expanduser()
        if path.is_file():
            return str(path)
    return None


class ClaudeChromeProvider(CliProvider):
    """Claude models with browser tools, ids ``claude-chrome`` or ``chrome-<alias>``.

    Runs the Claude Code CLI in print mode with ``--chrome``; output is the
    same stream-json the SDK consumes.
    """

    name = "claude-chrome"
    executable = "claude"
    env_path_var = "CLAUDE_CLI_PATH"
    search_paths = ("~/.claude/local/claude", "~/.local/bin/claude")
    error_patterns = CHROME_ERROR_PATTERNS
    install_hint = "Install Claude Code: npm install -g @anthropic-ai/claude-code"

    def build_args(self, options: ExecuteOptions) -> list[str]:
        args = [
            "-p", options.prompt,
            "--chrome",
            "--output-format", "stream-json",
            "--verbose",
            "--model", strip_chrome_prefix(options.model),
        ]
        tools = options.effective_allowed_tools()
        if tools:
            args += ["--allowedTools", ",".join(tools)]
        else:
            # An empty allow-list would otherwise leave every tool available.
            args += ["--tools", ""]
        if options.read_only:
            args += ["--permission-mode", "plan"]
        if options.system_prompt:
            args += ["--system-prompt", options.system_prompt]
        if options.max_turns is not None:
            args += ["--max-turns", str(options.max_turns)]
        if options.setting_sources:
            args += ["--setting-sources", ",".join(options.setting_sources)]
        return args

    def build_env(self, options: ExecuteOptions) -> dict[str, str]:
        budget = thinking_budget(options.thinking_level)
        return {"MAX_THINKING_TOKENS": str(budget)} if budget else {}

    def translate(self, record: dict[str, Any], state: dict[str, Any]) -> Iterable[ProviderMessage]:
        return translate_stream_json(record)

    async def execute_query(self, options: ExecuteOptions) -> AsyncIterator[ProviderMessage]:
        if find_chrome() is None:
            raise ProviderNotInstalledError(
                "Chrome not found",
                provider=self.name,
                code=ErrorCode.CHROME_NOT_FOUND,
                suggestion=CHROME_HINT,
            )
        messages = super().execute_query(options)
        try:
            async for message in messages:
                yield message
        finally:
            await messages.aclose()

    async def check_installation(self) -> InstallationStatus:
        status = await super().check_installation()
        if not status.installed:
            return status
        if find_chrome() is None:
            return InstallationStatus(
                installed=False,
                version=status.version,
                error=f"Chrome not found. {CHROME_HINT}",
                path=status.path,
            )
        return status

    async def check_auth(self, cli_path: str) -> tuple[bool, str | None]:
        if await ClaudeAuth(cli_path).is_authenticated():
            return True, None
        return False, "Not authenticated. Run `claude` and log in, or set ANTHROPIC_API_KEY."

    def available_models(self) -> list[ModelDefinition]:
        models = [
            ModelDefinition(
                id=CHROME_DEFAULT_ID,
                name="Claude in Chrome",
                provider=self.name,
                description="Default Claude model driving your browser",
                supports_thinking=True,
                default=True,
            )
        ]
        for definition in claude_model_definitions(self.name):
            models.append(ModelDefinition(
                id=f"{CHROME_PREFIX}{definition.id}",
                name=f"{definition.name} (Chrome)",
                provider=self.name,
                description=definition.description,
                supports_thinking=True,
            ))
        return models
