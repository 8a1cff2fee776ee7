"""ClaudeProvider — Claude Code driven in-process through claude-agent-sdk."""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import AsyncIterator
from pathlib import Path

import claude_agent_sdk
from claude_agent_sdk import (
    AssistantMessage as SdkAssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKError,
    CLINotFoundError,
    ProcessError,
    ResultMessage as SdkResultMessage,
    SystemMessage as SdkSystemMessage,
    TextBlock as SdkTextBlock,
    ToolUseBlock as SdkToolUseBlock,
    query,
)

from .auth import ClaudeAuth
from .base import BaseProvider, iterate_until_cancelled
from .cli import run_probe
from .errors import (
    ErrorCode,
    ProviderExecutionError,
    ProviderNotAuthenticatedError,
    ProviderNotInstalledError,
    classify_cli_error,
    error_from_info,
)
from .models import claude_model_definitions, resolve_model_alias, thinking_budget
from .types import (
    AssistantMessage,
    ContentBlock,
    ExecuteOptions,
    InstallationStatus,
    ModelDefinition,
    ProviderMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

# Built-in Claude Code tools; all of them are disallowed for tool-less calls.
BUILTIN_TOOLS: tuple[str, ...] = (
    "Task",
    "Bash",
    "BashOutput",
    "KillShell",
    "Glob",
    "Grep",
    "Read",
    "Edit",
    "MultiEdit",
    "Write",
    "NotebookEdit",
    "WebFetch",
    "WebSearch",
    "TodoWrite",
    "SlashCommand",
    "ExitPlanMode",
)

INSTALL_HINT = "Install Claude Code: npm install -g @anthropic-ai/claude-code"


class ClaudeProvider(BaseProvider):
    """Claude models via ``claude_agent_sdk.query``.

    The SDK owns the Claude Code subprocess; closing the ``query`` stream
    (which :func:`iterate_until_cancelled` always does) shuts it down.
    """

    name = "claude"

    def build_options(self, options: ExecuteOptions) -> ClaudeAgentOptions:
        """Translate per-call options into SDK options."""
        tools = options.effective_allowed_tools()
        kwargs: dict = {
            "model": resolve_model_alias(options.model),
            "cwd": options.cwd,
            "allowed_tools": list(tools),
        }
        if not tools:
            kwargs["disallowed_tools"] = list(BUILTIN_TOOLS)
        if options.read_only:
            kwargs["permission_mode"] = "plan"
        if options.system_prompt:
            kwargs["system_prompt"] = options.system_prompt
        if options.max_turns is not None:
            kwargs["max_turns"] = options.max_turns
        if options.setting_sources:
            kwargs["setting_sources"] = list(options.setting_sources)
        budget = thinking_budget(options.thinking_level)
        if budget:
            kwargs["max_thinking_tokens"] = budget
        if self.config.cli_path:
            kwargs["cli_path"] = self.config.cli_path
        if self.config.env:
            kwargs["env"] = dict(self.config.env)
        return ClaudeAgentOptions(**kwargs)

    async def execute_query(self, options: ExecuteOptions) -> AsyncIterator[ProviderMessage]:
        if options.is_cancelled:
            return

        sdk_options = self.build_options(options)
        logger.info(
            "claude query: model=%s cwd=%s prompt=%d chars read_only=%s tools=%d",
            sdk_options.model, options.cwd, len(options.prompt), options.read_only,
            len(sdk_options.allowed_tools),
        )

        relay = iterate_until_cancelled(query(prompt=options.prompt, options=sdk_options), options.cancel)
        try:
            async for msg in relay:
                for out in self._translate(msg):
                    yield out
        except CLINotFoundError as exc:
            raise ProviderNotInstalledError(
                str(exc) or "Claude Code CLI not found",
                provider=self.name,
                suggestion=INSTALL_HINT,
            ) from exc
        except ProcessError as exc:
            stderr = exc.stderr or ""
            info = classify_cli_error(stderr or str(exc), exc.exit_code)
            raise error_from_info(
                info, provider=self.name, exit_code=exc.exit_code, stderr=stderr,
            ) from exc
        except ClaudeSDKError as exc:
            raise ProviderExecutionError(
                str(exc), provider=self.name, code=ErrorCode.MALFORMED_OUTPUT,
            ) from exc
        finally:
            await relay.aclose()

    def _translate(self, msg: object) -> list[ProviderMessage]:
        """Map one SDK message onto protocol messages."""
        if isinstance(msg, SdkAssistantMessage):
            blocks: list[ContentBlock] = []
            for block in msg.content:
                if isinstance(block, SdkTextBlock):
                    if block.text:
                        blocks.append(TextBlock(text=block.text))
                elif isinstance(block, SdkToolUseBlock):
                    blocks.append(ToolUseBlock(name=block.name, input=dict(block.input or {}), id=block.id))
            if not blocks:
                return []
            return [AssistantMessage(content=tuple(blocks))]

        if isinstance(msg, SdkResultMessage):
            if msg.is_error or msg.subtype != "success":
                error = msg.result or msg.subtype or "error"
                info = classify_cli_error(error)
                if info.code == ErrorCode.NOT_AUTHENTICATED:
                    raise ProviderNotAuthenticatedError(
                        info.message, provider=self.name, suggestion=info.suggestion,
                    )
                return [ResultMessage(
                    subtype="error",
                    error=error,
                    session_id=msg.session_id,
                    duration_ms=msg.duration_ms,
                )]
            return [ResultMessage(
                subtype="success",
                result=msg.result or "",
                session_id=msg.session_id,
                duration_ms=msg.duration_ms,
            )]

        if isinstance(msg, SdkSystemMessage):
            data = msg.data if isinstance(msg.data, dict) else {}
            return [SystemMessage(subtype=msg.subtype, data=data)]

        # UserMessage (tool results) and stream events are not part of the protocol.
        return []

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    def resolve_cli_path(self) -> str | None:
        """Configured path, CLAUDE_CLI_PATH, PATH, then the SDK's bundled CLI."""
        if self.config.cli_path:
            return self.config.cli_path
        override = os.environ.get("CLAUDE_CLI_PATH")
        if override:
            return override
        found = shutil.which("claude")
        if found:
            return found
        bundled = Path(claude_agent_sdk.__file__).parent / "_bundled" / "claude"
        return str(bundled) if bundled.is_file() else None

    async def check_installation(self) -> InstallationStatus:
        cli_path = self.resolve_cli_path()
        if cli_path is None:
            return InstallationStatus(
                installed=False,
                error=f"Claude Code CLI not found. {INSTALL_HINT}",
                method="sdk",
            )

        code, out, _ = await run_probe(cli_path, "--version")
        version = out.strip().splitlines()[0] if code == 0 and out.strip() else None
        authenticated = await ClaudeAuth(cli_path).is_authenticated()
        return InstallationStatus(
            installed=True,
            authenticated=authenticated,
            version=version,
            error=None if authenticated else "Not authenticated. Run `claude` and log in, or set ANTHROPIC_API_KEY.",
            path=cli_path,
            method="sdk",
        )

    def available_models(self) -> list[ModelDefinition]:
        return claude_model_definitions(self.name)
