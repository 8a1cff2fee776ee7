"""CodexProvider — OpenAI Codex CLI in ``codex exec --json`` mode."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from typing import Any

from .cli import CliProvider, run_probe
from .models import CODEX_REASONING_EFFORT, codex_model_definitions, strip_codex_prefix
from .types import (
    AssistantMessage,
    ExecuteOptions,
    ModelDefinition,
    ProviderMessage,
    ResultMessage,
    SystemMessage,
    ToolUseBlock,
    text_message,
)

logger = logging.getLogger(__name__)

AUTH_STATUS_TIMEOUT = 15.0

NO_TOOLS_INSTRUCTIONS = (
    "CRITICAL INSTRUCTIONS:\n"
    "- Do NOT run commands or edit files.\n"
    "- Respond with text only."
)


class CodexProvider(CliProvider):
    """Codex models, namespaced ``codex-<id>`` (``codex-default`` uses the CLI default).

    The request is piped on stdin (``-`` argument). Codex reports each agent
    message as a completed item and ends the turn with ``turn.completed``,
    which carries no text, so agent messages are accumulated into the
    terminal result here.
    """

    name = "codex"
    executable = "codex"
    env_path_var = "CODEX_PATH"
    search_paths = ("~/.local/bin/codex", "/opt/homebrew/bin/codex", "/usr/local/bin/codex")
    prompt_via = "stdin"
    terminal_types = frozenset({"turn.completed", "turn.failed"})
    install_hint = "Install the Codex CLI: npm install -g @openai/codex"

    def build_args(self, options: ExecuteOptions) -> list[str]:
        args = ["exec", "--json", "--skip-git-repo-check"]
        if options.cwd:
            args += ["-C", options.cwd]
        model = strip_codex_prefix(options.model)
        if model:
            args += ["-m", model]
        sandbox = "workspace-write" if options.effective_allowed_tools() else "read-only"
        args += ["--sandbox", sandbox]
        effort = CODEX_REASONING_EFFORT.get(options.thinking_level or "")
        if effort:
            args += ["-c", f'model_reasoning_effort="{effort}"']
        args.append("-")
        return args

    def build_stdin(self, options: ExecuteOptions) -> str:
        parts: list[str] = []
        if not options.effective_allowed_tools():
            parts.append(NO_TOOLS_INSTRUCTIONS)
        if options.system_prompt:
            parts.append(options.system_prompt)
        parts.append(options.prompt)
        return "\n\n---\n\n".join(parts)

    def translate(self, record: dict[str, Any], state: dict[str, Any]) -> Iterable[ProviderMessage]:
        kind = record.get("type")
        session_id = state.get("session_id", "")

        if kind == "thread.started":
            state["session_id"] = record.get("thread_id") or ""
            return [SystemMessage(subtype="init", data=record)]

        if kind == "item.started":
            item = record.get("item") or {}
            if item.get("type") == "command_execution":
                return [AssistantMessage(
                    content=(ToolUseBlock(
                        name="shell",
                        input={"command": item.get("command", "")},
                        id=item.get("id", ""),
                    ),),
                    session_id=session_id,
                )]
            return []

        if kind == "item.completed":
            item = record.get("item") or {}
            item_type = item.get("type")
            if item_type == "agent_message":
                text = item.get("text") or ""
                if not text:
                    return []
                state.setdefault("parts", []).append(text)
                return [text_message(text, session_id=session_id)]
            if item_type == "file_change":
                return [AssistantMessage(
                    content=(ToolUseBlock(
                        name="file_change",
                        input={"changes": item.get("changes") or []},
                        id=item.get("id", ""),
                    ),),
                    session_id=session_id,
                )]
            return [SystemMessage(subtype=str(item_type or "item"), data=item)]

        if kind == "turn.completed":
            return [ResultMessage(
                subtype="success",
                result="\n\n".join(state.get("parts", [])),
                session_id=session_id,
            )]

        if kind == "turn.failed":
            error = record.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            return [ResultMessage(
                subtype="error",
                error=message or state.get("last_error") or "Turn failed",
                session_id=session_id,
            )]

        if kind == "error":
            message = str(record.get("message") or "")
            if "reconnecting" not in message.lower():
                state["last_error"] = message
            logger.warning("codex: %s", message)
            return [SystemMessage(subtype="error", data=record)]

        return [SystemMessage(subtype=str(kind or "unknown"), data=record)]

    async def check_auth(self, cli_path: str) -> tuple[bool, str | None]:
        if os.environ.get("OPENAI_API_KEY") or os.environ.get("CODEX_API_KEY"):
            return True, None
        code, out, err = await run_probe(cli_path, "login", "status", timeout=AUTH_STATUS_TIMEOUT)
        text = f"{out}\n{err}".lower()
        if code == 0 and "not logged in" not in text:
            return True, None
        return False, "Not authenticated. Run `codex login` or set OPENAI_API_KEY."

    def supports_system_prompt(self) -> bool:
        return False

    def available_models(self) -> list[ModelDefinition]:
        return codex_model_definitions()
