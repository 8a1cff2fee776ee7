"""CursorProvider — the Cursor agent CLI (``cursor-agent``) in print mode."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from typing import Any

from .cli import CliProvider, run_probe, translate_stream_json
from .models import cursor_model_definitions, strip_cursor_prefix
from .types import (
    AssistantMessage,
    ExecuteOptions,
    ModelDefinition,
    ProviderMessage,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

AUTH_STATUS_TIMEOUT = 15.0

READ_ONLY_INSTRUCTIONS = (
    "CRITICAL INSTRUCTIONS:\n"
    "- Do NOT create, modify, or delete any files.\n"
    "- Do NOT run shell commands.\n"
    "- Respond with text only."
)

NO_TOOLS_INSTRUCTIONS = (
    "CRITICAL INSTRUCTIONS:\n"
    "- Do NOT use any tools.\n"
    "- Respond with text only."
)


class CursorProvider(CliProvider):
    """Cursor models, namespaced ``cursor-<id>``.

    ``cursor-agent`` has no system-prompt flag and no tool allow-list, so the
    system prompt is folded into the prompt, and tool-less calls run without
    ``--force`` (nothing is auto-approved) plus explicit instructions.
    """

    name = "cursor"
    executable = "cursor-agent"
    env_path_var = "CURSOR_AGENT_PATH"
    search_paths = ("~/.local/bin/cursor-agent", "~/.cursor/bin/cursor-agent")
    install_hint = "Install the Cursor CLI: curl https://cursor.com/install -fsS | bash"

    def build_prompt(self, options: ExecuteOptions) -> str:
        parts: list[str] = []
        if options.read_only:
            parts.append(READ_ONLY_INSTRUCTIONS)
        elif not options.effective_allowed_tools():
            parts.append(NO_TOOLS_INSTRUCTIONS)
        if options.system_prompt:
            parts.append(options.system_prompt)
        parts.append(options.prompt)
        return "\n\n".join(parts)

    def build_args(self, options: ExecuteOptions) -> list[str]:
        args = [
            "-p",
            "--output-format", "stream-json",
            "--stream-partial-output",
            "--model", strip_cursor_prefix(options.model) or "auto",
        ]
        if options.effective_allowed_tools():
            args.append("--force")
        if options.cwd:
            args += ["--workspace", options.cwd]
        args.append(self.build_prompt(options))
        return args

    def translate(self, record: dict[str, Any], state: dict[str, Any]) -> Iterable[ProviderMessage]:
        kind = record.get("type")

        if kind == "tool_call":
            if record.get("subtype") != "started":
                return []
            name, args = _tool_call_details(record.get("tool_call"))
            return [AssistantMessage(
                content=(ToolUseBlock(name=name, input=args, id=record.get("call_id", "")),),
                session_id=record.get("session_id") or "",
            )]

        messages = translate_stream_json(record)
        out: list[ProviderMessage] = []
        for message in messages:
            if isinstance(message, AssistantMessage) and message.text:
                seen = state.get("text", "")
                # With partial output the CLI closes with the whole reply again.
                if seen and message.text == seen:
                    logger.debug("cursor: dropping repeated final assistant message")
                    continue
                state["text"] = seen + message.text
            out.append(message)
        return out

    async def check_auth(self, cli_path: str) -> tuple[bool, str | None]:
        if os.environ.get("CURSOR_API_KEY"):
            return True, None
        code, out, err = await run_probe(cli_path, "status", timeout=AUTH_STATUS_TIMEOUT)
        text = f"{out}\n{err}".lower()
        if code == 0 and "not logged in" not in text and ("logged in" in text or "authenticated" in text):
            return True, None
        return False, "Not authenticated. Run `cursor-agent login` or set CURSOR_API_KEY."

    def supports_system_prompt(self) -> bool:
        return False

    def available_models(self) -> list[ModelDefinition]:
        return cursor_model_definitions()


def _tool_call_details(raw: Any) -> tuple[str, dict[str, Any]]:
    """``{"readToolCall": {"args": {...}}}`` → ``("read", {...})``."""
    if not isinstance(raw, dict) or not raw:
        return "tool", {}
    key, body = next(iter(raw.items()))
    name = key[: -len("ToolCall")] if key.endswith("ToolCall") else key
    args = body.get("args") if isinstance(body, dict) else None
    return name or "tool", args if isinstance(args, dict) else {}
