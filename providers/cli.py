"""CliProvider — base class for backends driven through an external CLI."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from abc import abstractmethod
from collections.abc import AsyncIterator, Iterable
from pathlib import Path
from typing import Any

from .base import BaseProvider
from .errors import DEFAULT_ERROR_PATTERNS, ErrorPattern, ProviderNotInstalledError
from .spawn import SpawnStrategy
from .types import (
    AssistantMessage,
    CliSpawnConfig,
    ContentBlock,
    ExecuteOptions,
    InstallationStatus,
    ProviderMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

VERSION_TIMEOUT = 10.0


class CliProvider(BaseProvider):
    """Shared plumbing for CLI backends.

    Subclasses describe *how* to call the binary (``build_args``,
    ``build_stdin``) and *how* to read it (``translate``); process lifecycle
    and framing are delegated to :class:`SpawnStrategy`.
    """

    executable: str = ""
    env_path_var: str | None = None
    search_paths: tuple[str, ...] = ()
    framing: str = "ndjson"
    prompt_via: str = "argument"
    terminal_types: frozenset[str] = frozenset({"result"})
    error_patterns: tuple[ErrorPattern, ...] = DEFAULT_ERROR_PATTERNS
    install_hint: str | None = None

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def build_args(self, options: ExecuteOptions) -> list[str]:
        """Arguments following the executable."""
        raise NotImplementedError

    def build_stdin(self, options: ExecuteOptions) -> str | None:
        """Request payload piped on stdin, or None for argument-only calls."""
        return None

    @abstractmethod
    def translate(self, record: dict[str, Any], state: dict[str, Any]) -> Iterable[ProviderMessage]:
        """Map one backend record onto protocol messages."""
        raise NotImplementedError

    def build_env(self, options: ExecuteOptions) -> dict[str, str]:
        """Per-call environment overrides layered over the configured ones."""
        return {}

    async def check_auth(self, cli_path: str) -> tuple[bool, str | None]:
        """Return (authenticated, error). Default: assume authenticated."""
        return True, None

    # ------------------------------------------------------------------
    # Binary discovery
    # ------------------------------------------------------------------

    def resolve_cli_path(self) -> str | None:
        """Configured path, env override, PATH lookup, then known locations."""
        if self.config.cli_path:
            return self.config.cli_path
        if self.env_path_var:
            override = os.environ.get(self.env_path_var)
            if override:
                return override
        found = shutil.which(self.executable)
        if found:
            return found
        for candidate in self.search_paths:
            path = Path(candidate).expanduser()
            if path.is_file() and os.access(path, os.X_OK):
                return str(path)
        return None

    def spawn_config(self, cli_path: str, env: dict[str, str] | None = None) -> CliSpawnConfig:
        return CliSpawnConfig(
            executable=cli_path,
            env={**self.config.env, **(env or {})},
            framing=self.framing,  # type: ignore[arg-type]
            prompt_via=self.prompt_via,  # type: ignore[arg-type]
            terminal_types=self.terminal_types,
        )

    def strategy(self, cli_path: str, env: dict[str, str] | None = None) -> SpawnStrategy:
        return SpawnStrategy(
            self.spawn_config(cli_path, env),
            provider=self.name,
            terminate_grace=self.config.terminate_grace,
            max_line_bytes=self.config.max_line_bytes,
            error_patterns=self.error_patterns,
            install_hint=self.install_hint,
        )

    # ------------------------------------------------------------------
    # Provider contract
    # ------------------------------------------------------------------

    async def execute_query(self, options: ExecuteOptions) -> AsyncIterator[ProviderMessage]:
        cli_path = self.resolve_cli_path()
        if cli_path is None:
            raise ProviderNotInstalledError(
                f"{self.executable} CLI not found",
                provider=self.name,
                suggestion=self.install_hint,
            )

        args = self.build_args(options)
        stdin_payload = self.build_stdin(options) if self.prompt_via == "stdin" else None
        logger.info(
            "%s query: model=%s cwd=%s prompt=%d chars read_only=%s",
            self.name, options.model, options.cwd, len(options.prompt), options.read_only,
        )

        state: dict[str, Any] = {}
        records = self.strategy(cli_path, self.build_env(options)).stream(
            args,
            cwd=options.cwd or None,
            cancel=options.cancel,
            stdin_payload=stdin_payload,
        )
        try:
            async for record in records:
                for message in self.translate(record, state):
                    yield message
        finally:
            await records.aclose()

    async def check_installation(self) -> InstallationStatus:
        cli_path = self.resolve_cli_path()
        if cli_path is None:
            return InstallationStatus(
                installed=False,
                error=f"{self.executable} CLI not found. {self.install_hint or ''}".strip(),
            )
        version = await self.read_version(cli_path)
        authenticated, error = await self.check_auth(cli_path)
        return InstallationStatus(
            installed=True,
            authenticated=authenticated,
            version=version,
            error=error,
            path=cli_path,
            method="cli",
        )

    async def read_version(self, cli_path: str) -> str | None:
        code, out, _ = await run_probe(cli_path, "--version")
        if code != 0:
            return None
        return out.strip().splitlines()[0] if out.strip() else None


async def run_probe(
    *cmd: str, timeout: float = VERSION_TIMEOUT, env: dict[str, str] | None = None,
) -> tuple[int, str, str]:
    """Run a short-lived diagnostic command. Returns (code, stdout, stderr).

    A missing binary or a timeout yields code -1 rather than raising.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except (FileNotFoundError, PermissionError) as exc:
        return -1, "", str(exc)
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return -1, "", f"{cmd[0]} timed out after {timeout}s"
    return (
        proc.returncode if proc.returncode is not None else -1,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


# ---------------------------------------------------------------------------
# Claude-style stream-json records (Claude Code CLI, Cursor CLI)
# ---------------------------------------------------------------------------

def content_blocks(raw: Any) -> tuple[ContentBlock, ...]:
    """Parse a ``message.content`` array into protocol blocks."""
    if isinstance(raw, str):
        return (TextBlock(text=raw),) if raw else ()
    blocks: list[ContentBlock] = []
    for block in raw or []:
        if not isinstance(block, dict):
            continue
        kind = block.get("type")
        if kind == "text" and block.get("text"):
            blocks.append(TextBlock(text=block["text"]))
        elif kind == "tool_use":
            tool_input = block.get("input")
            blocks.append(ToolUseBlock(
                name=block.get("name", ""),
                input=tool_input if isinstance(tool_input, dict) else {},
                id=block.get("id", ""),
            ))
    return tuple(blocks)


def translate_stream_json(record: dict[str, Any]) -> list[ProviderMessage]:
    """Translate one Claude-style stream-json record."""
    kind = record.get("type")
    session_id = record.get("session_id") or ""

    if kind == "assistant":
        message = record.get("message") or {}
        blocks = content_blocks(message.get("content"))
        if not blocks:
            return []
        return [AssistantMessage(content=blocks, session_id=session_id)]

    if kind == "result":
        is_error = bool(record.get("is_error")) or record.get("subtype") != "success"
        if is_error:
            error = record.get("error") or record.get("result") or record.get("subtype") or "error"
            return [ResultMessage(
                subtype="error",
                error=str(error),
                session_id=session_id,
                duration_ms=record.get("duration_ms"),
            )]
        return [ResultMessage(
            subtype="success",
            result=record.get("result") or "",
            session_id=session_id,
            duration_ms=record.get("duration_ms"),
        )]

    if kind == "system":
        return [SystemMessage(subtype=record.get("subtype") or "system", data=record)]

    if kind == "user":
        # Tool results echoed back to the model; not part of the protocol.
        return []

    return [SystemMessage(subtype=str(kind or "unknown"), data=record)]
