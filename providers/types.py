"""Shared types for the providers package."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Union


# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class TextBlock:
    """A run of assistant text."""

    text: str
    type: Literal["text"] = "text"


@dataclass(frozen=True, slots=True)
class ToolUseBlock:
    """The agent invoked a tool."""

    name: str
    input: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    type: Literal["tool_use"] = "tool_use"


ContentBlock = Union[TextBlock, ToolUseBlock]


# ---------------------------------------------------------------------------
# Provider messages, yielded by Provider.execute_query()
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class AssistantMessage:
    """Assistant output: text deltas and/or tool calls, in backend order."""

    content: tuple[ContentBlock, ...] = ()
    session_id: str = ""
    type: Literal["assistant"] = "assistant"

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))


@dataclass(frozen=True, slots=True)
class ResultMessage:
    """Terminal message for one query."""

    subtype: Literal["success", "error"]
    result: str | None = None
    error: str | None = None
    session_id: str = ""
    duration_ms: int | None = None
    type: Literal["result"] = "result"

    @property
    def is_error(self) -> bool:
        return self.subtype == "error"


@dataclass(frozen=True, slots=True)
class SystemMessage:
    """Backend-specific informational message, passed through opaquely."""

    subtype: str
    data: dict[str, Any] = field(default_factory=dict)
    type: Literal["system"] = "system"


ProviderMessage = Union[AssistantMessage, ResultMessage, SystemMessage]


def text_message(text: str, session_id: str = "") -> AssistantMessage:
    """Shorthand for an assistant message holding a single text block."""
    return AssistantMessage(content=(TextBlock(text=text),), session_id=session_id)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class CancelToken:
    """Cooperative cancellation handle shared by a job and its provider.

    ``cancel()`` is idempotent and safe to call after the work has finished.
    Observers either poll :attr:`cancelled` or ``await wait()``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._timer: asyncio.TimerHandle | None = None

    def cancel(self, reason: str = "cancelled") -> bool:
        """Signal cancellation. Returns False if it was already signalled."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()

    def cancel_after(self, seconds: float) -> None:
        """Arm a timeout that cancels this token. Requires a running loop."""
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(seconds, self.cancel, "timeout")


# ---------------------------------------------------------------------------
# Per-call options
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ExecuteOptions:
    """Immutable configuration for one ``execute_query`` call."""

    prompt: str
    model: str
    cwd: str
    system_prompt: str | None = None
    max_turns: int | None = None
    allowed_tools: tuple[str, ...] = ()
    cancel: CancelToken | None = None
    read_only: bool = False
    thinking_level: str | None = None
    setting_sources: tuple[str, ...] | None = None

    def effective_allowed_tools(self) -> tuple[str, ...]:
        """Tool allow-list actually handed to the backend."""
        if self.read_only:
            return ()
        return tuple(self.allowed_tools)

    @property
    def is_cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.cancelled


# ---------------------------------------------------------------------------
# Installation / spawn metadata
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class InstallationStatus:
    """Result of probing a backend without starting a generation."""

    installed: bool
    authenticated: bool = False
    version: str | None = None
    error: str | None = None
    path: str | None = None
    method: str = "cli"  # "cli" | "sdk"

    def to_dict(self) -> dict[str, Any]:
        return {
            "installed": self.installed,
            "authenticated": self.authenticated,
            "version": self.version,
            "error": self.error,
            "path": self.path,
            "method": self.method,
        }


@dataclass(frozen=True, slots=True)
class CliSpawnConfig:
    """How to launch and frame one CLI backend."""

    executable: str
    base_args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    framing: Literal["ndjson", "text"] = "ndjson"
    prompt_via: Literal["argument", "stdin"] = "argument"
    terminal_types: frozenset[str] = frozenset({"result"})

    def command(self, args: Sequence[str]) -> list[str]:
        return [self.executable, *self.base_args, *args]


@dataclass(frozen=True, slots=True)
class ModelDefinition:
    """A model a provider can serve."""

    id: str
    name: str
    provider: str
    description: str = ""
    supports_thinking: bool = False
    default: bool = False
