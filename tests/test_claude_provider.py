"""Tests for providers/claude.py — mocked SDK, no real Claude Code."""

import asyncio
from unittest.mock import patch

import claude_agent_sdk
import pytest
from claude_agent_sdk import (
    AssistantMessage as SdkAssistantMessage,
    CLINotFoundError,
    ProcessError,
    ResultMessage as SdkResultMessage,
    SystemMessage as SdkSystemMessage,
    TextBlock as SdkTextBlock,
    ToolUseBlock as SdkToolUseBlock,
)

from providers.base import ProviderConfig
from providers.claude import BUILTIN_TOOLS, ClaudeProvider
from providers.errors import (
    ErrorCode,
    ProviderExecutionError,
    ProviderNotAuthenticatedError,
    ProviderNotInstalledError,
)
from providers.types import (
    AssistantMessage,
    CancelToken,
    ExecuteOptions,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolUseBlock,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _mock_result(result="done", session_id="s1", is_error=False, subtype="success"):
    return SdkResultMessage(
        subtype=subtype,
        duration_ms=1000,
        duration_api_ms=900,
        is_error=is_error,
        num_turns=1,
        session_id=session_id,
        total_cost_usd=0.01,
        usage={"input_tokens": 100, "output_tokens": 50},
        result=result,
    )


def _assistant(*blocks):
    return SdkAssistantMessage(content=list(blocks), model="test", parent_tool_use_id=None)


def _fake_query(*messages, raise_exc=None, hang=False, record=None):
    """Build a stand-in for ``claude_agent_sdk.query``."""
    state = {"closed": False}

    def fake(*, prompt, options):
        if record is not None:
            record.append((prompt, options))

        async def gen():
            try:
                for msg in messages:
                    yield msg
                if raise_exc is not None:
                    raise raise_exc
                if hang:
                    await asyncio.sleep(60)
            finally:
                state["closed"] = True

        return gen()

    fake.state = state
    return fake


def _options(**kwargs):
    defaults = {"prompt": "hello", "model": "sonnet", "cwd": "/work"}
    defaults.update(kwargs)
    return ExecuteOptions(**defaults)


async def _collect(provider, options):
    return [msg async for msg in provider.execute_query(options)]


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

class TestBuildOptions:
    def test_tool_less_call_disallows_builtins(self):
        opts = ClaudeProvider().build_options(_options())
        assert opts.model == "claude-sonnet-4-5-20250929"
        assert opts.allowed_tools == []
        assert opts.disallowed_tools == list(BUILTIN_TOOLS)
        assert opts.cwd == "/work"

    def test_read_only_uses_plan_mode_and_drops_tools(self):
        opts = ClaudeProvider().build_options(_options(read_only=True, allowed_tools=("Write",)))
        assert opts.permission_mode == "plan"
        assert opts.allowed_tools == []
        assert "Write" in opts.disallowed_tools

    def test_allowed_tools_pass_through(self):
        opts = ClaudeProvider().build_options(_options(allowed_tools=("Read", "Grep")))
        assert opts.allowed_tools == ["Read", "Grep"]
        assert opts.disallowed_tools == []

    def test_optional_fields(self):
        provider = ClaudeProvider(ProviderConfig(cli_path="/opt/claude", env={"X": "1"}))
        opts = provider.build_options(_options(
            model="claude-opus-4-5-20251101",
            system_prompt="SYS",
            max_turns=1,
            setting_sources=("user", "project"),
            thinking_level="high",
        ))
        assert opts.model == "claude-opus-4-5-20251101"
        assert opts.system_prompt == "SYS"
        assert opts.max_turns == 1
        assert opts.setting_sources == ["user", "project"]
        assert opts.max_thinking_tokens == 16_000
        assert str(opts.cli_path) == "/opt/claude"
        assert opts.env == {"X": "1"}


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

class TestExecuteQuery:
    async def test_translates_messages(self):
        fake = _fake_query(
            SdkSystemMessage(subtype="init", data={"session_id": "s1"}),
            _assistant(
                SdkTextBlock(text="Reading."),
                SdkToolUseBlock(id="tool1", name="Read", input={"file_path": "a.py"}),
            ),
            _assistant(SdkTextBlock(text="")),
            _mock_result(result="All done"),
        )
        with patch("providers.claude.query", fake):
            messages = await _collect(ClaudeProvider(), _options())

        assert isinstance(messages[0], SystemMessage)
        assert messages[0].subtype == "init"
        assert messages[1] == AssistantMessage(content=(
            TextBlock(text="Reading."),
            ToolUseBlock(name="Read", input={"file_path": "a.py"}, id="tool1"),
        ))
        assert messages[2] == ResultMessage(
            subtype="success", result="All done", session_id="s1", duration_ms=1000,
        )
        assert len(messages) == 3
        assert fake.state["closed"]

    async def test_prompt_and_options_reach_sdk(self):
        calls = []
        fake = _fake_query(_mock_result(), record=calls)
        with patch("providers.claude.query", fake):
            await _collect(ClaudeProvider(), _options(prompt="summarize", read_only=True))

        prompt, opts = calls[0]
        assert prompt == "summarize"
        assert opts.permission_mode == "plan"

    async def test_error_result(self):
        fake = _fake_query(_mock_result(result="Prompt is too long", is_error=True, subtype="error_during_execution"))
        with patch("providers.claude.query", fake):
            messages = await _collect(ClaudeProvider(), _options())
        assert messages == [ResultMessage(
            subtype="error", error="Prompt is too long", session_id="s1", duration_ms=1000,
        )]

    async def test_auth_error_result_raises(self):
        fake = _fake_query(_mock_result(result="Invalid API key · Please run /login", is_error=True))
        with patch("providers.claude.query", fake):
            with pytest.raises(ProviderNotAuthenticatedError):
                await _collect(ClaudeProvider(), _options())
        assert fake.state["closed"]

    async def test_abandoned_stream_closes_sdk_query(self):
        fake = _fake_query(
            _assistant(SdkTextBlock(text="one")), _assistant(SdkTextBlock(text="two")), _mock_result(),
        )
        with patch("providers.claude.query", fake):
            gen = ClaudeProvider().execute_query(_options())
            first = await gen.__anext__()
            assert first.text == "one"
            await gen.aclose()
            assert fake.state["closed"]

    async def test_abandoned_cancellable_stream_closes_sdk_query(self):
        fake = _fake_query(_assistant(SdkTextBlock(text="one")), hang=True)
        with patch("providers.claude.query", fake):
            gen = ClaudeProvider().execute_query(_options(cancel=CancelToken()))
            await gen.__anext__()
            await gen.aclose()
            assert fake.state["closed"]

    async def test_cli_not_found(self):
        fake = _fake_query(raise_exc=CLINotFoundError("Claude Code not found"))
        with patch("providers.claude.query", fake):
            with pytest.raises(ProviderNotInstalledError) as exc_info:
                await _collect(ClaudeProvider(), _options())
        assert exc_info.value.provider == "claude"
        assert "npm install" in exc_info.value.suggestion

    async def test_process_error_is_classified(self):
        fake = _fake_query(raise_exc=ProcessError("Command failed", exit_code=1, stderr="429 rate limit exceeded"))
        with patch("providers.claude.query", fake):
            with pytest.raises(ProviderExecutionError) as exc_info:
                await _collect(ClaudeProvider(), _options())
        exc = exc_info.value
        assert exc.code == ErrorCode.RATE_LIMITED
        assert exc.exit_code == 1
        assert "rate limit" in exc.stderr

    async def test_already_cancelled_never_calls_sdk(self):
        calls = []
        token = CancelToken()
        token.cancel()
        with patch("providers.claude.query", _fake_query(_mock_result(), record=calls)):
            assert await _collect(ClaudeProvider(), _options(cancel=token)) == []
        assert calls == []

    async def test_cancel_stops_silent_stream(self):
        token = CancelToken()
        fake = _fake_query(_assistant(SdkTextBlock(text="partial")), hang=True)
        with patch("providers.claude.query", fake):
            gen = ClaudeProvider().execute_query(_options(cancel=token))
            first = await gen.__anext__()
            assert first.text == "partial"

            token.cancel()
            rest = await asyncio.wait_for(_collect_rest(gen), timeout=2)

        assert rest == []
        assert fake.state["closed"]


async def _collect_rest(gen):
    return [msg async for msg in gen]


# ---------------------------------------------------------------------------
# Installation
# ---------------------------------------------------------------------------

class TestInstallation:
    async def test_configured_cli(self, fake_cli, clean_env, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        provider = ClaudeProvider(ProviderConfig(cli_path=fake_cli("print('2.0.50 (Claude Code)')")))
        status = await provider.check_installation()
        assert status.installed and status.authenticated
        assert status.method == "sdk"
        assert status.version == "2.0.50 (Claude Code)"

    async def test_missing_cli(self, clean_env, monkeypatch, tmp_path):
        monkeypatch.setenv("PATH", "")
        monkeypatch.setattr(claude_agent_sdk, "__file__", str(tmp_path / "sdk" / "__init__.py"))
        status = await ClaudeProvider().check_installation()
        assert not status.installed
        assert "npm install" in status.error

    def test_models(self):
        ids = [m.id for m in ClaudeProvider().available_models()]
        assert ids == ["haiku", "sonnet", "opus"]
