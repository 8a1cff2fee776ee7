"""Tests for providers/types.py and providers/errors.py."""

import asyncio

import pytest

from providers.errors import (
    CliErrorInfo,
    ErrorCode,
    ProviderExecutionError,
    ProviderNotAuthenticatedError,
    ProviderNotInstalledError,
    classify_cli_error,
    describe_error,
    error_from_info,
)
from providers.types import (
    AssistantMessage,
    CancelToken,
    CliSpawnConfig,
    ExecuteOptions,
    InstallationStatus,
    ResultMessage,
    TextBlock,
    ToolUseBlock,
    text_message,
)


class TestMessages:
    def test_assistant_text_joins_text_blocks_only(self):
        msg = AssistantMessage(content=(
            TextBlock(text="a"),
            ToolUseBlock(name="Read", input={"path": "x"}),
            TextBlock(text="b"),
        ))
        assert msg.text == "ab"

    def test_text_message_helper(self):
        msg = text_message("hello", session_id="s1")
        assert msg.content == (TextBlock(text="hello"),)
        assert msg.session_id == "s1"

    def test_result_is_error(self):
        assert ResultMessage(subtype="error", error="boom").is_error
        assert not ResultMessage(subtype="success", result="ok").is_error


class TestExecuteOptions:
    def test_read_only_forces_empty_tool_list(self):
        options = ExecuteOptions(
            prompt="p", model="sonnet", cwd=".", allowed_tools=("Write", "Bash"), read_only=True,
        )
        assert options.effective_allowed_tools() == ()

    def test_tools_pass_through_when_writable(self):
        options = ExecuteOptions(prompt="p", model="sonnet", cwd=".", allowed_tools=("Read",))
        assert options.effective_allowed_tools() == ("Read",)

    def test_is_cancelled_without_token(self):
        assert not ExecuteOptions(prompt="p", model="m", cwd=".").is_cancelled


class TestCancelToken:
    async def test_cancel_is_idempotent(self):
        token = CancelToken()
        assert token.cancel() is True
        assert token.cancel("again") is False
        assert token.cancelled
        assert token.reason == "cancelled"

    async def test_wait_returns_after_cancel(self):
        token = CancelToken()
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        token.cancel()
        await asyncio.wait_for(waiter, timeout=1)

    async def test_cancel_after_fires_with_timeout_reason(self):
        token = CancelToken()
        token.cancel_after(0.01)
        await asyncio.wait_for(token.wait(), timeout=1)
        assert token.reason == "timeout"

    async def test_manual_cancel_disarms_timer(self):
        token = CancelToken()
        token.cancel_after(0.01)
        token.cancel("stopped")
        await asyncio.sleep(0.05)
        assert token.reason == "stopped"


class TestMetadata:
    def test_installation_status_to_dict(self):
        status = InstallationStatus(installed=True, authenticated=False, version="1.2.3", path="/bin/x")
        assert status.to_dict() == {
            "installed": True,
            "authenticated": False,
            "version": "1.2.3",
            "error": None,
            "path": "/bin/x",
            "method": "cli",
        }

    def test_spawn_config_command(self):
        config = CliSpawnConfig(executable="/bin/tool", base_args=("exec",))
        assert config.command(["--json", "-"]) == ["/bin/tool", "exec", "--json", "-"]


class TestClassifyCliError:
    @pytest.mark.parametrize("stderr, code", [
        ("Error: Not logged in. Run login first", ErrorCode.NOT_AUTHENTICATED),
        ("HTTP 429 Too Many Requests", ErrorCode.RATE_LIMITED),
        ("model gpt-9 not found", ErrorCode.MODEL_UNAVAILABLE),
        ("connect ECONNREFUSED 127.0.0.1:443", ErrorCode.NETWORK_ERROR),
        ("segfault somewhere", ErrorCode.PROCESS_CRASHED),
    ])
    def test_patterns(self, stderr, code):
        assert classify_cli_error(stderr, 1).code == code

    def test_signal_exit(self):
        info = classify_cli_error("", -9)
        assert info.code == ErrorCode.PROCESS_CRASHED
        assert "signal 9" in info.message

    def test_message_is_first_nonblank_line(self):
        info = classify_cli_error("\n\n  first line  \nsecond", 2)
        assert info.message == "first line"

    def test_empty_stderr_mentions_exit_code(self):
        assert "code 3" in classify_cli_error("", 3).message


class TestErrorConstruction:
    def test_auth_info_builds_not_authenticated(self):
        info = CliErrorInfo(code=ErrorCode.NOT_AUTHENTICATED, message="no creds")
        exc = error_from_info(info, provider="cursor", exit_code=1, stderr="no creds")
        assert isinstance(exc, ProviderNotAuthenticatedError)
        assert exc.provider == "cursor"

    def test_other_info_builds_execution_error(self):
        info = CliErrorInfo(code=ErrorCode.RATE_LIMITED, message="slow down", recoverable=True)
        exc = error_from_info(info, provider="codex", exit_code=1, stderr="slow down")
        assert isinstance(exc, ProviderExecutionError)
        assert exc.code == ErrorCode.RATE_LIMITED
        assert exc.exit_code == 1
        assert exc.stderr == "slow down"

    def test_kinds_are_distinct(self):
        assert ProviderNotInstalledError("x").code == ErrorCode.NOT_INSTALLED
        assert ProviderNotAuthenticatedError("x").code == ErrorCode.NOT_AUTHENTICATED
        assert ProviderExecutionError("x").code == ErrorCode.PROCESS_CRASHED

    def test_describe_error(self):
        exc = ProviderNotInstalledError("codex CLI not found", provider="codex", suggestion="npm i codex")
        assert describe_error(exc) == "[codex] codex CLI not found (npm i codex)"
        assert describe_error(RuntimeError("boom")) == "boom"
        assert describe_error(RuntimeError()) == "RuntimeError"
