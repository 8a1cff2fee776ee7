"""Providers — one streaming interface over Claude, Cursor, Codex and Claude in Chrome.

Usage::

    from providers import ExecuteOptions, ProviderFactory

    provider = ProviderFactory.get_provider_for_model("sonnet")
    options = ExecuteOptions(prompt="Hello!", model="sonnet", cwd=".")
    async for msg in provider.execute_query(options):
        print(msg)
"""

from .base import BaseProvider, ProviderConfig
from .claude import ClaudeProvider
from .claude_chrome import ClaudeChromeProvider
from .cli import CliProvider
from .codex import CodexProvider
from .cursor import CursorProvider
from .errors import (
    CliErrorInfo,
    ErrorCode,
    ProviderCancelledError,
    ProviderError,
    ProviderExecutionError,
    ProviderNotAuthenticatedError,
    ProviderNotInstalledError,
    ResponseParseError,
    classify_cli_error,
    describe_error,
)
from .factory import ProviderFactory
from .spawn import SpawnStrategy
from .types import (
    AssistantMessage,
    CancelToken,
    CliSpawnConfig,
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

__all__ = [
    # Providers
    "BaseProvider",
    "CliProvider",
    "ClaudeProvider",
    "ClaudeChromeProvider",
    "CursorProvider",
    "CodexProvider",
    "ProviderConfig",
    "ProviderFactory",
    "SpawnStrategy",
    # Protocol
    "ProviderMessage",
    "AssistantMessage",
    "ResultMessage",
    "SystemMessage",
    "ContentBlock",
    "TextBlock",
    "ToolUseBlock",
    "ExecuteOptions",
    "CancelToken",
    "InstallationStatus",
    "CliSpawnConfig",
    "ModelDefinition",
    # Errors
    "ErrorCode",
    "CliErrorInfo",
    "ProviderError",
    "ProviderNotInstalledError",
    "ProviderNotAuthenticatedError",
    "ProviderExecutionError",
    "ProviderCancelledError",
    "ResponseParseError",
    "classify_cli_error",
    "describe_error",
]
