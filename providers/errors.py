"""Error taxonomy for provider failures."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    """Machine-readable failure kinds surfaced to callers."""

    NOT_INSTALLED = "not_installed"
    NOT_AUTHENTICATED = "not_authenticated"
    RATE_LIMITED = "rate_limited"
    MODEL_UNAVAILABLE = "model_unavailable"
    NETWORK_ERROR = "network_error"
    PROCESS_CRASHED = "process_crashed"
    MALFORMED_OUTPUT = "malformed_output"
    NO_RESULT = "no_result"
    CHROME_NOT_FOUND = "chrome_not_found"
    EXTENSION_NOT_CONNECTED = "extension_not_connected"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ProviderError(Exception):
    """Base class for every failure raised out of a provider."""

    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        code: ErrorCode | None = None,
        suggestion: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        if code is not None:
            self.code = code
        self.suggestion = suggestion


class ProviderNotInstalledError(ProviderError):
    """The backend binary or runtime dependency is missing. Never retried."""

    code = ErrorCode.NOT_INSTALLED


class ProviderNotAuthenticatedError(ProviderError):
    """Credentials are missing or expired."""

    code = ErrorCode.NOT_AUTHENTICATED


class ProviderExecutionError(ProviderError):
    """Nonzero exit, malformed stream, or unexpected process death."""

    code = ErrorCode.PROCESS_CRASHED

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.exit_code = exit_code
        self.stderr = stderr


class ProviderCancelledError(ProviderError):
    """Cooperative abort. Not a failure."""

    code = ErrorCode.CANCELLED


class ResponseParseError(ValueError):
    """Response text did not match the caller's artifact contract."""


# ---------------------------------------------------------------------------
# stderr classification
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class CliErrorInfo:
    """Classification of a CLI failure from its diagnostic output."""

    code: ErrorCode
    message: str
    recoverable: bool = False
    suggestion: str | None = None


# (pattern, code, recoverable, suggestion); first match wins
ErrorPattern = tuple[re.Pattern[str], ErrorCode, bool, str | None]

DEFAULT_ERROR_PATTERNS: tuple[ErrorPattern, ...] = (
    (
        re.compile(r"not (logged in|authenticated)|unauthori[sz]ed|invalid api key|"
                   r"authentication (failed|required)|please (log ?in|login)|\b401\b", re.I),
        ErrorCode.NOT_AUTHENTICATED, False, "Log in to the CLI or set its API key.",
    ),
    (
        re.compile(r"rate.?limit|too many requests|\b429\b|quota exceeded|usage limit", re.I),
        ErrorCode.RATE_LIMITED, True, "Wait a moment and try again.",
    ),
    (
        re.compile(r"(model|engine).{0,40}(not found|not available|unavailable|unsupported|"
                   r"does not exist)|unknown model", re.I),
        ErrorCode.MODEL_UNAVAILABLE, False, "Pick a different model.",
    ),
    (
        re.compile(r"ECONNREFUSED|ENOTFOUND|ETIMEDOUT|network (error|is unreachable)|"
                   r"connection (reset|refused)|getaddrinfo", re.I),
        ErrorCode.NETWORK_ERROR, True, "Check your network connection.",
    ),
)


def classify_cli_error(
    stderr: str,
    exit_code: int | None = None,
    patterns: tuple[ErrorPattern, ...] = DEFAULT_ERROR_PATTERNS,
) -> CliErrorInfo:
    """Map diagnostic output and exit status onto an error code."""
    text = stderr.strip()
    for pattern, code, recoverable, suggestion in patterns:
        if pattern.search(text):
            return CliErrorInfo(
                code=code,
                message=_first_line(text) or code.value,
                recoverable=recoverable,
                suggestion=suggestion,
            )
    if exit_code is not None and exit_code < 0:
        return CliErrorInfo(
            code=ErrorCode.PROCESS_CRASHED,
            message=f"Process killed by signal {-exit_code}",
            recoverable=True,
        )
    summary = _first_line(text) or f"Process exited with code {exit_code}"
    return CliErrorInfo(code=ErrorCode.PROCESS_CRASHED, message=summary, recoverable=True)


def error_from_info(
    info: CliErrorInfo, *, provider: str, exit_code: int | None, stderr: str,
) -> ProviderError:
    """Build the exception that matches a classified CLI failure."""
    if info.code == ErrorCode.NOT_AUTHENTICATED:
        return ProviderNotAuthenticatedError(
            info.message, provider=provider, suggestion=info.suggestion,
        )
    return ProviderExecutionError(
        info.message,
        provider=provider,
        code=info.code,
        suggestion=info.suggestion,
        exit_code=exit_code,
        stderr=stderr,
    )


def describe_error(exc: BaseException) -> str:
    """Human-readable message for bus events and logs."""
    if isinstance(exc, ProviderError):
        prefix = f"[{exc.provider}] " if exc.provider else ""
        message = f"{prefix}{exc.message}"
        if exc.suggestion:
            message = f"{message} ({exc.suggestion})"
        return message
    return str(exc) or type(exc).__name__


def _first_line(text: str) -> str:
    for line in text.splitlines():
        line = line.strip()
        if line:
            return line[:500]
    return ""
