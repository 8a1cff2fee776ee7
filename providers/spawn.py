"""SpawnStrategy — owns one CLI child process per query.

Launches the backend in its own process group, feeds it the request,
frames stdout into records as they arrive, keeps stderr for diagnostics,
and guarantees the child is reaped on every exit path: normal completion,
errors, cancellation, and a consumer that stops iterating early (``aclose``).
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections import deque
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import orjson

from .base import DEFAULT_MAX_LINE_BYTES, DEFAULT_TERMINATE_GRACE, iterate_until_cancelled
from .errors import (
    DEFAULT_ERROR_PATTERNS,
    ErrorCode,
    ErrorPattern,
    ProviderExecutionError,
    ProviderNotInstalledError,
    classify_cli_error,
    error_from_info,
)
from .types import CancelToken, CliSpawnConfig

logger = logging.getLogger(__name__)

STDERR_KEEP_BYTES = 64 * 1024
MAX_DIAGNOSTIC_LINES = 50


class _TailBuffer:
    """Keeps the last *limit* bytes of line-oriented output."""

    def __init__(self, limit: int = STDERR_KEEP_BYTES) -> None:
        self._lines: deque[str] = deque()
        self._size = 0
        self._limit = limit

    def append(self, line: str) -> None:
        self._lines.append(line)
        self._size += len(line)
        while self._size > self._limit and len(self._lines) > 1:
            self._size -= len(self._lines.popleft())

    def text(self) -> str:
        return "\n".join(self._lines)


class SpawnStrategy:
    """Process lifecycle and stdout framing for one CLI backend."""

    def __init__(
        self,
        config: CliSpawnConfig,
        *,
        provider: str = "",
        terminate_grace: float = DEFAULT_TERMINATE_GRACE,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
        error_patterns: tuple[ErrorPattern, ...] = DEFAULT_ERROR_PATTERNS,
        install_hint: str | None = None,
    ) -> None:
        self.config = config
        self.provider = provider
        self.terminate_grace = terminate_grace
        self.max_line_bytes = max_line_bytes
        self.error_patterns = error_patterns
        self.install_hint = install_hint

    # ------------------------------------------------------------------
    # Process acquisition
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def spawn(
        self,
        args: Sequence[str],
        *,
        cwd: str | None = None,
        with_stdin: bool = False,
    ) -> AsyncIterator[asyncio.subprocess.Process]:
        """Start the child and reap it when the block exits, however it exits."""
        cmd = self.config.command(args)
        env = {**os.environ, **self.config.env}
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if with_stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
                limit=self.max_line_bytes,
                start_new_session=os.name != "nt",
            )
        except FileNotFoundError as exc:
            if cwd and exc.filename == cwd:
                raise ProviderExecutionError(
                    f"Working directory not found: {cwd}",
                    provider=self.provider,
                ) from exc
            raise ProviderNotInstalledError(
                f"{self.config.executable} not found",
                provider=self.provider,
                suggestion=self.install_hint,
            ) from exc
        except PermissionError as exc:
            raise ProviderNotInstalledError(
                f"{self.config.executable} is not executable",
                provider=self.provider,
                suggestion=self.install_hint,
            ) from exc

        logger.info("Spawned %s (pid %d) in %s", self.config.executable, proc.pid, cwd or ".")
        try:
            yield proc
        finally:
            await self._reap(proc)

    async def _reap(self, proc: asyncio.subprocess.Process) -> None:
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
        if proc.returncode is not None:
            return

        logger.info("Terminating pid %d", proc.pid)
        self._signal(proc, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.terminate_grace)
        except asyncio.TimeoutError:
            logger.warning("pid %d ignored SIGTERM for %.1fs, killing", proc.pid, self.terminate_grace)
            self._signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
            await proc.wait()

    @staticmethod
    def _signal(proc: asyncio.subprocess.Process, sig: int) -> None:
        try:
            if os.name != "nt":
                os.killpg(proc.pid, sig)
            elif sig == signal.SIGTERM:
                proc.terminate()
            else:
                proc.kill()
        except ProcessLookupError:
            pass
        except PermissionError:
            proc.kill()

    # ------------------------------------------------------------------
    # Record stream
    # ------------------------------------------------------------------

    async def stream(
        self,
        args: Sequence[str],
        *,
        cwd: str | None = None,
        cancel: CancelToken | None = None,
        stdin_payload: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Run the backend and yield one record per framed stdout unit.

        Raises ``ProviderNotInstalledError`` when the binary is missing and
        ``ProviderExecutionError`` (or ``ProviderNotAuthenticatedError``,
        depending on stderr) for a nonzero exit or a run that ends without a
        terminal record. Ends quietly once *cancel* is observed.
        """
        if cancel is not None and cancel.cancelled:
            return

        async with self.spawn(args, cwd=cwd, with_stdin=stdin_payload is not None) as proc:
            stderr = _TailBuffer()
            diagnostics: deque[str] = deque(maxlen=MAX_DIAGNOSTIC_LINES)
            stderr_task = asyncio.create_task(self._drain_stderr(proc, stderr))
            lines = iterate_until_cancelled(self._read_lines(proc), cancel)
            try:
                if stdin_payload is not None:
                    await self._write_stdin(proc, stdin_payload)

                saw_terminal = False
                async for line in lines:
                    record = self._frame(line, diagnostics)
                    if record is None:
                        continue
                    if record.get("type") in self.config.terminal_types:
                        saw_terminal = True
                    yield record

                if cancel is not None and cancel.cancelled:
                    logger.info("%s run cancelled (%s)", self.provider, cancel.reason)
                    return

                returncode = await proc.wait()
                # A surviving grandchild may still hold the stderr pipe.
                try:
                    await asyncio.wait_for(stderr_task, timeout=self.terminate_grace)
                except asyncio.TimeoutError:
                    logger.warning(
                        "%s stderr still open %.1fs after exit, keeping what was drained",
                        self.config.executable, self.terminate_grace,
                    )
                logger.info("%s exited with code %s", self.config.executable, returncode)

                stderr_text = stderr.text() or "\n".join(diagnostics)
                if returncode != 0:
                    info = classify_cli_error(stderr_text, returncode, self.error_patterns)
                    raise error_from_info(
                        info, provider=self.provider, exit_code=returncode, stderr=stderr_text,
                    )
                if self.config.framing == "ndjson" and not saw_terminal:
                    raise ProviderExecutionError(
                        f"{self.config.executable} exited without a result",
                        provider=self.provider,
                        code=ErrorCode.NO_RESULT,
                        exit_code=returncode,
                        stderr=stderr_text,
                    )
            finally:
                await lines.aclose()
                if not stderr_task.done():
                    stderr_task.cancel()
                    try:
                        await stderr_task
                    except asyncio.CancelledError:
                        pass

    async def _read_lines(self, proc: asyncio.subprocess.Process) -> AsyncIterator[str]:
        assert proc.stdout is not None
        while True:
            try:
                raw = await proc.stdout.readline()
            except ValueError as exc:
                raise ProviderExecutionError(
                    f"Output record exceeded {self.max_line_bytes} bytes",
                    provider=self.provider,
                    code=ErrorCode.MALFORMED_OUTPUT,
                ) from exc
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                yield line

    def _frame(self, line: str, diagnostics: deque[str]) -> dict[str, Any] | None:
        if self.config.framing == "text":
            return {"type": "text", "text": line}
        try:
            record = orjson.loads(line)
        except orjson.JSONDecodeError:
            logger.warning("%s: non-JSON output line: %.200s", self.provider, line)
            diagnostics.append(line)
            return None
        if not isinstance(record, dict):
            diagnostics.append(line)
            return None
        logger.debug("%s record: %s", self.provider, record.get("type"))
        return record

    @staticmethod
    async def _drain_stderr(proc: asyncio.subprocess.Process, buffer: _TailBuffer) -> None:
        assert proc.stderr is not None
        while True:
            try:
                raw = await proc.stderr.readline()
            except ValueError:
                continue
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                logger.debug("stderr: %s", line)
                buffer.append(line)

    async def _write_stdin(self, proc: asyncio.subprocess.Process, payload: str) -> None:
        assert proc.stdin is not None
        try:
            proc.stdin.write(payload.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.warning("%s closed stdin before the request was written", self.provider)
        finally:
            proc.stdin.close()
