"""GenerationOrchestrator — single-flight generation jobs keyed by scope.

At most one job runs per scope. ``start`` admits or refuses synchronously and
launches the provider call as a background task; progress and the outcome
reach observers only through the event bus, as ``<scope>:event`` payloads:

    {"type": "progress", "content": str}
    {"type": "complete", "result": <artifact>}
    {"type": "error", "error": str}                     # failure
    {"type": "error", "error": str, "cancelled": True}  # stop() / shutdown()

Every accepted job publishes exactly one terminal (``complete``/``error``)
event, and its running flag is cleared before that event goes out.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from providers.base import BaseProvider, ProviderConfig
from providers.errors import (
    ProviderCancelledError,
    ProviderError,
    ProviderExecutionError,
    ResponseParseError,
    describe_error,
)
from providers.factory import ProviderFactory
from providers.types import AssistantMessage, CancelToken, ExecuteOptions, ResultMessage

from .events import EventBus

logger = logging.getLogger(__name__)

ResponseParser = Callable[[str], Any]
ProviderResolver = Callable[[str], BaseProvider]


# ---------------------------------------------------------------------------
# Request / result types
# ---------------------------------------------------------------------------

@dataclass
class GenerationParams:
    """Everything one generation needs: provider options plus the response contract.

    ``parser`` turns the final text into the published artifact (the text
    itself when omitted). If it raises ``ResponseParseError`` the artifact is
    ``fallback(text)``, or None without a fallback. ``notes`` are published
    as progress right after admission.
    """

    prompt: str
    model: str
    cwd: str
    system_prompt: str | None = None
    max_turns: int | None = None
    allowed_tools: Sequence[str] = ()
    read_only: bool = False
    thinking_level: str | None = None
    setting_sources: Sequence[str] | None = None
    parser: ResponseParser | None = None
    fallback: ResponseParser | None = None
    notes: Sequence[str] = ()

    def execute_options(self, cancel: CancelToken) -> ExecuteOptions:
        return ExecuteOptions(
            prompt=self.prompt,
            model=self.model,
            cwd=self.cwd,
            system_prompt=self.system_prompt,
            max_turns=self.max_turns,
            allowed_tools=tuple(self.allowed_tools),
            cancel=cancel,
            read_only=self.read_only,
            thinking_level=self.thinking_level,
            setting_sources=tuple(self.setting_sources) if self.setting_sources else None,
        )


@dataclass(frozen=True, slots=True)
class StartResult:
    accepted: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"accepted": self.accepted}
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True, slots=True)
class StopResult:
    stopped: bool
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"stopped": self.stopped, "message": self.message}


@dataclass(frozen=True, slots=True)
class JobStatus:
    scope: str
    is_running: bool
    model: str | None = None
    started_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope,
            "isRunning": self.is_running,
            "model": self.model,
            "startedAt": self.started_at,
        }


@dataclass
class GenerationJob:
    """Orchestrator-owned record for one admitted job. Never persisted."""

    scope: str
    cancel: CancelToken
    model: str
    is_running: bool = True
    terminal_sent: bool = False
    started_at: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class GenerationOrchestrator:
    """Admission control, cancellation and event republishing for generation jobs.

    One instance lives for the whole process. All job-state mutation happens
    in synchronous methods on the event loop thread, so admission checks and
    flag updates can never interleave.

    Usage::

        orchestrator = GenerationOrchestrator(bus)
        result = orchestrator.start("backlog-modify", GenerationParams(...))
        if not result.accepted:
            ...  # already running
        orchestrator.stop("backlog-modify")
        await orchestrator.shutdown()
    """

    def __init__(
        self,
        bus: EventBus,
        *,
        resolver: ProviderResolver | None = None,
        provider_config: ProviderConfig | None = None,
    ) -> None:
        self._bus = bus
        self._provider_config = provider_config
        self._resolver = resolver or self._factory_resolver
        self._jobs: dict[str, GenerationJob] = {}
        self._tasks: dict[asyncio.Task, str] = {}

    def _factory_resolver(self, model: str) -> BaseProvider:
        return ProviderFactory.get_provider_for_model(model, self._provider_config)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def status(self, scope: str) -> JobStatus:
        job = self._jobs.get(scope)
        if job is None or not job.is_running:
            return JobStatus(scope=scope, is_running=False)
        return JobStatus(scope=scope, is_running=True, model=job.model, started_at=job.started_at)

    def start(self, scope: str, params: GenerationParams) -> StartResult:
        """Admit a job for *scope* or refuse it. Must be called on the running loop."""
        current = self._jobs.get(scope)
        if current is not None and current.is_running:
            logger.info("Refusing start for %s: already running", scope)
            return StartResult(accepted=False, error=f"Generation already running for {scope}")

        loop = asyncio.get_running_loop()
        job = GenerationJob(scope=scope, cancel=CancelToken(), model=params.model)
        self._jobs[scope] = job
        task = loop.create_task(self._run(job, params), name=f"generation:{scope}")
        self._tasks[task] = scope
        task.add_done_callback(self._tasks.pop)
        logger.info(
            "Started generation for %s: model=%s prompt=%d chars",
            scope, params.model, len(params.prompt),
        )
        return StartResult(accepted=True)

    def stop(self, scope: str) -> StopResult:
        """Cancel the scope's job without waiting for it. Idempotent."""
        job = self._jobs.get(scope)
        if job is None or not job.is_running:
            return StopResult(stopped=False, message="No generation running")

        job.cancel.cancel("stopped")
        self._finish(job, _cancelled_payload())
        self._release(job)
        logger.info("Stopped generation for %s", scope)
        return StopResult(stopped=True, message="Generation stopped")

    def running_scopes(self) -> list[str]:
        return [scope for scope, job in self._jobs.items() if job.is_running]

    async def wait(self, scope: str | None = None) -> None:
        """Wait for background tasks (of one scope, or all) to finish."""
        tasks = [t for t, s in self._tasks.items() if scope is None or s == scope]
        if tasks:
            await asyncio.wait(tasks)

    async def shutdown(self) -> None:
        """Cancel every job and wait for its task. Call once at process exit."""
        for scope in self.running_scopes():
            self.stop(scope)
        await self.wait()

    # ------------------------------------------------------------------
    # Background task
    # ------------------------------------------------------------------

    async def _run(self, job: GenerationJob, params: GenerationParams) -> None:
        try:
            for note in params.notes:
                self._progress(job, note)
            provider = self._resolver(params.model)
            logger.info("%s: using provider %s for model %s", job.scope, provider.name, params.model)

            text = await self._consume(job, provider, params.execute_options(job.cancel))
            if job.cancel.cancelled:
                self._finish(job, _cancelled_payload())
                return

            artifact = self._parse(job, params, text)
            self._finish(job, {"type": "complete", "result": artifact})
        except asyncio.CancelledError:
            self._finish(job, _cancelled_payload())
            raise
        except ProviderCancelledError:
            self._finish(job, _cancelled_payload())
        except ProviderError as exc:
            if job.cancel.cancelled:
                logger.debug("%s: ignoring error after cancellation: %s", job.scope, exc)
                self._finish(job, _cancelled_payload())
            else:
                logger.warning("%s: generation failed: %s", job.scope, describe_error(exc))
                self._finish(job, {"type": "error", "error": describe_error(exc)})
        except Exception as exc:
            logger.exception("%s: generation crashed", job.scope)
            self._finish(job, {"type": "error", "error": describe_error(exc)})
        finally:
            if not job.terminal_sent:
                self._finish(job, {"type": "error", "error": "Generation ended without a result"})
            self._release(job)

    async def _consume(self, job: GenerationJob, provider: BaseProvider, options: ExecuteOptions) -> str:
        """Drain the provider stream; returns the final text."""
        text = ""
        stream = provider.execute_query(options)
        try:
            async for msg in stream:
                if job.cancel.cancelled:
                    break
                if isinstance(msg, AssistantMessage):
                    delta = msg.text
                    if delta:
                        text += delta
                        self._progress(job, delta)
                elif isinstance(msg, ResultMessage):
                    if msg.is_error:
                        raise ProviderExecutionError(
                            msg.error or "Generation failed", provider=provider.name,
                        )
                    result = msg.result or ""
                    logger.debug(
                        "%s: result %d chars, accumulated %d chars", job.scope, len(result), len(text),
                    )
                    if len(result) > len(text):
                        text = result
        finally:
            await stream.aclose()
        return text

    def _parse(self, job: GenerationJob, params: GenerationParams, text: str) -> Any:
        if params.parser is None:
            return text
        try:
            return params.parser(text)
        except ResponseParseError as exc:
            logger.warning(
                "%s: could not parse response (%d chars): %s; preview: %.500s",
                job.scope, len(text), exc, text,
            )
            return params.fallback(text) if params.fallback is not None else None

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    def _progress(self, job: GenerationJob, content: str) -> None:
        if not job.is_running:
            return
        self._bus.emit(_event_name(job.scope), {"type": "progress", "content": content})

    def _finish(self, job: GenerationJob, payload: dict[str, Any]) -> None:
        """Publish the job's terminal event once; clears the running flag first."""
        if job.terminal_sent:
            return
        job.terminal_sent = True
        job.is_running = False
        logger.info("%s: %s", job.scope, payload["type"] if not payload.get("cancelled") else "cancelled")
        self._bus.emit(_event_name(job.scope), payload)

    def _release(self, job: GenerationJob) -> None:
        job.is_running = False
        if self._jobs.get(job.scope) is job:
            del self._jobs[job.scope]


def _event_name(scope: str) -> str:
    return f"{scope}:event"


def _cancelled_payload() -> dict[str, Any]:
    return {"type": "error", "error": "Generation cancelled", "cancelled": True}
