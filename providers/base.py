"""Provider abstraction — one implementation per agent backend."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TypeVar

from .types import (
    CancelToken,
    ExecuteOptions,
    InstallationStatus,
    ModelDefinition,
    ProviderMessage,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TERMINATE_GRACE = 5.0
DEFAULT_MAX_LINE_BYTES = 16 * 1024 * 1024


@dataclass
class ProviderConfig:
    """Construction-time settings shared by all providers."""

    cli_path: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    terminate_grace: float = DEFAULT_TERMINATE_GRACE
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES


class BaseProvider(ABC):
    """Interface every backend implements.

    ``execute_query`` returns a lazy, finite, non-restartable stream of
    :data:`ProviderMessage`. Once ``options.cancel`` is signalled the stream
    stops within a bounded grace period and simply ends; callers treat an
    early end with a signalled token as a clean abort.

    Usage::

        provider = ProviderFactory.get_provider_for_model("sonnet")
        async for msg in provider.execute_query(options):
            ...
    """

    name: str = "base"

    def __init__(self, config: ProviderConfig | None = None) -> None:
        self.config = config or ProviderConfig()

    @abstractmethod
    def execute_query(self, options: ExecuteOptions) -> AsyncIterator[ProviderMessage]:
        """Run one query and yield normalized messages."""
        raise NotImplementedError

    @abstractmethod
    async def check_installation(self) -> InstallationStatus:
        """Probe the backend without starting a generation."""
        raise NotImplementedError

    def available_models(self) -> list[ModelDefinition]:
        return []

    def supports_system_prompt(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


async def iterate_until_cancelled(
    source: AsyncIterator[T], cancel: CancelToken | None,
) -> AsyncIterator[T]:
    """Relay *source* until it ends or *cancel* fires.

    Each ``await next item`` is raced against the token, so a backend that is
    silent for a long time still stops promptly. The source is always closed.
    """
    if cancel is None:
        try:
            async for item in source:
                yield item
        finally:
            await _aclose(source)
        return

    waiter = asyncio.ensure_future(cancel.wait())
    step: asyncio.Future | None = None
    try:
        while not cancel.cancelled:
            step = asyncio.ensure_future(source.__anext__())
            done, _ = await asyncio.wait({step, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if step not in done:
                break
            try:
                item = step.result()
            except StopAsyncIteration:
                return
            finally:
                step = None
            yield item
    finally:
        waiter.cancel()
        if step is not None and not step.done():
            step.cancel()
            try:
                await step
            except (asyncio.CancelledError, StopAsyncIteration):
                pass
            except Exception:
                logger.debug("Source raised while being cancelled", exc_info=True)
        await _aclose(source)


async def _aclose(source: object) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()
