"""ProviderFactory — routes model ids to the provider that serves them."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import ClassVar

from .base import BaseProvider, ProviderConfig
from .claude import ClaudeProvider
from .claude_chrome import ClaudeChromeProvider
from .codex import CodexProvider
from .cursor import CursorProvider
from .models import is_chrome_model, is_codex_model, is_cursor_model
from .types import InstallationStatus, ModelDefinition

logger = logging.getLogger(__name__)

ModelMatcher = Callable[[str], bool]


@dataclass(frozen=True, slots=True)
class ProviderRegistration:
    name: str
    provider_cls: type[BaseProvider]
    matcher: ModelMatcher | None = None


class ProviderFactory:
    """Closed dispatch from model id to provider.

    Registrations are checked in order; the first matcher that accepts the id
    wins, and ids nobody claims go to the default provider. Every call returns
    a fresh provider instance, so concurrent callers never share state.
    """

    _registry: ClassVar[list[ProviderRegistration]] = []
    _default: ClassVar[str | None] = None

    @classmethod
    def register(
        cls,
        name: str,
        provider_cls: type[BaseProvider],
        matcher: ModelMatcher | None = None,
        *,
        default: bool = False,
    ) -> None:
        """Add (or replace) a provider registration."""
        cls._registry = [r for r in cls._registry if r.name != name]
        cls._registry.append(ProviderRegistration(name, provider_cls, matcher))
        if default:
            cls._default = name
        logger.debug("Registered provider %s (%s)", name, provider_cls.__name__)

    @classmethod
    def unregister(cls, name: str) -> None:
        cls._registry = [r for r in cls._registry if r.name != name]
        if cls._default == name:
            cls._default = None

    @classmethod
    def get_provider_name_for_model(cls, model_id: str) -> str:
        for registration in cls._registry:
            if registration.matcher is not None and registration.matcher(model_id):
                return registration.name
        if cls._default is None:
            raise LookupError(f"No provider registered for model {model_id!r}")
        return cls._default

    @classmethod
    def get_provider_for_model(cls, model_id: str, config: ProviderConfig | None = None) -> BaseProvider:
        name = cls.get_provider_name_for_model(model_id)
        provider = cls.get_provider_by_name(name, config)
        assert provider is not None
        return provider

    @classmethod
    def get_provider_by_name(cls, name: str, config: ProviderConfig | None = None) -> BaseProvider | None:
        for registration in cls._registry:
            if registration.name == name:
                return registration.provider_cls(config)
        return None

    @classmethod
    def get_all_providers(cls, config: ProviderConfig | None = None) -> list[BaseProvider]:
        return [r.provider_cls(config) for r in cls._registry]

    @classmethod
    def get_all_available_models(cls) -> list[ModelDefinition]:
        models: list[ModelDefinition] = []
        for provider in cls.get_all_providers():
            models.extend(provider.available_models())
        return models

    @classmethod
    async def check_all_providers(cls) -> dict[str, InstallationStatus]:
        """Probe every registered provider concurrently."""
        providers = cls.get_all_providers()
        results = await asyncio.gather(
            *(_safe_check(p) for p in providers),
        )
        return {p.name: status for p, status in zip(providers, results)}


async def _safe_check(provider: BaseProvider) -> InstallationStatus:
    try:
        return await provider.check_installation()
    except Exception as exc:
        logger.exception("Installation check failed for %s", provider.name)
        return InstallationStatus(installed=False, error=str(exc) or type(exc).__name__)


ProviderFactory.register("cursor", CursorProvider, is_cursor_model)
ProviderFactory.register("codex", CodexProvider, is_codex_model)
ProviderFactory.register("claude-chrome", ClaudeChromeProvider, is_chrome_model)
ProviderFactory.register("claude", ClaudeProvider, default=True)
