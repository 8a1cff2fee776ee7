"""Model catalog — ids, aliases, and routing predicates for every backend."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .types import ModelDefinition


# ---------------------------------------------------------------------------
# Thinking levels
# ---------------------------------------------------------------------------

class ThinkingLevel(str, Enum):
    """Extended-reasoning hint passed to backends that support it."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    ULTRATHINK = "ultrathink"


THINKING_BUDGETS: dict[str, int | None] = {
    ThinkingLevel.NONE.value: None,
    ThinkingLevel.LOW.value: 1024,
    ThinkingLevel.MEDIUM.value: 10_000,
    ThinkingLevel.HIGH.value: 16_000,
    ThinkingLevel.ULTRATHINK.value: 32_000,
}


def thinking_budget(level: str | None) -> int | None:
    """Token budget for a thinking level, or None when thinking is off."""
    if not level:
        return None
    return THINKING_BUDGETS.get(level)


# ---------------------------------------------------------------------------
# Claude
# ---------------------------------------------------------------------------

CLAUDE_MODEL_ALIASES: dict[str, str] = {
    "haiku": "claude-haiku-4-5-20251001",
    "sonnet": "claude-sonnet-4-5-20250929",
    "opus": "claude-opus-4-5-20251101",
}

DEFAULT_CLAUDE_MODEL = CLAUDE_MODEL_ALIASES["sonnet"]


def resolve_model_alias(model: str | None, default: str = DEFAULT_CLAUDE_MODEL) -> str:
    """Expand ``sonnet``/``opus``/``haiku``; other ids pass through unchanged."""
    if not model:
        return default
    return CLAUDE_MODEL_ALIASES.get(model.strip().lower(), model.strip())


# ---------------------------------------------------------------------------
# Cursor CLI
# ---------------------------------------------------------------------------

CURSOR_PREFIX = "cursor-"


@dataclass(frozen=True, slots=True)
class CursorModelConfig:
    id: str
    label: str
    description: str
    has_thinking: bool = False


CURSOR_MODEL_MAP: dict[str, CursorModelConfig] = {
    m.id: m
    for m in (
        CursorModelConfig("auto", "Auto (Recommended)", "Automatically selects the best model for each task"),
        CursorModelConfig("composer-1", "Composer 1", "Cursor Composer agent model optimized for multi-file edits"),
        CursorModelConfig("sonnet-4.5", "Claude Sonnet 4.5", "Anthropic Claude Sonnet 4.5 via Cursor"),
        CursorModelConfig("sonnet-4.5-thinking", "Claude Sonnet 4.5 (Thinking)",
                          "Claude Sonnet 4.5 with extended thinking enabled", True),
        CursorModelConfig("opus-4.5", "Claude Opus 4.5", "Anthropic Claude Opus 4.5 via Cursor"),
        CursorModelConfig("opus-4.5-thinking", "Claude Opus 4.5 (Thinking)",
                          "Claude Opus 4.5 with extended thinking enabled", True),
        CursorModelConfig("opus-4.1", "Claude Opus 4.1", "Anthropic Claude Opus 4.1 via Cursor"),
        CursorModelConfig("gemini-3-pro", "Gemini 3 Pro", "Google Gemini 3 Pro via Cursor"),
        CursorModelConfig("gemini-3-flash", "Gemini 3 Flash", "Google Gemini 3 Flash (faster)"),
        CursorModelConfig("gpt-5.2", "GPT-5.2", "OpenAI GPT-5.2 via Cursor"),
        CursorModelConfig("gpt-5.1", "GPT-5.1", "OpenAI GPT-5.1 via Cursor"),
        CursorModelConfig("gpt-5.2-high", "GPT-5.2 High", "OpenAI GPT-5.2 with high compute"),
        CursorModelConfig("gpt-5.1-high", "GPT-5.1 High", "OpenAI GPT-5.1 with high compute"),
        CursorModelConfig("gpt-5.1-codex", "GPT-5.1 Codex", "OpenAI GPT-5.1 Codex for code generation"),
        CursorModelConfig("gpt-5.1-codex-high", "GPT-5.1 Codex High", "OpenAI GPT-5.1 Codex with high compute"),
        CursorModelConfig("gpt-5.1-codex-max", "GPT-5.1 Codex Max", "OpenAI GPT-5.1 Codex Max capacity"),
        CursorModelConfig("gpt-5.1-codex-max-high", "GPT-5.1 Codex Max High",
                          "OpenAI GPT-5.1 Codex Max with high compute"),
        CursorModelConfig("grok", "Grok", "xAI Grok via Cursor"),
    )
}


def is_cursor_model(model: str | None) -> bool:
    """Cursor ids are namespaced with ``cursor-``."""
    return bool(model) and model.startswith(CURSOR_PREFIX)


def strip_cursor_prefix(model: str) -> str:
    return model[len(CURSOR_PREFIX):] if model.startswith(CURSOR_PREFIX) else model


def cursor_model_has_thinking(model_id: str) -> bool:
    entry = CURSOR_MODEL_MAP.get(strip_cursor_prefix(model_id))
    return entry.has_thinking if entry else False


def get_cursor_model_label(model_id: str) -> str:
    entry = CURSOR_MODEL_MAP.get(strip_cursor_prefix(model_id))
    return entry.label if entry else model_id


def get_all_cursor_model_ids() -> list[str]:
    return list(CURSOR_MODEL_MAP)


# ---------------------------------------------------------------------------
# Codex CLI
# ---------------------------------------------------------------------------

CODEX_PREFIX = "codex-"

CODEX_MODELS: tuple[tuple[str, str], ...] = (
    ("gpt-5-codex", "GPT-5 Codex"),
    ("gpt-5.1-codex", "GPT-5.1 Codex"),
    ("gpt-5.1-codex-max", "GPT-5.1 Codex Max"),
    ("gpt-5.1-codex-mini", "GPT-5.1 Codex Mini"),
)

CODEX_REASONING_EFFORT: dict[str, str] = {
    ThinkingLevel.LOW.value: "low",
    ThinkingLevel.MEDIUM.value: "medium",
    ThinkingLevel.HIGH.value: "high",
    ThinkingLevel.ULTRATHINK.value: "high",
}


def is_codex_model(model: str | None) -> bool:
    """``codex-<id>`` namespaced ids. Bare ``gpt-*`` ids are not routed here."""
    return bool(model) and model.startswith(CODEX_PREFIX)


def strip_codex_prefix(model: str) -> str:
    """``codex-gpt-5-codex`` → ``gpt-5-codex``; ``codex-default`` → ``""``."""
    bare = model[len(CODEX_PREFIX):] if model.startswith(CODEX_PREFIX) else model
    return "" if bare in ("", "default") else bare


# ---------------------------------------------------------------------------
# Claude in Chrome (browser-automated)
# ---------------------------------------------------------------------------

CHROME_PREFIX = "chrome-"
CHROME_DEFAULT_ID = "claude-chrome"


def is_chrome_model(model: str | None) -> bool:
    return bool(model) and (model == CHROME_DEFAULT_ID or model.startswith(CHROME_PREFIX))


def strip_chrome_prefix(model: str) -> str:
    """``chrome-opus`` → full opus id; ``claude-chrome`` → default Claude model."""
    if model == CHROME_DEFAULT_ID:
        return DEFAULT_CLAUDE_MODEL
    return resolve_model_alias(model[len(CHROME_PREFIX):])


# ---------------------------------------------------------------------------
# Catalog listings
# ---------------------------------------------------------------------------

def claude_model_definitions(provider: str = "claude") -> list[ModelDefinition]:
    return [
        ModelDefinition(
            id=alias,
            name=f"Claude {alias.title()}",
            provider=provider,
            description=full_id,
            supports_thinking=True,
            default=full_id == DEFAULT_CLAUDE_MODEL,
        )
        for alias, full_id in CLAUDE_MODEL_ALIASES.items()
    ]


def cursor_model_definitions() -> list[ModelDefinition]:
    return [
        ModelDefinition(
            id=f"{CURSOR_PREFIX}{m.id}",
            name=m.label,
            provider="cursor",
            description=m.description,
            supports_thinking=m.has_thinking,
            default=m.id == "auto",
        )
        for m in CURSOR_MODEL_MAP.values()
    ]


def codex_model_definitions() -> list[ModelDefinition]:
    return [
        ModelDefinition(
            id=f"{CODEX_PREFIX}{model_id}",
            name=label,
            provider="codex",
            supports_thinking=True,
            default=index == 0,
        )
        for index, (model_id, label) in enumerate(CODEX_MODELS)
    ]
