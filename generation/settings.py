"""Generation settings — loads from file, env vars, or direct construction."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from providers.base import DEFAULT_MAX_LINE_BYTES, DEFAULT_TERMINATE_GRACE, ProviderConfig
from providers.models import resolve_model_alias
from utils.paths import ensure_data_dir, get_settings_path

BACKLOG_PLANNING_PHASE = "backlog_planning_model"

DEFAULT_BACKLOG_MODIFY_SYSTEM_PROMPT = """\
You are a project planning assistant. You revise existing features on a
development board according to the user's instructions.

Respond with a single JSON object of this shape:
{
  "changes": [
    {
      "type": "update",
      "featureId": "<id of an existing feature>",
      "feature": { "<field to change>": "<new value>" },
      "reason": "<why this change follows from the request>"
    }
  ],
  "summary": "<one or two sentences describing the modifications>"
}

Only "update" changes are allowed. Never add or delete features, and only
reference feature ids that appear in the list you are given. Include only the
fields that actually change."""

DEFAULT_BACKLOG_MODIFY_USER_TEMPLATE = """\
Current features (backlog and in progress):

{{currentFeatures}}

Requested modification:

{{userRequest}}"""


@dataclass
class PhaseModelEntry:
    """Model choice for one generation phase."""

    model: str
    thinking_level: str | None = None

    @classmethod
    def coerce(cls, value: Any) -> PhaseModelEntry:
        """Accept ``"sonnet"``, ``{"model": ..., "thinking_level": ...}`` or an entry."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(model=value)
        if isinstance(value, dict) and value.get("model"):
            return cls(model=str(value["model"]), thinking_level=value.get("thinking_level"))
        raise ValueError(f"Invalid phase model entry: {value!r}")


def _default_phase_models() -> dict[str, PhaseModelEntry]:
    return {BACKLOG_PLANNING_PHASE: PhaseModelEntry(model="sonnet")}


def resolve_phase_model(entry: PhaseModelEntry | str | dict | None) -> tuple[str, str | None]:
    """Return ``(model id, thinking level)`` with Claude aliases expanded."""
    if entry is None:
        entry = _default_phase_models()[BACKLOG_PLANNING_PHASE]
    entry = PhaseModelEntry.coerce(entry)
    return resolve_model_alias(entry.model), entry.thinking_level or None


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass
class GenerationSettings:
    """Settings consumed by generation use cases and the providers they drive."""

    phase_models: dict[str, PhaseModelEntry] = field(default_factory=_default_phase_models)
    backlog_modify_system_prompt: str = DEFAULT_BACKLOG_MODIFY_SYSTEM_PROMPT
    backlog_modify_user_template: str = DEFAULT_BACKLOG_MODIFY_USER_TEMPLATE
    auto_load_claude_md: bool = False
    terminate_grace: float = DEFAULT_TERMINATE_GRACE
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES

    @classmethod
    def load(cls, path: str | Path | None = None) -> GenerationSettings:
        """Load settings from a JSON file, falling back to env vars and defaults.

        Lookup order for each field:
        1. Environment variable (AGENT_EXEC_BACKLOG_MODEL, etc.)
        2. JSON file value (if file exists)
        3. Dataclass default
        """
        data: dict = {}

        path = Path(path) if path is not None else get_settings_path()
        if path.is_file():
            with open(path) as f:
                data = json.load(f)

        # Overlay env vars (env takes precedence over file)
        env_map = {
            "auto_load_claude_md": "AGENT_EXEC_AUTO_LOAD_CLAUDE_MD",
            "terminate_grace": "AGENT_EXEC_TERMINATE_GRACE",
            "max_line_bytes": "AGENT_EXEC_MAX_LINE_BYTES",
        }
        for field_name, env_key in env_map.items():
            env_val = os.environ.get(env_key)
            if env_val is not None:
                data[field_name] = env_val

        phase_models = _default_phase_models()
        for phase, value in (data.get("phase_models") or {}).items():
            phase_models[phase] = PhaseModelEntry.coerce(value)
        backlog_model = os.environ.get("AGENT_EXEC_BACKLOG_MODEL")
        if backlog_model:
            phase_models[BACKLOG_PLANNING_PHASE] = PhaseModelEntry(model=backlog_model)
        data["phase_models"] = phase_models

        # Coerce types
        if "auto_load_claude_md" in data:
            data["auto_load_claude_md"] = _to_bool(data["auto_load_claude_md"])
        if data.get("terminate_grace") is not None:
            data["terminate_grace"] = float(data["terminate_grace"])
        if data.get("max_line_bytes") is not None:
            data["max_line_bytes"] = int(data["max_line_bytes"])

        # Filter to known fields only
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known and v is not None}

        return cls(**filtered)

    def save(self, path: str | Path | None = None) -> Path:
        if path is None:
            ensure_data_dir()
            path = get_settings_path()
        path = Path(path)
        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)
        return path

    def phase_model(self, phase: str) -> PhaseModelEntry:
        return self.phase_models.get(phase) or _default_phase_models()[BACKLOG_PLANNING_PHASE]

    def provider_config(self) -> ProviderConfig:
        return ProviderConfig(terminate_grace=self.terminate_grace, max_line_bytes=self.max_line_bytes)
