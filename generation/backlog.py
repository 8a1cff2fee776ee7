"""Backlog modification — AI-drafted updates to existing board features.

Only features in ``backlog`` or ``in_progress`` are shown to the model, and
only ``update`` changes survive parsing and application; adds and deletes the
model might propose are dropped.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

from providers.models import is_codex_model, is_cursor_model

from .json_extract import extract_json_with_array
from .orchestrator import GenerationOrchestrator, GenerationParams, JobStatus, StartResult, StopResult
from .settings import BACKLOG_PLANNING_PHASE, GenerationSettings, resolve_phase_model

logger = logging.getLogger(__name__)

SCOPE = "backlog-modify"
ELIGIBLE_STATUSES = ("backlog", "in_progress")
PARSE_FAILED_SUMMARY = "Failed to parse AI response"

FOLDED_INSTRUCTIONS = """\
CRITICAL INSTRUCTIONS:
1. DO NOT write any files. Return the JSON in your response only.
2. DO NOT use Write, Edit, or any file modification tools.
3. Respond with ONLY a JSON object - no explanations, no markdown, just raw JSON.
4. Your entire response should be valid JSON starting with { and ending with }.
5. No text before or after the JSON object.
6. ONLY include "update" type changes - no "add" or "delete"."""

_PLACEHOLDER_RE = re.compile(r"\{\{(currentFeatures|userRequest)\}\}")


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

@dataclass
class Feature:
    """The slice of a board feature this use case reads. Other fields ride along in ``extra``."""

    id: str
    category: str = ""
    description: str = ""
    title: str | None = None
    status: str | None = None
    priority: int | None = None
    dependencies: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("id", "category", "description", "title", "status", "priority", "dependencies")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Feature:
        return cls(
            id=str(data["id"]),
            category=data.get("category") or "",
            description=data.get("description") or "",
            title=data.get("title"),
            status=data.get("status"),
            priority=data.get("priority"),
            dependencies=list(data.get("dependencies") or []),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {**self.extra, "id": self.id, "category": self.category,
                                "description": self.description}
        if self.title is not None:
            data["title"] = self.title
        if self.status is not None:
            data["status"] = self.status
        if self.priority is not None:
            data["priority"] = self.priority
        if self.dependencies:
            data["dependencies"] = list(self.dependencies)
        return data

    @property
    def is_modifiable(self) -> bool:
        return self.status in ELIGIBLE_STATUSES


@dataclass
class BacklogChange:
    type: str  # "add" | "update" | "delete"
    feature_id: str | None = None
    feature: dict[str, Any] | None = None
    reason: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BacklogChange:
        feature = data.get("feature")
        return cls(
            type=str(data.get("type") or ""),
            feature_id=data.get("featureId"),
            feature=feature if isinstance(feature, dict) else None,
            reason=str(data.get("reason") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "reason": self.reason}
        if self.feature_id is not None:
            data["featureId"] = self.feature_id
        if self.feature is not None:
            data["feature"] = self.feature
        return data


@dataclass
class BacklogPlanResult:
    changes: list[BacklogChange] = field(default_factory=list)
    summary: str = ""
    dependency_updates: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BacklogPlanResult:
        return cls(
            changes=[BacklogChange.from_dict(c) for c in data.get("changes") or [] if isinstance(c, dict)],
            summary=str(data.get("summary") or ""),
            dependency_updates=list(data.get("dependencyUpdates") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "changes": [c.to_dict() for c in self.changes],
            "summary": self.summary,
            "dependencyUpdates": list(self.dependency_updates),
        }


@dataclass(frozen=True, slots=True)
class ApplyResult:
    applied_changes: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "appliedChanges": list(self.applied_changes)}


class FeatureSource(Protocol):
    """Feature storage, supplied by the host application."""

    async def get_all(self, project_path: str) -> list[Feature]: ...

    async def update(self, project_path: str, feature_id: str, updates: dict[str, Any]) -> Feature: ...


# ---------------------------------------------------------------------------
# Prompt building and response parsing
# ---------------------------------------------------------------------------

def format_features_for_prompt(features: list[Feature]) -> str:
    """List modifiable features for the model, one block per feature."""
    eligible = [f for f in features if f.is_modifiable]
    if not eligible:
        return "No features in backlog or in progress."

    blocks = []
    for f in eligible:
        lines = [
            f"- ID: {f.id}",
            f"  Title: {f.title or 'Untitled'}",
            f"  Description: {f.description}",
            f"  Category: {f.category}",
            f"  Status: {f.status}",
        ]
        if f.priority is not None:
            lines.append(f"  Priority: {f.priority}")
        if f.dependencies:
            lines.append(f"  Dependencies: [{', '.join(f.dependencies)}]")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def parse_modify_response(response: str) -> BacklogPlanResult:
    """Parse the model's reply. Never raises: unusable replies give an empty plan."""
    parsed = extract_json_with_array(response, "changes")
    if parsed is not None:
        plan = BacklogPlanResult.from_dict(parsed)
        plan.changes = [c for c in plan.changes if c.type == "update"]
        plan.dependency_updates = []
        return plan

    logger.warning("Failed to parse backlog modify response (%d chars)", len(response))
    if response:
        logger.warning("Response preview: %.500s", response)
    else:
        logger.error("Backlog modify response is empty; no content was extracted from the stream")
    return BacklogPlanResult(changes=[], summary=PARSE_FAILED_SUMMARY, dependency_updates=[])


def build_modify_request(
    features: list[Feature],
    user_request: str,
    *,
    model: str,
    settings: GenerationSettings,
) -> tuple[str, str | None]:
    """Return ``(prompt, system_prompt)`` for a modify generation.

    Cursor and Codex have no separate system prompt, so it is folded into the
    prompt along with explicit JSON-only instructions.
    """
    current = format_features_for_prompt(features)
    values = {"currentFeatures": current, "userRequest": user_request}
    user_prompt = _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], settings.backlog_modify_user_template)
    system_prompt = settings.backlog_modify_system_prompt

    if is_cursor_model(model) or is_codex_model(model):
        logger.info("Folding system prompt into the request for %s", model)
        return f"{system_prompt}\n\n{FOLDED_INSTRUCTIONS}\n\n{user_prompt}", None
    return user_prompt, system_prompt


def _plan_artifact(text: str) -> dict[str, Any]:
    return parse_modify_response(text).to_dict()


# ---------------------------------------------------------------------------
# Applying a plan
# ---------------------------------------------------------------------------

async def apply_modify_plan(
    source: FeatureSource,
    project_path: str,
    plan: BacklogPlanResult,
) -> ApplyResult:
    """Apply the update changes of *plan*; anything else, or stale targets, is skipped."""
    features = {f.id: f for f in await source.get_all(project_path)}
    applied: list[str] = []

    for change in plan.changes:
        if change.type != "update" or not change.feature_id or not change.feature:
            continue

        existing = features.get(change.feature_id)
        if existing is None:
            logger.warning("Feature %s not found, skipping", change.feature_id)
            continue
        if not existing.is_modifiable:
            logger.warning(
                "Feature %s is not in backlog/in_progress status (%s), skipping",
                change.feature_id, existing.status,
            )
            continue

        try:
            updated = await source.update(project_path, change.feature_id, change.feature)
        except Exception as exc:
            logger.error("Failed to update %s: %s", change.feature_id, exc)
            continue
        features[change.feature_id] = updated
        applied.append(f"updated:{change.feature_id}")
        logger.info("Updated feature %s", change.feature_id)

    return ApplyResult(applied_changes=applied)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class BacklogModifyService:
    """Generate / status / stop / apply for backlog modification, on the ``backlog-modify`` scope."""

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        source: FeatureSource,
        settings: GenerationSettings | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._source = source
        self._settings = settings or GenerationSettings()

    async def generate(self, project_path: str, prompt: str, model: str | None = None) -> StartResult:
        if not project_path:
            raise ValueError("project_path required")
        if not prompt:
            raise ValueError("prompt required")
        if self._orchestrator.status(SCOPE).is_running:
            return StartResult(accepted=False, error="Backlog modify generation is already running")

        features = await self._source.get_all(project_path)
        eligible = [f for f in features if f.is_modifiable]

        thinking_level = None
        if not model:
            model, thinking_level = resolve_phase_model(self._settings.phase_model(BACKLOG_PLANNING_PHASE))
        logger.info("Backlog modify using model %s", model)

        user_prompt, system_prompt = build_modify_request(
            features, prompt, model=model, settings=self._settings,
        )
        params = GenerationParams(
            prompt=user_prompt,
            model=model,
            cwd=project_path,
            system_prompt=system_prompt,
            max_turns=1,
            allowed_tools=(),
            read_only=True,
            thinking_level=thinking_level,
            setting_sources=("user", "project") if self._settings.auto_load_claude_md else None,
            parser=_plan_artifact,
            notes=(
                f"Loaded {len(eligible)} features (backlog/in_progress) from {len(features)} total",
                "Generating modifications with AI...",
            ),
        )
        return self._orchestrator.start(SCOPE, params)

    def status(self) -> JobStatus:
        return self._orchestrator.status(SCOPE)

    def stop(self) -> StopResult:
        return self._orchestrator.stop(SCOPE)

    async def apply(self, project_path: str, plan: BacklogPlanResult | dict[str, Any]) -> ApplyResult:
        if not project_path:
            raise ValueError("project_path required")
        if isinstance(plan, dict):
            if not isinstance(plan.get("changes"), list):
                raise ValueError("plan with changes required")
            plan = BacklogPlanResult.from_dict(plan)
        return await apply_modify_plan(self._source, project_path, plan)
