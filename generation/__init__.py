"""Generation — single-flight generation jobs over the providers package.

Usage::

    from generation import EventBus, GenerationOrchestrator, GenerationParams

    bus = EventBus()
    bus.subscribe(lambda name, payload: print(name, payload))
    orchestrator = GenerationOrchestrator(bus)

    result = orchestrator.start("plan", GenerationParams(prompt="...", model="sonnet", cwd="."))
    await orchestrator.wait("plan")
"""

from .backlog import (
    BacklogChange,
    BacklogModifyService,
    BacklogPlanResult,
    Feature,
    FeatureSource,
    apply_modify_plan,
    format_features_for_prompt,
    parse_modify_response,
)
from .events import EventBus
from .json_extract import extract_json_with_array
from .orchestrator import (
    GenerationOrchestrator,
    GenerationParams,
    JobStatus,
    StartResult,
    StopResult,
)
from .settings import GenerationSettings, PhaseModelEntry, resolve_phase_model

__all__ = [
    # Core classes
    "EventBus",
    "GenerationOrchestrator",
    "GenerationSettings",
    "BacklogModifyService",
    # Data types
    "GenerationParams",
    "StartResult",
    "StopResult",
    "JobStatus",
    "PhaseModelEntry",
    "Feature",
    "FeatureSource",
    "BacklogChange",
    "BacklogPlanResult",
    # Helpers
    "resolve_phase_model",
    "extract_json_with_array",
    "format_features_for_prompt",
    "parse_modify_response",
    "apply_modify_plan",
]
