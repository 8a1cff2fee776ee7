"""
Centralized path resolution for runtime data.

All internal code uses these functions. No path logic elsewhere.

Structure:
    data/                # or $AGENT_EXEC_DATA_DIR
    └── settings.json    # GenerationSettings (phase models, prompts, limits)
"""
import os
from pathlib import Path

# Resolve project root (works from any file in the project)
PROJECT_ROOT = Path(__file__).parent.parent.resolve()

DATA_DIR_ENV = "AGENT_EXEC_DATA_DIR"


def get_project_dir() -> Path:
    """Get the project root directory."""
    return PROJECT_ROOT


def get_data_dir() -> Path:
    """Get the data directory (``$AGENT_EXEC_DATA_DIR`` overrides ``<project>/data``)."""
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return get_project_dir() / "data"


def get_settings_path() -> Path:
    """Get the path for the settings file."""
    return get_data_dir() / "settings.json"


def ensure_data_dir() -> Path:
    """Ensure the data directory exists and return it."""
    data_dir = get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir
