"""Configuration paths and defaults for contextpack."""

from __future__ import annotations

from pathlib import Path

from . import __version__

# Per-project state lives next to the sources
PROJECT_STATE_DIRNAME = ".contextpack"
PROJECT_CONFIG_NAME = "config.toml"
WATCH_STATUS_NAME = "watch_status.json"
WATCH_LOG_NAME = "watch_log.jsonl"

SOURCE_EXTENSIONS = (".tsx", ".ts", ".jsx", ".js")
SIDECAR_SUFFIX = ".contract.json"
IGNORE_FILE_NAME = ".packignore"

SKIP_DIRS = {
    "node_modules", ".git", "dist", "build", ".next", "coverage",
    ".contextpack", "__pycache__", ".venv", "venv",
}

CONTEXT_FILE_NAME = "context.json"
MAIN_INDEX_NAME = "context_main.json"

BUNDLE_SCHEMA_VERSION = "0.1"
PACKAGE_SOURCE = f"contextpack-cli@{__version__}"

DEFAULT_DEPTH = 1
DEFAULT_MAX_NODES = 100
DEFAULT_INCLUDE_CODE = "header"
DEFAULT_DEBOUNCE_SECONDS = 0.5


def project_state_dir(project_root: Path) -> Path:
    return Path(project_root) / PROJECT_STATE_DIRNAME


def ensure_project_state_dir(project_root: Path) -> Path:
    """Create the per-project state directory if needed."""
    path = project_state_dir(project_root)
    path.mkdir(parents=True, exist_ok=True)
    return path
