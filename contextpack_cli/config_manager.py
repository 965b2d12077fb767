"""Per-project configuration stored as TOML in ``<root>/.contextpack/config.toml``.

Example::

    profile = "llm-safe"

    [pack]
    depth = 2
    include_code = "header"

    [watch]
    debounce = 0.5
    strict = true
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import toml

from .config import (
    DEFAULT_DEBOUNCE_SECONDS,
    DEFAULT_DEPTH,
    DEFAULT_INCLUDE_CODE,
    DEFAULT_MAX_NODES,
    PROJECT_CONFIG_NAME,
    ensure_project_state_dir,
    project_state_dir,
)
from .models import PackOptions

logger = logging.getLogger(__name__)

PACK_KEYS = ("depth", "max_nodes", "include_code", "strict", "allow_missing", "hash_lock")

DEFAULT_CONFIG: Dict[str, Any] = {
    "profile": "",
    "pack": {
        "depth": DEFAULT_DEPTH,
        "max_nodes": DEFAULT_MAX_NODES,
        "include_code": DEFAULT_INCLUDE_CODE,
        "strict": False,
        "allow_missing": True,
        "hash_lock": False,
    },
    "watch": {
        "debounce": DEFAULT_DEBOUNCE_SECONDS,
        "strict": False,
        "log_file": False,
    },
}

# Named presets for common pack targets
PROFILES: Dict[str, Dict[str, Any]] = {
    "llm-safe": {"depth": 1, "include_code": "header", "hash_lock": False, "max_nodes": 30, "allow_missing": True},
    "llm-chat": {"depth": 1, "include_code": "header", "hash_lock": False, "max_nodes": 100},
    "ci-strict": {"include_code": "none", "hash_lock": False, "strict": True},
}


def config_path(project_root: Path) -> Path:
    return project_state_dir(project_root) / PROJECT_CONFIG_NAME


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(project_root: Path) -> Dict[str, Any]:
    """Load the project config, falling back to defaults.

    A missing or unreadable file yields the defaults; unreadable files are
    logged, never raised.
    """
    path = config_path(project_root)
    if not path.exists():
        return copy.deepcopy(DEFAULT_CONFIG)
    try:
        with open(path, "r", encoding="utf-8") as f:
            loaded = toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return copy.deepcopy(DEFAULT_CONFIG)
    return _merge(DEFAULT_CONFIG, loaded)


def save_config(project_root: Path, config: Mapping[str, Any]) -> bool:
    """Write *config* to the project config file.

    Returns:
        True if saved successfully, False otherwise
    """
    try:
        ensure_project_state_dir(project_root)
        with open(config_path(project_root), "w", encoding="utf-8") as f:
            toml.dump(dict(config), f)
        return True
    except OSError as exc:
        logger.warning("Could not save config: %s", exc)
        return False


def resolve_pack_options(
    config: Mapping[str, Any],
    profile: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> PackOptions:
    """Combine config, profile and explicit overrides into PackOptions.

    Precedence, lowest first: built-in defaults, ``[pack]`` section, profile
    (argument, else the config's ``profile`` key), then non-None overrides.

    Raises:
        ValueError: unknown profile or invalid option values.
    """
    values: Dict[str, Any] = dict(DEFAULT_CONFIG["pack"])
    values.update({k: v for k, v in (config.get("pack") or {}).items() if k in PACK_KEYS})

    profile = profile or config.get("profile") or None
    if profile:
        if profile not in PROFILES:
            raise ValueError(f"Unknown profile {profile!r}; choose from {', '.join(sorted(PROFILES))}")
        values.update(PROFILES[profile])

    for key, value in (overrides or {}).items():
        if key in PACK_KEYS and value is not None:
            values[key] = value

    return PackOptions(
        depth=int(values["depth"]),
        max_nodes=int(values["max_nodes"]),
        include_code=values["include_code"],
        strict=bool(values["strict"]),
        allow_missing=bool(values["allow_missing"]),
        hash_lock=bool(values["hash_lock"]),
    )


def watch_settings(config: Mapping[str, Any]) -> Dict[str, Any]:
    return _merge(DEFAULT_CONFIG["watch"], config.get("watch") or {})
