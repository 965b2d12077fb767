"""Transient watch-status file and the optional JSONL watch log.

The status file exists only while a watch session runs; external tools read it
to find the session (and, in strict mode, its violation counters).
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import psutil

from .config import WATCH_LOG_NAME, WATCH_STATUS_NAME, ensure_project_state_dir, project_state_dir
from .errors import PackIOError

logger = logging.getLogger(__name__)


def status_path(project_root: Path) -> Path:
    return project_state_dir(project_root) / WATCH_STATUS_NAME


def log_path(project_root: Path) -> Path:
    return project_state_dir(project_root) / WATCH_LOG_NAME


def new_status(project_root: Path, output_dir: Path, strict: bool = False) -> Dict[str, Any]:
    return {
        "active": True,
        "projectRoot": str(project_root),
        "pid": os.getpid(),
        "startedAt": datetime.now(timezone.utc).isoformat(),
        "outputDir": str(output_dir),
        "strictWatch": strict,
    }


def write_watch_status(project_root: Path, status: Dict[str, Any]) -> Path:
    path = status_path(project_root)
    try:
        ensure_project_state_dir(project_root)
        path.write_text(json.dumps(status, indent=2), encoding="utf-8")
    except OSError as exc:
        raise PackIOError(str(path), "Failed to write watch status", exc) from exc
    return path


def read_watch_status(project_root: Path) -> Optional[Dict[str, Any]]:
    path = status_path(project_root)
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None


def active_watch(project_root: Path) -> Optional[Dict[str, Any]]:
    """Status of a watch session still running on *project_root*, if any.

    A status file left behind by a process that no longer exists does not count.
    """
    status = read_watch_status(project_root)
    if not status or not status.get("active"):
        return None
    pid = status.get("pid")
    if not isinstance(pid, int) or not psutil.pid_exists(pid):
        logger.debug("Ignoring stale watch status for pid %s", pid)
        return None
    return status


def delete_watch_status(project_root: Path) -> bool:
    """Remove the status file; returns False when there was nothing to remove."""
    path = status_path(project_root)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning("Could not delete %s: %s", path, exc)
        return False
    return True


def append_watch_log(project_root: Path, entry: Dict[str, Any]) -> None:
    path = log_path(project_root)
    record = {"timestamp": datetime.now(timezone.utc).isoformat(), **entry}
    try:
        ensure_project_state_dir(project_root)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record) + "\n")
    except OSError as exc:
        raise PackIOError(str(path), "Failed to append watch log", exc) from exc


def read_watch_log(project_root: Path) -> List[Dict[str, Any]]:
    path = log_path(project_root)
    if not path.exists():
        return []
    entries = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if line.strip():
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug("Skipping malformed watch log line")
    return entries
