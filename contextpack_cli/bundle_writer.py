"""On-disk bundle layout: one ``context.json`` per folder plus a main index."""

from __future__ import annotations

import json
import logging
import math
import posixpath
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .config import BUNDLE_SCHEMA_VERSION, CONTEXT_FILE_NAME, MAIN_INDEX_NAME, PACKAGE_SOURCE
from .errors import PackIOError
from .models import Bundle
from .resolver import normalize_entry_id

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    return math.ceil(len(text) / 4)


def folder_of(entry_id: str) -> str:
    folder = posixpath.dirname(normalize_entry_id(entry_id))
    return folder or "."


def group_by_folder(bundles: Sequence[Bundle]) -> Dict[str, List[Bundle]]:
    groups: Dict[str, List[Bundle]] = {}
    for bundle in sorted(bundles, key=lambda b: b.entry_id):
        groups.setdefault(folder_of(bundle.entry_id), []).append(bundle)
    return dict(sorted(groups.items()))


def render_bundles(bundles: Sequence[Bundle]) -> str:
    return json.dumps([bundle.to_dict() for bundle in bundles], indent=2)


@dataclass
class WriteSummary:
    out_dir: Path
    folders: List[Dict[str, Any]] = field(default_factory=list)
    total_tokens: int = 0

    @property
    def files_written(self) -> int:
        # Folder files plus the main index
        return len(self.folders) + 1


def _write(path: Path, text: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise PackIOError(str(path), "Failed to write bundle file", exc) from exc


def write_bundles(
    bundles: Sequence[Bundle],
    out_dir: Path,
    total_components: Optional[int] = None,
) -> WriteSummary:
    """Write every bundle grouped by folder and refresh ``context_main.json``."""
    out_dir = Path(out_dir)
    summary = WriteSummary(out_dir=out_dir)

    for folder, group in group_by_folder(bundles).items():
        text = render_bundles(group)
        tokens = estimate_tokens(text)
        context_file = CONTEXT_FILE_NAME if folder == "." else f"{folder}/{CONTEXT_FILE_NAME}"
        _write(out_dir / context_file, text)
        summary.total_tokens += tokens
        summary.folders.append({
            "path": folder,
            "contextFile": context_file,
            "bundles": len(group),
            "components": sorted(posixpath.basename(b.entry_id) for b in group),
            "tokenEstimate": tokens,
        })

    index = {
        "type": "ContextIndex",
        "schemaVersion": BUNDLE_SCHEMA_VERSION,
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "summary": {
            "totalComponents": total_components if total_components is not None else len(
                {node_id for b in bundles for node_id in b.node_ids}
            ),
            "totalBundles": len(bundles),
            "totalFolders": len(summary.folders),
            "totalTokenEstimate": summary.total_tokens,
        },
        "folders": summary.folders,
        "meta": {"source": PACKAGE_SOURCE},
    }
    _write(out_dir / MAIN_INDEX_NAME, json.dumps(index, indent=2))
    logger.debug("Wrote %d folder files to %s", len(summary.folders), out_dir)
    return summary


def load_index(out_dir: Path) -> Optional[Dict[str, Any]]:
    path = Path(out_dir) / MAIN_INDEX_NAME
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise PackIOError(str(path), "Failed to read context index", exc) from exc


def load_bundles(out_dir: Path) -> List[Bundle]:
    """Every bundle listed by the main index; unreadable folder files are skipped."""
    index = load_index(out_dir)
    if index is None:
        return []
    bundles: List[Bundle] = []
    for folder in index.get("folders") or []:
        context_file = folder.get("contextFile")
        if not context_file:
            continue
        path = Path(out_dir) / context_file
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            bundles.extend(Bundle.from_dict(item) for item in payload)
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as exc:
            logger.warning("Skipping unreadable context file %s: %s", path, exc)
    return sorted(bundles, key=lambda b: b.entry_id)


def load_bundle_file(path: Path) -> List[Bundle]:
    """Bundles from a single ``context.json`` (or a file holding one bundle)."""
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise PackIOError(str(path), "Failed to read bundle file", exc) from exc
    items = payload if isinstance(payload, list) else [payload]
    try:
        return [Bundle.from_dict(item) for item in items]
    except (KeyError, TypeError) as exc:
        raise PackIOError(str(path), "Malformed bundle file", exc) from exc
