"""Bundle assembly helpers: edges, deterministic ordering, hashing, hash-lock."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set

from .hashing import bundle_hash, file_hash
from .models import BundleNode, Contract, Edge, ProjectManifest
from .resolver import normalize_entry_id, resolve_dependency, resolve_key
from .storage import absolute_path

logger = logging.getLogger(__name__)


def _manifest_key(manifest: ProjectManifest, entry_id: str) -> Optional[str]:
    normalized = normalize_entry_id(entry_id)
    if normalized in manifest.components:
        return normalized
    return resolve_key(manifest, normalized)


def build_edges(nodes: Sequence[BundleNode], manifest: ProjectManifest) -> List[Edge]:
    """Dependency edges between nodes that are both in *nodes*.

    Each dependency is resolved from the node's manifest key so that
    directory-relative references land on the right file.
    """
    node_ids: Set[str] = {normalize_entry_id(node.entry_id) for node in nodes}
    edges: Set[Edge] = set()

    for node in nodes:
        source = normalize_entry_id(node.entry_id)
        key = _manifest_key(manifest, node.entry_id)
        if key is None:
            continue
        for dep in manifest.components[key].dependencies:
            resolved = resolve_dependency(manifest, dep, key)
            if resolved is None:
                continue
            target = normalize_entry_id(resolved)
            if target in node_ids:
                edges.add((source, target))

    return sort_edges(edges)


def stable_sort(nodes: Iterable[BundleNode]) -> List[BundleNode]:
    return sorted(nodes, key=lambda node: node.entry_id)


def sort_edges(edges: Iterable[Edge]) -> List[Edge]:
    return sorted(edges)


def compute_bundle_hash(nodes: Sequence[BundleNode], depth: int) -> str:
    """Hash of an already sorted node list.

    Entry ids are normalized first, so a node list produced with backslash
    separators hashes the same as its slash-separated twin.
    """
    pairs = [(normalize_entry_id(node.entry_id), node.contract.semantic_hash) for node in nodes]
    return bundle_hash(pairs, depth)


def _current_file_hash(entry_key: str, project_root: Path) -> str:
    content = absolute_path(entry_key, project_root).read_text(encoding="utf-8")
    return file_hash(content)


async def validate_hash_lock(contract: Contract, entry_key: str, project_root: Path) -> bool:
    """True only when the source on disk still hashes to ``contract.file_hash``.

    Any failure to read or hash the source counts as a mismatch.
    """
    try:
        current = await asyncio.to_thread(_current_file_hash, entry_key, project_root)
    except (OSError, UnicodeDecodeError, ValueError) as exc:
        logger.debug("Hash-lock read failed for %s: %s", entry_key, exc)
        return False
    if current != contract.file_hash:
        logger.debug("Hash-lock mismatch for %s: %s != %s", entry_key, current, contract.file_hash)
        return False
    return True
