"""Build and patch the project manifest from a set of contracts."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping

from .models import ComponentNode, Contract, ProjectManifest
from .resolver import normalize_entry_id, resolve_dependency

logger = logging.getLogger(__name__)


def _node_for(contract: Contract) -> ComponentNode:
    composition = contract.composition
    return ComponentNode(
        entry_id=normalize_entry_id(contract.entry_id),
        description=contract.description,
        dependencies=list(dict.fromkeys(composition.components)),
        semantic_hash=contract.semantic_hash,
        imports=list(composition.imports),
    )


def _relink(manifest: ProjectManifest) -> None:
    """Recompute ``used_by``, roots and leaves from the dependency lists."""
    used_by: Dict[str, set] = {key: set() for key in manifest.components}
    for key in sorted(manifest.components):
        for dep in manifest.components[key].dependencies:
            target = resolve_dependency(manifest, dep, key)
            if target is not None and target != key:
                used_by[target].add(key)

    for key, node in manifest.components.items():
        node.used_by = sorted(used_by[key])

    manifest.roots = sorted(key for key, node in manifest.components.items() if not node.used_by)
    manifest.leaves = sorted(key for key, node in manifest.components.items() if not node.dependencies)


def build_manifest(contracts: Mapping[str, Contract]) -> ProjectManifest:
    """Fresh manifest covering every contract."""
    manifest = ProjectManifest()
    for contract in sorted(contracts.values(), key=lambda c: normalize_entry_id(c.entry_id)):
        node = _node_for(contract)
        manifest.components[node.entry_id] = node
    _relink(manifest)
    logger.debug(
        "Manifest built: %d components, %d roots, %d leaves",
        manifest.total_components, len(manifest.roots), len(manifest.leaves),
    )
    return manifest


def patch_manifest(
    manifest: ProjectManifest,
    updated: Iterable[Contract],
    removed: Iterable[str] = (),
) -> ProjectManifest:
    """Replace nodes for *updated* contracts and drop *removed* keys, in place."""
    for entry_id in removed:
        manifest.components.pop(normalize_entry_id(entry_id), None)
    for contract in updated:
        node = _node_for(contract)
        manifest.components[node.entry_id] = node
    manifest.components = dict(sorted(manifest.components.items()))
    _relink(manifest)
    return manifest


def generate_stats(manifest: ProjectManifest) -> Dict[str, Any]:
    """Usage statistics shown by ``ctxpack manifest``."""
    components = manifest.components.values()
    most_used = sorted(components, key=lambda n: (-len(n.used_by), n.entry_id))[:5]
    total_deps = sum(len(node.dependencies) for node in components)
    return {
        "totalComponents": manifest.total_components,
        "roots": len(manifest.roots),
        "leaves": len(manifest.leaves),
        "averageDependencies": round(total_deps / manifest.total_components, 2)
        if manifest.total_components else 0.0,
        "mostUsed": [
            {"entryId": node.entry_id, "usedBy": len(node.used_by)}
            for node in most_used if node.used_by
        ],
    }
