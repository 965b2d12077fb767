"""Bounded breadth-first dependency collection."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Set

from .models import Contract, MissingDependency, ProjectManifest
from .package_info import extract_package_name
from .resolver import resolve_dependency, resolve_key

REASON_ENTRY_NOT_FOUND = "Component not found in manifest"
REASON_NO_CONTRACT = "No contract found (third-party or not scanned)"
REASON_THIRD_PARTY = "Third-party package (no contract)"


@dataclass
class CollectResult:
    order: List[str] = field(default_factory=list)
    missing: List[MissingDependency] = field(default_factory=list)

    @property
    def visited(self) -> Set[str]:
        return set(self.order)


def _missing_for(name: str, referenced_by: Optional[str]) -> MissingDependency:
    package = extract_package_name(name)
    if referenced_by is None:
        reason = REASON_THIRD_PARTY if package else REASON_ENTRY_NOT_FOUND
    else:
        reason = REASON_NO_CONTRACT
    return MissingDependency(
        name=name,
        reason=reason,
        referenced_by=referenced_by,
        package_name=package,
    )


def collect(
    entry: str,
    manifest: ProjectManifest,
    depth: int,
    max_nodes: int,
    contracts: Optional[Mapping[str, Contract]] = None,
) -> CollectResult:
    """Collect the keys reachable from *entry* within *depth* hops.

    ``max_nodes`` is a budget: once reached, nothing else is added and the
    traversal ends quietly. Unresolved references are reported as missing
    unless they name an internal helper of the referencing module.
    """
    result = CollectResult()
    if max_nodes < 1:
        return result

    entry_key = resolve_key(manifest, entry)
    if entry_key is None:
        result.missing.append(_missing_for(entry, None))
        return result

    seen: Set[str] = {entry_key}
    reported: Set[str] = set()
    result.order.append(entry_key)
    queue = deque([(entry_key, 0)])

    while queue:
        current, level = queue.popleft()
        if level >= depth:
            continue
        node = manifest.components[current]
        contract = contracts.get(current) if contracts else None

        for dep in sorted(set(node.dependencies)):
            resolved = resolve_dependency(manifest, dep, current)
            if resolved is None:
                if contract is not None and contract.is_internal_helper(dep):
                    continue
                if dep not in reported:
                    reported.add(dep)
                    result.missing.append(_missing_for(dep, current))
                continue
            if resolved in seen:
                continue
            if len(seen) >= max_nodes:
                continue
            seen.add(resolved)
            result.order.append(resolved)
            queue.append((resolved, level + 1))

    return result

