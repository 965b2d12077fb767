"""Structural diff between two bundle snapshots and violation classification.

Everything here is pure: inputs are never mutated and results do not depend
on the iteration order of the snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .models import Bundle, Contract
from .resolver import normalize_entry_id

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


@dataclass
class AxisDiff:
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    changed: List[Tuple[str, Any, Any]] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.added or self.removed or self.changed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": list(self.added),
            "removed": list(self.removed),
            "changed": [{"name": n, "old": o, "new": v} for n, o, v in self.changed],
        }


@dataclass
class ContractDiff:
    props: AxisDiff = field(default_factory=AxisDiff)
    emits: AxisDiff = field(default_factory=AxisDiff)
    state: AxisDiff = field(default_factory=AxisDiff)
    functions: AxisDiff = field(default_factory=AxisDiff)

    @property
    def empty(self) -> bool:
        return all(axis.empty for axis in (self.props, self.emits, self.state, self.functions))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "props": self.props.to_dict(),
            "emits": self.emits.to_dict(),
            "state": self.state.to_dict(),
            "functions": self.functions.to_dict(),
        }


@dataclass(frozen=True)
class Violation:
    severity: str
    entry_id: str
    kind: str
    name: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "severity": self.severity,
            "entryId": self.entry_id,
            "kind": self.kind,
            "name": self.name,
            "message": self.message,
        }


@dataclass
class ContractChange:
    entry_id: str
    semantic_hash: Optional[Tuple[str, str]] = None
    file_hash: Optional[Tuple[str, str]] = None
    diff: Optional[ContractDiff] = None


@dataclass
class SnapshotDiff:
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    changed: List[ContractChange] = field(default_factory=list)
    bundle_changed: List[Tuple[str, str, str]] = field(default_factory=list)
    violations: List[Violation] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.changed or self.bundle_changed)

    @property
    def errors(self) -> List[Violation]:
        return [v for v in self.violations if v.severity == SEVERITY_ERROR]

    @property
    def warnings(self) -> List[Violation]:
        return [v for v in self.violations if v.severity == SEVERITY_WARNING]


def _compare_maps(old: Mapping[str, Any], new: Mapping[str, Any]) -> AxisDiff:
    axis = AxisDiff()
    for name in sorted(new):
        if name not in old:
            axis.added.append(name)
        elif old[name] != new[name]:
            axis.changed.append((name, old[name], new[name]))
    axis.removed = sorted(name for name in old if name not in new)
    return axis


def _compare_names(old: Tuple[str, ...], new: Tuple[str, ...]) -> AxisDiff:
    old_set, new_set = set(old), set(new)
    return AxisDiff(added=sorted(new_set - old_set), removed=sorted(old_set - new_set))


def compare_contracts(old: Contract, new: Contract) -> ContractDiff:
    return ContractDiff(
        props=_compare_maps(old.interface.props, new.interface.props),
        emits=_compare_maps(old.interface.emits, new.interface.emits),
        state=_compare_maps(old.interface.state, new.interface.state),
        functions=_compare_names(old.composition.functions, new.composition.functions),
    )


def classify(entry_id: str, diff: ContractDiff) -> List[Violation]:
    """Breaking removals are errors; lost state and retyped props are warnings."""
    violations: List[Violation] = []
    for name in diff.props.removed:
        violations.append(Violation(SEVERITY_ERROR, entry_id, "prop", name, f"Prop '{name}' removed"))
    for name in diff.emits.removed:
        violations.append(Violation(SEVERITY_ERROR, entry_id, "event", name, f"Event '{name}' removed"))
    for name in diff.functions.removed:
        violations.append(Violation(SEVERITY_ERROR, entry_id, "function", name, f"Function '{name}' removed"))
    for name in diff.state.removed:
        violations.append(Violation(SEVERITY_WARNING, entry_id, "state", name, f"State '{name}' removed"))
    for name, old_type, new_type in diff.props.changed:
        violations.append(
            Violation(
                SEVERITY_WARNING, entry_id, "prop", name,
                f"Prop '{name}' type changed: {old_type!r} -> {new_type!r}",
            )
        )
    return violations


def _index_contracts(snapshot: Mapping[str, Bundle]) -> Dict[str, Contract]:
    index: Dict[str, Contract] = {}
    for key in sorted(snapshot):
        for node in snapshot[key].nodes:
            index.setdefault(normalize_entry_id(node.contract.entry_id), node.contract)
    return index


def _index_bundles(snapshot: Mapping[str, Bundle]) -> Dict[str, Bundle]:
    return {normalize_entry_id(bundle.entry_id): bundle for bundle in snapshot.values()}


def diff_snapshots(old: Mapping[str, Bundle], new: Mapping[str, Bundle]) -> SnapshotDiff:
    """Compare two ``{entry_id: Bundle}`` snapshots."""
    old_bundles = _index_bundles(old)
    new_bundles = _index_bundles(new)
    old_contracts = _index_contracts(old)
    new_contracts = _index_contracts(new)
    result = SnapshotDiff()

    result.added = sorted(set(new_bundles) - set(old_bundles))
    result.removed = sorted(set(old_bundles) - set(new_bundles))

    for entry_id in sorted(set(old_contracts) & set(new_contracts)):
        before, after = old_contracts[entry_id], new_contracts[entry_id]
        change = ContractChange(entry_id=entry_id)
        if before.semantic_hash != after.semantic_hash:
            change.semantic_hash = (before.semantic_hash, after.semantic_hash)
        if before.file_hash != after.file_hash:
            change.file_hash = (before.file_hash, after.file_hash)
        diff = compare_contracts(before, after)
        if not diff.empty:
            change.diff = diff
            result.violations.extend(classify(entry_id, diff))
        if change.semantic_hash or change.file_hash or change.diff:
            result.changed.append(change)

    for entry_id in sorted(set(old_bundles) & set(new_bundles)):
        old_hash = old_bundles[entry_id].bundle_hash
        new_hash = new_bundles[entry_id].bundle_hash
        if old_hash != new_hash:
            result.bundle_changed.append((entry_id, old_hash, new_hash))

    for entry_id in sorted(new_bundles):
        for dep in new_bundles[entry_id].missing:
            result.violations.append(
                Violation(
                    SEVERITY_WARNING, entry_id, "missing", dep.name,
                    f"Missing dependency '{dep.name}': {dep.reason}",
                )
            )
    return result


@dataclass
class StrictWatchStats:
    """Violation counters accumulated over a strict watch session."""
    total_violations: int = 0
    errors: int = 0
    warnings: int = 0
    regenerations: int = 0
    last_violations: List[Violation] = field(default_factory=list)

    def record(self, violations: List[Violation]) -> None:
        self.regenerations += 1
        self.total_violations += len(violations)
        self.errors += sum(1 for v in violations if v.severity == SEVERITY_ERROR)
        self.warnings += sum(1 for v in violations if v.severity == SEVERITY_WARNING)
        self.last_violations = list(violations)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "totalViolations": self.total_violations,
            "errors": self.errors,
            "warnings": self.warnings,
            "regenerations": self.regenerations,
            "lastViolations": [v.to_dict() for v in self.last_violations],
        }
