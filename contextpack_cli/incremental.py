"""Watch cache and the full / incremental regeneration engine."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .config import IGNORE_FILE_NAME, SIDECAR_SUFFIX
from .models import Bundle, Contract, PackOptions, ProjectManifest
from .manifest import build_manifest, patch_manifest
from .orchestrator import PackOrchestrator
from .resolver import normalize_entry_id, resolve_dependency
from .storage import SidecarContractStore, SourceReader, entry_id_for_sidecar, is_ignored, read_ignore_patterns

logger = logging.getLogger(__name__)


@dataclass
class WatchCache:
    """Live graph state for one watch session. Never shared between sessions."""
    contracts: Dict[str, Contract]
    manifest: ProjectManifest
    bundles: Dict[str, Bundle] = field(default_factory=dict)
    component_to_bundles: Dict[str, Set[str]] = field(default_factory=dict)

    def reindex(self) -> None:
        index: Dict[str, Set[str]] = {}
        for entry_id, bundle in self.bundles.items():
            for node_id in bundle.node_ids:
                index.setdefault(normalize_entry_id(node_id), set()).add(entry_id)
        self.component_to_bundles = index

    def bundle_list(self) -> List[Bundle]:
        return [self.bundles[key] for key in sorted(self.bundles)]


@dataclass
class RebuildResult:
    mode: str
    changed_files: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "mode": self.mode,
            "changedFiles": list(self.changed_files),
            "updatedBundles": list(self.updated),
            "removedBundles": list(self.removed),
            "failures": dict(self.failures),
            "durationMs": self.duration_ms,
        }


def to_entry_id(path: str) -> str:
    """Map a changed file to the entry it affects; sidecars map to their source."""
    normalized = normalize_entry_id(path)
    if normalized.endswith(SIDECAR_SUFFIX):
        return entry_id_for_sidecar(normalized) or normalized
    return normalized


def requires_full_rebuild(changed: Iterable[str]) -> bool:
    return any(normalize_entry_id(path).rsplit("/", 1)[-1] == IGNORE_FILE_NAME for path in changed)


class RegenerationEngine:
    """Builds and patches a :class:`WatchCache` for one project."""

    def __init__(
        self,
        project_root: Path,
        options: PackOptions,
        store: Optional[SidecarContractStore] = None,
        reader: Optional[SourceReader] = None,
    ):
        self.project_root = Path(project_root)
        self.options = options
        self.store = store or SidecarContractStore(self.project_root)
        self.orchestrator = PackOrchestrator(self.project_root, self.store, reader)

    async def full_rebuild(self) -> Tuple[WatchCache, RebuildResult]:
        """Load every contract, build the manifest and pack every root."""
        started = time.perf_counter()
        self.orchestrator.package_info.clear()
        contracts = await self.store.load_all()
        manifest = build_manifest(contracts)
        outcome = await self.orchestrator.pack_all(manifest, self.options.with_contracts(contracts))

        cache = WatchCache(
            contracts=contracts,
            manifest=manifest,
            bundles={bundle.entry_id: bundle for bundle in outcome.bundles},
        )
        cache.reindex()
        result = RebuildResult(
            mode="full",
            updated=sorted(cache.bundles),
            failures={entry: str(exc) for entry, exc in outcome.failures.items()},
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        logger.info(
            "Full rebuild: %d contracts, %d bundles in %d ms",
            len(contracts), len(cache.bundles), result.duration_ms,
        )
        return cache, result

    async def _reload(
        self,
        entry_ids: Iterable[str],
        cache: WatchCache,
    ) -> Tuple[List[Contract], List[str]]:
        ignore = await asyncio.to_thread(read_ignore_patterns, self.project_root)
        updated: List[Contract] = []
        removed: List[str] = []
        for entry_id in sorted(set(entry_ids)):
            contract = None
            # A deleted source takes its contract with it, even if the sidecar lingers
            if not is_ignored(entry_id, ignore) and await asyncio.to_thread((self.project_root / entry_id).exists):
                contract = await self.store.get(entry_id)
            if contract is None:
                if entry_id in cache.contracts:
                    removed.append(entry_id)
                continue
            if cache.contracts.get(entry_id) != contract:
                updated.append(contract)
        return updated, removed

    def _unblocked(self, cache: WatchCache) -> Set[str]:
        """Bundles whose previously missing references now resolve."""
        keys = set()
        manifest = cache.manifest
        for entry_id, bundle in cache.bundles.items():
            for dep in bundle.missing:
                if dep.referenced_by and dep.referenced_by in manifest.components:
                    if resolve_dependency(manifest, dep.name, dep.referenced_by) is not None:
                        keys.add(entry_id)
                        break
        return keys

    @staticmethod
    def _resolutions(manifest: ProjectManifest, keys: Iterable[str]) -> Dict[str, Tuple[Optional[str], ...]]:
        """Where each raw dependency of the components at *keys* currently points."""
        resolved = {}
        for key in keys:
            node = manifest.components.get(key)
            if node is not None:
                resolved[key] = tuple(resolve_dependency(manifest, dep, key) for dep in node.dependencies)
        return resolved

    async def incremental_rebuild(self, changed_files: Iterable[str], cache: WatchCache) -> RebuildResult:
        """Patch *cache* in place for *changed_files* and repack affected bundles.

        Raises whatever the contract store or manifest patching raises; the
        caller owns the cache and must discard it in that case.
        """
        started = time.perf_counter()
        changed_files = sorted({normalize_entry_id(path) for path in changed_files})
        result = RebuildResult(mode="incremental", changed_files=changed_files)

        updated, removed = await self._reload((to_entry_id(p) for p in changed_files), cache)
        if not updated and not removed:
            result.duration_ms = int((time.perf_counter() - started) * 1000)
            logger.debug("No contract changes for %s", ", ".join(changed_files))
            return result

        touched = {normalize_entry_id(c.entry_id) for c in updated} | set(removed)
        affected: Set[str] = set()
        for entry_id in touched:
            affected |= cache.component_to_bundles.get(entry_id, set())

        # Adding or removing a key can redirect a name lookup in an untouched bundle
        keys_changed = bool(removed) or any(
            normalize_entry_id(c.entry_id) not in cache.contracts for c in updated
        )
        bundled = sorted(cache.component_to_bundles)
        before = self._resolutions(cache.manifest, bundled) if keys_changed else {}

        for entry_id in removed:
            cache.contracts.pop(entry_id, None)
        for contract in updated:
            cache.contracts[normalize_entry_id(contract.entry_id)] = contract
        patch_manifest(cache.manifest, updated, removed)

        if keys_changed:
            after = self._resolutions(cache.manifest, bundled)
            for key in bundled:
                if before.get(key) != after.get(key):
                    affected |= cache.component_to_bundles[key]

        roots = set(cache.manifest.roots)
        affected |= roots - set(cache.bundles)
        affected |= self._unblocked(cache)

        for entry_id in sorted(set(cache.bundles) - roots):
            del cache.bundles[entry_id]
            result.removed.append(entry_id)

        targets = sorted(affected & roots)
        outcome = await self.orchestrator.pack_all(
            cache.manifest, self.options.with_contracts(cache.contracts), entries=targets,
        )
        for entry_id, exc in outcome.failures.items():
            if cache.bundles.pop(entry_id, None) is not None:
                result.removed.append(entry_id)
            result.failures[entry_id] = str(exc)
        for bundle in outcome.bundles:
            cache.bundles[bundle.entry_id] = bundle
            result.updated.append(bundle.entry_id)

        cache.bundles = dict(sorted(cache.bundles.items()))
        cache.reindex()
        result.removed.sort()
        result.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "Incremental rebuild: %d changed, %d bundles repacked, %d dropped in %d ms",
            len(touched), len(result.updated), len(result.removed), result.duration_ms,
        )
        return result
