"""Pack orchestrator: turn one entry point into an immutable Bundle.

Each call walks the same fixed stages::

    Resolve -> Collect -> Load -> Validate -> Assemble -> Filter -> Finalize

Only Load, Validate and Assemble suspend on I/O, and they do so one visited
key at a time in BFS order. Node and edge lists are sorted before hashing, so
the order in which contracts arrive never affects the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .builder import build_edges, compute_bundle_hash, stable_sort, validate_hash_lock
from .collector import REASON_THIRD_PARTY, collect
from .errors import ContextPackError, EmptyBundleError, IntegrityError, ResolutionError
from .models import Bundle, BundleNode, Contract, MissingDependency, PackOptions, ProjectManifest
from .package_info import PackageInfo
from .resolver import resolve_key
from .storage import ContractProvider, SidecarContractStore, SourceReader, sidecar_path

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5


def _resolve_entry(entry_id: str, manifest: ProjectManifest) -> str:
    key = resolve_key(manifest, entry_id)
    if key is None:
        candidates = sorted(manifest.components)[:MAX_SUGGESTIONS]
        raise ResolutionError(entry_id, candidates, manifest.total_components)
    return key


async def _load_contract(
    key: str,
    contracts: Optional[Mapping[str, Contract]],
    provider: ContractProvider,
) -> Optional[Contract]:
    if contracts and key in contracts:
        return contracts[key]
    return await provider.get(key)


def _filter_internal(
    missing: List[MissingDependency],
    loaded: Mapping[str, Contract],
) -> List[MissingDependency]:
    """Drop references that are same-file helpers of an already loaded contract."""
    kept = []
    for dep in missing:
        if dep.referenced_by is not None:
            owner = loaded.get(dep.referenced_by)
            internal = owner is not None and owner.is_internal_helper(dep.name)
        else:
            internal = any(c.is_internal_helper(dep.name) for c in loaded.values())
        if not internal:
            kept.append(dep)
    return kept


async def _with_versions(
    missing: List[MissingDependency],
    project_root: Path,
    package_info: PackageInfo,
) -> List[MissingDependency]:
    enriched = []
    for dep in missing:
        if dep.package_name and dep.version is None:
            version = await package_info.version_of(dep.package_name, project_root)
            if version is not None:
                dep = replace(dep, version=version)
        enriched.append(dep)
    return enriched


async def pack(
    entry_id: str,
    manifest: ProjectManifest,
    options: PackOptions,
    project_root: Path,
    provider: Optional[ContractProvider] = None,
    reader: Optional[SourceReader] = None,
    package_info: Optional[PackageInfo] = None,
) -> Bundle:
    """Pack *entry_id* and its dependencies into a Bundle.

    Raises:
        ResolutionError: *entry_id* matches no manifest key.
        IntegrityError: a contract is missing in strict mode, or hash-lock
            found a contract that no longer matches its source.
        EmptyBundleError: no contract could be loaded for any visited node.
    """
    project_root = Path(project_root)
    provider = provider or SidecarContractStore(project_root)
    reader = reader or SourceReader()
    package_info = package_info or PackageInfo()

    # Resolve
    entry_key = _resolve_entry(entry_id, manifest)

    # Collect
    collected = collect(entry_key, manifest, options.depth, options.max_nodes, options.contracts)
    missing = list(collected.missing)

    nodes: List[BundleNode] = []
    loaded: Dict[str, Contract] = {}
    for key in collected.order:
        # Load
        contract = await _load_contract(key, options.contracts, provider)
        if contract is None:
            expected = sidecar_path(key, project_root)
            if options.strict:
                raise IntegrityError(key, f"missing contract (strict mode), expected sidecar at {expected}")
            if not options.allow_missing:
                missing.append(MissingDependency(name=key, reason=f"Contract file not found at {expected}"))
            continue

        # Validate
        if options.hash_lock and not await validate_hash_lock(contract, key, project_root):
            raise IntegrityError(
                key,
                "hash-lock validation failed; the source changed since its contract was generated",
            )

        # Assemble
        code_header = code = None
        if options.include_code == "header":
            code_header = await reader.read_header(key, project_root)
        elif options.include_code == "full":
            code = await reader.read_full(key, project_root)
            code_header = await reader.read_header(key, project_root)
        loaded[key] = contract
        nodes.append(BundleNode(entry_id=key, contract=contract, code_header=code_header, code=code))

    if not nodes:
        raise EmptyBundleError(entry_key)

    # Filter
    missing = _filter_internal(missing, loaded)

    # Finalize
    missing = await _with_versions(missing, project_root, package_info)
    sorted_nodes = stable_sort(nodes)
    edges = build_edges(sorted_nodes, manifest)
    bundle = Bundle(
        entry_id=entry_key,
        depth=options.depth,
        bundle_hash=compute_bundle_hash(sorted_nodes, options.depth),
        nodes=tuple(sorted_nodes),
        edges=tuple(edges),
        missing=tuple(missing),
    )
    logger.debug(
        "Packed %s: %d nodes, %d edges, %d missing",
        entry_key, len(bundle.nodes), len(bundle.edges), len(bundle.missing),
    )
    return bundle


@dataclass
class PackAllResult:
    bundles: List[Bundle] = field(default_factory=list)
    failures: Dict[str, ContextPackError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def third_party(self) -> List[MissingDependency]:
        """Unique third-party references across all bundles, by package name."""
        seen: Dict[str, MissingDependency] = {}
        for bundle in self.bundles:
            for dep in bundle.missing:
                if dep.reason == REASON_THIRD_PARTY or dep.package_name:
                    seen.setdefault(dep.package_name or dep.name, dep)
        return [seen[name] for name in sorted(seen)]


async def pack_all(
    manifest: ProjectManifest,
    options: PackOptions,
    project_root: Path,
    entries: Optional[List[str]] = None,
    provider: Optional[ContractProvider] = None,
    reader: Optional[SourceReader] = None,
    package_info: Optional[PackageInfo] = None,
) -> PackAllResult:
    """Pack every root (or every name in *entries*), tolerating per-entry failures."""
    provider = provider or SidecarContractStore(Path(project_root))
    reader = reader or SourceReader()
    package_info = package_info or PackageInfo()

    result = PackAllResult()
    for entry in entries if entries is not None else manifest.roots:
        try:
            bundle = await pack(entry, manifest, options, project_root, provider, reader, package_info)
        except ContextPackError as exc:
            logger.warning("Skipping %s: %s", entry, exc)
            result.failures[entry] = exc
            continue
        result.bundles.append(bundle)
    return result


class PackOrchestrator:
    """Holds the collaborators for repeated pack calls against one project."""

    def __init__(
        self,
        project_root: Path,
        provider: Optional[ContractProvider] = None,
        reader: Optional[SourceReader] = None,
    ):
        self.project_root = Path(project_root)
        self.provider = provider or SidecarContractStore(self.project_root)
        self.reader = reader or SourceReader()
        self.package_info = PackageInfo()

    async def pack(self, entry_id: str, manifest: ProjectManifest, options: PackOptions) -> Bundle:
        return await pack(
            entry_id, manifest, options, self.project_root,
            self.provider, self.reader, self.package_info,
        )

    async def pack_all(
        self,
        manifest: ProjectManifest,
        options: PackOptions,
        entries: Optional[List[str]] = None,
    ) -> PackAllResult:
        return await pack_all(
            manifest, options, self.project_root, entries,
            self.provider, self.reader, self.package_info,
        )
