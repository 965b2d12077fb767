"""Core data models shared by resolution, packing and watch layers.

Contracts and bundles are frozen; they are replaced wholesale, never mutated.
``to_dict`` / ``from_dict`` use the camelCase keys of the on-disk JSON shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from .config import (
    BUNDLE_SCHEMA_VERSION,
    DEFAULT_DEPTH,
    DEFAULT_INCLUDE_CODE,
    DEFAULT_MAX_NODES,
    PACKAGE_SOURCE,
)

CodeInclusion = Literal["none", "header", "full"]
Edge = Tuple[str, str]


@dataclass(frozen=True)
class Composition:
    """What a module is built from."""
    components: Tuple[str, ...] = ()
    functions: Tuple[str, ...] = ()
    imports: Tuple[str, ...] = ()
    variables: Tuple[str, ...] = ()
    hooks: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "variables": list(self.variables),
            "hooks": list(self.hooks),
            "components": list(self.components),
            "functions": list(self.functions),
            "imports": list(self.imports),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Composition":
        return cls(
            components=tuple(payload.get("components") or ()),
            functions=tuple(payload.get("functions") or ()),
            imports=tuple(payload.get("imports") or ()),
            variables=tuple(payload.get("variables") or ()),
            hooks=tuple(payload.get("hooks") or ()),
        )


@dataclass(frozen=True)
class Interface:
    """Declared public surface: input fields, emitted events, internal state."""
    props: Dict[str, Any] = field(default_factory=dict)
    emits: Dict[str, Any] = field(default_factory=dict)
    state: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"props": dict(self.props), "emits": dict(self.emits)}
        if self.state:
            payload["state"] = dict(self.state)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Interface":
        return cls(
            props=dict(payload.get("props") or {}),
            emits=dict(payload.get("emits") or {}),
            state=dict(payload.get("state") or {}),
        )


@dataclass(frozen=True)
class Contract:
    entry_id: str
    description: str
    composition: Composition
    interface: Interface
    semantic_hash: str
    file_hash: str
    kind: str = "react:component"

    def is_internal_helper(self, name: str) -> bool:
        """True when *name* is both used as a sub-element and declared locally."""
        return name in self.composition.components and name in self.composition.functions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "ComponentContract",
            "kind": self.kind,
            "entryId": self.entry_id,
            "description": self.description,
            "composition": self.composition.to_dict(),
            "interface": self.interface.to_dict(),
            "semanticHash": self.semantic_hash,
            "fileHash": self.file_hash,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Contract":
        composition = payload.get("composition") or {}
        interface = payload.get("interface") or {}
        return cls(
            entry_id=payload["entryId"],
            description=payload.get("description", ""),
            composition=Composition.from_dict(composition),
            interface=Interface.from_dict(interface),
            semantic_hash=payload["semanticHash"],
            file_hash=payload["fileHash"],
            kind=payload.get("kind", "react:component"),
        )


@dataclass
class ComponentNode:
    entry_id: str
    description: str
    dependencies: List[str]
    semantic_hash: str
    used_by: List[str] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entryId": self.entry_id,
            "description": self.description,
            "dependencies": list(self.dependencies),
            "usedBy": list(self.used_by),
            "imports": list(self.imports),
            "semanticHash": self.semantic_hash,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ComponentNode":
        return cls(
            entry_id=payload["entryId"],
            description=payload.get("description", ""),
            dependencies=list(payload.get("dependencies") or []),
            semantic_hash=payload.get("semanticHash", ""),
            used_by=list(payload.get("usedBy") or []),
            imports=list(payload.get("imports") or []),
        )


@dataclass
class ProjectManifest:
    components: Dict[str, ComponentNode] = field(default_factory=dict)
    roots: List[str] = field(default_factory=list)
    leaves: List[str] = field(default_factory=list)
    version: str = "0.3"

    @property
    def total_components(self) -> int:
        return len(self.components)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "totalComponents": self.total_components,
            "components": {key: node.to_dict() for key, node in self.components.items()},
            "graph": {"roots": list(self.roots), "leaves": list(self.leaves)},
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ProjectManifest":
        graph = payload.get("graph") or {}
        return cls(
            components={
                key: ComponentNode.from_dict(node)
                for key, node in (payload.get("components") or {}).items()
            },
            roots=list(graph.get("roots") or []),
            leaves=list(graph.get("leaves") or []),
            version=payload.get("version", "0.3"),
        )


@dataclass(frozen=True)
class MissingDependency:
    name: str
    reason: str
    referenced_by: Optional[str] = None
    package_name: Optional[str] = None
    version: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        payload = {"name": self.name, "reason": self.reason}
        if self.referenced_by is not None:
            payload["referencedBy"] = self.referenced_by
        if self.package_name is not None:
            payload["packageName"] = self.package_name
        if self.version is not None:
            payload["version"] = self.version
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "MissingDependency":
        return cls(
            name=payload["name"],
            reason=payload.get("reason", ""),
            referenced_by=payload.get("referencedBy"),
            package_name=payload.get("packageName"),
            version=payload.get("version"),
        )


@dataclass(frozen=True)
class BundleNode:
    entry_id: str
    contract: Contract
    code_header: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"entryId": self.entry_id, "contract": self.contract.to_dict()}
        if self.code_header is not None:
            payload["codeHeader"] = self.code_header
        if self.code is not None:
            payload["code"] = self.code
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BundleNode":
        return cls(
            entry_id=payload["entryId"],
            contract=Contract.from_dict(payload["contract"]),
            code_header=payload.get("codeHeader"),
            code=payload.get("code"),
        )


@dataclass(frozen=True)
class Bundle:
    entry_id: str
    depth: int
    bundle_hash: str
    nodes: Tuple[BundleNode, ...]
    edges: Tuple[Edge, ...]
    missing: Tuple[MissingDependency, ...] = ()
    schema_version: str = BUNDLE_SCHEMA_VERSION
    source: str = PACKAGE_SOURCE
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def node_ids(self) -> List[str]:
        return [node.entry_id for node in self.nodes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "ContextBundle",
            "schemaVersion": self.schema_version,
            "entryId": self.entry_id,
            "depth": self.depth,
            "createdAt": self.created_at,
            "bundleHash": self.bundle_hash,
            "graph": {
                "nodes": [node.to_dict() for node in self.nodes],
                "edges": [list(edge) for edge in self.edges],
            },
            "meta": {
                "missing": [m.to_dict() for m in self.missing],
                "source": self.source,
            },
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Bundle":
        graph = payload.get("graph") or {}
        meta = payload.get("meta") or {}
        return cls(
            entry_id=payload["entryId"],
            depth=int(payload.get("depth", 0)),
            bundle_hash=payload["bundleHash"],
            nodes=tuple(BundleNode.from_dict(n) for n in graph.get("nodes") or []),
            edges=tuple((e[0], e[1]) for e in graph.get("edges") or []),
            missing=tuple(MissingDependency.from_dict(m) for m in meta.get("missing") or []),
            schema_version=payload.get("schemaVersion", BUNDLE_SCHEMA_VERSION),
            source=meta.get("source", PACKAGE_SOURCE),
            created_at=payload.get("createdAt", ""),
        )


@dataclass(frozen=True)
class PackOptions:
    depth: int = DEFAULT_DEPTH
    max_nodes: int = DEFAULT_MAX_NODES
    include_code: CodeInclusion = DEFAULT_INCLUDE_CODE
    strict: bool = False
    allow_missing: bool = True
    hash_lock: bool = False
    # Optional in-memory contracts, consulted before the provider
    contracts: Optional[Mapping[str, Contract]] = field(default=None, compare=False)

    def __post_init__(self):
        if self.depth < 0:
            raise ValueError(f"depth must be >= 0, got {self.depth}")
        if self.max_nodes < 1:
            raise ValueError(f"max_nodes must be >= 1, got {self.max_nodes}")
        if self.include_code not in ("none", "header", "full"):
            raise ValueError(f"include_code must be none, header or full, got {self.include_code!r}")

    def with_contracts(self, contracts: Optional[Mapping[str, Contract]]) -> "PackOptions":
        return replace(self, contracts=contracts)
