"""Pytest configuration and fixtures for contextpack tests."""

import json
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, Optional, Sequence

import pytest

from contextpack_cli.hashing import file_hash, semantic_hash
from contextpack_cli.manifest import build_manifest
from contextpack_cli.models import Composition, Contract, Interface, ProjectManifest
from contextpack_cli.resolver import component_name
from contextpack_cli.storage import SidecarContractStore, sidecar_path


def default_source(entry_id: str) -> str:
    name = component_name(entry_id)
    return (
        "/**\n"
        " * @ctxpack Contract 0.3\n"
        f" * Description: {name} component\n"
        " */\n"
        f"export function {name}() {{\n"
        "  return null;\n"
        "}\n"
    )


def build_contract(
    entry_id: str,
    components: Sequence[str] = (),
    functions: Sequence[str] = (),
    imports: Sequence[str] = (),
    props: Optional[Dict[str, str]] = None,
    emits: Optional[Dict[str, str]] = None,
    state: Optional[Dict[str, str]] = None,
    source: Optional[str] = None,
) -> Contract:
    composition = Composition(
        components=tuple(components),
        functions=tuple(functions),
        imports=tuple(imports),
    )
    interface = Interface(props=dict(props or {}), emits=dict(emits or {}), state=dict(state or {}))
    return Contract(
        entry_id=entry_id,
        description=f"{component_name(entry_id)} component",
        composition=composition,
        interface=interface,
        semantic_hash=semantic_hash(composition, interface),
        file_hash=file_hash(source if source is not None else default_source(entry_id)),
    )


class SampleProject:
    """A throwaway project: sources on disk plus their contract sidecars."""

    def __init__(self, root: Path):
        self.root = root
        self.store = SidecarContractStore(root)
        self.contracts: Dict[str, Contract] = {}

    def add(self, entry_id: str, source: Optional[str] = None, **kwargs) -> Contract:
        source = source if source is not None else default_source(entry_id)
        path = self.root / entry_id
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(source, encoding="utf-8")
        contract = build_contract(entry_id, source=source, **kwargs)
        self.store.put(contract)
        self.contracts[entry_id] = contract
        return contract

    def remove(self, entry_id: str) -> None:
        (self.root / entry_id).unlink()
        sidecar_path(entry_id, self.root).unlink()
        self.contracts.pop(entry_id, None)

    def drop_sidecar(self, entry_id: str) -> None:
        sidecar_path(entry_id, self.root).unlink()

    def write_package_json(self, **sections: Dict[str, str]) -> None:
        payload = {"name": "sample-app", "version": "1.0.0", **sections}
        (self.root / "package.json").write_text(json.dumps(payload), encoding="utf-8")

    def manifest(self) -> ProjectManifest:
        return build_manifest(self.contracts)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def project(temp_dir: Path) -> SampleProject:
    """Empty sample project rooted in a temp directory."""
    return SampleProject(temp_dir)


@pytest.fixture
def chain_project(project: SampleProject) -> SampleProject:
    """``A -> B -> C`` where A also references the ``left-pad`` package."""
    project.add("src/A.tsx", components=["B", "left-pad"], props={"title": "string"})
    project.add("src/B.tsx", components=["C"], props={"label": "string"}, emits={"onClick": "() => void"})
    project.add("src/C.tsx", props={"size": "number"}, state={"open": "boolean"})
    project.write_package_json(dependencies={"left-pad": "^1.3.0"})
    return project


@pytest.fixture
def contract_factory():
    """Build contracts without touching the filesystem."""
    return build_contract
