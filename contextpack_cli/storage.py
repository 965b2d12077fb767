"""Contract providers, source reader and source discovery.

Contracts are produced by an external compiler and stored as JSON sidecars
next to their sources (``src/Button.tsx`` -> ``src/Button.tsx.contract.json``).
Nothing here parses source syntax.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Protocol

from .config import IGNORE_FILE_NAME, SIDECAR_SUFFIX, SKIP_DIRS, SOURCE_EXTENSIONS
from .errors import PackIOError
from .hashing import extract_header, is_valid_hash
from .models import Contract
from .resolver import normalize_entry_id

logger = logging.getLogger(__name__)


def absolute_path(entry_id: str, project_root: Path) -> Path:
    path = Path(entry_id)
    return path if path.is_absolute() else Path(project_root) / entry_id


def sidecar_path(entry_id: str, project_root: Path) -> Path:
    path = absolute_path(entry_id, project_root)
    return path.with_name(path.name + SIDECAR_SUFFIX)


def entry_id_for_sidecar(rel_path: str) -> Optional[str]:
    """``src/Button.tsx.contract.json`` -> ``src/Button.tsx``."""
    normalized = normalize_entry_id(rel_path)
    if not normalized.endswith(SIDECAR_SUFFIX):
        return None
    return normalized[: -len(SIDECAR_SUFFIX)]


# ===================================================================
# Contract providers
# ===================================================================

class ContractProvider(Protocol):
    async def get(self, entry_id: str) -> Optional[Contract]:
        ...


class MemoryContractProvider:
    """Serve contracts from an in-memory map keyed by entry id."""

    def __init__(self, contracts: Mapping[str, Contract]):
        self._contracts = {normalize_entry_id(k): v for k, v in contracts.items()}

    async def get(self, entry_id: str) -> Optional[Contract]:
        return self._contracts.get(normalize_entry_id(entry_id))


class SidecarContractStore:
    """Read and write ``*.contract.json`` sidecars under a project root."""

    def __init__(self, project_root: Path):
        self.project_root = Path(project_root)

    def _read(self, entry_id: str) -> Optional[Contract]:
        path = sidecar_path(entry_id, self.project_root)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            contract = Contract.from_dict(payload)
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as exc:
            logger.warning("Unreadable contract sidecar %s: %s", path, exc)
            return None
        if not (is_valid_hash(contract.semantic_hash) and is_valid_hash(contract.file_hash)):
            logger.warning("Contract sidecar %s has a malformed hash, skipping", path)
            return None
        return contract

    async def get(self, entry_id: str) -> Optional[Contract]:
        return await asyncio.to_thread(self._read, entry_id)

    def put(self, contract: Contract) -> Path:
        path = sidecar_path(contract.entry_id, self.project_root)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(contract.to_dict(), indent=2), encoding="utf-8")
        except OSError as exc:
            raise PackIOError(str(path), "Failed to write contract sidecar", exc) from exc
        return path

    def _load_all(self) -> Dict[str, Contract]:
        contracts: Dict[str, Contract] = {}
        ignore = read_ignore_patterns(self.project_root)
        for rel_path in _walk(self.project_root):
            entry_id = entry_id_for_sidecar(rel_path)
            if entry_id is None or is_ignored(entry_id, ignore):
                continue
            contract = self._read(entry_id)
            if contract is None:
                continue
            contracts[normalize_entry_id(contract.entry_id)] = contract
        return dict(sorted(contracts.items()))

    async def load_all(self) -> Dict[str, Contract]:
        """Every readable contract in the project, keyed by normalized entry id."""
        return await asyncio.to_thread(self._load_all)


# ===================================================================
# Source reader
# ===================================================================

class SourceReader:
    """Read source files, returning ``None`` instead of raising."""

    def _read(self, entry_id: str, project_root: Path) -> Optional[str]:
        try:
            return absolute_path(entry_id, project_root).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("Could not read %s: %s", entry_id, exc)
            return None

    async def read_full(self, entry_id: str, project_root: Path) -> Optional[str]:
        return await asyncio.to_thread(self._read, entry_id, project_root)

    async def read_header(self, entry_id: str, project_root: Path) -> Optional[str]:
        content = await self.read_full(entry_id, project_root)
        if content is None:
            return None
        return extract_header(content)


# ===================================================================
# Discovery
# ===================================================================

def read_ignore_patterns(project_root: Path) -> List[str]:
    """Glob patterns from ``.packignore``; blank lines and ``#`` comments skipped."""
    path = Path(project_root) / IGNORE_FILE_NAME
    if not path.exists():
        return []
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return []
    return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]


def is_ignored(entry_id: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        pattern = pattern.rstrip("/")
        if fnmatch.fnmatch(entry_id, pattern) or entry_id.startswith(pattern + "/"):
            return True
    return False


def _walk(project_root: Path) -> Iterable[str]:
    root = Path(project_root)
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for filename in sorted(filenames):
            yield normalize_entry_id(os.path.relpath(os.path.join(dirpath, filename), root))


def discover_sources(project_root: Path) -> List[str]:
    """Project-relative source paths with a recognized extension, sorted."""
    ignore = read_ignore_patterns(project_root)
    return [
        rel_path
        for rel_path in _walk(project_root)
        if rel_path.endswith(SOURCE_EXTENSIONS) and not is_ignored(rel_path, ignore)
    ]
