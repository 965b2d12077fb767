"""Package names and versions for third-party references that have no contract."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, Optional

from .config import SOURCE_EXTENSIONS

logger = logging.getLogger(__name__)

DEPENDENCY_SECTIONS = ("dependencies", "devDependencies", "peerDependencies")


def is_third_party(specifier: str) -> bool:
    """Bare specifiers (``react``, ``@scope/pkg/sub``) are third-party; paths are not."""
    if not specifier or not specifier.strip():
        return False
    if specifier.startswith((".", "/", "\\")):
        return False
    # Drive letters, URLs, node: builtins
    if ":" in specifier:
        return False
    return True


def extract_package_name(specifier: str) -> Optional[str]:
    """``@scope/pkg/sub`` -> ``@scope/pkg``; ``lodash/fp`` -> ``lodash``."""
    if not is_third_party(specifier) or specifier.endswith(SOURCE_EXTENSIONS):
        return None
    parts = specifier.split("/")
    if specifier.startswith("@"):
        if len(parts) < 2 or not parts[1]:
            return None
        name = f"{parts[0]}/{parts[1]}"
    else:
        name = parts[0]
    # Registry names are lowercase; PascalCase is an unscanned component
    if name != name.lower():
        return None
    return name


class PackageInfo:
    """Reads ``package.json`` once per project root and answers version lookups."""

    def __init__(self) -> None:
        self._cache: Dict[str, Optional[Dict[str, Dict[str, str]]]] = {}

    def _load(self, project_root: Path) -> Optional[Dict[str, Dict[str, str]]]:
        key = str(Path(project_root).resolve())
        if key in self._cache:
            return self._cache[key]

        manifest_path = Path(key) / "package.json"
        sections: Optional[Dict[str, Dict[str, str]]] = None
        if manifest_path.exists():
            try:
                payload = json.loads(manifest_path.read_text(encoding="utf-8"))
                sections = {name: dict(payload.get(name) or {}) for name in DEPENDENCY_SECTIONS}
            except (OSError, json.JSONDecodeError, AttributeError) as exc:
                logger.warning("Could not read %s: %s", manifest_path, exc)
        self._cache[key] = sections
        return sections

    async def version_of(self, package_name: str, project_root: Path) -> Optional[str]:
        """Declared version range, checking dependencies, then dev, then peer."""
        sections = await asyncio.to_thread(self._load, project_root)
        if not sections:
            return None
        for name in DEPENDENCY_SECTIONS:
            version = sections[name].get(package_name)
            if version:
                return version
        return None

    def clear(self) -> None:
        self._cache.clear()
