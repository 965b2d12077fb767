"""Resolve component names and paths to canonical manifest keys.

Every search over manifest keys walks them in sorted order, so an ambiguous
bare name such as ``Button`` always resolves to the lexicographically first
matching key, independent of how the manifest was built.
"""

from __future__ import annotations

import posixpath
import re
from typing import Iterable, List, Optional

from .config import SOURCE_EXTENSIONS
from .models import ComponentNode, ProjectManifest

_DRIVE_RE = re.compile(r"^([A-Z]):")
_EXTENSION_RE = re.compile(r"\.(tsx?|jsx?)$")


def normalize_entry_id(entry_id: str) -> str:
    """Canonical slash-separated form of a project path."""
    path = entry_id.replace("\\", "/")
    if path:
        path = posixpath.normpath(path)
    path = _DRIVE_RE.sub(lambda m: f"{m.group(1).lower()}:", path)
    if path.startswith("./"):
        path = path[2:]
    return path


def strip_extension(name: str) -> str:
    return _EXTENSION_RE.sub("", name)


def component_name(key: str) -> str:
    """``src/components/Button.tsx`` -> ``Button``."""
    return strip_extension(key.replace("\\", "/").rsplit("/", 1)[-1])


def _sorted_keys(manifest: ProjectManifest) -> List[str]:
    return sorted(manifest.components)


def _lookup_path(manifest: ProjectManifest, normalized: str, keys: Iterable[str]) -> Optional[str]:
    if normalized in manifest.components:
        return normalized
    for key in keys:
        node = manifest.components[key]
        if normalize_entry_id(key) == normalized or normalize_entry_id(node.entry_id) == normalized:
            return key
    return None


def resolve_key(manifest: ProjectManifest, text: str) -> Optional[str]:
    """Resolve a path, bare component name or file name to a manifest key."""
    if not text:
        return None
    keys = _sorted_keys(manifest)
    key = _lookup_path(manifest, normalize_entry_id(text), keys)
    if key is not None:
        return key

    bare = strip_extension(text)
    for key in keys:
        name = component_name(key)
        if name == text or name == bare:
            return key
    return None


def find_component_by_name(manifest: ProjectManifest, text: str) -> Optional[ComponentNode]:
    key = resolve_key(manifest, text)
    return manifest.components[key] if key is not None else None


def candidate_paths(raw_ref: str, from_key: str) -> List[str]:
    """Directory-relative candidates for *raw_ref*, in priority order."""
    parent_dir = posixpath.dirname(normalize_entry_id(from_key))
    base = normalize_entry_id(posixpath.join(parent_dir, raw_ref.replace("\\", "/")))
    candidates = [base]
    candidates.extend(f"{base}{ext}" for ext in SOURCE_EXTENSIONS)
    candidates.extend(f"{base}/index{ext}" for ext in SOURCE_EXTENSIONS)
    return candidates


def resolve_dependency(manifest: ProjectManifest, raw_ref: str, from_key: str) -> Optional[str]:
    """Resolve a raw dependency reference made by the module at *from_key*.

    Files next to the referencing module win over same-named files anywhere
    else in the project; only then is the global name search consulted.
    """
    if not raw_ref:
        return None
    keys = _sorted_keys(manifest)
    for path in candidate_paths(raw_ref, from_key):
        key = _lookup_path(manifest, path, keys)
        if key is not None:
            return key
    return resolve_key(manifest, raw_ref)
