"""Content, semantic and bundle hashing.

All hashes are SHA-256 over canonical JSON (sorted keys, no whitespace) and
truncated to 24 hex characters behind a short prefix.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Iterable, Optional, Tuple

from .config import BUNDLE_SCHEMA_VERSION
from .models import Composition, Interface

CONTRACT_SCHEMA_VERSION = "0.3"

# Embedded metadata header written by the contract compiler, e.g.
#   /**
#    * @ctxpack Contract 0.3
#    * ...
#    */
HEADER_PATTERN = re.compile(r"/\*\*[\s\S]*?@ctxpack[\s\S]*?\*/\n*")


def strip_header(content: str) -> str:
    """Remove the first embedded metadata header block, if any."""
    return HEADER_PATTERN.sub("", content, count=1)


def extract_header(content: str) -> Optional[str]:
    match = HEADER_PATTERN.search(content)
    if not match:
        return None
    return match.group(0).rstrip("\n")


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _digest(text: str, prefix: str) -> str:
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return f"{prefix}:{digest[:24]}"


def file_hash(content: str) -> str:
    """Hash raw source with the metadata header stripped and line endings normalized.

    Rewriting only the header never changes the result.
    """
    normalized = strip_header(content).replace("\r\n", "\n")
    return _digest(normalized, "ctx")


def semantic_hash(composition: Composition, interface: Interface) -> str:
    """Hash of structural meaning; ordering of names and formatting do not matter."""
    payload = {
        "schemaVersion": CONTRACT_SCHEMA_VERSION,
        "structure": {
            "variables": sorted(composition.variables),
            "hooks": sorted(composition.hooks),
            "components": sorted(composition.components),
            "functions": sorted(composition.functions),
        },
        "signature": {
            "props": interface.props,
            "emits": interface.emits,
            "state": interface.state or None,
        },
    }
    return _digest(canonical_json(payload), "ctx")


def bundle_hash(
    nodes: Iterable[Tuple[str, str]],
    depth: int,
    schema_version: str = BUNDLE_SCHEMA_VERSION,
) -> str:
    """Hash ``(entry_id, semantic_hash)`` pairs in the order given.

    Order-sensitive: callers sort the pairs first.
    """
    payload = {
        "schemaVersion": schema_version,
        "depth": depth,
        "nodes": [{"entryId": entry_id, "semanticHash": sem} for entry_id, sem in nodes],
    }
    return _digest(canonical_json(payload), "ctxb")


def is_valid_hash(value: str) -> bool:
    return isinstance(value, str) and bool(re.fullmatch(r"ctxb?:[a-f0-9]{24}", value))
