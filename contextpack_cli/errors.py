"""Exception hierarchy for packing and watch failures."""

from __future__ import annotations

from typing import List, Optional, Sequence


class ContextPackError(Exception):
    """Base class for every error raised by contextpack."""


class ResolutionError(ContextPackError):
    """The requested entry could not be matched to a manifest key."""

    def __init__(self, entry_id: str, candidates: Sequence[str] = (), total: int = 0):
        self.entry_id = entry_id
        self.candidates: List[str] = list(candidates)
        message = f"Component not found: {entry_id}"
        if self.candidates:
            lines = "\n".join(f"  - {key}" for key in self.candidates)
            message += f"\nAvailable components:\n{lines}"
            if total > len(self.candidates):
                message += f"\n  ... and {total - len(self.candidates)} more"
        super().__init__(message)


class IntegrityError(ContextPackError):
    """A contract is missing in strict mode or no longer matches its source."""

    def __init__(self, entry_id: str, reason: str):
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(f"{entry_id}: {reason}")


class EmptyBundleError(ContextPackError):
    """The entry resolved but no contract could be loaded for any node."""

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(
            f"No nodes packed. Entry '{entry_id}' was found in the manifest, "
            "but no contracts could be loaded. Regenerate the contract sidecars "
            "or check that the path/name matches a manifest key."
        )


class PackIOError(ContextPackError, OSError):
    """Reading or writing a manifest, bundle or config file failed."""

    def __init__(self, path: str, message: str, cause: Optional[BaseException] = None):
        self.path = path
        self.cause = cause
        super().__init__(f"{message}: {path}")


class WatcherError(ContextPackError):
    """The filesystem watch subsystem failed to start or died."""
