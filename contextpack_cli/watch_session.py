"""Watch session: debounced, serialized regeneration over a live cache.

Filesystem events arrive on watchdog's observer thread and are handed to the
event loop with ``call_soon_threadsafe``. Every event resets the debounce
timer and joins the pending set; when the timer fires, :meth:`regenerate`
drains the pending set into one rebuild cycle.

At most one cycle runs at a time. A request that finds a cycle in flight
waits for it, then runs only if files are still pending, so every changed
file lands in exactly one cycle.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler

from .config import DEFAULT_DEBOUNCE_SECONDS, IGNORE_FILE_NAME, SIDECAR_SUFFIX, SKIP_DIRS, SOURCE_EXTENSIONS
from .diff_engine import SnapshotDiff, StrictWatchStats, diff_snapshots
from .errors import ContextPackError, WatcherError
from .incremental import RebuildResult, RegenerationEngine, WatchCache, requires_full_rebuild
from .resolver import normalize_entry_id

logger = logging.getLogger(__name__)

EVENT_CHANGE = "change"
EVENT_ADD = "add"
EVENT_REMOVE = "remove"


@dataclass
class CycleReport:
    changed_files: List[str]
    result: Optional[RebuildResult] = None
    diff: Optional[SnapshotDiff] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def is_watched(rel_path: str) -> bool:
    """Sources, contract sidecars and the ignore sentinel trigger rebuilds."""
    parts = rel_path.split("/")
    if any(part in SKIP_DIRS for part in parts[:-1]):
        return False
    name = parts[-1]
    return name == IGNORE_FILE_NAME or name.endswith(SIDECAR_SUFFIX) or name.endswith(SOURCE_EXTENSIONS)


class WatchSession:
    """Owns the :class:`WatchCache` and serializes every rebuild against it."""

    def __init__(
        self,
        engine: RegenerationEngine,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        strict: bool = False,
        on_cycle: Optional[Callable[[CycleReport], None]] = None,
    ):
        self.engine = engine
        self.debounce_seconds = debounce_seconds
        self.strict = strict
        self.on_cycle = on_cycle
        self.cache: Optional[WatchCache] = None
        self.stats = StrictWatchStats()
        self.pending: Set[str] = set()
        self.cycles = 0
        self.last_error: Optional[str] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._in_flight: Optional[asyncio.Future] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def project_root(self) -> Path:
        return self.engine.project_root

    @property
    def regenerating(self) -> bool:
        return self._in_flight is not None

    def _relative(self, path: str) -> str:
        if os.path.isabs(path):
            path = os.path.relpath(path, self.project_root)
        return normalize_entry_id(path)

    def notify(self, path: str, kind: str = EVENT_CHANGE) -> bool:
        """Record a filesystem event and restart the debounce timer.

        Must be called on the event loop thread. Returns False for paths that
        cannot affect any bundle.
        """
        rel_path = self._relative(path)
        if rel_path.startswith("..") or not is_watched(rel_path):
            return False
        logger.debug("%s: %s", kind, rel_path)
        self.pending.add(rel_path)

        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.debounce_seconds, self._fire)
        return True

    def _fire(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self.regenerate())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def start(self) -> CycleReport:
        """Initial full build that seeds the cache."""
        report = await self.regenerate(force=True)
        return report if report is not None else CycleReport(changed_files=[])

    async def regenerate(self, force: bool = False) -> Optional[CycleReport]:
        """Run one rebuild cycle for everything pending.

        Returns None when another cycle already consumed the pending files.
        """
        while self._in_flight is not None:
            await self._in_flight
            if not self.pending and not force:
                return None

        if not self.pending and not force:
            return None

        self._in_flight = asyncio.get_running_loop().create_future()
        try:
            changed = sorted(self.pending)
            self.pending.clear()
            report = await self._run_cycle(changed, force)
        finally:
            self._in_flight.set_result(None)
            self._in_flight = None

        if self.on_cycle is not None:
            try:
                self.on_cycle(report)
            except (ContextPackError, OSError) as exc:
                logger.error("Cycle listener failed: %s", exc)
        return report

    async def _run_cycle(self, changed: List[str], force: bool) -> CycleReport:
        report = CycleReport(changed_files=changed)
        previous = dict(self.cache.bundles) if self.cache is not None else None
        self.cycles += 1
        try:
            if self.cache is None or force or requires_full_rebuild(changed):
                self.cache, report.result = await self.engine.full_rebuild()
                report.result.changed_files = changed
            else:
                report.result = await self.engine.incremental_rebuild(changed, self.cache)
        except Exception as exc:
            # A partially patched cache is never reused
            self.cache = None
            self.last_error = str(exc)
            report.error = str(exc)
            logger.exception("Regeneration failed; cache discarded")
            return report

        self.last_error = None
        if previous is not None:
            report.diff = diff_snapshots(previous, self.cache.bundles)
            if self.strict:
                self.stats.record(report.diff.violations)
        return report

    def status(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "cycles": self.cycles,
            "pending": sorted(self.pending),
            "bundles": len(self.cache.bundles) if self.cache is not None else 0,
            "lastError": self.last_error,
        }
        if self.strict:
            payload["strictWatch"] = self.stats.snapshot()
        return payload

    async def drain(self) -> None:
        """Wait for any scheduled or running cycle to finish."""
        while self._tasks or self._in_flight is not None:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            elif self._in_flight is not None:
                await self._in_flight

    def cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


# ===================================================================
# watchdog bridge
# ===================================================================

class WatchdogBridge(FileSystemEventHandler):
    """Forward watchdog events from the observer thread into the session's loop."""

    def __init__(self, session: WatchSession, loop: asyncio.AbstractEventLoop):
        super().__init__()
        self.session = session
        self.loop = loop

    def _forward(self, path: str, kind: str) -> None:
        self.loop.call_soon_threadsafe(self.session.notify, path, kind)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, EVENT_CHANGE)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, EVENT_ADD)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, EVENT_REMOVE)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, EVENT_REMOVE)
            self._forward(event.dest_path, EVENT_ADD)


async def run_observer(
    session: WatchSession,
    stop: asyncio.Event,
    poll_seconds: float = 1.0,
    observer_factory: Optional[Callable[[], Any]] = None,
) -> None:
    """Watch the session's project until *stop* is set.

    Raises:
        WatcherError: the observer failed to start or died while running.
    """
    if observer_factory is None:
        from watchdog.observers import Observer
        observer_factory = Observer

    loop = asyncio.get_running_loop()
    observer = observer_factory()
    try:
        observer.schedule(WatchdogBridge(session, loop), str(session.project_root), recursive=True)
        observer.start()
    except OSError as exc:
        raise WatcherError(f"Could not start filesystem watcher: {exc}") from exc

    try:
        while not stop.is_set():
            if not observer.is_alive():
                raise WatcherError("Filesystem watcher stopped unexpectedly")
            try:
                await asyncio.wait_for(stop.wait(), timeout=poll_seconds)
            except asyncio.TimeoutError:
                continue
    finally:
        session.cancel_timer()
        observer.stop()
        observer.join(timeout=5)
        await session.drain()
