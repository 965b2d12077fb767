"""Watch mode: keep context bundles current as sources and contracts change."""

from __future__ import annotations

import asyncio
import json
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from .bundle_writer import write_bundles
from .config_manager import load_config, resolve_pack_options, watch_settings
from .diff_engine import SEVERITY_ERROR
from .errors import ContextPackError, WatcherError
from .incremental import RegenerationEngine
from .watch_session import CycleReport, WatchSession, run_observer
from .watch_status import (
    active_watch,
    append_watch_log,
    delete_watch_status,
    new_status,
    read_watch_log,
    write_watch_status,
)

console = Console()

watch_app = typer.Typer(help="👀 Watch mode for incremental bundle regeneration")


def _summarize(files) -> str:
    if len(files) > 3:
        return f"{', '.join(files[:3])}, ... (+{len(files) - 3} more)"
    return ", ".join(files)


class WatchReporter:
    """Prints each cycle, writes bundles and keeps the status file current."""

    def __init__(self, session: WatchSession, out_dir: Path, status: dict, log_file: bool, quiet: bool = False):
        self.session = session
        self.out_dir = out_dir
        self.status = status
        self.log_file = log_file
        self.quiet = quiet

    def __call__(self, report: CycleReport) -> None:
        root = self.session.project_root
        cache = self.session.cache
        if report.ok and cache is not None:
            write_bundles(cache.bundle_list(), self.out_dir, total_components=cache.manifest.total_components)

        if not self.quiet:
            self._print(report)

        self.status.update(self.session.status())
        write_watch_status(root, self.status)

        if self.log_file:
            entry = {"changedFiles": report.changed_files, "fileCount": len(report.changed_files)}
            if report.result is not None:
                entry.update(report.result.to_dict())
            if report.diff is not None:
                entry["violations"] = [v.to_dict() for v in report.diff.violations]
            if report.error is not None:
                entry["error"] = report.error
            append_watch_log(root, entry)

    def _print(self, report: CycleReport) -> None:
        if report.changed_files:
            console.print(f"\n🔄 Regenerating ({_summarize(report.changed_files)})")
        if not report.ok:
            console.print(f"   [red]✗[/red] Error: {report.error}")
            return

        result = report.result
        for entry, reason in sorted(result.failures.items()):
            console.print(f"   [yellow]⚠[/yellow] Skipped {entry}: {reason}")
        if report.diff is not None:
            for violation in report.diff.violations:
                marker = "[red]✗[/red]" if violation.severity == SEVERITY_ERROR else "[yellow]⚠[/yellow]"
                console.print(f"   {marker} {violation.entry_id}: {violation.message}")
        console.print(
            f"   [green]✓[/green] {result.mode}: {len(result.updated)} updated, "
            f"{len(result.removed)} removed ({result.duration_ms} ms)"
        )
        if self.session.strict:
            stats = self.session.stats
            console.print(f"[dim]   Strict watch: {stats.errors} errors, {stats.warnings} warnings[/dim]")


async def run_watch(session: WatchSession, poll_seconds: float = 1.0) -> None:
    """Initial build, then watch until SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers; Ctrl+C raises KeyboardInterrupt instead
            pass

    await session.start()
    console.print("✅ Watch mode active. Waiting for file changes...\n")
    await run_observer(session, stop, poll_seconds=poll_seconds)


@watch_app.command("start")
def watch(
    path: Path = typer.Argument(Path("."), help="Project root to watch."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Output directory (default: project root)."),
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Debounce interval in seconds."),
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="llm-safe, llm-chat or ci-strict."),
    strict_watch: Optional[bool] = typer.Option(
        None, "--strict-watch/--no-strict-watch", help="Track breaking changes and count violations.",
    ),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file", help="Append each cycle to the watch log."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only report errors."),
):
    """👀 Watch mode: regenerate affected bundles on every change.

    Example:
      ctxpack watch start
      ctxpack watch start ./app --interval 1 --strict-watch
    """
    root = path.resolve()
    if not root.is_dir():
        console.print(f"[red]✗[/red] Path not found: {path}")
        raise typer.Exit(1)

    running = active_watch(root)
    if running is not None:
        console.print(f"[red]✗[/red] Already watching {root} (pid {running['pid']})")
        raise typer.Exit(1)

    config = load_config(root)
    settings = watch_settings(config)
    try:
        options = resolve_pack_options(config, profile)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))

    strict = settings["strict"] if strict_watch is None else strict_watch
    debounce = float(settings["debounce"] if interval is None else interval)
    out_dir = (out or root).resolve()

    session = WatchSession(RegenerationEngine(root, options), debounce_seconds=debounce, strict=strict)
    status = new_status(root, out_dir, strict)
    session.on_cycle = WatchReporter(
        session, out_dir, status,
        log_file=settings["log_file"] if log_file is None else log_file,
        quiet=quiet,
    )

    console.print(f"\n[bold green]👀 Watching[/bold green] [cyan]{root}[/cyan] for changes...")
    console.print(f"[dim]  Debounce:  {debounce}s[/dim]")
    console.print(f"[dim]  Strict:    {'on' if strict else 'off'}[/dim]")
    console.print("[dim]  Press Ctrl+C to stop[/dim]\n")

    try:
        write_watch_status(root, status)
        asyncio.run(run_watch(session))
    except WatcherError as exc:
        console.print(f"[red]✗[/red] Watch failed: {exc}")
        raise typer.Exit(1)
    except ContextPackError as exc:
        console.print(f"[red]✗[/red] {exc}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass
    finally:
        delete_watch_status(root)

    console.print(f"\n[yellow]Stopped watching.[/yellow] {session.cycles} regeneration cycle(s).")


@watch_app.command("status")
def watch_status(
    path: Path = typer.Argument(Path("."), help="Project root."),
    tail: int = typer.Option(5, "--tail", "-n", min=0, help="Recent watch log entries to show."),
    as_json: bool = typer.Option(False, "--json", help="Print status and log entries as JSON."),
):
    """Show the running watch session for a project and its recent cycles."""
    root = path.resolve()
    status = active_watch(root)
    log = read_watch_log(root)
    recent = log[-tail:] if tail else []

    if as_json:
        typer.echo(json.dumps({"status": status, "log": recent}, indent=2))
        return

    if status is None:
        console.print(f"[yellow]No active watch session[/yellow] for [cyan]{root}[/cyan]")
    else:
        console.print(f"[green]●[/green] Watching [cyan]{root}[/cyan] (pid {status['pid']})")
        console.print(f"[dim]  Started:  {status.get('startedAt')}[/dim]")
        console.print(f"[dim]  Output:   {status.get('outputDir')}[/dim]")
        console.print(f"[dim]  Cycles:   {status.get('cycles', 0)}, bundles: {status.get('bundles', 0)}[/dim]")
        strict = status.get("strictWatch")
        if isinstance(strict, dict):
            console.print(f"[dim]  Strict watch: {strict['errors']} errors, {strict['warnings']} warnings[/dim]")
        if status.get("lastError"):
            console.print(f"  [red]✗[/red] Last error: {status['lastError']}")

    for entry in recent:
        if entry.get("error"):
            console.print(f"  {entry.get('timestamp')}  [red]error[/red] {entry['error']}")
            continue
        console.print(
            f"  {entry.get('timestamp')}  {entry.get('mode', '?')}: "
            f"{len(entry.get('updatedBundles', []))} updated, "
            f"{len(entry.get('removedBundles', []))} removed"
        )
