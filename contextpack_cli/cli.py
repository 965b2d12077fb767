"""Typer-based CLI for contextpack: dependency-bounded context bundles."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .bundle_writer import load_bundle_file, load_bundles, write_bundles
from .cli_watch import watch_app
from .config_manager import load_config, resolve_pack_options
from .diff_engine import SEVERITY_ERROR, diff_snapshots
from .errors import ContextPackError
from .manifest import build_manifest, generate_stats
from .models import Bundle, Contract, PackOptions, ProjectManifest
from .orchestrator import PackOrchestrator
from .storage import SidecarContractStore, discover_sources

console = Console()

app = typer.Typer(
    help="📦 contextpack: dependency-bounded, hash-locked context bundles for LLMs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(watch_app, name="watch")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"contextpack v{__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
):
    """contextpack: pack component contracts into LLM-ready bundles."""
    configure_logging(verbose)


# -------------------------------------------------------------------
# helpers
# -------------------------------------------------------------------

def _fail(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")
    raise typer.Exit(1)


def _pack_options(
    root: Path,
    profile: Optional[str],
    **overrides,
) -> PackOptions:
    try:
        return resolve_pack_options(load_config(root), profile, overrides)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))


def load_project(root: Path) -> Tuple[Dict[str, Contract], ProjectManifest]:
    """Read every contract sidecar under *root* and build the manifest."""
    contracts = asyncio.run(SidecarContractStore(root).load_all())
    return contracts, build_manifest(contracts)


def _load_snapshot(path: Path) -> Dict[str, Bundle]:
    bundles = load_bundles(path) if path.is_dir() else load_bundle_file(path)
    return {bundle.entry_id: bundle for bundle in bundles}


# -------------------------------------------------------------------
# commands
# -------------------------------------------------------------------

@app.command("pack")
def pack_command(
    entry: str = typer.Argument(..., help="Component path, file name or bare name."),
    root: Path = typer.Option(Path("."), "--root", "-r", exists=True, file_okay=False, help="Project root."),
    depth: Optional[int] = typer.Option(None, "--depth", "-d", min=0, help="Dependency hops to include."),
    max_nodes: Optional[int] = typer.Option(None, "--max-nodes", min=1, help="Node budget per bundle."),
    include_code: Optional[str] = typer.Option(None, "--include-code", help="none, header or full."),
    strict: Optional[bool] = typer.Option(None, "--strict/--no-strict", help="Fail on missing contracts."),
    allow_missing: Optional[bool] = typer.Option(
        None, "--allow-missing/--no-allow-missing", help="Silently drop nodes without contracts.",
    ),
    hash_lock: Optional[bool] = typer.Option(None, "--hash-lock/--no-hash-lock", help="Verify contracts against sources."),
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="llm-safe, llm-chat or ci-strict."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the bundle to this file."),
):
    """Pack one entry point and its dependencies into a bundle."""
    root = root.resolve()
    options = _pack_options(
        root, profile, depth=depth, max_nodes=max_nodes, include_code=include_code,
        strict=strict, allow_missing=allow_missing, hash_lock=hash_lock,
    )
    contracts, manifest = load_project(root)
    orchestrator = PackOrchestrator(root)
    try:
        bundle = asyncio.run(orchestrator.pack(entry, manifest, options.with_contracts(contracts)))
    except ContextPackError as exc:
        _fail(str(exc))

    text = json.dumps(bundle.to_dict(), indent=2)
    if out is None:
        typer.echo(text)
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(text, encoding="utf-8")
    console.print(
        f"[green]✓[/green] {bundle.entry_id}: {len(bundle.nodes)} nodes, "
        f"{len(bundle.edges)} edges -> [cyan]{out}[/cyan]"
    )


@app.command("context")
def context_command(
    root: Path = typer.Argument(Path("."), exists=True, file_okay=False, help="Project root."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Output directory (default: project root)."),
    depth: Optional[int] = typer.Option(None, "--depth", "-d", min=0, help="Dependency hops to include."),
    max_nodes: Optional[int] = typer.Option(None, "--max-nodes", min=1, help="Node budget per bundle."),
    include_code: Optional[str] = typer.Option(None, "--include-code", help="none, header or full."),
    hash_lock: Optional[bool] = typer.Option(None, "--hash-lock/--no-hash-lock", help="Verify contracts against sources."),
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="llm-safe, llm-chat or ci-strict."),
    strict_missing: bool = typer.Option(False, "--strict-missing", help="Exit non-zero if any dependency is missing."),
):
    """Pack every root component and write per-folder context files."""
    root = root.resolve()
    out_dir = (out or root).resolve()
    options = _pack_options(
        root, profile, depth=depth, max_nodes=max_nodes, include_code=include_code, hash_lock=hash_lock,
    )
    contracts, manifest = load_project(root)
    if not contracts:
        _fail(f"No contract sidecars found under {root}")

    result = asyncio.run(PackOrchestrator(root).pack_all(manifest, options.with_contracts(contracts)))
    for entry, exc in sorted(result.failures.items()):
        console.print(f"[yellow]⚠[/yellow] Skipped {entry}: {exc}")
    if not result.bundles:
        _fail("No bundles were produced.")

    summary = write_bundles(result.bundles, out_dir, total_components=manifest.total_components)
    console.print(
        f"[green]✓[/green] {len(result.bundles)} bundles in {len(summary.folders)} folders "
        f"(~{summary.total_tokens} tokens) -> [cyan]{out_dir}[/cyan]"
    )

    third_party = result.third_party()
    if third_party:
        console.print(f"[dim]  Third-party: {', '.join(d.package_name or d.name for d in third_party)}[/dim]")

    uncovered = [path for path in discover_sources(root) if path not in contracts]
    if uncovered:
        shown = ", ".join(uncovered[:5])
        more = f" and {len(uncovered) - 5} more" if len(uncovered) > 5 else ""
        console.print(f"[dim]  No contract: {shown}{more}[/dim]")

    missing = [dep for bundle in result.bundles for dep in bundle.missing]
    if strict_missing and missing:
        console.print(f"[red]✗[/red] {len(missing)} missing dependencies:")
        for dep in missing:
            console.print(f"  • {dep.name} ({dep.reason})")
        raise typer.Exit(1)


@app.command("manifest")
def manifest_command(
    root: Path = typer.Argument(Path("."), exists=True, file_okay=False, help="Project root."),
    as_json: bool = typer.Option(False, "--json", help="Print the manifest as JSON."),
):
    """Show the project dependency manifest."""
    _, manifest = load_project(root.resolve())
    if as_json:
        typer.echo(json.dumps(manifest.to_dict(), indent=2))
        return

    stats = generate_stats(manifest)
    table = Table(title="Project Manifest", show_lines=False)
    table.add_column("Component", style="cyan", min_width=30)
    table.add_column("Deps", justify="right", width=6)
    table.add_column("Used by", justify="right", width=8)
    table.add_column("Role", style="magenta", width=10)
    for key, node in manifest.components.items():
        role = "root" if key in manifest.roots else "leaf" if key in manifest.leaves else ""
        table.add_row(key, str(len(node.dependencies)), str(len(node.used_by)), role)
    console.print(table)
    console.print(
        f"[dim]{stats['totalComponents']} components, {stats['roots']} roots, "
        f"{stats['leaves']} leaves, {stats['averageDependencies']} deps on average[/dim]"
    )


@app.command("compare")
def compare_command(
    old: Path = typer.Argument(..., exists=True, help="Old context directory or bundle file."),
    new: Path = typer.Argument(..., exists=True, help="New context directory or bundle file."),
    as_json: bool = typer.Option(False, "--json", help="Print violations as JSON."),
):
    """Compare two bundle snapshots; exits 1 on breaking changes."""
    try:
        diff = diff_snapshots(_load_snapshot(old), _load_snapshot(new))
    except ContextPackError as exc:
        _fail(str(exc))

    if as_json:
        typer.echo(json.dumps({
            "added": diff.added,
            "removed": diff.removed,
            "changed": [c.entry_id for c in diff.changed],
            "violations": [v.to_dict() for v in diff.violations],
        }, indent=2))
    else:
        if not diff.has_changes:
            console.print("[green]✓[/green] No changes")
        for entry_id in diff.added:
            console.print(f"  [green]+[/green] {entry_id}")
        for entry_id in diff.removed:
            console.print(f"  [red]-[/red] {entry_id}")
        for change in diff.changed:
            console.print(f"  [yellow]~[/yellow] {change.entry_id}")
        for violation in diff.violations:
            marker = "[red]✗[/red]" if violation.severity == SEVERITY_ERROR else "[yellow]⚠[/yellow]"
            console.print(f"  {marker} {violation.entry_id}: {violation.message}")

    if diff.errors:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
