"""Typer-based CLI for codemap dependency graphs and change impact."""

from __future__ import annotations

import json
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__, config
from .config_manager import load_config, load_toml, save_project_config
from .errors import MindMapError
from .graph import DependencyGraph
from .graph_export import export_dot, export_html, export_json
from .models import ChangeType, CodePatch, ImpactAnalysis, NodeChange, PropagationResult, RiskLevel
from .orchestrator import MindMapOrchestrator
from .session import MindMapSession, StdioTransport

console = Console()

app = typer.Typer(
    help="🗺️  codemap: dependency graph and change-impact analysis for JS/TS projects.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

RISK_COLORS = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "red",
    RiskLevel.CRITICAL: "bold red",
}

PATH_OPTION = typer.Option(
    Path("."), "--path", "-p", exists=True, file_okay=False, help="Project root to analyze."
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"codemap v{__version__}")
        raise typer.Exit()


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
    verbose: bool = typer.Option(False, "--verbose", help="Log scanner and engine activity."),
):
    """codemap: see what a rename, delete or signature change breaks before you make it."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
            force=True,
        )


def _build(project_path: Path) -> MindMapOrchestrator:
    return MindMapOrchestrator(project_path.resolve())


def _score_color(score: float) -> str:
    if score >= 80:
        return "green"
    elif score >= 60:
        return "yellow"
    return "red"


def _resolve_node(graph: DependencyGraph, node_ref: str):
    node = graph.find_node(node_ref)
    if node is None:
        raise typer.BadParameter(f"No node with id or name '{node_ref}'.")
    return node


def _fail(exc: Exception) -> None:
    console.print(f"[red]❌ {exc}[/red]")
    raise typer.Exit(1)


def _print_result(result: PropagationResult) -> None:
    if result.success:
        console.print(f"[green]✅ {result}[/green]")
        for path in result.files_modified:
            console.print(f"  • {path}")
        if result.backup_id:
            console.print(f"[dim]Backup: {result.backup_id} (undo with 'codemap rollback {result.backup_id}')[/dim]")
        return
    console.print("[red]❌ No files were changed.[/red]")
    for error in result.errors:
        console.print(f"  • {error}")


@app.command("scan")
def scan(
    project_path: Path = PATH_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the full graph as JSON."),
):
    """Scan a project and summarize its graph and coherence issues."""
    graph = _build(project_path).build()
    if as_json:
        typer.echo(json.dumps(graph.to_dict(), indent=2))
        return

    meta = graph.metadata
    color = _score_color(meta.coherence_score)
    console.print(
        Panel.fit(
            f"[bold]{meta.project_name}[/bold]\n"
            f"Files: {meta.total_files} | Nodes: {meta.total_nodes} | Edges: {meta.total_edges}\n"
            f"Coherence: [bold {color}]{meta.coherence_score}[/bold {color}]",
            title="[bold]codemap[/bold]",
            border_style=color,
        )
    )

    counts = Counter(n.type.value for n in graph.nodes)
    table = Table(title="Nodes by type", show_header=True)
    table.add_column("Type", style="cyan")
    table.add_column("Count", justify="right")
    for node_type, count in sorted(counts.items()):
        table.add_row(node_type, str(count))
    console.print(table)

    if meta.issues:
        issues = Table(title="Coherence issues", show_header=True)
        issues.add_column("Severity", width=9)
        issues.add_column("Kind", style="cyan")
        issues.add_column("Message")
        for issue in sorted(meta.issues, key=lambda i: i.severity, reverse=True):
            issues.add_row(issue.severity.value, issue.kind, issue.message)
        console.print(issues)

    if meta.warnings:
        console.print(f"\n[yellow]⚠️  {len(meta.warnings)} file(s) skipped:[/yellow]")
        for warning in meta.warnings:
            where = f":{warning.line}" if warning.line else ""
            console.print(f"  • {warning.path}{where} {warning.message}")


@app.command("node")
def node_details(
    node_ref: str = typer.Argument(..., help="Node id or name."),
    project_path: Path = PATH_OPTION,
):
    """Show a node with its dependents and dependencies."""
    graph = _build(project_path).build()
    node = _resolve_node(graph, node_ref)

    console.print(f"[bold cyan]{node.name}[/bold cyan] [dim]({node.type.value})[/dim]")
    console.print(f"  {node.path}:{node.line}-{node.end_line}")
    console.print(f"  id: {node.id}")
    if node.props:
        console.print("  props: " + ", ".join(f"{p.name}{'' if p.required else '?'}" for p in node.props))
    if node.hooks:
        console.print("  hooks: " + ", ".join(node.hooks))

    for title, items in (
        ("Dependents", graph.get_dependents(node.id)),
        ("Dependencies", graph.get_dependencies(node.id)),
    ):
        table = Table(title=f"{title} ({len(items)})", show_header=True)
        table.add_column("Type", style="cyan", width=10)
        table.add_column("Name")
        table.add_column("Path", style="dim")
        for item in items:
            table.add_row(item.type.value, item.name, item.path)
        console.print(table)


def _render_impact(analysis: ImpactAnalysis) -> None:
    color = RISK_COLORS[analysis.risk_level]
    console.print(
        Panel.fit(
            f"Change: {analysis.change.change_type.value} {analysis.target_node}\n"
            f"Risk: [{color}]{analysis.risk_level.value.upper()}[/{color}]\n"
            f"Direct: {len(analysis.direct_impact)} | Transitive: {len(analysis.transitive_impact)} | "
            f"Breaking: {len(analysis.breaking_changes)}",
            title="[bold]Impact analysis[/bold]",
            border_style=color,
        )
    )
    if analysis.breaking_changes:
        table = Table(title="Breaking changes", show_header=True)
        table.add_column("Location", style="cyan")
        table.add_column("Code")
        table.add_column("Reason", style="dim")
        for item in analysis.breaking_changes:
            table.add_row(f"{item.path}:{item.line}", item.current_code.strip(), item.reason)
        console.print(table)
    if analysis.transitive_impact:
        console.print("\n[bold]Transitively affected[/bold]")
        for item in analysis.transitive_impact:
            console.print(f"  • {item.node_name} [dim]{item.path}[/dim]")
    if analysis.suggested_fixes:
        console.print("\n[bold]Suggested fixes[/bold]")
        for fix in analysis.suggested_fixes:
            tag = "[green]auto[/green]" if fix.auto_fixable else "[yellow]manual[/yellow]"
            console.print(f"  {tag} {fix.path}:{fix.line} {fix.description}")
            if fix.auto_fixable:
                console.print(f"       [red]- {fix.old_code.strip()}[/red]")
                console.print(f"       [green]+ {fix.new_code.strip()}[/green]")


@app.command("impact")
def impact(
    node_ref: str = typer.Argument(..., help="Node id or name to change."),
    rename: Optional[str] = typer.Option(None, "--rename", help="New name for the node."),
    delete: bool = typer.Option(False, "--delete", help="Analyze deleting the node."),
    signature: Optional[str] = typer.Option(None, "--signature", help="New signature, e.g. '(id, options?)'."),
    project_path: Path = PATH_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the analysis as JSON."),
    apply: bool = typer.Option(False, "--apply", help="Apply the auto-fixable fixes."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
):
    """Analyze what a rename, delete or signature change would break."""
    chosen = [flag for flag, given in (("--rename", rename), ("--delete", delete), ("--signature", signature)) if given]
    if len(chosen) != 1:
        raise typer.BadParameter("Pass exactly one of --rename, --delete or --signature.")

    orchestrator = _build(project_path)
    graph = orchestrator.build()
    node = _resolve_node(graph, node_ref)

    if rename:
        change = NodeChange(node.id, ChangeType.RENAME, before=orchestrator.engine.reference_name(node), after=rename)
    elif delete:
        change = NodeChange(node.id, ChangeType.DELETE, before=node.name)
    else:
        change = NodeChange(node.id, ChangeType.MODIFY_SIGNATURE, before=node.metadata.get("signature"), after=signature)

    try:
        analysis = orchestrator.impact(graph, change)
    except MindMapError as exc:
        _fail(exc)

    if as_json:
        typer.echo(json.dumps(analysis.to_dict(), indent=2))
    else:
        _render_impact(analysis)

    if not apply:
        return
    patches = analysis.auto_fixable_patches()
    if not patches:
        console.print("[yellow]No auto-fixable patches to apply.[/yellow]")
        return
    if not yes and not typer.confirm(f"Apply {len(patches)} patch(es)?"):
        console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit(1)
    result = orchestrator.apply(patches)
    _print_result(result)
    if not result.success:
        raise typer.Exit(1)


def _load_patches(patch_file: Path) -> List[CodePatch]:
    try:
        payload: Any = json.loads(patch_file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(f"Cannot read patches from {patch_file}: {exc}")

    items: List[Dict[str, Any]]
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict) and "patches" in payload:
        items = payload["patches"]
    elif isinstance(payload, dict) and "suggestedFixes" in payload:
        items = [f for f in payload["suggestedFixes"] if f.get("autoFixable")]
    else:
        raise typer.BadParameter("Expected a list of patches, {'patches': [...]} or an impact analysis.")
    try:
        return [CodePatch.from_dict(item) for item in items]
    except (KeyError, TypeError, ValueError) as exc:
        raise typer.BadParameter(f"Malformed patch: {exc}")


@app.command("apply")
def apply_patches(
    patch_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file with patches."),
    project_path: Path = PATH_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the diff without writing."),
):
    """Apply a batch of patches all-or-nothing."""
    patches = _load_patches(patch_file)
    orchestrator = _build(project_path)
    if dry_run:
        try:
            diff = orchestrator.engine.preview(patches)
        except MindMapError as exc:
            _fail(exc)
        typer.echo(diff or "No changes.")
        return
    result = orchestrator.apply(patches)
    _print_result(result)
    if not result.success:
        raise typer.Exit(1)


@app.command("export")
def export_graph(
    fmt: str = typer.Argument("html", help="Output format: dot, html or json."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file."),
    focus: str = typer.Option("", "--focus", help="Only nodes matching this text and their neighbors."),
    project_path: Path = PATH_OPTION,
):
    """Export the graph as DOT, HTML or JSON."""
    exporters = {"dot": export_dot, "html": export_html, "json": export_json}
    fmt = fmt.lower()
    if fmt not in exporters:
        raise typer.BadParameter("Format must be one of: dot, html, json.")
    graph = _build(project_path).build()
    output = output or Path(f"codemap.{fmt}")
    exporters[fmt](graph, output, focus=focus)
    console.print(f"[green]Exported {fmt.upper()} to {output}[/green]")


@app.command("config")
def configure(
    project_path: Path = PATH_OPTION,
    critical_dependents: Optional[int] = typer.Option(
        None, "--critical-dependents", min=0, help="Dependents above which a breaking node is critical."
    ),
    coupling_threshold: Optional[int] = typer.Option(
        None, "--coupling-threshold", min=1, help="Incident edges above which a node is highly coupled."
    ),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", help="Extra directory name to skip (repeatable)."),
):
    """Show the effective settings, or save project overrides.

    Examples:
        codemap config
        codemap config --critical-dependents 8 --exclude generated
    """
    project_root = project_path.resolve()
    updates: Dict[str, Dict[str, Any]] = {}
    if critical_dependents is not None:
        updates.setdefault("impact", {})["critical_dependents"] = critical_dependents
    if coupling_threshold is not None:
        updates.setdefault("coherence", {})["coupling_threshold"] = coupling_threshold
    if exclude:
        current = load_toml(config.project_state_dir(project_root) / config.PROJECT_CONFIG_FILENAME)
        existing = current.get("scan", {}).get("exclude_dirs", [])
        updates.setdefault("scan", {})["exclude_dirs"] = sorted(set(existing) | set(exclude))
    if updates:
        path = save_project_config(project_root, updates)
        console.print(f"[green]✅ Saved {path}[/green]")

    settings = load_config(project_root)
    table = Table(title="Effective settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("extensions", " ".join(sorted(settings.extensions)))
    table.add_row("critical_dependents", str(settings.critical_dependents))
    table.add_row("coupling_threshold", str(settings.coupling_threshold))
    extra = sorted(settings.exclude_dirs - config.SKIP_DIRS)
    table.add_row("exclude_dirs", " ".join(extra) or "[dim](defaults)[/dim]")
    console.print(table)


@app.command("serve")
def serve(project_path: Path = PATH_OPTION):
    """Serve the message protocol as JSON lines on stdin/stdout."""
    session = MindMapSession(project_path.resolve())
    StdioTransport(session, sys.stdin, sys.stdout).serve()


@app.command("backups")
def list_backups(project_path: Path = PATH_OPTION):
    """List patch backups, newest first."""
    backups = _build(project_path).applier.list_backups()
    if not backups:
        console.print("[dim]No backups.[/dim]")
        return
    table = Table(show_header=True)
    table.add_column("Backup", style="cyan")
    table.add_column("Created")
    table.add_column("Files")
    for backup in backups:
        files = ", ".join(f["original"] for f in backup.get("files", []))
        table.add_row(backup["backup_id"], backup.get("timestamp", ""), files)
    console.print(table)


@app.command("rollback")
def rollback(
    backup_id: str = typer.Argument(..., help="Backup id from 'codemap backups'."),
    project_path: Path = PATH_OPTION,
):
    """Restore the files saved in a backup."""
    if not _build(project_path).applier.rollback(backup_id):
        console.print(f"[red]❌ Backup '{backup_id}' could not be restored.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Restored backup {backup_id}[/green]")


if __name__ == "__main__":
    app()
