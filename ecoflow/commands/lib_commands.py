"""CLI commands for ecosystem packages: scan, graph, refresh, install, audit."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ecoflow.audit import audit as run_audit
from ecoflow.dag.leveler import CycleDetectedError, build_dag
from ecoflow.dag.models import DAGNode, DAGResult, DependencyDAG, NodeResult
from ecoflow.lifecycle import install as run_install
from ecoflow.lifecycle import refresh as run_refresh
from ecoflow.manifest import ManifestError
from ecoflow.scanner import ScanResult, scan_packages
from ecoflow.settings import EcoflowSettings, get_settings

lib_app = typer.Typer(help="Scan, graph, refresh, install and audit ecosystem packages.")
console = Console()


def _load_settings_or_exit() -> EcoflowSettings:
    try:
        return get_settings()
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(code=1)


def _resolve_root(root: Optional[str], settings: EcoflowSettings) -> Path:
    return Path(root).expanduser() if root else settings.workspace.root


def _scan(root: Path, settings: EcoflowSettings) -> ScanResult:
    return asyncio.run(
        scan_packages(
            root,
            max_depth=settings.workspace.scan_depth,
            owner=settings.workspace.owner,
        )
    )


def _build_dag_or_exit(scan: ScanResult, settings: EcoflowSettings) -> DependencyDAG:
    ws = settings.workspace
    try:
        return build_dag(
            scan.packages, owner=ws.owner, host=ws.host, default_branch=ws.default_branch
        )
    except CycleDetectedError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)


def _on_start(node: DAGNode) -> None:
    console.print(f"[cyan]▶ {node.name}[/cyan] [dim](level {node.level})[/dim]")


def _on_complete(result: NodeResult) -> None:
    if result.success:
        console.print(f"[green]✓ {result.name}[/green] [dim]{result.duration:.1f}s[/dim]")
    else:
        phase = f" during {result.phase.value}" if result.phase else ""
        console.print(f"[red]✗ {result.name}{phase}: {result.error}[/red]")


def _render_result(result: DAGResult, title: str) -> None:
    table = Table(title=title)
    table.add_column("Package", style="bold")
    table.add_column("Level", justify="right")
    table.add_column("Status")
    table.add_column("Phase")
    table.add_column("Duration", justify="right")
    table.add_column("Detail")

    ordered = sorted(
        result.results.values(),
        key=lambda r: (r.node.level if r.node.level is not None else 0, r.name),
    )
    for r in ordered:
        if r.success:
            status_str = "[green]ok[/green]"
        elif r.skipped:
            status_str = "[yellow]skipped[/yellow]"
        else:
            status_str = "[red]failed[/red]"
        table.add_row(
            r.name,
            str(r.node.level) if r.node.level is not None else "-",
            status_str,
            r.phase.value if r.phase else "-",
            f"{r.duration:.1f}s",
            r.error or "; ".join(r.logs[-2:]) or "-",
        )

    console.print(table)

    if result.success:
        console.print(
            f"[green]{len(result.results)} package(s) succeeded "
            f"in {result.total_duration:.1f}s[/green]"
        )
        return

    console.print(f"[red]Failed ({len(result.failed_nodes)}):[/red]")
    for name in result.failed_nodes:
        console.print(f"  [red]• {name}: {result.results[name].error}[/red]")


@lib_app.command()
def scan(
    root: Optional[str] = typer.Option(None, "--root", "-r", help="Workspace root to scan"),
) -> None:
    """List ecosystem packages found under the workspace root."""
    settings = _load_settings_or_exit()
    result = _scan(_resolve_root(root, settings), settings)

    if not result.packages:
        console.print(f"[yellow]No packages found under {result.root}.[/yellow]")
    else:
        table = Table(title=f"Packages under {result.root}")
        table.add_column("Package", style="bold")
        table.add_column("Branch")
        table.add_column("Ecosystem deps")
        table.add_column("Path", style="dim")
        for name in sorted(result.packages):
            record = result.packages[name]
            table.add_row(
                name,
                record.current_branch or "-",
                ", ".join(record.dependencies) or "-",
                str(record.repo_path),
            )
        console.print(table)

    for warning in result.warnings:
        console.print(f"[yellow]⚠ {warning.path}: {warning.issue}[/yellow]")


@lib_app.command()
def graph(
    name: Optional[str] = typer.Argument(None, help="Package to analyse"),
    root: Optional[str] = typer.Option(None, "--root", "-r", help="Workspace root to scan"),
) -> None:
    """Show dependency levels, or impact analysis for one package."""
    settings = _load_settings_or_exit()
    dag = _build_dag_or_exit(_scan(_resolve_root(root, settings), settings), settings)

    if name is None:
        table = Table(title="Dependency Levels")
        table.add_column("Level", justify="right", style="bold")
        table.add_column("Packages")
        for index, level in enumerate(dag.levels):
            table.add_row(str(index), ", ".join(level))
        console.print(table)
        console.print(f"Roots: {', '.join(dag.roots) or '-'}")
        console.print(f"Leaves: {', '.join(dag.leaves) or '-'}")
        return

    if name not in dag:
        console.print(f"[red]Unknown package: {name}[/red]")
        console.print(f"Available: {', '.join(sorted(dag.nodes))}")
        raise typer.Exit(code=1)

    node = dag.get(name)
    console.print(f"[bold]{name}[/bold] (level {node.level}, branch {node.required_branch})")
    console.print(f"  Depends on: {', '.join(sorted(dag.ancestors(name))) or '-'}")
    console.print(f"  Needed by: {', '.join(sorted(dag.descendants(name))) or '-'}")


@lib_app.command()
def refresh(
    name: Optional[str] = typer.Argument(None, help="Package to refresh"),
    all_packages: bool = typer.Option(False, "--all", "-a", help="Refresh every package"),
    recursive: bool = typer.Option(
        False, "--recursive", "-R", help="Refresh dependencies first"
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, help="Max packages in flight per level"
    ),
    fail_fast: Optional[bool] = typer.Option(
        None, "--fail-fast/--no-fail-fast", help="Stop after the first failure"
    ),
    skip_git: bool = typer.Option(False, "--skip-git", help="Skip branch, commit and push"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would run"),
    root: Optional[str] = typer.Option(None, "--root", "-r", help="Workspace root to scan"),
) -> None:
    """Clean, reinstall, rebuild and push a package."""
    if name is None and not all_packages:
        console.print("[red]Give a package name or --all.[/red]")
        raise typer.Exit(code=1)

    settings = _load_settings_or_exit()
    try:
        result = asyncio.run(
            run_refresh(
                name,
                recursive=recursive,
                all_packages=all_packages,
                skip_git=skip_git,
                dry_run=dry_run,
                concurrency=concurrency,
                fail_fast=fail_fast,
                root=_resolve_root(root, settings),
                settings=settings,
                on_node_start=_on_start,
                on_node_complete=_on_complete,
            )
        )
    except CycleDetectedError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    except KeyError as e:
        console.print(f"[red]{e.args[0] if e.args else e}[/red]")
        raise typer.Exit(code=1)

    _render_result(result, "Refresh" + (" (dry run)" if dry_run else ""))
    if not result.success:
        raise typer.Exit(code=1)


@lib_app.command()
def install(
    manifest: Optional[str] = typer.Option(
        None, "--manifest", "-m", help="Path to ecosystem.manifest.json"
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, help="Max packages in flight per level"
    ),
    fail_fast: Optional[bool] = typer.Option(
        None, "--fail-fast/--no-fail-fast", help="Stop after the first failure"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would run"),
) -> None:
    """Clone missing packages, then install and build the whole ecosystem."""
    settings = _load_settings_or_exit()
    try:
        report = asyncio.run(
            run_install(
                Path(manifest).expanduser() if manifest else None,
                dry_run=dry_run,
                concurrency=concurrency,
                fail_fast=fail_fast,
                settings=settings,
                on_node_start=_on_start,
                on_node_complete=_on_complete,
            )
        )
    except (ManifestError, CycleDetectedError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    verb = "Would clone" if dry_run else "Cloned"
    if report.cloned:
        console.print(f"[cyan]{verb}: {', '.join(report.cloned)}[/cyan]")
    for name, error in report.clone_failures.items():
        console.print(f"[red]Clone failed for {name}: {error}[/red]")
    if report.missing:
        console.print(f"[red]Not found in workspace: {', '.join(report.missing)}[/red]")

    if report.result is not None:
        _render_result(report.result, "Install" + (" (dry run)" if dry_run else ""))
    if not report.success:
        raise typer.Exit(code=1)


@lib_app.command()
def audit(
    manifest: Optional[str] = typer.Option(
        None, "--manifest", "-m", help="Path to ecosystem.manifest.json"
    ),
    fix: bool = typer.Option(False, "--fix", help="Create missing dirs and fixable files"),
) -> None:
    """Check every manifest package against the project template."""
    settings = _load_settings_or_exit()
    try:
        report = run_audit(
            Path(manifest).expanduser() if manifest else None, fix=fix, settings=settings
        )
    except ManifestError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    template = report.template
    console.print(
        f"[dim]Template: files {', '.join(template.files) or '-'}; "
        f"dirs {', '.join(template.dirs) or '-'}[/dim]"
    )

    table = Table(title="Package Audit")
    table.add_column("Package", style="bold")
    table.add_column("Status")
    table.add_column("Missing")
    table.add_column("pnpm issues")
    table.add_column("Fixed", style="dim")
    for r in report.results:
        if not r.cloned:
            status_str, missing = "[red]not cloned[/red]", "-"
        else:
            status_str = "[green]ok[/green]" if r.valid else "[red]invalid[/red]"
            missing = ", ".join(r.missing_files + [f"{d}/" for d in r.missing_dirs]) or "-"
        table.add_row(
            r.name,
            status_str,
            missing,
            "; ".join(issue.message for issue in r.pnpm_issues) or "-",
            ", ".join(r.fixed_files + [f"{d}/" for d in r.fixed_dirs]) or "-",
        )
    console.print(table)

    summary = f"{report.valid_count}/{len(report.results)} package(s) valid"
    if report.success:
        console.print(f"[green]{summary}[/green]")
        return
    console.print(f"[red]{summary}[/red]")
    raise typer.Exit(code=1)
