"""Refresh and install procedures.

Both procedures are thin: scan the workspace, build the DAG, and hand a
node processor to the leveled executor. The processors own the per-package
phases and tag every failure with the phase it happened in.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ecoflow.dag.executor import execute_dag
from ecoflow.dag.leveler import assign_levels, build_dag
from ecoflow.dag.models import (
    DAGExecutionOptions,
    DAGNode,
    DAGResult,
    DependencyDAG,
    NodeCompleteCallback,
    NodeOutcome,
    NodePhase,
    NodePhaseError,
    NodeStartCallback,
    PackageRecord,
)
from ecoflow.git_ops import GitClient, GitCommandError, ensure_branch
from ecoflow.git_ref import parse_git_ref
from ecoflow.manifest import EcosystemManifest, default_manifest_path, load_manifest
from ecoflow.scanner import scan_packages
from ecoflow.settings import EcoflowSettings, get_settings
from ecoflow.shell import PackageManager, ShellResult, clean_package

logger = logging.getLogger(__name__)

REFRESH_COMMIT_MESSAGE = "chore: refresh dependencies"


def _check(result: ShellResult, phase: NodePhase, what: str) -> None:
    if not result.success:
        detail = result.output or f"exit code {result.exit_code}"
        raise NodePhaseError(phase, f"{what} failed (exit {result.exit_code}): {detail}")


class _PhasedProcessor(ABC):
    """Shared plumbing: run phases, keep the log even when a phase fails."""

    phases: tuple[NodePhase, ...] = ()

    def __init__(
        self,
        *,
        dry_run: bool = False,
        git: Optional[GitClient] = None,
        package_manager: Optional[PackageManager] = None,
    ):
        self.dry_run = dry_run
        self.git = git or GitClient()
        self.package_manager = package_manager or PackageManager()

    def planned_phases(self) -> tuple[NodePhase, ...]:
        return self.phases

    async def process(self, node: DAGNode) -> NodeOutcome:
        logs: list[str] = []
        if self.dry_run:
            for phase in self.planned_phases():
                logs.append(f"Would {phase.value}")
            return NodeOutcome(success=True, logs=logs)

        try:
            await self._run(node, logs)
        except NodePhaseError as e:
            e.node = node.name
            return NodeOutcome(success=False, logs=logs, error=str(e), phase=e.phase)
        return NodeOutcome(success=True, logs=logs)

    @abstractmethod
    async def _run(self, node: DAGNode, logs: list[str]) -> None:
        """Run every phase for ``node``, appending to ``logs`` as each completes."""

    async def _reconcile(self, node: DAGNode, logs: list[str]) -> None:
        try:
            outcome = await ensure_branch(node.repo_path, node.required_branch, git=self.git)
        except GitCommandError as e:
            raise NodePhaseError(NodePhase.RECONCILE, str(e), node.name) from e
        logs.extend(outcome.commits)
        if not outcome.switched:
            logs.append(f"Already on {node.required_branch}")

    async def _install(self, node: DAGNode, logs: list[str]) -> None:
        pm = self.package_manager.name
        result = await self.package_manager.install(node.repo_path)
        _check(result, NodePhase.INSTALL, f"{pm} install")
        logs.append(f"{pm} install")

    async def _build(self, node: DAGNode, logs: list[str]) -> None:
        pm = self.package_manager.name
        result = await self.package_manager.build(node.repo_path)
        _check(result, NodePhase.BUILD, f"{pm} run build")
        logs.append(f"{pm} run build")


class RefreshProcessor(_PhasedProcessor):
    """reconcile -> clean -> install -> build -> commit -> push."""

    phases = (
        NodePhase.RECONCILE,
        NodePhase.CLEAN,
        NodePhase.INSTALL,
        NodePhase.BUILD,
        NodePhase.COMMIT,
        NodePhase.PUSH,
    )

    def __init__(self, *, skip_git: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.skip_git = skip_git

    def planned_phases(self) -> tuple[NodePhase, ...]:
        if not self.skip_git:
            return self.phases
        git_phases = (NodePhase.RECONCILE, NodePhase.COMMIT, NodePhase.PUSH)
        return tuple(p for p in self.phases if p not in git_phases)

    async def _run(self, node: DAGNode, logs: list[str]) -> None:
        if not self.skip_git:
            await self._reconcile(node, logs)

        try:
            removed = clean_package(node.repo_path)
        except OSError as e:
            raise NodePhaseError(NodePhase.CLEAN, f"clean failed: {e}", node.name) from e
        logs.append(f"Removed {', '.join(removed)}" if removed else "Nothing to clean")

        await self._install(node, logs)
        await self._build(node, logs)

        if self.skip_git:
            return

        try:
            if await self.git.has_changes(node.repo_path):
                await self.git.stage_all(node.repo_path)
                await self.git.commit(node.repo_path, REFRESH_COMMIT_MESSAGE)
                logs.append("Committed changes")
            else:
                logs.append("No changes to commit")
        except GitCommandError as e:
            raise NodePhaseError(NodePhase.COMMIT, str(e), node.name) from e

        try:
            await self.git.push(node.repo_path)
        except GitCommandError as e:
            raise NodePhaseError(NodePhase.PUSH, str(e), node.name) from e
        logs.append("Pushed")


class InstallProcessor(_PhasedProcessor):
    """reconcile -> install -> build."""

    phases = (NodePhase.RECONCILE, NodePhase.INSTALL, NodePhase.BUILD)

    async def _run(self, node: DAGNode, logs: list[str]) -> None:
        await self._reconcile(node, logs)
        await self._install(node, logs)
        await self._build(node, logs)


@dataclass
class InstallReport:
    """Outcome of an ecosystem install.

    In a dry run ``cloned`` lists the packages that would be cloned.
    ``missing`` holds manifest packages the workspace scan did not find,
    which therefore were never installed.
    """

    cloned: list[str] = field(default_factory=list)
    clone_failures: dict[str, str] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    result: Optional[DAGResult] = None

    @property
    def success(self) -> bool:
        if self.clone_failures or self.missing:
            return False
        return self.result is None or self.result.success


def _execution_options(
    settings: EcoflowSettings,
    concurrency: Optional[int],
    fail_fast: Optional[bool],
    on_node_start: Optional[NodeStartCallback],
    on_node_complete: Optional[NodeCompleteCallback],
) -> DAGExecutionOptions:
    return DAGExecutionOptions(
        concurrency=concurrency if concurrency is not None else settings.execution.concurrency,
        fail_fast=fail_fast if fail_fast is not None else settings.execution.fail_fast,
        on_node_start=on_node_start,
        on_node_complete=on_node_complete,
    )


def _package_manager(settings: EcoflowSettings) -> PackageManager:
    return PackageManager(
        name=settings.execution.package_manager,
        timeout=settings.execution.command_timeout,
    )


def _dag_for(
    packages: dict[str, PackageRecord], settings: EcoflowSettings
) -> DependencyDAG:
    ws = settings.workspace
    return build_dag(
        packages, owner=ws.owner, host=ws.host, default_branch=ws.default_branch
    )


async def _scan(
    settings: EcoflowSettings, root: Path, git: GitClient
) -> dict[str, PackageRecord]:
    scan = await scan_packages(
        root,
        max_depth=settings.workspace.scan_depth,
        owner=settings.workspace.owner,
        git=git,
    )
    for warning in scan.warnings:
        logger.warning(f"Scan: {warning.path}: {warning.issue}")
    return scan.packages


def select_refresh_targets(
    dag: DependencyDAG,
    name: Optional[str],
    *,
    recursive: bool = False,
    all_packages: bool = False,
) -> DependencyDAG:
    """Pick the part of ``dag`` a refresh should run over.

    Raises:
        KeyError: If ``name`` is not in the graph.
        ValueError: If neither ``name`` nor ``all_packages`` is given.
    """
    if all_packages:
        return dag
    if name is None:
        raise ValueError("A package name is required unless all packages are refreshed")
    node = dag.get(name)
    if recursive:
        return dag.subgraph(name)
    return assign_levels({name: node})


async def refresh(
    name: Optional[str] = None,
    *,
    recursive: bool = False,
    all_packages: bool = False,
    skip_git: bool = False,
    dry_run: bool = False,
    concurrency: Optional[int] = None,
    fail_fast: Optional[bool] = None,
    root: Optional[Path] = None,
    settings: Optional[EcoflowSettings] = None,
    git: Optional[GitClient] = None,
    package_manager: Optional[PackageManager] = None,
    on_node_start: Optional[NodeStartCallback] = None,
    on_node_complete: Optional[NodeCompleteCallback] = None,
) -> DAGResult:
    """Clean, reinstall, rebuild and publish a package.

    Args:
        name: Package to refresh.
        recursive: Also refresh everything ``name`` depends on, dependencies first.
        all_packages: Refresh every package in the workspace.
        skip_git: Skip branch reconciliation, commit and push.
        dry_run: Report planned phases without touching anything.
        concurrency: Max packages in flight per level; settings value when None.
        fail_fast: Stop dispatching after the first failure; settings value when None.
        root: Workspace root; settings value when None.
        settings: Loaded settings; ``get_settings()`` when None.
        git: Git adapter override.
        package_manager: Package manager override.
        on_node_start: Progress callback.
        on_node_complete: Progress callback.

    Returns:
        DAGResult of the run.

    Raises:
        KeyError: If ``name`` is not a scanned package.
        CycleDetectedError: If the workspace dependencies are cyclic.
    """
    settings = settings or get_settings()
    git = git or GitClient()
    packages = await _scan(settings, root or settings.workspace.root, git)
    target = select_refresh_targets(
        _dag_for(packages, settings), name, recursive=recursive, all_packages=all_packages
    )

    logger.info(
        f"Refreshing {len(target)} package(s) in {len(target.levels)} level(s)"
        f"{' (dry run)' if dry_run else ''}"
    )
    processor = RefreshProcessor(
        skip_git=skip_git,
        dry_run=dry_run,
        git=git,
        package_manager=package_manager or _package_manager(settings),
    )
    options = _execution_options(
        settings, concurrency, fail_fast, on_node_start, on_node_complete
    )
    return await execute_dag(target, processor, options)


async def clone_missing(
    manifest: EcosystemManifest,
    git: GitClient,
    *,
    dry_run: bool = False,
) -> tuple[list[str], dict[str, str]]:
    """Clone every manifest package whose checkout is missing.

    Returns:
        Tuple of (cloned package names, {name: error} for failed clones).
    """
    cloned: list[str] = []
    failures: dict[str, str] = {}

    for name, entry in manifest.packages.items():
        target = manifest.package_path(name)
        if target.exists():
            continue

        ref = parse_git_ref(entry.repo)
        url = ref.clone_url() if ref else entry.repo
        branch = ref.ref if ref else None

        if dry_run:
            logger.info(f"Would clone {name} from {url} to {target}")
            cloned.append(name)
            continue

        try:
            await git.clone(url, target, branch=branch)
        except GitCommandError as e:
            logger.error(f"Clone failed for {name}: {e}")
            failures[name] = str(e)
            continue
        cloned.append(name)

    return cloned, failures


async def install(
    manifest_path: Optional[Path] = None,
    *,
    dry_run: bool = False,
    concurrency: Optional[int] = None,
    fail_fast: Optional[bool] = None,
    settings: Optional[EcoflowSettings] = None,
    git: Optional[GitClient] = None,
    package_manager: Optional[PackageManager] = None,
    on_node_start: Optional[NodeStartCallback] = None,
    on_node_complete: Optional[NodeCompleteCallback] = None,
) -> InstallReport:
    """Bring up the whole ecosystem from its manifest.

    Clones missing packages, rescans the workspace, then installs and
    builds every manifest package in dependency order.

    Raises:
        ManifestError: If the manifest cannot be loaded.
        CycleDetectedError: If the manifest packages depend on each other cyclically.
    """
    settings = settings or get_settings()
    git = git or GitClient()
    manifest = load_manifest(manifest_path or default_manifest_path(settings.workspace.root))
    logger.info(f"Installing {len(manifest.packages)} package(s) into {manifest.root}")

    cloned, clone_failures = await clone_missing(manifest, git, dry_run=dry_run)
    report = InstallReport(cloned=cloned, clone_failures=clone_failures)

    scanned = await _scan(settings, manifest.root, git)
    packages = {n: record for n, record in scanned.items() if n in manifest.packages}
    unscanned = set(manifest.packages) - set(packages) - set(clone_failures)
    if dry_run:
        unscanned -= set(cloned)
    report.missing = sorted(unscanned)
    if report.missing:
        logger.error(
            f"Manifest packages not found in workspace: {', '.join(report.missing)}"
        )

    processor = InstallProcessor(
        dry_run=dry_run,
        git=git,
        package_manager=package_manager or _package_manager(settings),
    )
    options = _execution_options(
        settings, concurrency, fail_fast, on_node_start, on_node_complete
    )
    report.result = await execute_dag(_dag_for(packages, settings), processor, options)
    return report
