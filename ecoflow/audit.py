"""Audit manifest packages against the ecosystem's project template.

Each package checkout must contain the template's files and directories,
and must be set up for pnpm: no ``package-lock.json``, and every git-hosted
dependency listed in ``pnpm.onlyBuiltDependencies`` so its build script is
allowed to run on install.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ecoflow.git_ref import is_git_ref
from ecoflow.manifest import (
    EcosystemManifest,
    ProjectTemplate,
    default_manifest_path,
    load_manifest,
)
from ecoflow.scanner import read_package_json
from ecoflow.settings import EcoflowSettings, get_settings

logger = logging.getLogger(__name__)

ISSUE_NPM_LOCKFILE = "npm-lockfile"
ISSUE_ONLY_BUILT = "missing-onlyBuiltDependencies"

# Files --fix can create; everything else needs the config generator.
FIXABLE_FILES = {".gitignore": "node_modules/\ndist/\n.tsbuildinfo\n"}


@dataclass
class PnpmIssue:
    """A pnpm configuration problem in one package."""

    kind: str
    message: str
    dependency: Optional[str] = None


@dataclass
class PackageAudit:
    """Audit outcome for one manifest package."""

    name: str
    path: Path
    cloned: bool = True
    missing_files: list[str] = field(default_factory=list)
    missing_dirs: list[str] = field(default_factory=list)
    pnpm_issues: list[PnpmIssue] = field(default_factory=list)
    fixed_files: list[str] = field(default_factory=list)
    fixed_dirs: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return (
            self.cloned
            and not self.missing_files
            and not self.missing_dirs
            and not self.pnpm_issues
        )


@dataclass
class AuditReport:
    """Audit outcome for the whole manifest."""

    template: ProjectTemplate
    results: list[PackageAudit] = field(default_factory=list)

    @property
    def valid_count(self) -> int:
        return sum(1 for r in self.results if r.valid)

    @property
    def invalid_count(self) -> int:
        return len(self.results) - self.valid_count

    @property
    def success(self) -> bool:
        return self.invalid_count == 0


def check_pnpm_issues(package_path: Path) -> list[PnpmIssue]:
    """Find pnpm setup problems in one package checkout."""
    issues: list[PnpmIssue] = []

    if (package_path / "package-lock.json").exists():
        issues.append(
            PnpmIssue(
                ISSUE_NPM_LOCKFILE,
                "Found package-lock.json - should use pnpm-lock.yaml instead",
            )
        )

    package_json = read_package_json(package_path)
    if package_json is None:
        return issues

    git_deps: list[str] = []
    for section in ("dependencies", "devDependencies"):
        for name, version in (package_json.get(section) or {}).items():
            if name not in git_deps and isinstance(version, str) and is_git_ref(version):
                git_deps.append(name)

    pnpm_config = package_json.get("pnpm") or {}
    allowed = pnpm_config.get("onlyBuiltDependencies") or []
    for dep in git_deps:
        if dep not in allowed:
            issues.append(
                PnpmIssue(
                    ISSUE_ONLY_BUILT,
                    f'Git dependency "{dep}" needs a pnpm.onlyBuiltDependencies entry',
                    dependency=dep,
                )
            )
    return issues


def audit_package(
    name: str,
    package_path: Path,
    template: ProjectTemplate,
    *,
    fix: bool = False,
) -> PackageAudit:
    """Check one checkout against ``template``.

    With ``fix``, missing directories and fixable files are created; only
    what could not be created stays in the missing lists.
    """
    result = PackageAudit(name=name, path=package_path)

    for directory in template.dirs:
        target = package_path / directory
        if target.exists():
            continue
        if fix:
            try:
                target.mkdir(parents=True, exist_ok=True)
                result.fixed_dirs.append(directory)
                continue
            except OSError as e:
                logger.warning(f"{name}: cannot create {directory}/: {e}")
        result.missing_dirs.append(directory)

    for filename in template.files:
        target = package_path / filename
        if target.exists():
            continue
        if fix and filename in FIXABLE_FILES:
            try:
                target.write_text(FIXABLE_FILES[filename], encoding="utf-8")
                result.fixed_files.append(filename)
                continue
            except OSError as e:
                logger.warning(f"{name}: cannot write {filename}: {e}")
        result.missing_files.append(filename)

    result.pnpm_issues = check_pnpm_issues(package_path)
    return result


def audit_manifest(manifest: EcosystemManifest, *, fix: bool = False) -> AuditReport:
    """Audit every manifest package, in manifest order."""
    report = AuditReport(template=manifest.project_template)

    for name in manifest.packages:
        package_path = manifest.package_path(name)
        if not package_path.is_dir():
            logger.warning(f"{name}: not cloned at {package_path}")
            report.results.append(PackageAudit(name=name, path=package_path, cloned=False))
            continue
        report.results.append(
            audit_package(name, package_path, manifest.project_template, fix=fix)
        )

    logger.info(
        f"Audit: {report.valid_count} valid, {report.invalid_count} invalid "
        f"of {len(report.results)} package(s)"
    )
    return report


def audit(
    manifest_path: Optional[Path] = None,
    *,
    fix: bool = False,
    settings: Optional[EcoflowSettings] = None,
) -> AuditReport:
    """Load the ecosystem manifest and audit every package in it.

    Raises:
        ManifestError: If the manifest cannot be loaded.
    """
    settings = settings or get_settings()
    manifest = load_manifest(manifest_path or default_manifest_path(settings.workspace.root))
    return audit_manifest(manifest, fix=fix)
