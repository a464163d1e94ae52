"""Ecosystem manifest: the packages an install brings up and the layout an
audit checks them against.

The manifest lives at ``<root>/ecosystem/ecosystem.manifest.json``::

    {
      "version": "1.0.0",
      "root": "~/git",
      "packages": {
        "@ecosystem/core": {"repo": "github:ecosystem/core#main", "path": "core"}
      },
      "projectTemplate": {
        "files": ["package.json", "tsconfig.json", ".gitignore"],
        "dirs": ["src", "dist"]
      }
    }

``path`` is relative to ``root``. ``projectTemplate`` lists what every
package checkout must contain; it defaults to DEFAULT_TEMPLATE_FILES and
DEFAULT_TEMPLATE_DIRS.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

MANIFEST_RELATIVE_PATH = Path("ecosystem") / "ecosystem.manifest.json"
DEFAULT_TEMPLATE_FILES = ("package.json", "tsconfig.json", "dependencies.json", ".gitignore")
DEFAULT_TEMPLATE_DIRS = ("src", "dist")


class ManifestError(ValueError):
    """The manifest is missing or malformed."""


@dataclass
class ManifestEntry:
    """One package the ecosystem expects to exist."""

    name: str
    repo: str
    path: str


@dataclass
class ProjectTemplate:
    """Files and directories every package checkout must contain."""

    files: list[str] = field(default_factory=lambda: list(DEFAULT_TEMPLATE_FILES))
    dirs: list[str] = field(default_factory=lambda: list(DEFAULT_TEMPLATE_DIRS))


@dataclass
class EcosystemManifest:
    """Parsed manifest."""

    version: str
    root: Path
    packages: dict[str, ManifestEntry] = field(default_factory=dict)
    project_template: ProjectTemplate = field(default_factory=ProjectTemplate)

    def package_path(self, name: str) -> Path:
        """Absolute checkout path for ``name``.

        Raises:
            KeyError: If ``name`` is not in the manifest.
        """
        return self.root / self.packages[name].path


def default_manifest_path(root: Path) -> Path:
    return root.expanduser() / MANIFEST_RELATIVE_PATH


def _string_list(value: object, what: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ManifestError(f"Manifest {what} must be a list of strings")
    return list(value)


def parse_template(data: object) -> ProjectTemplate:
    """Parse ``projectTemplate``; a missing key yields the default template.

    Raises:
        ManifestError: If the template or its lists have the wrong type.
    """
    if data is None:
        return ProjectTemplate()
    if not isinstance(data, dict):
        raise ManifestError("Manifest 'projectTemplate' must be an object")
    template = ProjectTemplate()
    if "files" in data:
        template.files = _string_list(data["files"], "'projectTemplate.files'")
    if "dirs" in data:
        template.dirs = _string_list(data["dirs"], "'projectTemplate.dirs'")
    return template


def parse_manifest(data: dict, fallback_root: Optional[Path] = None) -> EcosystemManifest:
    """Build an EcosystemManifest from decoded JSON.

    Args:
        data: Decoded manifest document.
        fallback_root: Root used when the document has no ``root`` key.

    Raises:
        ManifestError: If required fields are missing or have the wrong type.
    """
    if not isinstance(data, dict):
        raise ManifestError("Manifest must be a JSON object")

    raw_root = data.get("root")
    if raw_root:
        root = Path(str(raw_root)).expanduser()
    elif fallback_root is not None:
        root = fallback_root.expanduser()
    else:
        raise ManifestError("Manifest has no 'root'")

    raw_packages = data.get("packages")
    if not isinstance(raw_packages, dict):
        raise ManifestError("Manifest 'packages' must be an object")

    packages: dict[str, ManifestEntry] = {}
    for name, entry in raw_packages.items():
        if not isinstance(entry, dict) or "repo" not in entry or "path" not in entry:
            raise ManifestError(f"Manifest entry for '{name}' needs 'repo' and 'path'")
        packages[name] = ManifestEntry(
            name=name, repo=str(entry["repo"]), path=str(entry["path"])
        )

    return EcosystemManifest(
        version=str(data.get("version", "")),
        root=root,
        packages=packages,
        project_template=parse_template(data.get("projectTemplate")),
    )


def load_manifest(path: Path) -> EcosystemManifest:
    """Load a manifest file.

    Raises:
        ManifestError: If the file cannot be read or parsed.
    """
    path = path.expanduser()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}") from e
    except ValueError as e:
        raise ManifestError(f"Invalid JSON in manifest {path}: {e}") from e

    # The manifest sits two levels below the workspace root by convention.
    return parse_manifest(data, fallback_root=path.parent.parent)
