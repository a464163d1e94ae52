"""Unified configuration for ecoflow.

Loads settings from (in order of precedence, highest first):
1. Environment variables (ECOFLOW_*)
2. Project-local config (.ecoflow.yml in cwd)
3. User config (~/.ecoflow/config.yml)
4. Built-in defaults
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_OWNER = "ecosystem"
DEFAULT_HOST = "github"
DEFAULT_BRANCH = "main"
DEFAULT_ROOT = Path.home() / "git"
DEFAULT_USER_CONFIG_PATH = Path.home() / ".ecoflow" / "config.yml"


@dataclass
class WorkspaceSettings:
    """Where packages live and how in-ecosystem references look."""

    root: Path = DEFAULT_ROOT
    scan_depth: int = 2
    owner: str = DEFAULT_OWNER
    host: str = DEFAULT_HOST
    default_branch: str = DEFAULT_BRANCH


@dataclass
class ExecutionSettings:
    """Leveled executor and external tool configuration."""

    concurrency: Optional[int] = None
    fail_fast: bool = True
    command_timeout: float = 300.0
    package_manager: str = "pnpm"


@dataclass
class LoggingSettings:
    """Log output configuration."""

    level: str = "INFO"
    format: str = "console"
    file: Optional[str] = None


@dataclass
class EcoflowSettings:
    """Root configuration container."""

    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


def load_yaml_config(path: Path) -> dict:
    """Load a YAML config file, returning empty dict if not found.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed dict, or empty dict when the file is missing or unreadable.
    """
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


def _as_bool(val: object) -> bool:
    return val if isinstance(val, bool) else str(val).lower() in ("1", "true", "yes")


def _as_concurrency(val: object) -> Optional[int]:
    if val is None or str(val).lower() in ("", "none", "unbounded"):
        return None
    concurrency = int(val)  # type: ignore[arg-type]
    if concurrency < 1:
        raise ValueError(f"concurrency must be a positive integer, got {concurrency}")
    return concurrency


def _apply_dict_to_workspace(settings: WorkspaceSettings, data: dict) -> None:
    """Apply dict values to WorkspaceSettings."""
    if "root" in data:
        settings.root = Path(str(data["root"])).expanduser()
    if "scan_depth" in data:
        settings.scan_depth = int(data["scan_depth"])
    if "owner" in data:
        settings.owner = str(data["owner"])
    if "host" in data:
        settings.host = str(data["host"])
    if "default_branch" in data:
        settings.default_branch = str(data["default_branch"])


def _apply_dict_to_execution(settings: ExecutionSettings, data: dict) -> None:
    """Apply dict values to ExecutionSettings."""
    if "concurrency" in data:
        settings.concurrency = _as_concurrency(data["concurrency"])
    if "fail_fast" in data:
        settings.fail_fast = _as_bool(data["fail_fast"])
    if "command_timeout" in data:
        settings.command_timeout = float(data["command_timeout"])
    if "package_manager" in data:
        settings.package_manager = str(data["package_manager"])


def _apply_dict_to_logging(settings: LoggingSettings, data: dict) -> None:
    """Apply dict values to LoggingSettings."""
    if "level" in data:
        settings.level = str(data["level"])
    if "format" in data:
        settings.format = str(data["format"])
    if "file" in data:
        settings.file = str(data["file"]) if data["file"] else None


def _apply_dict(settings: EcoflowSettings, data: dict) -> None:
    if isinstance(data.get("workspace"), dict):
        _apply_dict_to_workspace(settings.workspace, data["workspace"])
    if isinstance(data.get("execution"), dict):
        _apply_dict_to_execution(settings.execution, data["execution"])
    if isinstance(data.get("logging"), dict):
        _apply_dict_to_logging(settings.logging, data["logging"])


def _apply_env_overrides(settings: EcoflowSettings) -> None:
    """Apply ECOFLOW_* environment variable overrides."""
    root = os.environ.get("ECOFLOW_ROOT")
    if root:
        settings.workspace.root = Path(root).expanduser()

    scan_depth = os.environ.get("ECOFLOW_SCAN_DEPTH")
    if scan_depth:
        settings.workspace.scan_depth = int(scan_depth)

    owner = os.environ.get("ECOFLOW_OWNER")
    if owner:
        settings.workspace.owner = owner

    branch = os.environ.get("ECOFLOW_DEFAULT_BRANCH")
    if branch:
        settings.workspace.default_branch = branch

    concurrency = os.environ.get("ECOFLOW_CONCURRENCY")
    if concurrency:
        settings.execution.concurrency = _as_concurrency(concurrency)

    fail_fast = os.environ.get("ECOFLOW_FAIL_FAST")
    if fail_fast:
        settings.execution.fail_fast = _as_bool(fail_fast)

    timeout = os.environ.get("ECOFLOW_COMMAND_TIMEOUT")
    if timeout:
        settings.execution.command_timeout = float(timeout)

    package_manager = os.environ.get("ECOFLOW_PACKAGE_MANAGER")
    if package_manager:
        settings.execution.package_manager = package_manager

    log_level = os.environ.get("ECOFLOW_LOG_LEVEL")
    if log_level:
        settings.logging.level = log_level

    log_format = os.environ.get("ECOFLOW_LOG_FORMAT")
    if log_format:
        settings.logging.format = log_format.lower()

    log_file = os.environ.get("ECOFLOW_LOG_FILE")
    if log_file:
        settings.logging.file = log_file


def load_settings(
    user_config_path: Optional[Path] = None,
    project_config_path: Optional[Path] = None,
) -> EcoflowSettings:
    """Load settings from config files and env vars.

    Precedence (highest first):
    1. Environment variables (ECOFLOW_*)
    2. Project-local config (.ecoflow.yml in cwd)
    3. User config (~/.ecoflow/config.yml)
    4. Built-in defaults

    Args:
        user_config_path: Override path for user config (testing).
        project_config_path: Override path for project config (testing).

    Returns:
        Fully resolved EcoflowSettings.
    """
    settings = EcoflowSettings()

    user_path = user_config_path or DEFAULT_USER_CONFIG_PATH
    _apply_dict(settings, load_yaml_config(user_path))

    project_path = project_config_path or (Path.cwd() / ".ecoflow.yml")
    _apply_dict(settings, load_yaml_config(project_path))

    _apply_env_overrides(settings)

    return settings


# Module-level cached instance
_settings: Optional[EcoflowSettings] = None


def get_settings() -> EcoflowSettings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset cached settings (for testing)."""
    global _settings
    _settings = None
