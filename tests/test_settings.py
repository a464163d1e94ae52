"""Tests for the unified settings module."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from ecoflow.settings import (
    ExecutionSettings,
    WorkspaceSettings,
    get_settings,
    load_settings,
    load_yaml_config,
    reset_settings,
)

ENV_VARS = [
    "ECOFLOW_ROOT",
    "ECOFLOW_SCAN_DEPTH",
    "ECOFLOW_OWNER",
    "ECOFLOW_DEFAULT_BRANCH",
    "ECOFLOW_CONCURRENCY",
    "ECOFLOW_FAIL_FAST",
    "ECOFLOW_COMMAND_TIMEOUT",
    "ECOFLOW_PACKAGE_MANAGER",
    "ECOFLOW_LOG_LEVEL",
    "ECOFLOW_LOG_FORMAT",
    "ECOFLOW_LOG_FILE",
]


@pytest.fixture
def clean_env():
    """Run with no ECOFLOW_* variables set."""
    with patch.dict(os.environ, {}, clear=False):
        for key in ENV_VARS:
            os.environ.pop(key, None)
        yield


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    def test_workspace_defaults(self):
        s = WorkspaceSettings()
        assert s.root == Path.home() / "git"
        assert s.scan_depth == 2
        assert s.owner == "ecosystem"
        assert s.default_branch == "main"

    def test_execution_defaults(self):
        s = ExecutionSettings()
        assert s.concurrency is None
        assert s.fail_fast is True
        assert s.command_timeout == 300.0
        assert s.package_manager == "pnpm"


# ---------------------------------------------------------------------------
# load_yaml_config
# ---------------------------------------------------------------------------


class TestLoadYamlConfig:
    def test_returns_empty_dict_for_missing_file(self, tmp_path):
        assert load_yaml_config(tmp_path / "nonexistent.yml") == {}

    def test_loads_valid_yaml(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("workspace:\n  owner: someone\n")
        assert load_yaml_config(config_file)["workspace"]["owner"] == "someone"

    def test_returns_empty_dict_for_non_dict_yaml(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("just a string\n")
        assert load_yaml_config(config_file) == {}

    def test_returns_empty_dict_for_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "config.yml"
        config_file.write_text("workspace: [unclosed\n")
        assert load_yaml_config(config_file) == {}


# ---------------------------------------------------------------------------
# load_settings: precedence
# ---------------------------------------------------------------------------


class TestLoadSettings:
    def test_defaults_with_no_config(self, tmp_path, clean_env):
        settings = load_settings(
            user_config_path=tmp_path / "nope.yml",
            project_config_path=tmp_path / "nope2.yml",
        )
        assert settings.workspace.owner == "ecosystem"
        assert settings.execution.fail_fast is True
        assert settings.logging.level == "INFO"

    def test_user_config_overrides_defaults(self, tmp_path, clean_env):
        user_cfg = tmp_path / "user.yml"
        user_cfg.write_text(
            "workspace:\n  root: ~/src\n  owner: me\n"
            "execution:\n  concurrency: 4\n  fail_fast: false\n"
        )
        settings = load_settings(
            user_config_path=user_cfg,
            project_config_path=tmp_path / "nope.yml",
        )
        assert settings.workspace.root == Path.home() / "src"
        assert settings.workspace.owner == "me"
        assert settings.execution.concurrency == 4
        assert settings.execution.fail_fast is False
        assert settings.workspace.default_branch == "main"

    def test_project_config_overrides_user_config(self, tmp_path, clean_env):
        user_cfg = tmp_path / "user.yml"
        user_cfg.write_text("workspace:\n  owner: user-owner\n  scan_depth: 3\n")
        project_cfg = tmp_path / "project.yml"
        project_cfg.write_text("workspace:\n  owner: project-owner\n")
        settings = load_settings(
            user_config_path=user_cfg,
            project_config_path=project_cfg,
        )
        assert settings.workspace.owner == "project-owner"
        assert settings.workspace.scan_depth == 3

    def test_env_vars_override_all(self, tmp_path, clean_env):
        user_cfg = tmp_path / "user.yml"
        user_cfg.write_text("execution:\n  package_manager: npm\n  concurrency: 2\n")
        env = {
            "ECOFLOW_PACKAGE_MANAGER": "yarn",
            "ECOFLOW_CONCURRENCY": "unbounded",
            "ECOFLOW_FAIL_FAST": "no",
            "ECOFLOW_COMMAND_TIMEOUT": "60",
            "ECOFLOW_ROOT": str(tmp_path),
            "ECOFLOW_LOG_FORMAT": "JSON",
        }
        with patch.dict(os.environ, env):
            settings = load_settings(
                user_config_path=user_cfg,
                project_config_path=tmp_path / "nope.yml",
            )
        assert settings.execution.package_manager == "yarn"
        assert settings.execution.concurrency is None
        assert settings.execution.fail_fast is False
        assert settings.execution.command_timeout == 60.0
        assert settings.workspace.root == tmp_path
        assert settings.logging.format == "json"

    def test_invalid_concurrency_raises(self, tmp_path, clean_env):
        with patch.dict(os.environ, {"ECOFLOW_CONCURRENCY": "lots"}):
            with pytest.raises(ValueError):
                load_settings(
                    user_config_path=tmp_path / "nope.yml",
                    project_config_path=tmp_path / "nope.yml",
                )

    def test_non_positive_concurrency_raises(self, tmp_path, clean_env):
        with patch.dict(os.environ, {"ECOFLOW_CONCURRENCY": "0"}):
            with pytest.raises(ValueError, match="positive integer"):
                load_settings(
                    user_config_path=tmp_path / "nope.yml",
                    project_config_path=tmp_path / "nope.yml",
                )

    def test_negative_concurrency_in_yaml_raises(self, tmp_path, clean_env):
        user_cfg = tmp_path / "user.yml"
        user_cfg.write_text("execution:\n  concurrency: -2\n")
        with pytest.raises(ValueError, match="positive integer"):
            load_settings(
                user_config_path=user_cfg,
                project_config_path=tmp_path / "nope.yml",
            )


class TestSettingsCache:
    def test_get_settings_caches(self, clean_env):
        assert get_settings() is get_settings()

    def test_reset_settings_clears_cache(self, clean_env):
        first = get_settings()
        reset_settings()
        assert get_settings() is not first
