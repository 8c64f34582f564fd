"""Unit tests for guard/config.py: config file loading and validation.

Covers:
  - No config file anywhere → GuardConfig.defaults(), no exception
  - Explicit config path that does not exist → ConfigurationError
  - Missing / unsupported 'version' → ConfigurationError with a hint
  - Invalid YAML or a non-mapping document → ConfigurationError
  - Section parsing: audit, file_access, command_execution, secrets, logging
  - Search order: explicit path, CONTEXT_GUARD_CONFIG, .guard/config.yaml
  - Env overrides: CONTEXT_GUARD_PROJECT_ROOT, CONTEXT_GUARD_USER
"""

from __future__ import annotations

import os
import textwrap
from pathlib import Path

import pytest

import guard.config
from guard.config import (
    SUPPORTED_VERSIONS,
    AuditConfig,
    GuardConfig,
    load_config,
)
from guard.constants import DEFAULT_AUDIT_LOG, DEFAULT_QUARANTINE_DIR
from guard.errors import ConfigurationError


def _write(path: Path, body: str) -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(body))
    return str(path)


# ─── Defaults ─────────────────────────────────────────────────────────────────


class TestNoConfigFile:
    """No config file is NOT an error: the guard runs on defaults."""

    def test_returns_defaults(self) -> None:
        config = load_config()
        assert config == GuardConfig.defaults()
        assert config.path is None

    def test_default_locations(self) -> None:
        config = load_config()
        assert config.project_root == "."
        assert config.quarantine_dir == DEFAULT_QUARANTINE_DIR
        assert config.audit_log == DEFAULT_AUDIT_LOG

    def test_rotation_off_by_default(self) -> None:
        assert load_config().audit == AuditConfig(max_bytes=0, max_files=0)

    def test_explicit_missing_path_raises(self, tmp_path: Path) -> None:
        """A path the caller named must exist; silently using defaults would hide a typo."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(str(tmp_path / "nope.yaml"))


# ─── Version validation ───────────────────────────────────────────────────────


class TestVersion:
    def test_missing_version(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.yaml", "project_root: /srv/app\n")
        with pytest.raises(ConfigurationError, match="version"):
            load_config(path)

    def test_empty_file(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.yaml", "")
        with pytest.raises(ConfigurationError, match="version: 1"):
            load_config(path)

    @pytest.mark.parametrize("version", [0, 2, 99, "one"])
    def test_unsupported_version(self, tmp_path: Path, version: object) -> None:
        path = _write(tmp_path / "c.yaml", f"version: {version}\n")
        with pytest.raises(ConfigurationError, match="Unsupported config version"):
            load_config(path)

    def test_supported_versions_constant(self) -> None:
        assert SUPPORTED_VERSIONS == frozenset({1})


class TestInvalidDocument:
    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.yaml", "version: 1\nfile_access: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Failed to parse"):
            load_config(path)

    def test_top_level_list(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.yaml", "- version: 1\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(path)

    def test_section_must_be_mapping(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.yaml", "version: 1\naudit: yes\n")
        with pytest.raises(ConfigurationError, match="audit"):
            load_config(path)

    def test_list_of_strings_required(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path / "c.yaml",
            """\
            version: 1
            command_execution:
              blocked_commands: [1, 2]
            """,
        )
        with pytest.raises(ConfigurationError, match="command_execution.blocked_commands"):
            load_config(path)

    @pytest.mark.parametrize("value", ["-1", "big", "true"])
    def test_rotation_values_validated(self, tmp_path: Path, value: str) -> None:
        path = _write(tmp_path / "c.yaml", f"version: 1\naudit:\n  max_bytes: {value}\n")
        with pytest.raises(ConfigurationError, match="audit.max_bytes"):
            load_config(path)

    def test_invalid_log_level(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.yaml", "version: 1\nlogging:\n  level: chatty\n")
        with pytest.raises(ConfigurationError, match="logging.level"):
            load_config(path)

    def test_non_string_location(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "c.yaml", "version: 1\naudit_log: 42\n")
        with pytest.raises(ConfigurationError, match="audit_log"):
            load_config(path)


# ─── Full config ──────────────────────────────────────────────────────────────


class TestFullConfig:
    @pytest.fixture
    def config(self, tmp_path: Path) -> GuardConfig:
        path = _write(
            tmp_path / "c.yaml",
            """\
            version: 1
            project_root: /srv/app
            quarantine_dir: /var/guard/quarantine
            audit_log: logs/audit.log
            user: ci-bot
            audit:
              max_bytes: 1048576
              max_files: 5
            file_access:
              blocked_paths:
                - "{PROJECT_ROOT}/build/**"
              require_confirmation:
                - "**/*.sqlite"
            command_execution:
              blocked_commands: ["terraform destroy"]
              require_confirmation: ["kubectl delete"]
              allowed_commands: ["terraform", "kubectl"]
            secrets:
              extra_patterns:
                - name: internal-ticket
                  pattern: "TCK-[0-9]{6}"
                  severity: low
            logging:
              level: debug
              json: false
            """,
        )
        return load_config(path)

    def test_locations(self, config: GuardConfig) -> None:
        assert config.project_root == "/srv/app"
        assert config.quarantine_dir == "/var/guard/quarantine"
        assert config.audit_log == "logs/audit.log"

    def test_user(self, config: GuardConfig) -> None:
        assert config.effective_user == "ci-bot"

    def test_audit(self, config: GuardConfig) -> None:
        assert config.audit == AuditConfig(max_bytes=1048576, max_files=5)

    def test_file_access(self, config: GuardConfig) -> None:
        assert config.file_access.blocked_paths == ["{PROJECT_ROOT}/build/**"]
        assert config.file_access.require_confirmation == ["**/*.sqlite"]

    def test_command_execution(self, config: GuardConfig) -> None:
        assert config.command_execution.blocked_commands == ["terraform destroy"]
        assert config.command_execution.require_confirmation == ["kubectl delete"]
        assert config.command_execution.allowed_commands == ["terraform", "kubectl"]

    def test_secrets(self, config: GuardConfig) -> None:
        assert config.secrets.extra_patterns == [
            {"name": "internal-ticket", "pattern": "TCK-[0-9]{6}", "severity": "low"}
        ]

    def test_logging_level_normalised(self, config: GuardConfig) -> None:
        assert config.logging.level == "DEBUG"
        assert config.logging.json is False

    def test_stores_path(self, config: GuardConfig, tmp_path: Path) -> None:
        assert config.path == str(tmp_path / "c.yaml")

    def test_resolve_relative_against_root(self, config: GuardConfig) -> None:
        assert config.resolve("logs/audit.log") == os.path.join("/srv/app", "logs/audit.log")
        assert config.resolve("/var/guard/quarantine") == "/var/guard/quarantine"


# ─── Search order / env overrides ─────────────────────────────────────────────


class TestSearchOrder:
    def test_env_config_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write(tmp_path / "env.yaml", "version: 1\nuser: from-env-file\n")
        monkeypatch.setenv("CONTEXT_GUARD_CONFIG", path)
        assert load_config().user == "from-env-file"

    def test_explicit_path_wins_over_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        explicit = _write(tmp_path / "explicit.yaml", "version: 1\nuser: explicit\n")
        env = _write(tmp_path / "env.yaml", "version: 1\nuser: env\n")
        monkeypatch.setenv("CONTEXT_GUARD_CONFIG", env)
        assert load_config(explicit).user == "explicit"

    def test_working_directory_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _write(tmp_path / ".guard" / "config.yaml", "version: 1\nuser: local\n")
        monkeypatch.setattr(guard.config, "DEFAULT_CONFIG_PATHS", [".guard/config.yaml"])
        assert load_config().user == "local"


class TestEnvOverrides:
    def test_project_root_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write(tmp_path / "c.yaml", "version: 1\nproject_root: /srv/app\n")
        monkeypatch.setenv("CONTEXT_GUARD_PROJECT_ROOT", "/srv/other")
        assert load_config(path).project_root == "/srv/other"

    def test_user_override_without_file(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CONTEXT_GUARD_USER", "override")
        assert load_config().effective_user == "override"

    def test_effective_user_falls_back_to_os(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("USER", "os-user")
        assert load_config().effective_user == "os-user"
