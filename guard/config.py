"""Config loading for context-guard.

Reads `.guard/config.yaml` (or `~/.guard/config.yaml`).
Raises ConfigurationError on parse errors or a missing `version` field.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided: for testing or explicit override)
  2. CONTEXT_GUARD_CONFIG environment variable (if set)
  3. `.guard/config.yaml` (working directory)
  4. `~/.guard/config.yaml` (home directory)

Environment variable overrides:
  CONTEXT_GUARD_PROJECT_ROOT: overrides project_root
  CONTEXT_GUARD_USER:         overrides user
  CONTEXT_GUARD_CONFIG:       sets an explicit config file path to try first
"""

from __future__ import annotations

import getpass
import os
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from guard.constants import (
    DEFAULT_AUDIT_LOG,
    DEFAULT_AUDIT_MAX_BYTES,
    DEFAULT_AUDIT_MAX_FILES,
    DEFAULT_QUARANTINE_DIR,
)
from guard.errors import ConfigurationError
from guard.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

VALID_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Default config search paths (CONTEXT_GUARD_CONFIG env var prepended at runtime)
DEFAULT_CONFIG_PATHS = [
    ".guard/config.yaml",
    os.path.expanduser("~/.guard/config.yaml"),
]


# ─── Helpers ──────────────────────────────────────────────────────────────────


def default_user() -> str:
    """OS user name, or ``"unknown"`` when it cannot be determined."""
    for var in ("USER", "USERNAME"):
        value = os.environ.get(var)
        if value:
            return value
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Config section '{key}' must be a mapping, got {type(value).__name__}")
    return value


def _str_list(section: dict, key: str, where: str) -> list[str]:
    value = section.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"Config key '{where}.{key}' must be a list of strings")
    return list(value)


def _non_negative_int(section: dict, key: str, where: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(f"Config key '{where}.{key}' must be a non-negative integer, got {value!r}")
    return value


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class AuditConfig:
    """Audit log rotation. ``max_bytes = 0`` disables rotation; ``max_files = 0`` keeps all."""

    max_bytes: int = DEFAULT_AUDIT_MAX_BYTES
    max_files: int = DEFAULT_AUDIT_MAX_FILES


@dataclass
class FileAccessConfig:
    """Extra path globs, added to the built-in rules.

    Globs may use ``{HOME}`` and ``{PROJECT_ROOT}`` placeholders.
    """

    blocked_paths: list[str] = field(default_factory=list)
    require_confirmation: list[str] = field(default_factory=list)


@dataclass
class CommandConfig:
    """Extra command rules, added to the built-in rules.

    blocked_commands:     substrings that deny a command
    require_confirmation: substrings that require confirmation
    allowed_commands:     command names allowed unless a stricter rule matches
    """

    blocked_commands: list[str] = field(default_factory=list)
    require_confirmation: list[str] = field(default_factory=list)
    allowed_commands: list[str] = field(default_factory=list)


@dataclass
class SecretsConfig:
    """Extra secret patterns: ``{name, pattern, severity, description}`` mappings."""

    extra_patterns: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class LoggingConfig:
    """Operational (structlog) logging."""

    level: str = "INFO"
    json: bool = True


@dataclass
class GuardConfig:
    """Root configuration object populated from .guard/config.yaml.

    All fields have safe defaults: the guard can start without any config file.
    Relative ``quarantine_dir`` and ``audit_log`` resolve against ``project_root``.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    project_root: str = "."
    quarantine_dir: str = DEFAULT_QUARANTINE_DIR
    audit_log: str = DEFAULT_AUDIT_LOG
    user: Optional[str] = None
    audit: AuditConfig = field(default_factory=AuditConfig)
    file_access: FileAccessConfig = field(default_factory=FileAccessConfig)
    command_execution: CommandConfig = field(default_factory=CommandConfig)
    secrets: SecretsConfig = field(default_factory=SecretsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "GuardConfig":
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "GuardConfig":
        """Construct GuardConfig from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are ignored.

        Raises:
            ConfigurationError: On a value of the wrong type.
        """
        for key in ("project_root", "quarantine_dir", "audit_log", "user"):
            value = raw.get(key)
            if value is not None and not isinstance(value, str):
                raise ConfigurationError(f"Config key '{key}' must be a string, got {value!r}")

        # ── Audit ─────────────────────────────────────────────────────────────
        audit_raw = _section(raw, "audit")
        audit = AuditConfig(
            max_bytes=_non_negative_int(audit_raw, "max_bytes", "audit", DEFAULT_AUDIT_MAX_BYTES),
            max_files=_non_negative_int(audit_raw, "max_files", "audit", DEFAULT_AUDIT_MAX_FILES),
        )

        # ── File access ───────────────────────────────────────────────────────
        access_raw = _section(raw, "file_access")
        file_access = FileAccessConfig(
            blocked_paths=_str_list(access_raw, "blocked_paths", "file_access"),
            require_confirmation=_str_list(access_raw, "require_confirmation", "file_access"),
        )

        # ── Command execution ─────────────────────────────────────────────────
        command_raw = _section(raw, "command_execution")
        command_execution = CommandConfig(
            blocked_commands=_str_list(command_raw, "blocked_commands", "command_execution"),
            require_confirmation=_str_list(command_raw, "require_confirmation", "command_execution"),
            allowed_commands=_str_list(command_raw, "allowed_commands", "command_execution"),
        )

        # ── Secrets ───────────────────────────────────────────────────────────
        secrets_raw = _section(raw, "secrets")
        extra_patterns = secrets_raw.get("extra_patterns") or []
        if not isinstance(extra_patterns, list) or not all(isinstance(p, dict) for p in extra_patterns):
            raise ConfigurationError("Config key 'secrets.extra_patterns' must be a list of mappings")

        # ── Logging ───────────────────────────────────────────────────────────
        logging_raw = _section(raw, "logging")
        level = str(logging_raw.get("level", "INFO")).upper()
        if level not in VALID_LOG_LEVELS:
            raise ConfigurationError(
                f"Invalid logging.level: '{level}'. Supported values: {sorted(VALID_LOG_LEVELS)}."
            )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            project_root=raw.get("project_root") or ".",
            quarantine_dir=raw.get("quarantine_dir") or DEFAULT_QUARANTINE_DIR,
            audit_log=raw.get("audit_log") or DEFAULT_AUDIT_LOG,
            user=raw.get("user"),
            audit=audit,
            file_access=file_access,
            command_execution=command_execution,
            secrets=SecretsConfig(extra_patterns=list(extra_patterns)),
            logging=LoggingConfig(level=level, json=bool(logging_raw.get("json", True))),
            path=path,
        )

    def resolve(self, relative: str) -> str:
        """Resolve ``relative`` against ``project_root`` (``~`` expanded)."""
        expanded = os.path.expanduser(relative)
        if os.path.isabs(expanded):
            return expanded
        return os.path.join(os.path.expanduser(self.project_root), expanded)

    @property
    def effective_user(self) -> str:
        return self.user or default_user()


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> GuardConfig:
    """Load and validate guard configuration.

    Search order:
      1. ``config_path`` argument
      2. ``CONTEXT_GUARD_CONFIG`` environment variable
      3. ``.guard/config.yaml`` (current working directory)
      4. ``~/.guard/config.yaml`` (home directory)

    If no file is found at any of these paths, returns default GuardConfig.
    An explicit ``config_path`` that does not exist is an error.

    Raises:
        ConfigurationError: On YAML parse error, missing ``version`` field,
                            unsupported version, or an invalid value.
    """
    if config_path and not os.path.isfile(os.path.expanduser(config_path)):
        raise ConfigurationError(f"Config file not found: {config_path}")

    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("CONTEXT_GUARD_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.debug("No config file found: using defaults", searched=search_paths)
        config = GuardConfig.defaults()
        _apply_env_overrides(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.debug("Loading config", path=found_path)

    try:
        with open(found_path, encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Failed to parse {found_path}: {exc}\n"
            "The guard refuses to start with an invalid config."
        ) from exc
    except OSError as exc:
        raise ConfigurationError(f"Could not read {found_path}: {exc}") from exc

    if not isinstance(raw, dict):
        if raw is None:
            raise ConfigurationError(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        raise ConfigurationError(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        raise ConfigurationError(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        raise ConfigurationError(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = GuardConfig.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    logger.debug("Config loaded", path=found_path, version=config.version)
    return config


def _apply_env_overrides(config: GuardConfig) -> None:
    """Apply environment variable overrides to a GuardConfig in-place.

    Called for file-loaded and default configs alike, so env vars always take
    precedence over any file value.
    """
    env_root = os.environ.get("CONTEXT_GUARD_PROJECT_ROOT")
    if env_root:
        config.project_root = env_root
    env_user = os.environ.get("CONTEXT_GUARD_USER")
    if env_user:
        config.user = env_user
