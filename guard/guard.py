"""SecurityGuard: the single entry point callers use before acting.

One guard instance owns:
  - the secret pattern registry (built-ins plus configured extras),
  - the file access policy for one project root,
  - the command rule set,
  - the quarantine store,
  - the audit log.

Every operation except ``matches_pattern`` writes exactly one audit entry
before it returns. An unsafe scan is quarantined before its audit entry is
written, and the entry carries the quarantine record id. If the audit entry
cannot be written the operation raises instead of returning a decision.

All operations are synchronous; rule sets are immutable after construction.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from guard.audit.log import AuditLog
from guard.commands.classifier import classify_command
from guard.commands.definitions import build_command_rules
from guard.config import GuardConfig, default_user
from guard.constants import (
    DEFAULT_AUDIT_LOG,
    DEFAULT_QUARANTINE_DIR,
    EVENT_COMMAND_CHECKED,
    EVENT_FILE_ACCESS_CHECKED,
    EVENT_GUARD_INITIALIZED,
    EVENT_SECRETS_SCANNED,
    RESULT_OK,
    RESULT_SAFE,
    RESULT_UNSAFE,
)
from guard.errors import AuditWriteError, ConfigurationError
from guard.models.decision import AccessDecision, CommandDecision, ScanResult
from guard.policy.file_access import FileAccessPolicy
from guard.policy.matcher import PathLike
from guard.policy.matcher import matches_pattern as _matches_pattern
from guard.quarantine.store import QuarantineStore
from guard.scanner.definitions import build_registry
from guard.scanner.regex_engine import redact_text, scan_text
from guard.utils.logger import PerformanceLogger, get_logger, operation_context
from guard.utils.ulid import generate_ulid

logger = get_logger(__name__)

# Resource recorded for content scanned without a path.
IN_MEMORY_RESOURCE = "<memory>"


@dataclass(frozen=True)
class GuardStatus:
    """Snapshot returned by ``SecurityGuard.status()``."""

    project_root: str
    quarantine_dir: str
    audit_log: str
    user: str
    quarantined_count: int
    secret_patterns: int
    command_rules: int
    last_activity: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectRoot": self.project_root,
            "quarantineDir": self.quarantine_dir,
            "auditLog": self.audit_log,
            "user": self.user,
            "quarantinedCount": self.quarantined_count,
            "secretPatterns": self.secret_patterns,
            "commandRules": self.command_rules,
            "lastActivity": self.last_activity,
        }


class SecurityGuard:
    """Local security guard for one project.

    Raises ConfigurationError from ``__init__`` when a rule set is malformed or
    the quarantine directory or audit log cannot be written.
    """

    def __init__(
        self,
        project_root: PathLike,
        quarantine_dir: Optional[PathLike] = None,
        audit_log: Optional[PathLike] = None,
        *,
        user: Optional[str] = None,
        extra_secret_patterns: Optional[Iterable[dict]] = None,
        extra_blocked_paths: Iterable[str] = (),
        extra_confirm_paths: Iterable[str] = (),
        blocked_commands: Iterable[str] = (),
        confirm_commands: Iterable[str] = (),
        allowed_commands: Iterable[str] = (),
        audit_max_bytes: int = 0,
        audit_max_files: int = 0,
        home: Optional[PathLike] = None,
    ) -> None:
        self.policy = FileAccessPolicy(
            project_root,
            home=home,
            extra_blocked=extra_blocked_paths,
            extra_confirm=extra_confirm_paths,
        )
        self.project_root = self.policy.project_root
        self.registry = build_registry(extra_secret_patterns)
        self.command_rules = build_command_rules(
            blocked=blocked_commands,
            require_confirmation=confirm_commands,
            allowed=allowed_commands,
        )
        self.user = user or default_user()

        self.quarantine_store = QuarantineStore(
            self._under_root(quarantine_dir, DEFAULT_QUARANTINE_DIR)
        )
        self.audit = AuditLog(
            self._under_root(audit_log, DEFAULT_AUDIT_LOG),
            user=self.user,
            max_bytes=audit_max_bytes,
            max_files=audit_max_files,
        )

        try:
            self.audit.log(
                EVENT_GUARD_INITIALIZED,
                self.project_root,
                RESULT_OK,
                {
                    "secretPatterns": len(self.registry),
                    "commandRules": len(self.command_rules),
                    "quarantineDir": str(self.quarantine_store.directory),
                },
            )
        except AuditWriteError as exc:
            raise ConfigurationError(f"Audit log is not usable: {exc}") from exc

        logger.debug(
            "Guard initialized",
            project_root=self.project_root,
            secret_patterns=len(self.registry),
            command_rules=len(self.command_rules),
        )

    def _under_root(self, location: Optional[PathLike], default: str) -> Path:
        path = Path(os.path.expanduser(os.fspath(location))) if location is not None else Path(default)
        if not path.is_absolute():
            path = Path(self.project_root) / path
        return path

    @classmethod
    def from_config(cls, config: GuardConfig) -> "SecurityGuard":
        """Build a guard from a loaded ``GuardConfig``."""
        return cls(
            config.project_root,
            quarantine_dir=config.resolve(config.quarantine_dir),
            audit_log=config.resolve(config.audit_log),
            user=config.effective_user,
            extra_secret_patterns=config.secrets.extra_patterns,
            extra_blocked_paths=config.file_access.blocked_paths,
            extra_confirm_paths=config.file_access.require_confirmation,
            blocked_commands=config.command_execution.blocked_commands,
            confirm_commands=config.command_execution.require_confirmation,
            allowed_commands=config.command_execution.allowed_commands,
            audit_max_bytes=config.audit.max_bytes,
            audit_max_files=config.audit.max_files,
        )

    # ─── Operations ──────────────────────────────────────────────────────────

    def scan_for_secrets(
        self,
        content: Union[str, bytes],
        path: Optional[PathLike] = None,
    ) -> ScanResult:
        """Scan ``content`` for secrets, and ``path`` for sensitive file names.

        Sensitive file names are reported in ``path_findings`` and recorded in
        the audit entry; they do not make clean content unsafe.
        ``bytes`` are scanned as UTF-8; undecodable bytes never match a
        pattern on their own, and the original bytes are what is quarantined.
        An unsafe result has already been quarantined when this returns; its
        ``quarantine_id`` names the record.

        Raises:
            QuarantineWriteError: the unsafe content could not be quarantined.
            AuditWriteError: the audit entry could not be written.
        """
        resource = os.fspath(path) if path is not None else IN_MEMORY_RESOURCE
        text = content.decode("utf-8", errors="surrogateescape") if isinstance(content, bytes) else content

        with operation_context(generate_ulid()):
            with PerformanceLogger("scan_for_secrets", logger):
                result = scan_text(text, self.registry, resource if path is not None else None)
                if not result.safe:
                    record = self.quarantine_store.quarantine(content, resource, result.findings)
                    result = dataclasses.replace(result, quarantine_id=record.id)

                metadata: dict[str, Any] = {"findings": [f.to_dict() for f in result.findings]}
                if result.path_findings:
                    metadata["pathFindings"] = [f.to_dict() for f in result.path_findings]
                if result.quarantine_id:
                    metadata["quarantineId"] = result.quarantine_id
                self.audit.log(
                    EVENT_SECRETS_SCANNED,
                    resource,
                    RESULT_SAFE if result.safe else RESULT_UNSAFE,
                    metadata,
                )

        if not result.safe:
            logger.warning(
                "Secrets detected",
                resource=resource,
                types=[f.type for f in result.findings],
                quarantine_id=result.quarantine_id,
            )
        elif result.path_findings:
            logger.info(
                "Sensitive file name scanned",
                resource=resource,
                types=[f.type for f in result.path_findings],
            )
        return result

    def check_file_access(self, path: PathLike, operation: str = "read") -> AccessDecision:
        """Decide whether ``path`` may be accessed for ``operation``.

        Raises:
            ValueError: ``operation`` is not ``"read"`` or ``"write"``.
            AuditWriteError: the audit entry could not be written.
        """
        with operation_context(generate_ulid()):
            with PerformanceLogger("check_file_access", logger):
                decision = self.policy.check(path, operation)
                self.audit.log(
                    EVENT_FILE_ACCESS_CHECKED,
                    os.fspath(path),
                    decision.tier.value,
                    {
                        "operation": operation,
                        "rule": decision.rule,
                        "reason": decision.reason,
                        "canonicalPath": decision.path,
                    },
                )
        return decision

    def check_command(self, command: str) -> CommandDecision:
        """Decide whether ``command`` may be executed.

        Output redirection targets are decided by the file access policy.
        The command is recorded in the audit log with registry matches masked.

        Raises:
            AuditWriteError: the audit entry could not be written.
        """
        with operation_context(generate_ulid()):
            with PerformanceLogger("check_command", logger):
                decision = classify_command(command, self.command_rules, self.policy)
                self.audit.log(
                    EVENT_COMMAND_CHECKED,
                    redact_text(command, self.registry),
                    decision.tier.value,
                    {"rule": decision.rule, "reason": redact_text(decision.reason, self.registry)},
                )
        if not decision.allowed:
            logger.info("Command denied", rule=decision.rule)
        return decision

    def matches_pattern(self, path: str, pattern: str) -> bool:
        """Glob match with ``/`` and ``\\`` treated alike. Not audited."""
        return _matches_pattern(path, pattern)

    def status(self) -> GuardStatus:
        last = self.audit.last_entry()
        return GuardStatus(
            project_root=self.project_root,
            quarantine_dir=str(self.quarantine_store.directory),
            audit_log=str(self.audit.path),
            user=self.user,
            quarantined_count=self.quarantine_store.count(),
            secret_patterns=len(self.registry),
            command_rules=len(self.command_rules),
            last_activity=last.timestamp if last else None,
        )
