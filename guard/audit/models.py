"""AuditEntry dataclass and query filters for the audit log.

Every guard decision is recorded as one AuditEntry, serialised as a single
JSON line. Entries are never edited once written.

IMPORTANT: ``resource`` and ``metadata`` MUST NEVER contain raw secrets or
quarantined content. Findings are recorded with sanitised excerpts only and
command strings are redacted before they get here.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

# Keys every persisted entry must carry.
REQUIRED_FIELDS: tuple[str, ...] = ("timestamp", "event", "user", "resource", "result")


# ─── AuditEntry ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuditEntry:
    """One line of the audit trail."""

    timestamp: str
    """ISO 8601 UTC timestamp, non-decreasing in file order."""
    event: str
    """Event name, e.g. 'file_access_checked' (see guard.constants)."""
    user: str
    """OS user the guard runs as (or the configured user)."""
    resource: str
    """Path, command or other subject of the decision (redacted)."""
    result: str
    """'safe' / 'unsafe' for scans, 'allow' / 'confirm' / 'deny' for checks, 'ok' otherwise."""
    metadata: Optional[dict[str, Any]] = None
    """Decision details: findings, rule slug, reason, quarantine id."""
    pid: Optional[int] = None
    """Process id of the writer."""

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "timestamp": self.timestamp,
            "event": self.event,
            "user": self.user,
            "resource": self.resource,
            "result": self.result,
        }
        if self.metadata is not None:
            body["metadata"] = self.metadata
        if self.pid is not None:
            body["pid"] = self.pid
        return body

    def to_json_line(self) -> bytes:
        """ASCII JSON plus a trailing newline. Never contains a raw newline."""
        return (json.dumps(self.to_dict(), separators=(",", ":")) + "\n").encode("ascii")

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "AuditEntry":
        """Build an entry from a parsed line.

        Raises:
            ValueError: when a required field is missing or not a string.
        """
        if not isinstance(raw, dict):
            raise ValueError("audit line is not a JSON object")
        for key in REQUIRED_FIELDS:
            if not isinstance(raw.get(key), str):
                raise ValueError(f"audit line missing string field {key!r}")
        metadata = raw.get("metadata")
        pid = raw.get("pid")
        return cls(
            timestamp=raw["timestamp"],
            event=raw["event"],
            user=raw["user"],
            resource=raw["resource"],
            result=raw["result"],
            metadata=metadata if isinstance(metadata, dict) else None,
            pid=pid if isinstance(pid, int) else None,
        )

    @property
    def time(self) -> datetime:
        return datetime.fromisoformat(self.timestamp)


# ─── EntryFilters ─────────────────────────────────────────────────────────────


@dataclass
class EntryFilters:
    """Query filters for ``AuditLog.read_entries()``.

    All fields are optional. An empty EntryFilters() returns every entry.
    """

    event: Optional[str] = None
    """Filter by event name."""
    result: Optional[str] = None
    """Filter by result value."""
    user: Optional[str] = None
    """Filter to entries written by a specific user."""
    since: Optional[datetime] = None
    """Include entries with timestamp >= since (timezone-aware)."""
    limit: Optional[int] = None
    """Keep only the most recent ``limit`` matching entries."""

    def matches(self, entry: AuditEntry) -> bool:
        if self.event is not None and entry.event != self.event:
            return False
        if self.result is not None and entry.result != self.result:
            return False
        if self.user is not None and entry.user != self.user:
            return False
        if self.since is not None:
            try:
                if entry.time < self.since:
                    return False
            except (ValueError, TypeError):
                return False
        return True
