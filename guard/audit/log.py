"""Append-only JSON-lines audit log.

Write path, per entry:
  1. open the live file with O_APPEND and take an exclusive ``fcntl.flock``
     (POSIX; Windows relies on O_APPEND alone),
  2. re-open if the file was rotated away while waiting for the lock,
  3. tail-read the last entry's timestamp and stamp the new entry with
     ``max(now, last)`` so timestamps never decrease in file order,
  4. one ``os.write`` of the whole line, then ``fsync`` before returning,
  5. rotate when the live file exceeds ``max_bytes``.

Entries are never rewritten. Rotation renames the live file to
``<stem>.<UTC timestamp><suffix>`` and prunes the oldest rotated files beyond
``max_files`` (0 keeps all of them).
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from guard.audit.models import AuditEntry, EntryFilters
from guard.errors import AuditWriteError, ConfigurationError
from guard.utils.logger import get_logger

if os.name == "posix":
    import fcntl

logger = get_logger(__name__)

_OPEN_FLAGS = os.O_RDWR | os.O_APPEND | os.O_CREAT | getattr(os, "O_BINARY", 0)
_TAIL_BLOCK = 8192
# Attempts at locking the live file while it is being rotated underneath us.
_REOPEN_ATTEMPTS = 10


class AuditLog:
    """Durable audit trail shared by every guard on the same path.

    Safe for concurrent writers in several processes; each append is atomic
    with respect to other appends.
    """

    def __init__(
        self,
        path: Union[str, Path],
        user: str,
        max_bytes: int = 0,
        max_files: int = 0,
    ) -> None:
        self.path = Path(path)
        self.user = user
        self.max_bytes = max_bytes
        self.max_files = max_files
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            os.close(os.open(self.path, _OPEN_FLAGS, 0o600))
        except OSError as exc:
            raise ConfigurationError(f"Audit log {self.path} is not writable: {exc}") from exc

    # ─── Write side ──────────────────────────────────────────────────────────

    def log(
        self,
        event: str,
        resource: str,
        result: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        """Append one entry and return it once it is on disk.

        Raises:
            AuditWriteError: the entry could not be durably appended.
        """
        try:
            fd = self._open_locked()
            try:
                now = datetime.now(timezone.utc)
                last = self._last_timestamp(fd)
                if last is not None and last > now:
                    now = last
                entry = AuditEntry(
                    timestamp=now.isoformat(),
                    event=event,
                    user=self.user,
                    resource=resource,
                    result=result,
                    metadata=metadata,
                    pid=os.getpid(),
                )
                data = entry.to_json_line()
                written = os.write(fd, data)
                if written != len(data):
                    raise OSError(f"short write ({written} of {len(data)} bytes)")
                os.fsync(fd)
                if self.max_bytes and os.fstat(fd).st_size > self.max_bytes:
                    try:
                        self._rotate()
                    except OSError as exc:
                        # The entry is already durable; retry on the next append
                        logger.warning("Audit log rotation failed", error=str(exc))
            finally:
                self._unlock_close(fd)
        except OSError as exc:
            logger.error("Audit append failed", event=event, error=str(exc))
            raise AuditWriteError(f"Failed to append to audit log {self.path}: {exc}") from exc
        return entry

    def _open_locked(self) -> int:
        for _ in range(_REOPEN_ATTEMPTS):
            fd = os.open(self.path, _OPEN_FLAGS, 0o600)
            if os.name != "posix":
                return fd
            fcntl.flock(fd, fcntl.LOCK_EX)
            try:
                current = os.stat(self.path)
            except FileNotFoundError:
                self._unlock_close(fd)
                continue
            opened = os.fstat(fd)
            if (opened.st_dev, opened.st_ino) == (current.st_dev, current.st_ino):
                return fd
            # Rotated while we waited for the lock
            self._unlock_close(fd)
        raise OSError("audit log kept changing underneath the lock")

    @staticmethod
    def _unlock_close(fd: int) -> None:
        try:
            if os.name == "posix":
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def _last_timestamp(self, fd: int) -> Optional[datetime]:
        line = _read_last_line(fd)
        if line is None:
            return None
        try:
            return datetime.fromisoformat(json.loads(line)["timestamp"])
        except (ValueError, KeyError, TypeError):
            return None

    def _rotate(self) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        target = self.path.with_name(f"{self.path.stem}.{stamp}{self.path.suffix}")
        n = 1
        while target.exists():
            target = self.path.with_name(f"{self.path.stem}.{stamp}-{n}{self.path.suffix}")
            n += 1
        os.replace(self.path, target)
        logger.info("Audit log rotated", rotated_to=str(target))

        if self.max_files:
            for old in self.rotated_files()[:-self.max_files]:
                old.unlink()
                logger.info("Rotated audit log removed", path=str(old))

    # ─── Read side ───────────────────────────────────────────────────────────

    def rotated_files(self) -> list[Path]:
        """Rotated files, oldest first."""
        return sorted(self.path.parent.glob(f"{self.path.stem}.*{self.path.suffix}"))

    def read_entries(
        self,
        filters: Optional[EntryFilters] = None,
        include_rotated: bool = False,
    ) -> list[AuditEntry]:
        """Entries in file order, oldest first.

        Malformed lines are skipped with a warning; they never stop the read.
        """
        filters = filters or EntryFilters()
        files = self.rotated_files() if include_rotated else []
        files.append(self.path)

        entries: list[AuditEntry] = []
        for path in files:
            try:
                with open(path, "rb") as f:
                    for lineno, raw in enumerate(f, start=1):
                        if not raw.strip():
                            continue
                        try:
                            entry = AuditEntry.from_dict(json.loads(raw))
                        except ValueError as exc:
                            logger.warning(
                                "Skipping malformed audit line",
                                path=str(path),
                                line=lineno,
                                error=str(exc),
                            )
                            continue
                        if filters.matches(entry):
                            entries.append(entry)
            except FileNotFoundError:
                continue

        if filters.limit is not None:
            entries = entries[-filters.limit:] if filters.limit > 0 else []
        return entries

    def last_entry(self) -> Optional[AuditEntry]:
        """Most recent entry in the live file, or None."""
        try:
            fd = os.open(self.path, os.O_RDONLY | getattr(os, "O_BINARY", 0))
        except FileNotFoundError:
            return None
        try:
            line = _read_last_line(fd)
        finally:
            os.close(fd)
        if line is None:
            return None
        try:
            return AuditEntry.from_dict(json.loads(line))
        except ValueError:
            return None


def _read_last_line(fd: int) -> Optional[bytes]:
    """Last non-empty line of the file behind ``fd``, read from the end."""
    end = os.lseek(fd, 0, os.SEEK_END)
    buf = b""
    pos = end
    while pos > 0:
        step = min(_TAIL_BLOCK, pos)
        pos -= step
        os.lseek(fd, pos, os.SEEK_SET)
        buf = os.read(fd, step) + buf
        stripped = buf.rstrip(b"\r\n")
        if b"\n" in stripped:
            return stripped.rsplit(b"\n", 1)[1] or None
    stripped = buf.strip()
    return stripped.splitlines()[-1] if stripped else None
