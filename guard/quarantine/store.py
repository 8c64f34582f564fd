"""Quarantine store: durable capture of content that failed a secret scan.

One JSON file per unsafe scan event, named ``<id>.quarantine`` inside the
quarantine directory:

    {"id": ..., "originalPath": ..., "timestamp": ..., "findings": [...],
     "contentHash": "<sha256 hex>", "content": "<base64>"}

Record ids are a ULID (time-ordered) followed by the first 8 hex chars of the
content sha256. Publishing uses ``os.link`` from a fsync'd temp file in the
same directory, which fails instead of overwriting when the name exists, so a
record is never replaced and a reader never sees a partial file.

The original resource is never touched.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from guard.constants import QUARANTINE_HASH_CHARS, QUARANTINE_SUFFIX
from guard.errors import ConfigurationError, QuarantineWriteError
from guard.models.decision import Finding
from guard.utils.logger import get_logger
from guard.utils.ulid import generate_ulid

logger = get_logger(__name__)

# Attempts at publishing under a fresh id before giving up.
_PUBLISH_ATTEMPTS = 5


# ─── QuarantineRecord ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class QuarantineRecord:
    """A persisted capture of unsafe content.

    ``content`` holds base64 of the original bytes; ``decode_content()``
    returns them exactly.
    """

    id: str
    original_path: str
    timestamp: str
    findings: tuple[Finding, ...] = field(default_factory=tuple)
    content: str = ""
    content_hash: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "originalPath": self.original_path,
            "timestamp": self.timestamp,
            "findings": [f.to_dict() for f in self.findings],
            "contentHash": self.content_hash,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "QuarantineRecord":
        return cls(
            id=raw["id"],
            original_path=raw["originalPath"],
            timestamp=raw["timestamp"],
            findings=tuple(Finding.from_dict(f) for f in raw.get("findings", [])),
            content=raw["content"],
            content_hash=raw.get("contentHash", ""),
        )

    def decode_content(self) -> bytes:
        return base64.b64decode(self.content.encode("ascii"))


def encode_content(content: Union[str, bytes]) -> bytes:
    """Bytes of ``content``; text is UTF-8.

    Text decoded with ``surrogateescape`` gets its original bytes back; any
    other lone surrogate is kept with ``surrogatepass``.
    """
    if isinstance(content, bytes):
        return content
    try:
        return content.encode("utf-8", errors="surrogateescape")
    except UnicodeEncodeError:
        return content.encode("utf-8", errors="surrogatepass")


# ─── QuarantineStore ──────────────────────────────────────────────────────────


class QuarantineStore:
    """File-per-record quarantine directory.

    Safe for concurrent writers in several processes: ids never collide and
    publishing never overwrites.
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            # Writability check; the guard refuses to start without a working store
            fd, scratch = tempfile.mkstemp(dir=self.directory, prefix=".writable_")
            os.close(fd)
            os.unlink(scratch)
        except OSError as exc:
            raise ConfigurationError(
                f"Quarantine directory {self.directory} is not writable: {exc}"
            ) from exc

    def _record_path(self, record_id: str) -> Path:
        return self.directory / f"{record_id}{QUARANTINE_SUFFIX}"

    def quarantine(
        self,
        content: Union[str, bytes],
        original_path: str,
        findings: Iterable[Finding],
    ) -> QuarantineRecord:
        """Persist ``content`` atomically and return the new record.

        Raises:
            QuarantineWriteError: the record could not be written.
        """
        raw = encode_content(content)
        digest = hashlib.sha256(raw).hexdigest()
        findings = tuple(findings)
        timestamp = datetime.now(timezone.utc).isoformat()
        encoded = base64.b64encode(raw).decode("ascii")

        tmp: Optional[str] = None
        try:
            for _ in range(_PUBLISH_ATTEMPTS):
                record = QuarantineRecord(
                    id=f"{generate_ulid()}-{digest[:QUARANTINE_HASH_CHARS]}",
                    original_path=str(original_path),
                    timestamp=timestamp,
                    findings=findings,
                    content=encoded,
                    content_hash=digest,
                )
                fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp_")
                with os.fdopen(fd, "wb") as f:
                    f.write(json.dumps(record.to_dict(), indent=2).encode("utf-8"))
                    f.flush()
                    os.fsync(f.fileno())
                try:
                    os.link(tmp, self._record_path(record.id))
                except FileExistsError:
                    logger.warning("Quarantine id collision, retrying", record_id=record.id)
                    os.unlink(tmp)
                    tmp = None
                    continue
                os.unlink(tmp)
                tmp = None
                self._fsync_directory()
                logger.info(
                    "Content quarantined",
                    record_id=record.id,
                    finding_count=len(findings),
                )
                return record
        except OSError as exc:
            raise QuarantineWriteError(
                f"Failed to write quarantine record in {self.directory}: {exc}"
            ) from exc
        finally:
            if tmp is not None:
                try:
                    os.unlink(tmp)
                except OSError:
                    pass

        raise QuarantineWriteError(
            f"Could not allocate a unique quarantine id after {_PUBLISH_ATTEMPTS} attempts"
        )

    def _fsync_directory(self) -> None:
        # Directory fds cannot be opened on Windows
        if os.name != "posix":
            return
        fd = os.open(self.directory, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    # ─── Read side ───────────────────────────────────────────────────────────

    def load(self, record_id: str) -> QuarantineRecord:
        """Load one record by id. Raises FileNotFoundError if absent."""
        with open(self._record_path(record_id), "r", encoding="utf-8") as f:
            return QuarantineRecord.from_dict(json.load(f))

    def list_records(self) -> list[QuarantineRecord]:
        """All readable records, oldest first (ULID order).

        Unreadable or malformed files are skipped with a warning.
        """
        records: list[QuarantineRecord] = []
        for path in sorted(self.directory.glob(f"*{QUARANTINE_SUFFIX}")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    records.append(QuarantineRecord.from_dict(json.load(f)))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning(
                    "Skipping unreadable quarantine record",
                    path=str(path),
                    error=str(exc),
                )
        return records

    def count(self) -> int:
        return sum(1 for _ in self.directory.glob(f"*{QUARANTINE_SUFFIX}"))
