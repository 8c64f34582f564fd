"""Audit log package.

Layout:
    models.py: AuditEntry + EntryFilters
    log.py:    AuditLog (append-only JSON lines, flock + fsync per entry)
"""
from guard.audit.log import AuditLog
from guard.audit.models import AuditEntry, EntryFilters

__all__ = ["AuditEntry", "AuditLog", "EntryFilters"]
