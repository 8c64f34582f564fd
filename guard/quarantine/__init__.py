"""Quarantine store package."""
from guard.quarantine.store import QuarantineRecord, QuarantineStore

__all__ = ["QuarantineRecord", "QuarantineStore"]
