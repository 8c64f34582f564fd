"""context-guard models package.

Defines the shared data contracts returned by the guard's operations:

  - decision.py: Severity, Tier, Finding, ScanResult, AccessDecision, CommandDecision

These models are the single source of truth for what callers receive and for
what is written to the audit log and quarantine store.
"""

from guard.models.decision import (
    AccessDecision,
    CommandDecision,
    Finding,
    ScanResult,
    Severity,
    Tier,
)

__all__ = [
    "AccessDecision",
    "CommandDecision",
    "Finding",
    "ScanResult",
    "Severity",
    "Tier",
]
