"""Decision and finding contracts shared by every guard component.

  - ``Severity``:      secret pattern severity (low / medium / high)
  - ``Tier``:          access/command tier (allow / confirm / deny)
  - ``Finding``:       one detected secret occurrence
  - ``ScanResult``:    outcome of a secret scan
  - ``AccessDecision`` / ``CommandDecision``: permission outcomes

All types are frozen dataclasses: a decision handed to a caller cannot be
edited on its way to the audit log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    """Severity of a secret pattern match."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Tier(str, Enum):
    """Permission tier. Ordered from least to most restrictive."""

    ALLOW = "allow"
    CONFIRM = "confirm"
    DENY = "deny"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    @classmethod
    def most_restrictive(cls, tiers: "list[Tier]") -> "Tier":
        """deny > confirm > allow. An empty list is ALLOW."""
        if not tiers:
            return cls.ALLOW
        return max(tiers, key=lambda t: t.rank)


_TIER_RANK = {Tier.ALLOW: 0, Tier.CONFIRM: 1, Tier.DENY: 2}


# ─── Findings / scan results ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Finding:
    """One detected occurrence of a secret pattern.

    Fields:
        type:     Pattern name (e.g. ``"aws-access-key-id"``).
        severity: Severity of the pattern.
        offset:   Character offset of the match in the scanned text.
        line:     1-based line number of the match (0 when unknown).
        match:    Sanitised excerpt of the match. NEVER the raw secret.
    """

    type: str
    severity: Severity
    offset: int
    line: int = 0
    match: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "offset": self.offset,
            "line": self.line,
            "match": self.match,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Finding":
        return cls(
            type=raw["type"],
            severity=Severity(raw["severity"]),
            offset=int(raw.get("offset", 0)),
            line=int(raw.get("line", 0)),
            match=raw.get("match", ""),
        )


@dataclass(frozen=True)
class ScanResult:
    """Outcome of ``scan_for_secrets``.

    INVARIANT: ``safe == (len(findings) == 0)``.

    ``path_findings`` lists file-name patterns that matched the resource path.
    They are reported but never make a result unsafe on their own.

    ``quarantine_id`` is set by the guard when an unsafe result has been
    captured in the quarantine store.
    """

    safe: bool
    findings: tuple[Finding, ...] = field(default_factory=tuple)
    path_findings: tuple[Finding, ...] = field(default_factory=tuple)
    quarantine_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.safe != (len(self.findings) == 0):
            raise ValueError(
                f"ScanResult.safe={self.safe} disagrees with {len(self.findings)} finding(s)"
            )

    @classmethod
    def from_findings(
        cls, findings: "list[Finding]", path_findings: "list[Finding] | None" = None
    ) -> "ScanResult":
        return cls(
            safe=not findings,
            findings=tuple(findings),
            path_findings=tuple(path_findings or ()),
        )


# ─── Permission decisions ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class _Decision:
    allowed: bool
    require_confirmation: bool
    reason: str
    tier: Tier
    rule: Optional[str] = None

    def __post_init__(self) -> None:
        # A flatly denied resource never needs confirmation.
        if self.require_confirmation and not self.allowed:
            raise ValueError("require_confirmation implies allowed")
        expected = (
            Tier.DENY if not self.allowed
            else Tier.CONFIRM if self.require_confirmation
            else Tier.ALLOW
        )
        if self.tier is not expected:
            raise ValueError(f"tier {self.tier.value!r} does not match flags ({expected.value!r})")

    @classmethod
    def allow(cls, reason: str, rule: Optional[str] = None, **extra: Any):
        return cls(allowed=True, require_confirmation=False, reason=reason, tier=Tier.ALLOW, rule=rule, **extra)

    @classmethod
    def confirm(cls, reason: str, rule: Optional[str] = None, **extra: Any):
        return cls(allowed=True, require_confirmation=True, reason=reason, tier=Tier.CONFIRM, rule=rule, **extra)

    @classmethod
    def deny(cls, reason: str, rule: Optional[str] = None, **extra: Any):
        return cls(allowed=False, require_confirmation=False, reason=reason, tier=Tier.DENY, rule=rule, **extra)

    @classmethod
    def for_tier(cls, tier: Tier, reason: str, rule: Optional[str] = None, **extra: Any):
        return {Tier.ALLOW: cls.allow, Tier.CONFIRM: cls.confirm, Tier.DENY: cls.deny}[tier](reason, rule, **extra)

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "requireConfirmation": self.require_confirmation,
            "reason": self.reason,
            "tier": self.tier.value,
            "rule": self.rule,
        }


@dataclass(frozen=True)
class AccessDecision(_Decision):
    """Outcome of ``check_file_access``. ``path`` is the canonical path checked."""

    path: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["path"] = self.path
        return body


@dataclass(frozen=True)
class CommandDecision(_Decision):
    """Outcome of ``check_command``."""
