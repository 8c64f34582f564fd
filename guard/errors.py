"""Exception hierarchy for context-guard.

Only failures that must stop the caller are exceptions. Policy outcomes
(deny, confirmation required, unresolvable path, unparseable command) are
decisions, not errors, and are returned as values.
"""

from __future__ import annotations


class GuardError(Exception):
    """Base class for all guard failures."""


class ConfigurationError(GuardError):
    """The guard cannot run safely with the supplied configuration.

    Raised at construction time for a malformed rule set, an invalid config
    file, or a quarantine/audit location that cannot be created or written.
    The guard refuses to initialise rather than run without its safety net.
    """


class AuditWriteError(GuardError):
    """An audit entry could not be durably appended.

    The operation that produced the decision must not report success, so this
    propagates out of ``scan_for_secrets``, ``check_file_access`` and
    ``check_command``.
    """


class QuarantineWriteError(GuardError):
    """A quarantine record could not be written atomically."""
