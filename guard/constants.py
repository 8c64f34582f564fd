"""Shared constants for context-guard.

Default locations, audit event names, file suffixes and CLI exit codes.
No magic strings in other modules: import from here.
"""

# ─── Default locations (relative to the project root) ────────────────────────

DEFAULT_GUARD_DIR: str = ".guard"
DEFAULT_QUARANTINE_DIR: str = ".guard/quarantine"
DEFAULT_AUDIT_LOG: str = ".guard/logs/security-audit.log"

# ─── Audit event names ───────────────────────────────────────────────────────

EVENT_GUARD_INITIALIZED: str = "guard_initialized"
EVENT_SECRETS_SCANNED: str = "secrets_scanned"
EVENT_FILE_ACCESS_CHECKED: str = "file_access_checked"
EVENT_COMMAND_CHECKED: str = "command_checked"

# ─── Audit result values ─────────────────────────────────────────────────────

RESULT_SAFE: str = "safe"
RESULT_UNSAFE: str = "unsafe"
RESULT_ALLOW: str = "allow"
RESULT_CONFIRM: str = "confirm"
RESULT_DENY: str = "deny"
RESULT_OK: str = "ok"

# ─── Quarantine ──────────────────────────────────────────────────────────────

QUARANTINE_SUFFIX: str = ".quarantine"

# Number of sha256 hex chars appended to the ULID in a quarantine record id.
QUARANTINE_HASH_CHARS: int = 8

# ─── Audit rotation ──────────────────────────────────────────────────────────

# 0 disables rotation.
DEFAULT_AUDIT_MAX_BYTES: int = 0
# 0 keeps every rotated file.
DEFAULT_AUDIT_MAX_FILES: int = 0

# ─── Secret sanitisation ─────────────────────────────────────────────────────

# Matches at or below this length are fully masked in findings.
SANITIZE_FULL_MASK_LEN: int = 8
SANITIZE_KEEP_CHARS: int = 3

# ─── Operational logging ──────────────────────────────────────────────────────

# Guard operations slower than this are logged at WARNING.
SLOW_OPERATION_MS: float = 50.0

# ─── CLI exit codes ──────────────────────────────────────────────────────────

EXIT_OK: int = 0
EXIT_DENIED: int = 1
EXIT_CONFIRM: int = 2
EXIT_CONFIG_ERROR: int = 3
EXIT_IO_ERROR: int = 4
