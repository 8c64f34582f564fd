"""context-guard: local security guard for file access, shell commands and content.

    from guard import SecurityGuard

    guard = SecurityGuard("/path/to/project")
    guard.check_file_access("src/app.py")
    guard.check_command("git push --force")
    guard.scan_for_secrets(text, "notes.md")
"""

from guard.guard import GuardStatus, SecurityGuard

__version__ = "1.0.0"

__all__ = ["GuardStatus", "SecurityGuard", "__version__"]
