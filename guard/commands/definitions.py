"""Command risk rules for the command classifier.

Rules are declarative ``CommandRule`` descriptors, pre-compiled with google-re2
at module load. Two scopes:

  - ``command``: matched against the raw command string before splitting.
    Used for shapes that span segments (fetch piped into a shell, fork bombs).
  - ``segment``: matched against one normalised segment of a compound command
    (leading ``NAME=value`` assignments dropped, command token reduced to its
    basename, tokens joined by single spaces).

A rule matches when ALL of its patterns match. Within a tier the first
matching rule names the decision; across tiers deny > confirm > allow.

IMPORT RULES:
  - ``import re2`` ONLY: ``import re`` is PROHIBITED in this file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

import re2

from guard.errors import ConfigurationError
from guard.models.decision import Tier

SCOPE_COMMAND = "command"
SCOPE_SEGMENT = "segment"


# ---------------------------------------------------------------------------
# CommandRule dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CommandRule:
    """A single command risk rule.

    Fields:
        slug:     Rule identifier reported in decisions and audit metadata.
        tier:     Tier applied when the rule matches.
        scope:    ``"command"`` (raw string) or ``"segment"`` (one segment).
        patterns: Pre-compiled re2 patterns; all must match.
        reason:   Human-readable reason.
    """
    slug: str
    tier: Tier
    scope: str
    patterns: tuple[Any, ...]
    reason: str

    def matches(self, text: str) -> bool:
        return all(p.search(text) is not None for p in self.patterns)


def _rule(slug: str, tier: Tier, scope: str, reason: str, *patterns: str) -> CommandRule:
    return CommandRule(
        slug=slug,
        tier=tier,
        scope=scope,
        patterns=tuple(re2.compile(p) for p in patterns),
        reason=reason,
    )


# Optional ``sudo [-flags]`` prefix on a normalised segment.
_SUDO = r"^(?:sudo\s+(?:-\S+\s+)*)?"

# Flag clusters on a normalised segment.
_RECURSIVE = r"\s(?:-[a-zA-Z]*[rR][a-zA-Z]*|--recursive)(?:\s|$)"
_FORCE = r"\s(?:-[a-zA-Z]*f[a-zA-Z]*|--force)(?:\s|$)"

# /  /*  /usr  ~  ~/  ~/*  $HOME  ${HOME}  $HOME/*
_ROOT_TARGET = (
    r"\s(?:/\*?|/[^/\s]+/?|~/?\*?|\$\{?HOME\}?/?\*?)(?:\s|$)"
)

_FETCHERS = r"(?:curl|wget|fetch)"
_CODE_INTERPRETERS = r"(?:python[0-9.]*|pypy[0-9.]*|node|nodejs|bun|deno|perl|ruby|php|lua|osascript)"
_INTERPRETERS = r"(?:sh|bash|zsh|dash|ksh|fish|python[0-9.]*|perl|ruby|node|php)"


# ===========================================================================
# DENY: never allowed, never confirmable
# ===========================================================================

DENY_RULES: tuple[CommandRule, ...] = (
    _rule(
        "pipe-to-shell", Tier.DENY, SCOPE_COMMAND,
        "Piping downloaded content into an interpreter is blocked",
        r"\b" + _FETCHERS + r"\b[^|;&\n]*\|\s*(?:sudo\s+(?:-\S+\s+)*)?(?:\S*/)?" + _INTERPRETERS + r"\b",
    ),
    _rule(
        "fetch-exec-substitution", Tier.DENY, SCOPE_COMMAND,
        "Executing downloaded content through substitution is blocked",
        r"\b" + _INTERPRETERS + r"\b[^;&\n]*(?:<\(|\$\(|`)\s*" + _FETCHERS + r"\b",
    ),
    _rule(
        "fork-bomb", Tier.DENY, SCOPE_COMMAND,
        "Fork bomb detected",
        r"(?:\S+\s*\(\)\s*\{[^}]*\|[^}]*&[^}]*\}|\$0\s*\|\s*\$0\s*&)",
    ),
    _rule(
        "raw-disk-redirect", Tier.DENY, SCOPE_COMMAND,
        "Writing directly to a disk device is blocked",
        r">\s*/dev/(?:sd[a-z]|hd[a-z]|vd[a-z]|xvd[a-z]|nvme\d|disk\d|mmcblk\d)",
    ),
    _rule(
        "rm-no-preserve-root", Tier.DENY, SCOPE_SEGMENT,
        "Recursive deletion with --no-preserve-root is blocked",
        _SUDO + r"rm\s", r"\s--no-preserve-root(?:\s|$)",
    ),
    _rule(
        "rm-rf-root", Tier.DENY, SCOPE_SEGMENT,
        "Recursive forced deletion of a root-level or home target is blocked",
        _SUDO + r"rm\s", _RECURSIVE, _FORCE, _ROOT_TARGET,
    ),
    _rule(
        "mkfs", Tier.DENY, SCOPE_SEGMENT,
        "Creating a filesystem is blocked",
        _SUDO + r"mkfs(?:\.\w+)?(?:\s|$)",
    ),
    _rule(
        "dd-device-write", Tier.DENY, SCOPE_SEGMENT,
        "dd writing to a device is blocked",
        _SUDO + r"dd\s", r"\sof=/dev/",
    ),
    _rule(
        "chmod-777-root", Tier.DENY, SCOPE_SEGMENT,
        "Recursive world-writable permissions on a root-level target are blocked",
        _SUDO + r"chmod\s", _RECURSIVE, r"\s0?777(?:\s|$)", _ROOT_TARGET,
    ),
)


# ===========================================================================
# CONFIRM: allowed only after explicit confirmation
# ===========================================================================

CONFIRM_RULES: tuple[CommandRule, ...] = (
    _rule(
        "git-force-push", Tier.CONFIRM, SCOPE_SEGMENT,
        "Force push rewrites remote history",
        _SUDO + r"git\s+(?:.*\s)?push(?:\s|$)",
        r"\s(?:--force(?:-with-lease)?(?:=\S*)?|-[a-zA-Z]*f[a-zA-Z]*|\+\S+)(?:\s|$)",
    ),
    _rule(
        "git-hard-reset", Tier.CONFIRM, SCOPE_SEGMENT,
        "git reset --hard discards uncommitted changes",
        _SUDO + r"git\s+(?:.*\s)?reset(?:\s|$)", r"\s--hard(?:\s|$)",
    ),
    _rule(
        "git-clean-force", Tier.CONFIRM, SCOPE_SEGMENT,
        "git clean -f deletes untracked files",
        _SUDO + r"git\s+(?:.*\s)?clean(?:\s|$)", r"\s(?:-[a-zA-Z]*f[a-zA-Z]*|--force)(?:\s|$)",
    ),
    _rule(
        "git-history-rewrite", Tier.CONFIRM, SCOPE_SEGMENT,
        "Command rewrites git history",
        _SUDO + r"git\s+(?:rebase|filter-branch|filter-repo)(?:\s|$)",
    ),
    _rule(
        "git-commit-amend", Tier.CONFIRM, SCOPE_SEGMENT,
        "git commit --amend rewrites the last commit",
        _SUDO + r"git\s+commit(?:\s|$)", r"\s--amend(?:\s|$)",
    ),
    _rule(
        "git-branch-force-delete", Tier.CONFIRM, SCOPE_SEGMENT,
        "Force-deleting a branch may lose unmerged commits",
        _SUDO + r"git\s+branch(?:\s|$)", r"\s(?:-[a-zA-Z]*D[a-zA-Z]*|--delete\s+--force|--force\s+--delete)(?:\s|$)",
    ),
    _rule(
        "git-checkout-discard", Tier.CONFIRM, SCOPE_SEGMENT,
        "Command discards working tree changes",
        _SUDO + r"git\s+(?:checkout|restore)\s+(?:.*\s)?(?:--|\.)(?:\s|$)",
    ),
    _rule(
        "git-stash-drop", Tier.CONFIRM, SCOPE_SEGMENT,
        "Dropping stashes loses saved changes",
        _SUDO + r"git\s+stash\s+(?:drop|clear)(?:\s|$)",
    ),
    _rule(
        "force-remove", Tier.CONFIRM, SCOPE_SEGMENT,
        "Recursive or forced deletion requires confirmation",
        _SUDO + r"rm\s", r"\s(?:-[a-zA-Z]*[rRf][a-zA-Z]*|--recursive|--force)(?:\s|$)",
    ),
    _rule(
        "find-delete", Tier.CONFIRM, SCOPE_SEGMENT,
        "find with -delete or -exec rm deletes files",
        _SUDO + r"find\s", r"\s(?:-delete|-exec\s+(?:\S*/)?rm)(?:\s|$)",
    ),
    _rule(
        "chmod-recursive", Tier.CONFIRM, SCOPE_SEGMENT,
        "Recursive permission changes require confirmation",
        _SUDO + r"(?:chmod|chown|chgrp)\s", _RECURSIVE,
    ),
    _rule(
        "package-publish", Tier.CONFIRM, SCOPE_SEGMENT,
        "Publishing a package is irreversible",
        _SUDO + r"(?:npm|yarn|pnpm|cargo|gem|twine|poetry)\s+(?:.*\s)?(?:publish|upload|push)(?:\s|$)",
    ),
    _rule(
        "docker-prune", Tier.CONFIRM, SCOPE_SEGMENT,
        "Docker prune removes containers, images or volumes",
        _SUDO + r"docker\s+(?:\S+\s+)?prune(?:\s|$)",
    ),
    _rule(
        "inline-code", Tier.CONFIRM, SCOPE_SEGMENT,
        "Inline interpreter code requires confirmation",
        _SUDO + _CODE_INTERPRETERS + r"(?:\s+-\S+)*\s+(?:-[a-zA-Z]*[cer]|--eval|--print|-p|eval|-)(?:[\s=]|$)",
    ),
    _rule(
        "sudo", Tier.CONFIRM, SCOPE_SEGMENT,
        "Elevated privileges require confirmation",
        r"^sudo(?:\s|$)",
    ),
)


# ===========================================================================
# ALLOW: recognised safe commands
# ===========================================================================

_GIT_SAFE = (
    "status", "log", "diff", "show", "branch", "fetch", "pull", "add", "commit",
    "push", "checkout", "switch", "restore", "stash", "merge", "tag", "remote",
    "blame", "rev-parse", "ls-files", "describe", "config", "init", "clone",
    "grep", "shortlog", "reflog", "worktree", "cherry-pick", "mv", "rm",
)

_PACKAGE_MANAGERS = r"(?:npm|npx|yarn|pnpm|pip[0-9.]*|pipx|poetry|uv|cargo|go|gem|bundle|composer|mvn|gradle|dotnet)"
_PACKAGE_ACTIONS = (
    "install", "i", "ci", "add", "list", "ls", "test", "build", "run", "exec",
    "show", "info", "outdated", "audit", "sync", "lock", "check", "fmt", "vet",
    "freeze", "mod", "update", "upgrade", "view", "why",
)

_BUILD_RUNNERS = (
    "make", "cmake", "ninja", "pytest", "tox", "nox", "jest", "vitest", "mocha",
    "tsc", "eslint", "prettier", "ruff", "black", "mypy", "flake8", "node",
    "python", "python3", "bun", "deno", "rustc", "javac", "gcc", "clang",
)

_READ_ONLY = (
    "ls", "cat", "head", "tail", "less", "more", "grep", "rg", "wc", "sort",
    "uniq", "cut", "tr", "diff", "echo", "printf", "pwd", "which", "whoami",
    "date", "file", "stat", "du", "df", "tree", "basename", "dirname",
    "realpath", "true", "false", "test", "cd",
)


def _words(names: Iterable[str]) -> str:
    return "(?:" + "|".join(re2.escape(n) for n in names) + ")"


ALLOW_RULES: tuple[CommandRule, ...] = (
    _rule(
        "git-safe", Tier.ALLOW, SCOPE_SEGMENT,
        "Recognised git command",
        r"^git\s+(?:-C\s+\S+\s+)?" + _words(_GIT_SAFE) + r"(?:\s|$)",
    ),
    _rule(
        "package-manager", Tier.ALLOW, SCOPE_SEGMENT,
        "Recognised package manager command",
        r"^" + _PACKAGE_MANAGERS + r"\s+" + _words(_PACKAGE_ACTIONS) + r"(?:\s|$)",
    ),
    _rule(
        "build-runner", Tier.ALLOW, SCOPE_SEGMENT,
        "Recognised build or test runner",
        r"^" + _words(_BUILD_RUNNERS) + r"(?:\s|$)",
    ),
    _rule(
        "read-only-utility", Tier.ALLOW, SCOPE_SEGMENT,
        "Recognised read-only shell utility",
        r"^" + _words(_READ_ONLY) + r"(?:\s|$)",
    ),
)


#: Full built-in rule set, evaluated deny → confirm → allow.
COMMAND_RULES: tuple[CommandRule, ...] = DENY_RULES + CONFIRM_RULES + ALLOW_RULES


# ---------------------------------------------------------------------------
# Configured rules
# ---------------------------------------------------------------------------

def build_command_rules(
    blocked: Iterable[str] = (),
    require_confirmation: Iterable[str] = (),
    allowed: Iterable[str] = (),
    base: tuple[CommandRule, ...] = COMMAND_RULES,
) -> tuple[CommandRule, ...]:
    """Extend ``base`` with configured rules.

    ``blocked`` and ``require_confirmation`` entries are literal substrings of
    the raw command (deny and confirm respectively). ``allowed`` entries are
    command names; a segment whose command is one of them is allowed unless a
    stricter rule matches.

    Raises:
        ConfigurationError: On an entry that is not a non-empty string.
    """
    extra: list[CommandRule] = []
    for tier, scope, label, entries in (
        (Tier.DENY, SCOPE_COMMAND, "blocked", blocked),
        (Tier.CONFIRM, SCOPE_COMMAND, "confirm", require_confirmation),
        (Tier.ALLOW, SCOPE_SEGMENT, "allowed", allowed),
    ):
        for i, entry in enumerate(entries):
            if not isinstance(entry, str) or not entry.strip():
                raise ConfigurationError(
                    f"Configured {label} command #{i} must be a non-empty string, got {entry!r}"
                )
            if tier is Tier.ALLOW:
                pattern = r"^" + re2.escape(entry.strip()) + r"(?:\s|$)"
                reason = f"Command '{entry.strip()}' is in the allowed list"
            else:
                pattern = re2.escape(entry)
                reason = (
                    f"Command contains blocked pattern: {entry}" if tier is Tier.DENY
                    else f"Command '{entry}' requires confirmation"
                )
            extra.append(_rule(f"{label}-config-{i}", tier, scope, reason, pattern))
    return tuple(base) + tuple(extra)
