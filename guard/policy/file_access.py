"""File access policy: classifies paths into deny / confirm / allow.

Decision order for a path:
  1. Canonicalise (``guard.policy.matcher.canonical_path``). Failure → deny.
  2. Denylist rules (system configuration, credential directories) → deny.
     Denied paths never offer confirmation.
  3. Outside the project root → deny.
  4. Confirmation rules (``.env``, ``*.pem``, ``*secret*`` ...) → confirm.
  5. Otherwise → allow.

Rules are declarative ``PathRule`` descriptors. Glob templates may use the
``{HOME}`` and ``{PROJECT_ROOT}`` placeholders; they are expanded and
compiled once, when the policy is built.

An absolute glob is matched against the canonical path. A relative glob
(``**/.env``, ``*.sqlite``) is matched against the path relative to the
project root, so the directories above the root never trigger a rule.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional

from guard.errors import ConfigurationError
from guard.models.decision import AccessDecision, Tier
from guard.policy.matcher import (
    PathLike,
    UnresolvablePathError,
    canonical_path,
    canonical_root,
    compile_glob,
    is_within,
    normalize_separators,
)
from guard.utils.logger import get_logger
from guard.utils.text import re2_safe

logger = get_logger(__name__)


# ─── PathRule ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PathRule:
    """A single compiled path rule.

    Fields:
        glob:    Expanded glob (placeholders substituted, ``/`` separators).
        tier:    Tier applied when the rule matches (DENY or CONFIRM).
        slug:    Rule identifier reported in decisions and audit metadata.
        reason:  Reason template; ``{path}`` is replaced with the requested path.
        pattern: Compiled re2 pattern for ``glob``.
        relative: True when ``glob`` is not absolute.
    """

    glob: str
    tier: Tier
    slug: str
    reason: str
    pattern: Any
    relative: bool = False

    def matches(self, canonical: str, relative_path: Optional[str] = None) -> bool:
        """Match ``relative_path`` for a relative glob when the path is under
        the project root, ``canonical`` otherwise."""
        target = relative_path if self.relative and relative_path is not None else canonical
        return self.pattern.search(re2_safe(target)) is not None


# ─── Default rule templates ───────────────────────────────────────────────────

# (glob template, slug)
DEFAULT_BLOCKED_PATHS: tuple[tuple[str, str], ...] = (
    ("/etc/**", "system-config"),
    ("/private/etc/**", "system-config"),
    ("/proc/**", "system-pseudo-fs"),
    ("/sys/**", "system-pseudo-fs"),
    ("/boot/**", "system-boot"),
    ("C:/Windows/**", "system-config"),
    ("{HOME}/.ssh/**", "ssh-directory"),
    ("{HOME}/.aws/**", "cloud-credentials"),
    ("{HOME}/.config/gcloud/**", "cloud-credentials"),
    ("{HOME}/.azure/**", "cloud-credentials"),
    ("{HOME}/.kube/**", "cloud-credentials"),
    ("{HOME}/.gnupg/**", "gpg-keyring"),
    ("{HOME}/.docker/config.json", "registry-credentials"),
    ("{HOME}/.netrc", "registry-credentials"),
)

DEFAULT_CONFIRM_PATHS: tuple[tuple[str, str], ...] = (
    ("**/.env", "dotenv-file"),
    ("**/.env.*", "dotenv-file"),
    ("**/*.pem", "pem-file"),
    ("**/*.key", "key-file"),
    ("**/id_rsa*", "ssh-key-file"),
    ("**/credentials*", "credentials-file"),
    ("**/*secret*/**", "secrets-file"),
)

_BLOCKED_REASON = "Access to {path} is blocked for security reasons"
_CONFIRM_REASON = "Access to {path} requires confirmation (sensitive file)"


def _expand(template: str, home: str, project_root: str) -> str:
    return normalize_separators(
        template.replace("{HOME}", home).replace("{PROJECT_ROOT}", project_root)
    )


def _is_absolute_glob(glob: str) -> bool:
    # /etc/**  or  C:/Windows/**
    return glob.startswith("/") or (len(glob) > 2 and glob[1] == ":" and glob[2] == "/")


def build_path_rules(
    templates: Iterable[Any],
    tier: Tier,
    reason: str,
    home: str,
    project_root: str,
    slug_prefix: str = "",
) -> tuple[PathRule, ...]:
    """Expand and compile path rule templates.

    ``templates`` holds ``(glob, slug)`` tuples or, for configured rules, bare
    glob strings (slug defaults to ``config-<index>``).

    Raises:
        ConfigurationError: On a template that is not a non-empty string.
    """
    rules: list[PathRule] = []
    for i, item in enumerate(templates):
        if isinstance(item, tuple):
            template, slug = item
        else:
            template, slug = item, f"{slug_prefix}config-{i}"
        if not isinstance(template, str) or not template.strip():
            raise ConfigurationError(
                f"Path rule #{i} must be a non-empty glob string, got {template!r}"
            )
        glob = _expand(template, home, project_root)
        rules.append(
            PathRule(
                glob=glob,
                tier=tier,
                slug=slug,
                reason=reason,
                pattern=compile_glob(glob),
                relative=not _is_absolute_glob(glob),
            )
        )
    return tuple(rules)


# ─── FileAccessPolicy ─────────────────────────────────────────────────────────


class FileAccessPolicy:
    """Access policy bound to one project root.

    Rule sets are built once in ``__init__`` and never mutated, so ``check()``
    needs no locking.
    """

    def __init__(
        self,
        project_root: PathLike,
        home: Optional[PathLike] = None,
        extra_blocked: Iterable[str] = (),
        extra_confirm: Iterable[str] = (),
    ) -> None:
        try:
            self.project_root = canonical_root(project_root)
        except UnresolvablePathError as exc:
            raise ConfigurationError(f"Invalid project root: {exc}") from exc

        home_raw = os.fspath(home) if home is not None else str(Path.home())
        self.home = Path(os.path.realpath(home_raw)).as_posix()

        self.blocked_rules: tuple[PathRule, ...] = (
            build_path_rules(DEFAULT_BLOCKED_PATHS, Tier.DENY, _BLOCKED_REASON, self.home, self.project_root)
            + build_path_rules(list(extra_blocked), Tier.DENY, _BLOCKED_REASON, self.home, self.project_root, "blocked-")
        )
        self.confirm_rules: tuple[PathRule, ...] = (
            build_path_rules(DEFAULT_CONFIRM_PATHS, Tier.CONFIRM, _CONFIRM_REASON, self.home, self.project_root)
            + build_path_rules(list(extra_confirm), Tier.CONFIRM, _CONFIRM_REASON, self.home, self.project_root, "confirm-")
        )

    def check(self, path: PathLike, operation: str = "read") -> AccessDecision:
        """Classify ``path`` for ``operation`` (``"read"`` or ``"write"``).

        NEVER raises for an unresolvable path: that is a deny decision.
        Raises ValueError only for an unknown ``operation`` (caller bug).
        """
        requested = os.fspath(path)
        try:
            canonical = canonical_path(requested, self.project_root, operation)
        except UnresolvablePathError as exc:
            logger.debug("Path could not be resolved", path=requested, error=str(exc))
            return AccessDecision.deny(
                f"Access to {requested} is denied: {exc}",
                rule="unresolvable-path",
            )

        within = is_within(canonical, self.project_root)
        relative = canonical[len(self.project_root):].lstrip("/") if within else None

        for rule in self.blocked_rules:
            if rule.matches(canonical, relative):
                return AccessDecision.deny(
                    rule.reason.format(path=requested), rule=rule.slug, path=canonical
                )

        if not within:
            return AccessDecision.deny(
                f"Access to {requested} is outside the project root {self.project_root}",
                rule="outside-project-root",
                path=canonical,
            )

        for rule in self.confirm_rules:
            if rule.matches(canonical, relative):
                return AccessDecision.confirm(
                    rule.reason.format(path=requested), rule=rule.slug, path=canonical
                )

        return AccessDecision.allow(
            f"Access to {requested} is within the project root",
            rule="project-root",
            path=canonical,
        )
