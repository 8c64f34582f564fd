"""Path canonicalisation and glob matching for the access policy.

Every path goes through one canonical representation before any comparison:
absolute, symlinks resolved, ``.``/``..`` collapsed, ``/`` as the only
separator. Glob patterns get the same separator normalisation, so a POSIX
pattern and a Windows pattern behave identically.

Glob syntax:
  - ``**``   any number of path segments (``**/`` may match zero segments;
             a trailing ``/**`` also matches the directory itself)
  - ``*``    any run of characters within one segment
  - ``?``    exactly one character within one segment

Matching is case-insensitive.

IMPORT RULES:
  - ``import re2`` ONLY: globs are translated to google-re2 patterns.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Union

import re2

from guard.utils.text import re2_safe

PathLike = Union[str, "os.PathLike[str]"]

_VALID_OPERATIONS = frozenset({"read", "write"})


class UnresolvablePathError(ValueError):
    """The path cannot be canonicalised (missing, broken symlink, bad parent)."""


# ─── Separator normalisation ─────────────────────────────────────────────────


def normalize_separators(path: str) -> str:
    """Convert ``\\`` to ``/``. Pure string operation: no filesystem access."""
    return path.replace("\\", "/")


# ─── Glob translation ────────────────────────────────────────────────────────


def glob_to_regex(pattern: str) -> str:
    """Translate a glob into an anchored google-re2 pattern string.

    ``pattern`` is separator-normalised first. ASCII punctuation is escaped;
    everything else is matched literally.
    """
    glob = normalize_separators(pattern)
    out: list[str] = []
    i = 0
    n = len(glob)

    while i < n:
        if glob.startswith("/**", i) and i + 3 == n:
            # trailing /**: the directory itself or anything below it
            out.append("(?:/.*)?")
            break
        if glob.startswith("**", i):
            if glob.startswith("**/", i):
                out.append("(?:.*/)?")
                i += 3
            else:
                out.append(".*")
                i += 2
            continue

        ch = glob[i]
        if ch == "*":
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch.isascii() and not ch.isalnum() and not ch.isspace():
            out.append("\\" + ch)
        else:
            out.append(ch)
        i += 1

    return "(?is)^" + "".join(out) + "$"


@lru_cache(maxsize=512)
def compile_glob(pattern: str) -> Any:
    """Compile (and cache) a glob. Returns a re2 pattern object."""
    return re2.compile(glob_to_regex(pattern))


def matches_pattern(path: str, pattern: str) -> bool:
    """True if ``path`` matches the glob ``pattern``.

    Both sides are separator-normalised; the path is NOT resolved against the
    filesystem here: callers canonicalise first.

    >>> matches_pattern("/home/u/project/src/index.js", "/home/u/project/**/*.js")
    True
    >>> matches_pattern("/etc/passwd", "/home/**")
    False
    >>> matches_pattern("C:\\\\Users\\\\Name\\\\file.txt", "C:/Users/**")
    True
    """
    return compile_glob(re2_safe(pattern)).search(re2_safe(normalize_separators(str(path)))) is not None


# ─── Canonicalisation ────────────────────────────────────────────────────────


def canonical_path(
    path: PathLike,
    base: PathLike,
    operation: str = "read",
) -> str:
    """Return the canonical ``/``-separated absolute form of ``path``.

    ``~`` is expanded; relative paths are resolved against ``base``; ``.``,
    ``..`` and symlinks are resolved.

    Existence rules:
      - ``read``:  the path must exist (a broken symlink does not).
      - ``write``: the path may be new, but its parent directory must exist,
                   and an existing symlink at the path must not be dangling.

    Raises:
        UnresolvablePathError: when the rules above are not met.
        ValueError: on an unknown ``operation``.
    """
    if operation not in _VALID_OPERATIONS:
        raise ValueError(f"Unknown operation {operation!r}; expected one of {sorted(_VALID_OPERATIONS)}")

    raw = os.fspath(path)
    if not raw or "\x00" in raw:
        raise UnresolvablePathError("empty or malformed path")

    candidate = Path(os.path.expanduser(raw))
    if not candidate.is_absolute():
        candidate = Path(base) / candidate

    if os.path.islink(candidate) and not os.path.exists(candidate):
        raise UnresolvablePathError("broken symlink")

    if operation == "read":
        if not os.path.exists(candidate):
            raise UnresolvablePathError("path does not exist")
    else:
        parent = os.path.dirname(os.path.abspath(candidate))
        if not os.path.isdir(parent):
            raise UnresolvablePathError("parent directory does not exist")

    return Path(os.path.realpath(candidate)).as_posix()


def canonical_root(root: PathLike) -> str:
    """Canonical form of a directory that must already exist."""
    resolved = os.path.realpath(os.path.expanduser(os.fspath(root)))
    if not os.path.isdir(resolved):
        raise UnresolvablePathError(f"{root} is not a directory")
    return Path(resolved).as_posix()


def is_within(path: str, root: str) -> bool:
    """True if canonical ``path`` is ``root`` or below it."""
    p = normalize_separators(os.path.normcase(path))
    r = normalize_separators(os.path.normcase(root))
    if p == r:
        return True
    return p.startswith(r.rstrip("/") + "/")
