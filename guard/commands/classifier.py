"""Command risk classifier.

``classify_command()`` splits a shell command into segments on ``;``, ``&&``,
``||``, ``|``, ``&``, newlines, subshell parentheses and backticks (quotes are
respected), classifies each segment against the rule set, and returns the most
restrictive outcome (deny > confirm > allow).

Whole-command rules run first, on the raw string, because their shapes span
segments (``curl ... | sh``).

Output redirections (``>``, ``>>``, ``&>``, ``2>``) are taken out of the
segment before it is matched. A write to anything but ``/dev/null`` and the
standard streams requires confirmation; with a ``FileAccessPolicy`` a target
the policy denies is denied.

The payload of ``sh -c`` / ``bash -c`` / ``eval`` is classified as a command of
its own, so a denied payload denies the wrapper. Running a nested shell is
never allowed outright.

An empty command, an unparseable command (unbalanced quotes) and an
unrecognised segment all require confirmation.
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional

from guard.commands.definitions import (
    COMMAND_RULES,
    SCOPE_COMMAND,
    SCOPE_SEGMENT,
    CommandRule,
)
from guard.models.decision import CommandDecision, Tier
from guard.utils.logger import get_logger
from guard.utils.text import re2_safe

if TYPE_CHECKING:
    from guard.policy.file_access import FileAccessPolicy

logger = get_logger(__name__)

_PUNCTUATION = "();<>|&\n`"
_SEPARATOR_CHARS = frozenset("();|&\n`")

_SHELLS = frozenset({"sh", "bash", "zsh", "dash", "ksh", "fish"})
_PASSTHROUGH = frozenset({"exec", "nohup", "command", "builtin"})
_STREAM_TARGETS = frozenset({
    "/dev/null", "/dev/stdout", "/dev/stderr", "/dev/tty", "/dev/fd/1", "/dev/fd/2",
})
MAX_NESTING = 3


@dataclass(frozen=True)
class Segment:
    """One simple command of a compound command.

    Fields:
        text:      Normalised form matched by segment rules.
        words:     Tokens after ``NAME=value`` prefixes and redirections are
                   removed.
        redirects: Output redirection targets, in order.
    """

    text: str
    words: tuple[str, ...]
    redirects: tuple[str, ...] = ()


# ─── Splitting ────────────────────────────────────────────────────────────────


def _is_operator(token: str) -> bool:
    return bool(token) and all(ch in _PUNCTUATION for ch in token)


def _is_separator(token: str) -> bool:
    return bool(token) and all(ch in _SEPARATOR_CHARS for ch in token)


def _is_assignment(token: str) -> bool:
    name, eq, _ = token.partition("=")
    return bool(eq) and name.isidentifier()


def normalize_segment(tokens: list[str]) -> str:
    """Join a segment's tokens after dropping ``NAME=value`` prefixes.

    The command token (and the command after ``sudo [-flags]``) is reduced to
    its basename, so ``/bin/rm`` and ``rm`` classify the same way.
    """
    i = 0
    while i < len(tokens) and _is_assignment(tokens[i]):
        i += 1
    words = list(tokens[i:])
    if not words:
        return ""

    words[0] = os.path.basename(words[0]) or words[0]
    if words[0] == "sudo":
        j = 1
        while j < len(words) and words[j].startswith("-"):
            j += 1
        if j < len(words):
            words[j] = os.path.basename(words[j]) or words[j]
    return " ".join(words)


def _segment(tokens: list[str], redirects: list[str]) -> Segment:
    i = 0
    while i < len(tokens) and _is_assignment(tokens[i]):
        i += 1
    return Segment(
        text=normalize_segment(tokens),
        words=tuple(tokens[i:]),
        redirects=tuple(redirects),
    )


def parse_segments(command: str) -> list[Segment]:
    """Split ``command`` into segments, pulling out output redirections.

    ``2>&1`` style descriptor duplication is not a write and is dropped. Input
    redirection operators are dropped; their operand stays an argument.

    Raises:
        ValueError: when the command cannot be tokenised (unbalanced quotes).
    """
    lexer = shlex.shlex(command, posix=True, punctuation_chars=_PUNCTUATION)
    lexer.whitespace_split = True
    lexer.whitespace = " \t\r"
    lexer.commenters = ""
    tokens = list(lexer)

    segments: list[Segment] = []
    current: list[str] = []
    redirects: list[str] = []
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if _is_separator(token):
            if current:
                segments.append(_segment(current, redirects))
            current, redirects = [], []
        elif _is_operator(token) and ">" in token:
            # 2>file: the descriptor number is not an argument
            if current and current[-1].isdigit():
                current.pop()
            following = tokens[i + 1] if i + 1 < len(tokens) else None
            if following is not None and not _is_operator(following):
                i += 1
                if not (token.endswith("&") and (following.isdigit() or following == "-")):
                    redirects.append(following)
        elif _is_operator(token):
            pass
        else:
            current.append(token)
        i += 1
    if current:
        segments.append(_segment(current, redirects))
    return [s for s in segments if s.text]


def split_segments(command: str) -> list[str]:
    """Split ``command`` into normalised segments.

    Raises:
        ValueError: when the command cannot be tokenised (unbalanced quotes).
    """
    return [s.text for s in parse_segments(command)]


def nested_payload(words: Iterable[str]) -> Optional[str]:
    """The command string run by ``sh -c``, ``bash -lc``, ``eval`` ... or None.

    ``sudo [-flags]``, ``env [NAME=value ...]`` and ``exec``-style prefixes are
    looked through.
    """
    rest = list(words)
    while rest:
        name = os.path.basename(rest[0]) or rest[0]
        if name == "sudo" or name == "env":
            rest = rest[1:]
            while rest and (rest[0].startswith("-") or _is_assignment(rest[0])):
                rest = rest[1:]
        elif name in _PASSTHROUGH:
            rest = rest[1:]
        else:
            break
    if not rest:
        return None

    name = os.path.basename(rest[0]) or rest[0]
    if name == "eval":
        return " ".join(rest[1:]) or None
    if name in _SHELLS:
        for i, word in enumerate(rest[1:], start=1):
            if word.startswith("-") and not word.startswith("--") and "c" in word[1:]:
                return rest[i + 1] if i + 1 < len(rest) else None
    return None


# ─── Classification ───────────────────────────────────────────────────────────


def _first_match(rules: Iterable[CommandRule], text: str) -> Optional[CommandRule]:
    for tier in (Tier.DENY, Tier.CONFIRM, Tier.ALLOW):
        for rule in rules:
            if rule.tier is tier and rule.matches(text):
                return rule
    return None


def _redirect_outcome(target: str, policy: Optional["FileAccessPolicy"]) -> Optional[tuple[Tier, str, str]]:
    if target in _STREAM_TARGETS:
        return None
    if policy is not None:
        decision = policy.check(target, "write")
        if decision.tier is Tier.DENY and decision.rule != "unresolvable-path":
            return (Tier.DENY, f"Output redirection blocked: {decision.reason}", "protected-redirect")
    return (Tier.CONFIRM, f"Output redirection writes to {target}", "output-redirect")


def classify_command(
    command: str,
    rules: tuple[CommandRule, ...] = COMMAND_RULES,
    policy: Optional["FileAccessPolicy"] = None,
) -> CommandDecision:
    """Classify ``command``. NEVER raises for malformed input.

    ``policy`` decides output redirection targets; without one every file
    target requires confirmation.
    """
    return _classify(command, rules, policy, depth=0)


def _classify(
    command: str,
    rules: tuple[CommandRule, ...],
    policy: Optional["FileAccessPolicy"],
    depth: int,
) -> CommandDecision:
    if not command or not command.strip():
        return CommandDecision.confirm("Empty command requires confirmation", rule="empty-command")
    command = re2_safe(command)

    command_rules = [r for r in rules if r.scope == SCOPE_COMMAND]
    segment_rules = [r for r in rules if r.scope == SCOPE_SEGMENT]

    whole = _first_match(command_rules, command)
    if whole is not None and whole.tier is Tier.DENY:
        return CommandDecision.deny(whole.reason, rule=whole.slug)

    try:
        segments = parse_segments(command)
    except ValueError as exc:
        logger.debug("Command could not be tokenised", error=str(exc))
        return CommandDecision.confirm(
            f"Command could not be parsed ({exc}); confirmation required",
            rule="unparseable",
        )

    if not segments:
        return CommandDecision.confirm("Empty command requires confirmation", rule="empty-command")

    # (tier, reason, slug) per segment; the first most-restrictive one decides.
    outcomes: list[tuple[Tier, str, str]] = []
    if whole is not None:
        outcomes.append((whole.tier, whole.reason, whole.slug))

    for segment in segments:
        payload = nested_payload(segment.words)
        if payload is not None:
            if depth >= MAX_NESTING:
                outcomes.append((Tier.CONFIRM, "Nested shell command is too deep to classify", "nested-shell"))
            else:
                inner = _classify(payload, rules, policy, depth + 1)
                if inner.tier is Tier.DENY:
                    outcomes.append((Tier.DENY, inner.reason, inner.rule))
                else:
                    outcomes.append((
                        Tier.CONFIRM,
                        f"Nested shell command requires confirmation: {inner.reason}",
                        "nested-shell",
                    ))

        rule = _first_match(segment_rules, segment.text)
        if rule is None:
            name = segment.text.split(" ", 1)[0]
            outcomes.append((
                Tier.CONFIRM,
                f"Unrecognized command '{name}' requires confirmation",
                "unrecognized-command",
            ))
        elif rule.tier is Tier.ALLOW:
            outcomes.append((rule.tier, rule.reason, rule.slug))
        else:
            outcomes.append((rule.tier, f"{rule.reason}: {segment.text}", rule.slug))

        for target in segment.redirects:
            outcome = _redirect_outcome(target, policy)
            if outcome is not None:
                outcomes.append(outcome)

    tier = Tier.most_restrictive([t for t, _, _ in outcomes])
    _, reason, slug = next(o for o in outcomes if o[0] is tier)
    return CommandDecision.for_tier(tier, reason, rule=slug)
