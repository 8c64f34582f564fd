"""ReDoS Audit Gate: CI Required Step.

Every pattern the guard evaluates against untrusted input (file content,
shell commands, paths) is compiled by google-re2, whose linear-time automata
cannot backtrack. Patterns re2 rejects would need a backtracking engine; CI
rejection of them is the ReDoS defence.

Any change adding a secret pattern or command rule MUST pass this gate.
"""

from __future__ import annotations

import pathlib
import subprocess
import time

import pytest
import re2

from guard.commands.classifier import classify_command
from guard.commands.definitions import COMMAND_RULES
from guard.policy.matcher import compile_glob
from guard.scanner.definitions import SECRET_PATTERNS
from guard.scanner.regex_engine import scan_text

# The compiled pattern type returned by re2.compile()
_Re2PatternType = type(re2.compile(r"test"))

PROJECT_ROOT = pathlib.Path(__file__).parent.parent.parent


@pytest.mark.parametrize("entry", SECRET_PATTERNS, ids=[p.name for p in SECRET_PATTERNS])
def test_secret_pattern_is_re2(entry: object) -> None:
    """Each secret pattern is a compiled re2 object that can execute a search."""
    assert isinstance(entry.pattern, _Re2PatternType), (  # type: ignore[attr-defined]
        f"Secret pattern {entry.name!r} is not a compiled re2 pattern: "  # type: ignore[attr-defined]
        f"{type(entry.pattern)}"  # type: ignore[attr-defined]
    )
    entry.pattern.search("test input for re2 safety validation")  # type: ignore[attr-defined]


@pytest.mark.parametrize("rule", COMMAND_RULES, ids=[r.slug for r in COMMAND_RULES])
def test_command_rule_patterns_are_re2(rule: object) -> None:
    for pattern in rule.patterns:  # type: ignore[attr-defined]
        assert isinstance(pattern, _Re2PatternType), (
            f"Command rule {rule.slug!r} has a non-re2 pattern: {type(pattern)}"  # type: ignore[attr-defined]
        )


def test_glob_compiles_to_re2() -> None:
    assert isinstance(compile_glob("**/*.env*"), _Re2PatternType)


@pytest.mark.parametrize("package", ["guard/scanner/", "guard/commands/", "guard/policy/"])
def test_no_bare_import_re(package: str) -> None:
    """CI lint gate: stdlib ``re`` never evaluates untrusted input."""
    result = subprocess.run(
        ["grep", "-rnE", r"^import re$|^from re import|^import re ", package],
        capture_output=True,
        text=True,
        cwd=str(PROJECT_ROOT),
    )
    assert result.returncode != 0, (
        f"LINT GATE FAILURE: bare 'import re' found in {package}:\n{result.stdout}"
    )


# ─── Adversarial input ────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "text",
    [
        "a" * 200_000,
        "password" + " =" * 50_000,
        "-----BEGIN " + "A " * 50_000,
        "x://" + "a:" * 50_000 + "@",
        "eyJ" + "a." * 50_000,
    ],
    ids=["run", "assignment", "pem-header", "url", "jwt"],
)
def test_scan_is_linear_on_pathological_input(text: str) -> None:
    start = time.perf_counter()
    scan_text(text)
    assert time.perf_counter() - start < 5.0


def test_classifier_on_long_command() -> None:
    command = "rm " + "-r " * 20_000 + "x" + " && ls" * 2_000
    start = time.perf_counter()
    decision = classify_command(command)
    assert time.perf_counter() - start < 5.0
    assert decision.require_confirmation is True
