"""context-guard CLI: run guard checks from a shell, git hook or script.

Usage:
    context-guard scan src/settings.py          # scan a file (``-`` reads stdin)
    context-guard check-access ~/.ssh/id_rsa    # read access
    context-guard check-access out/report.txt --write
    context-guard check-command git push --force origin main
    context-guard status
    context-guard match 'C:\\Users\\me\\a.txt' 'C:/Users/**'

Results are printed to stdout as JSON. Exit codes:
    0  allowed / safe / pattern matched
    1  denied / secrets found / no match
    2  confirmation required
    3  configuration error
    4  I/O error (unreadable input, audit or quarantine write failure)
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Optional

from guard.config import load_config
from guard.constants import (
    EXIT_CONFIG_ERROR,
    EXIT_CONFIRM,
    EXIT_DENIED,
    EXIT_IO_ERROR,
    EXIT_OK,
)
from guard.errors import ConfigurationError, GuardError
from guard.guard import SecurityGuard
from guard.models.decision import Tier
from guard.policy.matcher import matches_pattern
from guard.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

_TIER_EXIT = {Tier.ALLOW: EXIT_OK, Tier.CONFIRM: EXIT_CONFIRM, Tier.DENY: EXIT_DENIED}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="context-guard",
        description="Local security guard for files, commands and content",
    )
    parser.add_argument("--config", help="Path to a config file (default: search .guard/config.yaml)")
    parser.add_argument("--project-root", help="Override the configured project root")
    parser.add_argument("--pretty", action="store_true", help="Indented output and console-style logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    scan = subparsers.add_parser("scan", help="Scan a file for secrets")
    scan.add_argument("file", help="File to scan, or - for stdin")

    access = subparsers.add_parser("check-access", help="Check file access")
    access.add_argument("path", help="Path to check")
    access.add_argument("--write", action="store_true", help="Check write access (default: read)")

    cmd = subparsers.add_parser("check-command", help="Check a shell command")
    cmd.add_argument("cmd", nargs=argparse.REMAINDER, help="Command to check")

    subparsers.add_parser("status", help="Show guard status")

    match = subparsers.add_parser("match", help="Test a path against a glob")
    match.add_argument("path")
    match.add_argument("pattern")

    return parser


def _emit(body: dict[str, Any], pretty: bool) -> None:
    print(json.dumps(body, indent=2 if pretty else None))


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging("DEBUG" if args.verbose else "WARNING", json_output=not args.pretty)

    if not args.command:
        parser.print_help(sys.stderr)
        return EXIT_CONFIG_ERROR

    # Pure string operation: no guard, no audit entry
    if args.command == "match":
        matched = matches_pattern(args.path, args.pattern)
        _emit({"path": args.path, "pattern": args.pattern, "matches": matched}, args.pretty)
        return EXIT_OK if matched else EXIT_DENIED

    try:
        config = load_config(args.config)
        if args.project_root:
            config.project_root = args.project_root
        if not args.verbose:
            configure_logging(config.logging.level, json_output=config.logging.json and not args.pretty)
        guard = SecurityGuard.from_config(config)
    except ConfigurationError as exc:
        print(f"CONFIG ERROR: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        if args.command == "scan":
            return _cmd_scan(guard, args)
        if args.command == "check-access":
            decision = guard.check_file_access(args.path, "write" if args.write else "read")
            _emit(decision.to_dict(), args.pretty)
            return _TIER_EXIT[decision.tier]
        if args.command == "check-command":
            decision = guard.check_command(" ".join(args.cmd))
            _emit(decision.to_dict(), args.pretty)
            return _TIER_EXIT[decision.tier]
        if args.command == "status":
            _emit(guard.status().to_dict(), args.pretty)
            return EXIT_OK
    except GuardError as exc:
        logger.error("Guard operation failed", command=args.command, error=str(exc))
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_IO_ERROR

    parser.print_help(sys.stderr)
    return EXIT_CONFIG_ERROR


def _cmd_scan(guard: SecurityGuard, args: argparse.Namespace) -> int:
    if args.file == "-":
        content = sys.stdin.buffer.read()
        resource = "<stdin>"
    else:
        try:
            with open(args.file, "rb") as fh:
                content = fh.read()
        except OSError as exc:
            print(f"ERROR: cannot read {args.file}: {exc}", file=sys.stderr)
            return EXIT_IO_ERROR
        resource = args.file

    result = guard.scan_for_secrets(content, resource)
    _emit(
        {
            "safe": result.safe,
            "findings": [f.to_dict() for f in result.findings],
            "pathFindings": [f.to_dict() for f in result.path_findings],
            "quarantineId": result.quarantine_id,
        },
        args.pretty,
    )
    return EXIT_OK if result.safe else EXIT_DENIED


if __name__ == "__main__":
    sys.exit(main())
