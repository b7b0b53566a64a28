"""Command-line argument parsing for the PR merge metrics service."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

from .backfill import DEFAULT_BACKFILL_DAYS


def _positive_int(value: str) -> int:
    """Parse and validate a positive integer CLI value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def _repository(value: str) -> str:
    owner, _, name = value.strip().partition("/")
    if not owner or not name or "/" in name:
        raise argparse.ArgumentTypeError("must be in the form owner/name")
    return f"{owner}/{name}"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments; ``command`` names the selected sub-command.
    """
    parser = argparse.ArgumentParser(
        prog="pr-merge-metrics",
        description=(
            "Record GitHub pull request merge metrics from webhooks or backfills "
            "and report time-to-merge analytics."
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the webhook receiver and dashboard API.")
    serve.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1).")
    serve.add_argument("--port", type=_positive_int, default=8000, help="Port to listen on (default: 8000).")

    backfill = subparsers.add_parser("backfill", help="Fetch recent pull requests and upsert their metrics.")
    backfill.add_argument(
        "repos",
        nargs="+",
        type=_repository,
        metavar="OWNER/NAME",
        help="Repositories to backfill.",
    )
    backfill.add_argument(
        "--days",
        type=_positive_int,
        default=DEFAULT_BACKFILL_DAYS,
        help=f"Only pull requests created in the last N days (default: {DEFAULT_BACKFILL_DAYS}).",
    )

    report = subparsers.add_parser("report", help="Print a merge metrics report from the store.")
    report.add_argument(
        "--days",
        type=_positive_int,
        default=30,
        help="Pull requests opened in the last N days (default: 30).",
    )
    report.add_argument("--repo", type=_repository, default=None, help="Restrict to one OWNER/NAME repository.")
    report.add_argument("--author", default=None, help="Restrict to one author login.")

    subparsers.add_parser("init-db", help="Create the pr_metrics table.")

    return parser.parse_args(argv)
