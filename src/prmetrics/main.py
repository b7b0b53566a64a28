"""Application entry point wiring configuration, clients, store and commands."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import uvicorn

from .backfill import backfill_repositories
from .cli import parse_args
from .config import Config, load_config
from .derive import MetricDeriver
from .errors import ApiError, AuthenticationError, ConfigurationError, PrMetricsError, StoreError
from .github_client import GitHubClient
from .jira_client import JiraClient
from .models import MetricFilter
from .stats import generate_report
from .store import MetricStore
from .tickets import TicketEnricher
from .timeline import TimelineResolver
from .webhook import create_app

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIGURATION = 2
EXIT_AUTHENTICATION = 3
EXIT_API = 4
EXIT_STORE = 5


def configure_logging(level: str) -> None:
    """Send log records to stderr with their level and logger name."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_deriver(config: Config, github_client: GitHubClient) -> MetricDeriver:
    """Assemble the metric deriver; Jira lookups are enabled only when configured."""
    jira_client = JiraClient(config=config) if config.jira_enabled else None
    if jira_client is None:
        logger.info("Jira is not configured; tickets are extracted without lookups")

    return MetricDeriver(
        github_client=github_client,
        timeline_resolver=TimelineResolver(github_client),
        ticket_enricher=TicketEnricher(jira_client),
        designated_reviewers=config.designated_reviewers,
    )


def _run_serve(args: argparse.Namespace) -> int:
    config = load_config(require_webhook_secret=True)
    configure_logging(config.log_level)

    store = MetricStore.from_url(config.database_url)
    store.create_schema()
    github_client = GitHubClient(config=config)
    app = create_app(config, build_deriver(config, github_client), store)

    logger.info("Starting webhook server", extra={"host": args.host, "port": args.port})
    uvicorn.run(app, host=args.host, port=args.port, log_level=config.log_level.lower())
    return EXIT_OK


def _run_backfill(args: argparse.Namespace) -> int:
    config = load_config(require_github_token=True)
    configure_logging(config.log_level)

    store = MetricStore.from_url(config.database_url)
    store.create_schema()
    github_client = GitHubClient(config=config)
    summary = backfill_repositories(
        github_client=github_client,
        deriver=build_deriver(config, github_client),
        store=store,
        repositories=args.repos,
        days=args.days,
    )

    print(
        f"Backfilled {summary.recorded} pull requests ({summary.merged} merged) "
        f"across {summary.repos} repositories; skipped {summary.skipped}."
    )
    for skipped in summary.skipped_prs:
        print(f"  skipped: {skipped}")
    return EXIT_OK


def _run_report(args: argparse.Namespace) -> int:
    config = load_config()
    configure_logging(config.log_level)

    store = MetricStore.from_url(config.database_url)
    date_to = datetime.now(timezone.utc)
    filters = MetricFilter(
        date_from=date_to - timedelta(days=args.days),
        date_to=date_to,
        author=args.author,
        repo=args.repo,
    )
    records = store.query(filters)

    scope = args.repo or "all repositories"
    if args.author:
        scope = f"{scope}, author {args.author}"
    print(generate_report(f"{scope}, last {args.days} days", records))
    return EXIT_OK


def _run_init_db(args: argparse.Namespace) -> int:
    config = load_config()
    configure_logging(config.log_level)

    MetricStore.from_url(config.database_url).create_schema()
    print("pr_metrics table is ready.")
    return EXIT_OK


_COMMANDS = {
    "serve": _run_serve,
    "backfill": _run_backfill,
    "report": _run_report,
    "init-db": _run_init_db,
}


def orchestrate(argv: Optional[Sequence[str]] = None) -> int:
    """Run the selected command and map failures to process exit codes."""
    try:
        args = parse_args(argv)
        return _COMMANDS[args.command](args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION
    except AuthenticationError as exc:
        print(f"Authentication error: {exc}", file=sys.stderr)
        return EXIT_AUTHENTICATION
    except ApiError as exc:
        print(f"API error: {exc}", file=sys.stderr)
        return EXIT_API
    except StoreError as exc:
        print(f"Store error: {exc}", file=sys.stderr)
        return EXIT_STORE
    except PrMetricsError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED


def main() -> None:
    """Console script entry point."""
    raise SystemExit(orchestrate())


if __name__ == "__main__":
    main()
