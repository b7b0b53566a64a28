"""Batch backfill of pull request metrics from the GitHub API.

For each ``owner/name`` repository, pull requests created within the trailing
window are listed, derived with the same rules as merge webhooks and upserted.
One ``TicketCache`` is shared by the whole run, so each Jira ticket is looked
up at most once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from .derive import MetricDeriver, split_repo_full_name
from .errors import DataValidationError
from .github_client import GitHubClient
from .store import MetricStore
from .tickets import TicketCache

logger = logging.getLogger(__name__)

DEFAULT_BACKFILL_DAYS = 7


@dataclass(slots=True)
class BackfillSummary:
    """Counts of what one backfill run did."""

    repos: int = 0
    recorded: int = 0
    merged: int = 0
    skipped: int = 0
    tickets_looked_up: int = 0
    skipped_prs: List[str] = field(default_factory=list)


def backfill_repositories(
    github_client: GitHubClient,
    deriver: MetricDeriver,
    store: MetricStore,
    repositories: Sequence[str],
    days: int = DEFAULT_BACKFILL_DAYS,
    now: Optional[datetime] = None,
) -> BackfillSummary:
    """Derive and upsert metrics for pull requests created in the last ``days`` days.

    Raises:
        DataValidationError: If a repository name is not ``owner/name``.
        ApiError: If a repository's pull requests cannot be listed.
        StoreError: If an upsert fails.
    """
    since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    cache = TicketCache()
    summary = BackfillSummary()

    for repository in repositories:
        owner, name = split_repo_full_name(repository.strip())
        pull_requests = github_client.list_pull_requests(owner, name, since=since)
        summary.repos += 1

        logger.info(
            "Backfilling repository",
            extra={"repo": f"{owner}/{name}", "since": since.isoformat(), "pull_requests": len(pull_requests)},
        )

        for pull_request in pull_requests:
            try:
                metric = deriver.derive_snapshot(owner, name, pull_request, cache)
            except DataValidationError as exc:
                logger.warning(
                    "Skipping pull request with inconsistent timestamps",
                    extra={"repo": f"{owner}/{name}", "pr_number": pull_request.number, "error": str(exc)},
                )
                summary.skipped += 1
                summary.skipped_prs.append(f"{owner}/{name}#{pull_request.number}")
                continue

            store.upsert(metric)
            summary.recorded += 1
            if metric.is_merged:
                summary.merged += 1

    summary.tickets_looked_up = len(cache)
    logger.info(
        "Backfill finished",
        extra={
            "repos": summary.repos,
            "recorded": summary.recorded,
            "merged": summary.merged,
            "skipped": summary.skipped,
        },
    )
    return summary
