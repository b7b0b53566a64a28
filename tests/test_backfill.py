"""Tests for repository backfills."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from prmetrics.backfill import backfill_repositories
from prmetrics.derive import MetricDeriver
from prmetrics.errors import DataValidationError
from prmetrics.models import PullRequest, ReadyAtOutcome, ReadyAtResolution
from prmetrics.store import MetricStore
from prmetrics.tickets import TicketEnricher

NOW = datetime(2026, 4, 10, 12, 0, tzinfo=timezone.utc)


def _pr(number: int, merged_hours: float | None = None, draft: bool = False, body: str | None = None) -> PullRequest:
    created_at = NOW - timedelta(days=2)
    merged_at = created_at + timedelta(hours=merged_hours) if merged_hours is not None else None
    return PullRequest(
        number=number,
        title=f"PR {number}",
        author="alice",
        created_at=created_at,
        merged_at=merged_at,
        merged=merged_at is not None,
        draft=draft,
        body=body,
    )


def _setup(pull_requests, resolution=None):
    github_client = Mock()
    github_client.list_pull_requests.return_value = pull_requests
    github_client.list_reviews.return_value = []
    timeline_resolver = Mock()
    timeline_resolver.resolve_ready_at.return_value = resolution or ReadyAtResolution(
        outcome=ReadyAtOutcome.NOT_FOUND
    )
    jira_client = Mock()
    jira_client.get_issue_fields.return_value = {"priority": {"name": "Low"}, "duedate": None}
    deriver = MetricDeriver(
        github_client=github_client,
        timeline_resolver=timeline_resolver,
        ticket_enricher=TicketEnricher(jira_client),
        designated_reviewers=frozenset(),
    )
    store = MetricStore.from_url("sqlite://")
    store.create_schema()
    return github_client, deriver, store, jira_client


def test_backfill_records_open_and_merged_pull_requests():
    """Verify every listed pull request is upserted and merges are counted."""
    github_client, deriver, store, _ = _setup([_pr(1, merged_hours=3), _pr(2), _pr(3, draft=True)])

    summary = backfill_repositories(github_client, deriver, store, ["acme/api"], days=7, now=NOW)

    assert summary.repos == 1
    assert summary.recorded == 3
    assert summary.merged == 1
    assert summary.skipped == 0
    github_client.list_pull_requests.assert_called_once_with("acme", "api", since=NOW - timedelta(days=7))
    assert store.get("acme/api", 1).duration_ms == 3 * 3600 * 1000
    assert store.get("acme/api", 2).merged_at is None
    assert store.get("acme/api", 3).ready_at is None


def test_backfill_shares_ticket_cache_across_pull_requests():
    """Verify a ticket referenced by several pull requests is looked up once."""
    pull_requests = [_pr(1, merged_hours=1, body="OPS-1"), _pr(2, merged_hours=2, body="OPS-1")]
    github_client, deriver, store, jira_client = _setup(pull_requests)

    summary = backfill_repositories(github_client, deriver, store, ["acme/api"], now=NOW)

    jira_client.get_issue_fields.assert_called_once_with("OPS-1")
    assert summary.tickets_looked_up == 1


def test_backfill_skips_inconsistent_pull_requests():
    """Verify a pull request merged before its ready time is skipped, not fatal."""
    resolution = ReadyAtResolution(outcome=ReadyAtOutcome.FOUND, ready_at=NOW)
    github_client, deriver, store, _ = _setup([_pr(1, merged_hours=1)], resolution=resolution)

    summary = backfill_repositories(github_client, deriver, store, ["acme/api"], now=NOW)

    assert summary.recorded == 0
    assert summary.skipped == 1
    assert summary.skipped_prs == ["acme/api#1"]
    assert store.query() == []


def test_backfill_is_idempotent():
    """Verify running the same backfill twice keeps one row per pull request."""
    github_client, deriver, store, _ = _setup([_pr(1, merged_hours=3), _pr(2)])

    backfill_repositories(github_client, deriver, store, ["acme/api"], now=NOW)
    first = store.query()
    backfill_repositories(github_client, deriver, store, ["acme/api"], now=NOW)

    assert store.query() == first


def test_backfill_invalid_repository_raises():
    """Verify repositories must be given as owner/name."""
    github_client, deriver, store, _ = _setup([])

    with pytest.raises(DataValidationError):
        backfill_repositories(github_client, deriver, store, ["acme"], now=NOW)
