"""Metric derivation from GitHub pull request events.

This module turns pull request lifecycle events into ``PrMetric`` records:
- ``opened``: identity, title, author and opened time; ready time equals the
  opened time unless the pull request was opened as a draft.
- ``closed`` with ``merged == true``: ready time from the last
  ready-for-review timeline event (falling back to the opened time), merge
  duration in milliseconds, review track statuses and ticket enrichment.

Every other event is ignored and never written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AbstractSet, Any, Mapping, Optional, Tuple

from .errors import ApiError, DataValidationError
from .github_client import GitHubClient, pull_request_from_payload
from .models import PrMetric, PullRequest, ReadyAtOutcome, ReviewStatuses
from .reviews import classify_reviews
from .store import MetricStore
from .tickets import TicketCache, TicketEnricher
from .timeline import TimelineResolver

logger = logging.getLogger(__name__)

OPENED = "opened"
MERGED = "merged"

_ONE_MILLISECOND = timedelta(milliseconds=1)


@dataclass(slots=True)
class DerivationResult:
    """Outcome of processing one webhook delivery."""

    status: str
    metric: Optional[PrMetric] = None

    @property
    def recorded(self) -> bool:
        return self.metric is not None


def compute_duration_ms(ready_at: datetime, merged_at: datetime) -> int:
    """Return ``merged_at - ready_at`` in whole milliseconds.

    Raises:
        DataValidationError: If the pull request appears to be merged before it was ready.
    """
    duration_ms = (merged_at - ready_at) // _ONE_MILLISECOND
    if duration_ms < 0:
        raise DataValidationError(
            f"Negative merge duration: ready_at={ready_at.isoformat()} "
            f"merged_at={merged_at.isoformat()}"
        )
    return duration_ms


def classify_event(payload: Mapping[str, Any]) -> Optional[str]:
    """Return ``OPENED``, ``MERGED`` or ``None`` for an irrelevant event."""
    pull_request = payload.get("pull_request")
    if not isinstance(pull_request, Mapping):
        return None

    action = payload.get("action")
    if action == "opened":
        return OPENED
    if action == "closed" and pull_request.get("merged") is True:
        return MERGED
    return None


def split_repo_full_name(full_name: Optional[str]) -> Tuple[str, str]:
    """Split ``owner/name`` into its two parts.

    Raises:
        DataValidationError: If the name is not exactly ``owner/name``.
    """
    owner, _, name = (full_name or "").partition("/")
    if not owner or not name or "/" in name:
        raise DataValidationError(f"Invalid repository full name: {full_name!r}")
    return owner, name


class MetricDeriver:
    """Combines timeline, review and ticket data into ``PrMetric`` records."""

    def __init__(
        self,
        github_client: GitHubClient,
        timeline_resolver: TimelineResolver,
        ticket_enricher: TicketEnricher,
        designated_reviewers: AbstractSet[str],
    ) -> None:
        self._github_client = github_client
        self._timeline_resolver = timeline_resolver
        self._ticket_enricher = ticket_enricher
        self._designated_reviewers = designated_reviewers

    def _review_statuses(self, owner: str, repo: str, pr_number: int) -> ReviewStatuses:
        try:
            reviews = self._github_client.list_reviews(owner, repo, pr_number)
        except ApiError as exc:
            logger.warning(
                "Review query failed; review tracks stay pending",
                extra={"repo": f"{owner}/{repo}", "pr_number": pr_number, "error": str(exc)},
            )
            return ReviewStatuses()
        return classify_reviews(reviews, self._designated_reviewers)

    def _apply_ticket(self, metric: PrMetric, body: Optional[str], cache: TicketCache) -> None:
        ticket_id, info = self._ticket_enricher.enrich(body, cache)
        metric.jira_ticket = ticket_id
        if info is not None:
            metric.priority = info.priority
            metric.due_date = info.due_date

    def derive_opened(self, repo_full_name: str, pr: PullRequest, cache: TicketCache) -> PrMetric:
        """Derive the partial record written when a pull request is opened."""
        metric = PrMetric(
            repo=repo_full_name,
            pr_number=pr.number,
            title=pr.title,
            author=pr.author,
            opened_at=pr.created_at,
            ready_at=None if pr.draft else pr.created_at,
        )
        self._apply_ticket(metric, pr.body, cache)
        return metric

    def derive_snapshot(self, owner: str, repo: str, pr: PullRequest, cache: TicketCache) -> PrMetric:
        """Derive the complete record for a pull request from its current state.

        Used for merge events and for backfills. A draft that is still open
        has no ready time yet; otherwise the ready time comes from the
        timeline, falling back to the opened time.

        Raises:
            DataValidationError: If the resolved ready time is after the merge time.
        """
        repo_full_name = f"{owner}/{repo}"
        metric = PrMetric(
            repo=repo_full_name,
            pr_number=pr.number,
            title=pr.title,
            author=pr.author,
            opened_at=pr.created_at,
        )

        if not (pr.draft and pr.merged_at is None):
            resolution = self._timeline_resolver.resolve_ready_at(owner, repo, pr.number)
            if resolution.outcome is ReadyAtOutcome.UNKNOWN:
                logger.warning(
                    "Falling back to opened time after timeline failure",
                    extra={"repo": repo_full_name, "pr_number": pr.number},
                )
            metric.ready_at = resolution.ready_at or pr.created_at
            metric.was_draft = resolution.found

        if pr.merged_at is not None:
            metric.merged_at = pr.merged_at
            if metric.ready_at is not None:
                metric.duration_ms = compute_duration_ms(metric.ready_at, pr.merged_at)

        statuses = self._review_statuses(owner, repo, pr.number)
        metric.qa_review = statuses.qa
        metric.dev_review = statuses.dev

        self._apply_ticket(metric, pr.body, cache)
        return metric

    def derive(self, payload: Mapping[str, Any], cache: Optional[TicketCache] = None) -> Optional[PrMetric]:
        """Derive a record from a webhook payload, or ``None`` for ignored events.

        Malformed events (no usable repository, missing pull request fields,
        a merge without ``merged_at``) are ignored like irrelevant ones.

        Raises:
            DataValidationError: If the merge would be recorded with a negative duration.
        """
        kind = classify_event(payload)
        if kind is None:
            return None

        repository = payload.get("repository")
        try:
            owner, repo = split_repo_full_name(
                repository.get("full_name") if isinstance(repository, Mapping) else None
            )
            pr = pull_request_from_payload(payload["pull_request"])
        except DataValidationError as exc:
            logger.warning("Ignoring malformed pull request event", extra={"error": str(exc)})
            return None

        if kind == MERGED and pr.merged_at is None:
            logger.warning(
                "Ignoring merged event without merged_at",
                extra={"repo": f"{owner}/{repo}", "pr_number": pr.number},
            )
            return None

        cache = cache if cache is not None else TicketCache()
        if kind == OPENED:
            return self.derive_opened(f"{owner}/{repo}", pr, cache)
        return self.derive_snapshot(owner, repo, pr, cache)

    def process_event(self, payload: Mapping[str, Any], store: MetricStore) -> DerivationResult:
        """Derive a record from a webhook payload and upsert it.

        Exactly one upsert happens per relevant event and none for ignored ones.

        Raises:
            DataValidationError: If the merge would be recorded with a negative duration.
            StoreError: If the upsert fails.
        """
        metric = self.derive(payload)
        if metric is None:
            logger.info(
                "Ignored webhook event",
                extra={"action": payload.get("action"), "has_pull_request": "pull_request" in payload},
            )
            return DerivationResult(status="ignored")

        store.upsert(metric)
        logger.info(
            "Recorded pull request metric",
            extra={
                "repo": metric.repo,
                "pr_number": metric.pr_number,
                "merged": metric.is_merged,
                "duration_ms": metric.duration_ms,
                "was_draft": metric.was_draft,
            },
        )
        return DerivationResult(status="recorded", metric=metric)
