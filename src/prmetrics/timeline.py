"""Ready-for-review resolution from the GitHub issue timeline."""

from __future__ import annotations

import logging

from .errors import ApiError
from .github_client import GitHubClient
from .models import ReadyAtOutcome, ReadyAtResolution

logger = logging.getLogger(__name__)

READY_FOR_REVIEW_EVENT = "ready_for_review"


class TimelineResolver:
    """Determines when a pull request became ready for review."""

    def __init__(self, github_client: GitHubClient) -> None:
        self._github_client = github_client

    def resolve_ready_at(self, owner: str, repo: str, pr_number: int) -> ReadyAtResolution:
        """Return the time of the last ready-for-review transition of a pull request.

        Never raises. A failed query is reported as ``UNKNOWN`` so callers can
        tell it apart from a pull request that was never a draft
        (``NOT_FOUND``), even though both fall back to the opened time today.
        """
        try:
            events = self._github_client.list_timeline_events(owner, repo, pr_number)
        except (ApiError, ValueError) as exc:
            logger.warning(
                "Timeline query failed; ready time unknown",
                extra={"repo": f"{owner}/{repo}", "pr_number": pr_number, "error": str(exc)},
            )
            return ReadyAtResolution(outcome=ReadyAtOutcome.UNKNOWN)

        for event in reversed(events):
            if event.event == READY_FOR_REVIEW_EVENT and event.created_at is not None:
                return ReadyAtResolution(outcome=ReadyAtOutcome.FOUND, ready_at=event.created_at)

        logger.debug(
            "No ready_for_review event in timeline",
            extra={"repo": f"{owner}/{repo}", "pr_number": pr_number, "events": len(events)},
        )
        return ReadyAtResolution(outcome=ReadyAtOutcome.NOT_FOUND)
