"""Domain models for GitHub pull request merge metrics.

These dataclasses intentionally model only the subset of GitHub and Jira
payload fields that are required for metric derivation and aggregation.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Priority(str, Enum):
    """Fixed internal priority scale; Jira names are mapped onto it."""

    LOWEST = "lowest"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    HIGHEST = "highest"


# Highest first, the order used by dashboards and reports.
PRIORITY_ORDER = (
    Priority.HIGHEST,
    Priority.HIGH,
    Priority.MEDIUM,
    Priority.LOW,
    Priority.LOWEST,
)


class ReviewStatus(str, Enum):
    """Current state of one review track."""

    PENDING = "pending"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"


class ReadyAtOutcome(str, Enum):
    """How the ready-for-review time of a pull request was determined."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class PullRequest:
    """Represents the pull request fields shared by webhook payloads and the pulls API."""

    number: int
    title: str
    author: str
    created_at: datetime
    merged_at: Optional[datetime] = None
    merged: bool = False
    draft: bool = False
    body: Optional[str] = None


@dataclass(slots=True)
class TimelineEvent:
    """Represents one entry of an issue timeline."""

    event: str
    created_at: Optional[datetime]


@dataclass(slots=True)
class Review:
    """Represents one submitted code review."""

    reviewer: str
    state: str
    submitted_at: Optional[datetime]


@dataclass(slots=True)
class ReviewStatuses:
    """Represents the reduced status of the designated (QA) and general (dev) review tracks."""

    qa: ReviewStatus = ReviewStatus.PENDING
    dev: ReviewStatus = ReviewStatus.PENDING


@dataclass(slots=True)
class TicketInfo:
    """Represents the Jira fields mapped into the internal vocabulary."""

    priority: Priority = Priority.MEDIUM
    due_date: Optional[datetime] = None


@dataclass(slots=True)
class ReadyAtResolution:
    """Result of a timeline lookup; ``ready_at`` is only set when ``outcome`` is FOUND."""

    outcome: ReadyAtOutcome
    ready_at: Optional[datetime] = None

    @property
    def found(self) -> bool:
        return self.outcome is ReadyAtOutcome.FOUND


@dataclass(slots=True)
class PrMetric:
    """One persisted merge metric row, identified by ``(repo, pr_number)``.

    ``None`` means "not determined by this event". The store never overwrites
    an existing column with ``None`` and falls back to the column default on
    insert.
    """

    repo: str
    pr_number: int
    title: str
    author: str
    opened_at: datetime
    ready_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    was_draft: Optional[bool] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    qa_review: Optional[ReviewStatus] = None
    dev_review: Optional[ReviewStatus] = None
    jira_ticket: Optional[str] = None

    @property
    def is_merged(self) -> bool:
        return self.merged_at is not None

    def supplied_fields(self) -> Dict[str, Any]:
        """Return the columns this record determines, with enums flattened to strings."""
        row: Dict[str, Any] = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            row[key] = value.value if isinstance(value, Enum) else value
        return row

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly representation with ISO-8601 timestamps."""
        payload: Dict[str, Any] = {}
        for key, value in asdict(self).items():
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            payload[key] = value
        return payload


@dataclass(slots=True)
class MetricFilter:
    """Dashboard query filters; the date range applies to ``opened_at``."""

    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    author: Optional[str] = None
    repo: Optional[str] = None
    priority: Optional[Priority] = None
