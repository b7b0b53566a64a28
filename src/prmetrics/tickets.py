"""Jira ticket extraction and priority/due-date enrichment.

Business logic:
- A ticket key is taken from the pull request body, optionally preceded by
  ``Related Jira issue:``; the first match wins.
- Jira priority names map case-insensitively onto the internal 5-level scale.
  ``critical`` and ``blocker`` both map to ``highest``; anything unknown or
  absent maps to ``medium``.
- A Jira due date (``YYYY-MM-DD``) becomes 17:00 UTC on that day.
- Lookups are memoized in a ``TicketCache`` owned by the caller, so one
  backfill run or one webhook request never asks Jira twice for a ticket.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import ApiError
from .jira_client import JiraClient
from .models import Priority, TicketInfo

logger = logging.getLogger(__name__)

TICKET_PATTERN = re.compile(r"(?:Related Jira issue:\s*)?([A-Z][A-Z0-9]+-\d+)")

JIRA_PRIORITY_MAP: Dict[str, Priority] = {
    "lowest": Priority.LOWEST,
    "low": Priority.LOW,
    "medium": Priority.MEDIUM,
    "high": Priority.HIGH,
    "highest": Priority.HIGHEST,
    "critical": Priority.HIGHEST,
    "blocker": Priority.HIGHEST,
}

DEFAULT_PRIORITY = Priority.MEDIUM
DUE_TIME = time(17, 0)
DUE_TIMEZONE = timezone.utc


def extract_ticket_ref(text: Optional[str]) -> Optional[str]:
    """Return the first Jira ticket key found in ``text``, if any."""
    if not text:
        return None

    match = TICKET_PATTERN.search(text)
    return match.group(1) if match else None


def map_priority(name: Optional[str]) -> Priority:
    """Map a Jira priority name onto the internal priority scale."""
    if not name:
        return DEFAULT_PRIORITY
    return JIRA_PRIORITY_MAP.get(name.strip().lower(), DEFAULT_PRIORITY)


def normalize_due_date(value: Optional[str]) -> Optional[datetime]:
    """Convert a Jira ``YYYY-MM-DD`` due date into an end-of-business-day timestamp."""
    if not value:
        return None

    try:
        due_day = date.fromisoformat(value.strip()[:10])
    except ValueError:
        logger.warning("Ignoring unparseable Jira due date", extra={"due_date": value})
        return None

    return datetime.combine(due_day, DUE_TIME, tzinfo=DUE_TIMEZONE)


def ticket_info_from_fields(fields: Mapping[str, Any]) -> TicketInfo:
    """Map a Jira issue ``fields`` object into a ``TicketInfo``."""
    priority = fields.get("priority") or {}
    priority_name = priority.get("name") if isinstance(priority, dict) else None
    return TicketInfo(
        priority=map_priority(priority_name),
        due_date=normalize_due_date(fields.get("duedate")),
    )


class TicketCache:
    """Per-run memo of ticket lookups, including failed ones (stored as ``None``)."""

    def __init__(self) -> None:
        self._entries: Dict[str, Optional[TicketInfo]] = {}

    def __contains__(self, ticket_id: object) -> bool:
        return ticket_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, ticket_id: str) -> Optional[TicketInfo]:
        return self._entries.get(ticket_id)

    def put(self, ticket_id: str, info: Optional[TicketInfo]) -> None:
        self._entries[ticket_id] = info


class TicketEnricher:
    """Resolves ticket references in free text to priority and due date."""

    def __init__(self, jira_client: Optional[JiraClient]) -> None:
        """
        Args:
            jira_client: Client used for lookups, or ``None`` to only extract
                ticket keys without contacting Jira.
        """
        self._jira_client = jira_client

    def lookup(self, ticket_id: str, cache: TicketCache) -> Optional[TicketInfo]:
        """Look up a ticket, absorbing any Jira failure as ``None``."""
        if ticket_id in cache:
            return cache.get(ticket_id)

        if self._jira_client is None:
            return None

        try:
            fields = self._jira_client.get_issue_fields(ticket_id)
        except ApiError as exc:
            logger.warning(
                "Jira lookup failed; using default priority",
                extra={"jira_ticket": ticket_id, "error": str(exc)},
            )
            cache.put(ticket_id, None)
            return None

        info = ticket_info_from_fields(fields)
        cache.put(ticket_id, info)
        logger.info(
            "Resolved Jira ticket",
            extra={
                "jira_ticket": ticket_id,
                "priority": info.priority.value,
                "due_date": info.due_date.isoformat() if info.due_date else None,
            },
        )
        return info

    def enrich(self, text: Optional[str], cache: TicketCache) -> Tuple[Optional[str], Optional[TicketInfo]]:
        """Extract a ticket key from ``text`` and look it up.

        Returns:
            ``(ticket_id, info)``; either may be ``None``.
        """
        ticket_id = extract_ticket_ref(text)
        if ticket_id is None:
            return None, None
        return ticket_id, self.lookup(ticket_id, cache)
