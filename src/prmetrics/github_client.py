"""GitHub REST API client for pull request, review and timeline data."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import requests

from .config import Config
from .errors import ApiError, DataValidationError
from .models import PullRequest, Review, TimelineEvent

logger = logging.getLogger(__name__)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse GitHub ISO8601 timestamps into timezone-aware UTC datetimes."""
    if not value:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Expected an ISO8601 string, got {type(value).__name__}")

    normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def pull_request_from_payload(item: Mapping[str, Any]) -> PullRequest:
    """Build a ``PullRequest`` from a webhook ``pull_request`` object or a pulls API item.

    Raises:
        DataValidationError: If number, author or creation time are missing or malformed.
    """
    if not isinstance(item, Mapping):
        raise DataValidationError("Pull request payload is not an object")

    number = item.get("number")
    user = item.get("user") or {}
    login = user.get("login") if isinstance(user, Mapping) else None

    try:
        created_at = parse_timestamp(item.get("created_at"))
        merged_at = parse_timestamp(item.get("merged_at"))
    except (TypeError, ValueError) as exc:
        raise DataValidationError(
            f"Pull request payload has malformed timestamps: number={number}"
        ) from exc

    if number is None or not login or created_at is None:
        raise DataValidationError(
            f"Pull request payload is missing required fields: number={number}"
        )

    try:
        pr_number = int(number)
    except (TypeError, ValueError) as exc:
        raise DataValidationError(f"Pull request number is not an integer: {number!r}") from exc

    return PullRequest(
        number=pr_number,
        title=str(item.get("title") or ""),
        author=str(login),
        created_at=created_at,
        merged_at=merged_at,
        merged=item.get("merged") is True or (item.get("merged") is None and merged_at is not None),
        draft=bool(item.get("draft")),
        body=item.get("body"),
    )


class GitHubClient:
    """Small, typed client for the GitHub pulls, reviews and issue-timeline APIs."""

    _API_VERSION = "2022-11-28"
    _PAGE_SIZE = 100
    _MAX_RETRIES = 5
    _MAX_BACKOFF_SECONDS = 30

    def __init__(self, config: Config) -> None:
        """Initialize an authenticated GitHub API client.

        Args:
            config: Validated runtime configuration including the API token.
        """
        self._timeout_seconds = config.http_timeout_seconds
        self._base_url = config.github_api_url.rstrip("/")

        self._session = requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": self._API_VERSION,
            }
        )
        if config.github_token:
            self._session.headers["Authorization"] = f"Bearer {config.github_token}"

    def _build_url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _extract_backoff_seconds(self, response: requests.Response, attempt: int) -> int:
        """Compute exponential backoff seconds, honoring Retry-After when available."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                retry_after_seconds = int(retry_after_header)
                return min(self._MAX_BACKOFF_SECONDS, max(1, retry_after_seconds))
            except ValueError:
                pass

        return min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Execute a GET request with retry logic for 429/5xx responses.

        Raises:
            ApiError: If the request repeatedly fails, returns HTTP >= 400,
                or does not return valid JSON.
        """
        url = self._build_url(path)
        last_error: Optional[Exception] = None

        for attempt in range(1, self._MAX_RETRIES + 1):
            try:
                response = self._session.get(url, params=params, timeout=self._timeout_seconds)
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self._MAX_RETRIES:
                    raise ApiError(f"GitHub request failed after retries: GET {url}") from exc
                time.sleep(min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1)))
                continue

            status_code = response.status_code
            is_retryable = status_code == 429 or 500 <= status_code <= 599

            if is_retryable and attempt < self._MAX_RETRIES:
                time.sleep(self._extract_backoff_seconds(response, attempt))
                continue

            if status_code >= 400:
                raise ApiError(
                    f"GitHub API request failed: GET {url} returned {status_code} - {response.text}"
                )

            try:
                return response.json()
            except ValueError as exc:
                raise ApiError(f"GitHub API returned invalid JSON: GET {url}") from exc

        raise ApiError(f"GitHub request failed after retries: GET {url}") from last_error

    def _get_page(self, path: str, page: int, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        query = dict(params or {})
        query["per_page"] = self._PAGE_SIZE
        query["page"] = page

        payload = self._get_json(path, params=query)
        if not isinstance(payload, list):
            raise ApiError(f"GitHub API returned unexpected payload shape: GET {path}")
        return payload

    def _get_all_pages(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Collect every page of a list endpoint until a short page is returned."""
        items: List[Dict[str, Any]] = []
        page = 1

        while True:
            page_items = self._get_page(path, page, params)
            items.extend(page_items)
            if len(page_items) < self._PAGE_SIZE:
                break
            page += 1

        return items

    def list_timeline_events(self, owner: str, repo: str, pr_number: int) -> List[TimelineEvent]:
        """List issue timeline events for a pull request, oldest first."""
        items = self._get_all_pages(f"repos/{owner}/{repo}/issues/{pr_number}/timeline")
        events: List[TimelineEvent] = []

        for item in items:
            if not isinstance(item, dict):
                raise ApiError(f"GitHub timeline contains a non-object item: {owner}/{repo}#{pr_number}")
            kind = item.get("event")
            if not kind:
                continue
            try:
                created_at = parse_timestamp(item.get("created_at"))
            except ValueError as exc:
                raise ApiError(f"GitHub timeline has a malformed timestamp: {owner}/{repo}#{pr_number}") from exc
            events.append(TimelineEvent(event=str(kind), created_at=created_at))

        return events

    def list_reviews(self, owner: str, repo: str, pr_number: int) -> List[Review]:
        """List submitted reviews for a pull request in API order."""
        items = self._get_all_pages(f"repos/{owner}/{repo}/pulls/{pr_number}/reviews")
        reviews: List[Review] = []

        for item in items:
            if not isinstance(item, dict):
                raise ApiError(f"GitHub reviews contain a non-object item: {owner}/{repo}#{pr_number}")
            user = item.get("user") or {}
            login = user.get("login") if isinstance(user, dict) else None
            state = item.get("state")
            if not login or not state:
                continue
            try:
                submitted_at = parse_timestamp(item.get("submitted_at"))
            except ValueError as exc:
                raise ApiError(f"GitHub review has a malformed timestamp: {owner}/{repo}#{pr_number}") from exc
            reviews.append(Review(reviewer=str(login), state=str(state), submitted_at=submitted_at))

        return reviews

    def list_pull_requests(self, owner: str, repo: str, since: Optional[datetime]) -> List[PullRequest]:
        """List pull requests created at or after ``since`` (all states), newest first.

        Results are requested sorted by creation time descending, so paging
        stops at the first page that reaches past ``since``.
        """
        path = f"repos/{owner}/{repo}/pulls"
        params = {"state": "all", "sort": "created", "direction": "desc"}
        pull_requests: List[PullRequest] = []
        page = 1

        while True:
            page_items = self._get_page(path, page, params)
            reached_window_start = False

            for item in page_items:
                try:
                    pull_request = pull_request_from_payload(item)
                except DataValidationError as exc:
                    raise ApiError(f"GitHub pull request payload is invalid: {owner}/{repo}") from exc

                if since is not None and pull_request.created_at < since:
                    reached_window_start = True
                    continue
                pull_requests.append(pull_request)

            if reached_window_start or len(page_items) < self._PAGE_SIZE:
                break
            page += 1

        logger.debug(
            "Listed pull requests",
            extra={"repo": f"{owner}/{repo}", "count": len(pull_requests)},
        )
        return pull_requests
