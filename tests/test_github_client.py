"""Tests for GitHub API client behavior with mocked HTTP."""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import requests

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from prmetrics.config import Config
from prmetrics.errors import ApiError, DataValidationError
from prmetrics.github_client import GitHubClient, parse_timestamp, pull_request_from_payload


def _build_client() -> GitHubClient:
    config = Config(github_token="ghp-token", http_timeout_seconds=5)
    return GitHubClient(config=config)


def _response(status_code: int, payload=None, text: str = "", headers: dict | None = None):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    response.json.return_value = payload if payload is not None else []
    return response


def _pr_item(number: int, created_at: str = "2026-01-10T09:00:00Z", **overrides) -> dict:
    item = {
        "number": number,
        "title": f"PR {number}",
        "user": {"login": "octocat"},
        "created_at": created_at,
        "merged_at": None,
        "draft": False,
        "body": None,
    }
    item.update(overrides)
    return item


def test_client_sets_authorization_and_api_headers():
    """Verify the session carries bearer auth and GitHub API version headers."""
    client = _build_client()

    assert client._session.headers["Authorization"] == "Bearer ghp-token"
    assert client._session.headers["Accept"] == "application/vnd.github+json"
    assert client._session.headers["X-GitHub-Api-Version"] == "2022-11-28"


def test_client_without_token_sends_no_authorization():
    """Verify unauthenticated clients omit the Authorization header."""
    client = GitHubClient(config=Config())

    assert "Authorization" not in client._session.headers


def test_parse_timestamp_handles_zulu_and_offsets():
    """Verify timestamps are parsed to timezone-aware UTC datetimes."""
    assert parse_timestamp("2026-01-01T10:00:00Z") == datetime(2026, 1, 1, 10, tzinfo=timezone.utc)
    assert parse_timestamp("2026-01-01T12:00:00+02:00") == datetime(2026, 1, 1, 10, tzinfo=timezone.utc)
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None


def test_pull_request_from_payload_maps_fields():
    """Verify webhook pull request objects are mapped into PullRequest models."""
    pr = pull_request_from_payload(
        _pr_item(
            12,
            merged_at="2026-01-11T09:00:00Z",
            merged=True,
            draft=True,
            body="Related Jira issue: ABC-1",
        )
    )

    assert pr.number == 12
    assert pr.author == "octocat"
    assert pr.created_at == datetime(2026, 1, 10, 9, tzinfo=timezone.utc)
    assert pr.merged_at == datetime(2026, 1, 11, 9, tzinfo=timezone.utc)
    assert pr.merged is True
    assert pr.draft is True
    assert pr.body == "Related Jira issue: ABC-1"


def test_pull_request_from_payload_infers_merged_from_merged_at():
    """Verify pulls API items without a merged flag are merged when merged_at is set."""
    pr = pull_request_from_payload(_pr_item(3, merged_at="2026-01-11T09:00:00Z"))

    assert pr.merged is True


@pytest.mark.parametrize(
    "item",
    [
        {"title": "no number", "user": {"login": "a"}, "created_at": "2026-01-01T00:00:00Z"},
        {"number": 1, "user": {}, "created_at": "2026-01-01T00:00:00Z"},
        {"number": 1, "user": {"login": "a"}},
        {"number": 1, "user": {"login": "a"}, "created_at": "yesterday"},
        {"number": "abc", "user": {"login": "a"}, "created_at": "2026-01-01T00:00:00Z"},
        {"number": 1, "user": "octocat", "created_at": "2026-01-01T00:00:00Z"},
        {"number": 1, "user": {"login": "a"}, "created_at": 1767225600},
    ],
)
def test_pull_request_from_payload_rejects_incomplete_items(item):
    """Verify missing or malformed required fields raise DataValidationError."""
    with pytest.raises(DataValidationError):
        pull_request_from_payload(item)


def test_get_json_retries_on_429_and_succeeds():
    """Verify _get_json retries after HTTP 429 and eventually returns JSON payload."""
    client = _build_client()
    first = _response(429, headers={"Retry-After": "1"})
    second = _response(200, payload=[{"event": "labeled"}])

    client._session.get = Mock(side_effect=[first, second])

    with patch("prmetrics.github_client.time.sleep") as sleep_mock:
        payload = client._get_json("repos/o/r/issues/1/timeline")

    assert payload == [{"event": "labeled"}]
    assert client._session.get.call_count == 2
    sleep_mock.assert_called_once_with(1)


def test_get_json_raises_after_max_5xx_retries():
    """Verify _get_json gives up with ApiError after persistent server errors."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(503, text="unavailable"))

    with patch("prmetrics.github_client.time.sleep") as sleep_mock:
        with pytest.raises(ApiError):
            client._get_json("repos/o/r/pulls")

    assert client._session.get.call_count == GitHubClient._MAX_RETRIES
    assert sleep_mock.call_count == GitHubClient._MAX_RETRIES - 1


def test_get_json_does_not_retry_client_errors():
    """Verify a 404 fails immediately without retries."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(404, text="Not Found"))

    with patch("prmetrics.github_client.time.sleep") as sleep_mock:
        with pytest.raises(ApiError):
            client._get_json("repos/o/r/pulls/9/reviews")

    assert client._session.get.call_count == 1
    sleep_mock.assert_not_called()


def test_get_json_retries_on_connection_errors():
    """Verify transport failures are retried with exponential backoff."""
    client = _build_client()
    client._session.get = Mock(
        side_effect=[requests.ConnectionError("reset"), _response(200, payload=[])]
    )

    with patch("prmetrics.github_client.time.sleep") as sleep_mock:
        payload = client._get_json("repos/o/r/pulls")

    assert payload == []
    sleep_mock.assert_called_once_with(1)


def test_get_json_invalid_json_raises_api_error():
    """Verify a non-JSON body is reported as ApiError."""
    client = _build_client()
    response = _response(200)
    response.json.side_effect = ValueError("not json")
    client._session.get = Mock(return_value=response)

    with pytest.raises(ApiError):
        client._get_json("repos/o/r/pulls")


def test_extract_backoff_seconds_caps_retry_after():
    """Verify Retry-After is honored but capped, with exponential fallback."""
    client = _build_client()

    assert client._extract_backoff_seconds(_response(429, headers={"Retry-After": "120"}), 1) == 30
    assert client._extract_backoff_seconds(_response(429, headers={"Retry-After": "soon"}), 3) == 4
    assert client._extract_backoff_seconds(_response(503), 1) == 1


def test_list_timeline_events_paginates_until_short_page():
    """Verify timeline events are collected across pages."""
    client = _build_client()
    full_page = [{"event": "commented", "created_at": "2026-01-01T00:00:00Z"}] * GitHubClient._PAGE_SIZE
    last_page = [
        {"event": "ready_for_review", "created_at": "2026-01-02T00:00:00Z"},
        {"created_at": "2026-01-03T00:00:00Z"},
    ]
    client._get_json = Mock(side_effect=[full_page, last_page])

    events = client.list_timeline_events("o", "r", 5)

    assert len(events) == GitHubClient._PAGE_SIZE + 1
    assert events[-1].event == "ready_for_review"
    assert events[-1].created_at == datetime(2026, 1, 2, tzinfo=timezone.utc)
    first_call, second_call = client._get_json.call_args_list
    assert first_call.kwargs["params"]["page"] == 1
    assert second_call.kwargs["params"]["page"] == 2
    assert second_call.kwargs["params"]["per_page"] == GitHubClient._PAGE_SIZE


def test_list_reviews_skips_items_without_login_or_state():
    """Verify reviews lacking a reviewer or state are ignored."""
    client = _build_client()
    client._get_json = Mock(
        return_value=[
            {"user": {"login": "qa-1"}, "state": "APPROVED", "submitted_at": "2026-01-02T00:00:00Z"},
            {"user": None, "state": "APPROVED"},
            {"user": {"login": "dev-1"}, "state": None},
        ]
    )

    reviews = client.list_reviews("o", "r", 5)

    assert len(reviews) == 1
    assert reviews[0].reviewer == "qa-1"
    assert reviews[0].state == "APPROVED"


def test_list_page_with_unexpected_shape_raises_api_error():
    """Verify a non-list page payload raises ApiError."""
    client = _build_client()
    client._get_json = Mock(return_value={"message": "oops"})

    with pytest.raises(ApiError):
        client.list_reviews("o", "r", 5)


def test_list_pull_requests_stops_at_window_start():
    """Verify paging stops once pull requests older than the window are reached."""
    client = _build_client()
    since = datetime(2026, 1, 5, tzinfo=timezone.utc)
    page = [
        _pr_item(3, created_at="2026-01-07T00:00:00Z"),
        _pr_item(2, created_at="2026-01-05T00:00:00Z"),
        _pr_item(1, created_at="2026-01-04T23:59:59Z"),
    ] + [_pr_item(0, created_at="2026-01-01T00:00:00Z")] * (GitHubClient._PAGE_SIZE - 3)
    client._get_json = Mock(return_value=page)

    pull_requests = client.list_pull_requests("o", "r", since=since)

    assert [pr.number for pr in pull_requests] == [3, 2]
    client._get_json.assert_called_once()
    params = client._get_json.call_args.kwargs["params"]
    assert params["state"] == "all"
    assert params["sort"] == "created"
    assert params["direction"] == "desc"


def test_list_pull_requests_invalid_item_raises_api_error():
    """Verify malformed pull request items surface as ApiError."""
    client = _build_client()
    client._get_json = Mock(return_value=[{"number": 1}])

    with pytest.raises(ApiError):
        client.list_pull_requests("o", "r", since=None)


def test_pull_request_from_payload_rejects_non_object():
    """Verify a pull request that is not a JSON object raises DataValidationError."""
    with pytest.raises(DataValidationError):
        pull_request_from_payload(["not", "an", "object"])


@pytest.mark.parametrize(
    "items",
    [
        ["ready_for_review"],
        [{"event": "ready_for_review", "created_at": 1767225600}],
    ],
)
def test_list_timeline_events_malformed_items_raise_api_error(items):
    """Verify non-object items and non-string timestamps surface as ApiError."""
    client = _build_client()
    client._get_json = Mock(return_value=items)

    with pytest.raises(ApiError):
        client.list_timeline_events("o", "r", 5)


@pytest.mark.parametrize(
    "items",
    [
        [None],
        [{"user": {"login": "qa-1"}, "state": "APPROVED", "submitted_at": ["2026"]}],
    ],
)
def test_list_reviews_malformed_items_raise_api_error(items):
    """Verify malformed review items surface as ApiError."""
    client = _build_client()
    client._get_json = Mock(return_value=items)

    with pytest.raises(ApiError):
        client.list_reviews("o", "r", 5)
