"""Jira REST API client for ticket priority and due date retrieval."""

from __future__ import annotations

from typing import Any, Dict

import requests
from requests.auth import HTTPBasicAuth

from .config import Config
from .errors import ApiError, ConfigurationError


class JiraClient:
    """Minimal Jira Cloud client that reads the fields used for enrichment."""

    _FIELDS = "priority,duedate"

    def __init__(self, config: Config) -> None:
        """Initialize an authenticated Jira API client.

        Raises:
            ConfigurationError: If the Jira base URL or credentials are missing.
        """
        if not config.jira_enabled:
            raise ConfigurationError(
                "Jira lookups require 'JIRA_BASE_URL', 'JIRA_EMAIL' and 'JIRA_API_TOKEN'."
            )

        self._timeout_seconds = config.http_timeout_seconds
        self._base_url = config.jira_base_url.rstrip("/")

        self._session = requests.Session()
        self._session.auth = HTTPBasicAuth(config.jira_email, config.jira_api_token)
        self._session.headers.update({"Accept": "application/json"})

    def get_issue_fields(self, ticket_id: str) -> Dict[str, Any]:
        """Fetch the ``fields`` object of a Jira issue restricted to priority and due date.

        Raises:
            ApiError: If the request fails, returns HTTP >= 400, or the payload is malformed.
        """
        url = f"{self._base_url}/rest/api/3/issue/{ticket_id}"

        try:
            response = self._session.get(
                url,
                params={"fields": self._FIELDS},
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as exc:
            raise ApiError(f"Jira request failed: GET {url}") from exc

        if response.status_code >= 400:
            raise ApiError(f"Jira API request failed: GET {url} returned {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise ApiError(f"Jira API returned invalid JSON: GET {url}") from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("fields"), dict):
            raise ApiError(f"Jira API returned unexpected payload shape: GET {url}")

        return payload["fields"]
