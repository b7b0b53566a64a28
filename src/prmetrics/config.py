"""Configuration parsing and validation for the PR merge metrics service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet

from .errors import AuthenticationError, ConfigurationError

DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_DATABASE_URL = "sqlite:///pr_metrics.db"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Validated runtime settings shared by the webhook, backfill and report commands."""

    webhook_secret: str = ""
    github_token: str = ""
    github_api_url: str = DEFAULT_GITHUB_API_URL
    jira_base_url: str = ""
    jira_email: str = ""
    jira_api_token: str = ""
    database_url: str = DEFAULT_DATABASE_URL
    designated_reviewers: FrozenSet[str] = field(default_factory=frozenset)
    http_timeout_seconds: int = 30
    log_level: str = "INFO"

    @property
    def jira_enabled(self) -> bool:
        """Whether enough Jira settings exist to perform ticket lookups."""
        return bool(self.jira_base_url and self.jira_email and self.jira_api_token)


def _parse_reviewers(raw: str) -> FrozenSet[str]:
    """Split a comma-separated reviewer list into a set of logins."""
    return frozenset(login.strip() for login in raw.split(",") if login.strip())


def _parse_timeout(raw: str) -> int:
    try:
        timeout = int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            "Invalid value for 'HTTP_TIMEOUT_SECONDS': expected an integer."
        ) from exc

    if timeout <= 0:
        raise ConfigurationError(
            "Invalid value for 'HTTP_TIMEOUT_SECONDS': expected an integer greater than 0."
        )
    return timeout


def load_config(
    require_webhook_secret: bool = False,
    require_github_token: bool = False,
) -> Config:
    """Build and validate application configuration from the environment.

    The environment is read exactly once here; components receive the
    resulting ``Config`` instead of reading variables themselves.

    Args:
        require_webhook_secret: Fail when ``GITHUB_WEBHOOK_SECRET`` is unset.
        require_github_token: Fail when ``GITHUB_TOKEN`` is unset.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If a value is malformed or ``DATABASE_URL`` is blank.
        AuthenticationError: If a required secret or token is not configured.
    """
    webhook_secret = os.getenv("GITHUB_WEBHOOK_SECRET", "").strip()
    if require_webhook_secret and not webhook_secret:
        raise AuthenticationError(
            "Missing required GitHub webhook secret. "
            "Set the 'GITHUB_WEBHOOK_SECRET' environment variable before starting the server."
        )

    github_token = os.getenv("GITHUB_TOKEN", "").strip()
    if require_github_token and not github_token:
        raise AuthenticationError(
            "Missing required GitHub token. "
            "Set the 'GITHUB_TOKEN' environment variable before running the backfill."
        )

    database_url = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL).strip()
    if not database_url:
        raise ConfigurationError("Invalid value for 'DATABASE_URL': expected a non-empty URL.")

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    if log_level not in _LOG_LEVELS:
        raise ConfigurationError(
            f"Invalid value for 'LOG_LEVEL': expected one of {', '.join(_LOG_LEVELS)}."
        )

    return Config(
        webhook_secret=webhook_secret,
        github_token=github_token,
        github_api_url=os.getenv("GITHUB_API_URL", DEFAULT_GITHUB_API_URL).strip().rstrip("/")
        or DEFAULT_GITHUB_API_URL,
        jira_base_url=os.getenv("JIRA_BASE_URL", "").strip().rstrip("/"),
        jira_email=os.getenv("JIRA_EMAIL", "").strip(),
        jira_api_token=os.getenv("JIRA_API_TOKEN", "").strip(),
        database_url=database_url,
        designated_reviewers=_parse_reviewers(os.getenv("QA_REVIEWERS", "")),
        http_timeout_seconds=_parse_timeout(os.getenv("HTTP_TIMEOUT_SECONDS", "30").strip() or "30"),
        log_level=log_level,
    )
