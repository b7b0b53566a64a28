"""Tests for environment-based configuration loading."""

import sys
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from prmetrics.config import DEFAULT_DATABASE_URL, load_config
from prmetrics.errors import AuthenticationError, ConfigurationError

_ENV_VARS = (
    "GITHUB_WEBHOOK_SECRET",
    "GITHUB_TOKEN",
    "GITHUB_API_URL",
    "JIRA_BASE_URL",
    "JIRA_EMAIL",
    "JIRA_API_TOKEN",
    "DATABASE_URL",
    "QA_REVIEWERS",
    "HTTP_TIMEOUT_SECONDS",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_load_config_defaults():
    """Verify defaults apply when no optional variables are set."""
    config = load_config()

    assert config.database_url == DEFAULT_DATABASE_URL
    assert config.github_api_url == "https://api.github.com"
    assert config.designated_reviewers == frozenset()
    assert config.http_timeout_seconds == 30
    assert config.log_level == "INFO"
    assert config.jira_enabled is False


def test_load_config_reads_all_values(monkeypatch):
    """Verify every supported variable is read and normalized."""
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", " secret ")
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_token")
    monkeypatch.setenv("GITHUB_API_URL", "https://github.example.com/api/v3/")
    monkeypatch.setenv("JIRA_BASE_URL", "https://acme.atlassian.net/")
    monkeypatch.setenv("JIRA_EMAIL", "bot@acme.test")
    monkeypatch.setenv("JIRA_API_TOKEN", "jira-token")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("QA_REVIEWERS", "alice, bob,,carol ")
    monkeypatch.setenv("HTTP_TIMEOUT_SECONDS", "10")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = load_config(require_webhook_secret=True, require_github_token=True)

    assert config.webhook_secret == "secret"
    assert config.github_token == "ghp_token"
    assert config.github_api_url == "https://github.example.com/api/v3"
    assert config.jira_base_url == "https://acme.atlassian.net"
    assert config.jira_enabled is True
    assert config.database_url == "sqlite://"
    assert config.designated_reviewers == frozenset({"alice", "bob", "carol"})
    assert config.http_timeout_seconds == 10
    assert config.log_level == "DEBUG"


def test_load_config_missing_webhook_secret_raises_authentication_error():
    """Verify serving without a webhook secret is refused."""
    with pytest.raises(AuthenticationError):
        load_config(require_webhook_secret=True)


def test_load_config_missing_github_token_raises_authentication_error():
    """Verify backfilling without a GitHub token is refused."""
    with pytest.raises(AuthenticationError):
        load_config(require_github_token=True)


@pytest.mark.parametrize("timeout", ["0", "-5", "abc"])
def test_load_config_invalid_timeout_raises_configuration_error(monkeypatch, timeout):
    """Verify non-positive or non-integer timeouts are rejected."""
    monkeypatch.setenv("HTTP_TIMEOUT_SECONDS", timeout)

    with pytest.raises(ConfigurationError):
        load_config()


def test_load_config_invalid_log_level_raises_configuration_error(monkeypatch):
    """Verify unknown log levels are rejected."""
    monkeypatch.setenv("LOG_LEVEL", "chatty")

    with pytest.raises(ConfigurationError):
        load_config()


def test_load_config_blank_database_url_raises_configuration_error(monkeypatch):
    """Verify an explicitly blank database URL is rejected."""
    monkeypatch.setenv("DATABASE_URL", "   ")

    with pytest.raises(ConfigurationError):
        load_config()
