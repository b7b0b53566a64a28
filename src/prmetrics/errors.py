"""Custom exception types for the PR merge metrics service."""


class PrMetricsError(Exception):
    """Base exception for all recoverable PR metrics errors."""


class ConfigurationError(PrMetricsError):
    """Raised when runtime configuration values are missing or invalid."""


class AuthenticationError(PrMetricsError):
    """Raised when GitHub or Jira credentials are unavailable or invalid."""


class ApiError(PrMetricsError):
    """Raised when a GitHub or Jira API request fails or returns an unexpected response."""


class DataValidationError(PrMetricsError):
    """Raised when webhook payloads or derived metrics do not meet expected constraints."""


class StoreError(PrMetricsError):
    """Raised when the metric store cannot persist or read records."""
