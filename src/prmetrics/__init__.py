"""GitHub pull-request merge metrics: webhook ingestion, enrichment and analytics."""

__version__ = "0.1.0"
