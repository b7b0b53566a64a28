"""HTTP surface: GitHub webhook receiver and dashboard JSON API."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from starlette.concurrency import run_in_threadpool

from .config import Config
from .derive import MetricDeriver
from .errors import DataValidationError, StoreError
from .models import MetricFilter, Priority
from .signature import SIGNATURE_HEADER, verify_signature
from .stats import build_dashboard
from .store import MetricStore

logger = logging.getLogger(__name__)

DEFAULT_RANGE_DAYS = 30


def get_config(request: Request) -> Config:
    return request.app.state.config


def get_deriver(request: Request) -> MetricDeriver:
    return request.app.state.deriver


def get_store(request: Request) -> MetricStore:
    return request.app.state.store


def resolve_date_range(
    date_from: Optional[date],
    date_to: Optional[date],
    today: Optional[date] = None,
) -> Tuple[datetime, datetime]:
    """Turn optional calendar dates into an inclusive UTC ``opened_at`` range.

    Defaults to the trailing 30 days; ``date_to`` covers the whole day.
    """
    today = today or datetime.now(timezone.utc).date()
    end_day = date_to or today
    start_day = date_from or (end_day - timedelta(days=DEFAULT_RANGE_DAYS))
    start = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(end_day, time(23, 59, 59), tzinfo=timezone.utc)
    return start, end


def _metric_filter(
    date_from: Optional[date] = Query(None, description="First opened day (UTC), default 30 days ago."),
    date_to: Optional[date] = Query(None, description="Last opened day (UTC), default today."),
    author: Optional[str] = Query(None, description="Only pull requests by this author."),
    repo: Optional[str] = Query(None, description="Only pull requests in this owner/name repository."),
    priority: Optional[Priority] = Query(None, description="Only pull requests with this priority."),
) -> MetricFilter:
    start, end = resolve_date_range(date_from, date_to)
    return MetricFilter(
        date_from=start,
        date_to=end,
        author=author or None,
        repo=repo or None,
        priority=priority,
    )


def create_app(config: Config, deriver: MetricDeriver, store: MetricStore) -> FastAPI:
    """Build the FastAPI application around already-constructed components."""
    app = FastAPI(
        title="PR Merge Metrics",
        description="Records GitHub pull request merge metrics and serves dashboard aggregates.",
        version="0.1.0",
    )
    app.state.config = config
    app.state.deriver = deriver
    app.state.store = store

    @app.get("/healthz", tags=["health"])
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/webhooks/github", tags=["webhooks"])
    async def handle_github_webhook(
        request: Request,
        x_hub_signature_256: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
        config: Config = Depends(get_config),
        deriver: MetricDeriver = Depends(get_deriver),
        store: MetricStore = Depends(get_store),
    ) -> Dict[str, Any]:
        """Receive a GitHub pull request event and record its metric.

        Returns 401 for a bad signature, 400 for a non-JSON body, 200 for
        ignored and recorded events, 422 for a negative merge duration and 500
        when the metric cannot be persisted. Nothing is retried here; GitHub
        owns redelivery.
        """
        body = await request.body()

        if not verify_signature(body, x_hub_signature_256, config.webhook_secret):
            logger.warning("Webhook signature verification failed", extra={"body_length": len(body)})
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc

        if not isinstance(payload, dict):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

        try:
            result = await run_in_threadpool(deriver.process_event, payload, store)
        except DataValidationError as exc:
            logger.warning("Rejected webhook payload", extra={"error": str(exc)})
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
        except StoreError as exc:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error") from exc

        if result.metric is None:
            return {"message": "Ignored"}

        return {
            "message": "Recorded",
            "repo": result.metric.repo,
            "pr_number": result.metric.pr_number,
            "duration_ms": result.metric.duration_ms,
        }

    @app.get("/api/metrics", tags=["dashboard"])
    def list_metrics(
        filters: MetricFilter = Depends(_metric_filter),
        store: MetricStore = Depends(get_store),
    ) -> Dict[str, Any]:
        try:
            records = store.query(filters)
        except StoreError as exc:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error") from exc
        return {"count": len(records), "items": [record.to_dict() for record in records]}

    @app.get("/api/dashboard", tags=["dashboard"])
    def dashboard(
        filters: MetricFilter = Depends(_metric_filter),
        store: MetricStore = Depends(get_store),
    ) -> Dict[str, Any]:
        try:
            records = store.query(filters)
        except StoreError as exc:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error") from exc
        return build_dashboard(records)

    @app.get("/api/filters", tags=["dashboard"])
    def filter_options(
        filters: MetricFilter = Depends(_metric_filter),
        store: MetricStore = Depends(get_store),
    ) -> Dict[str, Any]:
        try:
            authors, repos = store.distinct_authors_and_repos(filters.date_from, filters.date_to)
        except StoreError as exc:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error") from exc
        return {"authors": authors, "repos": repos}

    return app
