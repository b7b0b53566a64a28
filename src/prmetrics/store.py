"""SQL persistence for pull request metrics, keyed by ``(repo, pr_number)``."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    case,
    create_engine,
    func,
    select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .errors import StoreError
from .models import MetricFilter, PrMetric, Priority, ReviewStatus

logger = logging.getLogger(__name__)

metadata = MetaData()

pr_metrics = Table(
    "pr_metrics",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("repo", Text, nullable=False),
    Column("pr_number", Integer, nullable=False),
    Column("title", Text, nullable=False),
    Column("author", Text, nullable=False),
    Column("opened_at", DateTime(timezone=True), nullable=False),
    Column("ready_at", DateTime(timezone=True)),
    Column("merged_at", DateTime(timezone=True)),
    Column("duration_ms", BigInteger),
    Column("was_draft", Boolean, nullable=False, default=False, server_default="0"),
    Column("priority", String(16), nullable=False, default="medium", server_default="medium"),
    Column("due_date", DateTime(timezone=True)),
    Column("qa_review", String(32), nullable=False, default="pending", server_default="pending"),
    Column("dev_review", String(32), nullable=False, default="pending", server_default="pending"),
    Column("jira_ticket", Text),
    UniqueConstraint("repo", "pr_number", name="uq_pr_metrics_repo_pr_number"),
)

# Columns that are set once and must survive later upserts.
_WRITE_ONCE_COLUMNS = ("opened_at", "merged_at")
# Settled by the first merge; later events cannot move them.
_MERGE_SETTLED_COLUMNS = ("ready_at", "duration_ms", "was_draft")
_IDENTITY_COLUMNS = ("repo", "pr_number")


def create_store_engine(database_url: str) -> Engine:
    """Create an engine for ``database_url``.

    In-memory SQLite databases share one connection so every thread sees the
    same data.
    """
    url = make_url(database_url)
    engine_kwargs: Dict[str, Any] = {"pool_pre_ping": True}

    if url.get_backend_name() == "sqlite":
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            engine_kwargs["poolclass"] = StaticPool

    return create_engine(url, **engine_kwargs)


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _dialect_insert(dialect_name: str):
    """Return the ``insert`` construct supporting ``ON CONFLICT`` for a dialect."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise StoreError(f"Unsupported database dialect for upserts: {dialect_name}")
    return insert


def _row_to_metric(row: Any) -> PrMetric:
    return PrMetric(
        repo=row.repo,
        pr_number=row.pr_number,
        title=row.title,
        author=row.author,
        opened_at=_to_utc(row.opened_at),
        ready_at=_to_utc(row.ready_at),
        merged_at=_to_utc(row.merged_at),
        duration_ms=row.duration_ms,
        was_draft=bool(row.was_draft),
        priority=Priority(row.priority),
        due_date=_to_utc(row.due_date),
        qa_review=ReviewStatus(row.qa_review),
        dev_review=ReviewStatus(row.dev_review),
        jira_ticket=row.jira_ticket,
    )


class MetricStore:
    """Upsert-capable store of ``PrMetric`` rows.

    Upserts only write the columns a record supplies (non-``None`` fields).
    ``opened_at`` and ``merged_at`` keep their first stored value, and once a
    row is merged its ``ready_at``, ``duration_ms`` and ``was_draft`` no longer
    change, so redelivered or out-of-order events converge on the same row.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._insert = _dialect_insert(engine.dialect.name)

    @classmethod
    def from_url(cls, database_url: str) -> "MetricStore":
        return cls(create_store_engine(database_url))

    def create_schema(self) -> None:
        """Create the ``pr_metrics`` table if it does not exist."""
        try:
            metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StoreError("Failed to create the pr_metrics table") from exc

    def upsert(self, metric: PrMetric) -> None:
        """Insert ``metric`` or overwrite the supplied columns of the existing row.

        Raises:
            StoreError: If the statement fails; nothing is committed in that case.
        """
        values = metric.supplied_fields()
        for key, value in values.items():
            if isinstance(value, datetime):
                values[key] = _to_utc(value)

        statement = self._insert(pr_metrics).values(**values)
        update_set: Dict[str, Any] = {}
        for key in values:
            if key in _IDENTITY_COLUMNS:
                continue
            if key in _WRITE_ONCE_COLUMNS:
                update_set[key] = func.coalesce(pr_metrics.c[key], statement.excluded[key])
            elif key in _MERGE_SETTLED_COLUMNS:
                update_set[key] = case(
                    (pr_metrics.c.merged_at.is_(None), statement.excluded[key]),
                    else_=pr_metrics.c[key],
                )
            else:
                update_set[key] = statement.excluded[key]

        statement = statement.on_conflict_do_update(
            index_elements=[pr_metrics.c.repo, pr_metrics.c.pr_number],
            set_=update_set,
        )

        try:
            with self._engine.begin() as connection:
                connection.execute(statement)
        except SQLAlchemyError as exc:
            logger.error(
                "Metric upsert failed",
                extra={"repo": metric.repo, "pr_number": metric.pr_number},
                exc_info=True,
            )
            raise StoreError(f"Failed to upsert metric for {metric.repo}#{metric.pr_number}") from exc

    def get(self, repo: str, pr_number: int) -> Optional[PrMetric]:
        """Return the stored record for one pull request, if any."""
        query = select(pr_metrics).where(
            pr_metrics.c.repo == repo,
            pr_metrics.c.pr_number == pr_number,
        )
        try:
            with self._engine.connect() as connection:
                row = connection.execute(query).first()
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read metric for {repo}#{pr_number}") from exc

        return _row_to_metric(row) if row is not None else None

    def _apply_date_range(self, query: Any, date_from: Optional[datetime], date_to: Optional[datetime]) -> Any:
        if date_from is not None:
            query = query.where(pr_metrics.c.opened_at >= _to_utc(date_from))
        if date_to is not None:
            query = query.where(pr_metrics.c.opened_at <= _to_utc(date_to))
        return query

    def query(self, filters: Optional[MetricFilter] = None) -> List[PrMetric]:
        """Return records matching ``filters`` ordered by ``merged_at`` ascending, open PRs last."""
        filters = filters or MetricFilter()
        query = self._apply_date_range(select(pr_metrics), filters.date_from, filters.date_to)

        if filters.author:
            query = query.where(pr_metrics.c.author == filters.author)
        if filters.repo:
            query = query.where(pr_metrics.c.repo == filters.repo)
        if filters.priority is not None:
            query = query.where(pr_metrics.c.priority == filters.priority.value)

        query = query.order_by(
            pr_metrics.c.merged_at.asc().nulls_last(),
            pr_metrics.c.opened_at.asc(),
            pr_metrics.c.pr_number.asc(),
        )

        try:
            with self._engine.connect() as connection:
                rows = connection.execute(query).all()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to query pr_metrics") from exc

        return [_row_to_metric(row) for row in rows]

    def distinct_authors_and_repos(
        self,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Tuple[List[str], List[str]]:
        """Return the sorted distinct authors and repositories opened within a date range."""
        query = self._apply_date_range(
            select(pr_metrics.c.author, pr_metrics.c.repo),
            date_from,
            date_to,
        )
        try:
            with self._engine.connect() as connection:
                rows = connection.execute(query).all()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to query pr_metrics filter options") from exc

        authors = sorted({row.author for row in rows if row.author})
        repos = sorted({row.repo for row in rows if row.repo})
        return authors, repos
