"""Aggregation, statistics and formatting helpers for PR merge metrics.

This module provides utilities for:
- Computing means, medians and linear-interpolation percentiles.
- Grouping merge durations by author, repository, priority or draft state.
- Bucketing durations into a fixed histogram and merges into ISO weeks.
- Fitting a linear trend over merge durations in chronological order.
- Classifying due-date compliance and counting merges per calendar day.
- Building the dashboard payload and a human-readable text report.

Every aggregate returns ``None`` when there is nothing to aggregate, instead
of dividing by zero.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union, cast

from .models import PRIORITY_ORDER, PrMetric, ReviewStatus

MS_PER_HOUR = 60 * 60 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR

_UNIT_DIVISORS = {"hours": MS_PER_HOUR, "days": MS_PER_DAY}

DURATION_BUCKETS = (
    ("<1h", 1.0),
    ("1-4h", 4.0),
    ("4-8h", 8.0),
    ("8-24h", 24.0),
    ("1-3d", 72.0),
    ("3-7d", 168.0),
    (">7d", math.inf),
)

TREND_FLAT_THRESHOLD = 0.1
CALENDAR_WINDOW_DAYS = 365

KeySelector = Union[str, Callable[[PrMetric], Any]]


def calculate_percentile(sorted_values: List[float], p: float) -> Optional[float]:
    """Calculate a percentile using linear interpolation.

    The input sequence is expected to already be sorted in ascending order.
    - Empty input returns ``None``.
    - ``p <= 0`` returns the first value.
    - ``p >= 100`` returns the last value.
    - Otherwise, percentile is linearly interpolated between adjacent ranks.

    Raises:
        ValueError: If ``p`` is outside ``[0, 100]``.
    """
    if not 0 <= p <= 100:
        raise ValueError("Percentile 'p' must be in the range [0, 100].")

    if not sorted_values:
        return None

    if p <= 0:
        return sorted_values[0]

    if p >= 100:
        return sorted_values[-1]

    position = (len(sorted_values) - 1) * (p / 100.0)
    lower_index = math.floor(position)
    upper_index = math.ceil(position)

    if lower_index == upper_index:
        return sorted_values[int(position)]

    lower_value = sorted_values[lower_index]
    upper_value = sorted_values[upper_index]
    return lower_value + (upper_value - lower_value) * (position - lower_index)


def compute_statistics(samples: List[float]) -> Dict[str, Optional[float]]:
    """Compute P50, P75, P90, and sample count for duration samples.

    ``None``, NaN and negative samples are ignored.
    """
    clean_samples = sorted(
        sample
        for sample in samples
        if sample is not None and not math.isnan(sample) and sample >= 0
    )

    return {
        "p50": calculate_percentile(clean_samples, 50),
        "p75": calculate_percentile(clean_samples, 75),
        "p90": calculate_percentile(clean_samples, 90),
        "count": cast(Optional[float], len(clean_samples)),
    }


def mean(values: Sequence[float]) -> Optional[float]:
    """Arithmetic mean, or ``None`` for an empty sequence."""
    if not values:
        return None
    return sum(values) / len(values)


def median(values: Sequence[float]) -> Optional[float]:
    """Median of ``values``; even-sized inputs average the two central values."""
    if not values:
        return None

    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return float(ordered[middle])
    return (ordered[middle - 1] + ordered[middle]) / 2


def merged_records(records: Iterable[PrMetric]) -> List[PrMetric]:
    """Return the records that have both a merge time and a merge duration."""
    return [record for record in records if record.merged_at is not None and record.duration_ms is not None]


def _convert(duration_ms: int, unit: str) -> float:
    try:
        return duration_ms / _UNIT_DIVISORS[unit]
    except KeyError:
        raise ValueError(f"Unsupported duration unit: {unit!r}") from None


def _key_value(record: PrMetric, key: KeySelector) -> Any:
    value = key(record) if callable(key) else getattr(record, key)
    return getattr(value, "value", value)


def group_durations(
    records: Iterable[PrMetric],
    key: KeySelector,
    unit: str = "hours",
    include_median: bool = False,
) -> Optional[List[Dict[str, Any]]]:
    """Mean (and optionally median) merge duration per group, slowest group first.

    Args:
        records: Metric records; only merged ones with a duration are used.
        key: Attribute name (``author``, ``repo``, ``priority``, ``was_draft``)
            or a callable returning the group key.
        unit: ``hours`` or ``days``.
        include_median: Add a ``median`` entry per group.
    """
    if unit not in _UNIT_DIVISORS:
        raise ValueError(f"Unsupported duration unit: {unit!r}")

    groups: Dict[Any, List[float]] = {}
    for record in merged_records(records):
        groups.setdefault(_key_value(record, key), []).append(_convert(cast(int, record.duration_ms), unit))

    if not groups:
        return None

    entries: List[Dict[str, Any]] = []
    for group_key, durations in groups.items():
        entry: Dict[str, Any] = {"key": group_key, "count": len(durations), "mean": mean(durations)}
        if include_median:
            entry["median"] = median(durations)
        entries.append(entry)

    entries.sort(key=lambda entry: (-entry["mean"], str(entry["key"])))
    return entries


def priority_breakdown(records: Iterable[PrMetric]) -> Optional[List[Dict[str, Any]]]:
    """Merged count and mean hours for every priority, highest first, zero-filled."""
    grouped = group_durations(records, "priority")
    if grouped is None:
        return None

    by_priority = {entry["key"]: entry for entry in grouped}
    breakdown: List[Dict[str, Any]] = []
    for priority in PRIORITY_ORDER:
        entry = by_priority.get(priority.value)
        breakdown.append(
            {
                "priority": priority.value,
                "count": entry["count"] if entry else 0,
                "mean_hours": entry["mean"] if entry else None,
            }
        )
    return breakdown


def draft_comparison(records: Iterable[PrMetric]) -> Optional[List[Dict[str, Any]]]:
    """Mean hours to merge for pull requests that started as drafts versus the rest."""
    grouped = group_durations(records, lambda record: bool(record.was_draft))
    if grouped is None:
        return None

    by_draft = {entry["key"]: entry for entry in grouped}
    comparison: List[Dict[str, Any]] = []
    for label, was_draft in (("draft", True), ("non_draft", False)):
        entry = by_draft.get(was_draft)
        comparison.append(
            {
                "label": label,
                "count": entry["count"] if entry else 0,
                "mean_hours": entry["mean"] if entry else None,
            }
        )
    return comparison


def duration_bucket(duration_ms: int) -> str:
    """Return the label of the first bucket whose upper bound exceeds the duration."""
    hours = duration_ms / MS_PER_HOUR
    for label, upper_bound in DURATION_BUCKETS:
        if hours < upper_bound:
            return label
    return DURATION_BUCKETS[-1][0]


def duration_histogram(records: Iterable[PrMetric]) -> Optional[List[Dict[str, Any]]]:
    """Count merged pull requests per fixed duration bucket."""
    merged = merged_records(records)
    if not merged:
        return None

    counts = {label: 0 for label, _ in DURATION_BUCKETS}
    for record in merged:
        counts[duration_bucket(cast(int, record.duration_ms))] += 1

    return [{"label": label, "count": counts[label]} for label, _ in DURATION_BUCKETS]


def iso_week_label(moment: datetime) -> str:
    """Return the ISO week label ``YYYY-Www`` of a UTC timestamp."""
    iso_year, iso_week, _ = moment.astimezone(timezone.utc).isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def weekly_throughput(records: Iterable[PrMetric]) -> Optional[List[Dict[str, Any]]]:
    """Count merges per ISO week, in chronological (lexicographic) week order."""
    counts: Dict[str, int] = {}
    for record in records:
        if record.merged_at is None:
            continue
        label = iso_week_label(record.merged_at)
        counts[label] = counts.get(label, 0) + 1

    if not counts:
        return None

    return [{"week": week, "count": counts[week]} for week in sorted(counts)]


def linear_regression(points: Sequence[float]) -> Dict[str, float]:
    """Ordinary least squares of ``points[i]`` against ``i``.

    A single point yields a zero slope through that point.
    """
    n = len(points)
    if n < 2:
        return {"slope": 0.0, "intercept": float(points[0]) if points else 0.0}

    sum_x = sum_y = sum_xy = sum_x2 = 0.0
    for x, y in enumerate(points):
        sum_x += x
        sum_y += y
        sum_xy += x * y
        sum_x2 += x * x

    denominator = n * sum_x2 - sum_x * sum_x
    slope = (n * sum_xy - sum_x * sum_y) / denominator if denominator else 0.0
    intercept = (sum_y - slope * sum_x) / n
    return {"slope": slope, "intercept": intercept}


def trend_direction(slope: float, threshold: float = TREND_FLAT_THRESHOLD) -> str:
    if slope > threshold:
        return "increasing"
    if slope < -threshold:
        return "decreasing"
    return "flat"


def linear_trend(
    records: Iterable[PrMetric],
    flat_threshold: float = TREND_FLAT_THRESHOLD,
) -> Optional[Dict[str, Any]]:
    """Fit merge duration in days against merge order.

    The x axis is the position in ``merged_at`` order, not wall-clock time.
    """
    ordered = sorted(merged_records(records), key=lambda record: cast(datetime, record.merged_at))
    if not ordered:
        return None

    days = [cast(int, record.duration_ms) / MS_PER_DAY for record in ordered]
    fit = linear_regression(days)
    return {
        "count": len(days),
        "slope": fit["slope"],
        "intercept": fit["intercept"],
        "direction": trend_direction(fit["slope"], flat_threshold),
        "median_days": median(days),
    }


def due_date_compliance(records: Iterable[PrMetric]) -> Optional[Dict[str, Any]]:
    """Classify merged pull requests with a due date as on time (``merged_at <= due_date``) or late."""
    on_time = 0
    late = 0
    for record in records:
        if record.merged_at is None or record.due_date is None:
            continue
        if record.merged_at <= record.due_date:
            on_time += 1
        else:
            late += 1

    total = on_time + late
    if total == 0:
        return None

    return {
        "on_time": on_time,
        "late": late,
        "total": total,
        "on_time_pct": on_time * 100.0 / total,
        "late_pct": late * 100.0 / total,
    }


def calendar_density(
    records: Iterable[PrMetric],
    today: Optional[date] = None,
) -> Optional[List[Dict[str, Any]]]:
    """Merges per UTC calendar day over the trailing window ending ``today``, zero-filled."""
    merged_days = [
        record.merged_at.astimezone(timezone.utc).date()
        for record in records
        if record.merged_at is not None
    ]
    if not merged_days:
        return None

    end = today or datetime.now(timezone.utc).date()
    start = end - timedelta(days=CALENDAR_WINDOW_DAYS - 1)

    counts: Dict[date, int] = {}
    for day in merged_days:
        if start <= day <= end:
            counts[day] = counts.get(day, 0) + 1

    density: List[Dict[str, Any]] = []
    for offset in range(CALENDAR_WINDOW_DAYS):
        day = start + timedelta(days=offset)
        density.append({"date": day.isoformat(), "count": counts.get(day, 0)})
    return density


def review_status_overview(records: Iterable[PrMetric]) -> Optional[Dict[str, Dict[str, int]]]:
    """Count review statuses per track over all records, merged or not."""
    records = list(records)
    if not records:
        return None

    overview = {
        track: {status.value: 0 for status in ReviewStatus}
        for track in ("qa", "dev")
    }
    for record in records:
        overview["qa"][(record.qa_review or ReviewStatus.PENDING).value] += 1
        overview["dev"][(record.dev_review or ReviewStatus.PENDING).value] += 1
    return overview


def open_to_merge_days(records: Iterable[PrMetric]) -> Optional[Dict[str, Any]]:
    """Mean and median days from opening to merge."""
    days = [
        (record.merged_at - record.opened_at) / timedelta(days=1)
        for record in records
        if record.merged_at is not None
    ]
    if not days:
        return None
    return {"count": len(days), "mean_days": mean(days), "median_days": median(days)}


def build_dashboard(records: Sequence[PrMetric], today: Optional[date] = None) -> Dict[str, Any]:
    """Compute every dashboard aggregate over one filtered record set."""
    return {
        "total": len(records),
        "merged": sum(1 for record in records if record.merged_at is not None),
        "open_to_merge": open_to_merge_days(records),
        "trend": linear_trend(records),
        "histogram": duration_histogram(records),
        "authors": group_durations(records, "author"),
        "authors_median": group_durations(records, "author", unit="days", include_median=True),
        "repos": group_durations(records, "repo"),
        "priorities": priority_breakdown(records),
        "drafts": draft_comparison(records),
        "due_dates": due_date_compliance(records),
        "reviews": review_status_overview(records),
        "weekly": weekly_throughput(records),
        "calendar": calendar_density(records, today),
    }


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as ``HH:MM:SS``; ``"n/a"`` when ``seconds`` is ``None``."""
    if seconds is None:
        return "n/a"

    total_seconds = int(round(seconds))
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    remaining_seconds = total_seconds % 60
    return f"{hours:02d}:{minutes:02d}:{remaining_seconds:02d}"


def _format_optional(value: Optional[float], suffix: str) -> str:
    return "n/a" if value is None else f"{value:.1f}{suffix}"


def generate_report(title: str, records: Sequence[PrMetric]) -> str:
    """Generate a human-readable merge metrics report for a record set."""
    merged = merged_records(records)
    duration_stats = compute_statistics([cast(int, record.duration_ms) / 1000.0 for record in merged])
    trend = linear_trend(records)
    compliance = due_date_compliance(records)
    open_to_merge = open_to_merge_days(records)

    lines = [
        f"Scope: {title}",
        "PR Merge Metrics Report",
        "",
        f"Pull requests: {len(records)} tracked, {sum(1 for r in records if r.merged_at)} merged",
        "",
        "1) Time to Merge (Ready to Merge)",
        f"   Samples: {int(cast(float, duration_stats['count']))}",
        f"   P50: {format_duration(duration_stats['p50'])}",
        f"   P75: {format_duration(duration_stats['p75'])}",
        f"   P90: {format_duration(duration_stats['p90'])}",
        f"   Trend: {trend['direction'] if trend else 'n/a'}",
        "",
        "2) Open to Merge",
        f"   Mean: {_format_optional(open_to_merge['mean_days'] if open_to_merge else None, 'd')}",
        f"   Median: {_format_optional(open_to_merge['median_days'] if open_to_merge else None, 'd')}",
        "",
        "3) Due Date Compliance",
    ]

    if compliance is None:
        lines.append("   No merged PRs with due dates")
    else:
        lines.append(f"   On time: {compliance['on_time']} ({compliance['on_time_pct']:.0f}%)")
        lines.append(f"   Late: {compliance['late']} ({compliance['late_pct']:.0f}%)")

    lines.extend(["", "4) Mean Hours to Merge by Author"])
    authors = group_durations(records, "author")
    if authors is None:
        lines.append("   No data")
    else:
        for entry in authors:
            lines.append(f"   {entry['key']}: {entry['mean']:.1f}h ({entry['count']})")

    return "\n".join(lines)
