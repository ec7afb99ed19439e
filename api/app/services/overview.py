from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from app.core.filters import DashboardFilter
from app.core.status import CANONICAL_STATUSES, FAILED, SUCCESS, is_canonical_status, normalize_status
from app.services.latency import attach_handoff_latency


def summarize_runs(runs: Iterable[dict[str, Any]]) -> dict[str, Any]:
    counts: Counter[str] = Counter()
    days: dict[str, Counter[str]] = {}
    for run in runs:
        status = normalize_status(run.get("status"))
        counts[status] += 1
        started_at = run.get("started_at")
        if isinstance(started_at, datetime):
            day = _as_utc(started_at).date().isoformat()
            bucket = days.setdefault(day, Counter())
            bucket["runs"] += 1
            bucket[status] += 1

    total = sum(counts.values())
    status_counts = {status: counts.get(status, 0) for status in CANONICAL_STATUSES}
    unknown = {status: count for status, count in sorted(counts.items()) if not is_canonical_status(status)}
    return {
        "total_runs": total,
        "success_rate": (counts[SUCCESS] / total) if total else None,
        "status_counts": status_counts,
        "unknown_status_counts": unknown,
        "unknown_status_count": sum(unknown.values()),
        "timeseries": [
            {
                "date": day,
                "runs": days[day]["runs"],
                "success": days[day][SUCCESS],
                "failed": days[day][FAILED],
            }
            for day in sorted(days)
        ],
    }


def summarize_latency(jobs: Iterable[dict[str, Any]]) -> dict[str, Any]:
    values = [job["handoff_latency_sec"] for job in jobs if job.get("handoff_latency_sec") is not None]
    return {
        "avg_handoff_latency_sec": (sum(values) / len(values)) if values else None,
        "latency_sample_size": len(values),
        "negative_handoff_count": sum(1 for value in values if value < 0),
    }


async def compute_overview(
    repository: Any,
    filters: DashboardFilter,
    *,
    max_rows: int,
    latency_sample_size: int,
) -> dict[str, Any]:
    runs = await repository.list_overview_runs(filters, max_rows=max_rows)
    jobs = await repository.list_overview_jobs(filters, max_rows=latency_sample_size)
    enriched = await attach_handoff_latency(repository, jobs)
    return {**summarize_runs(runs), **summarize_latency(enriched), "truncated": len(runs) >= max_rows}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
