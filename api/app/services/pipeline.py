from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from app.core.filters import DashboardFilter
from app.core.status import SUCCESS, normalize_status


@dataclass(slots=True)
class _StageTally:
    durations: list[float] = field(default_factory=list)
    success_count: int = 0
    total_count: int = 0


def p95(values: Sequence[float]) -> float | None:
    """Nearest-rank 95th percentile: the sorted value at index floor(n * 0.95)."""
    if not values:
        return None
    ordered = sorted(values)
    return ordered[(len(ordered) * 95) // 100]


def summarize_stages(rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    tallies: dict[str, _StageTally] = {}
    for row in rows:
        stage = (row.get("stage") or "").strip()
        if not stage:
            continue
        tally = tallies.setdefault(stage, _StageTally())
        tally.total_count += 1
        duration = row.get("duration_sec")
        if duration is not None:
            tally.durations.append(float(duration))
        if normalize_status(row.get("status")) == SUCCESS:
            tally.success_count += 1

    return [
        {
            "stage": stage,
            "avg_duration_sec": (sum(tally.durations) / len(tally.durations)) if tally.durations else 0.0,
            "p95_duration_sec": p95(tally.durations),
            "success_rate": (tally.success_count / tally.total_count) * 100,
            "total_count": tally.total_count,
        }
        for stage, tally in sorted(tallies.items())
    ]


async def compute_stage_stats(repository: Any, filters: DashboardFilter, *, max_rows: int) -> list[dict[str, Any]]:
    rows = await repository.list_stage_stat_rows(filters, max_rows=max_rows)
    return summarize_stages(rows)


async def compute_error_report(repository: Any, filters: DashboardFilter) -> dict[str, Any]:
    errors, total = await repository.list_pipeline_errors(filters)
    by_code = await repository.count_pipeline_errors_by(filters, group_by="error_code")
    by_stage = await repository.count_pipeline_errors_by(filters, group_by="stage")
    return {"errors": errors, "total": total, "by_code": by_code, "by_stage": by_stage}
