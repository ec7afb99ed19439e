from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from app.services.repository import RepositoryError

logger = logging.getLogger(__name__)


def handoff_latency_seconds(created_at: datetime | None, first_stage_started_at: datetime | None) -> float | None:
    """Seconds between job creation and the first stage start.

    Negative values are returned unchanged: a stage stamped before its job was
    created points at clock skew or out-of-order ingestion upstream.
    """
    if created_at is None or first_stage_started_at is None:
        return None
    return (_as_utc(first_stage_started_at) - _as_utc(created_at)).total_seconds()


def earliest_stage_starts(rows: Iterable[dict[str, Any]]) -> dict[str, datetime]:
    earliest: dict[str, datetime] = {}
    for row in rows:
        run_id = row.get("run_id")
        started_at = row.get("started_at")
        if not run_id or not isinstance(started_at, datetime):
            continue
        current = earliest.get(run_id)
        if current is None or _as_utc(started_at) < _as_utc(current):
            earliest[run_id] = started_at
    return earliest


async def attach_handoff_latency(repository: Any, jobs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    run_ids = sorted({job["run_id"] for job in jobs if job.get("run_id") and job.get("created_at")})
    first_starts: dict[str, datetime] = {}
    if run_ids:
        try:
            first_starts = earliest_stage_starts(await repository.list_stage_starts(run_ids))
        except RepositoryError as exc:
            logger.warning("stage start lookup failed for %s runs; latency left empty: %s", len(run_ids), exc)

    enriched: list[dict[str, Any]] = []
    for job in jobs:
        run_id = job.get("run_id")
        latency = None
        if run_id and job.get("created_at"):
            latency = handoff_latency_seconds(job["created_at"], first_starts.get(run_id))
        enriched.append({**job, "handoff_latency_sec": latency})
    return enriched


async def with_latency(repository: Any, job: dict[str, Any]) -> float | None:
    enriched = await attach_handoff_latency(repository, [job])
    return enriched[0]["handoff_latency_sec"]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
