from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

from app.core.filters import DashboardFilter
from app.main import app
from app.services.repository import RepositoryQueryError, get_repository

BASE = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakePipelineRepository:
    def __init__(self) -> None:
        self.stage_runs: list[dict[str, Any]] = [
            {
                "id": index + 1,
                "run_id": f"run-{index % 2}",
                "prop_no": str(index),
                "stage": "scrape" if index < 20 else "enrich",
                "status": "completed" if index % 4 else "failed",
                "started_at": BASE - timedelta(minutes=index),
                "finished_at": None,
                "duration_sec": float(index + 1) if index < 20 else None,
            }
            for index in range(24)
        ]
        self.errors: list[dict[str, Any]] = [
            {
                "id": 1,
                "run_id": "run-1",
                "property_id": "prop-1",
                "prop_no": "7",
                "stage": "scrape",
                "node_name": "Fetch listing",
                "execution_id": "exec-1",
                "error_code": "TIMEOUT",
                "message_short": "listing fetch timed out",
                "error_url": "https://n8n.example.test/execution/1",
                "context_json": {"attempt": 2},
                "created_at": BASE,
            }
        ]
        self.filters: list[DashboardFilter] = []
        self.batch_limits: list[int] = []

    async def list_stage_stat_rows(self, filters: DashboardFilter, *, max_rows: int) -> list[dict[str, Any]]:
        self.filters.append(filters)
        return [
            {"stage": row["stage"], "status": row["status"], "duration_sec": row["duration_sec"]}
            for row in self.stage_runs[:max_rows]
        ]

    async def list_stage_runs(self, filters: DashboardFilter) -> tuple[list[dict[str, Any]], int]:
        self.filters.append(filters)
        return self.stage_runs[filters.offset : filters.offset + filters.limit], len(self.stage_runs)

    async def list_pipeline_errors(self, filters: DashboardFilter) -> tuple[list[dict[str, Any]], int]:
        self.filters.append(filters)
        return self.errors, len(self.errors)

    async def count_pipeline_errors_by(self, filters: DashboardFilter, *, group_by: str) -> list[dict[str, Any]]:
        self.filters.append(filters)
        counts: dict[str, int] = {}
        for row in self.errors:
            if row[group_by] is not None:
                counts[row[group_by]] = counts.get(row[group_by], 0) + 1
        return [{group_by: key, "count": count} for key, count in counts.items()]

    async def list_batch_labels(self, *, limit: int) -> list[dict[str, Any]]:
        self.batch_limits.append(limit)
        return [
            {"batch_label": "spring", "created_at": BASE},
            {"batch_label": "winter", "created_at": BASE - timedelta(days=1)},
        ]


class FailingPipelineRepository:
    async def list_stage_stat_rows(self, filters: DashboardFilter, *, max_rows: int) -> list[dict[str, Any]]:
        raise RepositoryQueryError("failed to read pipeline stage runs")

    async def list_pipeline_errors(self, filters: DashboardFilter) -> tuple[list[dict[str, Any]], int]:
        raise RepositoryQueryError("dashboard query failed")

    async def list_batch_labels(self, *, limit: int) -> list[dict[str, Any]]:
        raise RepositoryQueryError("failed to read batch labels")


@pytest.fixture
def fake_repo() -> FakePipelineRepository:
    return FakePipelineRepository()


@pytest.fixture
def client(fake_repo: FakePipelineRepository) -> TestClient:
    app.dependency_overrides[get_repository] = lambda: fake_repo
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_stages_report_per_stage_stats(client: TestClient) -> None:
    response = client.get("/dashboard/stages")

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    body = response.json()
    assert body["rows"] is None
    stats = {stat["stage"]: stat for stat in body["stats"]}
    assert stats["scrape"]["total_count"] == 20
    assert stats["scrape"]["avg_duration_sec"] == 10.5
    assert stats["scrape"]["p95_duration_sec"] == 20.0
    assert stats["scrape"]["success_rate"] == 75.0
    assert stats["enrich"]["p95_duration_sec"] is None
    assert stats["enrich"]["avg_duration_sec"] == 0.0


def test_stages_raw_mode_pages_rows_with_normalized_status(client: TestClient, fake_repo: FakePipelineRepository) -> None:
    response = client.get("/dashboard/stages", params={"raw": "1", "limit": 5, "offset": 20, "stage": "scrape,enrich"})

    assert response.status_code == 200
    body = response.json()
    assert body["stats"] == []
    assert body["total"] == 24
    assert [row["id"] for row in body["rows"]] == [21, 22, 23, 24]
    assert body["rows"][0]["status_normalized"] == "failed"
    assert body["rows"][1]["status_normalized"] == "success"
    assert fake_repo.filters[-1].stage == ("scrape", "enrich")
    assert fake_repo.filters[-1].raw is True


def test_stages_accept_repeated_stage_keys(client: TestClient, fake_repo: FakePipelineRepository) -> None:
    response = client.get("/dashboard/stages?stage=scrape&stage=enrich&status=Completed")

    assert response.status_code == 200
    assert fake_repo.filters[-1].stage == ("scrape", "enrich")
    assert fake_repo.filters[-1].status == "success"


def test_errors_report_page_and_groupings(client: TestClient, fake_repo: FakePipelineRepository) -> None:
    response = client.get("/dashboard/errors", params={"error_code": "TIMEOUT", "q": "timed out"})

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    body = response.json()
    assert body["total"] == 1
    assert body["errors"][0]["context_json"] == {"attempt": 2}
    assert body["by_code"] == [{"error_code": "TIMEOUT", "count": 1}]
    assert body["by_stage"] == [{"stage": "scrape", "count": 1}]
    assert {f.error_code for f in fake_repo.filters} == {"TIMEOUT"}
    assert len(fake_repo.filters) == 3


def test_errors_reject_bad_dates_before_querying(client: TestClient, fake_repo: FakePipelineRepository) -> None:
    response = client.get("/dashboard/errors", params={"to": "2024-01-01zzz"})

    assert response.status_code == 422
    assert fake_repo.filters == []


def test_batches_list_recent_labels(client: TestClient, fake_repo: FakePipelineRepository) -> None:
    response = client.get("/dashboard/batches")

    assert response.status_code == 200
    assert response.headers["cache-control"] == "public, max-age=60"
    assert [batch["batch_label"] for batch in response.json()["batches"]] == ["spring", "winter"]
    assert fake_repo.batch_limits == [100]


def test_pipeline_reads_report_query_failures() -> None:
    app.dependency_overrides[get_repository] = lambda: FailingPipelineRepository()
    try:
        with TestClient(app) as test_client:
            assert test_client.get("/dashboard/stages").status_code == 503
            assert test_client.get("/dashboard/errors").status_code == 503
            assert test_client.get("/dashboard/batches").status_code == 503
    finally:
        app.dependency_overrides.clear()
