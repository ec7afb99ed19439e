import asyncio
from datetime import date, datetime, timezone

import pytest

from app.core.filters import DashboardFilter
from app.services.queries import (
    build_batch_labels_query,
    build_error_groups_query,
    build_errors_query,
    build_ingest_jobs_query,
    build_overview_runs_query,
    build_properties_query,
    build_runs_query,
    build_stage_runs_query,
    build_stage_stats_query,
)
from app.services.repository import PostgresRepository, RepositoryUnavailableError


def test_ingest_jobs_query_matches_every_raw_spelling_of_success() -> None:
    query = build_ingest_jobs_query(DashboardFilter(status="success", limit=10, offset=20))

    assert "lower(btrim(j.status)) = any($1::text[])" in query.sql
    assert query.params == [["completed", "success"], 10, 20]
    assert "limit $2" in query.sql
    assert "offset $3" in query.sql
    assert query.count_params == [["completed", "success"]]
    assert "limit" not in query.count_sql


def test_queued_filter_matches_null_and_blank_only() -> None:
    query = build_ingest_jobs_query(DashboardFilter(status="queued"))

    assert "j.status is null" in query.sql
    assert "btrim(j.status) = ''" in query.sql
    assert query.params == [25, 0]


def test_unknown_status_filter_matches_the_raw_string() -> None:
    query = build_runs_query(DashboardFilter(status="retrying"))

    assert "btrim(r.status) = $1" in query.sql
    assert query.params[0] == "retrying"


def test_ingest_jobs_query_orders_newest_first_with_stable_tiebreak() -> None:
    query = build_ingest_jobs_query(DashboardFilter())
    assert "order by j.created_at desc nulls last, j.id desc" in query.sql


def test_date_window_uses_exclusive_end_bound() -> None:
    filters = DashboardFilter(from_date=date(2024, 1, 1), to_date=date(2024, 1, 2))
    query = build_ingest_jobs_query(filters)

    assert "j.created_at >= $1" in query.sql
    assert "j.created_at < $2" in query.sql
    assert query.params[0] == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert query.params[1] == datetime(2024, 1, 3, tzinfo=timezone.utc)


def test_runs_query_filters_dates_on_started_at_and_joins_jobs_for_batch() -> None:
    filters = DashboardFilter(from_date=date(2024, 1, 1), prop_no="17", batch_label="spring")
    query = build_runs_query(filters)

    assert "r.started_at >= $1" in query.sql
    assert "j.prop_no = $2" in query.sql
    assert "j.batch_label = $3" in query.sql
    assert "exists (select 1 from ingest_jobs j" in query.count_sql
    assert "order by r.started_at desc nulls last, r.run_id desc" in query.sql


def test_search_is_ored_across_searchable_columns() -> None:
    query = build_runs_query(DashboardFilter(q="abc"))

    assert (
        "(coalesce(r.run_id, '') ilike $1 escape '\\' or coalesce(r.property_id, '') ilike $1 escape '\\')"
        in query.sql
    )
    assert query.params[0] == "%abc%"


@pytest.mark.parametrize(
    ("q", "expected"),
    [
        ("100%", "%100\\%%"),
        ("run_1", "%run\\_1%"),
        ("C:\\runs", "%C:\\\\runs%"),
    ],
)
def test_search_treats_like_wildcards_as_literals(q: str, expected: str) -> None:
    query = build_ingest_jobs_query(DashboardFilter(q=q))

    assert "coalesce(j.url, '') ilike $1 escape '\\'" in query.sql
    assert query.params[0] == expected


def test_properties_query_ignores_dates_and_status() -> None:
    filters = DashboardFilter(from_date=date(2024, 1, 1), status="failed", q="Baker")
    query = build_properties_query(filters)

    assert "created_at" not in query.sql
    assert "status" not in query.sql
    assert "coalesce(p.address, '') ilike $1 escape '\\'" in query.sql
    assert query.params == ["%Baker%", 25, 0]
    assert "order by p.property_id desc" in query.sql


def test_overview_runs_query_is_bounded() -> None:
    sql, params = build_overview_runs_query(DashboardFilter(status="failed"), max_rows=5000)

    assert "limit $2" in sql
    assert params == [["failed"], 5000]


def test_stage_runs_query_filters_stages_status_and_run() -> None:
    filters = DashboardFilter(stage=("scrape", "enrich"), status="processing", run_id="run-1", prop_no="7", limit=5)
    query = build_stage_runs_query(filters)

    assert "lower(btrim(s.status)) = any($1::text[])" in query.sql
    assert "s.stage = any($2::text[])" in query.sql
    assert "s.run_id = $3" in query.sql
    assert "s.prop_no = $4" in query.sql
    assert "order by s.started_at desc nulls last, s.id desc" in query.sql
    assert query.params[1:] == [["scrape", "enrich"], "run-1", "7", 5, 0]
    assert query.count_params == query.params[:4]


def test_stage_stats_query_skips_blank_stages_and_is_bounded() -> None:
    sql, params = build_stage_stats_query(DashboardFilter(from_date=date(2024, 1, 1)), max_rows=5000)

    assert "btrim(s.stage) <> ''" in sql
    assert "s.started_at >= $1" in sql
    assert "extract(epoch from (s.finished_at - s.started_at))" in sql
    assert "limit $2" in sql
    assert params == [datetime(2024, 1, 1, tzinfo=timezone.utc), 5000]


def test_errors_query_and_groupings_share_the_filter_set() -> None:
    filters = DashboardFilter(error_code="TIMEOUT", stage=("scrape",), property_id="prop-1", q="n8n")
    page = build_errors_query(filters)
    grouped_sql, grouped_params = build_error_groups_query(filters, group_by="stage")

    for sql in (page.sql, grouped_sql):
        assert "e.error_code = $1" in sql
        assert "e.stage = any($2::text[])" in sql
        assert "e.property_id = $3" in sql
        assert "coalesce(e.error_url, '') ilike $4 escape '\\'" in sql
    assert grouped_params == page.count_params
    assert "e.stage is not null" in grouped_sql
    assert "group by e.stage" in grouped_sql
    assert "order by e.created_at desc nulls last, e.id desc" in page.sql


def test_error_groups_reject_unknown_columns() -> None:
    with pytest.raises(ValueError):
        build_error_groups_query(DashboardFilter(), group_by="message_short; drop table runs")


def test_batch_labels_query_is_distinct_and_newest_first() -> None:
    sql, params = build_batch_labels_query(limit=100)

    assert "j.batch_label is not null" in sql
    assert "group by j.batch_label" in sql
    assert "order by max(j.created_at) desc nulls last" in sql
    assert params == [100]


def test_repository_without_database_url_is_unavailable() -> None:
    repository = PostgresRepository(None, 1, 2)
    with pytest.raises(RepositoryUnavailableError):
        asyncio.run(repository.list_runs(DashboardFilter()))
