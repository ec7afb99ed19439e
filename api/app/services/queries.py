from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from app.core.filters import DashboardFilter
from app.core.status import QUEUED, is_canonical_status, raw_statuses_for

INGEST_JOB_COLUMNS = """
              j.id::text as id,
              j.run_id,
              j.property_id,
              j.batch_label,
              j.status,
              j.created_at,
              j.url,
              j.prop_no
"""

RUN_COLUMNS = """
              r.run_id,
              r.property_id,
              r.status,
              r.started_at,
              r.updated_at,
              r.cancel_requested
"""

PROPERTY_COLUMNS = """
              p.property_id,
              p.run_id,
              p.property_title,
              p.address,
              p.postcode,
              p.guide_price_gbp,
              p.monthly_rent_gbp,
              p.property_total_with_vat,
              p.property_pdf
"""

STAGE_DURATION_SQL = "coalesce(s.duration_sec, extract(epoch from (s.finished_at - s.started_at)))::float8"

STAGE_RUN_COLUMNS = f"""
              s.id,
              s.run_id,
              s.prop_no,
              s.stage,
              s.status,
              s.started_at,
              s.finished_at,
              {STAGE_DURATION_SQL} as duration_sec
"""

PIPELINE_ERROR_COLUMNS = """
              e.id,
              e.run_id,
              e.property_id,
              e.prop_no,
              e.stage,
              e.node_name,
              e.execution_id,
              e.error_code,
              e.message_short,
              e.error_url,
              e.context_json,
              e.created_at
"""

ERROR_GROUP_COLUMNS = ("error_code", "stage")


@dataclass(slots=True)
class ListQuery:
    sql: str
    count_sql: str
    params: list[Any] = field(default_factory=list)
    count_params: list[Any] = field(default_factory=list)


class _Binder:
    def __init__(self) -> None:
        self.params: list[Any] = []

    def __call__(self, value: Any) -> str:
        self.params.append(value)
        return f"${len(self.params)}"


def build_ingest_jobs_query(filters: DashboardFilter) -> ListQuery:
    bind = _Binder()
    conditions = _time_window_conditions("j.created_at", filters, bind)
    conditions.extend(_status_conditions("j.status", filters.status, bind))
    if filters.run_id:
        conditions.append(f"j.run_id = {bind(filters.run_id)}")
    if filters.property_id:
        conditions.append(f"j.property_id = {bind(filters.property_id)}")
    if filters.prop_no:
        conditions.append(f"j.prop_no = {bind(filters.prop_no)}")
    if filters.batch_label:
        conditions.append(f"j.batch_label = {bind(filters.batch_label)}")
    if filters.q:
        conditions.append(_search_condition(["j.url"], filters.q, bind))

    return _paginate(
        bind,
        columns=INGEST_JOB_COLUMNS,
        from_sql="ingest_jobs j",
        conditions=conditions,
        order_by_sql="j.created_at desc nulls last, j.id desc",
        filters=filters,
    )


def build_runs_query(filters: DashboardFilter) -> ListQuery:
    bind = _Binder()
    conditions = _run_conditions(filters, bind)
    return _paginate(
        bind,
        columns=RUN_COLUMNS,
        from_sql="runs r",
        conditions=conditions,
        order_by_sql="r.started_at desc nulls last, r.run_id desc",
        filters=filters,
    )


def build_overview_runs_query(filters: DashboardFilter, *, max_rows: int) -> tuple[str, list[Any]]:
    bind = _Binder()
    where_sql = " and ".join(_run_conditions(filters, bind)) or "true"
    sql = f"""
            select
              r.run_id,
              r.status,
              r.started_at
            from runs r
            where {where_sql}
            order by r.started_at desc nulls last, r.run_id desc
            limit {bind(max(1, max_rows))}
            """
    return sql, bind.params


def build_overview_jobs_query(filters: DashboardFilter, *, max_rows: int) -> tuple[str, list[Any]]:
    bind = _Binder()
    conditions = ["j.run_id is not null", "j.created_at is not null"]
    conditions.extend(_time_window_conditions("j.created_at", filters, bind))
    if filters.run_id:
        conditions.append(f"j.run_id = {bind(filters.run_id)}")
    if filters.property_id:
        conditions.append(f"j.property_id = {bind(filters.property_id)}")
    where_sql = " and ".join(conditions)
    sql = f"""
            select
              j.id::text as id,
              j.run_id,
              j.created_at
            from ingest_jobs j
            where {where_sql}
            order by j.created_at desc, j.id desc
            limit {bind(max(1, max_rows))}
            """
    return sql, bind.params


def build_properties_query(filters: DashboardFilter) -> ListQuery:
    bind = _Binder()
    conditions: list[str] = []
    if filters.property_id:
        conditions.append(f"p.property_id = {bind(filters.property_id)}")
    if filters.run_id:
        conditions.append(f"p.run_id = {bind(filters.run_id)}")
    if filters.q:
        conditions.append(_search_condition(["p.address", "p.property_title"], filters.q, bind))

    return _paginate(
        bind,
        columns=PROPERTY_COLUMNS,
        from_sql="properties p",
        conditions=conditions,
        order_by_sql="p.property_id desc",
        filters=filters,
    )


def build_stage_runs_query(filters: DashboardFilter) -> ListQuery:
    bind = _Binder()
    return _paginate(
        bind,
        columns=STAGE_RUN_COLUMNS,
        from_sql="pipeline_stage_runs s",
        conditions=_stage_run_conditions(filters, bind),
        order_by_sql="s.started_at desc nulls last, s.id desc",
        filters=filters,
    )


def build_stage_stats_query(filters: DashboardFilter, *, max_rows: int) -> tuple[str, list[Any]]:
    bind = _Binder()
    conditions = ["s.stage is not null", "btrim(s.stage) <> ''"]
    conditions.extend(_stage_run_conditions(filters, bind))
    where_sql = " and ".join(conditions)
    sql = f"""
            select
              s.stage,
              s.status,
              {STAGE_DURATION_SQL} as duration_sec
            from pipeline_stage_runs s
            where {where_sql}
            order by s.started_at desc nulls last, s.id desc
            limit {bind(max(1, max_rows))}
            """
    return sql, bind.params


def build_errors_query(filters: DashboardFilter) -> ListQuery:
    bind = _Binder()
    return _paginate(
        bind,
        columns=PIPELINE_ERROR_COLUMNS,
        from_sql="pipeline_errors e",
        conditions=_error_conditions(filters, bind),
        order_by_sql="e.created_at desc nulls last, e.id desc",
        filters=filters,
    )


def build_error_groups_query(filters: DashboardFilter, *, group_by: str) -> tuple[str, list[Any]]:
    if group_by not in ERROR_GROUP_COLUMNS:
        raise ValueError(f"cannot group pipeline errors by {group_by!r}")
    bind = _Binder()
    conditions = [f"e.{group_by} is not null"]
    conditions.extend(_error_conditions(filters, bind))
    where_sql = " and ".join(conditions)
    sql = f"""
            select
              e.{group_by} as key,
              count(*) as count
            from pipeline_errors e
            where {where_sql}
            group by e.{group_by}
            order by count(*) desc, e.{group_by} asc
            """
    return sql, bind.params


def build_batch_labels_query(*, limit: int) -> tuple[str, list[Any]]:
    bind = _Binder()
    sql = f"""
            select
              j.batch_label,
              max(j.created_at) as created_at
            from ingest_jobs j
            where j.batch_label is not null
            group by j.batch_label
            order by max(j.created_at) desc nulls last, j.batch_label asc
            limit {bind(max(1, limit))}
            """
    return sql, bind.params



def _paginate(
    bind: _Binder,
    *,
    columns: str,
    from_sql: str,
    conditions: list[str],
    order_by_sql: str,
    filters: DashboardFilter,
) -> ListQuery:
    where_sql = " and ".join(conditions) if conditions else "true"
    count_params = list(bind.params)
    limit_token = bind(filters.limit)
    offset_token = bind(filters.offset)
    sql = f"""
            select
{columns.rstrip()}
            from {from_sql}
            where {where_sql}
            order by {order_by_sql}
            limit {limit_token}
            offset {offset_token}
            """
    count_sql = f"""
            select count(*)
            from {from_sql}
            where {where_sql}
            """
    return ListQuery(sql=sql, count_sql=count_sql, params=bind.params, count_params=count_params)


def _run_conditions(filters: DashboardFilter, bind: Callable[[Any], str]) -> list[str]:
    conditions = _time_window_conditions("r.started_at", filters, bind)
    conditions.extend(_status_conditions("r.status", filters.status, bind))
    if filters.run_id:
        conditions.append(f"r.run_id = {bind(filters.run_id)}")
    if filters.property_id:
        conditions.append(f"r.property_id = {bind(filters.property_id)}")
    # Runs carry neither column; match through the jobs that share the run id.
    if filters.prop_no:
        conditions.append(
            f"exists (select 1 from ingest_jobs j where j.run_id = r.run_id and j.prop_no = {bind(filters.prop_no)})"
        )
    if filters.batch_label:
        conditions.append(
            "exists (select 1 from ingest_jobs j "
            f"where j.run_id = r.run_id and j.batch_label = {bind(filters.batch_label)})"
        )
    if filters.q:
        conditions.append(_search_condition(["r.run_id", "r.property_id"], filters.q, bind))
    return conditions


def _stage_run_conditions(filters: DashboardFilter, bind: Callable[[Any], str]) -> list[str]:
    conditions = _time_window_conditions("s.started_at", filters, bind)
    conditions.extend(_status_conditions("s.status", filters.status, bind))
    if filters.stage:
        conditions.append(f"s.stage = any({bind(list(filters.stage))}::text[])")
    if filters.run_id:
        conditions.append(f"s.run_id = {bind(filters.run_id)}")
    if filters.prop_no:
        conditions.append(f"s.prop_no = {bind(filters.prop_no)}")
    return conditions


def _error_conditions(filters: DashboardFilter, bind: Callable[[Any], str]) -> list[str]:
    conditions = _time_window_conditions("e.created_at", filters, bind)
    if filters.error_code:
        conditions.append(f"e.error_code = {bind(filters.error_code)}")
    if filters.stage:
        conditions.append(f"e.stage = any({bind(list(filters.stage))}::text[])")
    if filters.run_id:
        conditions.append(f"e.run_id = {bind(filters.run_id)}")
    if filters.property_id:
        conditions.append(f"e.property_id = {bind(filters.property_id)}")
    if filters.prop_no:
        conditions.append(f"e.prop_no = {bind(filters.prop_no)}")
    if filters.q:
        conditions.append(_search_condition(["e.error_url", "e.message_short"], filters.q, bind))
    return conditions


def _time_window_conditions(column: str, filters: DashboardFilter, bind: Callable[[Any], str]) -> list[str]:
    conditions: list[str] = []
    if filters.starts_at is not None:
        conditions.append(f"{column} >= {bind(filters.starts_at)}")
    if filters.ends_before is not None:
        conditions.append(f"{column} < {bind(filters.ends_before)}")
    return conditions


def _status_conditions(column: str, status: str | None, bind: Callable[[Any], str]) -> list[str]:
    if not status:
        return []
    if status == QUEUED:
        # Unrecognized strings never count as queued.
        return [f"({column} is null or btrim({column}) = '' or lower(btrim({column})) = 'queued')"]
    if is_canonical_status(status):
        return [f"lower(btrim({column})) = any({bind(list(raw_statuses_for(status)))}::text[])"]
    return [f"btrim({column}) = {bind(status)}"]


def _search_condition(columns: list[str], q: str, bind: Callable[[Any], str]) -> str:
    token = bind(f"%{escape_like(q)}%")
    return "(" + " or ".join(f"coalesce({column}, '') ilike {token} escape '\\'" for column in columns) + ")"


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
