from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from functools import lru_cache
import json
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from app.core.config import get_settings
from app.core.filters import DashboardFilter
from app.services.queries import (
    ListQuery,
    build_batch_labels_query,
    build_error_groups_query,
    build_errors_query,
    build_ingest_jobs_query,
    build_overview_jobs_query,
    build_overview_runs_query,
    build_properties_query,
    build_runs_query,
    build_stage_runs_query,
    build_stage_stats_query,
)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryQueryError(RepositoryError):
    """Raised when a read or write fails inside the database."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


FEEDBACK_MODULES = {"rent", "refurb", "epc", "financials"}
FEEDBACK_KINDS = {"thumb", "edit", "confirm"}
FEEDBACK_VOTES = {"up", "down"}
MISSING_ROOM_STATUSES = {"pending", "emailed", "uploaded", "processing", "closed"}

_QUERY_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError)

MISSING_ROOM_COLUMNS = """
              id::text as id,
              property_id,
              room_key,
              room_label,
              floor,
              kind,
              token_expires_at,
              status,
              created_at,
              updated_at
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def list_ingest_jobs(self, filters: DashboardFilter) -> tuple[list[dict[str, Any]], int]:
        return await self._fetch_page(build_ingest_jobs_query(filters), self._ingest_job_row_to_dict)

    async def list_runs(self, filters: DashboardFilter) -> tuple[list[dict[str, Any]], int]:
        return await self._fetch_page(build_runs_query(filters), self._run_row_to_dict)

    async def list_properties(self, filters: DashboardFilter) -> tuple[list[dict[str, Any]], int]:
        return await self._fetch_page(build_properties_query(filters), self._property_row_to_dict)

    async def list_stage_starts(self, run_ids: Sequence[str]) -> list[dict[str, Any]]:
        if not run_ids:
            return []
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select
                  run_id,
                  started_at
                from pipeline_stage_runs
                where run_id = any($1::text[])
                  and started_at is not null
                """,
                list(run_ids),
            )
        except _QUERY_ERRORS as exc:
            raise RepositoryQueryError("failed to read pipeline stage runs") from exc
        return [{"run_id": row["run_id"], "started_at": row["started_at"]} for row in rows]

    async def list_overview_runs(self, filters: DashboardFilter, *, max_rows: int) -> list[dict[str, Any]]:
        sql, params = build_overview_runs_query(filters, max_rows=max_rows)
        rows = await self._fetch(sql, params, what="runs")
        return [
            {"run_id": row["run_id"], "status": row["status"], "started_at": row["started_at"]}
            for row in rows
        ]

    async def list_overview_jobs(self, filters: DashboardFilter, *, max_rows: int) -> list[dict[str, Any]]:
        sql, params = build_overview_jobs_query(filters, max_rows=max_rows)
        rows = await self._fetch(sql, params, what="ingest jobs")
        return [{"id": row["id"], "run_id": row["run_id"], "created_at": row["created_at"]} for row in rows]

    async def list_stage_runs(self, filters: DashboardFilter) -> tuple[list[dict[str, Any]], int]:
        return await self._fetch_page(build_stage_runs_query(filters), self._stage_run_row_to_dict)

    async def list_stage_stat_rows(self, filters: DashboardFilter, *, max_rows: int) -> list[dict[str, Any]]:
        sql, params = build_stage_stats_query(filters, max_rows=max_rows)
        rows = await self._fetch(sql, params, what="pipeline stage runs")
        return [
            {"stage": row["stage"], "status": row["status"], "duration_sec": self._coerce_float(row["duration_sec"])}
            for row in rows
        ]

    async def list_pipeline_errors(self, filters: DashboardFilter) -> tuple[list[dict[str, Any]], int]:
        return await self._fetch_page(build_errors_query(filters), self._pipeline_error_row_to_dict)

    async def count_pipeline_errors_by(self, filters: DashboardFilter, *, group_by: str) -> list[dict[str, Any]]:
        sql, params = build_error_groups_query(filters, group_by=group_by)
        rows = await self._fetch(sql, params, what="pipeline error groups")
        return [{group_by: row["key"], "count": int(row["count"])} for row in rows]

    async def list_batch_labels(self, *, limit: int) -> list[dict[str, Any]]:
        sql, params = build_batch_labels_query(limit=limit)
        rows = await self._fetch(sql, params, what="batch labels")
        return [{"batch_label": row["batch_label"], "created_at": row["created_at"]} for row in rows]

    async def get_run(self, run_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                select
                  run_id,
                  property_id,
                  status,
                  started_at,
                  updated_at,
                  cancel_requested
                from runs
                where run_id = $1
                """,
                run_id,
            )
        except _QUERY_ERRORS as exc:
            raise RepositoryQueryError("failed to read run") from exc
        if not row:
            raise RepositoryNotFoundError("run not found")
        return self._run_row_to_dict(row)

    async def list_runs_for_property(self, property_id: str) -> list[dict[str, Any]]:
        rows = await self._fetch(
            """
            select
              run_id,
              property_id,
              status,
              started_at,
              updated_at,
              cancel_requested
            from runs
            where property_id = $1
            order by started_at desc nulls last, run_id desc
            """,
            [property_id],
            what="runs",
        )
        return [self._run_row_to_dict(row) for row in rows]

    async def get_property(self, property_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                select
                  property_id,
                  run_id,
                  property_title,
                  address,
                  postcode,
                  guide_price_gbp,
                  monthly_rent_gbp,
                  property_total_with_vat,
                  property_pdf
                from properties
                where property_id = $1
                """,
                property_id,
            )
        except _QUERY_ERRORS as exc:
            raise RepositoryQueryError("failed to read property") from exc
        if not row:
            raise RepositoryNotFoundError("property not found")
        return self._property_row_to_dict(row)

    async def upsert_run(
        self,
        *,
        run_id: str,
        property_id: str | None,
        status: str | None,
        started_at: datetime | None,
    ) -> dict[str, Any]:
        normalized_run_id = self._coerce_text(run_id)
        if not normalized_run_id:
            raise RepositoryValidationError("run_id must be a non-empty string")

        pool = await self._get_pool()
        try:
            # Insert-or-update in one statement keyed on the unique run_id.
            row = await pool.fetchrow(
                """
                insert into runs (
                  run_id,
                  property_id,
                  status,
                  started_at,
                  updated_at,
                  cancel_requested
                )
                values ($1, $2, $3, coalesce($4, now()), now(), false)
                on conflict (run_id) do update
                set
                  property_id = coalesce(excluded.property_id, runs.property_id),
                  status = coalesce(excluded.status, runs.status),
                  started_at = coalesce($4, runs.started_at),
                  updated_at = now()
                returning
                  run_id,
                  property_id,
                  status,
                  started_at,
                  updated_at,
                  cancel_requested
                """,
                normalized_run_id,
                self._coerce_text(property_id),
                self._coerce_text(status),
                started_at,
            )
        except _QUERY_ERRORS as exc:
            raise RepositoryQueryError("failed to upsert run") from exc
        if not row:
            raise RepositoryConflictError("failed to upsert run")
        return self._run_row_to_dict(row)

    async def request_run_cancel(self, run_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                update runs
                set
                  cancel_requested = true,
                  updated_at = now()
                where run_id = $1
                returning
                  run_id,
                  property_id,
                  status,
                  started_at,
                  updated_at,
                  cancel_requested
                """,
                run_id,
            )
        except _QUERY_ERRORS as exc:
            raise RepositoryQueryError("failed to flag run for cancellation") from exc
        if not row:
            raise RepositoryNotFoundError("run not found")
        return self._run_row_to_dict(row)

    async def insert_feedback_event(
        self,
        *,
        run_id: str,
        property_id: str,
        module: str,
        kind: str,
        target_id: str | None,
        target_key: str | None,
        vote: str | None,
    ) -> dict[str, Any]:
        if module not in FEEDBACK_MODULES:
            raise RepositoryValidationError("module must be one of: rent, refurb, epc, financials")
        if kind not in FEEDBACK_KINDS:
            raise RepositoryValidationError("kind must be one of: thumb, edit, confirm")
        if vote is not None and vote not in FEEDBACK_VOTES:
            raise RepositoryValidationError("vote must be one of: up, down")

        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                insert into feedback_events (
                  run_id,
                  property_id,
                  module,
                  kind,
                  target_id,
                  target_key,
                  vote
                )
                values ($1, $2, $3, $4, $5, $6, $7)
                returning
                  id,
                  run_id,
                  property_id,
                  module,
                  kind,
                  target_id,
                  target_key,
                  vote,
                  created_at
                """,
                run_id,
                property_id,
                module,
                kind,
                self._coerce_text(target_id),
                self._coerce_text(target_key),
                vote,
            )
        except _QUERY_ERRORS as exc:
            raise RepositoryQueryError("failed to record feedback event") from exc
        if not row:
            raise RepositoryConflictError("failed to record feedback event")
        return self._feedback_row_to_dict(row)

    async def list_thumb_feedback(self, *, since: datetime, property_id: str | None) -> list[dict[str, Any]]:
        rows = await self._fetch(
            """
            select
              id,
              run_id,
              property_id,
              module,
              kind,
              target_id,
              target_key,
              vote,
              created_at
            from feedback_events
            where kind = 'thumb'
              and created_at >= $1
              and ($2::text is null or property_id = $2)
            order by created_at desc, id desc
            """,
            [since, self._coerce_text(property_id)],
            what="feedback events",
        )
        return [self._feedback_row_to_dict(row) for row in rows]

    async def get_missing_room_request_by_token(self, token: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"""
                select
{MISSING_ROOM_COLUMNS.rstrip()}
                from missing_room_requests
                where token = $1
                """,
                token,
            )
        except _QUERY_ERRORS as exc:
            raise RepositoryQueryError("failed to read missing room request") from exc
        if not row:
            return None
        return self._missing_room_row_to_dict(row)

    async def list_missing_room_requests(self, *, property_id: str, only_pending: bool) -> list[dict[str, Any]]:
        rows = await self._fetch(
            f"""
            select
{MISSING_ROOM_COLUMNS.rstrip()}
            from missing_room_requests
            where property_id = $1
              and ($2::boolean = false or status = 'pending')
            order by created_at desc, id desc
            """,
            [property_id, only_pending],
            what="missing room requests",
        )
        return [self._missing_room_row_to_dict(row) for row in rows]

    async def complete_missing_room_upload(
        self,
        *,
        request_id: str,
        expected_status: str,
        expected_updated_at: datetime | None,
        to_status: str,
        uploads: Sequence[dict[str, Any]],
    ) -> dict[str, Any]:
        if to_status not in MISSING_ROOM_STATUSES:
            raise RepositoryValidationError(f"unknown missing room status: {to_status}")

        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    # Compare-and-swap on the state observed at validation; a
                    # concurrent upload that got there first leaves no match.
                    row = await conn.fetchrow(
                        f"""
                        update missing_room_requests
                        set
                          status = $4,
                          updated_at = now()
                        where id = $1::uuid
                          and status = $2
                          and updated_at is not distinct from $3
                          and token_expires_at > now()
                        returning
{MISSING_ROOM_COLUMNS.rstrip()}
                        """,
                        request_id,
                        expected_status,
                        expected_updated_at,
                        to_status,
                    )
                    if not row:
                        exists = await conn.fetchval(
                            "select 1 from missing_room_requests where id = $1::uuid",
                            request_id,
                        )
                        if not exists:
                            raise RepositoryNotFoundError("missing room request not found")
                        raise RepositoryConflictError("missing room request is no longer accepting uploads")

                    await conn.executemany(
                        """
                        insert into missing_room_uploads (
                          request_id,
                          property_id,
                          room_key,
                          kind,
                          public_url,
                          storage_path,
                          status
                        )
                        values ($1::uuid, $2, $3, $4, $5, $6, 'queued')
                        """,
                        [
                            (
                                request_id,
                                row["property_id"],
                                row["room_key"],
                                row["kind"],
                                upload["public_url"],
                                upload["storage_path"],
                            )
                            for upload in uploads
                        ],
                    )
                    return self._missing_room_row_to_dict(row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("missing room request not found") from exc
        except _QUERY_ERRORS as exc:
            raise RepositoryQueryError("failed to record missing room upload") from exc

    async def _fetch_page(
        self,
        query: ListQuery,
        row_to_dict: Callable[[asyncpg.Record], dict[str, Any]],
    ) -> tuple[list[dict[str, Any]], int]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(query.sql, *query.params)
                total = await conn.fetchval(query.count_sql, *query.count_params)
        except _QUERY_ERRORS as exc:
            raise RepositoryQueryError(f"dashboard query failed: {exc}") from exc
        return [row_to_dict(row) for row in rows], int(total or 0)

    async def _fetch(self, sql: str, params: Sequence[Any], *, what: str) -> list[asyncpg.Record]:
        pool = await self._get_pool()
        try:
            return await pool.fetch(sql, *params)
        except _QUERY_ERRORS as exc:
            raise RepositoryQueryError(f"failed to read {what}") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("RB_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _ingest_job_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "run_id": row["run_id"],
            "property_id": row["property_id"],
            "batch_label": row["batch_label"],
            "status": row["status"],
            "created_at": row["created_at"],
            "url": row["url"],
            "prop_no": row["prop_no"],
        }

    @staticmethod
    def _run_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "run_id": row["run_id"],
            "property_id": row["property_id"],
            "status": row["status"],
            "started_at": row["started_at"],
            "updated_at": row["updated_at"],
            "cancel_requested": bool(row["cancel_requested"]),
        }

    def _property_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "property_id": row["property_id"],
            "run_id": row["run_id"],
            "property_title": row["property_title"],
            "address": row["address"],
            "postcode": row["postcode"],
            "guide_price_gbp": self._coerce_float(row["guide_price_gbp"]),
            "monthly_rent_gbp": self._coerce_float(row["monthly_rent_gbp"]),
            "property_total_with_vat": self._coerce_float(row["property_total_with_vat"]),
            "property_pdf": row["property_pdf"],
        }

    @staticmethod
    def _feedback_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "run_id": row["run_id"],
            "property_id": row["property_id"],
            "module": row["module"],
            "kind": row["kind"],
            "target_id": row["target_id"],
            "target_key": row["target_key"],
            "vote": row["vote"],
            "created_at": row["created_at"],
        }

    def _missing_room_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "property_id": row["property_id"],
            "room_key": row["room_key"],
            "room_label": row["room_label"],
            "floor": row["floor"],
            "kind": row["kind"],
            "token_expires_at": self._coerce_datetime(row["token_expires_at"]),
            "status": row["status"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    def _stage_run_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "run_id": row["run_id"],
            "prop_no": row["prop_no"],
            "stage": row["stage"],
            "status": row["status"],
            "started_at": row["started_at"],
            "finished_at": row["finished_at"],
            "duration_sec": self._coerce_float(row["duration_sec"]),
        }

    def _pipeline_error_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "run_id": row["run_id"],
            "property_id": row["property_id"],
            "prop_no": row["prop_no"],
            "stage": row["stage"],
            "node_name": row["node_name"],
            "execution_id": row["execution_id"],
            "error_code": row["error_code"],
            "message_short": row["message_short"],
            "error_url": row["error_url"],
            "context_json": self._coerce_json_dict(row["context_json"]),
            "created_at": row["created_at"],
        }

    @staticmethod
    def _coerce_text(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return str(value)

    @staticmethod
    def _coerce_float(value: Any) -> float | None:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _coerce_datetime(value: Any) -> datetime | None:
        if value is None:
            return None
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            candidate = value.strip()
            if not candidate:
                return None
            try:
                return datetime.fromisoformat(candidate.replace("Z", "+00:00"))
            except ValueError:
                return None
        return None

    @staticmethod
    def _coerce_json_dict(value: Any) -> dict[str, Any]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        if isinstance(value, dict):
            return value
        return {}


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
