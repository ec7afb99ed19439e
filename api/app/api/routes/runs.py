from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status as http_status

from app.core.filters import FilterValidationError, parse_filters
from app.core.security import require_orchestrator_key
from app.core.status import normalize_status
from app.schemas.runs import RunCancelOut, RunCancelStatusOut, RunListOut, RunOut, RunUpsertRequest
from app.services.repository import (
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


def run_out(row: dict[str, Any]) -> RunOut:
    return RunOut(**row, status_normalized=normalize_status(row.get("status")))


@router.get("", response_model=RunListOut)
async def list_runs(request: Request, response: Response, repository=Depends(get_repository)) -> RunListOut:
    try:
        filters = parse_filters(request.query_params)
    except FilterValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    try:
        rows, total = await repository.list_runs(filters)
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    response.headers["Cache-Control"] = "no-store"
    return RunListOut(runs=[run_out(row) for row in rows], total=total)


@router.post("", response_model=RunOut, dependencies=[Depends(require_orchestrator_key)])
async def upsert_run(payload: RunUpsertRequest, repository=Depends(get_repository)) -> RunOut:
    try:
        row = await repository.upsert_run(
            run_id=payload.run_id,
            property_id=payload.property_id,
            status=payload.status,
            started_at=payload.started_at,
        )
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return run_out(row)


@router.get("/{run_id}", response_model=RunOut)
async def get_run(run_id: str, response: Response, repository=Depends(get_repository)) -> RunOut:
    try:
        row = await repository.get_run(run_id)
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    response.headers["Cache-Control"] = "no-store"
    return run_out(row)


@router.post("/{run_id}/cancel", response_model=RunCancelOut, dependencies=[Depends(require_orchestrator_key)])
async def request_cancel(run_id: str, repository=Depends(get_repository)) -> RunCancelOut:
    try:
        row = await repository.request_run_cancel(run_id)
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return RunCancelOut(run_id=row["run_id"], cancel_requested=row["cancel_requested"])


@router.get("/{run_id}/cancel", response_model=RunCancelStatusOut)
async def get_cancel_flag(run_id: str, response: Response, repository=Depends(get_repository)) -> RunCancelStatusOut:
    try:
        row = await repository.get_run(run_id)
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    response.headers["Cache-Control"] = "no-store"
    return RunCancelStatusOut(run_id=row["run_id"], cancel_requested=row["cancel_requested"])
