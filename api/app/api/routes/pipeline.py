from fastapi import APIRouter, Depends, HTTPException, Request, Response, status as http_status

from app.core.config import Settings, get_settings
from app.core.filters import DashboardFilter, FilterValidationError, parse_filters
from app.core.status import normalize_status
from app.schemas.pipeline import BatchesOut, ErrorsOut, StageRunOut, StagesOut
from app.services.pipeline import compute_error_report, compute_stage_stats
from app.services.repository import RepositoryError, get_repository

router = APIRouter()


def _filters(request: Request) -> DashboardFilter:
    try:
        return parse_filters(request.query_params)
    except FilterValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc


@router.get("/stages", response_model=StagesOut)
async def get_stages(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> StagesOut:
    filters = _filters(request)
    try:
        if filters.raw:
            rows, total = await repository.list_stage_runs(filters)
        else:
            stats = await compute_stage_stats(repository, filters, max_rows=settings.stage_stats_max_rows)
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    response.headers["Cache-Control"] = "no-store"
    if filters.raw:
        return StagesOut(
            stats=[],
            rows=[StageRunOut(**row, status_normalized=normalize_status(row.get("status"))) for row in rows],
            total=total,
        )
    return StagesOut(stats=stats)


@router.get("/errors", response_model=ErrorsOut)
async def get_errors(request: Request, response: Response, repository=Depends(get_repository)) -> ErrorsOut:
    filters = _filters(request)
    try:
        report = await compute_error_report(repository, filters)
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    response.headers["Cache-Control"] = "no-store"
    return ErrorsOut(**report)


@router.get("/batches", response_model=BatchesOut)
async def get_batches(
    response: Response,
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> BatchesOut:
    try:
        batches = await repository.list_batch_labels(limit=settings.batch_labels_limit)
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    response.headers["Cache-Control"] = "public, max-age=60"
    return BatchesOut(batches=batches)
