from fastapi import APIRouter, Depends, HTTPException, Request, Response, status as http_status

from app.core.config import Settings, get_settings
from app.core.filters import FilterValidationError, parse_filters
from app.schemas.overview import OverviewOut
from app.services.overview import compute_overview
from app.services.repository import RepositoryError, get_repository

router = APIRouter()


@router.get("", response_model=OverviewOut)
async def get_overview(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> OverviewOut:
    try:
        filters = parse_filters(request.query_params)
    except FilterValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    try:
        summary = await compute_overview(
            repository,
            filters,
            max_rows=settings.overview_max_rows,
            latency_sample_size=settings.overview_latency_sample_size,
        )
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    response.headers["Cache-Control"] = "no-store"
    return OverviewOut(**summary)
