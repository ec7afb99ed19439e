from fastapi import APIRouter, Depends, HTTPException, Request, Response, status as http_status

from app.core.filters import FilterValidationError, parse_filters
from app.core.status import normalize_status
from app.schemas.jobs import IngestJobListOut, IngestJobOut
from app.services.latency import attach_handoff_latency
from app.services.repository import RepositoryError, get_repository

router = APIRouter()


@router.get("", response_model=IngestJobListOut)
async def list_jobs(request: Request, response: Response, repository=Depends(get_repository)) -> IngestJobListOut:
    try:
        filters = parse_filters(request.query_params)
    except FilterValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    try:
        rows, total = await repository.list_ingest_jobs(filters)
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    jobs = await attach_handoff_latency(repository, rows)
    response.headers["Cache-Control"] = "no-store"
    return IngestJobListOut(
        jobs=[IngestJobOut(**job, status_normalized=normalize_status(job.get("status"))) for job in jobs],
        total=total,
    )
