from fastapi import APIRouter, Depends, HTTPException, Request, Response, status as http_status

from app.api.routes.runs import run_out
from app.core.filters import FilterValidationError, parse_filters
from app.schemas.properties import PropertyDetailOut, PropertyListOut, PropertyOut
from app.services.repository import RepositoryError, RepositoryNotFoundError, get_repository

router = APIRouter()


@router.get("", response_model=PropertyListOut)
async def list_properties(request: Request, response: Response, repository=Depends(get_repository)) -> PropertyListOut:
    try:
        filters = parse_filters(request.query_params)
    except FilterValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    try:
        rows, total = await repository.list_properties(filters)
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    response.headers["Cache-Control"] = "no-store"
    return PropertyListOut(properties=[PropertyOut(**row) for row in rows], total=total)


@router.get("/{property_id}", response_model=PropertyDetailOut)
async def get_property(property_id: str, response: Response, repository=Depends(get_repository)) -> PropertyDetailOut:
    try:
        row = await repository.get_property(property_id)
        runs = await repository.list_runs_for_property(property_id)
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    response.headers["Cache-Control"] = "no-store"
    return PropertyDetailOut(**row, runs=[run_out(run) for run in runs])
