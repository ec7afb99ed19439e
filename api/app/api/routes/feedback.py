import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status as http_status

from app.core.config import Settings, get_settings
from app.schemas.feedback import FeedbackCreateOut, FeedbackCreateRequest, MetricsOut
from app.services.feedback import FeedbackSnapshot, compute_feedback_metrics
from app.services.repository import RepositoryError, RepositoryValidationError, get_repository

router = APIRouter()
logger = logging.getLogger(__name__)


def metrics_out(snapshot: FeedbackSnapshot) -> MetricsOut:
    data = snapshot.as_dict()
    return MetricsOut(
        window_days=data["window_days"],
        module_approval=data["module_approval"],
        refurb_per_room=data["target_approval"],
    )


@router.post("/feedback", response_model=FeedbackCreateOut)
async def create_feedback(
    payload: FeedbackCreateRequest,
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> FeedbackCreateOut:
    try:
        await repository.insert_feedback_event(
            run_id=payload.run_id,
            property_id=payload.property_id,
            module=payload.module,
            kind=payload.kind,
            target_id=payload.target_id,
            target_key=payload.target_key,
            vote=payload.vote,
        )
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    # Metrics are best-effort once the vote is stored.
    try:
        snapshot = await compute_feedback_metrics(
            repository,
            property_id=payload.property_id,
            window_days=settings.feedback_window_days,
        )
    except RepositoryError as exc:
        logger.warning("feedback metrics refresh failed for property_id=%s: %s", payload.property_id, exc)
        return FeedbackCreateOut(metrics=None)
    return FeedbackCreateOut(metrics=metrics_out(snapshot))


@router.get("/metrics", response_model=MetricsOut)
async def get_metrics(
    response: Response,
    property_id: str | None = Query(default=None, min_length=1),
    days: int | None = Query(default=None),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> MetricsOut:
    try:
        snapshot = await compute_feedback_metrics(
            repository,
            property_id=property_id,
            window_days=days if days is not None else settings.feedback_window_days,
        )
    except RepositoryError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    response.headers["Cache-Control"] = "no-store"
    return metrics_out(snapshot)
