from fastapi import APIRouter

from app.api.routes import feedback, health, jobs, overview, pipeline, properties, runs, uploads

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["dashboard"])
api_router.include_router(runs.router, prefix="/runs", tags=["dashboard"])
api_router.include_router(properties.router, prefix="/properties", tags=["dashboard"])
api_router.include_router(overview.router, prefix="/overview", tags=["dashboard"])
api_router.include_router(pipeline.router, prefix="/dashboard", tags=["dashboard"])
api_router.include_router(feedback.router, tags=["feedback"])
api_router.include_router(uploads.router, tags=["uploads"])
