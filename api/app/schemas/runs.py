from datetime import datetime

from pydantic import BaseModel, Field


class RunOut(BaseModel):
    run_id: str
    property_id: str | None = None
    status: str | None = None
    status_normalized: str
    started_at: datetime | None = None
    updated_at: datetime | None = None
    cancel_requested: bool = False


class RunListOut(BaseModel):
    runs: list[RunOut] = Field(default_factory=list)
    total: int = 0


class RunUpsertRequest(BaseModel):
    run_id: str = Field(min_length=1)
    property_id: str | None = None
    status: str | None = None
    started_at: datetime | None = None


class RunCancelOut(BaseModel):
    ok: bool = True
    run_id: str
    cancel_requested: bool


class RunCancelStatusOut(BaseModel):
    run_id: str
    cancel_requested: bool
