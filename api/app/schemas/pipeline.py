from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class StageStatOut(BaseModel):
    stage: str
    avg_duration_sec: float
    p95_duration_sec: float | None = None
    success_rate: float
    total_count: int


class StageRunOut(BaseModel):
    id: int
    run_id: str | None = None
    prop_no: str | None = None
    stage: str | None = None
    status: str | None = None
    status_normalized: str
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_sec: float | None = None


class StagesOut(BaseModel):
    stats: list[StageStatOut] = Field(default_factory=list)
    rows: list[StageRunOut] | None = None
    total: int | None = None


class PipelineErrorOut(BaseModel):
    id: int
    run_id: str | None = None
    property_id: str | None = None
    prop_no: str | None = None
    stage: str | None = None
    node_name: str | None = None
    execution_id: str | None = None
    error_code: str | None = None
    message_short: str | None = None
    error_url: str | None = None
    context_json: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class ErrorCodeCountOut(BaseModel):
    error_code: str
    count: int


class ErrorStageCountOut(BaseModel):
    stage: str
    count: int


class ErrorsOut(BaseModel):
    errors: list[PipelineErrorOut] = Field(default_factory=list)
    total: int = 0
    by_code: list[ErrorCodeCountOut] = Field(default_factory=list)
    by_stage: list[ErrorStageCountOut] = Field(default_factory=list)


class BatchLabelOut(BaseModel):
    batch_label: str
    created_at: datetime | None = None


class BatchesOut(BaseModel):
    batches: list[BatchLabelOut] = Field(default_factory=list)
