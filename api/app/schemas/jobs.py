from datetime import datetime

from pydantic import BaseModel, Field


class IngestJobOut(BaseModel):
    id: str
    run_id: str | None = None
    property_id: str | None = None
    batch_label: str | None = None
    status: str | None = None
    status_normalized: str
    created_at: datetime | None = None
    url: str | None = None
    prop_no: str | None = None
    handoff_latency_sec: float | None = None


class IngestJobListOut(BaseModel):
    jobs: list[IngestJobOut] = Field(default_factory=list)
    total: int = 0
