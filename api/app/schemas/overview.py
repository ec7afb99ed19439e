from pydantic import BaseModel, Field


class OverviewPointOut(BaseModel):
    date: str
    runs: int
    success: int
    failed: int


class OverviewOut(BaseModel):
    total_runs: int
    success_rate: float | None = None
    status_counts: dict[str, int] = Field(default_factory=dict)
    unknown_status_counts: dict[str, int] = Field(default_factory=dict)
    unknown_status_count: int = 0
    avg_handoff_latency_sec: float | None = None
    latency_sample_size: int = 0
    negative_handoff_count: int = 0
    timeseries: list[OverviewPointOut] = Field(default_factory=list)
    truncated: bool = False
