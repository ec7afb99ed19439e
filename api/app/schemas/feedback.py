from typing import Literal

from pydantic import BaseModel, Field, model_validator

FeedbackModule = Literal["rent", "refurb", "epc", "financials"]
FeedbackKind = Literal["thumb", "edit", "confirm"]
FeedbackVote = Literal["up", "down"]


class FeedbackCreateRequest(BaseModel):
    run_id: str = Field(min_length=1)
    property_id: str = Field(min_length=1)
    module: FeedbackModule
    kind: FeedbackKind = "thumb"
    target_id: str | None = None
    target_key: str | None = None
    vote: FeedbackVote | None = None

    @model_validator(mode="after")
    def _thumb_needs_vote(self) -> "FeedbackCreateRequest":
        if self.kind == "thumb" and self.vote is None:
            raise ValueError("vote is required for thumb feedback")
        return self


class ApprovalStatOut(BaseModel):
    n: int
    approval: float | None = None


class MetricsOut(BaseModel):
    window_days: int = Field(serialization_alias="windowDays")
    module_approval: dict[str, ApprovalStatOut] = Field(serialization_alias="moduleApproval")
    refurb_per_room: dict[str, ApprovalStatOut] = Field(serialization_alias="refurbPerRoom")
    rent_mape: float | None = None
    refurb_mape: float | None = None
    epc_accuracy: float | None = None


class FeedbackCreateOut(BaseModel):
    ok: bool = True
    metrics: MetricsOut | None = None
