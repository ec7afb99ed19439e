from datetime import datetime

from pydantic import BaseModel, Field


class MissingRoomRequestOut(BaseModel):
    id: str
    property_id: str
    room_key: str
    room_label: str | None = None
    floor: str | None = None
    kind: str | None = None
    status: str
    token_expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UploadTokenPreviewOut(MissingRoomRequestOut):
    expires_in_seconds: int


class UploadAcceptedOut(BaseModel):
    ok: bool = True
    uploaded_count: int
    urls: list[str] = Field(default_factory=list)
