from pydantic import BaseModel, Field

from app.schemas.runs import RunOut


class PropertyOut(BaseModel):
    property_id: str
    run_id: str | None = None
    property_title: str | None = None
    address: str | None = None
    postcode: str | None = None
    guide_price_gbp: float | None = None
    monthly_rent_gbp: float | None = None
    property_total_with_vat: float | None = None
    property_pdf: str | None = None


class PropertyListOut(BaseModel):
    properties: list[PropertyOut] = Field(default_factory=list)
    total: int = 0


class PropertyDetailOut(PropertyOut):
    runs: list[RunOut] = Field(default_factory=list)
