from pydantic import BaseModel, Field


class PlanTierOut(BaseModel):
    key: str
    label: str
    duration_seconds: int
    duration_days: float
    price: float | None = None
    currency: str
    order_index: int
    enabled: bool


class PlanTierUpdate(BaseModel):
    key: str
    label: str | None = None
    duration_seconds: int | None = Field(default=None, gt=0)
    duration_days: int | None = Field(default=None, gt=0)
    price: float | None = None
    order_index: int | None = None
    enabled: bool | None = None
