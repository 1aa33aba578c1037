from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class SubmissionOut(BaseModel):
    id: str
    subject: str
    name: str
    phone: str
    feature: str
    feature_id: str
    context: dict[str, Any]
    plan_key: str
    plan_label: str | None = None
    plan_price: Decimal | None = None
    proof_ref: str
    status: str
    message: str | None = None
    admin_note: str | None = None
    expires_at: datetime | None = None
    approved_at: datetime | None = None
    revoked_at: datetime | None = None
    rejected_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SubmissionCreatedOut(BaseModel):
    """Intake response: id and status; expires_at is set when auto-approval granted access right away."""
    id: str
    status: str
    expires_at: datetime | None = None
    expiry: int | None = None
    stream_token: str | None = None


class SubmissionLookupOut(BaseModel):
    found: bool
    item: SubmissionOut | None = None


class ApproveIn(BaseModel):
    seconds: int = Field(0, description="Access duration from now; must be positive")
    message: str | None = None


class RejectIn(BaseModel):
    note: str | None = None


class AutoModeIn(BaseModel):
    auto: bool


class AutoModeOut(BaseModel):
    auto: bool
    updated_at: str | None = None
