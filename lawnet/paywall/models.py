"""
Paywall DTOs: AccessContext (input of decide_access) and AccessDecision.
"""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

DenyReason = Literal["NO_GRANT", "EXPIRED", "REVOKED"]


class AccessContext(BaseModel):
    """Everything decide_access needs, already read from the store (or the client cache)."""

    subject: str
    feature: str
    feature_id: str
    now: datetime
    # None = no grant row for the key
    expires_at: datetime | None = None
    revoked: bool = False

    model_config = {"frozen": True}


class AccessDecision(BaseModel):
    """Result of decide_access: whether content is unlocked, and if not, why and how long a preview runs."""

    allowed: bool
    reason: DenyReason | None = Field(None, description="Set only when allowed is False")
    expires_at: datetime | None = None
    seconds_left: int = 0
    preview_seconds: int = 0

    model_config = {"frozen": True}
