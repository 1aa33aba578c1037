from datetime import datetime

from pydantic import BaseModel


class AccessCheckOut(BaseModel):
    """Answer of the access-check endpoint (also the polling fallback)."""
    allowed: bool
    expires_at: datetime | None = None
    expiry: int | None = None  # epoch ms, for browser clients
    seconds_left: int = 0
    reason: str | None = None  # NO_GRANT / EXPIRED / REVOKED
    message: str | None = None
    preview_seconds: int = 0


class GrantOut(BaseModel):
    subject: str
    feature: str
    feature_id: str
    expires_at: datetime
    expiry: int
    message: str | None = None
    submission_id: str | None = None


class DirectGrantIn(BaseModel):
    email: str
    feature: str
    feature_id: str
    seconds: int = 0
    message: str | None = None


class RevokeKeyIn(BaseModel):
    email: str
    feature: str
    feature_id: str
