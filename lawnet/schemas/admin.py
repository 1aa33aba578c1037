"""
Admin API schemas: pagination wrapper and audit rows.
"""
from datetime import datetime
from typing import Any

from pydantic import BaseModel


class PaginatedResponse(BaseModel):
    """Paginated response wrapper."""
    items: list[Any]
    total: int
    page: int
    page_size: int
    pages: int


class AuditLogOut(BaseModel):
    """Audit log entry."""
    id: str
    actor_type: str
    actor_id: str | None
    action: str
    entity_type: str
    entity_id: str | None
    payload: dict[str, Any]
    created_at: datetime

    model_config = {"from_attributes": True}
