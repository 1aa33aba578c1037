"""
Admin API: audit trail. Submission review lives in submissions.py, plan tiers in plans.py.
"""
import math

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from lawnet.db.session import get_db
from lawnet.schemas.admin import AuditLogOut, PaginatedResponse
from lawnet.services.audit.service import AuditService
from lawnet.services.auth.admin_key import require_admin

router = APIRouter(prefix="/api", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/audit", response_model=PaginatedResponse)
def audit_list(
    db: Session = Depends(get_db),
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
):
    rows, total = AuditService(db).list(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        page=page,
        page_size=page_size,
    )
    return PaginatedResponse(
        items=[AuditLogOut.model_validate(r).model_dump(mode="json") for r in rows],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total else 0,
    )
