from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lawnet.db.session import get_db
from lawnet.schemas.plans import PlanTierOut, PlanTierUpdate
from lawnet.services.audit.service import AuditService
from lawnet.services.auth.admin_key import require_admin
from lawnet.services.plan_tiers.service import PlanTierService

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.get("", response_model=list[PlanTierOut])
def list_plans(db: Session = Depends(get_db)):
    """Enabled plan tiers for the payment overlay."""
    svc = PlanTierService(db)
    return [svc.as_dict(t) for t in svc.list_tiers()]


@router.get("/all", response_model=list[PlanTierOut])
def list_all_plans(actor: str = Depends(require_admin), db: Session = Depends(get_db)):
    svc = PlanTierService(db)
    return [svc.as_dict(t) for t in svc.list_tiers(include_disabled=True)]


@router.put("", response_model=list[PlanTierOut])
def update_plans(
    payload: list[PlanTierUpdate],
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Bulk edit tiers (label / duration / price / order / enabled). Unknown keys are 404."""
    svc = PlanTierService(db)
    for item in payload:
        tier = svc.update_tier(item.key, item.model_dump(exclude={"key"}, exclude_unset=True))
        AuditService(db).log("admin", actor, "plan_tier_updated", "plan_tier", tier.key, svc.as_dict(tier))
    db.commit()
    return [svc.as_dict(t) for t in svc.list_tiers(include_disabled=True)]
