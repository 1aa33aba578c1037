"""Plan tiers: named duration buckets used to compute grant expiry (weekly / monthly / yearly)."""
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session

from lawnet.core.config import settings
from lawnet.core.errors import NotFoundError, ValidationError
from lawnet.models.plan_tier import PlanTier

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60

_PLAN_ALIASES = {
    "weekly": ("weekly", "week", "7", "7d"),
    "monthly": ("monthly", "month", "30", "30d"),
    "yearly": ("yearly", "year", "365", "365d", "annual"),
}


def normalize_plan_key(key: str | None) -> str:
    """Map aliases (week / 7d / month / 30 / year ...) to the canonical tier key; unknown keys pass through lower-cased."""
    k = (key or "").strip().lower()
    for canonical, aliases in _PLAN_ALIASES.items():
        if k in aliases:
            return canonical
    return k


def default_durations() -> dict[str, int]:
    return {
        "weekly": settings.plan_weekly_days * DAY_SECONDS,
        "monthly": settings.plan_monthly_days * DAY_SECONDS,
        "yearly": settings.plan_yearly_days * DAY_SECONDS,
    }


def duration_from_label(label: str | None) -> int | None:
    """Free-text plan labels ("Yearly access", "1 month") resolved by substring, as shown in the payment overlay."""
    text = (label or "").strip().lower()
    if not text:
        return None
    durations = default_durations()
    if "year" in text:
        return durations["yearly"]
    if "month" in text:
        return durations["monthly"]
    if "week" in text:
        return durations["weekly"]
    if "day" in text:
        return DAY_SECONDS
    return None


class PlanTierService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def list_tiers(self, include_disabled: bool = False) -> list[PlanTier]:
        q = self.db.query(PlanTier)
        if not include_disabled:
            q = q.filter(PlanTier.enabled.is_(True))
        return q.order_by(PlanTier.order_index).all()

    def get_tier(self, key: str) -> PlanTier | None:
        return self.db.query(PlanTier).filter(PlanTier.key == normalize_plan_key(key)).one_or_none()

    def seed_default_tiers(self) -> None:
        """Create weekly / monthly / yearly if the table is empty; add any missing default tier otherwise."""
        durations = default_durations()
        defaults = [
            ("weekly", "Weekly", durations["weekly"], Decimal("200"), 0),
            ("monthly", "Monthly", durations["monthly"], Decimal("400"), 1),
            ("yearly", "Yearly", durations["yearly"], Decimal("1000"), 2),
        ]
        added = 0
        for key, label, seconds, price, idx in defaults:
            if self.get_tier(key) is None:
                self.db.add(PlanTier(
                    key=key, label=label, duration_seconds=seconds,
                    price=price, order_index=idx, enabled=True,
                ))
                added += 1
        if added:
            self.db.flush()
            logger.info("default_plan_tiers_seeded", extra={"count": added})

    def duration_for(
        self, plan_key: str | None, plan_label: str | None = None, default_seconds: int | None = None
    ) -> int:
        """
        Seconds of access for a plan.
        Order: configured tier by key -> built-in default by key -> label substring -> `default_seconds`
        (the approval policy's default), falling back to settings.default_grant_seconds.
        """
        key = normalize_plan_key(plan_key)
        if key:
            tier = self.get_tier(key)
            if tier is not None and tier.enabled:
                return int(tier.duration_seconds)
            builtin = default_durations().get(key)
            if builtin is not None:
                return builtin
        from_label = duration_from_label(plan_label)
        if from_label is not None:
            return from_label
        if default_seconds is not None:
            return default_seconds
        return settings.default_grant_seconds

    def update_tier(self, key: str, data: dict[str, Any]) -> PlanTier:
        tier = self.get_tier(key)
        if tier is None:
            raise NotFoundError("Plan tier not found", detail={"plan_key": key})
        if "label" in data and data["label"] is not None:
            tier.label = str(data["label"]).strip() or tier.label
        if "duration_seconds" in data and data["duration_seconds"] is not None:
            tier.duration_seconds = _positive_int(data["duration_seconds"], "duration_seconds")
        elif "duration_days" in data and data["duration_days"] is not None:
            tier.duration_seconds = _positive_int(data["duration_days"], "duration_days") * DAY_SECONDS
        if "price" in data:
            tier.price = _price(data["price"])
        if "order_index" in data and data["order_index"] is not None:
            tier.order_index = int(data["order_index"])
        if "enabled" in data and data["enabled"] is not None:
            tier.enabled = bool(data["enabled"])
        tier.updated_at = datetime.now(timezone.utc)
        self.db.add(tier)
        self.db.flush()
        logger.info("plan_tier_updated", extra={"status": tier.key})
        return tier

    @staticmethod
    def as_dict(tier: PlanTier) -> dict[str, Any]:
        return {
            "key": tier.key,
            "label": tier.label,
            "duration_seconds": tier.duration_seconds,
            "duration_days": round(tier.duration_seconds / DAY_SECONDS, 2),
            "price": float(tier.price) if tier.price is not None else None,
            "currency": settings.plan_currency,
            "order_index": tier.order_index,
            "enabled": tier.enabled,
        }


def _positive_int(value: Any, field: str) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", detail={"field": field})
    if n <= 0:
        raise ValidationError(f"{field} must be positive", detail={"field": field})
    return n


def _price(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("price must be a number", detail={"field": "price"})
