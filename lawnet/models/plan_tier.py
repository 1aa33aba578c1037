from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String

from lawnet.db.base import Base


class PlanTier(Base):
    """Named duration bucket (weekly / monthly / yearly). Admin-editable configuration."""

    __tablename__ = "plan_tiers"

    key = Column(String, primary_key=True)                  # "weekly" / "monthly" / "yearly"
    label = Column(String, nullable=False)
    duration_seconds = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    enabled = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
