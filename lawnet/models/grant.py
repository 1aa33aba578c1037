"""
Grant: expiring permission for one (subject, feature, feature_id) triple.
Revoke is soft: expires_at is forced to "now" and the row stays until the sweeper deletes it.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, Text, UniqueConstraint

from lawnet.db.base import Base


class Grant(Base):
    __tablename__ = "access_grants"
    __table_args__ = (
        UniqueConstraint("subject", "feature", "feature_id", name="uq_access_grants_key"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    subject = Column(String, nullable=False, index=True)     # lower-cased email
    feature = Column(String, nullable=False)                 # playlist / video / podcast / pdf / article
    feature_id = Column(String, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    message = Column(Text, nullable=True)
    revoked = Column(Boolean, nullable=False, default=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    plan_key = Column(String, nullable=True)
    submission_id = Column(String, nullable=True)            # last submission that wrote this grant
    granted_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
