"""
Submission: proof-of-payment request for a (subject, feature, feature_id) triple.
Mutated in place by the approval engine; every transition is also written to audit_logs.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, Numeric, String, Text

from lawnet.db.base import Base, JSONType

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REVOKED = "revoked"
STATUS_REJECTED = "rejected"

ALLOWED_STATUSES = frozenset({STATUS_PENDING, STATUS_APPROVED, STATUS_REVOKED, STATUS_REJECTED})


class Submission(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        Index("ix_submissions_key", "subject", "feature", "feature_id"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    subject = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False, default="")
    phone = Column(String, nullable=False, default="")
    feature = Column(String, nullable=False)
    feature_id = Column(String, nullable=False)
    context = Column(JSONType, nullable=False, default=dict)   # playlist / subject labels shown to admins
    plan_key = Column(String, nullable=False, default="")
    plan_label = Column(String, nullable=True)
    plan_price = Column(Numeric(12, 2), nullable=True)
    proof_ref = Column(Text, nullable=False)
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    message = Column(Text, nullable=True)
    admin_note = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
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
