"""
Submission intake: proof-of-payment requests for a (subject, feature, feature_id) triple.
Intake never resolves aliases; callers send canonical feature ids.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

import redis
from sqlalchemy.orm import Session

from lawnet.core.config import settings
from lawnet.core.errors import NotFoundError, RateLimitedError, ValidationError
from lawnet.models.submission import ALLOWED_STATUSES, Submission
from lawnet.services.app_settings.settings_service import ApprovalPolicy
from lawnet.services.approvals.service import ApprovalService
from lawnet.services.audit.service import AuditService
from lawnet.services.grants.service import normalize_subject, store_errors
from lawnet.services.plan_tiers.service import normalize_plan_key
from lawnet.storage.base import ProofStorage
from lawnet.utils.metrics import submissions_created_total

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContactInfo:
    name: str = ""
    phone: str = ""


def check_submission_rate_limit(subject: str) -> bool:
    """
    True if this subject may submit now. Increments the per-subject counter on each call.
    Fails open when Redis is unavailable.
    """
    try:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        key = f"submission_attempts:{subject}"
        current = client.incr(key)
        if current == 1:
            client.expire(key, settings.submission_rate_window_seconds)
        if current > settings.submission_rate_limit:
            logger.warning("submission_rate_limited", extra={"subject": subject, "count": current})
            return False
        return True
    except redis.RedisError as e:
        logger.warning("submission_rate_limit_redis_error", extra={"error": str(e)})
        return True


def _parse_price(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("plan_price must be a number", detail={"field": "plan_price"})


class SubmissionService:
    def __init__(
        self,
        db: Session,
        policy: ApprovalPolicy | None = None,
        approvals: ApprovalService | None = None,
        rate_limiter: Callable[[str], bool] | None = None,
        storage: ProofStorage | None = None,
    ) -> None:
        self.db = db
        self.policy = policy or ApprovalPolicy()
        self.approvals = approvals or ApprovalService(db)
        self.rate_limiter = rate_limiter
        self.storage = storage
        self.audit = AuditService(db)

    def create_submission(
        self,
        subject: str,
        feature: str,
        feature_id: str,
        plan_key: str | None,
        proof_ref: str,
        contact: ContactInfo | None = None,
        *,
        plan_label: str | None = None,
        plan_price: Any = None,
        context: dict[str, Any] | None = None,
    ) -> Submission:
        """
        Store a pending submission. Under the auto-approve policy the approval engine runs
        before returning, so the returned row is already approved with its expiry.
        """
        subject = normalize_subject(subject)
        if not subject:
            raise ValidationError("email required", detail={"field": "subject"})
        proof_ref = (proof_ref or "").strip()
        if not proof_ref:
            raise ValidationError("payment proof required", detail={"field": "proof_ref"})
        feature = (feature or "").strip().lower()
        feature_id = (feature_id or "").strip()
        if not feature or not feature_id:
            raise ValidationError(
                "feature and feature_id required",
                detail={"feature": feature, "feature_id": feature_id},
            )
        if self.rate_limiter is not None and not self.rate_limiter(subject):
            raise RateLimitedError("Too many submissions. Try again later.")

        contact = contact or ContactInfo()
        sub = Submission(
            subject=subject,
            name=(contact.name or "").strip(),
            phone=(contact.phone or "").strip(),
            feature=feature,
            feature_id=feature_id,
            context=dict(context or {}),
            plan_key=normalize_plan_key(plan_key),
            plan_label=(plan_label or "").strip() or None,
            plan_price=_parse_price(plan_price),
            proof_ref=proof_ref,
        )
        with store_errors("create_submission"):
            self.db.add(sub)
            self.db.flush()
            self.audit.log("user", subject, "submission_created", "submission", sub.id, {
                "feature": feature,
                "feature_id": feature_id,
                "plan_key": sub.plan_key,
            })
            self.db.commit()

        mode = "auto" if self.policy.auto_approve else "manual"
        submissions_created_total.labels(feature=feature, mode=mode).inc()
        logger.info(
            "submission_created",
            extra={
                "submission_id": sub.id,
                "subject": subject,
                "feature": feature,
                "feature_id": feature_id,
                "status": mode,
            },
        )

        if self.policy.auto_approve:
            self.approvals.auto_approve(sub, self.policy)
            self.db.refresh(sub)
        return sub

    def get(self, submission_id: str) -> Submission:
        with store_errors("get_submission"):
            sub = self.db.query(Submission).filter(Submission.id == submission_id).one_or_none()
        if sub is None:
            raise NotFoundError("Submission not found", detail={"submission_id": submission_id})
        return sub

    def latest_for(
        self,
        subject: str,
        feature: str | None = None,
        feature_id: str | None = None,
    ) -> Submission | None:
        """Most recent submission of a subject, optionally narrowed to one key (polling fallback)."""
        subject = normalize_subject(subject)
        if not subject:
            raise ValidationError("email required", detail={"field": "subject"})
        with store_errors("latest_submission"):
            q = self.db.query(Submission).filter(Submission.subject == subject)
            if feature:
                q = q.filter(Submission.feature == feature.strip().lower())
            if feature_id:
                q = q.filter(Submission.feature_id == feature_id.strip())
            return q.order_by(Submission.created_at.desc()).first()

    def list_submissions(
        self,
        *,
        status: str | None = None,
        subject: str | None = None,
        feature: str | None = None,
        feature_id: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[Submission], int]:
        if status and status not in ALLOWED_STATUSES:
            raise ValidationError("Unknown status", detail={"status": status})
        with store_errors("list_submissions"):
            q = self.db.query(Submission)
            if status:
                q = q.filter(Submission.status == status)
            if subject:
                q = q.filter(Submission.subject == normalize_subject(subject))
            if feature:
                q = q.filter(Submission.feature == feature.strip().lower())
            if feature_id:
                q = q.filter(Submission.feature_id == feature_id.strip())
            total = q.count()
            rows = (
                q.order_by(Submission.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )
        return rows, total

    def delete_submission(self, submission_id: str, *, actor: str | None = "owner") -> None:
        """Hard delete (admin). The grant, if any, is left alone; revoke it first to cut access."""
        sub = self.get(submission_id)
        proof_ref = sub.proof_ref
        with store_errors("delete_submission"):
            self.audit.log("admin", actor, "submission_deleted", "submission", sub.id, {
                "subject": sub.subject,
                "feature": sub.feature,
                "feature_id": sub.feature_id,
                "status": sub.status,
            })
            self.db.delete(sub)
            self.db.commit()
        if self.storage is not None:
            self.storage.delete_proof(proof_ref)
        logger.info("submission_deleted", extra={"submission_id": submission_id})
