"""
ApprovalService: the only writer of grants.

Submission state machine:
    pending  -> approved | rejected
    approved -> approved (re-grant, overwrites expiry) | revoked

Every operation is one unit: grant write, submission status and audit row are
committed together, then the subscription event is published. A failed unit is
rolled back and nothing is published; TransientStoreError retries the whole unit.
"""
import logging
import random
import time
from datetime import timedelta
from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from lawnet.core.config import settings
from lawnet.core.errors import (
    InvalidTransitionError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from lawnet.models.grant import Grant
from lawnet.models.submission import (
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    STATUS_REVOKED,
    Submission,
)
from lawnet.services.app_settings.settings_service import ApprovalPolicy
from lawnet.services.audit.service import AuditService
from lawnet.services.grants.service import GrantService, normalize_key, store_errors
from lawnet.services.live_updates.events import SubscriptionEvent
from lawnet.services.live_updates.publisher import EventPublisher
from lawnet.services.plan_tiers.service import PlanTierService
from lawnet.utils import clock
from lawnet.utils.metrics import (
    approval_duration_seconds,
    approval_retries_total,
    grants_issued_total,
    grants_revoked_total,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ADMIN_GRANT_PROOF = "admin-grant"


def default_grant_message(name: str | None) -> str:
    return f"🎉 Congratulations {name or 'User'}! Your plan is now active."


class ApprovalService:
    def __init__(
        self,
        db: Session,
        publisher: EventPublisher | None = None,
        plan_tiers: PlanTierService | None = None,
    ) -> None:
        self.db = db
        self.publisher = publisher
        self.grants = GrantService(db)
        self.plan_tiers = plan_tiers or PlanTierService(db)
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Unit-of-work plumbing
    # ------------------------------------------------------------------

    def run_with_retry(self, fn: Callable[[], T], operation: str = "approval") -> T:
        """
        Run fn as one transaction. Rolls back on any failure; retries TransientStoreError
        with exponential backoff and jitter up to approval_retry_max_attempts.
        """
        attempts = max(1, settings.approval_retry_max_attempts)
        started = time.monotonic()
        try:
            for attempt in range(1, attempts + 1):
                try:
                    return fn()
                except TransientStoreError as e:
                    self.db.rollback()
                    if attempt >= attempts:
                        logger.error(
                            "approval_retries_exhausted",
                            extra={"status": operation, "attempt": attempt, "error": e.message},
                        )
                        raise
                    delay = settings.approval_retry_backoff_seconds * (2 ** (attempt - 1))
                    delay *= 0.5 + random.random() / 2
                    approval_retries_total.inc()
                    logger.warning(
                        "approval_retry",
                        extra={
                            "status": operation,
                            "attempt": attempt,
                            "delay_seconds": round(delay, 3),
                            "error": e.message,
                        },
                    )
                    time.sleep(delay)
                except Exception:
                    self.db.rollback()
                    raise
        finally:
            approval_duration_seconds.labels(operation=operation).observe(time.monotonic() - started)
        raise TransientStoreError("Approval retries exhausted")  # unreachable: loop returns or raises

    def _commit(self) -> None:
        with store_errors("commit"):
            self.db.commit()

    def _emit(self, event: SubscriptionEvent | None) -> None:
        if event is None or self.publisher is None:
            return
        self.publisher.publish(event)

    def _load(self, submission_id: str) -> Submission:
        with store_errors("load_submission"):
            sub = (
                self.db.query(Submission)
                .filter(Submission.id == submission_id)
                .with_for_update()
                .one_or_none()
            )
        if sub is None:
            raise NotFoundError("Submission not found", detail={"submission_id": submission_id})
        return sub

    @staticmethod
    def _check_duration(duration_seconds: int) -> int:
        try:
            seconds = int(duration_seconds)
        except (TypeError, ValueError):
            raise ValidationError("seconds must be an integer", detail={"field": "seconds"})
        if seconds <= 0:
            raise ValidationError("seconds required", detail={"field": "seconds"})
        return seconds

    def _approve_locked(
        self,
        sub: Submission,
        duration_seconds: int,
        message: str | None,
        actor_type: str,
        actor: str | None,
    ) -> tuple[Grant, SubscriptionEvent]:
        if sub.status not in (STATUS_PENDING, STATUS_APPROVED):
            raise InvalidTransitionError(
                f"Cannot approve a {sub.status} submission",
                detail={"submission_id": sub.id, "status": sub.status},
            )
        now = clock.utcnow()
        expires_at = now + timedelta(seconds=duration_seconds)
        text = message or default_grant_message(sub.name)
        grant = self.grants.upsert_grant(
            sub.subject,
            sub.feature,
            sub.feature_id,
            expires_at,
            text,
            plan_key=sub.plan_key or None,
            submission_id=sub.id,
        )
        previous = sub.status
        sub.status = STATUS_APPROVED
        sub.expires_at = expires_at
        sub.approved_at = now
        sub.revoked_at = None
        sub.message = text
        sub.updated_at = now
        with store_errors("approve_submission"):
            self.db.flush()
        self.audit.log(
            actor_type,
            actor,
            "submission_approved",
            "submission",
            sub.id,
            {
                "from": previous,
                "subject": sub.subject,
                "feature": sub.feature,
                "feature_id": sub.feature_id,
                "duration_seconds": duration_seconds,
                "expires_at": expires_at.isoformat(),
            },
        )
        event = SubscriptionEvent.grant(sub.subject, sub.feature, sub.feature_id, expires_at, text)
        return grant, event

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def approve(
        self,
        submission_id: str,
        duration_seconds: int,
        message: str | None = None,
        *,
        actor: str | None = "owner",
        actor_type: str = "admin",
    ) -> Grant:
        """expires_at = now + duration. Re-approving an approved submission overwrites the expiry."""
        seconds = self._check_duration(duration_seconds)

        def unit() -> tuple[Grant, SubscriptionEvent, Submission]:
            sub = self._load(submission_id)
            grant, event = self._approve_locked(sub, seconds, message, actor_type, actor)
            self._commit()
            return grant, event, sub

        grant, event, sub = self.run_with_retry(unit, "approve")
        grants_issued_total.labels(feature=event.feature, source=actor_type).inc()
        logger.info(
            "submission_approved",
            extra={
                "submission_id": sub.id,
                "subject": event.subject,
                "feature": event.feature,
                "feature_id": event.feature_id,
                "expires_at": event.expires_at.isoformat() if event.expires_at else None,
                "actor": actor_type,
            },
        )
        self._emit(event)
        return grant

    def auto_approve(self, submission: Submission, policy: ApprovalPolicy | None = None) -> Grant:
        """Auto-approval path: duration comes from the submission's plan tier, else the policy default."""
        duration = self.plan_tiers.duration_for(
            submission.plan_key,
            submission.plan_label,
            default_seconds=policy.default_grant_seconds if policy else None,
        )
        return self.approve(submission.id, duration, actor="auto", actor_type="auto")

    def revoke(self, submission_id: str, *, actor: str | None = "owner") -> None:
        """Approved -> revoked, grant soft-revoked. Any other status is a no-op success."""

        def unit() -> SubscriptionEvent | None:
            sub = self._load(submission_id)
            if sub.status != STATUS_APPROVED:
                logger.info(
                    "submission_revoke_noop",
                    extra={"submission_id": sub.id, "status": sub.status},
                )
                self.db.rollback()
                return None
            now = clock.utcnow()
            self.grants.revoke_grant(sub.subject, sub.feature, sub.feature_id)
            sub.status = STATUS_REVOKED
            sub.revoked_at = now
            sub.expires_at = now
            sub.updated_at = now
            with store_errors("revoke_submission"):
                self.db.flush()
            self.audit.log(
                "admin",
                actor,
                "submission_revoked",
                "submission",
                sub.id,
                {"subject": sub.subject, "feature": sub.feature, "feature_id": sub.feature_id},
            )
            self._commit()
            return SubscriptionEvent.revoke(sub.subject, sub.feature, sub.feature_id)

        event = self.run_with_retry(unit, "revoke")
        if event is None:
            return
        grants_revoked_total.labels(feature=event.feature).inc()
        logger.info(
            "submission_revoked",
            extra={
                "submission_id": submission_id,
                "subject": event.subject,
                "feature": event.feature,
                "feature_id": event.feature_id,
            },
        )
        self._emit(event)

    def reject(self, submission_id: str, note: str | None = None, *, actor: str | None = "owner") -> Submission:
        """Pending -> rejected. No grant is touched."""

        def unit() -> Submission:
            sub = self._load(submission_id)
            if sub.status != STATUS_PENDING:
                raise InvalidTransitionError(
                    f"Cannot reject a {sub.status} submission",
                    detail={"submission_id": sub.id, "status": sub.status},
                )
            now = clock.utcnow()
            sub.status = STATUS_REJECTED
            sub.rejected_at = now
            sub.admin_note = note or None
            sub.updated_at = now
            with store_errors("reject_submission"):
                self.db.flush()
            self.audit.log("admin", actor, "submission_rejected", "submission", sub.id, {"note": note})
            self._commit()
            return sub

        sub = self.run_with_retry(unit, "reject")
        logger.info("submission_rejected", extra={"submission_id": submission_id})
        return sub

    def revoke_key(self, subject: str, feature: str, feature_id: str, *, actor: str | None = "owner") -> int:
        """
        Revoke by (subject, feature, feature_id). Approved submissions for the key are marked revoked.
        Always succeeds and always notifies the subject's sessions. Returns how many submissions changed.
        """
        subject, feature, feature_id = normalize_key(subject, feature, feature_id)

        def unit() -> int:
            now = clock.utcnow()
            self.grants.revoke_grant(subject, feature, feature_id)
            with store_errors("revoke_key"):
                subs = (
                    self.db.query(Submission)
                    .filter(
                        Submission.subject == subject,
                        Submission.feature == feature,
                        Submission.feature_id == feature_id,
                        Submission.status == STATUS_APPROVED,
                    )
                    .all()
                )
                for sub in subs:
                    sub.status = STATUS_REVOKED
                    sub.revoked_at = now
                    sub.expires_at = now
                    sub.updated_at = now
                self.db.flush()
            self.audit.log(
                "admin",
                actor,
                "grant_revoked",
                "grant",
                f"{subject}:{feature}:{feature_id}",
                {"submissions": [s.id for s in subs]},
            )
            self._commit()
            return len(subs)

        changed = self.run_with_retry(unit, "revoke_key")
        grants_revoked_total.labels(feature=feature).inc()
        logger.info(
            "grant_key_revoked",
            extra={"subject": subject, "feature": feature, "feature_id": feature_id, "count": changed},
        )
        self._emit(SubscriptionEvent.revoke(subject, feature, feature_id))
        return changed

    def grant_direct(
        self,
        subject: str,
        feature: str,
        feature_id: str,
        duration_seconds: int,
        message: str | None = None,
        *,
        actor: str | None = "owner",
    ) -> Grant:
        """Admin grant without user proof: records an admin submission and approves it in the same unit."""
        subject, feature, feature_id = normalize_key(subject, feature, feature_id)
        seconds = self._check_duration(duration_seconds)

        def unit() -> tuple[Grant, SubscriptionEvent, Submission]:
            sub = Submission(
                subject=subject,
                feature=feature,
                feature_id=feature_id,
                proof_ref=ADMIN_GRANT_PROOF,
                context={"source": "admin"},
                status=STATUS_PENDING,
            )
            self.db.add(sub)
            with store_errors("grant_direct"):
                self.db.flush()
            grant, event = self._approve_locked(sub, seconds, message, "admin", actor)
            self._commit()
            return grant, event, sub

        grant, event, sub = self.run_with_retry(unit, "grant_direct")
        grants_issued_total.labels(feature=feature, source="direct").inc()
        logger.info(
            "grant_direct",
            extra={
                "submission_id": sub.id,
                "subject": subject,
                "feature": feature,
                "feature_id": feature_id,
                "expires_at": event.expires_at.isoformat() if event.expires_at else None,
            },
        )
        self._emit(event)
        return grant
