"""
GrantService: the access store.

Responsibilities:
- Last-writer-wins upsert keyed by (subject, feature, feature_id)
- Soft revoke (expires_at forced to now), idempotent
- Lazy expiry on read: expired or revoked rows are reported as absent
- Physical cleanup of expired rows (sweeper only, never needed for correctness)

Methods flush but never commit: the approval engine owns the transaction.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from lawnet.core.errors import TransientStoreError, ValidationError
from lawnet.models.grant import Grant
from lawnet.utils import clock

logger = logging.getLogger(__name__)


def normalize_subject(subject: str | None) -> str:
    return (subject or "").strip().lower()


def normalize_key(subject: str | None, feature: str | None, feature_id: str | None) -> tuple[str, str, str]:
    """Canonical composite key. Raises ValidationError if any part is empty."""
    key = (
        normalize_subject(subject),
        (feature or "").strip().lower(),
        (feature_id or "").strip(),
    )
    if not all(key):
        raise ValidationError(
            "subject, feature and feature_id are required",
            detail={"subject": key[0], "feature": key[1], "feature_id": key[2]},
        )
    return key


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Re-raise storage failures as TransientStoreError so callers can retry the whole unit."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.warning("store_error", extra={"error": f"{operation}: {type(e).__name__}"})
        raise TransientStoreError(f"Store operation failed: {operation}", detail={"operation": operation}) from e


def is_active(grant: Grant | None, now: datetime | None = None) -> bool:
    if grant is None or grant.revoked:
        return False
    now = now or clock.utcnow()
    return now < clock.as_utc(grant.expires_at)


class GrantService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _find(self, subject: str, feature: str, feature_id: str, *, for_update: bool = False) -> Grant | None:
        q = self.db.query(Grant).filter(
            Grant.subject == subject,
            Grant.feature == feature,
            Grant.feature_id == feature_id,
        )
        if for_update:
            q = q.with_for_update()
        return q.one_or_none()

    # ------------------------------------------------------------------
    # Writes (approval engine only)
    # ------------------------------------------------------------------

    def upsert_grant(
        self,
        subject: str,
        feature: str,
        feature_id: str,
        expires_at: datetime,
        message: str | None = None,
        *,
        plan_key: str | None = None,
        submission_id: str | None = None,
    ) -> Grant:
        """
        Write the grant for this key, overwriting any previous expiry (no merge of durations).
        Clears a previous soft revoke.
        """
        subject, feature, feature_id = normalize_key(subject, feature, feature_id)
        expires_at = clock.as_utc(expires_at)
        now = clock.utcnow()
        with store_errors("upsert_grant"):
            grant = self._find(subject, feature, feature_id, for_update=True)
            if grant is None:
                grant = Grant(
                    subject=subject,
                    feature=feature,
                    feature_id=feature_id,
                    expires_at=expires_at,
                    granted_at=now,
                )
                self._apply(grant, expires_at, message, plan_key, submission_id, now)
                self.db.add(grant)
                try:
                    self.db.flush()
                except IntegrityError as e:
                    # Another writer inserted the key first. The retried unit finds the row and overwrites it.
                    raise TransientStoreError(
                        "Concurrent grant insert",
                        detail={"operation": "upsert_grant", "race": True},
                    ) from e
            else:
                self._apply(grant, expires_at, message, plan_key, submission_id, now)
                self.db.flush()

        logger.info(
            "grant_upserted",
            extra={
                "subject": subject,
                "feature": feature,
                "feature_id": feature_id,
                "expires_at": expires_at.isoformat(),
                "submission_id": submission_id,
            },
        )
        return grant

    @staticmethod
    def _apply(
        grant: Grant,
        expires_at: datetime,
        message: str | None,
        plan_key: str | None,
        submission_id: str | None,
        now: datetime,
    ) -> None:
        grant.expires_at = expires_at
        grant.message = message or None
        grant.revoked = False
        grant.revoked_at = None
        grant.plan_key = plan_key
        grant.submission_id = submission_id
        grant.granted_at = now
        grant.updated_at = now

    def revoke_grant(self, subject: str, feature: str, feature_id: str) -> None:
        """
        Soft revoke: expires_at = now. Always succeeds.
        Rows that are already expired or revoked are left untouched, so repeating the
        call does not move the recorded revoke instant.
        """
        subject, feature, feature_id = normalize_key(subject, feature, feature_id)
        now = clock.utcnow()
        with store_errors("revoke_grant"):
            grant = self._find(subject, feature, feature_id, for_update=True)
            if grant is None or not is_active(grant, now):
                logger.info(
                    "grant_revoke_noop",
                    extra={"subject": subject, "feature": feature, "feature_id": feature_id},
                )
                return
            grant.expires_at = now
            grant.revoked = True
            grant.revoked_at = now
            grant.updated_at = now
            self.db.flush()
        logger.info(
            "grant_revoked",
            extra={"subject": subject, "feature": feature, "feature_id": feature_id},
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_grant(self, subject: str, feature: str, feature_id: str) -> Grant | None:
        """Active grant or None. Expired and revoked rows are treated as absent but not deleted."""
        subject, feature, feature_id = normalize_key(subject, feature, feature_id)
        with store_errors("get_grant"):
            grant = self._find(subject, feature, feature_id)
        if not is_active(grant):
            return None
        return grant

    def get_record(self, subject: str, feature: str, feature_id: str) -> Grant | None:
        """Raw row regardless of expiry (used to explain why access is denied)."""
        subject, feature, feature_id = normalize_key(subject, feature, feature_id)
        with store_errors("get_record"):
            return self._find(subject, feature, feature_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep_expired(self, older_than_seconds: int = 0) -> int:
        """Delete rows whose expiry passed (optionally keep a grace window for audit). Returns count."""
        threshold = clock.utcnow() - timedelta(seconds=max(0, older_than_seconds))
        with store_errors("sweep_expired"):
            result = self.db.execute(delete(Grant).where(Grant.expires_at <= threshold))
            self.db.flush()
        count = result.rowcount or 0
        logger.info("grants_swept", extra={"count": count})
        return count
