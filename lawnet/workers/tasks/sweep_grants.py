"""
Celery beat task: physically delete expired grant rows.
Reads already treat expired rows as absent, so this only keeps the table small.
"""
import logging

from lawnet.core.celery_app import celery_app
from lawnet.core.config import settings
from lawnet.core.errors import TransientStoreError
from lawnet.db.session import SessionLocal
from lawnet.services.grants.service import GrantService
from lawnet.utils.metrics import grants_swept_total

logger = logging.getLogger(__name__)


def run_sweep(db, grace_seconds: int | None = None) -> dict:
    grace = settings.grant_sweep_grace_seconds if grace_seconds is None else grace_seconds
    try:
        count = GrantService(db).sweep_expired(older_than_seconds=grace)
        db.commit()
    except TransientStoreError:
        logger.exception("sweep_expired_grants_error")
        db.rollback()
        return {"ok": False}
    if count:
        grants_swept_total.inc(count)
    return {"ok": True, "deleted": count}


@celery_app.task(
    name="lawnet.workers.tasks.sweep_grants.sweep_expired_grants",
    time_limit=120,
    soft_time_limit=110,
)
def sweep_expired_grants() -> dict:
    db = SessionLocal()
    try:
        return run_sweep(db)
    finally:
        db.close()
