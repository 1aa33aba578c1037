"""Request-scoped service factories. Tests override get_db / get_event_publisher / get_proof_storage."""
from fastapi import Depends
from sqlalchemy.orm import Session

from lawnet.db.session import get_db
from lawnet.services.approvals.service import ApprovalService
from lawnet.services.idempotency import IdempotencyStore
from lawnet.services.live_updates.publisher import EventPublisher, get_event_publisher
from lawnet.storage.base import ProofStorage
from lawnet.storage.local import LocalProofStorage


def get_proof_storage() -> ProofStorage:
    return LocalProofStorage()


def get_idempotency_store() -> IdempotencyStore:
    return IdempotencyStore()


def get_approval_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> ApprovalService:
    return ApprovalService(db, publisher=publisher)
