"""
Submissions API: public intake + polling lookup, admin review (approve / revoke / reject / delete)
and the auto-approval toggle. /auto-mode and /my are declared before /{submission_id} paths.
"""
import logging
import math

import redis
from fastapi import APIRouter, Depends, File, Form, Header, Query, UploadFile
from sqlalchemy.orm import Session

from lawnet.api.deps import get_approval_service, get_idempotency_store, get_proof_storage
from lawnet.api.routes.access import grant_out
from lawnet.core.errors import AccessServiceError, DuplicateRequestError
from lawnet.db.session import get_db
from lawnet.models.submission import Submission
from lawnet.schemas.access import GrantOut
from lawnet.schemas.admin import PaginatedResponse
from lawnet.schemas.submissions import (
    ApproveIn,
    AutoModeIn,
    AutoModeOut,
    RejectIn,
    SubmissionCreatedOut,
    SubmissionLookupOut,
    SubmissionOut,
)
from lawnet.services.app_settings.settings_service import AppSettingsService
from lawnet.services.approvals.service import ApprovalService
from lawnet.services.audit.service import AuditService
from lawnet.services.auth.admin_key import require_admin
from lawnet.services.idempotency import IdempotencyStore
from lawnet.services.live_updates.tokens import issue_stream_token
from lawnet.services.submissions.service import (
    ContactInfo,
    SubmissionService,
    check_submission_rate_limit,
)
from lawnet.storage.base import ProofStorage
from lawnet.utils import clock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/submissions", tags=["submissions"])

IDEMPOTENCY_PENDING = "pending"


def created_out(sub: Submission) -> SubmissionCreatedOut:
    return SubmissionCreatedOut(
        id=sub.id,
        status=sub.status,
        expires_at=clock.as_utc(sub.expires_at),
        expiry=clock.to_epoch_ms(sub.expires_at),
        stream_token=issue_stream_token(sub.subject),
    )


def claim_idempotency_key(
    db: Session, idempotency: IdempotencyStore, key: str
) -> tuple[bool, Submission | None]:
    """
    Reserve `key` for this request. Returns (claimed, previous): `previous` is the submission an
    earlier request with the same key already created. Raises DuplicateRequestError while that
    earlier request is still running. With Redis down the request goes through unclaimed.
    """
    try:
        if idempotency.check_and_set(key, IDEMPOTENCY_PENDING):
            return True, None
        previous_id = idempotency.get(key)
        if not previous_id or previous_id == IDEMPOTENCY_PENDING:
            raise DuplicateRequestError(
                "a submission with this Idempotency-Key is still being processed",
                {"idempotency_key": key},
            )
        previous = db.query(Submission).filter(Submission.id == previous_id).one_or_none()
        if previous is not None:
            return False, previous
        # the row was deleted since: take the key over
        idempotency.remember(key, IDEMPOTENCY_PENDING)
        return True, None
    except redis.RedisError as e:
        logger.warning("idempotency_lookup_failed", extra={"error": str(e)})
        return False, None


def _create(
    db: Session,
    approvals: ApprovalService,
    storage: ProofStorage,
    subject: str,
    feature: str,
    feature_id: str,
    plan_key: str,
    proof_ref: str,
    screenshot: UploadFile | None,
    contact: ContactInfo,
    **extra,
) -> Submission:
    saved_ref = None
    if screenshot is not None and screenshot.filename:
        content = screenshot.file.read()
        saved_ref = storage.save_proof(subject or "anonymous", screenshot.filename, content)

    service = SubmissionService(
        db,
        policy=AppSettingsService(db).policy(),
        approvals=approvals,
        rate_limiter=check_submission_rate_limit,
    )
    try:
        return service.create_submission(
            subject, feature, feature_id, plan_key, saved_ref or proof_ref, contact, **extra
        )
    except AccessServiceError:
        if saved_ref:
            storage.delete_proof(saved_ref)
        raise


# ---------- Public ----------


@router.post("", response_model=SubmissionCreatedOut)
def create_submission(
    email: str = Form(""),
    gmail: str = Form(""),
    name: str = Form(""),
    phone: str = Form(""),
    number: str = Form(""),
    feature: str = Form(""),
    feature_id: str = Form(""),
    plan_key: str = Form(""),
    plan_label: str = Form(""),
    plan_price: str = Form(""),
    proof_ref: str = Form(""),
    playlist: str = Form(""),
    subject_label: str = Form(""),
    screenshot: UploadFile | None = File(None),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
    approvals: ApprovalService = Depends(get_approval_service),
    storage: ProofStorage = Depends(get_proof_storage),
    idempotency: IdempotencyStore = Depends(get_idempotency_store),
):
    """
    Payment-proof intake. Either upload `screenshot` or pass an existing `proof_ref`.
    Under auto-approval the response already carries the expiry.
    """
    claimed = False
    if idempotency_key:
        claimed, previous = claim_idempotency_key(db, idempotency, idempotency_key)
        if previous is not None:
            return created_out(previous)

    try:
        sub = _create(
            db,
            approvals,
            storage,
            (email or gmail).strip(),
            feature,
            feature_id,
            plan_key,
            proof_ref,
            screenshot,
            ContactInfo(name=name, phone=phone or number),
            plan_label=plan_label,
            plan_price=plan_price,
            context={"playlist": playlist, "subject": subject_label},
        )
    except Exception:
        if claimed:
            idempotency.release(idempotency_key)
        raise

    if idempotency_key:
        try:
            idempotency.remember(idempotency_key, sub.id)
        except redis.RedisError as e:
            logger.warning("idempotency_store_failed", extra={"error": str(e)})
    return created_out(sub)


@router.get("/my", response_model=SubmissionLookupOut)
def my_submission(
    email: str = Query(...),
    feature: str | None = Query(None),
    feature_id: str | None = Query(None),
    db: Session = Depends(get_db),
):
    """Latest submission of a subject (polling fallback while waiting for approval)."""
    sub = SubmissionService(db).latest_for(email, feature, feature_id)
    if sub is None:
        return SubmissionLookupOut(found=False)
    return SubmissionLookupOut(found=True, item=SubmissionOut.model_validate(sub))


# ---------- Admin ----------


@router.get("", response_model=PaginatedResponse)
def list_submissions(
    status: str | None = None,
    email: str | None = None,
    feature: str | None = None,
    feature_id: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows, total = SubmissionService(db).list_submissions(
        status=status,
        subject=email,
        feature=feature,
        feature_id=feature_id,
        page=page,
        page_size=page_size,
    )
    return PaginatedResponse(
        items=[SubmissionOut.model_validate(r).model_dump(mode="json") for r in rows],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total else 0,
    )


@router.get("/auto-mode", response_model=AutoModeOut)
def get_auto_mode(actor: str = Depends(require_admin), db: Session = Depends(get_db)):
    return AppSettingsService(db).as_dict()


@router.post("/auto-mode", response_model=AutoModeOut)
def set_auto_mode(body: AutoModeIn, actor: str = Depends(require_admin), db: Session = Depends(get_db)):
    svc = AppSettingsService(db)
    result = svc.set_auto_approve(body.auto)
    AuditService(db).log("admin", actor, "auto_mode_changed", "app_settings", "1", {"auto": body.auto})
    db.commit()
    logger.info("auto_mode_changed", extra={"status": "on" if body.auto else "off"})
    return result


@router.post("/{submission_id}/approve", response_model=GrantOut)
def approve_submission(
    submission_id: str,
    body: ApproveIn,
    actor: str = Depends(require_admin),
    approvals: ApprovalService = Depends(get_approval_service),
):
    grant = approvals.approve(submission_id, body.seconds, body.message, actor=actor)
    return grant_out(grant)


@router.post("/{submission_id}/revoke")
def revoke_submission(
    submission_id: str,
    actor: str = Depends(require_admin),
    approvals: ApprovalService = Depends(get_approval_service),
):
    approvals.revoke(submission_id, actor=actor)
    return {"ok": True}


@router.post("/{submission_id}/reject", response_model=SubmissionOut)
def reject_submission(
    submission_id: str,
    body: RejectIn | None = None,
    actor: str = Depends(require_admin),
    approvals: ApprovalService = Depends(get_approval_service),
):
    return approvals.reject(submission_id, body.note if body else None, actor=actor)


@router.delete("/{submission_id}")
def delete_submission(
    submission_id: str,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
    storage: ProofStorage = Depends(get_proof_storage),
):
    SubmissionService(db, storage=storage).delete_submission(submission_id, actor=actor)
    return {"ok": True, "removed": submission_id}
