"""
Access API: check (polling fallback), admin grant/revoke by key, and the SSE live-update stream.
"""
import asyncio
import logging
import time
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from lawnet.api.deps import get_approval_service
from lawnet.core.config import settings
from lawnet.core.errors import AuthorizationError, ValidationError
from lawnet.db.session import get_db
from lawnet.paywall import AccessContext, decide_access
from lawnet.schemas.access import AccessCheckOut, DirectGrantIn, GrantOut, RevokeKeyIn
from lawnet.services.approvals.service import ApprovalService
from lawnet.services.auth.admin_key import require_admin
from lawnet.services.grants.service import GrantService, normalize_key, normalize_subject
from lawnet.services.live_updates.events import format_sse, ping_frame
from lawnet.services.live_updates.hub import Connection, ConnectionHub, hub
from lawnet.services.live_updates.tokens import verify_stream_token
from lawnet.utils import clock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/access", tags=["access"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def grant_out(grant) -> GrantOut:
    return GrantOut(
        subject=grant.subject,
        feature=grant.feature,
        feature_id=grant.feature_id,
        expires_at=clock.as_utc(grant.expires_at),
        expiry=clock.to_epoch_ms(grant.expires_at),
        message=grant.message,
        submission_id=grant.submission_id,
    )


@router.get("/check", response_model=AccessCheckOut)
def check_access(
    email: str = Query(...),
    feature: str = Query(...),
    feature_id: str = Query(...),
    db: Session = Depends(get_db),
):
    subject, feature, feature_id = normalize_key(email, feature, feature_id)
    record = GrantService(db).get_record(subject, feature, feature_id)
    decision = decide_access(AccessContext(
        subject=subject,
        feature=feature,
        feature_id=feature_id,
        now=clock.utcnow(),
        expires_at=record.expires_at if record else None,
        revoked=bool(record and record.revoked),
    ))
    return AccessCheckOut(
        allowed=decision.allowed,
        expires_at=decision.expires_at if decision.allowed else None,
        expiry=clock.to_epoch_ms(decision.expires_at) if decision.allowed else None,
        seconds_left=decision.seconds_left,
        reason=decision.reason,
        message=record.message if record and decision.allowed else None,
        preview_seconds=decision.preview_seconds,
    )


@router.post("/grant", response_model=GrantOut)
def grant_access(
    body: DirectGrantIn,
    actor: str = Depends(require_admin),
    approvals: ApprovalService = Depends(get_approval_service),
):
    grant = approvals.grant_direct(
        body.email, body.feature, body.feature_id, body.seconds, body.message, actor=actor
    )
    return grant_out(grant)


@router.post("/revoke")
def revoke_access(
    body: RevokeKeyIn,
    actor: str = Depends(require_admin),
    approvals: ApprovalService = Depends(get_approval_service),
):
    """Always succeeds, even if there was nothing to revoke."""
    changed = approvals.revoke_key(body.email, body.feature, body.feature_id, actor=actor)
    return {"ok": True, "submissions_revoked": changed}


# ---------- Live updates (SSE) ----------


def resolve_stream_subject(email: str | None, token: str | None) -> str:
    if token:
        return verify_stream_token(token)
    if settings.stream_require_token:
        raise AuthorizationError("Stream token required")
    subject = normalize_subject(email)
    if not subject:
        raise ValidationError("email required", detail={"field": "email"})
    return subject


async def stream_events(
    request: Request,
    conn: Connection,
    connection_hub: ConnectionHub,
    heartbeat_seconds: float | None = None,
    max_lifetime_seconds: float | None = None,
) -> AsyncIterator[str]:
    """
    SSE frames for one connection: a ping with the retry hint on connect, then grant/revoke
    events in queue order, a ping whenever the connection is idle for a heartbeat interval.
    Ends on client disconnect, queue overflow (connection closed by the hub) or max lifetime.
    """
    heartbeat = heartbeat_seconds or settings.stream_heartbeat_seconds
    lifetime = max_lifetime_seconds or settings.stream_max_lifetime_seconds
    deadline = time.monotonic() + lifetime
    try:
        yield ping_frame(retry_ms=settings.stream_retry_ms)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.info("stream_lifetime_reached", extra={"subject": conn.subject})
                break
            if await request.is_disconnected():
                break
            try:
                event = await conn.next_event(min(heartbeat, remaining))
            except asyncio.TimeoutError:
                yield ping_frame()
                continue
            if event is None:
                break
            yield format_sse(event.type, event.payload())
    finally:
        connection_hub.unregister(conn)


@router.get("/stream")
async def access_stream(
    request: Request,
    email: str | None = Query(None),
    token: str | None = Query(None),
):
    subject = resolve_stream_subject(email, token)
    conn = hub.register(subject)
    return StreamingResponse(
        stream_events(request, conn, hub),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
