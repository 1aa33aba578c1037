"""
Decision only: decide_access(ctx) -> AccessDecision.
Pure function, no I/O. Shared by the access-check endpoint and the client reconciler,
so both sides lock content at the same instant.
"""
from __future__ import annotations

import math

from lawnet.paywall.config import get_preview_seconds
from lawnet.paywall.models import AccessContext, AccessDecision
from lawnet.utils import clock


def decide_access(ctx: AccessContext) -> AccessDecision:
    """
    Unlocked iff a grant exists, is not revoked, and now < expires_at.

    Deny reasons: NO_GRANT (no row), REVOKED (soft-revoked row), EXPIRED (expiry reached).
    A locked decision carries the preview window for the feature kind.
    """
    if ctx.expires_at is None:
        return _locked(ctx, "NO_GRANT")
    expires_at = clock.as_utc(ctx.expires_at)
    if ctx.revoked:
        return _locked(ctx, "REVOKED", expires_at)
    now = clock.as_utc(ctx.now)
    if now >= expires_at:
        return _locked(ctx, "EXPIRED", expires_at)
    return AccessDecision(
        allowed=True,
        expires_at=expires_at,
        seconds_left=math.ceil((expires_at - now).total_seconds()),
    )


def _locked(ctx: AccessContext, reason: str, expires_at=None) -> AccessDecision:
    return AccessDecision(
        allowed=False,
        reason=reason,
        expires_at=expires_at,
        seconds_left=0,
        preview_seconds=get_preview_seconds(ctx.feature),
    )
