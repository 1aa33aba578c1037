"""
Paywall decision and preview lock (internal library).
The decision is a pure function over AccessContext; callers do the I/O.
"""
from lawnet.paywall.access import decide_access
from lawnet.paywall.config import get_preview_seconds
from lawnet.paywall.models import AccessContext, AccessDecision
from lawnet.paywall.preview import PreviewLock

__all__ = [
    "AccessContext",
    "AccessDecision",
    "PreviewLock",
    "decide_access",
    "get_preview_seconds",
]
