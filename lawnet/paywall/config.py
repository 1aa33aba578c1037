"""
Paywall config: typed wrapper over lawnet.core.config for preview windows.
"""
from __future__ import annotations

from lawnet.core.config import settings


def get_preview_seconds(feature: str) -> int:
    """Unauthenticated preview length per feature kind. Unknown kinds get no preview."""
    previews = {
        "video": settings.preview_seconds_video,
        "playlist": settings.preview_seconds_video,
        "podcast": settings.preview_seconds_podcast,
        "pdf": settings.preview_seconds_pdf,
    }
    return previews.get((feature or "").strip().lower(), 0)
