"""
Preview lock: a bounded unauthenticated preview per viewing session.
Local only, never persisted; switching to another item starts a fresh window.
"""
from __future__ import annotations

import math
import time
from typing import Callable


class PreviewLock:
    def __init__(self, preview_seconds: float, monotonic: Callable[[], float] = time.monotonic) -> None:
        self.preview_seconds = max(0.0, float(preview_seconds))
        self._monotonic = monotonic
        self.item_id: str | None = None
        self._started_at: float | None = None
        self._prompted = False

    def view(self, item_id: str) -> None:
        """Call whenever the viewer shows an item. Same item keeps its window, a new one resets it."""
        if item_id == self.item_id:
            return
        self.item_id = item_id
        self._started_at = self._monotonic()
        self._prompted = False

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._monotonic() - self._started_at

    def seconds_left(self, position_seconds: float | None = None) -> int:
        used = self.elapsed() if position_seconds is None else position_seconds
        return max(0, math.ceil(self.preview_seconds - used))

    def is_locked(self, position_seconds: float | None = None, *, unlocked: bool = False) -> bool:
        """
        True once the preview is used up and access is not granted.
        position_seconds is the media playback position; without it wall time since view() counts.
        """
        if unlocked or self.item_id is None:
            return False
        used = self.elapsed() if position_seconds is None else position_seconds
        return used >= self.preview_seconds

    def should_prompt(self, position_seconds: float | None = None, *, unlocked: bool = False) -> bool:
        """Like is_locked, but True only the first time per item so the paywall overlay opens once."""
        if self._prompted or not self.is_locked(position_seconds, unlocked=unlocked):
            return False
        self._prompted = True
        return True
