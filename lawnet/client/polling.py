"""Polling fallback: re-check tracked ids every few seconds while no live stream is connected."""
import asyncio
import logging
from typing import Callable, Iterable, Optional

from lawnet.client.reconciler import AccessReconciler
from lawnet.core.config import settings

logger = logging.getLogger(__name__)


class PollingWatcher:
    def __init__(
        self,
        reconcilers: Iterable[AccessReconciler],
        *,
        interval_seconds: Optional[float] = None,
        is_streaming: Optional[Callable[[], bool]] = None,
    ):
        self.reconcilers = list(reconcilers)
        self.interval = interval_seconds or settings.client_poll_interval_seconds
        self.is_streaming = is_streaming
        self._task: Optional[asyncio.Task] = None
        self.polls = 0

    async def poll_once(self) -> bool:
        """One round. Skipped (False) while a live stream delivers events."""
        if self.is_streaming is not None and self.is_streaming():
            return False
        self.polls += 1
        for reconciler in self.reconcilers:
            await reconciler.reconcile_all()
        return True

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.poll_once()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="access-polling")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
