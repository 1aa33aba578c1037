"""
AccessReconciler: keeps one content viewer's lock state in step with the server.

One instance per feature kind (video / podcast / pdf ...). It:
- answers from the local cache when a live grant is there (no round-trip)
- otherwise asks the server and records the answer
- applies grant/revoke events immediately, then confirms grants with one read
  (the confirming read wins over the event payload)
- keeps a single timer for the nearest cached expiry and re-checks everything when it fires
- re-checks everything on refocus and after a stream reconnect

The server is the source of truth; events only make the UI react sooner.
"""
import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from lawnet.client.api import AccessApiClient, ClientError, RetryableClientError, parse_datetime
from lawnet.client.cache import AccessCache, CachedGrant
from lawnet.paywall import AccessContext, decide_access

logger = logging.getLogger(__name__)

OnChange = Callable[[str, bool, Optional[CachedGrant]], Union[None, Awaitable[None]]]
Resolver = Callable[[str], Optional[str]]

MAX_PENDING_EVENTS = 100


class AccessReconciler:
    def __init__(
        self,
        api: AccessApiClient,
        cache: AccessCache,
        feature: str,
        *,
        resolve: Optional[Resolver] = None,
        on_change: Optional[OnChange] = None,
        expiry_slack_seconds: float = 0.5,
    ):
        self.api = api
        self.cache = cache
        self.feature = feature.strip().lower()
        self.resolve = resolve
        self.on_change = on_change
        self.expiry_slack_seconds = expiry_slack_seconds
        self._tracked: set[str] = set()
        self._state: dict[str, tuple[bool, Optional[datetime]]] = {}
        self._pending: list[dict[str, Any]] = []
        self._timer: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def tracked(self) -> frozenset[str]:
        return frozenset(self._tracked)

    def is_unlocked(self, feature_id: str) -> bool:
        state = self._state.get(feature_id)
        return bool(state and state[0])

    def pending_events(self) -> list[dict[str, Any]]:
        return list(self._pending)

    async def _set_state(self, feature_id: str, unlocked: bool, grant: Optional[CachedGrant]) -> None:
        new = (unlocked, grant.expires_at if unlocked and grant else None)
        if self._state.get(feature_id) == new:
            return
        self._state[feature_id] = new
        logger.info(
            "access_state_changed",
            extra={"feature": self.feature, "feature_id": feature_id, "status": "unlocked" if unlocked else "locked"},
        )
        if self.on_change is not None:
            result = self.on_change(feature_id, unlocked, grant if unlocked else None)
            if inspect.isawaitable(result):
                await result

    def _canonical(self, feature_id: str) -> Optional[str]:
        if self.resolve is None:
            return feature_id
        return self.resolve(feature_id)

    # ------------------------------------------------------------------
    # Tracking and reads
    # ------------------------------------------------------------------

    async def track(self, *feature_ids: str) -> None:
        """Start following the given canonical ids, then replay queued events that now apply."""
        new_ids = [fid for fid in feature_ids if fid and fid not in self._tracked]
        self._tracked.update(new_ids)
        for fid in new_ids:
            await self.ensure(fid)
        if self._pending:
            queued, self._pending = self._pending, []
            for event in queued:
                await self.handle_event(event)

    def untrack(self, *feature_ids: str) -> None:
        for fid in feature_ids:
            self._tracked.discard(fid)
            self._state.pop(fid, None)
        self._schedule_expiry_timer()

    async def ensure(self, feature_id: str) -> bool:
        """Cache first (zero round-trip), then the negative memo, then the server."""
        grant = self.cache.get(self.feature, feature_id)
        if grant is not None:
            await self._set_state(feature_id, True, grant)
            self._schedule_expiry_timer()
            return True
        if self.cache.is_denied_fresh(self.feature, feature_id):
            await self._set_state(feature_id, False, None)
            return False
        result = await self.reconcile(feature_id)
        return bool(result)

    async def reconcile(self, feature_id: str) -> Optional[bool]:
        """Read the server's answer for one id and apply it. None if the server could not be reached."""
        try:
            remote = await self.api.check_access(self.feature, feature_id)
        except RetryableClientError as e:
            logger.warning(
                "access_reconcile_failed",
                extra={"feature": self.feature, "feature_id": feature_id, "error": e.message},
            )
            return None
        except ClientError as e:
            # rejected request: keep the current state, the next round asks again
            logger.warning(
                "access_reconcile_rejected",
                extra={
                    "feature": self.feature,
                    "feature_id": feature_id,
                    "status_code": e.status_code,
                    "error": e.message,
                },
            )
            return None

        decision = decide_access(AccessContext(
            subject=self.cache.subject,
            feature=self.feature,
            feature_id=feature_id,
            now=self.cache.now(),
            expires_at=remote.expires_at if remote.allowed else None,
        ))
        if decision.allowed:
            grant = CachedGrant(self.feature, feature_id, decision.expires_at, remote.message)
            self.cache.put(grant)
            await self._set_state(feature_id, True, grant)
        else:
            self.cache.remove(self.feature, feature_id)
            self.cache.remember_denied(self.feature, feature_id)
            await self._set_state(feature_id, False, None)
        self._schedule_expiry_timer()
        return decision.allowed

    async def reconcile_all(self) -> None:
        for fid in sorted(self._tracked):
            await self.reconcile(fid)

    async def refocus(self) -> None:
        """Window/session regained focus: events may have been missed, re-check everything."""
        for fid in self._tracked:
            self.cache.forget_denied(self.feature, fid)
        await self.reconcile_all()

    async def lock_lapsed(self) -> None:
        """Lock every tracked id whose cached grant is gone, without waiting for the server."""
        for fid in sorted(self._tracked):
            if self.is_unlocked(fid) and self.cache.get(self.feature, fid) is None:
                await self._set_state(fid, False, None)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def handle_event(self, event: dict[str, Any]) -> None:
        """Apply a grant/revoke event. Events for ids that are unknown or not tracked yet are queued."""
        if (event.get("feature") or "").strip().lower() != self.feature:
            return
        raw_id = str(event.get("feature_id") or "")
        canonical = self._canonical(raw_id)
        if canonical is None or canonical not in self._tracked:
            self._pending.append(event)
            del self._pending[:-MAX_PENDING_EVENTS]
            return

        kind = event.get("type")
        if kind == "grant":
            expires_at = parse_datetime(event.get("expires_at") or event.get("expiry"))
            if expires_at is not None and expires_at > self.cache.now():
                grant = CachedGrant(self.feature, canonical, expires_at, event.get("message"))
                self.cache.put(grant)
                await self._set_state(canonical, True, grant)
                self._schedule_expiry_timer()
            # confirming read: the store wins over the event payload
            await self.reconcile(canonical)
        elif kind == "revoke":
            self.cache.remove(self.feature, canonical)
            self.cache.remember_denied(self.feature, canonical)
            await self._set_state(canonical, False, None)
            self._schedule_expiry_timer()

    # ------------------------------------------------------------------
    # Expiry timer
    # ------------------------------------------------------------------

    def _schedule_expiry_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        nearest = self.cache.nearest_expiry(self.feature, self._tracked)
        if nearest is None:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        delay = max(0.0, (nearest - self.cache.now()).total_seconds()) + self.expiry_slack_seconds
        self._timer = asyncio.create_task(self._expire_after(delay))

    @property
    def next_timer_delay(self) -> Optional[float]:
        nearest = self.cache.nearest_expiry(self.feature, self._tracked)
        if nearest is None:
            return None
        return max(0.0, (nearest - self.cache.now()).total_seconds()) + self.expiry_slack_seconds

    @property
    def timer_active(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def _expire_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timer = None
        logger.info("access_expiry_timer_fired", extra={"feature": self.feature})
        await self.lock_lapsed()
        await self.reconcile_all()

    def close(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
