"""
Local short-circuit cache of grants for one viewing session.

Only positive grants are stored (and optionally persisted to a JSON file). "No grant"
answers are remembered in memory for a few seconds to avoid repeated queries and are
never persisted.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from lawnet.core.config import settings
from lawnet.utils import clock

logger = logging.getLogger(__name__)

Key = tuple[str, str]


@dataclass(frozen=True)
class CachedGrant:
    feature: str
    feature_id: str
    expires_at: datetime
    message: Optional[str] = None

    def is_live(self, now: datetime) -> bool:
        return now < self.expires_at


class AccessCache:
    def __init__(
        self,
        subject: str,
        *,
        negative_ttl_seconds: Optional[float] = None,
        persist_path: Optional[str | Path] = None,
        now: Callable[[], datetime] = clock.utcnow,
    ):
        self.subject = subject.strip().lower()
        self.negative_ttl = timedelta(
            seconds=settings.client_negative_ttl_seconds if negative_ttl_seconds is None else negative_ttl_seconds
        )
        self.persist_path = Path(persist_path) if persist_path else None
        self._now = now
        self._grants: dict[Key, CachedGrant] = {}
        self._denied: dict[Key, datetime] = {}
        if self.persist_path:
            self.load()

    def now(self) -> datetime:
        return self._now()

    # ----- positive entries -----

    def get(self, feature: str, feature_id: str) -> Optional[CachedGrant]:
        """Live grant or None. Expired entries are dropped on read."""
        key = (feature, feature_id)
        grant = self._grants.get(key)
        if grant is None:
            return None
        if not grant.is_live(self.now()):
            self._grants.pop(key, None)
            self._save()
            return None
        return grant

    def put(self, grant: CachedGrant) -> None:
        key = (grant.feature, grant.feature_id)
        self._grants[key] = grant
        self._denied.pop(key, None)
        self._save()

    def remove(self, feature: str, feature_id: str) -> None:
        if self._grants.pop((feature, feature_id), None) is not None:
            self._save()

    def entries(self, feature: Optional[str] = None) -> list[CachedGrant]:
        return [g for g in self._grants.values() if feature is None or g.feature == feature]

    def nearest_expiry(self, feature: Optional[str] = None, feature_ids: Optional[set[str]] = None) -> Optional[datetime]:
        now = self.now()
        upcoming = [
            g.expires_at
            for g in self.entries(feature)
            if g.is_live(now) and (feature_ids is None or g.feature_id in feature_ids)
        ]
        return min(upcoming) if upcoming else None

    # ----- negative memo (memory only) -----

    def remember_denied(self, feature: str, feature_id: str) -> None:
        self._denied[(feature, feature_id)] = self.now() + self.negative_ttl

    def is_denied_fresh(self, feature: str, feature_id: str) -> bool:
        until = self._denied.get((feature, feature_id))
        if until is None:
            return False
        if self.now() >= until:
            del self._denied[(feature, feature_id)]
            return False
        return True

    def forget_denied(self, feature: str, feature_id: str) -> None:
        self._denied.pop((feature, feature_id), None)

    # ----- persistence -----

    def load(self) -> None:
        if not self.persist_path or not self.persist_path.exists():
            return
        try:
            data = json.loads(self.persist_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("access_cache_load_failed", extra={"path": str(self.persist_path), "error": str(e)})
            return
        if data.get("subject") != self.subject:
            return
        now = self.now()
        for item in data.get("grants", []):
            try:
                grant = CachedGrant(
                    feature=item["feature"],
                    feature_id=item["feature_id"],
                    expires_at=clock.as_utc(datetime.fromisoformat(item["expires_at"])),
                    message=item.get("message"),
                )
            except (KeyError, TypeError, ValueError):
                continue
            if grant.is_live(now):
                self._grants[(grant.feature, grant.feature_id)] = grant

    def _save(self) -> None:
        if not self.persist_path:
            return
        payload = {
            "subject": self.subject,
            "grants": [
                {
                    "feature": g.feature,
                    "feature_id": g.feature_id,
                    "expires_at": g.expires_at.isoformat(),
                    "message": g.message,
                }
                for g in self._grants.values()
            ],
        }
        try:
            self.persist_path.parent.mkdir(parents=True, exist_ok=True)
            self.persist_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            logger.warning("access_cache_save_failed", extra={"path": str(self.persist_path), "error": str(e)})
