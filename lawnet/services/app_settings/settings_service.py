"""Global toggles from the admin panel: auto-approval of incoming submissions."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from lawnet.core.config import settings
from lawnet.models.app_settings import AppSettings


@dataclass(frozen=True)
class ApprovalPolicy:
    """Snapshot read once per intake request and handed to the intake/approval services."""

    auto_approve: bool = False
    default_grant_seconds: int = 86400


class AppSettingsService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self) -> AppSettings | None:
        return self.db.query(AppSettings).filter(AppSettings.id == 1).first()

    def get_or_create(self) -> AppSettings:
        row = self.get()
        if row:
            return row
        row = AppSettings(id=1, auto_approve=settings.auto_approve_default)
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def policy(self) -> ApprovalPolicy:
        row = self.get_or_create()
        return ApprovalPolicy(
            auto_approve=bool(row.auto_approve),
            default_grant_seconds=settings.default_grant_seconds,
        )

    def as_dict(self) -> dict[str, Any]:
        row = self.get_or_create()
        return {
            "auto": row.auto_approve,
            "updated_at": row.updated_at.isoformat() if row.updated_at else None,
        }

    def set_auto_approve(self, enabled: bool) -> dict[str, Any]:
        """Flip the toggle. Flushes only; the caller commits together with the audit row."""
        row = self.get_or_create()
        row.auto_approve = bool(enabled)
        row.updated_at = datetime.now(timezone.utc)
        self.db.add(row)
        self.db.flush()
        return self.as_dict()
