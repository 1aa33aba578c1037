"""Subscription events pushed to open sessions. Never persisted: the grant row is the truth."""
import json
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel

from lawnet.utils import clock

EVENT_GRANT = "grant"
EVENT_REVOKE = "revoke"
EVENT_PING = "ping"


class SubscriptionEvent(BaseModel):
    type: Literal["grant", "revoke"]
    subject: str
    feature: str
    feature_id: str
    expires_at: datetime | None = None
    message: str | None = None

    @classmethod
    def grant(
        cls,
        subject: str,
        feature: str,
        feature_id: str,
        expires_at: datetime,
        message: str | None = None,
    ) -> "SubscriptionEvent":
        return cls(
            type=EVENT_GRANT,
            subject=subject,
            feature=feature,
            feature_id=feature_id,
            expires_at=clock.as_utc(expires_at),
            message=message,
        )

    @classmethod
    def revoke(cls, subject: str, feature: str, feature_id: str) -> "SubscriptionEvent":
        return cls(type=EVENT_REVOKE, subject=subject, feature=feature, feature_id=feature_id)

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "subject": self.subject,
            "feature": self.feature,
            "feature_id": self.feature_id,
        }
        if self.expires_at is not None:
            data["expires_at"] = clock.as_utc(self.expires_at).isoformat()
            data["expiry"] = clock.to_epoch_ms(self.expires_at)
        if self.message:
            data["message"] = self.message
        return data

    def to_json(self) -> str:
        return json.dumps(self.payload(), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "SubscriptionEvent":
        data = json.loads(raw)
        return cls(
            type=data["type"],
            subject=data["subject"],
            feature=data["feature"],
            feature_id=data["feature_id"],
            expires_at=data.get("expires_at"),
            message=data.get("message"),
        )


def format_sse(event: str | None, data: dict[str, Any] | None = None, retry_ms: int | None = None) -> str:
    """One SSE frame: optional retry/event lines, a JSON data line, blank line terminator."""
    lines = []
    if retry_ms is not None:
        lines.append(f"retry: {retry_ms}")
    if event:
        lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data or {}, ensure_ascii=False)}")
    return "\n".join(lines) + "\n\n"


def ping_frame(retry_ms: int | None = None) -> str:
    return format_sse(EVENT_PING, {"t": clock.to_epoch_ms(clock.utcnow())}, retry_ms=retry_ms)
