"""
Async HTTP client for the access API, used by content viewers.

Every call has a bounded timeout; timeouts, transport errors, 429 and 5xx surface as
RetryableClientError so callers can keep their current state and try again later.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from lawnet.core.config import settings
from lawnet.utils import clock

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class ClientError(Exception):
    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class RetryableClientError(ClientError):
    """Timeout, network failure or a temporary server error. Safe to retry."""


@dataclass(frozen=True)
class RemoteAccess:
    allowed: bool
    expires_at: Optional[datetime] = None
    message: Optional[str] = None
    reason: Optional[str] = None


def parse_datetime(value: Any) -> Optional[datetime]:
    """ISO string or epoch milliseconds -> aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return clock.as_utc(datetime.fromisoformat(text))


class AccessApiClient:
    def __init__(
        self,
        base_url: str,
        subject: str,
        *,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.subject = subject.strip().lower()
        self.timeout = httpx.Timeout(timeout_seconds or settings.client_request_timeout)
        # HTTP client (created lazily or passed in for testing)
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("access_api_timeout", extra={"path": path})
            raise RetryableClientError(f"Timed out calling {path}") from e
        except httpx.TransportError as e:
            logger.warning("access_api_unreachable", extra={"path": path, "error": str(e)})
            raise RetryableClientError(f"Could not reach {path}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code >= 400:
            message = data.get("error") or data.get("detail") or f"HTTP {response.status_code}"
            error_cls = RetryableClientError if response.status_code in RETRYABLE_STATUS else ClientError
            raise error_cls(str(message), status_code=response.status_code, code=data.get("code"))
        return data

    async def check_access(self, feature: str, feature_id: str) -> RemoteAccess:
        data = await self._request(
            "GET",
            "/api/access/check",
            params={"email": self.subject, "feature": feature, "feature_id": feature_id},
        )
        return RemoteAccess(
            allowed=bool(data.get("allowed")),
            expires_at=parse_datetime(data.get("expires_at")),
            message=data.get("message"),
            reason=data.get("reason"),
        )

    async def my_submission(self, feature: str | None = None, feature_id: str | None = None) -> Optional[dict]:
        params = {"email": self.subject}
        if feature:
            params["feature"] = feature
        if feature_id:
            params["feature_id"] = feature_id
        data = await self._request("GET", "/api/submissions/my", params=params)
        return data.get("item") if data.get("found") else None

    async def submit_proof(
        self,
        feature: str,
        feature_id: str,
        plan_key: str,
        *,
        proof_ref: str | None = None,
        screenshot: tuple[str, bytes] | None = None,
        name: str = "",
        phone: str = "",
        plan_label: str = "",
        plan_price: str = "",
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        form = {
            "email": self.subject,
            "name": name,
            "phone": phone,
            "feature": feature,
            "feature_id": feature_id,
            "plan_key": plan_key,
            "plan_label": plan_label,
            "plan_price": plan_price,
            "proof_ref": proof_ref or "",
        }
        files = {"screenshot": screenshot} if screenshot else None
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return await self._request("POST", "/api/submissions", data=form, files=files, headers=headers)
