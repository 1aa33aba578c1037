"""
Admin authorization: one shared owner key, sent as X-Owner-Key or Authorization: Bearer.
Failed attempts are rate limited per client IP to slow down brute force.
"""
import hmac
import logging

import redis
from fastapi import Request

from lawnet.core.config import settings
from lawnet.core.errors import AuthorizationError, RateLimitedError

logger = logging.getLogger("auth")

OWNER_KEY_HEADER = "X-Owner-Key"


def get_client_ip(request: Request) -> str:
    """Client IP (supports X-Forwarded-For from proxy)."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and settings.app_env == "production":
        trusted = settings.trusted_proxy_ips_set
        if trusted and request.client and request.client.host in trusted:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def extract_key(request: Request) -> str:
    key = request.headers.get(OWNER_KEY_HEADER) or ""
    if not key:
        auth = request.headers.get("Authorization") or ""
        if auth.lower().startswith("bearer "):
            key = auth[7:]
    return key.strip()


def key_matches(candidate: str) -> bool:
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), settings.owner_key.encode("utf-8"))


def _failures_key(client_ip: str) -> str:
    return f"admin_key_failures:{client_ip}"


def is_locked_out(client_ip: str) -> bool:
    try:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        current = client.get(_failures_key(client_ip))
        return bool(current) and int(current) >= settings.admin_rate_limit_attempts
    except redis.RedisError as e:
        logger.warning("admin_rate_limit_redis_error", extra={"error": str(e)})
        return False  # Fail open - Redis outage must not lock admins out


def record_failure(client_ip: str) -> None:
    try:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        key = _failures_key(client_ip)
        current = client.incr(key)
        if current == 1:
            client.expire(key, settings.admin_rate_limit_window_seconds)
        logger.warning("admin_key_rejected", extra={"count": current})
    except redis.RedisError as e:
        logger.warning("admin_rate_limit_redis_error", extra={"error": str(e)})


def require_admin(request: Request) -> str:
    """
    FastAPI dependency for admin routes. Returns the actor id used in audit rows.
    Raises AuthorizationError (403) on a missing/wrong key and RateLimitedError (429) after
    too many failures from one IP.
    """
    client_ip = get_client_ip(request)
    if is_locked_out(client_ip):
        raise RateLimitedError("Too many failed admin attempts. Try again later.")
    if not key_matches(extract_key(request)):
        record_failure(client_ip)
        raise AuthorizationError("Admin key required")
    return "owner"
