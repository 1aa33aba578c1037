import logging

import redis

from lawnet.core.config import settings

logger = logging.getLogger(__name__)


class IdempotencyStore:
    """Remembers Idempotency-Key headers of recent submissions so a double-tapped upload creates one row."""

    def __init__(self, client: redis.Redis | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.default_ttl = settings.idempotency_ttl

    def check_and_set(self, key: str, value: str = "1", ttl_seconds: int | None = None) -> bool:
        """Atomic operation: setnx + expire in one call. True if the key was new."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        created = self.client.set(f"idempotency:{key}", value, nx=True, ex=ttl)
        return created is not None

    def get(self, key: str) -> str | None:
        return self.client.get(f"idempotency:{key}")

    def remember(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        self.client.set(f"idempotency:{key}", value, ex=ttl)

    def release(self, key: str) -> None:
        try:
            self.client.delete(f"idempotency:{key}")
        except redis.RedisError as e:
            logger.warning("idempotency_release_failed", extra={"error": str(e)})
