"""Redis pub/sub listener: receives events published by any API worker and hands them to the local hub."""
import asyncio
import logging
import random

import redis.asyncio as aioredis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from lawnet.core.config import settings
from lawnet.services.live_updates.events import SubscriptionEvent
from lawnet.services.live_updates.hub import ConnectionHub

logger = logging.getLogger(__name__)


class RedisEventListener:
    def __init__(
        self,
        connection_hub: ConnectionHub,
        redis_url: str | None = None,
        max_backoff_seconds: float = 30.0,
    ) -> None:
        self.hub = connection_hub
        self.redis_url = redis_url or settings.redis_url
        self.pattern = f"{settings.live_updates_channel_prefix}*"
        self.max_backoff_seconds = max_backoff_seconds
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self.hub.bind_loop(asyncio.get_running_loop())
            self._task = asyncio.create_task(self.run(), name="redis-event-listener")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def handle_message(self, message: dict) -> None:
        if message.get("type") != "pmessage":
            return
        try:
            event = SubscriptionEvent.from_json(message["data"])
        except (ValueError, KeyError, PydanticValidationError) as e:
            logger.warning("event_decode_failed", extra={"error": str(e)})
            return
        self.hub.broadcast(event)

    async def run(self) -> None:
        attempt = 0
        while True:
            client = aioredis.from_url(self.redis_url, decode_responses=True)
            pubsub = client.pubsub()
            try:
                await pubsub.psubscribe(self.pattern)
                logger.info("event_listener_subscribed", extra={"path": self.pattern})
                attempt = 0
                async for message in pubsub.listen():
                    self.handle_message(message)
            except asyncio.CancelledError:
                raise
            except (RedisError, OSError) as e:
                attempt += 1
                delay = min(self.max_backoff_seconds, 2 ** min(attempt, 5)) * (0.5 + random.random() / 2)
                logger.warning(
                    "event_listener_disconnected",
                    extra={"error": str(e), "attempt": attempt, "delay_seconds": round(delay, 2)},
                )
                await asyncio.sleep(delay)
            finally:
                try:
                    await pubsub.aclose()
                    await client.aclose()
                except RedisError:
                    pass
