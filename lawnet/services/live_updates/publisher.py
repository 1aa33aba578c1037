"""
Event publishers used by the approval engine after a commit.

Publishing is best effort: failures are logged and counted, never raised, because
clients recover missed events by re-reading the store.
"""
import logging

import pybreaker
import redis

from lawnet.core.config import settings
from lawnet.services.circuit_breaker import get_circuit_breaker
from lawnet.services.live_updates.events import SubscriptionEvent
from lawnet.services.live_updates.hub import ConnectionHub, hub as default_hub
from lawnet.utils.metrics import live_update_events_total

logger = logging.getLogger(__name__)


def channel_for(subject: str) -> str:
    return f"{settings.live_updates_channel_prefix}{subject}"


class EventPublisher:
    def publish(self, event: SubscriptionEvent) -> bool:
        raise NotImplementedError


class LocalEventPublisher(EventPublisher):
    """Single-process backend: hand the event straight to the in-process hub."""

    def __init__(self, connection_hub: ConnectionHub | None = None) -> None:
        self.hub = connection_hub or default_hub

    def publish(self, event: SubscriptionEvent) -> bool:
        scheduled = self.hub.publish_threadsafe(event)
        live_update_events_total.labels(
            event_type=event.type, result="published" if scheduled else "no_listeners"
        ).inc()
        return scheduled


class RedisEventPublisher(EventPublisher):
    """Multi-worker backend: publish JSON on the subject channel; every API worker's listener fans it out."""

    def __init__(self, client: redis.Redis | None = None, breaker: pybreaker.CircuitBreaker | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.breaker = breaker or get_circuit_breaker("live_updates_publish")

    def publish(self, event: SubscriptionEvent) -> bool:
        try:
            receivers = self.breaker.call(self.client.publish, channel_for(event.subject), event.to_json())
        except pybreaker.CircuitBreakerError:
            live_update_events_total.labels(event_type=event.type, result="publish_failed").inc()
            logger.warning(
                "event_publish_skipped_breaker_open",
                extra={"subject": event.subject, "event_type": event.type},
            )
            return False
        except redis.RedisError as e:
            live_update_events_total.labels(event_type=event.type, result="publish_failed").inc()
            logger.warning(
                "event_publish_failed",
                extra={"subject": event.subject, "event_type": event.type, "error": str(e)},
            )
            return False
        live_update_events_total.labels(event_type=event.type, result="published").inc()
        logger.info(
            "event_published",
            extra={"subject": event.subject, "event_type": event.type, "delivered": receivers},
        )
        return True


_publisher: EventPublisher | None = None


def get_event_publisher() -> EventPublisher:
    """FastAPI dependency. Backend chosen by LIVE_UPDATES_BACKEND."""
    global _publisher
    if _publisher is None:
        if settings.live_updates_backend == "memory":
            _publisher = LocalEventPublisher()
        else:
            _publisher = RedisEventPublisher()
    return _publisher
