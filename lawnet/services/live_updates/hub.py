"""
In-process registry of open stream connections, keyed by subject.

Each connection owns a bounded FIFO queue, so events for one subject reach one
connection in the order they were broadcast (a revoke issued after a grant is
never seen first). A connection whose queue overflows is closed and pruned; the
client reconnects and re-reads the store.
"""
import asyncio
import logging
from uuid import uuid4

from lawnet.core.config import settings
from lawnet.core.errors import ChannelDeliveryFailure
from lawnet.services.grants.service import normalize_subject
from lawnet.services.live_updates.events import SubscriptionEvent
from lawnet.utils.metrics import live_update_connections, live_update_events_total

logger = logging.getLogger(__name__)


class Connection:
    def __init__(self, subject: str, maxsize: int) -> None:
        self.id = uuid4().hex
        self.subject = subject
        self.queue: asyncio.Queue[SubscriptionEvent | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def push(self, event: SubscriptionEvent) -> None:
        if self.closed:
            raise ChannelDeliveryFailure("Connection closed", detail={"connection": self.id})
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull as e:
            raise ChannelDeliveryFailure(
                "Connection queue full",
                detail={"connection": self.id, "queue_size": self.queue.maxsize},
            ) from e

    def close(self) -> None:
        """Mark closed and wake the reader. Pending events are dropped."""
        if self.closed:
            return
        self.closed = True
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(None)

    async def next_event(self, timeout: float) -> SubscriptionEvent | None:
        """Next event, None once closed. Raises asyncio.TimeoutError when idle for `timeout` seconds."""
        if self.closed and self.queue.empty():
            return None
        return await asyncio.wait_for(self.queue.get(), timeout)


class ConnectionHub:
    def __init__(self, queue_size: int | None = None) -> None:
        self.queue_size = queue_size or settings.stream_queue_size
        self._connections: dict[str, set[Connection]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop | None) -> None:
        self._loop = loop

    def register(self, subject: str) -> Connection:
        """Open a connection for subject. Must be called from the event loop that serves it."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        subject = normalize_subject(subject)
        conn = Connection(subject, self.queue_size)
        self._connections.setdefault(subject, set()).add(conn)
        live_update_connections.inc()
        logger.info(
            "stream_connected",
            extra={"subject": subject, "connections": len(self._connections[subject])},
        )
        return conn

    def unregister(self, conn: Connection) -> None:
        conns = self._connections.get(conn.subject)
        if not conns or conn not in conns:
            return
        conns.discard(conn)
        if not conns:
            del self._connections[conn.subject]
        conn.close()
        live_update_connections.dec()
        logger.info("stream_disconnected", extra={"subject": conn.subject})

    def connection_count(self, subject: str | None = None) -> int:
        if subject is not None:
            return len(self._connections.get(normalize_subject(subject), ()))
        return sum(len(c) for c in self._connections.values())

    def broadcast(self, event: SubscriptionEvent) -> int:
        """Push to every connection of the event's subject. Returns how many accepted it."""
        subject = normalize_subject(event.subject)
        delivered = 0
        for conn in list(self._connections.get(subject, ())):
            try:
                conn.push(event)
                delivered += 1
            except ChannelDeliveryFailure as e:
                live_update_events_total.labels(event_type=event.type, result="dropped").inc()
                logger.warning(
                    "channel_delivery_failure",
                    extra={"subject": subject, "event_type": event.type, "error": e.message},
                )
                self.unregister(conn)
        if delivered:
            live_update_events_total.labels(event_type=event.type, result="delivered").inc(delivered)
        logger.debug(
            "event_broadcast",
            extra={"subject": subject, "event_type": event.type, "delivered": delivered},
        )
        return delivered

    def publish_threadsafe(self, event: SubscriptionEvent) -> bool:
        """Schedule broadcast on the hub's loop from a worker thread. False if no loop is serving streams."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return False
        try:
            loop.call_soon_threadsafe(self.broadcast, event)
        except RuntimeError:
            return False
        return True

    def close_all(self) -> None:
        for conns in list(self._connections.values()):
            for conn in list(conns):
                self.unregister(conn)


hub = ConnectionHub()
