"""
SSE client for /api/access/stream with reconnect and backoff.

After every (re)connect all reconcilers re-check the server, because events sent
while the stream was down are not replayed.
"""
import asyncio
import json
import logging
import random
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx

from lawnet.client.reconciler import AccessReconciler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SSEMessage:
    event: str
    data: dict[str, Any]


class SSEParser:
    """Line-oriented SSE parser (event / data / retry fields, blank line dispatches)."""

    def __init__(self) -> None:
        self._event: Optional[str] = None
        self._data: list[str] = []
        self.retry_ms: Optional[int] = None

    def feed(self, line: str) -> Optional[SSEMessage]:
        line = line.rstrip("\r")
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "retry" and value.isdigit():
            self.retry_ms = int(value)
        return None

    def _dispatch(self) -> Optional[SSEMessage]:
        if not self._data and self._event is None:
            return None
        raw = "\n".join(self._data)
        event = self._event or "message"
        self._event, self._data = None, []
        try:
            data = json.loads(raw) if raw else {}
        except ValueError:
            logger.warning("sse_bad_payload", extra={"event_type": event})
            return None
        return SSEMessage(event=event, data=data if isinstance(data, dict) else {})


class EventStreamClient:
    def __init__(
        self,
        base_url: str,
        reconcilers: Iterable[AccessReconciler],
        *,
        subject: Optional[str] = None,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        initial_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
    ):
        if not subject and not token:
            raise ValueError("subject or token required")
        self.base_url = base_url.rstrip("/")
        self.reconcilers = list(reconcilers)
        self.subject = subject
        self.token = token
        self.initial_backoff = initial_backoff_seconds
        self.max_backoff = max_backoff_seconds
        self._client = client
        self._task: Optional[asyncio.Task] = None
        self.connected = False
        self.connections = 0

    def _params(self) -> dict[str, str]:
        if self.token:
            return {"token": self.token}
        return {"email": self.subject}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # read=None: the stream idles between heartbeats
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(10.0, read=None),
            )
        return self._client

    async def dispatch(self, message: SSEMessage) -> None:
        if message.event not in ("grant", "revoke"):
            return
        for reconciler in self.reconcilers:
            await reconciler.handle_event(message.data)

    async def _on_connected(self) -> None:
        self.connected = True
        self.connections += 1
        logger.info("access_stream_connected", extra={"count": self.connections})
        for reconciler in self.reconcilers:
            await reconciler.reconcile_all()

    async def consume(self, lines) -> Optional[int]:
        """Feed lines from one connection. Returns the server's retry hint, if any."""
        parser = SSEParser()
        async for line in lines:
            message = parser.feed(line)
            if message is not None:
                await self.dispatch(message)
        return parser.retry_ms

    async def run(self) -> None:
        attempt = 0
        retry_ms: Optional[int] = None
        while True:
            try:
                client = await self._get_client()
                async with client.stream("GET", "/api/access/stream", params=self._params()) as response:
                    if response.status_code != 200:
                        raise httpx.HTTPStatusError(
                            f"stream returned {response.status_code}",
                            request=response.request,
                            response=response,
                        )
                    attempt = 0
                    await self._on_connected()
                    retry_ms = await self.consume(response.aiter_lines()) or retry_ms
            except asyncio.CancelledError:
                raise
            except httpx.HTTPError as e:
                logger.warning("access_stream_error", extra={"error": str(e)})
            finally:
                self.connected = False

            attempt += 1
            base = retry_ms / 1000 if retry_ms else self.initial_backoff
            delay = min(self.max_backoff, base * (2 ** min(attempt - 1, 5))) * (0.5 + random.random() / 2)
            logger.info("access_stream_reconnecting", extra={"attempt": attempt, "delay_seconds": round(delay, 2)})
            await asyncio.sleep(delay)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="access-event-stream")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
