"""Server-Sent Events transport built on httpx streaming.

``SSETransport.open`` returns an ``SSEChannel`` whose background task
consumes ``text/event-stream`` responses and reports through a
``ChannelListener``. The channel behaves like a browser EventSource:

- a dropped connection (EOF, network error, read timeout) is retried by the
  channel itself, with a ``Last-Event-ID`` header and the bounded
  ``ReconnectPolicy`` (or the server's ``retry:`` hint);
- a non-200 response or a wrong content type fails the channel at once;
- only a failed or exhausted channel is reported via ``on_close``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx

from leadsync.core.config import ReconnectPolicy, StreamConfig
from leadsync.core.logging import get_logger
from leadsync.core.task_utils import spawn_logged
from leadsync.stream.transport import ChannelListener

_logger = get_logger("stream.sse")

_CONNECT_TIMEOUT_SECONDS = 10.0


@dataclass
class SSEEvent:
    """One dispatched server-sent event."""

    event: str
    data: str
    id: str | None = None


class SSEParser:
    """Incremental ``text/event-stream`` line parser.

    Feed decoded lines without their terminators; a blank line dispatches
    the pending event. ``last_event_id`` and ``retry_ms`` persist across
    events as the EventSource processing model requires.
    """

    def __init__(self) -> None:
        self.last_event_id: str | None = None
        self.retry_ms: int | None = None
        self._event = ""
        self._data: list[str] = []

    def reset_pending(self) -> None:
        """Discard a partially received event (after a dropped connection)."""
        self._event = ""
        self._data = []

    def feed(self, line: str) -> SSEEvent | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self.last_event_id = value
        elif name == "retry":
            if value.isdigit():
                self.retry_ms = int(value)
        return None

    def _dispatch(self) -> SSEEvent | None:
        if not self._data:
            self._event = ""
            return None
        event = SSEEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self.last_event_id,
        )
        self._event = ""
        self._data = []
        return event


class _ChannelFailed(Exception):
    """The server answered in a way that must not be retried."""


class SSEChannel:
    """One live SSE connection with transport-level reconnection."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        url: str,
        listener: ChannelListener,
        *,
        policy: ReconnectPolicy,
    ) -> None:
        self._http = http
        self._url = url
        self._listener = listener
        self._policy = policy
        self._parser = SSEParser()
        self._task: asyncio.Task[None] | None = None
        self._closing = False
        self._closed = False
        self._made_progress = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = spawn_logged(
            self._run(), _logger, name="sse-channel", died_event="sse.channel_died"
        )

    def close(self) -> None:
        """Stop listening without reporting ``on_close``."""
        if self._closing:
            return
        self._closing = True
        self._closed = True
        task = self._task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        """Every exit not requested through ``close`` is reported once."""
        try:
            await self._read_until_failed()
        finally:
            if not self._closing:
                self._closed = True
                self._safe_call("close")

    async def _read_until_failed(self) -> None:
        attempt = 0
        while not self._closing:
            self._made_progress = False
            try:
                await self._consume()
            except _ChannelFailed as exc:
                _logger.warning("sse.channel_failed", reason=str(exc))
                break
            except httpx.TransportError as exc:
                _logger.info(
                    "sse.connection_dropped",
                    error_type=type(exc).__name__,
                    attempt=attempt,
                )
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                _logger.warning(
                    "sse.channel_failed",
                    reason=str(exc),
                    error_type=type(exc).__name__,
                )
                break

            if self._closing:
                return
            if self._made_progress:
                attempt = 0
            attempt += 1
            if attempt > self._policy.max_attempts:
                _logger.warning(
                    "sse.reconnect_exhausted",
                    attempts=self._policy.max_attempts,
                )
                break
            await asyncio.sleep(self._reconnect_delay(attempt))

    def _reconnect_delay(self, attempt: int) -> float:
        if self._parser.retry_ms is not None:
            return min(self._parser.retry_ms / 1000, self._policy.max_delay_seconds)
        return self._policy.delay_for(attempt)

    async def _consume(self) -> None:
        """Read one connection until EOF or close."""
        self._parser.reset_pending()
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if self._parser.last_event_id:
            headers["Last-Event-ID"] = self._parser.last_event_id

        async with self._http.stream("GET", self._url, headers=headers) as response:
            if response.status_code != 200:
                raise _ChannelFailed(f"HTTP {response.status_code}")
            content_type = response.headers.get("content-type", "")
            if not content_type.startswith("text/event-stream"):
                raise _ChannelFailed(f"unexpected content type {content_type!r}")

            self._safe_call("open")
            if self._closing:
                return
            async for line in response.aiter_lines():
                event = self._parser.feed(line)
                if event is None:
                    continue
                self._made_progress = True
                self._safe_call("event", event)
                if self._closing:
                    break

    def _safe_call(self, kind: str, event: SSEEvent | None = None) -> None:
        """Invoke a listener callback; listener bugs must not kill the channel."""
        try:
            if kind == "open":
                self._listener.on_open()
            elif kind == "close":
                self._listener.on_close()
            elif event is not None:
                self._listener.on_event(event.event, event.data)
        except Exception:
            _logger.exception("sse.listener_error", callback=kind)


class SSETransport:
    """``Transport`` implementation over a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        *,
        policy: ReconnectPolicy | None = None,
        read_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._policy = policy or ReconnectPolicy()
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(_CONNECT_TIMEOUT_SECONDS, read=read_timeout),
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: StreamConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> SSETransport:
        return cls(
            policy=config.reconnect,
            read_timeout=config.read_timeout_seconds,
            transport=transport,
        )

    async def open(self, url: str, listener: ChannelListener) -> SSEChannel:
        channel = SSEChannel(self._http, url, listener, policy=self._policy)
        channel.start()
        return channel

    async def aclose(self) -> None:
        await self._http.aclose()


__all__ = ["SSEChannel", "SSEEvent", "SSEParser", "SSETransport"]
