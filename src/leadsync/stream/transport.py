"""Transport abstraction for per-job live-update channels.

The job-state core depends only on these protocols. A transport opens a
channel to a URL and reports back through a ``ChannelListener``; the
server-push (SSE) implementation lives in ``leadsync.stream.sse`` and a
socket-based transport can be substituted without touching reconciliation.

Listener contract:

- ``on_open`` is called every time the channel (re)connects successfully.
- ``on_event`` is called once per inbound message with the event name and
  raw payload text, in transport order.
- ``on_close`` is called once when the channel is *permanently* closed by
  the remote side or by exhausted reconnect attempts. Transient drops the
  transport retries on its own are not reported, and neither is a close
  requested by the client through ``Channel.close``.
"""

from __future__ import annotations

from typing import Protocol


class ChannelListener(Protocol):
    """Receives channel lifecycle and message callbacks."""

    def on_open(self) -> None: ...

    def on_event(self, event: str, data: str) -> None: ...

    def on_close(self) -> None: ...


class Channel(Protocol):
    """Handle to one open live-update channel."""

    @property
    def closed(self) -> bool: ...

    def close(self) -> None:
        """Stop listening. Safe to call from inside a listener callback."""
        ...

    async def wait_closed(self) -> None: ...


class Transport(Protocol):
    """Factory for channels."""

    async def open(self, url: str, listener: ChannelListener) -> Channel: ...

    async def aclose(self) -> None: ...


__all__ = ["Channel", "ChannelListener", "Transport"]
