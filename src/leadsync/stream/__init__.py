"""Live-update channels: transport protocol, SSE transport, per-job manager."""

from leadsync.stream.manager import StreamConnectionManager, parse_stream_message
from leadsync.stream.sse import SSEChannel, SSEEvent, SSEParser, SSETransport
from leadsync.stream.transport import Channel, ChannelListener, Transport

__all__ = [
    "Channel",
    "ChannelListener",
    "SSEChannel",
    "SSEEvent",
    "SSEParser",
    "SSETransport",
    "StreamConnectionManager",
    "Transport",
    "parse_stream_message",
]
