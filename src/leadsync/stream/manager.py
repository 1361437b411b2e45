"""Per-job live-update channels and their translation into registry mutations.

``StreamConnectionManager`` owns at most one channel per active job id. It
asks the backend for a stream URL, opens a channel through the injected
``Transport`` and turns inbound events into ``JobRegistry`` calls:

==============  ==========================================================
event           registry effect
==============  ==========================================================
``status``      progress replaced, status promoted to ``running``
``lead``        lead appended (duplicates by external id ignored)
``lead_update`` lead replaced in place by external id
``error``       error stored; non-recoverable errors fail the job
``complete``    summary stored, job completed
==============  ==========================================================

The manager closes a channel itself once a terminal event is processed.
A channel that closes permanently while its job is still active flags the
job *degraded*, which hands it over to the fallback poller; a later
successful (re)open clears the flag again.

Network and payload failures never propagate out of this module.
"""

from __future__ import annotations

import asyncio
import json
from typing import Literal

from pydantic import ValidationError

from leadsync.api.client import ScraperClient
from leadsync.api.types import JobStatus, Lead, StreamMessage
from leadsync.core.constants import PLACEHOLDER_PAYLOADS, STREAM_EVENT_TYPES
from leadsync.core.logging import get_logger
from leadsync.jobs.registry import JobRegistry
from leadsync.stream.transport import Channel, Transport

_logger = get_logger("stream.manager")

EarlyUpdatePolicy = Literal["drop", "buffer"]


def parse_stream_message(raw: str) -> StreamMessage | None:
    """Parse an event payload, returning None for anything unusable.

    Rejects empty payloads, placeholder text such as ``undefined`` or
    ``[object Object]``, invalid JSON, non-object JSON and payloads whose
    fields have the wrong shape.
    """
    text = raw.strip()
    if text.lower() in PLACEHOLDER_PAYLOADS:
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return StreamMessage.model_validate(payload)
    except ValidationError:
        return None


def _parse_lead(message: StreamMessage) -> Lead | None:
    if not message.data:
        return None
    try:
        return Lead.model_validate(message.data)
    except ValidationError:
        return None


class _JobStreamListener:
    """``ChannelListener`` bound to one job id and one open() generation."""

    __slots__ = ("_manager", "job_id", "generation")

    def __init__(self, manager: StreamConnectionManager, job_id: str, generation: int) -> None:
        self._manager = manager
        self.job_id = job_id
        self.generation = generation

    def on_open(self) -> None:
        self._manager._handle_open(self)

    def on_event(self, event: str, data: str) -> None:
        self._manager._handle_event(self, event, data)

    def on_close(self) -> None:
        self._manager._handle_close(self)


class StreamConnectionManager:
    """Owns one live-update channel per active job.

    Parameters
    ----------
    registry:
        Job registry that receives every mutation.
    client:
        Backend client, used only for ``get_stream_url``.
    transport:
        Channel factory (``SSETransport`` in production).
    early_update_policy:
        ``"drop"`` discards a ``lead_update`` whose lead has not arrived
        yet; ``"buffer"`` keeps the latest such update per lead and applies
        it when the lead arrives.
    """

    def __init__(
        self,
        registry: JobRegistry,
        client: ScraperClient,
        transport: Transport,
        *,
        early_update_policy: EarlyUpdatePolicy = "drop",
    ) -> None:
        self._registry = registry
        self._client = client
        self._transport = transport
        self._early_update_policy = early_update_policy
        self._channels: dict[str, Channel] = {}
        self._generations: dict[str, int] = {}
        self._next_generation = 0
        self._early_updates: dict[str, dict[str, Lead]] = {}
        self._closed = False

    # ------------------------------------------------------------------
    # Channel lifecycle
    # ------------------------------------------------------------------

    @property
    def open_job_ids(self) -> set[str]:
        return set(self._channels)

    def is_open(self, job_id: str) -> bool:
        return job_id in self._channels

    async def open(self, job_id: str) -> bool:
        """Open (or reopen) the channel for an active job.

        Any previous channel for the id is closed first. Returns True when a
        channel is now listening. Failures to obtain a URL or open the
        channel are logged and flag the job degraded instead of raising.
        """
        if self._closed:
            _logger.debug("stream.open_after_close_all", job_id=job_id)
            return False
        self.close(job_id)
        record = self._registry.get(job_id)
        if record is None or record.is_terminal:
            return False

        self._next_generation += 1
        generation = self._next_generation
        self._generations[job_id] = generation
        listener = _JobStreamListener(self, job_id, generation)

        try:
            url = await self._client.get_stream_url(job_id)
            channel = await self._transport.open(url, listener)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            _logger.warning(
                "stream.open_failed",
                job_id=job_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            if self._generations.get(job_id) == generation:
                del self._generations[job_id]
                self._mark_degraded(job_id)
            return False

        if (
            self._closed
            or self._generations.get(job_id) != generation
            or not self._is_active(job_id)
        ):
            # Superseded or shut down while opening
            channel.close()
            return False

        self._channels[job_id] = channel
        _logger.info("stream.opened", job_id=job_id)
        return True

    def close(self, job_id: str) -> None:
        """Stop listening for ``job_id``; later callbacks from its channel are ignored."""
        self._generations.pop(job_id, None)
        self._early_updates.pop(job_id, None)
        channel = self._channels.pop(job_id, None)
        if channel is not None:
            channel.close()
            _logger.debug("stream.closed", job_id=job_id)

    async def close_all(self) -> None:
        """Close every channel and wait for their tasks to finish.

        Later ``open`` calls are refused.
        """
        self._closed = True
        channels = list(self._channels.values())
        for job_id in list(self._channels):
            self.close(job_id)
        self._generations.clear()
        if channels:
            await asyncio.gather(
                *(channel.wait_closed() for channel in channels),
                return_exceptions=True,
            )

    # ------------------------------------------------------------------
    # Listener callbacks
    # ------------------------------------------------------------------

    def _is_current(self, listener: _JobStreamListener) -> bool:
        return self._generations.get(listener.job_id) == listener.generation

    def _is_active(self, job_id: str) -> bool:
        record = self._registry.get(job_id)
        return record is not None and not record.is_terminal

    def _handle_open(self, listener: _JobStreamListener) -> None:
        if not self._is_current(listener):
            return
        job_id = listener.job_id
        if self._registry.is_degraded(job_id):
            _logger.info("stream.recovered", job_id=job_id)
        self._registry.clear_degraded(job_id)
        self._registry.upsert(job_id, status=JobStatus.RUNNING)

    def _handle_close(self, listener: _JobStreamListener) -> None:
        if not self._is_current(listener):
            return
        job_id = listener.job_id
        self._generations.pop(job_id, None)
        self._channels.pop(job_id, None)
        if self._is_active(job_id):
            self._mark_degraded(job_id)

    def _mark_degraded(self, job_id: str) -> None:
        if self._is_active(job_id) and self._registry.mark_degraded(job_id):
            _logger.warning("stream.degraded_fallback_to_polling", job_id=job_id)

    def _handle_event(self, listener: _JobStreamListener, event: str, data: str) -> None:
        if not self._is_current(listener):
            return
        job_id = listener.job_id
        if event not in STREAM_EVENT_TYPES:
            _logger.debug("stream.unhandled_event", job_id=job_id, stream_event=event)
            return
        if not self._is_active(job_id):
            _logger.debug("stream.late_event_ignored", job_id=job_id, stream_event=event)
            return

        message = parse_stream_message(data)
        if message is None:
            _logger.warning(
                "stream.malformed_payload",
                job_id=job_id,
                stream_event=event,
                payload_preview=data[:80],
            )
            return

        if event == "status":
            self._registry.upsert(
                job_id,
                status=JobStatus.RUNNING,
                progress=message.to_progress(),
            )
        elif event == "lead":
            self._on_lead(job_id, message)
        elif event == "lead_update":
            self._on_lead_update(job_id, message)
        elif event == "error":
            self._on_error(job_id, message)
        elif event == "complete":
            self._registry.upsert(
                job_id,
                summary=message.summary,
                status=JobStatus.COMPLETED,
            )
            _logger.info("stream.job_completed", job_id=job_id)
            self.close(job_id)

    def _on_lead(self, job_id: str, message: StreamMessage) -> None:
        lead = _parse_lead(message)
        if lead is None:
            _logger.warning("stream.malformed_lead", job_id=job_id)
            return
        if not self._registry.append_lead(job_id, lead):
            return
        key = lead.external_id
        pending = self._early_updates.get(job_id)
        if pending and key is not None and key in pending:
            self._registry.update_lead(job_id, pending.pop(key))

    def _on_lead_update(self, job_id: str, message: StreamMessage) -> None:
        lead = _parse_lead(message)
        if lead is None:
            _logger.warning("stream.malformed_lead", job_id=job_id)
            return
        if self._registry.update_lead(job_id, lead):
            return
        key = lead.external_id
        if self._early_update_policy == "buffer" and key is not None:
            self._early_updates.setdefault(job_id, {})[key] = lead
            _logger.debug("stream.early_update_buffered", job_id=job_id, place_id=key)
        else:
            _logger.debug("stream.early_update_dropped", job_id=job_id, place_id=key)

    def _on_error(self, job_id: str, message: StreamMessage) -> None:
        text = message.message or "An error occurred"
        if message.recoverable:
            self._registry.upsert(job_id, error=text)
            _logger.info("stream.recoverable_error", job_id=job_id, error=text)
            return
        self._registry.upsert(job_id, error=text, status=JobStatus.FAILED)
        _logger.warning("stream.job_failed", job_id=job_id, error=text)
        self.close(job_id)


__all__ = ["EarlyUpdatePolicy", "StreamConnectionManager", "parse_stream_message"]
