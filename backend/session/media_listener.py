"""
Media stream listener (one per vendor connection).

Responsibilities:
- Learn the conversation id (connection metadata or first frame carrying it)
- Buffer audio seen before the id is known, replay it once bound
- Route normalized media events to AudioSessionManager
- Trigger finalize once: on a call-end frame or on connection close

Not responsible for:
- Vendor wire shapes (protocol.media_events)
- Merge / encode / upload (AudioSessionManager)
- Socket I/O (server.routes)
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import TYPE_CHECKING

from uuid import uuid4

from constants import LISTENER_FINALIZE_WAIT_S, LISTENER_MAX_PENDING_EVENTS
from observability.logger import log_event
from protocol.media_events import (
    MediaEvent,
    MediaEventKind,
    MediaFrameError,
    decode_binary_frame,
    decode_text_frame,
)
from session.store import UnknownSessionError

if TYPE_CHECKING:
    from session.manager import AudioSessionManager, SessionEndResult


def _new_connection_id() -> str:
    return f"mconn_{uuid4().hex[:12]}"


class MediaStreamListener:
    """
    One listener == one vendor connection == at most one conversation.
    """

    def __init__(
        self,
        *,
        manager: AudioSessionManager,
        finalize_wait_s: float = LISTENER_FINALIZE_WAIT_S,
        max_pending_events: int = LISTENER_MAX_PENDING_EVENTS,
    ) -> None:
        self._manager = manager
        self._finalize_wait_s = finalize_wait_s

        self.connection_id = _new_connection_id()
        self.conversation_id: str | None = None
        self.result: SessionEndResult | None = None

        # (event, received_at_ms) seen before the conversation id
        self._pending: deque[tuple[MediaEvent, int]] = deque(maxlen=max_pending_events)
        self._pending_dropped = 0
        self._late_chunks = 0
        self._finalize_requested = False
        self._closed = False

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def on_connect(self, conversation_id: str | None = None) -> None:
        """Called once the socket is accepted."""
        log_event({
            "event_type": "MEDIA_STREAM_CONNECTED",
            "connection_id": self.connection_id,
            "conversation_id": conversation_id,
        })
        if conversation_id:
            self._bind(conversation_id)

    async def on_close(self, reason: str | None = None) -> SessionEndResult | None:
        """
        Called when the socket closes, for any reason.

        Finalizes the session if this connection bound one and it is still
        active. Safe to call more than once.
        """
        if self._closed:
            return self.result
        self._closed = True

        log_event({
            "event_type": "MEDIA_STREAM_CLOSED",
            "connection_id": self.connection_id,
            "conversation_id": self.conversation_id,
            "reason": reason,
        })

        if self.conversation_id is None:
            if self._pending:
                log_event({
                    "event_type": "MEDIA_STREAM_CLOSED_WITHOUT_SESSION",
                    "level": "WARNING",
                    "connection_id": self.connection_id,
                    "pending_events_discarded": len(self._pending),
                })
            self._pending.clear()
            return None

        if self._manager.is_active(self.conversation_id):
            await self._finalize(reason or "socket_close")
        return self.result

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------

    async def on_text_message(self, payload: str) -> None:
        """Decode a JSON frame and route its events."""
        if self._closed:
            return

        try:
            events = decode_text_frame(payload)
        except MediaFrameError as e:
            log_event({
                "event_type": "MEDIA_FRAME_DECODE_ERROR",
                "level": "WARNING",
                "connection_id": self.connection_id,
                "conversation_id": self.conversation_id,
                "error": str(e),
                "payload_preview": payload[:100],
            })
            return

        for event in events:
            await self._handle(event)

    async def on_binary_message(self, payload: bytes) -> None:
        """Raw PCM frames are agent output."""
        if self._closed:
            return
        await self._handle(decode_binary_frame(payload))

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def _handle(self, event: MediaEvent) -> None:
        if event.conversation_id:
            if self.conversation_id is None:
                self._bind(event.conversation_id)
            elif event.conversation_id != self.conversation_id:
                log_event({
                    "event_type": "CONVERSATION_ID_MISMATCH",
                    "level": "WARNING",
                    "connection_id": self.connection_id,
                    "bound": self.conversation_id,
                    "received": event.conversation_id,
                })

        if event.is_audio:
            if self.conversation_id is None:
                self._buffer(event)
            else:
                self._append(event)

        elif event.kind is MediaEventKind.CALL_END:
            if self.conversation_id is None:
                log_event({
                    "event_type": "CALL_END_WITHOUT_SESSION",
                    "level": "WARNING",
                    "connection_id": self.connection_id,
                })
                return
            await self._finalize("call_end_event")

        else:
            log_event({
                "event_type": "UNKNOWN_MEDIA_EVENT",
                "level": "DEBUG",
                "connection_id": self.connection_id,
                "conversation_id": self.conversation_id,
                "raw_type": event.raw_type,
            })

    def _bind(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id

        # Early audio keeps its arrival time: a lazily created session
        # starts at the first buffered event
        first_seen_ms = self._pending[0][1] if self._pending else None

        if self._manager.ensure_session(conversation_id, started_at_ms=first_seen_ms) is None:
            log_event({
                "event_type": "MEDIA_STREAM_FOR_CLOSED_SESSION",
                "level": "WARNING",
                "connection_id": self.connection_id,
                "conversation_id": conversation_id,
            })

        log_event({
            "event_type": "MEDIA_STREAM_BOUND",
            "connection_id": self.connection_id,
            "conversation_id": conversation_id,
            "replayed_events": len(self._pending),
            "pending_dropped": self._pending_dropped,
        })

        while self._pending:
            event, received_at_ms = self._pending.popleft()
            self._append(event, received_at_ms=received_at_ms)

    def _buffer(self, event: MediaEvent) -> None:
        if self._pending.maxlen is not None and len(self._pending) == self._pending.maxlen:
            # deque(maxlen) evicts the oldest on append
            self._pending_dropped += 1
        self._pending.append((event, self._manager.clock()))

    def _append(self, event: MediaEvent, *, received_at_ms: int | None = None) -> None:
        assert self.conversation_id is not None

        try:
            if event.pcm is not None:
                self._manager.append_pcm(
                    self.conversation_id,
                    event.channel,
                    event.pcm,
                    received_at_ms=received_at_ms,
                )
            elif event.audio_b64 is not None:
                self._manager.append_chunk(
                    self.conversation_id,
                    event.channel,
                    event.audio_b64,
                    received_at_ms=received_at_ms,
                )
        except UnknownSessionError:
            # Session already finalizing or closed (HTTP end raced the stream)
            self._late_chunks += 1
            if self._late_chunks == 1:
                log_event({
                    "event_type": "CHUNK_FOR_INACTIVE_SESSION",
                    "level": "WARNING",
                    "connection_id": self.connection_id,
                    "conversation_id": self.conversation_id,
                })

    async def _finalize(self, reason: str) -> None:
        if self._finalize_requested or self.conversation_id is None:
            return
        self._finalize_requested = True

        try:
            self.result = await asyncio.wait_for(
                self._manager.end_session(self.conversation_id, reason=reason),
                timeout=self._finalize_wait_s,
            )
        except UnknownSessionError:
            log_event({
                "event_type": "FINALIZE_WITHOUT_SESSION",
                "level": "WARNING",
                "connection_id": self.connection_id,
                "conversation_id": self.conversation_id,
            })
        except asyncio.TimeoutError:
            # The finalize task is shielded and keeps running
            log_event({
                "event_type": "FINALIZE_WAIT_TIMEOUT",
                "level": "WARNING",
                "connection_id": self.connection_id,
                "conversation_id": self.conversation_id,
                "wait_s": self._finalize_wait_s,
            })
