"""
Session store: conversation id -> CallAudioSession.

Responsibilities:
- Sole owner of every CallAudioSession in the process
- create / get / append / delete keyed by conversation id
- Enforce the per-session buffer bound

Not responsible for:
- Decoding transport payloads
- Lifecycle decisions (when to finalize)
- Merging, encoding or uploading

Concurrency: used only from the asyncio event loop, so no locking. Every
method is synchronous and completes within one tick.
"""

from __future__ import annotations

import time
from typing import Callable, Iterator

from audio.chunks import AudioChunk, Channel
from constants import SESSION_MAX_BUFFER_BYTES_DEFAULT
from session.call_session import CallAudioSession


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


# -------------------------
# Exceptions
# -------------------------

class SessionError(Exception):
    """Base class for session store errors."""

    def __init__(self, conversation_id: str, message: str) -> None:
        super().__init__(f"{message}: {conversation_id}")
        self.conversation_id = conversation_id


class DuplicateSessionError(SessionError):
    """
    Raised when create() is called for an id that already has a session.

    Non-fatal: upsert-style callers treat it as "already started".
    """

    def __init__(self, conversation_id: str) -> None:
        super().__init__(conversation_id, "Session already exists")


class UnknownSessionError(SessionError):
    """Raised when an operation names an id with no active session."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(conversation_id, "No active session")


class SessionBufferFullError(SessionError):
    """Raised when an append would push a session past its byte bound."""

    def __init__(self, conversation_id: str, limit: int) -> None:
        super().__init__(conversation_id, f"Session buffer limit {limit} bytes reached")
        self.limit = limit


# -------------------------
# Store
# -------------------------

class SessionStore:
    """
    In-memory session map with process lifetime.

    One instance per process in production; tests create as many
    isolated instances as they need.
    """

    def __init__(
        self,
        *,
        max_buffer_bytes: int = SESSION_MAX_BUFFER_BYTES_DEFAULT,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        if max_buffer_bytes <= 0:
            raise ValueError("max_buffer_bytes must be > 0")

        self._sessions: dict[str, CallAudioSession] = {}
        self._max_buffer_bytes = max_buffer_bytes
        self._clock = clock

    def clock(self) -> int:
        """Current time in ms on the clock sessions are stamped with."""
        return self._clock()

    # -------------------------
    # Core operations
    # -------------------------

    def create(
        self,
        conversation_id: str,
        *,
        started_at_ms: int | None = None,
    ) -> CallAudioSession:
        """
        Create and register a new ACTIVE session.

        A session still finalizing under the same id is replaced; its
        finalize keeps its own reference and removes it with discard().

        Raises:
            DuplicateSessionError if an ACTIVE session already exists
        """
        existing = self._sessions.get(conversation_id)
        if existing is not None and existing.is_active:
            raise DuplicateSessionError(conversation_id)

        session = CallAudioSession(
            conversation_id=conversation_id,
            started_at_ms=self.clock() if started_at_ms is None else started_at_ms,
        )
        self._sessions[conversation_id] = session
        return session

    def get(self, conversation_id: str) -> CallAudioSession | None:
        """Return the session for conversation_id, or None."""
        return self._sessions.get(conversation_id)

    def append_chunk(
        self,
        conversation_id: str,
        channel: Channel,
        payload: bytes,
        *,
        offset_ms: int | None = None,
    ) -> AudioChunk:
        """
        Append PCM bytes to one channel of an ACTIVE session.

        offset_ms defaults to "now - session start".

        Raises:
            UnknownSessionError if no ACTIVE session exists
            SessionBufferFullError if the byte bound would be exceeded
        """
        session = self._sessions.get(conversation_id)
        if session is None or not session.is_active:
            raise UnknownSessionError(conversation_id)

        if session.buffered_bytes + len(payload) > self._max_buffer_bytes:
            raise SessionBufferFullError(conversation_id, self._max_buffer_bytes)

        now = self.clock()
        if offset_ms is None:
            offset_ms = max(0, now - session.started_at_ms)

        chunks = session.chunks_for(channel)
        chunk = AudioChunk(
            payload=payload,
            channel=channel,
            offset_ms=offset_ms,
            sequence_num=len(chunks),
        )
        chunks.append(chunk)
        session.buffered_bytes += len(payload)
        session.last_activity_ms = now
        return chunk

    def delete(self, conversation_id: str) -> None:
        """Remove a session. No error if already absent."""
        self._sessions.pop(conversation_id, None)

    def discard(self, session: CallAudioSession) -> None:
        """Remove session only if it is still the one registered under its id."""
        if self._sessions.get(session.conversation_id) is session:
            del self._sessions[session.conversation_id]

    def clear(self) -> None:
        """Drop every session. Used by tests and hard resets."""
        self._sessions.clear()

    # -------------------------
    # Introspection helpers
    # -------------------------

    def conversation_ids(self) -> list[str]:
        """Snapshot of current ids, safe to iterate while mutating."""
        return list(self._sessions)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[CallAudioSession]:
        return iter(list(self._sessions.values()))
