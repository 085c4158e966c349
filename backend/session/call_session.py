"""
Call audio session container.

- Owns the two growing chunk lists of one call
- Owned and mutated by SessionStore only
- Lifecycle status is advanced by AudioSessionManager
- Contains no merge / encode / upload logic
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from audio.chunks import AudioChunk, Channel


class SessionStatus(Enum):
    """
    Capture lifecycle of one conversation.

    ACTIVE -> FINALIZING -> CLOSED, never backwards.
    """
    ACTIVE = "active"          # accepting chunks
    FINALIZING = "finalizing"  # merge / encode / upload in flight
    CLOSED = "closed"          # artifact handed off, evicted from store


@dataclass
class CallAudioSession:
    """Mutable buffer for a single call's audio."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    conversation_id: str
    started_at_ms: int
    status: SessionStatus = SessionStatus.ACTIVE
    metadata: dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Buffers (append-only while ACTIVE)
    # ------------------------------------------------------------------

    input_chunks: list[AudioChunk] = field(default_factory=list)
    output_chunks: list[AudioChunk] = field(default_factory=list)
    buffered_bytes: int = 0

    # ------------------------------------------------------------------
    # Activity tracking (idle reaping)
    # ------------------------------------------------------------------

    last_activity_ms: int = 0

    def __post_init__(self) -> None:
        if not self.last_activity_ms:
            self.last_activity_ms = self.started_at_ms

    @property
    def is_active(self) -> bool:
        """True while the session still accepts chunks."""
        return self.status is SessionStatus.ACTIVE

    @property
    def chunk_count(self) -> int:
        """Total chunks across both channels."""
        return len(self.input_chunks) + len(self.output_chunks)

    def chunks_for(self, channel: Channel) -> list[AudioChunk]:
        """Return the live list for one channel."""
        if channel is Channel.INPUT:
            return self.input_chunks
        return self.output_chunks

    def log_context(self) -> dict[str, Any]:
        """Standard logging context for this session."""
        return {
            "conversation_id": self.conversation_id,
            "status": self.status.value,
            "input_chunks": len(self.input_chunks),
            "output_chunks": len(self.output_chunks),
            "buffered_bytes": self.buffered_bytes,
        }
