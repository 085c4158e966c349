"""
Audio session manager.

Responsibilities:
- Start sessions (explicitly or lazily)
- Decode transport chunks and append them with their offset
- Finalize each session exactly once: merge -> encode -> upload -> hand off URL
- Evict finished sessions, reap idle ones, drain everything on shutdown

Failure policy:
- A bad chunk is logged and dropped; the session keeps going
- Encode / upload failures degrade to audio_url=None; the session is
  still evicted and the caller still gets a result
- Nothing here raises into the call-completion flow except
  DuplicateSessionError / UnknownSessionError, which callers expect

Concurrency:
- Single asyncio event loop. Finalize runs in its own task, shielded from
  caller cancellation; concurrent end signals await the same task.
- Only the upload suspends, so other sessions keep appending meanwhile.
"""

from __future__ import annotations

import asyncio
import re
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, TYPE_CHECKING

from audio.chunks import Channel
from audio.merger import layout_tracks, merge_chunks
from audio.pcm import ChunkDecodeError, decode_base64_pcm, has_whole_frames
from audio.wav import EncodeFailure, encode_wav
from constants import (
    CHUNK_LOG_EVERY,
    FINALIZED_RESULTS_RETAINED,
    MONO_CHANNELS,
    RECORDING_LAYOUT_MONO,
    RECORDING_LAYOUT_STEREO,
    RECORDING_LAYOUTS,
    SESSION_IDLE_TIMEOUT_S_DEFAULT,
    SESSION_REAPER_INTERVAL_S,
    STEREO_CHANNELS,
    UPLOAD_TIMEOUT_S_DEFAULT,
    WAV_FILE_SUFFIX,
)
from observability.logger import log_event
from observability.metrics import timed
from session.call_session import CallAudioSession, SessionStatus
from session.store import (
    SessionBufferFullError,
    SessionStore,
    UnknownSessionError,
)
from storage.uploader import UploadFailure

if TYPE_CHECKING:
    from calls.records import CallRecordStore
    from storage.uploader import StorageUploader


_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def recording_filename(conversation_id: str, when: datetime) -> str:
    """
    {conversation_id}_{ISO-8601 UTC with ':' and '.' replaced by '-'}.wav

    Example: conv_1_2024-05-01T10-00-00-000Z.wav
    """
    stamp = when.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    stamp = stamp.replace("+00:00", "Z").replace(":", "-").replace(".", "-")
    safe_id = _UNSAFE_FILENAME_CHARS.sub("_", conversation_id)
    return f"{safe_id}_{stamp}{WAV_FILE_SUFFIX}"


# ------------------------------------------------------------------
# Results
# ------------------------------------------------------------------

@dataclass(frozen=True)
class SessionStartResult:
    conversation_id: str
    started_at_ms: int


@dataclass(frozen=True)
class SessionStats:
    """Read-only snapshot of a live session."""
    conversation_id: str
    started_at_ms: int
    elapsed_ms: int
    input_chunk_count: int
    output_chunk_count: int
    buffered_bytes: int
    status: str

    def to_json(self) -> dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "startTime": self.started_at_ms,
            "elapsedMs": self.elapsed_ms,
            "inputChunkCount": self.input_chunk_count,
            "outputChunkCount": self.output_chunk_count,
            "totalChunks": self.input_chunk_count + self.output_chunk_count,
            "bufferedBytes": self.buffered_bytes,
            "status": self.status,
        }


@dataclass(frozen=True)
class EncodedAudioArtifact:
    """The WAV produced at finalize time. Not kept after upload."""
    filename: str
    data: bytes
    url: str | None = None


@dataclass(frozen=True)
class SessionEndResult:
    """
    Outcome of finalizing one session.

    audio_url is None when no audio was captured or when encode / upload
    failed; error then names the reason.
    """
    conversation_id: str
    audio_url: str | None
    duration_ms: int
    input_chunk_count: int
    output_chunk_count: int
    filename: str | None = None
    error: str | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "audioUrl": self.audio_url,
            "durationMs": self.duration_ms,
            "inputChunkCount": self.input_chunk_count,
            "outputChunkCount": self.output_chunk_count,
        }


# ------------------------------------------------------------------
# AudioSessionManager
# ------------------------------------------------------------------

class AudioSessionManager:
    """
    Lifecycle owner for every call's audio capture.

    One instance per process, shared by the HTTP routes and all media
    stream connections.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        uploader: StorageUploader,
        sample_rate: int,
        recording_layout: str = RECORDING_LAYOUT_MONO,
        upload_timeout_s: float = UPLOAD_TIMEOUT_S_DEFAULT,
        idle_timeout_s: float = SESSION_IDLE_TIMEOUT_S_DEFAULT,
        call_records: CallRecordStore | None = None,
    ) -> None:
        if sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")
        if recording_layout not in RECORDING_LAYOUTS:
            raise ValueError(f"Unknown recording layout: {recording_layout}")

        self._store = store
        self._uploader = uploader
        self._sample_rate = sample_rate
        self._layout = recording_layout
        self._upload_timeout_s = upload_timeout_s
        self._idle_timeout_ms = int(idle_timeout_s * 1000)
        self._call_records = call_records

        self._finalizing: dict[str, asyncio.Task[SessionEndResult]] = {}
        self._finished: OrderedDict[str, SessionEndResult] = OrderedDict()

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start_session(
        self,
        conversation_id: str,
        *,
        metadata: dict[str, Any] | None = None,
        started_at_ms: int | None = None,
    ) -> SessionStartResult:
        """
        Open a capture session.

        started_at_ms defaults to now; offsets of later chunks count from it.

        Raises:
            DuplicateSessionError if the id already has an ACTIVE session
        """
        session = self._store.create(conversation_id, started_at_ms=started_at_ms)
        if metadata:
            session.metadata.update(metadata)

        # A reused id starts a fresh history
        self._finished.pop(conversation_id, None)

        log_event({
            "event_type": "SESSION_STARTED",
            "conversation_id": conversation_id,
            "started_at_ms": session.started_at_ms,
        })
        return SessionStartResult(
            conversation_id=conversation_id,
            started_at_ms=session.started_at_ms,
        )

    def ensure_session(
        self,
        conversation_id: str,
        *,
        started_at_ms: int | None = None,
    ) -> CallAudioSession | None:
        """
        Lazily start a session for an id seen on an ingress path.

        Idempotent. Returns the live session, or None if the id is already
        finalizing or finished (late frames must not resurrect it).
        """
        session = self._store.get(conversation_id)
        if session is not None:
            return session if session.is_active else None

        if conversation_id in self._finished:
            return None

        self.start_session(
            conversation_id,
            metadata={"lazy": True},
            started_at_ms=started_at_ms,
        )
        return self._store.get(conversation_id)

    def clock(self) -> int:
        """Current time in ms on the session clock."""
        return self._store.clock()

    def is_active(self, conversation_id: str) -> bool:
        session = self._store.get(conversation_id)
        return session is not None and session.is_active

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    def append_chunk(
        self,
        conversation_id: str,
        channel: Channel | str,
        base64_payload: str | bytes,
        *,
        received_at_ms: int | None = None,
    ) -> bool:
        """
        Decode a base64 PCM16 chunk and buffer it.

        Returns True if the chunk was stored, False if it was dropped
        (bad encoding, buffer full).

        received_at_ms overrides "now" for chunks that were held back
        before the session existed.

        Raises:
            UnknownSessionError if no ACTIVE session exists
        """
        channel = Channel(channel)
        self._require_active(conversation_id)

        try:
            pcm = decode_base64_pcm(base64_payload)
        except ChunkDecodeError as e:
            log_event({
                "event_type": "CHUNK_DECODE_ERROR",
                "level": "WARNING",
                "conversation_id": conversation_id,
                "channel": channel.value,
                "error": str(e),
                "payload_len": len(base64_payload),
            })
            return False

        return self.append_pcm(
            conversation_id, channel, pcm, received_at_ms=received_at_ms
        )

    def append_pcm(
        self,
        conversation_id: str,
        channel: Channel | str,
        pcm: bytes,
        *,
        received_at_ms: int | None = None,
    ) -> bool:
        """
        Buffer raw PCM16 bytes (already decoded).

        Same return / raise contract as append_chunk.
        """
        channel = Channel(channel)
        session = self._require_active(conversation_id)

        if not pcm or not has_whole_frames(pcm):
            log_event({
                "event_type": "CHUNK_DROPPED",
                "level": "WARNING",
                "conversation_id": conversation_id,
                "channel": channel.value,
                "reason": "partial_sample",
                "payload_len": len(pcm),
            })
            return False

        if received_at_ms is None:
            received_at_ms = self._store.clock()
        offset_ms = max(0, received_at_ms - session.started_at_ms)

        try:
            self._store.append_chunk(conversation_id, channel, pcm, offset_ms=offset_ms)
        except SessionBufferFullError as e:
            log_event({
                "event_type": "CHUNK_DROPPED",
                "level": "WARNING",
                "conversation_id": conversation_id,
                "channel": channel.value,
                "reason": "buffer_full",
                "limit_bytes": e.limit,
            })
            return False

        total = session.chunk_count
        if total == 1 or total % CHUNK_LOG_EVERY == 0:
            log_event({
                "event_type": "CHUNKS_BUFFERED",
                **session.log_context(),
            })
        return True

    def _require_active(self, conversation_id: str) -> CallAudioSession:
        session = self._store.get(conversation_id)
        if session is None or not session.is_active:
            raise UnknownSessionError(conversation_id)
        return session

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    async def end_session(
        self,
        conversation_id: str,
        *,
        reason: str = "end_call",
    ) -> SessionEndResult:
        """
        Finalize a session exactly once.

        - First call starts the finalize task
        - Calls while it runs await the same task
        - Calls after it finished return the cached result

        Raises:
            UnknownSessionError if the id was never started here
        """
        session = self._store.get(conversation_id)
        task = self._finalizing.get(conversation_id)

        if session is not None and session.is_active:
            task = self._begin_finalize(session, reason)
        elif task is None:
            cached = self._finished.get(conversation_id)
            if cached is None:
                raise UnknownSessionError(conversation_id)
            log_event({
                "event_type": "DUPLICATE_END_IGNORED",
                "conversation_id": conversation_id,
                "reason": reason,
            })
            return cached
        else:
            log_event({
                "event_type": "END_COALESCED",
                "conversation_id": conversation_id,
                "reason": reason,
            })

        # Caller cancellation (socket teardown, request abort) must not
        # abort the upload half way
        return await asyncio.shield(task)

    def _begin_finalize(
        self,
        session: CallAudioSession,
        reason: str,
    ) -> asyncio.Task[SessionEndResult]:
        conversation_id = session.conversation_id
        session.status = SessionStatus.FINALIZING

        task = asyncio.get_running_loop().create_task(self._finalize(session, reason))
        self._finalizing[conversation_id] = task

        def _cleanup(done: asyncio.Task[SessionEndResult]) -> None:
            # A restarted id may already have its own finalize registered
            if self._finalizing.get(conversation_id) is done:
                del self._finalizing[conversation_id]

        task.add_done_callback(_cleanup)
        return task

    async def _finalize(self, session: CallAudioSession, reason: str) -> SessionEndResult:
        conversation_id = session.conversation_id
        duration_ms = max(0, self._store.clock() - session.started_at_ms)
        audio_url: str | None = None
        filename: str | None = None
        error: str | None = None

        log_event({
            "event_type": "SESSION_FINALIZING",
            "reason": reason,
            **session.log_context(),
        })

        try:
            if session.chunk_count == 0:
                error = "no_audio"
                log_event({
                    "event_type": "NO_AUDIO_AVAILABLE",
                    "conversation_id": conversation_id,
                })
            else:
                artifact = self._encode(session)
                filename = artifact.filename
                artifact = replace(
                    artifact, url=await self._upload(artifact, conversation_id)
                )
                audio_url = artifact.url

        except EncodeFailure as e:
            error = "encode_failed"
            self._log_finalize_error(conversation_id, error, e)

        except UploadFailure as e:
            error = "upload_failed"
            self._log_finalize_error(conversation_id, error, e)

        except asyncio.TimeoutError as e:
            error = "upload_timeout"
            self._log_finalize_error(conversation_id, error, e)

        except Exception as e:  # pylint: disable=broad-exception-caught
            error = "unexpected_error"
            self._log_finalize_error(conversation_id, error, e)

        finally:
            session.status = SessionStatus.CLOSED
            self._store.discard(session)

        if audio_url is not None and self._call_records is not None:
            self._call_records.attach_audio_url(conversation_id, audio_url)

        result = SessionEndResult(
            conversation_id=conversation_id,
            audio_url=audio_url,
            duration_ms=duration_ms,
            input_chunk_count=len(session.input_chunks),
            output_chunk_count=len(session.output_chunks),
            filename=filename,
            error=error,
        )
        self._remember(result)

        log_event({
            "event_type": "SESSION_FINALIZED",
            "conversation_id": conversation_id,
            "audio_url": audio_url,
            "duration_ms": duration_ms,
            "error": error,
        })
        return result

    def _encode(self, session: CallAudioSession) -> EncodedAudioArtifact:
        conversation_id = session.conversation_id
        filename = recording_filename(
            conversation_id,
            datetime.fromtimestamp(self._store.clock() / 1000, tz=timezone.utc),
        )

        with timed("wav_encode", conversation_id=conversation_id) as extra:
            if self._layout == RECORDING_LAYOUT_STEREO:
                pcm = layout_tracks(
                    session.input_chunks,
                    session.output_chunks,
                    sample_rate=self._sample_rate,
                )
                data = encode_wav(
                    [pcm],
                    sample_rate=self._sample_rate,
                    channels=STEREO_CHANNELS,
                    conversation_id=conversation_id,
                )
            else:
                data = encode_wav(
                    merge_chunks(session.input_chunks, session.output_chunks),
                    sample_rate=self._sample_rate,
                    channels=MONO_CHANNELS,
                    conversation_id=conversation_id,
                )
            extra["bytes"] = len(data)
            extra["layout"] = self._layout

        return EncodedAudioArtifact(filename=filename, data=data)

    async def _upload(self, artifact: EncodedAudioArtifact, conversation_id: str) -> str:
        with timed(
            "recording_upload",
            conversation_id=conversation_id,
            details={"backend": self._uploader.backend_name, "bytes": len(artifact.data)},
        ):
            url = await asyncio.wait_for(
                self._uploader.upload(artifact.data, artifact.filename),
                timeout=self._upload_timeout_s,
            )

        log_event({
            "event_type": "RECORDING_UPLOADED",
            "conversation_id": conversation_id,
            "filename": artifact.filename,
            "audio_url": url,
        })
        return url

    def _log_finalize_error(self, conversation_id: str, error: str, exc: BaseException) -> None:
        log_event({
            "event_type": "FINALIZE_ERROR",
            "level": "ERROR",
            "conversation_id": conversation_id,
            "error": error,
            "exception": type(exc).__name__,
            "message": str(exc),
        })

    def _remember(self, result: SessionEndResult) -> None:
        self._finished[result.conversation_id] = result
        self._finished.move_to_end(result.conversation_id)
        while len(self._finished) > FINALIZED_RESULTS_RETAINED:
            self._finished.popitem(last=False)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_session_stats(self, conversation_id: str) -> SessionStats | None:
        """Snapshot of a live session, or None if there is none."""
        session = self._store.get(conversation_id)
        if session is None:
            return None

        return SessionStats(
            conversation_id=conversation_id,
            started_at_ms=session.started_at_ms,
            elapsed_ms=max(0, self._store.clock() - session.started_at_ms),
            input_chunk_count=len(session.input_chunks),
            output_chunk_count=len(session.output_chunks),
            buffered_bytes=session.buffered_bytes,
            status=session.status.value,
        )

    def get_result(self, conversation_id: str) -> SessionEndResult | None:
        """Result of a recently finalized session, if still retained."""
        return self._finished.get(conversation_id)

    # ------------------------------------------------------------------
    # Idle reaping / shutdown
    # ------------------------------------------------------------------

    async def reap_idle_sessions(self) -> list[str]:
        """
        Close sessions with no activity for the idle timeout.

        Every idle session is finalized like an ended call: empty ones
        skip the upload and cache a no_audio result, so a later end call
        still completes.

        Returns the reaped conversation ids.
        """
        now = self._store.clock()
        reaped: list[str] = []
        tasks: list[asyncio.Task[SessionEndResult]] = []

        for session in self._store:
            if not session.is_active:
                continue
            if now - session.last_activity_ms < self._idle_timeout_ms:
                continue

            reaped.append(session.conversation_id)
            tasks.append(self._begin_finalize(session, "idle_timeout"))

        if tasks:
            await asyncio.gather(*tasks)
        return reaped

    async def run_idle_reaper(self, interval_s: float = SESSION_REAPER_INTERVAL_S) -> None:
        """Background loop; cancel the task to stop it."""
        while True:
            await asyncio.sleep(interval_s)
            try:
                await self.reap_idle_sessions()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "IDLE_REAPER_ERROR",
                    "level": "ERROR",
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })

    async def shutdown(self) -> list[SessionEndResult]:
        """Finalize every remaining session and wait for in-flight finalizes."""
        for session in self._store:
            if session.is_active:
                self._begin_finalize(session, "shutdown")

        pending = list(self._finalizing.values())
        if not pending:
            return []
        return list(await asyncio.gather(*pending))
