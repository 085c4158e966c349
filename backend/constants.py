"""
CONSTANTS
---------
Single source of truth for the behavioral invariants of the capture pipeline.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific overrides live in config.py, not here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Tuple

# =============================================================================
# Audio Format (PCM16 little-endian)
# =============================================================================

# ElevenLabs realtime media streams are 16kHz mono PCM16
AUDIO_SAMPLE_RATE_HZ_DEFAULT: Final[int] = 16_000
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_BITS_PER_SAMPLE: Final[int] = AUDIO_SAMPLE_WIDTH_BYTES * 8

MONO_CHANNELS: Final[int] = 1
STEREO_CHANNELS: Final[int] = 2
SUPPORTED_CHANNEL_COUNTS: Final[Tuple[int, ...]] = (MONO_CHANNELS, STEREO_CHANNELS)

# =============================================================================
# WAV Container
# =============================================================================

WAV_HEADER_BYTES: Final[int] = 44
WAV_FMT_CHUNK_BYTES: Final[int] = 16
WAV_FORMAT_PCM: Final[int] = 1

# RIFF size field is u32 and covers everything after the first 8 bytes
WAV_MAX_DATA_BYTES: Final[int] = 2**32 - 1 - (WAV_HEADER_BYTES - 8)

WAV_MIME_TYPE: Final[str] = "audio/wav"
WAV_FILE_SUFFIX: Final[str] = ".wav"

# =============================================================================
# Recording Layout
# =============================================================================

RECORDING_LAYOUT_MONO: Final[str] = "mono"      # interleave chunks by offset
RECORDING_LAYOUT_STEREO: Final[str] = "stereo"  # caller left, agent right
RECORDING_LAYOUTS: Final[Tuple[str, ...]] = (
    RECORDING_LAYOUT_MONO,
    RECORDING_LAYOUT_STEREO,
)

# =============================================================================
# Session Lifecycle
# =============================================================================

# Roughly 10 minutes of 16kHz mono PCM16 per channel pair
SESSION_MAX_BUFFER_BYTES_DEFAULT: Final[int] = 40 * 1024 * 1024

SESSION_IDLE_TIMEOUT_S_DEFAULT: Final[float] = 300.0
SESSION_REAPER_INTERVAL_S: Final[float] = 30.0

# Finished results kept so repeated end signals get the same answer
FINALIZED_RESULTS_RETAINED: Final[int] = 256

# Progress logging cadence for chunk appends
CHUNK_LOG_EVERY: Final[int] = 100

# =============================================================================
# Upload / Finalize Timeouts
# =============================================================================

UPLOAD_TIMEOUT_S_DEFAULT: Final[float] = 15.0

# Socket close waits this long for finalize before letting the connection go
LISTENER_FINALIZE_WAIT_S: Final[float] = 20.0

# =============================================================================
# Media Stream Ingress
# =============================================================================

# Audio frames held while the conversation id is still unknown
LISTENER_MAX_PENDING_EVENTS: Final[int] = 500

CONVERSATION_ID_QUERY_PARAMS: Final[Tuple[str, ...]] = (
    "conversation_id",
    "conversationId",
)
CONVERSATION_ID_HEADER: Final[str] = "x-conversation-id"

CALL_END_EVENT_TYPES: Final[Tuple[str, ...]] = (
    "call_end",
    "conversation_end_event",
)

# Keys that may hold base64 audio inside an audio_* object
AUDIO_PAYLOAD_KEYS: Final[Tuple[str, ...]] = ("data", "audio_base_64")

# =============================================================================
# Storage
# =============================================================================

LOCAL_STORAGE_PATH_DEFAULT: Final[str] = "./public/recordings"
LOCAL_PUBLIC_PREFIX_DEFAULT: Final[str] = "/recordings"
S3_KEY_PREFIX: Final[str] = "recordings"
S3_REGION_DEFAULT: Final[str] = "us-east-1"
SUPABASE_BUCKET_DEFAULT: Final[str] = "recordings"

# =============================================================================
# Helper Functions
# =============================================================================

def bytes_to_ms(num_bytes: int, *, sample_rate: int, channels: int = MONO_CHANNELS) -> int:
    """
    Convert a PCM16 byte count to a duration in milliseconds (floor).

    Non-positive input returns 0.
    """
    if num_bytes <= 0 or sample_rate <= 0 or channels <= 0:
        return 0
    frame_bytes = AUDIO_SAMPLE_WIDTH_BYTES * channels
    return (num_bytes // frame_bytes) * 1000 // sample_rate


def ms_to_samples(duration_ms: int, *, sample_rate: int) -> int:
    """
    Convert a duration in milliseconds to whole samples per channel (floor).

    Non-positive input returns 0.
    """
    if duration_ms <= 0:
        return 0
    return duration_ms * sample_rate // 1000


# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class AudioFormat:
    """
    Immutable bundle describing a PCM16 audio format.

    This is a convenience wrapper for passing format metadata around;
    it is NOT a second source of truth.
    """
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ_DEFAULT
    channels: int = MONO_CHANNELS
    sample_width_bytes: int = AUDIO_SAMPLE_WIDTH_BYTES

    @property
    def block_align(self) -> int:
        """Bytes per sample frame (all channels)."""
        return self.channels * self.sample_width_bytes

    @property
    def byte_rate(self) -> int:
        """Bytes per second of audio."""
        return self.sample_rate_hz * self.block_align
