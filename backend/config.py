"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No capture logic
- No format constants
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    AUDIO_SAMPLE_RATE_HZ_DEFAULT,
    LOCAL_PUBLIC_PREFIX_DEFAULT,
    LOCAL_STORAGE_PATH_DEFAULT,
    RECORDING_LAYOUT_MONO,
    S3_REGION_DEFAULT,
    SESSION_IDLE_TIMEOUT_S_DEFAULT,
    SESSION_MAX_BUFFER_BYTES_DEFAULT,
    SUPABASE_BUCKET_DEFAULT,
    UPLOAD_TIMEOUT_S_DEFAULT,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the app factory, session manager and uploader.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Audio capture
    # ------------------------------------------------------------------

    audio_sample_rate: int = AUDIO_SAMPLE_RATE_HZ_DEFAULT
    recording_layout: str = RECORDING_LAYOUT_MONO
    session_idle_timeout_s: float = SESSION_IDLE_TIMEOUT_S_DEFAULT
    session_max_buffer_bytes: int = SESSION_MAX_BUFFER_BYTES_DEFAULT

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    storage_type: str = "local"
    upload_timeout_s: float = UPLOAD_TIMEOUT_S_DEFAULT

    local_storage_path: str = LOCAL_STORAGE_PATH_DEFAULT
    local_public_prefix: str = LOCAL_PUBLIC_PREFIX_DEFAULT

    s3_bucket: str | None = None
    s3_region: str = S3_REGION_DEFAULT
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None

    supabase_url: str | None = None
    supabase_key: str | None = None
    supabase_bucket: str = SUPABASE_BUCKET_DEFAULT

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", "8000")),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            audio_sample_rate=int(
                os.environ.get("AUDIO_SAMPLE_RATE", str(AUDIO_SAMPLE_RATE_HZ_DEFAULT))
            ),
            recording_layout=os.environ.get(
                "AUDIO_RECORDING_LAYOUT", RECORDING_LAYOUT_MONO
            ).lower(),
            session_idle_timeout_s=float(
                os.environ.get("SESSION_IDLE_TIMEOUT_S", str(SESSION_IDLE_TIMEOUT_S_DEFAULT))
            ),
            session_max_buffer_bytes=int(
                os.environ.get("SESSION_MAX_BUFFER_BYTES", str(SESSION_MAX_BUFFER_BYTES_DEFAULT))
            ),

            storage_type=os.environ.get("AUDIO_STORAGE_TYPE", "local").lower(),
            upload_timeout_s=float(
                os.environ.get("UPLOAD_TIMEOUT_S", str(UPLOAD_TIMEOUT_S_DEFAULT))
            ),
            local_storage_path=os.environ.get("AUDIO_STORAGE_PATH", LOCAL_STORAGE_PATH_DEFAULT),
            local_public_prefix=os.environ.get("AUDIO_PUBLIC_PREFIX", LOCAL_PUBLIC_PREFIX_DEFAULT),

            s3_bucket=os.environ.get("S3_BUCKET"),
            s3_region=os.environ.get("S3_REGION", S3_REGION_DEFAULT),
            s3_access_key_id=os.environ.get("S3_ACCESS_KEY_ID"),
            s3_secret_access_key=os.environ.get("S3_SECRET_ACCESS_KEY"),

            supabase_url=os.environ.get("SUPABASE_URL"),
            supabase_key=os.environ.get("SUPABASE_ANON_KEY"),
            supabase_bucket=os.environ.get("SUPABASE_STORAGE_BUCKET", SUPABASE_BUCKET_DEFAULT),
        )
