"""
Storage uploaders for finished call recordings.

Contract (all backends):

    url = await uploader.upload(data, filename)

- Persist `data` under `filename`
- Return a URL or path the UI can fetch the recording from
- Raise UploadFailure for any backend error

Backend selection is a configuration concern (build_uploader).
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Protocol, TYPE_CHECKING

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from constants import S3_KEY_PREFIX, WAV_MIME_TYPE

if TYPE_CHECKING:
    from config import AppConfig


# -------------------------
# Exceptions
# -------------------------

class UploadFailure(Exception):
    """Raised when a backend could not persist a recording."""


class StorageConfigError(ValueError):
    """Raised at startup when the selected backend is misconfigured."""


# -------------------------
# Interface
# -------------------------

class StorageUploader(Protocol):
    """Anything that can persist bytes and hand back a URL."""

    backend_name: str

    async def upload(self, data: bytes, filename: str) -> str:
        """Persist data under filename and return its URL."""
        ...


# -------------------------
# Local filesystem (development)
# -------------------------

class LocalStorageUploader:
    """
    Write recordings to a directory served as static files.

    Returned URL is public_prefix + "/" + filename.
    """

    backend_name = "local"

    def __init__(self, *, base_path: str | Path, public_prefix: str) -> None:
        self._base_path = Path(base_path)
        self._public_prefix = public_prefix.rstrip("/")

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _write(self, data: bytes, filename: str) -> None:
        self._base_path.mkdir(parents=True, exist_ok=True)
        (self._base_path / filename).write_bytes(data)

    async def upload(self, data: bytes, filename: str) -> str:
        if Path(filename).name != filename:
            raise UploadFailure(f"Refusing filename with path components: {filename!r}")
        try:
            await asyncio.to_thread(self._write, data, filename)
        except OSError as e:
            raise UploadFailure(f"Failed to save audio file: {e}") from e
        return f"{self._public_prefix}/{filename}"


# -------------------------
# AWS S3
# -------------------------

class S3StorageUploader:
    """
    Upload recordings to s3://{bucket}/recordings/{filename}.

    boto3 is blocking, so put_object runs in a worker thread.
    """

    backend_name = "s3"

    def __init__(
        self,
        *,
        bucket: str,
        region: str,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client: Any | None = None,  # Type: botocore S3 client
    ) -> None:
        self._bucket = bucket
        self._region = region

        if client is not None:
            self._client = client
        elif access_key_id and secret_access_key:
            self._client = boto3.client(
                "s3",
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
            )
        else:
            # Default credential chain (env, profile, instance role)
            self._client = boto3.client("s3", region_name=region)

    def public_url(self, filename: str) -> str:
        """Virtual-hosted style URL of an uploaded recording."""
        return (
            f"https://{self._bucket}.s3.{self._region}.amazonaws.com/"
            f"{S3_KEY_PREFIX}/{filename}"
        )

    async def upload(self, data: bytes, filename: str) -> str:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=f"{S3_KEY_PREFIX}/{filename}",
                Body=data,
                ContentType=WAV_MIME_TYPE,
            )
        except (BotoCoreError, ClientError) as e:
            raise UploadFailure(f"Failed to upload to S3: {e}") from e
        return self.public_url(filename)


# -------------------------
# Supabase Storage
# -------------------------

class SupabaseStorageUploader:
    """Upload recordings to a Supabase storage bucket over its REST API."""

    backend_name = "supabase"

    def __init__(
        self,
        *,
        url: str,
        key: str,
        bucket: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._key = key
        self._bucket = bucket
        self._transport = transport

    def public_url(self, filename: str) -> str:
        """Public object URL of an uploaded recording."""
        return f"{self._url}/storage/v1/object/public/{self._bucket}/{filename}"

    async def upload(self, data: bytes, filename: str) -> str:
        endpoint = f"{self._url}/storage/v1/object/{self._bucket}/{filename}"
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    endpoint,
                    headers={"Authorization": f"Bearer {self._key}"},
                    files={"file": (filename, data, WAV_MIME_TYPE)},
                )
        except httpx.HTTPError as e:
            raise UploadFailure(f"Failed to upload to Supabase: {e}") from e

        if response.is_error:
            raise UploadFailure(
                f"Supabase upload failed ({response.status_code}): {response.text[:200]}"
            )
        return self.public_url(filename)


# -------------------------
# Factory
# -------------------------

def build_uploader(config: AppConfig) -> StorageUploader:
    """
    Construct the uploader selected by config.storage_type.

    Raises:
        StorageConfigError for unknown types or missing backend settings.
    """
    storage_type = config.storage_type

    if storage_type == "local":
        return LocalStorageUploader(
            base_path=config.local_storage_path,
            public_prefix=config.local_public_prefix,
        )

    if storage_type == "s3":
        if not config.s3_bucket or not config.s3_region:
            raise StorageConfigError("S3 configuration missing: bucket and region required")
        return S3StorageUploader(
            bucket=config.s3_bucket,
            region=config.s3_region,
            access_key_id=config.s3_access_key_id,
            secret_access_key=config.s3_secret_access_key,
        )

    if storage_type == "supabase":
        if not config.supabase_url or not config.supabase_key or not config.supabase_bucket:
            raise StorageConfigError(
                "Supabase configuration missing: url, key, and bucket required"
            )
        return SupabaseStorageUploader(
            url=config.supabase_url,
            key=config.supabase_key,
            bucket=config.supabase_bucket,
        )

    raise StorageConfigError(f"Unsupported storage type: {storage_type}")
