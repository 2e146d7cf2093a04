"""
Media staging for Instagram.

Instagram's Graph API fetches media from a public URL, so raw uploads are
first written to an S3-compatible bucket (Cloudflare R2) and referenced by
their public URL.

Required settings:
  R2_ENDPOINT_URL        — https://<account>.r2.cloudflarestorage.com
  R2_ACCESS_KEY_ID, R2_SECRET_ACCESS_KEY
  R2_BUCKET              — default "mediabucket"
  R2_PUBLIC_BASE_URL     — public r2.dev / custom domain serving the bucket
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import uuid
from typing import Any, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from crosspost.publish.errors import StorageError

logger = logging.getLogger(__name__)

_FALLBACK_EXT = ".jpg"


class MediaStager(Protocol):
    """Store bytes somewhere publicly fetchable and return the URL."""

    async def store(self, data: bytes, filename: str, mime_type: str) -> str: ...


def object_key(mime_type: str) -> str:
    """Unique object key with an extension derived from *mime_type*."""
    ext = mimetypes.guess_extension(mime_type) or _FALLBACK_EXT
    if ext == ".jpe":
        ext = ".jpg"
    return f"{uuid.uuid4().hex}{ext}"


class R2MediaStager:
    """
    ``MediaStager`` backed by boto3 against an S3-compatible endpoint.

    Usage::

        stager = R2MediaStager()
        url = await stager.store(data, "photo.jpg", "image/jpeg")
    """

    def __init__(
        self,
        *,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        bucket: Optional[str] = None,
        public_base_url: Optional[str] = None,
        client: Any = None,
    ) -> None:
        from config.settings import settings

        self.endpoint_url = endpoint_url or settings.r2_endpoint_url
        self._access_key_id = access_key_id or settings.r2_access_key_id
        self._secret_access_key = secret_access_key or settings.r2_secret_access_key
        self.bucket = bucket or settings.r2_bucket
        self.public_base_url = (public_base_url or settings.r2_public_base_url).rstrip("/")
        self._client = client

    def _get_client(self) -> Any:
        """Return (or create) the boto3 S3 client."""
        if self._client is None:
            if not (self.endpoint_url and self._access_key_id and self._secret_access_key):
                raise StorageError("R2 storage is not configured (endpoint / access keys missing)")
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
                region_name="auto",
                config=Config(s3={"addressing_style": "path"}),
            )
        return self._client

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    async def store(self, data: bytes, filename: str, mime_type: str) -> str:
        if not self.public_base_url:
            raise StorageError("R2 public base URL is not configured")
        if not data:
            raise StorageError(f"Refusing to stage empty file {filename!r}")

        client = self._get_client()
        key = object_key(mime_type)
        try:
            await asyncio.to_thread(
                client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=mime_type,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to stage {filename!r}: {exc}") from exc

        url = self.public_url(key)
        logger.info("Staged %s (%s, %d bytes) → %s", filename, mime_type, len(data), url)
        return url
