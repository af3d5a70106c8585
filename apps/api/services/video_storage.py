"""Best-effort relocation of provider video URLs into durable storage."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Tuple

import boto3
import httpx

from config import settings, storage_configured
from services.providers.clients import CLIENT_USER_AGENT

logger = logging.getLogger(__name__)

UPLOAD_DEADLINE_GRACE_SECONDS = 2.0


class StorageKind(str, Enum):
    VERCEL_BLOB = "vercel-blob"
    R2 = "r2"
    ORIGINAL = "original"


@dataclass(frozen=True)
class StorageLocator:
    """Where a task's video lives; serialized as ``<kind>:<value>`` only at the persistence edge."""

    kind: StorageKind
    value: str

    @property
    def durable(self) -> bool:
        return self.kind is not StorageKind.ORIGINAL

    def serialize(self) -> str:
        return f"{self.kind.value}:{self.value}"

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["StorageLocator"]:
        """
        Split on the first colon only, so payloads such as ``https://...`` survive.

        Values without a known prefix are legacy bare R2 object keys.
        """
        if not raw:
            return None
        prefix, sep, remainder = raw.partition(":")
        if sep:
            for kind in StorageKind:
                if prefix == kind.value:
                    return cls(kind=kind, value=remainder)
        return cls(kind=StorageKind.R2, value=raw)


def origin_headers(url: str) -> dict:
    """Client signature plus an origin-matching referrer to avoid hotlink rejection."""
    headers = {"User-Agent": CLIENT_USER_AGENT}
    if "youtube.com" in url or "googlevideo.com" in url:
        headers["Referer"] = "https://www.youtube.com/"
    elif "tiktok.com" in url or "tiktokcdn" in url:
        headers["Referer"] = "https://www.tiktok.com/"
    return headers


class UploadDeadlineExceeded(TimeoutError):
    """Raised inside the upload thread once the transfer outlives its deadline."""


class _ChunkReader:
    """Minimal read-only file object over an iterator of byte chunks, bounded by a monotonic deadline."""

    def __init__(self, chunks: Iterator[bytes], deadline: Optional[float] = None) -> None:
        self._chunks = chunks
        self._buffer = b""
        self._exhausted = False
        self._deadline = deadline
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        while not self._exhausted and (size < 0 or len(self._buffer) < size):
            if self._deadline is not None and time.monotonic() > self._deadline:
                raise UploadDeadlineExceeded(f"Upload aborted after {self.bytes_read} bytes")
            try:
                self._buffer += next(self._chunks)
            except StopIteration:
                self._exhausted = True
        if size < 0:
            data, self._buffer = self._buffer, b""
        else:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
        self.bytes_read += len(data)
        return data


def s3_client():
    return boto3.client(
        "s3",
        endpoint_url=settings.R2_ENDPOINT_URL,
        aws_access_key_id=settings.R2_ACCESS_KEY_ID,
        aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
        region_name="auto",
    )


class DurableStorageUploader:
    """Streams an ephemeral URL into an S3-compatible bucket. Never raises from ``relocate``."""

    def __init__(
        self,
        *,
        bucket: str,
        client_factory: Callable[[], Any] = s3_client,
        enabled: bool = True,
        timeout: float = 60.0,
        key_prefix: str = "videos",
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.bucket = bucket
        self.client_factory = client_factory
        self.enabled = enabled and bool(bucket)
        self.timeout = timeout
        self.key_prefix = key_prefix.strip("/")
        self.transport = transport

    def _new_key(self) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        return f"{self.key_prefix}/{uuid.uuid4().hex}-{stamp}.mp4"

    def _stream_upload(self, source_url: str, key: str, deadline: Optional[float] = None) -> int:
        with httpx.Client(transport=self.transport, timeout=self.timeout, follow_redirects=True) as client:
            with client.stream("GET", source_url, headers=origin_headers(source_url)) as response:
                response.raise_for_status()
                content_type = response.headers.get("content-type", "video/mp4").split(";", 1)[0]
                reader = _ChunkReader(response.iter_bytes(), deadline=deadline)
                self.client_factory().upload_fileobj(
                    reader,
                    self.bucket,
                    key,
                    ExtraArgs={"ContentType": content_type or "video/mp4"},
                )
                return reader.bytes_read

    async def relocate(self, ephemeral_url: str) -> Optional[StorageLocator]:
        if not self.enabled:
            logger.info("Durable storage is not configured; keeping original video URL")
            return None
        if not ephemeral_url:
            return None
        key = self._new_key()
        # The thread stops itself at the deadline; the wait below is only a backstop.
        deadline = time.monotonic() + self.timeout
        try:
            size = await asyncio.wait_for(
                asyncio.to_thread(self._stream_upload, ephemeral_url, key, deadline),
                timeout=self.timeout + UPLOAD_DEADLINE_GRACE_SECONDS,
            )
        except UploadDeadlineExceeded as exc:
            logger.warning("Video upload to %s stopped at the %ss deadline: %s", self.bucket, self.timeout, exc)
            return None
        except asyncio.TimeoutError:
            logger.warning("Video upload to %s timed out after %ss", self.bucket, self.timeout)
            return None
        except httpx.HTTPStatusError as exc:
            logger.warning("Video source returned HTTP %s; keeping original URL", exc.response.status_code)
            return None
        except Exception as exc:
            logger.warning("Video upload failed: %s", exc)
            return None
        logger.info("Uploaded %s bytes to %s/%s", size, self.bucket, key)
        return StorageLocator(kind=StorageKind.R2, value=key)


def build_storage_uploader(transport: Optional[httpx.BaseTransport] = None) -> DurableStorageUploader:
    return DurableStorageUploader(
        bucket=settings.R2_BUCKET,
        enabled=storage_configured(),
        timeout=float(settings.STORAGE_UPLOAD_TIMEOUT_SECONDS),
        transport=transport,
    )


async def resolve_video_locator(
    uploader: DurableStorageUploader,
    video_url: str,
    *,
    now: Optional[datetime] = None,
) -> Tuple[StorageLocator, datetime]:
    """Durable locator with the long lease, or the original URL with the short one."""
    current = now or datetime.now(timezone.utc)
    locator = await uploader.relocate(video_url)
    if locator is not None:
        return locator, current + timedelta(hours=int(settings.STORED_URL_TTL_HOURS))
    return original_locator(video_url, now=current)


def original_locator(video_url: str, *, now: Optional[datetime] = None) -> Tuple[StorageLocator, datetime]:
    current = now or datetime.now(timezone.utc)
    return (
        StorageLocator(kind=StorageKind.ORIGINAL, value=video_url),
        current + timedelta(hours=int(settings.ORIGINAL_URL_TTL_HOURS)),
    )


def get_video_download_url(locator: Optional[StorageLocator], client_factory: Callable[[], Any] = s3_client) -> Optional[str]:
    """Turn a stored locator into something a browser can download."""
    if locator is None or not locator.value:
        return None
    if locator.kind is not StorageKind.R2:
        return locator.value
    base_url = (settings.R2_PUBLIC_BASE_URL or "").rstrip("/")
    if base_url:
        return f"{base_url}/{locator.value.lstrip('/')}"
    if not storage_configured():
        return None
    try:
        return client_factory().generate_presigned_url(
            "get_object",
            Params={"Bucket": settings.R2_BUCKET, "Key": locator.value},
            ExpiresIn=int(settings.R2_PRESIGN_EXPIRES_SECONDS),
        )
    except Exception as exc:
        logger.warning("Could not presign %s: %s", locator.value, exc)
        return None
