"""Upstream extraction provider clients."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from services.media_url import MediaPlatform, clean_tiktok_url, extract_youtube_video_id, format_youtube_url
from services.providers.extractors import dig, normalize_media_payload
from services.providers.types import FailureReason, NormalizedMediaResult, OutputType, ProviderResult

logger = logging.getLogger(__name__)

CLIENT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

NOT_FOUND_PHRASES = (
    "video not found",
    "invalid url",
    "video not available",
    "cannot find video",
    "video does not exist",
)
RATE_LIMIT_PHRASES = ("rate limit", "rate-limit", "too many requests")
QUOTA_PHRASES = ("quota", "limit", "free plan disabled", "exceeded")
PRIVATE_PHRASES = ("private video", "access denied", "private account")


def classify_message(message: str, default: FailureReason) -> FailureReason:
    text = (message or "").lower()
    if any(phrase in text for phrase in NOT_FOUND_PHRASES):
        return FailureReason.VIDEO_NOT_FOUND
    if any(phrase in text for phrase in PRIVATE_PHRASES):
        return FailureReason.PRIVATE_OR_FORBIDDEN
    if any(phrase in text for phrase in RATE_LIMIT_PHRASES):
        return FailureReason.RATE_LIMIT
    if any(phrase in text for phrase in QUOTA_PHRASES):
        return FailureReason.QUOTA_EXCEEDED
    return default


def classify_status(status_code: int, body_text: str = "") -> FailureReason:
    if status_code == 429:
        return FailureReason.RATE_LIMIT
    if status_code == 403:
        lowered = (body_text or "").lower()
        if any(phrase in lowered for phrase in PRIVATE_PHRASES):
            return FailureReason.PRIVATE_OR_FORBIDDEN
        return FailureReason.QUOTA_EXCEEDED
    if status_code == 404:
        return FailureReason.VIDEO_NOT_FOUND
    return FailureReason.HTTP_ERROR


def _error_text(data: Dict[str, Any]) -> str:
    for key in ("error", "message", "msg"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, dict) and isinstance(value.get("message"), str):
            return value["message"].strip()
    return ""


def classify_body(data: Any) -> Optional[ProviderResult]:
    """Failure signalled inside a 2xx body, or None when the body looks usable."""
    if not isinstance(data, dict):
        return None
    message = _error_text(data)
    if data.get("success") is False or data.get("status") == "error":
        return ProviderResult.failure("", classify_message(message, FailureReason.HTTP_ERROR), message or "Provider returned success=false")
    code = data.get("code")
    if isinstance(code, int) and not isinstance(code, bool) and code != 0 and message:
        return ProviderResult.failure("", classify_message(message, FailureReason.HTTP_ERROR), message)
    if data.get("error"):
        return ProviderResult.failure("", classify_message(message, FailureReason.HTTP_ERROR), message)
    job_id = data.get("jobId") or dig(data, "data", "jobId")
    if job_id and not isinstance(dig(data, "data", "data"), dict) and not data.get("content") and not data.get("transcript"):
        return ProviderResult.failure("", FailureReason.PROCESSING, f"Job {job_id} is still being processed")
    return None


class BaseMediaProvider(ABC):
    """One upstream candidate for a (platform, output type) pair."""

    name: str
    platform: MediaPlatform

    def __init__(
        self,
        *,
        host: str,
        api_key: str,
        output_type: OutputType,
        timeout: float,
    ) -> None:
        self.host = host
        self.api_key = api_key
        self.output_type = output_type
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self.output_type}>"

    def _endpoint(self, path: str) -> str:
        return f"https://{self.host}{path}"

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "x-rapidapi-key": self.api_key,
            "x-rapidapi-host": self.host,
            "User-Agent": CLIENT_USER_AGENT,
        }
        if extra:
            headers.update(extra)
        return headers

    def _prepare_url(self, url: str) -> str:
        return url

    @abstractmethod
    async def _send(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        raise NotImplementedError

    def _failure(self, reason: FailureReason, message: str = "") -> ProviderResult:
        return ProviderResult.failure(self.name, reason, message)

    def _normalize(self, data: Any) -> NormalizedMediaResult:
        return normalize_media_payload(data, platform=self.platform, provider=self.name)

    def _interpret(self, data: Any) -> ProviderResult:
        body_failure = classify_body(data)
        if body_failure is not None:
            return self._failure(body_failure.reason, body_failure.message)

        media = self._normalize(data)
        if self.output_type == "subtitle" and not (media.subtitle_raw or "").strip():
            return self._failure(FailureReason.NO_CONTENT, "No transcript found in provider response")
        if self.output_type == "video" and not media.video_url:
            return self._failure(FailureReason.NO_CONTENT, "No video locator found in provider response")
        return ProviderResult.success(self.name, media)

    async def fetch(
        self,
        url: str,
        client: httpx.AsyncClient,
        time_limit: Optional[float] = None,
    ) -> ProviderResult:
        """
        Call the upstream once. Failures are classified, never raised.

        ``time_limit`` bounds the whole call, including every request ``_send`` makes.
        """
        if not (self.api_key or "").strip():
            return self._failure(FailureReason.HTTP_ERROR, "RAPIDAPI_KEY is not configured")
        limit = self.timeout if time_limit is None else time_limit
        try:
            response = await asyncio.wait_for(self._send(client, self._prepare_url(url)), timeout=limit)
        except asyncio.TimeoutError:
            return self._failure(FailureReason.TIMEOUT, f"No response within {limit:.1f}s")
        except httpx.TimeoutException as exc:
            return self._failure(FailureReason.TIMEOUT, f"Request timed out after {self.timeout}s: {exc}")
        except httpx.HTTPError as exc:
            return self._failure(FailureReason.NETWORK_ERROR, str(exc) or type(exc).__name__)

        if not response.is_success:
            body_text = response.text[:500]
            reason = classify_status(response.status_code, body_text)
            return self._failure(reason, f"HTTP {response.status_code}: {body_text[:200]}".strip())

        try:
            data = response.json()
        except ValueError:
            return self._failure(FailureReason.NO_CONTENT, "Provider returned a non-JSON body")
        return self._interpret(data)


# -- YouTube -------------------------------------------------------------------------------------

class FluxTranscriptProvider(BaseMediaProvider):
    name = "youtube-transcript-flux"
    platform = "youtube"

    def _prepare_url(self, url: str) -> str:
        return format_youtube_url(url)

    async def _send(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        return await client.post(
            self._endpoint("/transcript"),
            json={"videoUrl": url, "langCode": "en"},
            headers=self._headers(),
            timeout=self.timeout,
        )


class YouTubeTranscribeProvider(BaseMediaProvider):
    name = "youtube-transcripts"
    platform = "youtube"

    def _prepare_url(self, url: str) -> str:
        return format_youtube_url(url)

    async def _send(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        return await client.post(
            self._endpoint("/transcribe"),
            json={"url": url},
            headers=self._headers(),
            timeout=self.timeout,
        )


class ShortsDownloaderProvider(BaseMediaProvider):
    """GET by video id, then POST by URL, then POST by video id."""

    name = "youtube-shorts-downloader"
    platform = "youtube"

    def _prepare_url(self, url: str) -> str:
        return format_youtube_url(url)

    async def _send(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        video_id = extract_youtube_video_id(url) or ""
        endpoint = self._endpoint("/youtube/video/download")
        response = await client.get(
            endpoint,
            params={"videoId": video_id},
            headers=self._headers(),
            timeout=self.timeout,
        )
        for body in ({"url": url}, {"videoId": video_id}):
            if response.is_success:
                break
            logger.info("%s returned HTTP %s, retrying with POST body keys %s", self.name, response.status_code, list(body))
            response = await client.post(endpoint, json=body, headers=self._headers(), timeout=self.timeout)
        return response


class CloudApiHubProvider(BaseMediaProvider):
    name = "youtube-cloud-api-hub"
    platform = "youtube"

    def _prepare_url(self, url: str) -> str:
        return format_youtube_url(url)

    async def _send(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        return await client.get(
            self._endpoint("/download"),
            params={"id": extract_youtube_video_id(url) or "", "filter": "audioandvideo", "quality": "lowest"},
            headers=self._headers(),
            timeout=self.timeout,
        )


# -- TikTok --------------------------------------------------------------------------------------

class ReelAiProvider(BaseMediaProvider):
    """AI transcription; also exposes a ``downloadUrl`` used as the last-resort video locator."""

    name = "tiktok-reel-ai"
    platform = "tiktok"

    def _prepare_url(self, url: str) -> str:
        return clean_tiktok_url(url)

    async def _send(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        return await client.post(
            self._endpoint("/api/tiktok/extract"),
            json={"url": url},
            headers=self._headers(),
            timeout=self.timeout,
        )

    def _interpret(self, data: Any) -> ProviderResult:
        if isinstance(data, dict) and data.get("success") and dig(data, "data", "jobId"):
            if not isinstance(dig(data, "data", "data"), dict):
                return self._failure(
                    FailureReason.PROCESSING,
                    "Transcript is still being processed, please retry after 10-15 seconds",
                )
        return super()._interpret(data)


class SupadataTranscriptProvider(BaseMediaProvider):
    name = "tiktok-transcripts"
    platform = "tiktok"

    def _prepare_url(self, url: str) -> str:
        return clean_tiktok_url(url)

    async def _send(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        return await client.get(
            self._endpoint("/transcript"),
            params={"url": url, "chunkSize": 500, "text": "false"},
            headers=self._headers(),
            timeout=self.timeout,
        )


class SnapVideoProvider(BaseMediaProvider):
    name = "tiktok-snap-video"
    platform = "tiktok"
    path = "/download"

    def _prepare_url(self, url: str) -> str:
        return clean_tiktok_url(url)

    async def _send(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        return await client.post(
            self._endpoint(self.path),
            data={"url": url},
            headers=self._headers(),
            timeout=self.timeout,
        )


class NoWatermarkProvider(SnapVideoProvider):
    name = "tiktok-no-watermark"
    path = "/"
