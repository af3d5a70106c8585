"""Provider result contracts and failure taxonomy."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from services.media_url import MediaPlatform


OutputType = Literal["subtitle", "video"]
OUTPUT_TYPES = ("subtitle", "video")


class FailureReason(str, Enum):
    RATE_LIMIT = "RATE_LIMIT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    VIDEO_NOT_FOUND = "VIDEO_NOT_FOUND"
    PRIVATE_OR_FORBIDDEN = "PRIVATE_OR_FORBIDDEN"
    NO_CONTENT = "NO_CONTENT"
    PROCESSING = "PROCESSING"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    HTTP_ERROR = "HTTP_ERROR"
    STORAGE_UPLOAD_FAILED = "STORAGE_UPLOAD_FAILED"
    INVALID_INPUT = "INVALID_INPUT"


@dataclass
class NormalizedMediaResult:
    platform: MediaPlatform
    provider: str
    title: str = ""
    author: Optional[str] = None
    likes: int = 0
    views: int = 0
    shares: int = 0
    duration: Optional[int] = None
    published_at: Optional[datetime] = None
    thumbnail_url: Optional[str] = None
    subtitle_raw: Optional[str] = None
    video_url: Optional[str] = None
    source_lang: str = "auto"


@dataclass(frozen=True)
class ProviderResult:
    provider: str
    media: Optional[NormalizedMediaResult] = None
    reason: Optional[FailureReason] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.media is not None and self.reason is None

    @classmethod
    def success(cls, provider: str, media: NormalizedMediaResult) -> "ProviderResult":
        return cls(provider=provider, media=media)

    @classmethod
    def failure(cls, provider: str, reason: FailureReason, message: str = "") -> "ProviderResult":
        return cls(provider=provider, reason=reason, message=message or reason.value)


@dataclass(frozen=True)
class ProviderAttempt:
    provider: str
    reason: FailureReason
    message: str


class MediaProviderError(RuntimeError):
    """Base error for resolver outcomes that end a fetch without a result."""

    reason: FailureReason = FailureReason.HTTP_ERROR


class UnsupportedMediaUrlError(MediaProviderError):
    """Raised for URLs outside the supported platforms or output types."""

    reason = FailureReason.INVALID_INPUT


class ProviderProcessingError(MediaProviderError):
    """An upstream accepted the request but has not finished; ask the queue to redeliver."""

    reason = FailureReason.PROCESSING

    def __init__(self, provider: str, message: str = "") -> None:
        self.provider = provider
        super().__init__(message or f"{provider} is still processing the request")


class ProviderChainExhaustedError(MediaProviderError):
    """Every candidate for a (platform, output type) pair failed."""

    def __init__(self, platform: str, output_type: str, attempts: List[ProviderAttempt]) -> None:
        self.platform = platform
        self.output_type = output_type
        self.attempts = list(attempts)
        if self.attempts:
            self.reason = self.attempts[-1].reason
        detail = "; ".join(f"{item.provider}: {item.reason.value} ({item.message})" for item in self.attempts)
        super().__init__(f"All {platform} {output_type} providers failed. {detail}".strip())

