"""Ordered provider fallback for each (platform, output type) pair."""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

import httpx

from services.media_url import detect_platform
from services.providers.clients import (
    BaseMediaProvider,
    CloudApiHubProvider,
    FluxTranscriptProvider,
    NoWatermarkProvider,
    ReelAiProvider,
    ShortsDownloaderProvider,
    SnapVideoProvider,
    SupadataTranscriptProvider,
    YouTubeTranscribeProvider,
)
from services.providers.types import (
    OUTPUT_TYPES,
    FailureReason,
    NormalizedMediaResult,
    ProviderAttempt,
    ProviderChainExhaustedError,
    ProviderProcessingError,
    UnsupportedMediaUrlError,
)

logger = logging.getLogger(__name__)

ChainKey = Tuple[str, str]
RESOLVER_BUDGET_SHARE = 0.9


class ProviderFallbackResolver:
    """
    Tries candidates strictly in order until one yields usable content.

    Every failure other than PROCESSING advances to the next candidate.
    PROCESSING stops the chain at once so the caller can ask the queue to
    redeliver instead of burning through fallbacks.

    With ``budget_seconds`` set, each candidate gets at most an equal share of
    whatever budget is left, so a hung primary cannot starve its backups.
    """

    def __init__(
        self,
        chains: Dict[ChainKey, Sequence[BaseMediaProvider]],
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        budget_seconds: Optional[float] = None,
    ) -> None:
        self.chains = {key: list(providers) for key, providers in chains.items()}
        self.transport = transport
        self.budget_seconds = budget_seconds

    def candidates(self, platform: str, output_type: str) -> List[BaseMediaProvider]:
        return list(self.chains.get((platform, output_type), []))

    def time_limit(self, provider: BaseMediaProvider, started: float, candidates_left: int) -> float:
        if self.budget_seconds is None:
            return provider.timeout
        remaining = self.budget_seconds - (time.monotonic() - started)
        return max(min(provider.timeout, remaining / max(candidates_left, 1)), 0.0)

    async def fetch(self, url: str, output_type: str = "subtitle") -> NormalizedMediaResult:
        platform = detect_platform(url)
        if platform is None:
            raise UnsupportedMediaUrlError(f"Unsupported media URL: {url}")
        if output_type not in OUTPUT_TYPES:
            raise UnsupportedMediaUrlError(f"Unsupported output type: {output_type}")
        chain = self.candidates(platform, output_type)
        if not chain:
            raise UnsupportedMediaUrlError(f"No providers configured for {platform} {output_type}")

        attempts: List[ProviderAttempt] = []
        started = time.monotonic()
        async with httpx.AsyncClient(transport=self.transport, follow_redirects=True) as client:
            for index, provider in enumerate(chain):
                limit = self.time_limit(provider, started, len(chain) - index)
                result = await provider.fetch(url, client, time_limit=limit)
                if result.ok and result.media is not None:
                    logger.info(
                        "Provider %s resolved %s %s after %s failed attempt(s)",
                        provider.name,
                        platform,
                        output_type,
                        len(attempts),
                    )
                    return result.media
                reason = result.reason or FailureReason.NO_CONTENT
                if reason is FailureReason.PROCESSING:
                    logger.info("Provider %s is still processing %s", provider.name, url)
                    raise ProviderProcessingError(provider.name, result.message)
                logger.warning("Provider %s failed with %s: %s", provider.name, reason.value, result.message)
                attempts.append(ProviderAttempt(provider=provider.name, reason=reason, message=result.message))

        raise ProviderChainExhaustedError(platform, output_type, attempts)


def build_default_resolver(settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> ProviderFallbackResolver:
    """Construct the production chains from configured provider hosts."""
    api_key = settings.RAPIDAPI_KEY
    short = float(settings.PROVIDER_REQUEST_TIMEOUT_SECONDS)
    long = float(settings.PROVIDER_LONG_REQUEST_TIMEOUT_SECONDS)

    def make(provider_cls, host: str, output_type: str, timeout: float) -> BaseMediaProvider:
        return provider_cls(host=host, api_key=api_key, output_type=output_type, timeout=timeout)

    chains: Dict[ChainKey, Sequence[BaseMediaProvider]] = {
        ("youtube", "subtitle"): [
            make(FluxTranscriptProvider, settings.YOUTUBE_TRANSCRIPT_PRIMARY_HOST, "subtitle", short),
            make(YouTubeTranscribeProvider, settings.YOUTUBE_TRANSCRIPT_BACKUP_HOST, "subtitle", long),
        ],
        ("youtube", "video"): [
            make(ShortsDownloaderProvider, settings.YOUTUBE_VIDEO_PRIMARY_HOST, "video", short),
            make(CloudApiHubProvider, settings.YOUTUBE_VIDEO_BACKUP_HOST, "video", short),
        ],
        ("tiktok", "subtitle"): [
            make(ReelAiProvider, settings.TIKTOK_TRANSCRIPT_PRIMARY_HOST, "subtitle", long),
            make(SupadataTranscriptProvider, settings.TIKTOK_TRANSCRIPT_BACKUP_HOST, "subtitle", short),
        ],
        ("tiktok", "video"): [
            make(SnapVideoProvider, settings.TIKTOK_VIDEO_PRIMARY_HOST, "video", short),
            make(NoWatermarkProvider, settings.TIKTOK_VIDEO_BACKUP_HOST, "video", short),
            make(ReelAiProvider, settings.TIKTOK_TRANSCRIPT_PRIMARY_HOST, "video", long),
        ],
    }
    # Headroom under the worker's soft timeout so the chain ends first.
    budget = float(settings.PROVIDER_SOFT_TIMEOUT_SECONDS) * RESOLVER_BUDGET_SHARE
    return ProviderFallbackResolver(chains, transport=transport, budget_seconds=budget)
