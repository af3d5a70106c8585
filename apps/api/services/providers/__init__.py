"""Public media provider utilities."""

from services.providers.clients import BaseMediaProvider
from services.providers.resolver import ProviderFallbackResolver, build_default_resolver
from services.providers.types import (
    FailureReason,
    MediaProviderError,
    NormalizedMediaResult,
    OutputType,
    ProviderAttempt,
    ProviderChainExhaustedError,
    ProviderProcessingError,
    ProviderResult,
    UnsupportedMediaUrlError,
)

__all__ = [
    "BaseMediaProvider",
    "FailureReason",
    "MediaProviderError",
    "NormalizedMediaResult",
    "OutputType",
    "ProviderAttempt",
    "ProviderChainExhaustedError",
    "ProviderFallbackResolver",
    "ProviderProcessingError",
    "ProviderResult",
    "UnsupportedMediaUrlError",
    "build_default_resolver",
]
