"""Media URL normalization and fingerprinting for cache lookup and deduplication."""

from __future__ import annotations

import hashlib
import re
from typing import Literal, Optional
from urllib.parse import parse_qs, urlsplit

MediaPlatform = Literal["youtube", "tiktok"]

CANONICAL_YOUTUBE_WATCH = "https://www.youtube.com/watch?v={video_id}"

YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com", "youtu.be"}
YOUTUBE_PATH_PATTERNS = [
    re.compile(r"^/shorts/([^/?#&]+)"),
    re.compile(r"^/embed/([^/?#&]+)"),
    re.compile(r"^/live/([^/?#&]+)"),
    re.compile(r"^/v/([^/?#&]+)"),
]
TIKTOK_VIDEO_ID_PATTERNS = [
    re.compile(r"tiktok\.com/@[\w.-]+/video/(\d+)"),
    re.compile(r"vm\.tiktok\.com/([\w]+)"),
    re.compile(r"vt\.tiktok\.com/([\w]+)"),
]


def _hostname(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def detect_platform(url: str) -> Optional[MediaPlatform]:
    """Return the platform a URL belongs to, or None when unsupported."""
    host = _hostname((url or "").strip())
    if not host:
        return None
    if host in YOUTUBE_HOSTS or host.endswith(".youtube.com"):
        return "youtube"
    if host == "tiktok.com" or host.endswith(".tiktok.com"):
        return "tiktok"
    return None


def is_supported_media_url(url: str) -> bool:
    value = (url or "").strip()
    if not value.startswith("http://") and not value.startswith("https://"):
        return False
    return detect_platform(value) is not None


def extract_youtube_video_id(url: str) -> Optional[str]:
    """Extract a YouTube video id from watch, short-link, shorts, embed or live URLs."""
    try:
        parts = urlsplit((url or "").strip())
    except ValueError:
        return None
    host = (parts.hostname or "").lower()
    if host == "youtu.be":
        video_id = parts.path.lstrip("/").split("/", 1)[0]
        return video_id or None
    if host not in YOUTUBE_HOSTS and not host.endswith(".youtube.com"):
        return None
    if parts.path == "/watch":
        values = parse_qs(parts.query).get("v") or []
        return values[0] if values and values[0] else None
    for pattern in YOUTUBE_PATH_PATTERNS:
        match = pattern.match(parts.path)
        if match:
            return match.group(1)
    return None


def extract_tiktok_video_id(url: str) -> Optional[str]:
    for pattern in TIKTOK_VIDEO_ID_PATTERNS:
        match = pattern.search(url or "")
        if match:
            return match.group(1)
    return None


def format_youtube_url(url: str) -> str:
    """Rewrite any recognised YouTube form to the canonical watch URL."""
    video_id = extract_youtube_video_id(url)
    if not video_id:
        return url
    return CANONICAL_YOUTUBE_WATCH.format(video_id=video_id)


def clean_tiktok_url(url: str) -> str:
    """Drop query string and fragment, keeping scheme, host and path."""
    try:
        parts = urlsplit((url or "").strip())
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def normalize_video_url(url: str) -> str:
    """Canonicalize a submitted media URL; unknown or malformed input is returned as-is."""
    value = (url or "").strip()
    platform = detect_platform(value)
    if platform == "youtube":
        return format_youtube_url(value)
    if platform == "tiktok":
        return clean_tiktok_url(value)
    return value


def generate_video_fingerprint(url: str) -> str:
    """SHA-256 hex digest of the normalized URL, used as the video cache key."""
    try:
        canonical = normalize_video_url(url)
    except Exception:
        canonical = (url or "").strip()
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
