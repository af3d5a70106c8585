"""
Defensive response parsing for upstream extraction providers.

Providers nest the same payload under different key paths. Each field is
read through an ordered list of small pure extractor functions; the first
one that yields a usable value wins. Keeping the lists flat makes the
fallback order visible and testable on its own.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from services.field_normalization import (
    coerce_count,
    parse_duration_seconds,
    parse_published_at,
    truncate_url,
)
from services.media_url import MediaPlatform
from services.providers.subtitles import segments_to_srt
from services.providers.types import NormalizedMediaResult

Extractor = Callable[[Any], Optional[Any]]

PLAYABLE_CONTAINERS = {"mp4", "video/mp4"}


def dig(data: Any, *path: Any) -> Any:
    """Follow ``path`` through nested dicts and lists, returning None on any miss."""
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key or key < -len(current):
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def as_http_url(value: Any) -> Optional[str]:
    """Return an absolute http(s) URL, upgrading protocol-relative ``//`` links."""
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    if candidate.startswith("//"):
        return f"https:{candidate}"
    if candidate.startswith("http://") or candidate.startswith("https://"):
        return candidate
    return None


def is_hls(url: str) -> bool:
    return ".m3u8" in url


def is_mp4(url: str) -> bool:
    path = url.split("?", 1)[0]
    return path.endswith(".mp4") or ".mp4?" in url


def path_extractor(*path: Any) -> Extractor:
    def extract(data: Any) -> Optional[str]:
        return as_http_url(dig(data, *path))

    extract.__name__ = "path_" + "_".join(str(part) for part in path)
    return extract


def run_extractors(data: Any, extractors: Iterable[Extractor]) -> Optional[Any]:
    for extract in extractors:
        value = extract(data)
        if value:
            return value
    return None


# -- video locators ------------------------------------------------------------------------------

def _format_url(item: Any) -> Optional[str]:
    if not isinstance(item, dict):
        return None
    return as_http_url(item.get("url") or item.get("link"))


def _format_quality(item: Dict[str, Any]) -> int:
    for key in ("quality", "height"):
        raw = str(item.get(key) or "")
        digits = "".join(ch for ch in raw if ch.isdigit())
        if digits:
            return int(digits)
    return 0


def formats_playable_extractor(data: Any) -> Optional[str]:
    """Highest-quality fixed mp4 file in a ``formats`` array, skipping HLS and audio-only entries."""
    formats = dig(data, "formats")
    if not isinstance(formats, list):
        return None
    playable = []
    for item in formats:
        url = _format_url(item)
        if not url or is_hls(url) or "audio" in url:
            continue
        container = str(item.get("container") or item.get("ext") or item.get("mimeType") or "").lower()
        if container.split(";", 1)[0] in PLAYABLE_CONTAINERS or is_mp4(url):
            playable.append(item)
    if not playable:
        return None
    best = sorted(playable, key=_format_quality, reverse=True)[0]
    return _format_url(best)


def formats_video_codec_extractor(data: Any) -> Optional[str]:
    formats = dig(data, "formats")
    if not isinstance(formats, list):
        return None
    for item in formats:
        if isinstance(item, dict) and item.get("vcodec") and item.get("vcodec") != "none":
            url = _format_url(item)
            if url:
                return url
    return None


def formats_any_extractor(data: Any) -> Optional[str]:
    formats = dig(data, "formats")
    if not isinstance(formats, list):
        return None
    fallback = None
    for item in formats:
        url = _format_url(item)
        if not url:
            continue
        if not is_hls(url) and "audio" not in url:
            return url
        fallback = fallback or url
    return fallback


YOUTUBE_VIDEO_EXTRACTORS: List[Extractor] = [
    formats_playable_extractor,
    formats_any_extractor,
    # two-level nesting
    path_extractor("data", "data", "video_url"),
    path_extractor("data", "data", "url"),
    path_extractor("data", "data", "download_url"),
    path_extractor("data", "data", "link"),
    # one-level nesting
    path_extractor("data", "video_url"),
    path_extractor("data", "url"),
    path_extractor("data", "download_url"),
    path_extractor("data", "link"),
    path_extractor("data", "download"),
    # wrapper objects
    path_extractor("video", "url"),
    path_extractor("video", "video_url"),
    path_extractor("video", "download_url"),
    path_extractor("video", "link"),
    path_extractor("result", "url"),
    path_extractor("result", "video_url"),
    path_extractor("result", "download_url"),
    path_extractor("result", "link"),
    # direct fields
    path_extractor("url"),
    path_extractor("video_url"),
    path_extractor("download_url"),
    path_extractor("download"),
    path_extractor("link"),
]

TIKTOK_VIDEO_EXTRACTORS: List[Extractor] = [
    # two-level nesting
    path_extractor("data", "data", "data", "video_url"),
    path_extractor("data", "data", "video_url"),
    path_extractor("data", "data", "play_addr", "url_list", 0),
    path_extractor("data", "data", "play_addr", "url_list", 1),
    path_extractor("data", "data", "play"),
    path_extractor("data", "data", "downloadUrl"),
    path_extractor("data", "data", "download_url"),
    path_extractor("data", "video", "play_addr", "url_list", 0),
    path_extractor("data", "video", "play_addr", "url_list", 1),
    path_extractor("data", "video", "play"),
    path_extractor("data", "video", "download_addr"),
    path_extractor("data", "video", "video_url"),
    path_extractor("data", "video", "url"),
    # one-level nesting
    path_extractor("data", "play"),
    path_extractor("data", "download_addr"),
    path_extractor("data", "video_url"),
    path_extractor("data", "url"),
    path_extractor("data", "nwm_video_url"),
    path_extractor("data", "no_watermark"),
    # direct fields
    path_extractor("video_url"),
    path_extractor("play"),
    path_extractor("download_addr"),
    path_extractor("downloadUrl"),
    path_extractor("download_url"),
    path_extractor("url"),
    path_extractor("nwm_video_url"),
    path_extractor("no_watermark"),
    # link arrays and wrapper objects
    path_extractor("links", 0, "url"),
    path_extractor("links", 1, "url"),
    path_extractor("medias", 0, "url"),
    path_extractor("medias", 1, "url"),
    path_extractor("video", "url"),
    path_extractor("video", "play"),
    path_extractor("video", "download_addr"),
    path_extractor("result", "url"),
    path_extractor("result", "video_url"),
    path_extractor("result", "download_url"),
    formats_video_codec_extractor,
    formats_any_extractor,
]

VIDEO_EXTRACTORS: Dict[str, List[Extractor]] = {
    "youtube": YOUTUBE_VIDEO_EXTRACTORS,
    "tiktok": TIKTOK_VIDEO_EXTRACTORS,
}


def select_video_url(data: Any, extractors: Sequence[Extractor], *, prefer_mp4: bool = False) -> Optional[str]:
    """
    Pick the video locator from every extractor's match, in extractor order.

    Fixed files always beat HLS playlists; an ``.m3u8`` is returned only when
    nothing else matched. With ``prefer_mp4`` an mp4 match beats an earlier
    non-mp4 one.
    """
    found = []
    for extract in extractors:
        url = extract(data)
        if url and url not in found:
            found.append(url)
    if not found:
        return None
    fixed = [url for url in found if not is_hls(url)]
    if prefer_mp4:
        for url in fixed:
            if is_mp4(url):
                return url
    if fixed:
        return fixed[0]
    return found[0]


# -- transcripts ---------------------------------------------------------------------------------

def segment_extractor(*path: Any) -> Extractor:
    def extract(data: Any) -> Optional[list]:
        value = dig(data, *path)
        if isinstance(value, list) and value:
            return value
        return None

    extract.__name__ = "segments_" + "_".join(str(part) for part in path)
    return extract


def text_extractor(*path: Any) -> Extractor:
    def extract(data: Any) -> Optional[str]:
        value = dig(data, *path)
        if isinstance(value, str) and value.strip():
            return value
        return None

    extract.__name__ = "text_" + "_".join(str(part) for part in path)
    return extract


SEGMENT_EXTRACTORS: List[Extractor] = [
    segment_extractor("transcript"),
    segment_extractor("transcription"),
    segment_extractor("subtitles"),
    segment_extractor("data", "data", "segments"),
    segment_extractor("data", "data", "transcript"),
    segment_extractor("data", "segments"),
    segment_extractor("data", "transcript"),
    segment_extractor("content", "chunks"),
    segment_extractor("content", "segments"),
    segment_extractor("chunks"),
    segment_extractor("segments"),
    segment_extractor("content"),
]

TEXT_EXTRACTORS: List[Extractor] = [
    text_extractor("transcript"),
    text_extractor("transcription"),
    text_extractor("content", "transcript"),
    text_extractor("content", "text"),
    text_extractor("content"),
    text_extractor("data", "data", "transcript"),
    text_extractor("data", "data", "transcription"),
    text_extractor("data", "transcript"),
    text_extractor("data", "transcription"),
    text_extractor("text"),
    text_extractor("subtitle"),
]


def extract_subtitle(data: Any) -> Optional[str]:
    """Segment arrays become SRT; plain transcript text is kept as-is."""
    segments = run_extractors(data, SEGMENT_EXTRACTORS)
    if segments:
        srt = segments_to_srt(segments)
        if srt:
            return srt
    return run_extractors(data, TEXT_EXTRACTORS)


# -- metadata ------------------------------------------------------------------------------------

def _roots(data: Any) -> List[Dict[str, Any]]:
    """Objects that may carry metadata, outermost first."""
    roots = []
    for path in ((), ("data",), ("data", "data"), ("data", "data", "data"), ("content",), ("result",)):
        value = dig(data, *path) if path else data
        if isinstance(value, dict) and value not in roots:
            roots.append(value)
    return roots


def _first_value(roots: Sequence[Dict[str, Any]], paths: Sequence[Sequence[Any]], accept: Callable[[Any], bool]) -> Any:
    for path in paths:
        for root in roots:
            value = dig(root, *path)
            if accept(value):
                return value
    return None


def _is_text(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool) and str(value).strip() != ""


def _is_present(value: Any) -> bool:
    return value is not None and value != "" and not isinstance(value, (dict, list, bool))


TITLE_PATHS = [("title",), ("desc",), ("description",), ("videoDescription",), ("snippet", "title"), ("videoDetails", "title")]
AUTHOR_PATHS = [
    ("author", "nickname"),
    ("author", "uniqueId"),
    ("authorMeta", "name"),
    ("authorMeta", "username"),
    ("author",),
    ("channelTitle",),
    ("snippet", "channelTitle"),
    ("videoDetails", "author"),
]
LIKE_PATHS = [("statistics", "digg_count"), ("statistics", "likeCount"), ("digg_count",), ("likeCount",), ("likesCount",), ("likes",)]
VIEW_PATHS = [("statistics", "play_count"), ("statistics", "viewCount"), ("play_count",), ("viewCount",), ("playsCount",), ("views",)]
SHARE_PATHS = [("statistics", "share_count"), ("statistics", "shareCount"), ("share_count",), ("shareCount",), ("sharesCount",), ("shares",)]
DURATION_PATHS = [("duration",), ("contentDetails", "duration"), ("video", "duration"), ("lengthSeconds",), ("videoDetails", "lengthSeconds")]
PUBLISHED_PATHS = [("create_time",), ("createTime",), ("publishedAt",), ("snippet", "publishedAt"), ("publishDate",)]
THUMBNAIL_PATHS = [
    ("cover",),
    ("coverImageUrl",),
    ("origin_cover",),
    ("thumbnail",),
    ("video", "cover"),
    ("snippet", "thumbnails", "high", "url"),
    ("videoDetails", "thumbnail", "thumbnails", 0, "url"),
    ("thumbnails", 0, "url"),
]
LANGUAGE_PATHS = [("language",), ("lang",), ("langCode",)]


def _extract_duration(roots: Sequence[Dict[str, Any]]) -> Optional[int]:
    # TikTok reports videoDuration in milliseconds regardless of magnitude.
    millis = _first_value(roots, [("videoDuration",)], _is_present)
    if millis is not None:
        try:
            return max(int(float(millis) // 1000), 0)
        except (TypeError, ValueError):
            pass
    return parse_duration_seconds(_first_value(roots, DURATION_PATHS, _is_present))


def extract_metadata(data: Any) -> Dict[str, Any]:
    roots = _roots(data)
    title = _first_value(roots, TITLE_PATHS, _is_text)
    author = _first_value(roots, AUTHOR_PATHS, _is_text)
    thumbnail = _first_value(roots, THUMBNAIL_PATHS, lambda value: as_http_url(value) is not None)
    language = _first_value(roots, LANGUAGE_PATHS, _is_text)
    return {
        "title": str(title).strip() if title is not None else "",
        "author": str(author).strip() if author is not None else None,
        "likes": coerce_count(_first_value(roots, LIKE_PATHS, _is_present)),
        "views": coerce_count(_first_value(roots, VIEW_PATHS, _is_present)),
        "shares": coerce_count(_first_value(roots, SHARE_PATHS, _is_present)),
        "duration": _extract_duration(roots),
        "published_at": parse_published_at(_first_value(roots, PUBLISHED_PATHS, _is_present)),
        "thumbnail_url": truncate_url(as_http_url(thumbnail)) if thumbnail else None,
        "source_lang": str(language).strip() if language is not None else "auto",
    }


def normalize_media_payload(data: Any, *, platform: MediaPlatform, provider: str) -> NormalizedMediaResult:
    """Build the normalized result from any provider payload shape."""
    metadata = extract_metadata(data)
    video_url = select_video_url(data, VIDEO_EXTRACTORS[platform], prefer_mp4=platform == "youtube")
    return NormalizedMediaResult(
        platform=platform,
        provider=provider,
        subtitle_raw=extract_subtitle(data),
        video_url=video_url,
        **metadata,
    )
