"""SRT rendering and subtitle statistics."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

SRT_INDEX = re.compile(r"^\d+$")
SRT_TIMESTAMP = re.compile(r"\d{2}:\d{2}:\d{2}[.,]\d{3}\s*-->\s*\d{2}:\d{2}:\d{2}[.,]\d{3}")


@dataclass(frozen=True)
class SubtitleSegment:
    start: float
    end: float
    text: str


def _as_seconds(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        return None


def _first(item: dict, *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def normalize_segments(items: Iterable[Any]) -> List[SubtitleSegment]:
    """
    Convert provider segment arrays into ordered segments.

    Items carry ``text``/``content``/``transcript`` and either ``start`` +
    ``duration`` (YouTube style) or ``start`` + ``end`` (TikTok style).
    Items without text are dropped.
    """
    segments: List[SubtitleSegment] = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        text = str(_first(item, "text", "content", "transcript") or "").strip()
        if not text:
            continue
        start = _as_seconds(_first(item, "start", "startTime", "offset")) or 0.0
        end = _as_seconds(_first(item, "end", "endTime"))
        if end is None:
            duration = _as_seconds(_first(item, "duration", "dur")) or 0.0
            end = start + duration
        segments.append(SubtitleSegment(start=start, end=max(end, start), text=text))
    return segments


def format_srt_timestamp(seconds: float) -> str:
    total_ms = int(round(max(seconds, 0.0) * 1000))
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def segments_to_srt(items: Iterable[Any]) -> Optional[str]:
    segments = normalize_segments(items)
    if not segments:
        return None
    blocks = []
    for index, segment in enumerate(segments, start=1):
        blocks.append(
            f"{index}\n"
            f"{format_srt_timestamp(segment.start)} --> {format_srt_timestamp(segment.end)}\n"
            f"{segment.text}\n"
        )
    return "\n".join(blocks)


def _is_text_line(line: str) -> bool:
    trimmed = line.strip()
    return bool(trimmed) and not SRT_INDEX.match(trimmed) and not SRT_TIMESTAMP.search(trimmed)


def subtitle_stats(content: Optional[str]) -> Tuple[int, int]:
    """
    Return ``(char_count, line_count)`` for SRT or plain-text subtitles.

    Index and timestamp lines are excluded; consecutive text lines of one cue
    count as a single line.
    """
    if not content:
        return 0, 0

    line_count = 0
    in_text = False
    for line in content.split("\n"):
        if not _is_text_line(line):
            in_text = False
            continue
        if not in_text:
            line_count += 1
            in_text = True

    text_only = "\n".join(line for line in content.split("\n") if _is_text_line(line))
    return len(text_only), line_count
