"""Value coercion for provider fields bound for fixed-width task columns."""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any, Optional

MILLISECONDS_THRESHOLD = 100000
URL_MAX_LENGTH = 1000
_DIGITS = re.compile(r"^\d+$")
_ISO_DURATION = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$")


def parse_duration_seconds(value: Any) -> Optional[int]:
    """
    Convert a provider duration into whole seconds.

    Accepts seconds, milliseconds (any magnitude above 100000 is treated as
    milliseconds), digit strings, "MM:SS" / "HH:MM:SS" strings and ISO-8601
    durations ("PT1M3S"). Returns None for missing or unparseable input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        if value < 0:
            return None
        if value > MILLISECONDS_THRESHOLD:
            return int(value // 1000)
        return int(value)
    if not isinstance(value, str):
        return None

    trimmed = value.strip()
    if not trimmed:
        return None
    if _DIGITS.match(trimmed):
        return parse_duration_seconds(int(trimmed))
    iso = _ISO_DURATION.match(trimmed.upper())
    if iso and trimmed.upper() != "P":
        days, hours, minutes, seconds = iso.groups()
        return (
            int(days or 0) * 86400
            + int(hours or 0) * 3600
            + int(minutes or 0) * 60
            + int(float(seconds or 0))
        )
    if ":" not in trimmed:
        try:
            return parse_duration_seconds(float(trimmed))
        except ValueError:
            return None

    parts = []
    for part in trimmed.split(":"):
        part = part.strip()
        parts.append(int(part) if _DIGITS.match(part) else 0)
    if len(parts) == 2:
        minutes, seconds = parts
        return minutes * 60 + seconds
    if len(parts) == 3:
        hours, minutes, seconds = parts
        return hours * 3600 + minutes * 60 + seconds
    return None


def truncate_url(url: Optional[str], max_length: int = URL_MAX_LENGTH) -> Optional[str]:
    if not url:
        return None
    if len(url) <= max_length:
        return url
    return url[: max_length - 3] + "..."


def truncate_text(value: Any, max_length: int) -> Optional[str]:
    text = str(value or "").strip()
    if not text:
        return None
    return text[:max_length]


def coerce_count(value: Any) -> int:
    """Engagement counts are never null: anything unparseable becomes 0."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        return max(int(value), 0) if math.isfinite(value) else 0
    try:
        return max(int(float(str(value).strip().replace(",", ""))), 0)
    except (TypeError, ValueError):
        return 0


def parse_published_at(value: Any) -> Optional[datetime]:
    """Accept epoch seconds/milliseconds or ISO-8601 strings."""
    if value is None or isinstance(value, bool) or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and _DIGITS.match(value.strip())):
        epoch = float(value)
        if epoch > 10_000_000_000:
            epoch = epoch / 1000
        try:
            return datetime.fromtimestamp(epoch, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None
