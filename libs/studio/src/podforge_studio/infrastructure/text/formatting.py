from __future__ import annotations

import re
from datetime import datetime, timezone

from podforge_studio.infrastructure.logging import get_logger

log = get_logger(__name__)

_TZ_SUFFIX = re.compile(r"(Z|[+-]\d{2}:\d{2})$")


def format_duration(seconds: float | None) -> str:
    total = max(0, int(seconds or 0))
    mins, secs = divmod(total, 60)
    return f"{mins}:{secs:02d}"


def _parse_timestamp(value: str) -> datetime | None:
    text = value.strip()
    # Server timestamps without an offset are UTC.
    if not _TZ_SUFFIX.search(text):
        text += "+00:00"
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def format_date(value: str) -> str:
    parsed = _parse_timestamp(value)
    if parsed is None:
        return value
    return f"{parsed.strftime('%b')} {parsed.day}, {parsed.year}"


def format_relative_time(value: str, *, now: datetime | None = None) -> str:
    parsed = _parse_timestamp(value)
    if parsed is None:
        log.warning("Invalid date string: %s", value)
        return "Recently"
    current = now or datetime.now(timezone.utc)
    diff = (current - parsed).total_seconds()

    if diff < 0:
        # small negative values are clock skew
        if abs(diff) < 60:
            return "Just now"
        log.warning("Date is in the future: %s", value)
        return "Recently"

    minutes = int(diff // 60)
    hours = int(diff // 3600)
    days = int(diff // 86400)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return format_date(value)


def truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def safe_filename(title: str, *, extension: str = "mp3") -> str:
    stem = re.sub(r"[^a-z0-9]", "_", title, flags=re.IGNORECASE) or "episode"
    return f"{stem}.{extension}"
