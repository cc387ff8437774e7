from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Optional


def format_http_date(dt: datetime) -> str:
    """Format a datetime as an RFC 1123 date suitable for If-Modified-Since."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return format_datetime(dt.astimezone(timezone.utc).replace(microsecond=0), usegmt=True)


def parse_http_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a Last-Modified header value; return None when missing or unparseable."""
    if not value or not value.strip():
        return None
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
