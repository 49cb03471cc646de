"""Timestamp helpers for the Graph wire format."""

from __future__ import annotations

import re
from datetime import datetime, timezone

# Graph emits up to seven fractional digits ("2024-05-01T10:00:00.1234567Z").
_FRACTION = re.compile(r"\.(\d+)")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_graph_datetime(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp from Graph into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION.sub(lambda match: "." + match.group(1)[:6].ljust(6, "0"), text, count=1)
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_graph_datetime(value: datetime) -> str:
    """Render an aware datetime the way Graph expects ``expirationDateTime``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


__all__ = ["format_graph_datetime", "parse_graph_datetime", "utcnow"]
