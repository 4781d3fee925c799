"""Utility helpers for the Episodely service."""

from __future__ import annotations

import html
import re
from datetime import date, datetime, timezone
from typing import Any


HTML_TAG_RE = re.compile(r"<[^>]*>")
WHITESPACE_RE = re.compile(r"\s+")


def strip_html(value: str | None) -> str:
    """Return ``value`` without HTML tags and with collapsed whitespace."""

    if not value:
        return ""
    stripped = HTML_TAG_RE.sub("", value)
    stripped = html.unescape(stripped)
    return WHITESPACE_RE.sub(" ", stripped).strip()


def today() -> date:
    """Return the local calendar date used as the release cutoff."""

    return date.today()


def utc_timestamp(moment: datetime | None = None) -> str:
    """Return an ISO-8601 UTC timestamp with millisecond precision."""

    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def release_year(premiered: str | None) -> int | None:
    if not premiered or len(premiered) < 4:
        return None
    try:
        return int(premiered[:4])
    except ValueError:
        return None


def coerce_int(value: Any, *, default: int | None = None) -> int | None:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
