"""Utility helpers for URL handling and string normalization."""

from __future__ import annotations

import html
import re
from typing import Optional
from urllib.parse import urljoin, urlsplit

SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
WHITESPACE_PATTERN = re.compile(r"\s+")
LOCAL_SCHEMES = ("res://", "file://")


def slugify(value: str, fallback: str = "page") -> str:
    """Generate a filesystem-friendly slug using ASCII characters only."""
    normalized = value.encode("ascii", "ignore").decode("ascii")
    normalized = normalized.lower()
    normalized = SLUG_PATTERN.sub("-", normalized).strip("-")
    return normalized or fallback


def collapse_whitespace(value: str, unescape: bool = True) -> str:
    """Squeeze runs of whitespace, unescaping HTML entities first by default."""
    if unescape:
        value = html.unescape(value)
    return WHITESPACE_PATTERN.sub(" ", value).strip()


def is_local_url(url: str) -> bool:
    return url.lower().startswith(LOCAL_SCHEMES)


def normalize_url(value: str) -> str:
    """Prefix bare hosts with ``https://``; leave http(s) and local URLs alone."""
    value = (value or "").strip()
    if not value:
        return value
    lowered = value.lower()
    if lowered.startswith(("http://", "https://")) or is_local_url(value):
        return value
    return "https://" + value


def to_absolute_url(base: Optional[str], url: Optional[str]) -> Optional[str]:
    """Resolve ``url`` against ``base``; return ``None`` if it is not http(s)."""
    if not url or not url.strip():
        return None
    url = url.strip()
    if url.lower().startswith(("http://", "https://")):
        return url
    if not base:
        return None
    try:
        resolved = urljoin(base, url)
    except ValueError:
        return None
    if urlsplit(resolved).scheme.lower() not in ("http", "https"):
        return None
    return resolved


def host_of(url: str) -> str:
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""
