"""Gate resolution: get past redirect, consent, and mobile-detection pages.

The resolver tries a fixed chain of strategies and stops at the first one
that yields a page. Apart from inline cookies written to the transport's
cookie jar, no step has side effects.
"""

from __future__ import annotations

import logging
import re
from email.utils import parsedate_to_datetime
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple
from urllib.parse import urldefrag

import requests

from .config import DEFAULT_QUERY_VARIANTS
from .models import GateResolution
from .tokenizer import LiteElement, iter_elements, parse
from .transport import Transport
from .utils import host_of, to_absolute_url

logger = logging.getLogger("lite_reader.gates")

_REFRESH_URL = re.compile(r"url\s*=\s*['\"]?([^'\"]+)", re.IGNORECASE)
_INLINE_COOKIE = re.compile(r"document\.cookie\s*=\s*(['\"])(.*?)\1", re.IGNORECASE)


class InlineCookie(NamedTuple):
    name: str
    value: str
    domain: str
    path: str
    expires: Optional[int]
    secure: bool


def find_meta_refresh_url(root: LiteElement) -> Optional[str]:
    """Return the target of ``<meta http-equiv="refresh" content="N;url=X">``."""
    for element in iter_elements(root):
        if element.tag != "meta":
            continue
        if (element.get("http-equiv") or "").strip().lower() != "refresh":
            continue
        match = _REFRESH_URL.search(element.get("content") or "")
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def find_link_href(root: LiteElement, rel: str) -> Optional[str]:
    """Return ``href`` of the first ``<link rel=...>`` whose rel equals ``rel``."""
    for element in iter_elements(root):
        if element.tag != "link":
            continue
        if (element.get("rel") or "").strip().lower() != rel:
            continue
        href = (element.get("href") or "").strip()
        if href:
            return href
    return None


def parse_cookie_string(raw: str, url: str) -> Optional[InlineCookie]:
    """Parse ``name=value; domain=; path=; expires=; secure``.

    Domain defaults to the host of ``url`` and path to ``/``.
    """
    host = host_of(url)
    if not raw or not raw.strip() or not host:
        return None
    parts = raw.split(";")
    name, sep, value = parts[0].strip().partition("=")
    name = name.strip()
    if not sep or not name:
        return None

    domain, path, expires, secure = host, "/", None, False
    for part in parts[1:]:
        part = part.strip()
        key, _, attr_value = part.partition("=")
        key = key.strip().lower()
        attr_value = attr_value.strip()
        if key == "domain" and attr_value:
            domain = attr_value.strip(".")
        elif key == "path" and attr_value:
            path = attr_value
        elif key == "expires" and attr_value:
            try:
                expires = int(parsedate_to_datetime(attr_value).timestamp())
            except (TypeError, ValueError, IndexError, OverflowError):
                logger.debug("Ignoring unparseable cookie expiry %r", attr_value)
        elif key == "secure":
            secure = True
    return InlineCookie(name, value.strip(), domain, path, expires, secure)


def apply_inline_cookies(
    html: str,
    url: str,
    jar: requests.cookies.RequestsCookieJar,
) -> List[InlineCookie]:
    """Add every ``document.cookie = "..."`` assignment in ``html`` to ``jar``."""
    added: List[InlineCookie] = []
    for match in _INLINE_COOKIE.finditer(html):
        cookie = parse_cookie_string(match.group(2), url)
        if cookie is None:
            continue
        jar.set(
            cookie.name,
            cookie.value,
            domain=cookie.domain,
            path=cookie.path,
            expires=cookie.expires,
            secure=cookie.secure,
        )
        added.append(cookie)
    if added:
        logger.debug("Applied inline cookies for %s: %s", url, [c.name for c in added])
    return added


def with_query_variant(url: str, variant: str) -> str:
    """Append ``variant`` to the query string of ``url`` (fragment dropped)."""
    url, _ = urldefrag(url)
    base, sep, existing = url.partition("?")
    if sep and existing:
        return f"{base}?{existing}&{variant}"
    return f"{base}?{variant}"


def resolve_gates(
    html: Optional[str],
    url: Optional[str],
    transport: Transport,
    referrer: Optional[str] = None,
    query_variants: Sequence[str] = DEFAULT_QUERY_VARIANTS,
    min_variant_chars: int = 200,
) -> Optional[GateResolution]:
    """Try each gate strategy in order; ``None`` means keep the original page."""
    if not html or not html.strip() or not url:
        return None
    referrer = referrer or url
    root = parse(html)

    link_steps: List[Tuple[str, Callable[[LiteElement], Optional[str]]]] = [
        ("meta refresh", find_meta_refresh_url),
        ("amphtml", lambda tree: find_link_href(tree, "amphtml")),
        ("alternate", lambda tree: find_link_href(tree, "alternate")),
    ]
    for label, finder in link_steps:
        try:
            target = to_absolute_url(url, finder(root))
            if not target:
                continue
            body = transport.get_text(target, referrer=referrer)
            if body:
                logger.info("Resolved %s gate on %s -> %s", label, url, target)
                return GateResolution(html=body, url=target)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Gate step %r failed for %s", label, url)

    try:
        if apply_inline_cookies(html, url, transport.cookies):
            body = transport.get_text(url, referrer=referrer)
            if body:
                logger.info("Resolved cookie gate on %s", url)
                return GateResolution(html=body, url=url)
    except Exception:  # pylint: disable=broad-except
        logger.exception("Inline cookie step failed for %s", url)

    for variant in query_variants:
        try:
            candidate = with_query_variant(url, variant)
            body = transport.get_text(candidate, referrer=referrer)
            if body and len(body) > min_variant_chars:
                logger.info("Resolved query-variant gate on %s -> %s", url, candidate)
                return GateResolution(html=body, url=candidate)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Query variant %r failed for %s", variant, url)

    return None
