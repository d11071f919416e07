"""Script-execution hook and the DOM callback boundary.

There is no JavaScript runtime here. The hook recognises two request
shapes, ``fetch('URL')`` and an ``XMLHttpRequest`` ``open('GET', 'URL')``
followed by ``send()``, performs the GET, and returns the body text.
Everything else yields an empty string.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional, Protocol

from bs4 import BeautifulSoup

logger = logging.getLogger("lite_reader.script")

_FETCH = re.compile(r"fetch\s*\(\s*['\"]([^'\"]+)['\"]", re.IGNORECASE)
_XHR_OPEN = re.compile(
    r"open\s*\(\s*['\"](GET|POST)['\"]\s*,\s*['\"]([^'\"]+)['\"]",
    re.IGNORECASE,
)
EMPTY_DOCUMENT = "<html><head></head><body></body></html>"


class DomCallbacks(Protocol):
    """Narrow read/write surface over the currently rendered body."""

    def set_body_inner_html(self, html: str) -> None:
        ...

    def get_body_inner_html(self) -> str:
        ...


class SoupDom:
    """:class:`DomCallbacks` backed by a BeautifulSoup document."""

    def __init__(self, html: str = EMPTY_DOCUMENT) -> None:
        self._soup = BeautifulSoup(html, "html.parser")

    def _body(self):
        body = self._soup.body
        if body is None:
            body = self._soup.new_tag("body")
            (self._soup.html or self._soup).append(body)
        return body

    def set_body_inner_html(self, html: str) -> None:
        body = self._body()
        body.clear()
        fragment = BeautifulSoup(html or "", "html.parser")
        for node in list(fragment.contents):
            body.append(node.extract())

    def get_body_inner_html(self) -> str:
        return self._body().decode_contents()


def match_script_request(script: Optional[str]) -> Optional[str]:
    """Return the URL a script would GET, or ``None`` if it is not recognised."""
    if not script or not script.strip():
        return None
    match = _FETCH.search(script)
    if match:
        return match.group(1)
    match = _XHR_OPEN.search(script)
    if match and "send(" in script.lower() and match.group(1).upper() == "GET":
        return match.group(2)
    return None


class ScriptHook:
    """Runs the two supported request patterns through ``fetch_text``."""

    def __init__(self, fetch_text: Callable[[str], Optional[str]]) -> None:
        self._fetch_text = fetch_text

    def execute(self, script: Optional[str]) -> str:
        url = match_script_request(script)
        if url is None:
            return ""
        try:
            return self._fetch_text(url) or ""
        except Exception:  # pylint: disable=broad-except
            logger.exception("Script request for %s failed", url)
            return ""
