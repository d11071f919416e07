"""Page metadata parsing utilities."""

from __future__ import annotations

from typing import Optional

from bs4 import BeautifulSoup

from .models import PageMetadata
from .utils import collapse_whitespace, to_absolute_url


def _meta(soup: BeautifulSoup, **attrs: str) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if tag and tag.get("content"):
        value = collapse_whitespace(tag["content"], unescape=False)
        return value or None
    return None


def extract_metadata(html: str, source_url: str) -> PageMetadata:
    """Extract title, description, author and preview image from ``html``."""
    soup = BeautifulSoup(html, "html.parser")

    title: Optional[str] = None
    if soup.title:
        title = collapse_whitespace(soup.title.get_text(), unescape=False) or None

    image = _meta(soup, property="og:image")
    return PageMetadata(
        source_url=source_url,
        title=title,
        description=_meta(soup, name="description"),
        byline=_meta(soup, name="author"),
        image=to_absolute_url(source_url, image) if image else None,
    )


def body_inner_html(html: str) -> str:
    """Markup inside ``<body>``, or the whole document when there is no body."""
    soup = BeautifulSoup(html, "html.parser")
    if soup.body is None:
        return soup.decode()
    return soup.body.decode_contents()
