"""Reader-mode content extraction.

Extraction is a cascade of independent strategies evaluated in a fixed
order; the first one that produces any content wins and later strategies
are never consulted, even if they would find more text. Every strategy
reads the lite element tree rather than raw markup so unbalanced or
truncated HTML degrades gracefully.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional, Sequence, Union

from .models import ContentBlock, ContentItem, Heading, Image, Link, Paragraph
from .tokenizer import LiteElement, find_all, inner_text, iter_elements, parse, raw_length
from .utils import collapse_whitespace, to_absolute_url

logger = logging.getLogger("lite_reader.extraction")

SEMANTIC_PARAGRAPH_LIMIT = 20
ROLE_PARAGRAPH_LIMIT = 24
LARGEST_PARAGRAPH_LIMIT = 20
LINK_LIMIT = 30
MIN_BLOCK_SCORE = 50
CONTENT_KEYWORDS = ("content", "main", "article", "post")
CHROME_KEYWORDS = ("header", "footer", "nav")
CHROME_TAGS = frozenset({"nav", "header", "footer"})
BLOCK_TAGS = frozenset({"div", "section"})

Strategy = Callable[[LiteElement, Optional[str]], Optional[ContentBlock]]
Skip = Optional[Callable[[LiteElement], bool]]


def _text(element: LiteElement, skip: Skip = None) -> str:
    return collapse_whitespace(inner_text(element, skip))


def _first(region: LiteElement, tag: str, skip: Skip = None) -> Optional[LiteElement]:
    for element in iter_elements(region, prune=skip):
        if skip is not None and skip(element):
            continue
        if element.tag == tag:
            return element
    return None


def _heading(region: LiteElement, tags: Sequence[str], skip: Skip = None) -> List[ContentItem]:
    for tag in tags:
        element = _first(region, tag, skip)
        if element is None:
            continue
        text = _text(element)
        return [Heading(text)] if text else []
    return []


def _images(region: LiteElement, base_url: Optional[str], skip: Skip = None) -> List[ContentItem]:
    images: List[ContentItem] = []
    for element in iter_elements(region, prune=skip):
        if element.tag != "img" or (skip is not None and skip(element)):
            continue
        url = to_absolute_url(base_url, element.get("src"))
        if url:
            images.append(Image(url))
    return images


def _paragraphs(
    region: LiteElement,
    tags: Iterable[str],
    limit: int,
    skip: Skip = None,
) -> List[ContentItem]:
    """Collect non-empty text of ``tags`` without descending into a match."""
    wanted = frozenset(tags)

    def prune(element: LiteElement) -> bool:
        return element.tag in wanted or (skip is not None and skip(element))

    paragraphs: List[ContentItem] = []
    for element in iter_elements(region, prune=prune):
        if element.tag not in wanted or (skip is not None and skip(element)):
            continue
        text = _text(element, skip)
        if text:
            paragraphs.append(Paragraph(text))
            if len(paragraphs) >= limit:
                break
    return paragraphs


def _block(strategy: str, items: List[ContentItem]) -> Optional[ContentBlock]:
    return ContentBlock(strategy=strategy, items=tuple(items)) if items else None


def semantic_container(root: LiteElement, base_url: Optional[str]) -> Optional[ContentBlock]:
    """``<article>``, else ``<main>``: first h1, images, up to 20 paragraphs."""
    region = _first(root, "article") or _first(root, "main")
    if region is None:
        return None
    items = _heading(region, ("h1",))
    items += _images(region, base_url)
    items += _paragraphs(region, ("p",), SEMANTIC_PARAGRAPH_LIMIT)
    return _block("semantic", items)


def find_role_region(root: LiteElement) -> Optional[LiteElement]:
    """``role="main"``, else a div/section whose id, then class, names content."""
    for element in iter_elements(root):
        if element.tag in ("div", "section", "main") and (
            (element.get("role") or "").strip().lower() == "main"
        ):
            return element
    for attribute in ("id", "class"):
        for element in iter_elements(root):
            if element.tag not in BLOCK_TAGS:
                continue
            value = (element.get(attribute) or "").lower()
            if any(keyword in value for keyword in CONTENT_KEYWORDS):
                return element
    return None


def role_container(root: LiteElement, base_url: Optional[str]) -> Optional[ContentBlock]:
    region = find_role_region(root)
    if region is None:
        return None
    items = _heading(region, ("h1", "h2"))
    items += _images(region, base_url)
    items += _paragraphs(region, ("p", "li"), ROLE_PARAGRAPH_LIMIT)
    return _block("role", items)


def is_chrome_block(element: LiteElement) -> bool:
    """True for div/section blocks whose attributes mention header, footer or nav."""
    if element.tag not in BLOCK_TAGS:
        return False
    attribute_text = " ".join(f"{name}={value}" for name, value in element.attributes.items()).lower()
    return any(keyword in attribute_text for keyword in CHROME_KEYWORDS)


def _is_excluded(element: LiteElement) -> bool:
    return element.tag in CHROME_TAGS or is_chrome_block(element)


def largest_block(root: LiteElement, base_url: Optional[str]) -> Optional[ContentBlock]:
    """The div/section with the most text, ignoring page chrome.

    Nothing under a ``nav``/``header``/``footer`` element is a candidate. A
    chrome div/section is skipped itself but its descendants stay eligible,
    since sites often put such classes on whole-page wrappers.
    """
    best: Optional[LiteElement] = None
    best_score = 0
    for element in iter_elements(root, prune=lambda e: e.tag in CHROME_TAGS):
        if element.tag not in BLOCK_TAGS or is_chrome_block(element):
            continue
        score = len(_text(element, _is_excluded))
        if score > best_score:
            best, best_score = element, score
    if best is None or best_score < MIN_BLOCK_SCORE:
        return None
    items = _heading(best, ("h1", "h2"), _is_excluded)
    items += _images(best, base_url, _is_excluded)
    items += _paragraphs(best, ("p",), LARGEST_PARAGRAPH_LIMIT, _is_excluded)
    return _block("largest", items)


def noscript_fallback(root: LiteElement, base_url: Optional[str]) -> Optional[ContentBlock]:
    """Longest ``<noscript>``: its images, then its text as one paragraph."""
    best: Optional[LiteElement] = None
    for element in find_all(root, ("noscript",)):
        if best is None or raw_length(element) > raw_length(best):
            best = element
    if best is None:
        return None
    items = _images(best, base_url)
    text = _text(best)
    if text:
        items.append(Paragraph(text))
    return _block("noscript", items)


def _meta_content(root: LiteElement, attribute: str, value: str) -> Optional[str]:
    for element in iter_elements(root):
        if element.tag != "meta":
            continue
        if (element.get(attribute) or "").strip().lower() != value:
            continue
        content = collapse_whitespace(element.get("content") or "", unescape=False)
        if content:
            return content
    return None


def meta_and_links(root: LiteElement, base_url: Optional[str]) -> Optional[ContentBlock]:
    """Summary from ``og:title``/description plus a directory of up to 30 links."""
    items: List[ContentItem] = []
    og_title = _meta_content(root, "property", "og:title")
    if og_title:
        items.append(Heading(og_title))
    description = _meta_content(root, "name", "description")
    if description:
        items.append(Paragraph(description))

    links = 0
    for element in iter_elements(root):
        if element.tag != "a":
            continue
        href = (element.get("href") or "").strip()
        url = to_absolute_url(base_url, href)
        if not url:
            continue
        items.append(Link(_text(element) or href, url))
        links += 1
        if links >= LINK_LIMIT:
            break
    return _block("meta-links", items)


DEFAULT_STRATEGIES: Sequence[Strategy] = (
    semantic_container,
    role_container,
    largest_block,
    noscript_fallback,
    meta_and_links,
)


def extract_content(
    source: Union[str, LiteElement, None],
    base_url: Optional[str],
    strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
) -> Optional[ContentBlock]:
    """Run ``strategies`` in order and return the first non-empty block."""
    if source is None:
        return None
    root = source if isinstance(source, LiteElement) else parse(source)
    for strategy in strategies:
        name = getattr(strategy, "__name__", repr(strategy))
        try:
            block = strategy(root, base_url)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Extraction strategy %s failed", name)
            continue
        if block is not None and block.items:
            logger.debug("Strategy %s produced %d item(s)", name, len(block.items))
            return block
        logger.debug("Strategy %s found nothing", name)
    return None


def raw_snippet(html: Optional[str], limit: int = 1500) -> Optional[str]:
    """First ``limit`` characters of the page, for when nothing was extracted."""
    if not html:
        return None
    return html[:limit] + "..." if len(html) > limit else html
