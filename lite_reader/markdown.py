"""Markdown rendering of reader page views."""

from __future__ import annotations

import datetime as dt
from typing import Iterable, List, Optional

from .models import ContentItem, Heading, Image, ImageAsset, Link, PageView, Paragraph


def _escape_label(text: str) -> str:
    return text.replace("[", "\\[").replace("]", "\\]")


def render_item(item: ContentItem) -> str:
    if isinstance(item, Heading):
        return f"## {item.text}"
    if isinstance(item, Paragraph):
        return item.text
    if isinstance(item, Image):
        return f"![]({item.url})"
    if isinstance(item, Link):
        return f"- [{_escape_label(item.text)}]({item.url})"
    raise TypeError(f"Unsupported content item: {item!r}")


def render_blocks(items: Iterable[ContentItem]) -> str:
    """Render content items as Markdown paragraphs.

    Consecutive links are kept together as one list.
    """
    chunks: List[str] = []
    previous: Optional[ContentItem] = None
    for item in items:
        rendered = render_item(item)
        if isinstance(item, Link) and isinstance(previous, Link):
            chunks[-1] += "\n" + rendered
        else:
            chunks.append(rendered)
        previous = item
    return "\n\n".join(chunks)


def render_page_body(view: PageView) -> str:
    """Hero backgrounds first, then the extracted content or the raw snippet."""
    sections: List[str] = []
    for spec in view.background_specs:
        sections.append(f"![background]({spec.url})")
    if view.content is not None:
        sections.append(render_blocks(view.content))
    elif view.snippet:
        sections.append("```html\n" + view.snippet + "\n```")
    else:
        sections.append(f"_No readable content found at {view.url}._")
    return "\n\n".join(sections)


def replace_image_links(markdown: str, assets: List[ImageAsset]) -> str:
    """Swap remote image URLs with downloaded asset paths."""
    if not assets:
        return markdown
    updated = markdown
    for asset in assets:
        updated = updated.replace(f"]({asset.absolute_url})", f"]({asset.relative_path})")
    return updated


def compose_markdown(view: PageView, assets: Optional[List[ImageAsset]] = None) -> str:
    """Generate final Markdown including front matter."""
    assets = assets or []
    timestamp = (
        dt.datetime.now(dt.timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )
    front_matter_lines = ["---"]
    if view.title:
        front_matter_lines.append(f"title: {view.title}")
    front_matter_lines.append(f"source_url: {view.url}")
    front_matter_lines.append(f"retrieved_at: {timestamp}")
    if view.content is not None:
        front_matter_lines.append(f"strategy: {view.content.strategy}")
    metadata = view.metadata
    if metadata and metadata.description:
        front_matter_lines.append(f"description: {metadata.description}")
    if metadata and metadata.byline:
        front_matter_lines.append(f"byline: {metadata.byline}")
    if assets:
        image_files = [asset.relative_path for asset in assets]
        files_str = "[" + ", ".join(image_files) + "]"
        front_matter_lines.append(f"images: {files_str}")
    front_matter_lines.append("---\n")

    body = replace_image_links(render_page_body(view), assets)
    return "\n".join(front_matter_lines) + body.strip() + "\n"
