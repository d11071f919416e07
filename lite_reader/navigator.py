"""High-level orchestration: fetch, resolve gates, extract, and load media."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional
from urllib.parse import urlparse, urlsplit
from urllib.request import url2pathname

from .config import ReaderConfig
from .errors import NetworkError
from .extraction import extract_content, raw_snippet
from .gates import resolve_gates
from .markdown import compose_markdown
from .media import (
    ImageCache,
    ImageFetcher,
    extract_background_specs,
    extract_image_urls,
    save_image_assets,
)
from .metadata import body_inner_html, extract_metadata
from .models import ImageAsset, NavigationContext, PageView
from .script import DomCallbacks, ScriptHook
from .tokenizer import parse
from .transport import Transport, fetch_page
from .utils import host_of, is_local_url, normalize_url, slugify, to_absolute_url

logger = logging.getLogger("lite_reader")

PAGES_DIR = Path(__file__).resolve().parent / "pages"

Listener = Callable[[Any], None]


def load_local_page(url: str) -> Optional[str]:
    """Read a bundled ``res://`` page or a ``file://`` path."""
    try:
        if url.lower().startswith("res://"):
            name = url[len("res://") :].strip("/") or "start.html"
            if ".." in Path(name).parts:
                raise ValueError("resource path escapes the pages directory")
            return (PAGES_DIR / name).read_text(encoding="utf-8")
        path = Path(url2pathname(urlsplit(url).path))
        return path.read_text(encoding="utf-8", errors="replace")
    except (OSError, ValueError) as exc:
        logger.warning("Could not read local page %s: %s", url, exc)
        return None


class Navigator:
    """Drives one navigation at a time and reports progress through listeners.

    Each call to :meth:`navigate` takes a new generation number. A
    navigation that finds a newer generation when one of its stages
    completes discards its result instead of applying it.
    """

    def __init__(
        self,
        config: Optional[ReaderConfig] = None,
        transport: Optional[Transport] = None,
        dom: Optional[DomCallbacks] = None,
        on_navigation_completed: Optional[Listener] = None,
        on_title_changed: Optional[Listener] = None,
        on_loading_state_changed: Optional[Listener] = None,
    ) -> None:
        self.config = config or ReaderConfig()
        self.transport = transport or Transport(self.config)
        self.image_cache = ImageCache()
        self.image_fetcher = ImageFetcher(self.transport, self.image_cache)
        self.script_hook = ScriptHook(self._fetch_script_url)
        self.dom = dom
        self.current_url: Optional[str] = None
        self._generation = 0
        self._on_navigation_completed = on_navigation_completed
        self._on_title_changed = on_title_changed
        self._on_loading_state_changed = on_loading_state_changed

    @property
    def generation(self) -> int:
        return self._generation

    async def __aenter__(self) -> "Navigator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.image_cache.clear()
        self.transport.close()

    def _emit(self, listener: Optional[Listener], value: Any) -> None:
        if listener is None:
            return
        try:
            listener(value)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Navigation listener %r raised", listener)

    def _is_stale(self, ctx: NavigationContext) -> bool:
        if ctx.generation != self._generation:
            logger.debug(
                "Discarding navigation %d to %s; generation %d is current",
                ctx.generation,
                ctx.url,
                self._generation,
            )
            return True
        return False

    def _stage(self, name: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return func(*args)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Stage %s failed", name)
            return None

    async def _load_html(self, ctx: NavigationContext) -> Optional[str]:
        if is_local_url(ctx.url):
            return await asyncio.to_thread(load_local_page, ctx.url)
        try:
            result = await asyncio.to_thread(fetch_page, self.transport, ctx.url)
        except NetworkError as exc:
            logger.warning("Failed to load %s: %s", ctx.url, exc)
            return None
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected error loading %s", ctx.url)
            return None
        ctx.url = result.url or ctx.url
        return result.decoded_text

    async def _fetch_image(self, ctx: NavigationContext, url: str) -> Optional[bytes]:
        try:
            return await asyncio.to_thread(self.image_fetcher.fetch, url, ctx.url)
        except NetworkError as exc:
            logger.warning("Failed to fetch image %s: %s", url, exc)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected error fetching image %s", url)
        return None

    async def navigate(self, url: str) -> Optional[PageView]:
        """Load ``url`` and build its :class:`PageView`.

        Returns ``None`` if a newer navigation started before this one
        finished. Failure to obtain any HTML still completes, with an empty
        view.
        """
        url = normalize_url(url)
        if not url:
            return None
        self._generation += 1
        ctx = NavigationContext(url=url, generation=self._generation)
        self.current_url = url
        self._emit(self._on_loading_state_changed, True)
        logger.info("Loading %s", url)

        html = await self._load_html(ctx)
        if self._is_stale(ctx):
            return None

        if html and not is_local_url(ctx.url):
            resolution = await asyncio.to_thread(
                self._stage,
                "gates",
                resolve_gates,
                html,
                ctx.url,
                self.transport,
                ctx.url,
                self.config.query_variants,
                self.config.min_variant_chars,
            )
            if self._is_stale(ctx):
                return None
            if resolution is not None:
                html, ctx.url = resolution.html, resolution.url
        self.current_url = ctx.url

        if not html:
            view = PageView(url=ctx.url, title=host_of(ctx.url) or ctx.url, generation=ctx.generation)
            return self._complete(ctx, view)

        view = self._build_view(ctx, html)
        self._emit(self._on_title_changed, view.title)

        if self.config.fetch_images:
            await self._load_media(ctx, view)
            if self._is_stale(ctx):
                return None

        if self.dom is not None:
            self._stage("dom", lambda: self.dom.set_body_inner_html(body_inner_html(html)))
        return self._complete(ctx, view)

    def _build_view(self, ctx: NavigationContext, html: str) -> PageView:
        root = parse(html)
        metadata = self._stage("metadata", extract_metadata, html, ctx.url)
        title = (metadata.title if metadata else None) or host_of(ctx.url) or ctx.url
        content = self._stage("extraction", extract_content, root, ctx.url)
        view = PageView(
            url=ctx.url,
            title=title,
            generation=ctx.generation,
            content=content,
            snippet=None if content else raw_snippet(html, self.config.snippet_chars),
            background_specs=self._stage("backgrounds", extract_background_specs, root, ctx.url) or [],
            page_images=self._stage("images", extract_image_urls, root, ctx.url) or [],
            metadata=metadata,
        )
        logger.debug(
            "Built view for %s: strategy=%s backgrounds=%d images=%d",
            ctx.url,
            content.strategy if content else None,
            len(view.background_specs),
            len(view.page_images),
        )
        return view

    async def _load_media(self, ctx: NavigationContext, view: PageView) -> None:
        for spec in view.background_specs:
            data = await self._fetch_image(ctx, spec.url)
            if self._is_stale(ctx):
                return
            if data:
                view.backgrounds.append((spec, data))

        wanted: List[str] = list(view.content.image_urls) if view.content else []
        wanted.extend(view.page_images)
        for image_url in wanted:
            if image_url in view.images:
                continue
            data = await self._fetch_image(ctx, image_url)
            if self._is_stale(ctx):
                return
            if data:
                view.images[image_url] = data

    def _complete(self, ctx: NavigationContext, view: PageView) -> PageView:
        self._emit(self._on_loading_state_changed, False)
        self._emit(self._on_navigation_completed, ctx.url)
        logger.info("Finished %s (%s)", ctx.url, view.content.strategy if view.content else "no content")
        return view

    def _fetch_script_url(self, target: str) -> Optional[str]:
        base = self.current_url
        url = to_absolute_url(base, target) or normalize_url(target)
        return self.transport.get_text(url, referrer=base)

    async def execute_script(self, script: str) -> str:
        """Run ``script`` through the request-pattern hook."""
        return await asyncio.to_thread(self.script_hook.execute, script)


@dataclass
class ReadResult:
    """Outcome of reading one URL from the command line or MCP server."""

    url: str
    view: PageView
    markdown: str
    output_path: Optional[Path] = None
    total_seconds: float = 0.0


def build_output_dir(output_root: Path, view: PageView) -> Path:
    """Create an output directory based on the page host and title."""
    parsed = urlparse(view.url)
    domain = slugify(parsed.netloc or "site", fallback="site")
    title_slug = slugify(view.title or parsed.path or "page")
    output_dir = output_root / domain / title_slug[:80]
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


async def run_reader(urls: List[str], config: ReaderConfig) -> List[ReadResult]:
    """Read each URL sequentially and render it as Markdown.

    With ``config.output_root`` set, each page is written to
    ``<root>/<domain>/<slug>/index.md`` with its images under ``images/``.
    """
    results: List[ReadResult] = []
    async with Navigator(config) as navigator:
        for url in urls:
            start = time.perf_counter()
            view = await navigator.navigate(url)
            if view is None:
                logger.error("Navigation to %s was superseded", url)
                continue
            if view.is_empty and not view.background_specs:
                logger.error("No content could be loaded from %s", url)
                continue

            assets: List[ImageAsset] = []
            output_path: Optional[Path] = None
            if config.output_root is not None:
                output_dir = build_output_dir(config.output_root, view)
                images = dict(view.images)
                for spec, data in view.backgrounds:
                    images.setdefault(spec.url, data)
                content_types = {image_url: navigator.image_cache.content_type(image_url) for image_url in images}
                assets = save_image_assets(images, output_dir, content_types)
            markdown = compose_markdown(view, assets)
            if config.output_root is not None:
                output_path = output_dir / "index.md"
                output_path.write_text(markdown, encoding="utf-8")
                logger.info("Saved Markdown to %s", output_path)

            results.append(
                ReadResult(
                    url=url,
                    view=view,
                    markdown=markdown,
                    output_path=output_path,
                    total_seconds=time.perf_counter() - start,
                )
            )
    return results
