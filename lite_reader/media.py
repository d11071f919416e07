"""Image and hero-background discovery, fetching, and caching."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from filetype import guess

from .config import IMAGE_ACCEPT
from .errors import NetworkError
from .models import AlignX, AlignY, BackgroundSpec, FetchResult, ImageAsset, Stretch
from .tokenizer import LiteElement, iter_elements, parse
from .transport import Transport
from .utils import slugify, to_absolute_url

logger = logging.getLogger("lite_reader.media")

MAX_BACKGROUND_HEIGHT = 480.0
MIN_BACKGROUND_HEIGHT = 40.0
WEBP_MIME = "image/webp"

_BACKGROUND_URL = re.compile(r"background-image\s*:\s*url\(\s*['\"]?([^'\")]*)", re.IGNORECASE)
_BACKGROUND_SIZE = re.compile(r"background-size\s*:\s*([^;]+)", re.IGNORECASE)
_BACKGROUND_POSITION = re.compile(r"background-position\s*:\s*([^;]+)", re.IGNORECASE)
_BACKGROUND_REPEAT = re.compile(r"background-repeat\s*:\s*([^;]+)", re.IGNORECASE)
_HEIGHT = re.compile(r"(?<![-\w])height\s*:\s*([0-9]+(?:\.[0-9]+)?)px", re.IGNORECASE)
_FORMAT_WEBP = re.compile(r"format=webp", re.IGNORECASE)


def _as_tree(source: Union[str, LiteElement, None]) -> LiteElement:
    return source if isinstance(source, LiteElement) else parse(source)


def _first_srcset_entry(srcset: Optional[str]) -> Optional[str]:
    if not srcset or not srcset.strip():
        return None
    first = srcset.split(",")[0].strip()
    return first.split()[0] if first else None


def extract_image_urls(
    source: Union[str, LiteElement, None],
    base_url: Optional[str],
) -> List[str]:
    """Absolute URLs of ``<img>``, ``<amp-img>`` and ``og:image`` references.

    Order is all ``img`` tags, then all ``amp-img`` tags, then the first
    ``og:image``. Duplicates are kept; unresolvable references are dropped.
    """
    root = _as_tree(source)
    urls: List[str] = []
    elements = list(iter_elements(root))

    for element in elements:
        if element.tag == "img":
            url = to_absolute_url(base_url, element.get("src"))
            if url:
                urls.append(url)

    for element in elements:
        if element.tag == "amp-img":
            src = element.get("src") or _first_srcset_entry(
                element.get("srcset") or element.get("data-srcset")
            )
            url = to_absolute_url(base_url, src)
            if url:
                urls.append(url)

    for element in elements:
        if element.tag == "meta" and (element.get("property") or "").strip().lower() == "og:image":
            url = to_absolute_url(base_url, element.get("content"))
            if url:
                urls.append(url)
            break
    return urls


def parse_background_style(style: str, base_url: Optional[str]) -> Optional[BackgroundSpec]:
    """Build a :class:`BackgroundSpec` from one inline ``style`` value."""
    if "background-image" not in style.lower():
        return None
    match = _BACKGROUND_URL.search(style)
    if not match:
        return None
    url = to_absolute_url(base_url, match.group(1))
    if not url:
        return None

    spec = BackgroundSpec(url=url)
    size = _BACKGROUND_SIZE.search(style)
    if size and "contain" in size.group(1).lower() and "cover" not in size.group(1).lower():
        spec.stretch = Stretch.CONTAIN

    position = _BACKGROUND_POSITION.search(style)
    if position:
        value = position.group(1).lower()
        if "left" in value:
            spec.align_x = AlignX.LEFT
        elif "right" in value:
            spec.align_x = AlignX.RIGHT
        if "top" in value:
            spec.align_y = AlignY.TOP
        elif "bottom" in value:
            spec.align_y = AlignY.BOTTOM

    repeat = _BACKGROUND_REPEAT.search(style)
    if repeat and "no-repeat" in repeat.group(1).lower():
        spec.no_repeat = True

    height = _HEIGHT.search(style)
    if height:
        value = float(height.group(1))
        if value > MIN_BACKGROUND_HEIGHT:
            spec.height = min(value, MAX_BACKGROUND_HEIGHT)
    return spec


def extract_background_specs(
    source: Union[str, LiteElement, None],
    base_url: Optional[str],
) -> List[BackgroundSpec]:
    """Hero backgrounds declared in ``style`` attributes, in document order."""
    specs: List[BackgroundSpec] = []
    for element in iter_elements(_as_tree(source)):
        style = element.get("style")
        if not style:
            continue
        spec = parse_background_style(style, base_url)
        if spec is not None:
            specs.append(spec)
    return specs


def non_webp_url(url: str) -> str:
    """Rewrite an image URL so the server is asked for a JPEG instead of WebP."""
    if url.lower().endswith(".webp"):
        return url[:-5] + ".jpg"
    if _FORMAT_WEBP.search(url):
        return _FORMAT_WEBP.sub("format=jpg", url)
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}format=jpg"


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def infer_image_extension(content_type: Optional[str], data: bytes) -> Optional[str]:
    """Guess an image file extension from HTTP metadata or file signature."""
    detected = detect_image_format(data)
    if detected:
        return detected
    if not content_type:
        return None
    parts = content_type.split(";")[0].split("/")
    if len(parts) == 2 and parts[0] == "image":
        ext = parts[1].strip().lower()
        if ext == "jpeg":
            ext = "jpg"
        return ext
    return None


def is_webp_response(result: FetchResult) -> bool:
    media_type = result.content_type.split(";")[0].strip().lower()
    if media_type == WEBP_MIME:
        return True
    if media_type.startswith("image/"):
        return False
    return bool(result.raw_bytes) and detect_image_format(result.raw_bytes) == "webp"


class ImageCache:
    """Session-scoped map of absolute image URL to bytes. Never evicts."""

    def __init__(self) -> None:
        self._entries: Dict[str, bytes] = {}
        self._content_types: Dict[str, str] = {}

    def get(self, url: str) -> Optional[bytes]:
        return self._entries.get(url)

    def content_type(self, url: str) -> Optional[str]:
        return self._content_types.get(url)

    def store(self, url: str, data: bytes, content_type: str = "") -> None:
        self._entries[url] = data
        if content_type:
            self._content_types[url] = content_type

    def clear(self) -> None:
        self._entries.clear()
        self._content_types.clear()

    def __contains__(self, url: object) -> bool:
        return url in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class ImageFetcher:
    """Fetch image bytes through the cache, steering around WebP responses."""

    def __init__(self, transport: Transport, cache: Optional[ImageCache] = None) -> None:
        self.transport = transport
        self.cache = cache if cache is not None else ImageCache()

    def _download(self, url: str, referrer: Optional[str]) -> FetchResult:
        return self.transport.get(
            url,
            referrer=referrer,
            headers={"Accept": IMAGE_ACCEPT},
            decode=False,
        )

    def fetch(self, url: str, referrer: Optional[str] = None) -> bytes:
        """Return image bytes for ``url``; raises :class:`NetworkError` on failure.

        WebP responses trigger exactly one retry against :func:`non_webp_url`.
        Whatever bytes are finally obtained are cached under ``url``.
        """
        cached = self.cache.get(url)
        if cached is not None:
            return cached

        result = self._download(url, referrer)
        if is_webp_response(result):
            alternate = non_webp_url(url)
            if alternate != url:
                logger.debug("Server sent WebP for %s; retrying as %s", url, alternate)
                try:
                    fallback = self._download(alternate, referrer)
                except NetworkError as exc:
                    logger.debug("Non-WebP retry for %s failed: %s", url, exc)
                else:
                    if fallback.raw_bytes:
                        result = fallback
        self.cache.store(url, result.raw_bytes, result.content_type)
        return result.raw_bytes


def save_image_assets(
    images: Mapping[str, bytes],
    output_dir: Path,
    content_types: Optional[Mapping[str, Optional[str]]] = None,
) -> List[ImageAsset]:
    """Write fetched images under ``output_dir/images`` and describe them.

    ``content_types`` maps image URLs to the response Content-Type, used when
    the bytes carry no recognisable signature.
    """
    if not images:
        return []
    image_dir = output_dir / "images"
    image_dir.mkdir(parents=True, exist_ok=True)
    content_types = content_types or {}

    assets: List[ImageAsset] = []
    for index, (url, data) in enumerate(images.items(), start=1):
        extension = infer_image_extension(content_types.get(url), data)
        if not extension:
            logger.warning("Skipping %s: unrecognised image data", url)
            continue
        stem = slugify(Path(url.split("?")[0]).stem or "image", fallback="image")
        filename = f"image-{index:02d}-{stem}"[:80] + f".{extension}"
        destination = image_dir / filename
        try:
            destination.write_bytes(data)
        except OSError as exc:
            logger.warning("Failed to write image %s: %s", destination, exc)
            continue
        assets.append(
            ImageAsset(
                absolute_url=url,
                filename=filename,
                relative_path=str(Path("images") / filename),
            )
        )
    return assets
