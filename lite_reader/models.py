"""Data models used throughout the reader pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union


@dataclass
class FetchResult:
    """One HTTP response after decompression and charset decoding."""

    url: str
    status: int
    raw_bytes: bytes
    content_type: str
    content_encoding: str
    decoded_text: str
    encoding_used: str


@dataclass
class GateResolution:
    """Replacement page found by the gate resolver."""

    html: str
    url: str


@dataclass(frozen=True)
class Heading:
    text: str


@dataclass(frozen=True)
class Paragraph:
    text: str


@dataclass(frozen=True)
class Image:
    url: str


@dataclass(frozen=True)
class Link:
    text: str
    url: str


ContentItem = Union[Heading, Paragraph, Image, Link]


@dataclass(frozen=True)
class ContentBlock:
    """Reader content produced by exactly one extraction strategy."""

    strategy: str
    items: Tuple[ContentItem, ...]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    @property
    def image_urls(self) -> List[str]:
        return [item.url for item in self.items if isinstance(item, Image)]


class Stretch(enum.Enum):
    COVER = "cover"
    CONTAIN = "contain"


class AlignX(enum.Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class AlignY(enum.Enum):
    TOP = "top"
    CENTER = "center"
    BOTTOM = "bottom"


DEFAULT_BACKGROUND_HEIGHT = 360.0


@dataclass
class BackgroundSpec:
    """CSS background image promoted to a block-level hero visual."""

    url: str
    stretch: Stretch = Stretch.COVER
    align_x: AlignX = AlignX.CENTER
    align_y: AlignY = AlignY.CENTER
    no_repeat: bool = False
    height: float = DEFAULT_BACKGROUND_HEIGHT


@dataclass
class PageMetadata:
    """Metadata describing the loaded page."""

    source_url: str
    title: Optional[str]
    description: Optional[str] = None
    byline: Optional[str] = None
    image: Optional[str] = None


@dataclass
class ImageAsset:
    """Fetched image persisted next to a saved page."""

    absolute_url: str
    filename: str
    relative_path: str


@dataclass
class NavigationContext:
    """Per-navigation state handed to every pipeline stage.

    ``url`` tracks the page currently being processed and is updated when a
    redirect or gate replaces it; it doubles as the ``Referer`` for
    follow-up requests.
    """

    url: str
    generation: int


@dataclass
class PageView:
    """Everything the rendering adapter needs to display one navigation."""

    url: str
    title: str
    generation: int
    content: Optional[ContentBlock] = None
    snippet: Optional[str] = None
    background_specs: List[BackgroundSpec] = field(default_factory=list)
    backgrounds: List[Tuple[BackgroundSpec, bytes]] = field(default_factory=list)
    images: Dict[str, bytes] = field(default_factory=dict)
    page_images: List[str] = field(default_factory=list)
    metadata: Optional[PageMetadata] = None

    @property
    def is_empty(self) -> bool:
        return self.content is None and self.snippet is None
