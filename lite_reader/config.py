"""Configuration objects and constants for the reader engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger("lite_reader")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
DEFAULT_ACCEPT = "text/html, application/xhtml+xml, application/xml;q=0.9, */*;q=0.8"
DEFAULT_ACCEPT_LANGUAGE = "en-US, en;q=0.9"
DEFAULT_ACCEPT_ENCODING = "gzip, deflate"
IMAGE_ACCEPT = "image/png, image/jpeg, image/jpg, image/gif, image/apng"
DEFAULT_QUERY_VARIANTS = ("amp=1", "m=1", "lite=1", "simple=1", "mobile=1")


@dataclass
class ReaderConfig:
    """Top-level settings that control fetching and extraction behaviour."""

    timeout: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    binary_sample_chars: int = 2048
    binary_ratio: float = 0.15
    query_variants: Tuple[str, ...] = DEFAULT_QUERY_VARIANTS
    min_variant_chars: int = 200
    snippet_chars: int = 1500
    fetch_images: bool = True
    output_root: Optional[Path] = field(default=None)

    @classmethod
    def from_env(cls, **overrides) -> "ReaderConfig":
        """Build a config, applying ``LITE_READER_*`` environment overrides."""
        config = cls(**overrides)
        raw_timeout = os.getenv("LITE_READER_TIMEOUT")
        if raw_timeout and "timeout" not in overrides:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                timeout = 0.0
            if timeout > 0:
                config.timeout = timeout
            else:
                logger.warning(
                    "LITE_READER_TIMEOUT is set to %r which is not a positive number; using %.1fs",
                    raw_timeout,
                    config.timeout,
                )
        user_agent = os.getenv("LITE_READER_USER_AGENT")
        if user_agent and "user_agent" not in overrides:
            config.user_agent = user_agent.strip()
        return config
