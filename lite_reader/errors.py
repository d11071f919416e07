"""Exception hierarchy for the reader engine.

Every stage of the pipeline catches these locally and falls through to the
next fallback, so they rarely reach callers of :class:`~lite_reader.navigator.Navigator`.
"""

from __future__ import annotations

from typing import Optional


class LiteReaderError(Exception):
    """Base exception for all reader engine errors."""


class NetworkError(LiteReaderError):
    """Timeout, connection failure, or non-2xx response."""

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class DecodeError(LiteReaderError):
    """Body could not be decompressed or decoded with the declared charset."""


class ParseRecoverable(LiteReaderError):
    """Malformed markup; the tokenizer skips the offending tag and continues."""
