"""HTTP transport: fetch, decompress, decode, and judge whether a body is text."""

from __future__ import annotations

import codecs
import gzip
import logging
import re
import unicodedata
import zlib
from typing import Dict, Mapping, Optional, Tuple

import requests
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from .config import (
    DEFAULT_ACCEPT,
    DEFAULT_ACCEPT_ENCODING,
    ReaderConfig,
)
from .errors import DecodeError, NetworkError
from .models import FetchResult

logger = logging.getLogger("lite_reader.transport")

_CHARSET_PATTERN = re.compile(r"charset\s*=\s*([^;]+)", re.IGNORECASE)
_ALLOWED_CONTROL = frozenset("\n\r\t")
REPLACEMENT_CHAR = "\ufffd"


class Transport:
    """Thin wrapper around a :class:`requests.Session` with browser-like defaults.

    The session's cookie jar is the engine's cookie jar: the gate resolver
    writes inline cookies into it and every later request reads them back.
    """

    def __init__(
        self,
        config: Optional[ReaderConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or ReaderConfig()
        self.session = session if session is not None else requests.Session()
        self.session.headers.update(self.default_headers())

    def default_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.config.user_agent,
            "Accept": DEFAULT_ACCEPT,
            "Accept-Language": self.config.accept_language,
            "Accept-Encoding": DEFAULT_ACCEPT_ENCODING,
        }

    def hardened_headers(self, referrer: Optional[str]) -> Dict[str, str]:
        headers = {
            "Accept": DEFAULT_ACCEPT,
            "Accept-Language": self.config.accept_language,
            "Accept-Encoding": DEFAULT_ACCEPT_ENCODING,
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }
        if referrer:
            headers["Referer"] = referrer
        return headers

    @property
    def cookies(self) -> requests.cookies.RequestsCookieJar:
        return self.session.cookies

    def get(
        self,
        url: str,
        referrer: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        *,
        decode: bool = True,
    ) -> FetchResult:
        """GET ``url`` and return the normalized response.

        Raises :class:`NetworkError` on timeouts, connection failures, and
        non-2xx statuses.
        """
        request_headers = dict(headers or {})
        if referrer:
            request_headers.setdefault("Referer", referrer)
        try:
            with self.session.get(
                url,
                headers=request_headers,
                timeout=self.config.timeout,
                allow_redirects=True,
                stream=True,
            ) as resp:
                status = resp.status_code
                final_url = resp.url or url
                content_type = resp.headers.get("Content-Type", "")
                content_encoding = resp.headers.get("Content-Encoding", "")
                raw = resp.raw.read(decode_content=False)
        except (requests.RequestException, Urllib3HTTPError, OSError) as exc:
            raise NetworkError(f"GET {url} failed: {exc}", url=url) from exc

        if not 200 <= status < 300:
            raise NetworkError(f"GET {url} returned HTTP {status}", url=url, status=status)

        body = decompress(raw or b"", content_encoding)
        text, encoding = "", ""
        if decode:
            text, encoding = decode_body(body, content_type)
        logger.debug(
            "GET %s -> %d (%d bytes, type=%s, encoding=%s)",
            url,
            status,
            len(body),
            content_type or "-",
            content_encoding or "identity",
        )
        return FetchResult(
            url=final_url,
            status=status,
            raw_bytes=body,
            content_type=content_type,
            content_encoding=content_encoding,
            decoded_text=text,
            encoding_used=encoding,
        )

    def get_text(self, url: str, referrer: Optional[str] = None) -> Optional[str]:
        """Return the decoded body of ``url``, or ``None`` if the request fails."""
        try:
            return self.get(url, referrer=referrer).decoded_text
        except NetworkError as exc:
            logger.debug("Fetch of %s failed: %s", url, exc)
            return None

    def close(self) -> None:
        self.session.close()


def _inflate(data: bytes, encoding: str) -> bytes:
    try:
        if encoding in ("gzip", "x-gzip"):
            return gzip.decompress(data)
        try:
            return zlib.decompress(data)
        except zlib.error:
            return zlib.decompress(data, -zlib.MAX_WBITS)
    except (OSError, EOFError, zlib.error) as exc:
        raise DecodeError(f"{encoding} payload could not be decompressed: {exc}") from exc


def decompress(data: bytes, content_encoding: Optional[str]) -> bytes:
    """Undo gzip/deflate content encodings; anything else passes through."""
    if not data or not content_encoding:
        return data
    for token in content_encoding.split(","):
        encoding = token.strip().lower()
        if encoding not in ("gzip", "x-gzip", "deflate", "x-deflate"):
            continue
        try:
            return _inflate(data, encoding)
        except DecodeError as exc:
            logger.debug("Keeping body as-is: %s", exc)
            return data
    return data


def charset_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    match = _CHARSET_PATTERN.search(content_type)
    if not match:
        return None
    charset = match.group(1).strip().strip("\"' ")
    return charset or None


def decode_body(data: bytes, content_type: Optional[str]) -> Tuple[str, str]:
    """Decode with the declared charset when it is known, else UTF-8."""
    encoding = "utf-8"
    charset = charset_from_content_type(content_type)
    if charset:
        try:
            encoding = codecs.lookup(charset).name
        except LookupError:
            logger.debug("Unknown charset %r; decoding as UTF-8", charset)
    try:
        return data.decode(encoding, errors="replace"), encoding
    except (LookupError, UnicodeError):
        return data.decode("utf-8", errors="replace"), "utf-8"


def looks_like_binary(text: Optional[str], sample_chars: int = 2048, ratio: float = 0.15) -> bool:
    """True when the start of ``text`` is mostly replacement or control characters."""
    if not text:
        return True
    sample = text[:sample_chars]
    bad = 0
    for char in sample:
        if char == REPLACEMENT_CHAR:
            bad += 1
        elif char not in _ALLOWED_CONTROL and unicodedata.category(char) == "Cc":
            bad += 1
    return bad / len(sample) > ratio


def fetch_page(
    transport: Transport,
    url: str,
    referrer: Optional[str] = None,
) -> FetchResult:
    """Fetch a page, retrying once with hardened headers if it looks binary.

    The retry's result is returned as-is; there is no second retry. If the
    retry itself fails, the first response is kept.
    """
    config = transport.config
    result = transport.get(url, referrer=referrer)
    if not looks_like_binary(result.decoded_text, config.binary_sample_chars, config.binary_ratio):
        return result

    logger.info("Response from %s looks binary; retrying with hardened headers", url)
    try:
        return transport.get(url, headers=transport.hardened_headers(referrer or url))
    except NetworkError as exc:
        logger.warning("Hardened retry of %s failed: %s", url, exc)
        return result
