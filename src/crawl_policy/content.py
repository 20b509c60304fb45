from __future__ import annotations

import gzip
import logging
import re
import zlib
from enum import Enum
from typing import Final
from urllib.parse import urlparse

from .errors import ParseError

logger = logging.getLogger(__name__)

GZIP_MAGIC: Final[bytes] = b"\x1f\x8b"

_GZIP_CONTENT_TYPES: Final[tuple[str, ...]] = (
    "application/gzip",
    "application/x-gzip",
)

_ATOM_NAMESPACE_RE: Final[re.Pattern[str]] = re.compile(
    r"""xmlns(?::\w+)?\s*=\s*["']http://www\.w3\.org/2005/atom["']"""
)


class SitemapFormat(str, Enum):
    XML_INDEX = "xml-index"
    XML_SITEMAP = "xml-sitemap"
    RSS = "rss"
    ATOM = "atom"
    TEXT = "text"
    UNKNOWN = "unknown"


def _path_lower(url: str) -> str:
    try:
        return urlparse(url).path.lower()
    except ValueError:
        return url.lower()


def gzip_hinted(url: str, content_type: str | None) -> bool:
    if _path_lower(url).endswith(".gz"):
        return True
    ct = (content_type or "").split(";", 1)[0].strip().lower()
    return ct in _GZIP_CONTENT_TYPES or "gzip" in ct


def inflate_if_gzip(url: str, *, content_type: str | None, body: bytes) -> bytes:
    """Inflate gzip payloads identified by magic bytes, extension or type.

    A hinted payload without the magic number was already decoded by the
    transport and is returned unchanged.
    """

    if not body.startswith(GZIP_MAGIC):
        if gzip_hinted(url, content_type):
            logger.debug("%s hinted as gzip but is not compressed", url)
        return body
    try:
        return gzip.decompress(body)
    except (OSError, EOFError, zlib.error) as e:
        raise ParseError(f"Failed to decompress gzip: {e}", url=url) from e


def decode_text(body: bytes | str) -> str:
    if isinstance(body, str):
        return body
    return body.decode("utf-8", errors="replace").lstrip("\ufeff")


def looks_like_url_list(text: str) -> bool:
    """True when at least half of the first ten non-empty lines are URLs."""

    lines = [ln.strip() for ln in text.splitlines() if ln.strip()][:10]
    if not lines:
        return False
    url_count = sum(
        1 for ln in lines if ln.startswith("http://") or ln.startswith("https://")
    )
    return url_count >= len(lines) * 0.5


def detect_format(
    url: str, text: str, *, content_type: str | None = None
) -> SitemapFormat:
    """Classify a sitemap-like document.

    Rules:
    - Trust document markers first (index, urlset, RSS, Atom).
    - Then the URL extension and the content-type.
    - Finally, sniff a plain list of URLs.
    """

    lowered = text.strip().lower()

    if "<sitemapindex" in lowered:
        return SitemapFormat.XML_INDEX
    if "<urlset" in lowered:
        return SitemapFormat.XML_SITEMAP
    if "<rss" in lowered or "<channel" in lowered:
        return SitemapFormat.RSS
    if "<feed" in lowered and _ATOM_NAMESPACE_RE.search(lowered):
        return SitemapFormat.ATOM

    path = _path_lower(url)
    if path.endswith(".txt"):
        return SitemapFormat.TEXT
    if path.endswith(".rss"):
        return SitemapFormat.RSS
    if path.endswith(".atom"):
        return SitemapFormat.ATOM

    ct = (content_type or "").lower()
    if "rss" in ct:
        return SitemapFormat.RSS
    if "atom" in ct:
        return SitemapFormat.ATOM

    if looks_like_url_list(text):
        return SitemapFormat.TEXT

    return SitemapFormat.UNKNOWN
