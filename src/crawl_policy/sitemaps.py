"""Sitemap discovery: XML urlsets and indexes, text lists, RSS and Atom feeds.

Documents are scanned with lenient regular expressions rather than an XML
parser, so truncated or slightly malformed sitemaps still yield every
complete ``<url>`` block they contain.

One top-level :meth:`SitemapDiscoverer.parse` call owns a URL budget shared
by every child sitemap it visits. Once the budget is spent no further
sitemaps are fetched during that call.
"""

from __future__ import annotations

import html
import logging
import re
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from functools import lru_cache
from typing import Any, Callable, Mapping, Union

from .content import SitemapFormat, decode_text, detect_format, inflate_if_gzip
from .context import CrawlContext
from .errors import CrawlPolicyError, FetchError, ParseError
from .http_client import Fetcher, HttpClient
from .manifest import utc_iso

logger = logging.getLogger(__name__)

SOURCE_SITEMAP = "sitemap"
SOURCE_SITEMAP_INDEX = "sitemap-index"
SOURCE_SITEMAP_TXT = "sitemap-txt"
SOURCE_RSS = "rss"
SOURCE_ATOM = "atom"

COMMON_SITEMAP_PATHS = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemap.xml.gz",
    "/sitemaps/sitemap.xml",
    "/sitemap.txt",
    "/feed.xml",
    "/rss.xml",
    "/atom.xml",
    "/feed",
    "/rss",
)

DESCRIPTION_LIMIT = 200

FetcherResult = Union[str, bytes, Mapping[str, Any]]

_CDATA_RE = re.compile(r"^\s*<!\[CDATA\[(.*?)\]\]>\s*$", re.S)
_ROBOTS_SITEMAP_RE = re.compile(r"^\s*sitemap:\s*(.+)", re.I)
_ATOM_LINK_RE = re.compile(r"<link\b[^>]*?\bhref\s*=\s*[\"']([^\"']+)[\"']", re.I)
_ATOM_ALT_LINK_RE = re.compile(
    r"<link\b(?=[^>]*\brel\s*=\s*[\"']alternate[\"'])[^>]*?"
    r"\bhref\s*=\s*[\"']([^\"']+)[\"']",
    re.I,
)


@lru_cache(maxsize=None)
def _block_re(tag: str) -> re.Pattern[str]:
    name = re.escape(tag)
    return re.compile(rf"<{name}(?:\s[^>]*)?>(.*?)</{name}\s*>", re.I | re.S)


@lru_cache(maxsize=None)
def _prefixed_re(tag: str) -> re.Pattern[str]:
    name = re.escape(tag)
    return re.compile(
        rf"<[\w.-]+:{name}(?:\s[^>]*)?>(.*?)</[\w.-]+:{name}\s*>", re.I | re.S
    )


def iter_blocks(content: str, tag: str) -> list[str]:
    return [m.group(1) for m in _block_re(tag).finditer(content)]


def extract_tag(block: str, tag: str) -> str | None:
    """Text of the first ``tag`` element in ``block``, plain name first.

    Falls back to a namespaced ``prefix:tag``. CDATA is unwrapped verbatim;
    other text has entities and character references decoded.
    """

    m = _block_re(tag).search(block) or _prefixed_re(tag).search(block)
    if m is None:
        return None
    raw = m.group(1)
    cdata = _CDATA_RE.match(raw)
    value = cdata.group(1) if cdata else html.unescape(raw)
    value = value.strip()
    return value or None


def _truncate(text: str | None) -> str | None:
    return text[:DESCRIPTION_LIMIT] if text else text


def normalize_feed_date(value: str | None) -> str | None:
    """RFC 822 or ISO-8601 dates to UTC ``YYYY-MM-DDTHH:MM:SSZ``.

    Unparseable values are returned unchanged.
    """

    if not value:
        return value
    dt: datetime | None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        dt = None
    if dt is None:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return utc_iso(dt.timestamp())


@dataclass(frozen=True)
class SitemapImage:
    url: str | None
    title: str | None = None
    caption: str | None = None


@dataclass(frozen=True)
class SitemapVideo:
    url: str | None
    thumbnail_url: str | None = None
    title: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class SitemapEntry:
    url: str
    source: str = SOURCE_SITEMAP
    lastmod: str | None = None
    changefreq: str | None = None
    priority: float | None = None
    title: str | None = None
    description: str | None = None
    type: str | None = None
    images: tuple[SitemapImage, ...] = ()
    videos: tuple[SitemapVideo, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None and v != ()}


@dataclass(frozen=True)
class ProbeResult:
    url: str
    exists: bool
    format: SitemapFormat | None = None


@dataclass
class SitemapConfig:
    user_agent: str = "crawl-policy"
    fetch_timeout_s: float = 30
    max_sitemaps: int = 50
    max_urls: int = 50_000
    follow_sitemap_index: bool = True
    cache_ttl_s: float = 3600
    max_depth: int = 3


def _parse_priority(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_images(block: str) -> tuple[SitemapImage, ...]:
    return tuple(
        SitemapImage(
            url=extract_tag(b, "loc"),
            title=extract_tag(b, "title"),
            caption=extract_tag(b, "caption"),
        )
        for b in iter_blocks(block, "image:image")
    )


def _parse_videos(block: str) -> tuple[SitemapVideo, ...]:
    return tuple(
        SitemapVideo(
            url=extract_tag(b, "content_loc"),
            thumbnail_url=extract_tag(b, "thumbnail_loc"),
            title=extract_tag(b, "title"),
            description=extract_tag(b, "description"),
        )
        for b in iter_blocks(block, "video:video")
    )


def parse_urlset(content: str, *, limit: int) -> list[SitemapEntry]:
    entries: list[SitemapEntry] = []
    for block in iter_blocks(content, "url"):
        loc = extract_tag(block, "loc")
        if not loc:
            continue
        entries.append(
            SitemapEntry(
                url=loc,
                source=SOURCE_SITEMAP,
                lastmod=extract_tag(block, "lastmod"),
                changefreq=extract_tag(block, "changefreq"),
                priority=_parse_priority(extract_tag(block, "priority")),
                images=_parse_images(block),
                videos=_parse_videos(block),
            )
        )
        if len(entries) >= limit:
            break
    return entries


def parse_index(content: str) -> list[SitemapEntry]:
    refs: list[SitemapEntry] = []
    for block in iter_blocks(content, "sitemap"):
        loc = extract_tag(block, "loc")
        if loc:
            refs.append(
                SitemapEntry(
                    url=loc,
                    source=SOURCE_SITEMAP_INDEX,
                    lastmod=extract_tag(block, "lastmod"),
                    type="sitemap",
                )
            )
    return refs


def parse_text_list(content: str, *, limit: int) -> list[SitemapEntry]:
    entries: list[SitemapEntry] = []
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("http://") or line.startswith("https://"):
            entries.append(SitemapEntry(url=line, source=SOURCE_SITEMAP_TXT))
            if len(entries) >= limit:
                break
    return entries


def parse_rss(content: str, *, limit: int) -> list[SitemapEntry]:
    entries: list[SitemapEntry] = []
    for block in iter_blocks(content, "item"):
        link = extract_tag(block, "link")
        if not link:
            continue
        entries.append(
            SitemapEntry(
                url=link,
                source=SOURCE_RSS,
                lastmod=normalize_feed_date(extract_tag(block, "pubDate")),
                title=extract_tag(block, "title"),
                description=_truncate(extract_tag(block, "description")),
            )
        )
        if len(entries) >= limit:
            break
    return entries


def parse_atom(content: str, *, limit: int) -> list[SitemapEntry]:
    entries: list[SitemapEntry] = []
    for block in iter_blocks(content, "entry"):
        m = _ATOM_ALT_LINK_RE.search(block) or _ATOM_LINK_RE.search(block)
        if m is None:
            continue
        updated = extract_tag(block, "updated") or extract_tag(block, "published")
        entries.append(
            SitemapEntry(
                url=html.unescape(m.group(1)).strip(),
                source=SOURCE_ATOM,
                lastmod=normalize_feed_date(updated),
                title=extract_tag(block, "title"),
                description=_truncate(extract_tag(block, "summary")),
            )
        )
        if len(entries) >= limit:
            break
    return entries


@dataclass
class _CachedSitemap:
    entries: list[SitemapEntry]
    fetched_at: float
    format: SitemapFormat
    recursive: bool = True


@dataclass
class _UrlBudget:
    limit: int
    used: int = 0

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit

    def take(self, entries: list[SitemapEntry]) -> list[SitemapEntry]:
        taken = entries[: max(self.limit - self.used, 0)]
        self.used += len(taken)
        return taken


@dataclass
class _Traversal:
    recursive: bool
    max_depth: int
    budget: _UrlBudget
    seen: set[str] = field(default_factory=set)


class SitemapDiscoverer:
    """Fetch and parse sitemap documents into :class:`SitemapEntry` lists.

    Custom fetchers receive the URL and return a string, bytes, or a mapping
    with ``content`` and ``content_type`` (``contentType`` is also accepted).
    """

    def __init__(
        self,
        config: SitemapConfig | None = None,
        *,
        http: Fetcher | None = None,
        fetcher: Callable[[str], FetcherResult] | None = None,
        context: CrawlContext | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cfg = config or SitemapConfig()
        self._http = http
        self._fetcher = fetcher
        self._context = context
        self._clock = clock
        self._cache: dict[str, _CachedSitemap] = {}
        self._stats: Counter[str] = Counter()

    def set_fetcher(self, fetcher: Callable[[str], FetcherResult] | None) -> None:
        self._fetcher = fetcher

    def parse(
        self,
        url: str,
        *,
        recursive: bool = True,
        max_depth: int | None = None,
    ) -> list[SitemapEntry]:
        """Parse ``url``, following index children when ``recursive``.

        Raises :class:`FetchError` or :class:`ParseError` when ``url`` itself
        cannot be fetched or recognized. Failing children are logged, counted
        in ``errors`` and skipped.
        """

        walk = _Traversal(
            recursive=recursive and self.cfg.follow_sitemap_index,
            max_depth=self.cfg.max_depth if max_depth is None else max_depth,
            budget=_UrlBudget(limit=self.cfg.max_urls),
        )
        return self._parse(url, walk, depth=0)

    def get_sitemaps_from_robots(self, robots_url: str) -> list[str]:
        try:
            content, _ = self._fetch(robots_url)
        except CrawlPolicyError as e:
            logger.debug("No sitemap lines from %s: %s", robots_url, e)
            return []
        found: list[str] = []
        for line in content.splitlines():
            m = _ROBOTS_SITEMAP_RE.match(line)
            if m and m.group(1).strip():
                found.append(m.group(1).strip())
        return found

    def probe_common_locations(self, base_url: str) -> list[ProbeResult]:
        base = base_url.rstrip("/")
        results: list[ProbeResult] = []
        for path in COMMON_SITEMAP_PATHS:
            url = base + path
            try:
                content, content_type = self._fetch(url)
            except CrawlPolicyError as e:
                logger.debug("probe %s: %s", url, e)
                results.append(ProbeResult(url=url, exists=False))
                continue
            fmt = detect_format(url, content, content_type=content_type)
            results.append(ProbeResult(url=url, exists=True, format=fmt))
        return results

    def get_stats(self) -> dict[str, int]:
        return {
            "sitemaps_parsed": self._stats["sitemaps_parsed"],
            "urls_extracted": self._stats["urls_extracted"],
            "errors": self._stats["errors"],
            "cache_size": len(self._cache),
        }

    def clear_cache(self, url: str | None = None) -> None:
        if url is None:
            self._cache.clear()
        else:
            self._cache.pop(url, None)

    def reset_stats(self) -> None:
        self._stats.clear()

    def _cached(self, url: str, walk: _Traversal) -> _CachedSitemap | None:
        entry = self._cache.get(url)
        if entry is None or self._clock() - entry.fetched_at >= self.cfg.cache_ttl_s:
            return None
        stale_walk = entry.recursive != walk.recursive
        if entry.format is SitemapFormat.XML_INDEX and stale_walk:
            return None
        return entry

    def _parse(self, url: str, walk: _Traversal, *, depth: int) -> list[SitemapEntry]:
        cached = self._cached(url, walk)
        if cached is not None:
            return walk.budget.take(cached.entries)
        if depth > walk.max_depth:
            logger.debug("Skipping %s: depth %d > %d", url, depth, walk.max_depth)
            return []
        if walk.budget.exhausted:
            return []

        try:
            content, content_type = self._fetch(url)
            fmt = detect_format(url, content, content_type=content_type)
            if fmt is SitemapFormat.XML_INDEX:
                parsed = entries = self._parse_index(url, content, walk, depth=depth)
            else:
                parsed = self._parse_leaf(url, content, fmt)
                entries = walk.budget.take(parsed)
                self._stats["urls_extracted"] += len(entries)
        except CrawlPolicyError:
            self._stats["errors"] += 1
            raise

        self._stats["sitemaps_parsed"] += 1
        # An index cut short by the URL cap is incomplete; leave it uncached.
        if fmt is not SitemapFormat.XML_INDEX or not walk.budget.exhausted:
            self._cache[url] = _CachedSitemap(
                entries=parsed,
                fetched_at=self._clock(),
                format=fmt,
                recursive=walk.recursive,
            )
        return entries

    def _parse_leaf(
        self, url: str, content: str, fmt: SitemapFormat
    ) -> list[SitemapEntry]:
        limit = self.cfg.max_urls
        if fmt is SitemapFormat.XML_SITEMAP:
            return parse_urlset(content, limit=limit)
        if fmt is SitemapFormat.TEXT:
            return parse_text_list(content, limit=limit)
        if fmt is SitemapFormat.RSS:
            return parse_rss(content, limit=limit)
        if fmt is SitemapFormat.ATOM:
            return parse_atom(content, limit=limit)
        raise ParseError(f"Unknown sitemap format: {fmt.value}", url=url)

    def _parse_index(
        self, url: str, content: str, walk: _Traversal, *, depth: int
    ) -> list[SitemapEntry]:
        refs = parse_index(content)
        if not walk.recursive:
            taken = walk.budget.take(refs)
            self._stats["urls_extracted"] += len(taken)
            return taken

        walk.seen.add(url)
        entries: list[SitemapEntry] = []
        for ref in refs[: self.cfg.max_sitemaps]:
            if walk.budget.exhausted:
                logger.info(
                    "URL cap of %d reached; not fetching %s or later children",
                    walk.budget.limit,
                    ref.url,
                )
                break
            if ref.url in walk.seen:
                logger.debug("Skipping repeated sitemap %s", ref.url)
                continue
            walk.seen.add(ref.url)
            try:
                entries.extend(self._parse(ref.url, walk, depth=depth + 1))
            except CrawlPolicyError as e:
                logger.warning("Skipping child sitemap %s: %s", ref.url, e)
        return entries

    def _fetch(self, url: str) -> tuple[str, str]:
        content_type = ""
        raw: str | bytes
        if self._fetcher is not None:
            try:
                result = self._fetcher(url)
            except Exception as e:
                raise FetchError(str(e), url=url) from e
            if isinstance(result, Mapping):
                raw = result.get("content") or ""
                content_type = str(
                    result.get("content_type") or result.get("contentType") or ""
                )
            else:
                raw = result or ""
        else:
            if self._http is None:
                self._http = HttpClient(
                    timeout_s=self.cfg.fetch_timeout_s, max_retries=1
                )
            if self._context is not None:
                headers = self._context.get_http_client_config(url)["headers"]
            else:
                headers = {"User-Agent": self.cfg.user_agent}

            res = self._http.get(url, headers=headers)
            if self._context is not None:
                self._context.process_response(res, url)
            if not res.ok:
                raise FetchError(
                    f"HTTP {res.status_code}", url=url, status_code=res.status_code
                )
            raw = res.body
            content_type = res.content_type

        if isinstance(raw, (bytes, bytearray)):
            body = inflate_if_gzip(url, content_type=content_type, body=bytes(raw))
            return decode_text(body), content_type
        return str(raw), content_type
