from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from .errors import CrawlPolicyError
from .patterns import MatchResult, URLPatternMatcher
from .robots import RobotsPolicyResolver
from .sitemaps import SitemapDiscoverer, SitemapEntry
from .urls import UrlScope, host_of, normalize_url, origin_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveredUrl:
    url: str
    source: str
    pattern: str | None = None
    params: dict[str, str] = field(default_factory=dict)
    activities: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    crawl_delay_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "source": self.source,
            "pattern": self.pattern,
            "params": dict(self.params),
            "activities": list(self.activities),
            "metadata": dict(self.metadata),
            "crawl_delay_ms": self.crawl_delay_ms,
        }


def follows_pattern(match: MatchResult | None, follow_patterns: Iterable[str]) -> bool:
    wanted = set(follow_patterns)
    if not wanted:
        return True
    if match is None:
        return False
    if match.is_default:
        return "default" in wanted
    return match.pattern in wanted


def gather_sitemap_urls(
    origin: str,
    sitemaps: SitemapDiscoverer,
    *,
    robots: RobotsPolicyResolver | None = None,
    sitemap_urls: Iterable[str] = (),
    auto_discover: bool = True,
) -> list[str]:
    """Explicit sitemap URLs, then robots.txt ``Sitemap:`` lines.

    Falls back to ``/sitemap.xml`` when neither yields anything.
    """

    urls = list(sitemap_urls)
    if auto_discover:
        if robots is not None:
            urls.extend(robots.get_sitemaps(origin))
        else:
            urls.extend(sitemaps.get_sitemaps_from_robots(f"{origin}/robots.txt"))
    if not urls:
        urls.append(f"{origin}/sitemap.xml")
    return list(dict.fromkeys(urls))


def _entry_metadata(entry: SitemapEntry, match: MatchResult | None) -> dict[str, Any]:
    metadata: dict[str, Any] = dict(match.metadata) if match else {}
    metadata.update(
        from_sitemap=True,
        lastmod=entry.lastmod,
        changefreq=entry.changefreq,
        priority=entry.priority,
        title=entry.title,
    )
    return metadata


def discover_from_sitemaps(
    base_url: str,
    sitemaps: SitemapDiscoverer,
    *,
    robots: RobotsPolicyResolver | None = None,
    matcher: URLPatternMatcher | None = None,
    scope: UrlScope | None = None,
    sitemap_urls: Iterable[str] = (),
    auto_discover: bool = True,
    follow_patterns: Iterable[str] = (),
) -> list[DiscoveredUrl]:
    """Enumerate crawlable URLs for ``base_url`` from its sitemaps.

    Each URL is scope-checked, robots-checked (when ``robots`` is given) and
    classified (when ``matcher`` is given). ``follow_patterns`` keeps only
    URLs whose pattern is listed; ``"default"`` admits fallback matches.
    """

    origin = origin_of(base_url)
    if origin is None:
        raise ValueError(f"not a usable base URL: {base_url!r}")
    if scope is None:
        scope = UrlScope(
            allow_host_suffixes=(host_of(origin) or "",), follow_offsite=False
        )
    follow_patterns = tuple(follow_patterns)

    entries: list[SitemapEntry] = []
    for sitemap_url in gather_sitemap_urls(
        origin,
        sitemaps,
        robots=robots,
        sitemap_urls=sitemap_urls,
        auto_discover=auto_discover,
    ):
        try:
            entries.extend(sitemaps.parse(sitemap_url))
        except CrawlPolicyError as e:
            logger.warning("Skipping sitemap %s: %s", sitemap_url, e)

    seen: set[str] = set()
    found: list[DiscoveredUrl] = []
    blocked = 0
    for entry in entries:
        try:
            url = normalize_url(entry.url)
        except ValueError:
            logger.debug("Skipping unparsable sitemap URL %r", entry.url)
            continue
        if url in seen or not scope.is_allowed(url):
            continue
        seen.add(url)

        crawl_delay_ms = None
        if robots is not None:
            decision = robots.is_allowed(url)
            if not decision.allowed:
                blocked += 1
                continue
            crawl_delay_ms = decision.crawl_delay_ms

        match = matcher.match(url) if matcher is not None else None
        if not follows_pattern(match, follow_patterns):
            continue

        found.append(
            DiscoveredUrl(
                url=url,
                source=entry.source,
                pattern=match.pattern if match else None,
                params=dict(match.params) if match else {},
                activities=list(match.activities) if match else [],
                metadata=_entry_metadata(entry, match),
                crawl_delay_ms=crawl_delay_ms,
            )
        )

    logger.info(
        "Discovered %d URLs for %s (%d blocked by robots.txt)",
        len(found),
        origin,
        blocked,
    )
    return found
