"""crawl-policy core library.

This package is the discovery-and-policy layer of a crawler: it decides which
URLs a site exposes (sitemaps, feeds), whether they may be fetched
(robots.txt), which session identity accompanies each fetch (headers and
cookies), and how each URL is classified for downstream handling.

Fetching pages, scheduling, and extraction live outside this package.
"""

from __future__ import annotations

from .context import CrawlContext, CrawlContextConfig
from .errors import CrawlPolicyError, DriverUnavailableError, FetchError, ParseError
from .patterns import MatchResult, URLPatternMatcher
from .robots import RobotsConfig, RobotsDecision, RobotsPolicyResolver
from .sitemaps import SitemapConfig, SitemapDiscoverer, SitemapEntry

__all__ = [
    "CrawlContext",
    "CrawlContextConfig",
    "CrawlPolicyError",
    "DriverUnavailableError",
    "FetchError",
    "MatchResult",
    "ParseError",
    "RobotsConfig",
    "RobotsDecision",
    "RobotsPolicyResolver",
    "SitemapConfig",
    "SitemapDiscoverer",
    "SitemapEntry",
    "URLPatternMatcher",
    "__version__",
]

__version__ = "0.1.0"
