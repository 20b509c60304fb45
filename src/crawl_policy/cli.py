from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

import requests

from .context import CrawlContext, CrawlContextConfig
from .discovery import discover_from_sitemaps
from .errors import CrawlPolicyError
from .http_client import HttpClient
from .manifest import DiscoveryManifest
from .patterns import URLPatternMatcher
from .robots import RobotsConfig, RobotsPolicyResolver
from .sitemaps import SitemapConfig, SitemapDiscoverer
from .state import SessionStore
from .urls import UrlScope, host_of

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "crawl-policy"


def _emit(obj: dict[str, Any]) -> None:
    print(json.dumps(obj, ensure_ascii=False, default=str))


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--user-agent", default=DEFAULT_USER_AGENT)
    p.add_argument("--timeout", type=float, default=30)
    p.add_argument(
        "--session",
        type=Path,
        default=None,
        help="Directory holding session.json; loaded before and saved after",
    )
    p.add_argument("--verbose", "-v", action="store_true")


def _add_sitemap_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--max-urls", type=int, default=50_000)
    p.add_argument("--max-depth", type=int, default=3)
    p.add_argument("--max-sitemaps", type=int, default=50)
    p.add_argument("--no-recursive", action="store_true")


def _load_patterns(path: Path) -> URLPatternMatcher:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object of named patterns")
    return URLPatternMatcher(data)


def _open_session(args: argparse.Namespace) -> CrawlContext | None:
    if args.session is None:
        return None
    context = SessionStore(args.session).load()
    if context is None:
        context = CrawlContext(CrawlContextConfig(user_agent=args.user_agent))
    return context


def _sitemap_config(args: argparse.Namespace) -> SitemapConfig:
    return SitemapConfig(
        user_agent=args.user_agent,
        fetch_timeout_s=float(args.timeout),
        max_sitemaps=int(args.max_sitemaps),
        max_urls=int(args.max_urls),
        follow_sitemap_index=not bool(args.no_recursive),
        max_depth=int(args.max_depth),
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="crawl-policy")
    sub = parser.add_subparsers(dest="cmd", required=True)

    robots_p = sub.add_parser("robots", help="Check URLs against robots.txt")
    robots_p.add_argument("url", nargs="+")
    robots_p.add_argument(
        "--backend", choices=("auto", "native", "protego"), default="auto"
    )
    robots_p.add_argument(
        "--deny-by-default",
        action="store_true",
        help="Treat sites without a usable robots.txt as disallowed",
    )
    _add_common_args(robots_p)

    sitemap_p = sub.add_parser("sitemap", help="Parse a sitemap, index or feed")
    sitemap_p.add_argument("url")
    _add_sitemap_args(sitemap_p)
    _add_common_args(sitemap_p)

    probe_p = sub.add_parser("probe", help="Probe common sitemap and feed paths")
    probe_p.add_argument("base_url")
    _add_common_args(probe_p)

    match_p = sub.add_parser("match", help="Classify URLs with a patterns file")
    match_p.add_argument("--patterns", type=Path, required=True)
    match_p.add_argument("url", nargs="+")
    match_p.add_argument("--verbose", "-v", action="store_true")

    discover_p = sub.add_parser(
        "discover",
        help="Enumerate crawlable URLs from a site's sitemaps",
    )
    discover_p.add_argument("base_url")
    discover_p.add_argument(
        "--sitemap",
        action="append",
        default=[],
        help="Repeatable; sitemap URLs to parse before robots.txt ones",
    )
    discover_p.add_argument("--no-auto-discover", action="store_true")
    discover_p.add_argument("--no-robots", action="store_true")
    discover_p.add_argument("--patterns", type=Path, default=None)
    discover_p.add_argument(
        "--follow-pattern",
        action="append",
        default=[],
        help="Repeatable; keep only these pattern names ('default' for fallback)",
    )
    discover_p.add_argument("--follow-offsite", action="store_true")
    discover_p.add_argument(
        "--allow-host-suffix",
        action="append",
        default=[],
        help="Repeatable; defaults to the base URL's host",
    )
    discover_p.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Also write discover.jsonl and discover.json into this directory",
    )
    _add_sitemap_args(discover_p)
    _add_common_args(discover_p)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.cmd == "match":
        try:
            matcher = _load_patterns(args.patterns)
        except (OSError, ValueError) as e:
            print(str(e), file=sys.stderr)
            return 2
        for url in args.url:
            result = matcher.match(url)
            _emit({"url": url, "match": result.to_dict() if result else None})
        return 0

    try:
        context = _open_session(args)
    except (OSError, ValueError) as e:
        print(str(e), file=sys.stderr)
        return 2
    http = HttpClient(
        requests.Session(),
        timeout_s=float(args.timeout),
        proxy=context.proxy if context else None,
    )

    try:
        code = _run(args, http=http, context=context)
    except (CrawlPolicyError, OSError, ValueError) as e:
        print(str(e), file=sys.stderr)
        return 2

    if context is not None:
        SessionStore(args.session).save(context)
    return code


def _run(
    args: argparse.Namespace, *, http: HttpClient, context: CrawlContext | None
) -> int:
    if args.cmd == "robots":
        resolver = RobotsPolicyResolver(
            RobotsConfig(
                user_agent=args.user_agent,
                default_allow=not bool(args.deny_by_default),
                fetch_timeout_s=float(args.timeout),
                backend=args.backend,
            ),
            http=http,
            context=context,
        )
        for url in args.url:
            decision = resolver.is_allowed(url)
            _emit({"url": url, **decision.to_dict()})
        return 0

    if args.cmd == "sitemap":
        discoverer = SitemapDiscoverer(
            _sitemap_config(args), http=http, context=context
        )
        for entry in discoverer.parse(args.url, recursive=not args.no_recursive):
            _emit(entry.to_dict())
        logger.info("sitemap stats: %s", discoverer.get_stats())
        return 0

    if args.cmd == "probe":
        discoverer = SitemapDiscoverer(
            SitemapConfig(
                user_agent=args.user_agent, fetch_timeout_s=float(args.timeout)
            ),
            http=http,
            context=context,
        )
        hits = 0
        for result in discoverer.probe_common_locations(args.base_url):
            hits += int(result.exists)
            _emit(
                {
                    "url": result.url,
                    "exists": result.exists,
                    "format": result.format.value if result.format else None,
                }
            )
        return 0 if hits else 3

    if args.cmd == "discover":
        discoverer = SitemapDiscoverer(
            _sitemap_config(args), http=http, context=context
        )
        resolver = None
        if not args.no_robots:
            resolver = RobotsPolicyResolver(
                RobotsConfig(
                    user_agent=args.user_agent, fetch_timeout_s=float(args.timeout)
                ),
                http=http,
                context=context,
            )
        matcher = _load_patterns(args.patterns) if args.patterns else None
        suffixes = tuple(args.allow_host_suffix) or (host_of(args.base_url) or "",)
        found = discover_from_sitemaps(
            args.base_url,
            discoverer,
            robots=resolver,
            matcher=matcher,
            scope=UrlScope(suffixes, follow_offsite=bool(args.follow_offsite)),
            sitemap_urls=args.sitemap,
            auto_discover=not bool(args.no_auto_discover),
            follow_patterns=args.follow_pattern,
        )

        manifest = DiscoveryManifest(args.out, args.base_url) if args.out else None
        for item in found:
            _emit(item.to_dict())
            if manifest is not None:
                manifest.record(item)
        if manifest is not None:
            manifest.finish(
                sitemaps=discoverer.get_stats(),
                robots=resolver.stats if resolver else None,
                patterns=matcher.stats if matcher else None,
                context=context.stats if context else None,
            )
        return 0

    return 2
