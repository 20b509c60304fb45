from __future__ import annotations

import importlib.util
import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Protocol
from urllib.parse import urlparse

from .context import CrawlContext
from .errors import CrawlPolicyError, FetchError
from .http_client import Fetcher, HttpClient
from .urls import origin_of

logger = logging.getLogger(__name__)

ROBOTS_DIRECTIVES = {"user-agent", "allow", "disallow", "crawl-delay", "sitemap"}

SOURCE_ROBOTS_TXT = "robots-txt"
SOURCE_NO_ROBOTS_TXT = "no-robots-txt"
SOURCE_NO_MATCHING_AGENT = "no-matching-agent"
SOURCE_ERROR = "error"


def iter_directives(raw_text: str) -> Iterator[tuple[str, str]]:
    """Yield ``(directive, value)`` pairs with comments stripped.

    Directive names are lowercased; unknown directives are skipped.
    """

    for line in raw_text.splitlines():
        if "#" in line:
            line = line.split("#", 1)[0]
        line = line.strip()
        if not line:
            continue

        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        if key in ROBOTS_DIRECTIVES:
            yield key, value.strip()


def resolve_agent(agents: Iterable[str], user_agent: str) -> str | None:
    """Pick the group name that governs ``user_agent``.

    Order: exact (case-insensitive) token, then substring containment in
    either direction, then ``*``. ``None`` when nothing applies.
    """

    token = (user_agent or "").strip().lower()
    names = [a for a in agents if a]
    if token in names:
        return token
    if token:
        for name in names:
            if name != "*" and (name in token or token in name):
                return name
    if "*" in names:
        return "*"
    return None


@dataclass(frozen=True)
class RobotsPattern:
    directive: str
    pattern: str
    specificity: int
    regex: re.Pattern[str]

    def matches(self, path: str) -> bool:
        return self.regex.match(path) is not None


def compile_robots_pattern(directive: str, value: str) -> RobotsPattern:
    """Compile an Allow/Disallow value.

    ``*`` matches any sequence, a trailing ``$`` anchors the end, and
    everything else is literal with an implicit trailing wildcard.
    Specificity is the count of literal characters.
    """

    anchored = value.endswith("$")
    body = value[:-1] if anchored else value
    regex = "".join(".*" if ch == "*" else re.escape(ch) for ch in body)
    if anchored:
        regex += "$"
    return RobotsPattern(
        directive=directive,
        pattern=value,
        specificity=len(body.replace("*", "")),
        regex=re.compile(regex, re.DOTALL),
    )


def _path_for(url: str) -> str:
    if url.startswith("/"):
        return url
    parsed = urlparse(url)
    path = parsed.path or "/"
    if parsed.query:
        path += "?" + parsed.query
    return path


@dataclass
class RobotsGroup:
    allow: list[RobotsPattern] = field(default_factory=list)
    disallow: list[RobotsPattern] = field(default_factory=list)
    crawl_delay_ms: int | None = None


class RobotsBackend(Protocol):
    """Contract shared by robots.txt parsing backends.

    ``user_agent`` arguments are group names already picked by
    :func:`resolve_agent`.
    """

    agents: list[str]

    def is_allowed(self, url: str, user_agent: str) -> bool: ...

    def get_sitemaps(self) -> list[str]: ...

    def get_crawl_delay(self, user_agent: str) -> int | None: ...


class RobotsRules:
    """robots.txt rules keyed by lowercased user-agent token.

    Consecutive ``User-agent`` lines share the rules that follow them; a
    ``User-agent`` line after rules starts a new group. Repeated groups for
    the same token are merged.
    """

    def __init__(self, raw_text: str) -> None:
        self.groups: dict[str, RobotsGroup] = {}
        self.sitemaps: list[str] = []

        current: list[str] = []
        saw_rules = False
        for key, value in iter_directives(raw_text):
            if key == "user-agent":
                if saw_rules:
                    current = []
                    saw_rules = False
                agent = value.lower()
                if agent:
                    current.append(agent)
                    self.groups.setdefault(agent, RobotsGroup())
                continue

            if key == "sitemap":
                if value:
                    self.sitemaps.append(value)
                continue

            saw_rules = True
            if not current or not value:
                continue

            if key == "crawl-delay":
                try:
                    seconds = float(value)
                except ValueError:
                    continue
                if seconds < 0:
                    continue
                for agent in current:
                    self.groups[agent].crawl_delay_ms = int(round(seconds * 1000))
                continue

            compiled = compile_robots_pattern(key, value)
            for agent in current:
                group = self.groups[agent]
                (group.allow if key == "allow" else group.disallow).append(compiled)

    @property
    def agents(self) -> list[str]:
        return list(self.groups)

    def matched_rule(self, url: str, user_agent: str) -> RobotsPattern | None:
        group = self.groups.get(user_agent)
        if group is None:
            return None

        path = _path_for(url)
        best: RobotsPattern | None = None
        for rule in [*group.disallow, *group.allow]:
            if not rule.matches(path):
                continue
            # Equal specificity goes to Allow.
            if (
                best is None
                or rule.specificity > best.specificity
                or (
                    rule.specificity == best.specificity and rule.directive == "allow"
                )
            ):
                best = rule
        return best

    def is_allowed(self, url: str, user_agent: str) -> bool:
        rule = self.matched_rule(url, user_agent)
        return rule is None or rule.directive == "allow"

    def get_sitemaps(self) -> list[str]:
        return list(self.sitemaps)

    def get_crawl_delay(self, user_agent: str) -> int | None:
        group = self.groups.get(user_agent)
        return group.crawl_delay_ms if group else None


def protego_available() -> bool:
    return importlib.util.find_spec("protego") is not None


def select_backend(name: str = "auto") -> Callable[[str], RobotsBackend]:
    if name not in {"auto", "native", "protego"}:
        raise ValueError(f"Unknown robots backend: {name!r}")
    if name == "protego" or (name == "auto" and protego_available()):
        from .robots_protego import ProtegoRobotsRules

        return ProtegoRobotsRules
    return RobotsRules


@dataclass(frozen=True)
class RobotsDecision:
    allowed: bool
    source: str
    crawl_delay_ms: int | None = None
    matched_rule: dict[str, str] | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "allowed": self.allowed,
            "source": self.source,
            "crawl_delay_ms": self.crawl_delay_ms,
            "matched_rule": self.matched_rule,
        }


@dataclass
class RobotsConfig:
    user_agent: str = "crawl-policy"
    default_allow: bool = True
    cache_ttl_s: float = 3600
    fetch_timeout_s: float = 10
    backend: str = "auto"


@dataclass
class _CacheEntry:
    rules: RobotsBackend | None
    fetched_at: float


@dataclass
class RobotsCache:
    """In-memory robots rules per domain; ``None`` rules mean no usable file."""

    ttl_s: float
    _entries: dict[str, _CacheEntry] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self._entries)

    def domains(self) -> list[str]:
        return list(self._entries)

    def load(self, domain: str, *, now: float) -> _CacheEntry | None:
        entry = self._entries.get(domain)
        if entry is None or now - entry.fetched_at >= self.ttl_s:
            return None
        return entry

    def store(self, domain: str, rules: RobotsBackend | None, *, now: float) -> None:
        self._entries[domain] = _CacheEntry(rules=rules, fetched_at=now)

    def clear(self, domain: str | None = None) -> None:
        if domain is None:
            self._entries.clear()
        else:
            self._entries.pop(domain.lower(), None)


class RobotsPolicyResolver:
    """Answers allow/deny and crawl-delay questions from a site's robots.txt.

    ``is_allowed`` never raises: fetch and parse failures degrade to the
    configured default policy, reported through ``RobotsDecision.source``.
    """

    def __init__(
        self,
        config: RobotsConfig | None = None,
        *,
        http: Fetcher | None = None,
        fetcher: Callable[[str], str | bytes] | None = None,
        context: CrawlContext | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cfg = config or RobotsConfig()
        if self.cfg.backend == "protego" and not protego_available():
            raise ValueError("robots backend 'protego' requested but not installed")

        self._http = http
        self._fetcher = fetcher
        self._context = context
        self._clock = clock
        self._backend: Callable[[str], RobotsBackend] | None = None
        self.cache = RobotsCache(ttl_s=self.cfg.cache_ttl_s)
        self._stats: Counter[str] = Counter()

    @property
    def backend(self) -> Callable[[str], RobotsBackend]:
        if self._backend is None:
            self._backend = select_backend(self.cfg.backend)
            logger.debug("robots backend: %s", self._backend.__name__)
        return self._backend

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    def set_fetcher(self, fetcher: Callable[[str], str | bytes] | None) -> None:
        self._fetcher = fetcher

    def is_allowed(self, url: str) -> RobotsDecision:
        self._stats["checks"] += 1
        origin = origin_of(url) if "://" in (url or "") else None
        if origin is None:
            self._stats["errors"] += 1
            return RobotsDecision(allowed=self.cfg.default_allow, source=SOURCE_ERROR)

        rules = self._rules_for(origin)
        if rules is None:
            return RobotsDecision(
                allowed=self.cfg.default_allow, source=SOURCE_NO_ROBOTS_TXT
            )

        try:
            agent = resolve_agent(rules.agents, self.cfg.user_agent)
            if agent is None:
                return RobotsDecision(allowed=True, source=SOURCE_NO_MATCHING_AGENT)

            allowed = rules.is_allowed(url, agent)
            crawl_delay_ms = rules.get_crawl_delay(agent)
            matched = None
            explain = getattr(rules, "matched_rule", None)
            if callable(explain):
                rule = explain(url, agent)
                if rule is not None:
                    matched = {"type": rule.directive, "pattern": rule.pattern}
        except (ValueError, TypeError, re.error) as e:
            logger.warning("robots evaluation failed for %s: %s", url, e)
            self._stats["errors"] += 1
            return RobotsDecision(allowed=self.cfg.default_allow, source=SOURCE_ERROR)

        return RobotsDecision(
            allowed=allowed,
            source=SOURCE_ROBOTS_TXT,
            crawl_delay_ms=crawl_delay_ms,
            matched_rule=matched,
        )

    def get_sitemaps(self, url_or_domain: str) -> list[str]:
        origin = origin_of(url_or_domain)
        rules = self._rules_for(origin) if origin else None
        return rules.get_sitemaps() if rules else []

    def get_crawl_delay(self, url_or_domain: str) -> int | None:
        origin = origin_of(url_or_domain)
        rules = self._rules_for(origin) if origin else None
        if rules is None:
            return None
        agent = resolve_agent(rules.agents, self.cfg.user_agent)
        return rules.get_crawl_delay(agent) if agent else None

    def preload(self, url_or_domain: str) -> None:
        origin = origin_of(url_or_domain)
        if origin:
            self._rules_for(origin)

    def clear_cache(self, domain: str | None = None) -> None:
        self.cache.clear(domain)

    def get_cache_stats(self) -> dict[str, object]:
        return {"size": len(self.cache), "domains": self.cache.domains()}

    def _rules_for(self, origin: str) -> RobotsBackend | None:
        domain = urlparse(origin).netloc.lower()
        now = self._clock()
        cached = self.cache.load(domain, now=now)
        if cached is not None:
            self._stats["cache_hits"] += 1
            return cached.rules

        robots_url = f"{origin}/robots.txt"
        rules: RobotsBackend | None
        try:
            text = self._fetch(robots_url)
            rules = self.backend(text)
            self._stats["fetched"] += 1
        except FetchError as e:
            if e.status_code is not None:
                logger.debug(
                    "No robots.txt at %s (HTTP %s)", robots_url, e.status_code
                )
            else:
                logger.warning("robots.txt unreachable at %s: %s", robots_url, e)
                self._stats["errors"] += 1
            rules = None
        except (CrawlPolicyError, OSError, UnicodeDecodeError, ValueError) as e:
            logger.warning("robots.txt unusable at %s: %s", robots_url, e)
            self._stats["errors"] += 1
            rules = None

        self.cache.store(domain, rules, now=now)
        return rules

    def _fetch(self, url: str) -> str:
        if self._fetcher is not None:
            try:
                content = self._fetcher(url)
            except Exception as e:
                raise FetchError(str(e), url=url) from e
            if isinstance(content, bytes):
                return content.decode("utf-8", errors="replace")
            return str(content or "")

        if self._http is None:
            self._http = HttpClient(timeout_s=self.cfg.fetch_timeout_s, max_retries=1)

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
        return res.text
