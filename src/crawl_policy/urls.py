from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import ParseResult, urlparse, urlunparse

_TRACKING_QUERY_KEYS = {"fbclid", "gclid", "mc_cid", "mc_eid"}
_TRACKING_QUERY_PREFIXES = ("utm_",)


def _is_tracking_param(pair: str) -> bool:
    key = pair.split("=", 1)[0].strip().lower()
    return key in _TRACKING_QUERY_KEYS or key.startswith(_TRACKING_QUERY_PREFIXES)


def normalize_url(raw_url: str) -> str:
    """Normalize a URL for comparison and deduplication.

    - Lowercases scheme + hostname.
    - Strips fragments.
    - Drops tracking query params (``utm_*``, ``gclid``) that create duplicates.
    """

    parsed: ParseResult = urlparse(raw_url)
    scheme = (parsed.scheme or "").lower()
    netloc = (parsed.netloc or "").lower()

    query = "&".join(
        pair
        for pair in parsed.query.split("&")
        if pair and not _is_tracking_param(pair)
    )

    parsed = parsed._replace(
        scheme=scheme,
        netloc=netloc,
        fragment="",
        query=query,
    )
    return urlunparse(parsed)


def normalize_domain(domain: str) -> str:
    return (domain or "").strip().lower().lstrip(".")


def host_of(url: str) -> str | None:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def domain_matches(request_host: str, cookie_domain: str) -> bool:
    """True when ``request_host`` is ``cookie_domain`` or one of its subdomains."""

    request_host = normalize_domain(request_host)
    cookie_domain = normalize_domain(cookie_domain)
    if not request_host or not cookie_domain:
        return False
    return request_host == cookie_domain or request_host.endswith(
        "." + cookie_domain
    )


def origin_of(url_or_domain: str) -> str | None:
    """Return ``scheme://host[:port]`` for a URL or a bare domain."""

    text = (url_or_domain or "").strip()
    if not text:
        return None
    if "://" not in text:
        text = "https://" + text
    try:
        parsed = urlparse(text)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"


@dataclass(frozen=True)
class UrlScope:
    allow_host_suffixes: tuple[str, ...]
    follow_offsite: bool

    def is_allowed(self, url: str) -> bool:
        if self.follow_offsite:
            return True
        host = host_of(url) or ""
        if not host:
            return False
        for suffix in self.allow_host_suffixes:
            if domain_matches(host, suffix):
                return True
        return False
