"""Per-session crawl identity: user agent, headers, cookies and driver hooks.

One :class:`CrawlContext` is created per crawl session and threaded through
every fetch. HTTP responses and browser pages feed ``Set-Cookie`` data back
into its jar; outgoing requests read headers and cookies from it.

The jar has no internal locking. Callers running parallel fetches against a
shared context must serialize writes themselves.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Mapping, Sequence
from urllib.parse import urlparse

from .cookies import CookieJar, CookieRecord, normalize_same_site, parse_set_cookie
from .drivers import PAGE_INIT_SCRIPT, BrowserPage, DriverResponse, require_page

logger = logging.getLogger(__name__)

_CHROME_VERSION = "120.0.6099.109"

_PLATFORM_TOKENS = {
    "Windows": "Windows NT 10.0; Win64; x64",
    "Mac": "Macintosh; Intel Mac OS X 10_15_7",
    "Linux": "X11; Linux x86_64",
}

_RETRY_ON = [429, 500, 502, 503, 504]


def _default_headers(accept_language: str) -> dict[str, str]:
    return {
        "Accept": (
            "text/html,application/xhtml+xml,application/xml;q=0.9,"
            "image/avif,image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": accept_language,
        "Accept-Encoding": "gzip, deflate",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "DNT": "1",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
    }


def generate_user_agent(platform: str) -> str:
    token = _PLATFORM_TOKENS.get(platform, _PLATFORM_TOKENS["Windows"])
    return (
        f"Mozilla/5.0 ({token}) AppleWebKit/537.36 (KHTML, like Gecko) "
        f"Chrome/{_CHROME_VERSION} Safari/537.36"
    )


def _default_size() -> dict[str, int]:
    return {"width": 1920, "height": 1080}


@dataclass
class CrawlContextConfig:
    user_agent: str | None = None
    accept_language: str = "en-US,en;q=0.9"
    platform: str = "Windows"
    headers: dict[str, str] = field(default_factory=dict)
    proxy: str | None = None
    viewport: dict[str, int] = field(default_factory=_default_size)
    screen: dict[str, int] = field(default_factory=_default_size)
    timezone: str = "America/New_York"
    locale: str = "en-US"


def _set_cookie_values(response: Any) -> list[str]:
    values = getattr(response, "set_cookies", None)
    if values is not None:
        return list(values)

    raw_headers = getattr(getattr(response, "raw", None), "headers", None)
    for headers in (raw_headers, getattr(response, "headers", None)):
        if headers is None:
            continue
        for accessor in ("getlist", "get_all"):
            fn = getattr(headers, accessor, None)
            if callable(fn):
                found = fn("Set-Cookie")
                if found:
                    return [str(v) for v in found]
        if isinstance(headers, Mapping):
            for key, value in headers.items():
                if str(key).lower() == "set-cookie" and value:
                    return [value] if isinstance(value, str) else list(value)
    return []


class CrawlContext:
    def __init__(
        self,
        config: CrawlContextConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        cfg = config or CrawlContextConfig()
        self._clock = clock

        self._platform = cfg.platform or "Windows"
        self._user_agent = cfg.user_agent or generate_user_agent(self._platform)
        self._accept_language = cfg.accept_language
        self._headers = {**_default_headers(self._accept_language), **cfg.headers}
        self._proxy = cfg.proxy
        self._viewport = dict(cfg.viewport)
        self._screen = dict(cfg.screen)
        self._timezone = cfg.timezone
        self._locale = cfg.locale

        self.jar = CookieJar()
        self.last_url: str | None = None
        self.referer: str | None = None
        self._stats: Counter[str] = Counter()

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @user_agent.setter
    def user_agent(self, value: str) -> None:
        self._user_agent = value

    @property
    def viewport(self) -> dict[str, int]:
        return dict(self._viewport)

    @property
    def timezone(self) -> str:
        return self._timezone

    @property
    def proxy(self) -> str | None:
        return self._proxy

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------
    def set_cookies(
        self,
        cookies: Iterable[CookieRecord | Mapping[str, Any]],
        source: str = "manual",
    ) -> None:
        now = self._clock()
        for cookie in cookies:
            if isinstance(cookie, CookieRecord):
                record: CookieRecord | None = replace(
                    cookie, source=source, updated_at=now
                )
            else:
                record = CookieRecord.from_mapping(cookie, source=source, now=now)
            if record is None:
                self._stats["cookies_rejected"] += 1
                continue
            self.jar.store(record)
            self._stats["cookies_stored"] += 1

    def set_cookies_from_header(
        self,
        header_values: str | Iterable[str] | None,
        url: str,
    ) -> None:
        if not header_values:
            return
        if isinstance(header_values, str):
            header_values = [header_values]

        now = self._clock()
        for value in header_values:
            # Drivers join repeated Set-Cookie headers with newlines.
            for line in str(value).splitlines():
                record = parse_set_cookie(line, url, now=now, source="http")
                if record is None:
                    self._stats["cookies_rejected"] += 1
                    continue
                self.jar.store(record)
                self._stats["cookies_stored"] += 1

    def get_cookie_header(self, url: str) -> str:
        cookies = self.jar.matching(url, now=self._clock())
        return "; ".join(f"{c.name}={c.value}" for c in cookies)

    def get_cookies_for_driver(self, url: str) -> list[dict[str, Any]]:
        scheme = urlparse(url).scheme or "https"
        out: list[dict[str, Any]] = []
        for c in self.jar.matching(url, now=self._clock()):
            out.append(
                {
                    "name": c.name,
                    "value": c.value,
                    "domain": "." + c.domain,
                    "path": c.path or "/",
                    "expires": int(c.expires) if c.expires else -1,
                    "httpOnly": c.http_only,
                    "secure": c.secure,
                    "sameSite": normalize_same_site(c.same_site),
                    "url": f"{scheme}://{c.domain}{c.path or '/'}",
                }
            )
        return out

    def get_all_cookies(self) -> list[CookieRecord]:
        return list(self.jar)

    def get_cookies_for_domain(self, domain: str) -> list[CookieRecord]:
        return self.jar.for_domain(domain)

    def clear_cookies(self, domain: str | None = None) -> None:
        self.jar.clear(domain)

    # ------------------------------------------------------------------
    # Browser driver hooks
    # ------------------------------------------------------------------
    def import_from_driver(
        self, page_or_cookies: BrowserPage | Sequence[Mapping[str, Any]]
    ) -> None:
        """Copy cookies out of a browser page (or a list of driver cookies)."""

        if isinstance(page_or_cookies, (list, tuple)):
            raw_cookies = list(page_or_cookies)
        else:
            require_page(page_or_cookies, "cookies")
            raw_cookies = list(page_or_cookies.cookies())

        cookies = []
        for raw in raw_cookies:
            cookie = dict(raw)
            expires = cookie.get("expires")
            cookie["expires"] = expires if expires and expires > 0 else None
            cookies.append(cookie)

        self.set_cookies(cookies, source="driver")
        logger.debug("Imported %d cookies from driver", len(cookies))

    def export_to_driver(self, page: BrowserPage, url: str | None = None) -> None:
        require_page(page, "url", "set_cookie")
        target_url = url or page.url()
        if not target_url or target_url == "about:blank":
            return

        cookies = self.get_cookies_for_driver(target_url)
        if cookies:
            page.set_cookie(*cookies)
        logger.debug("Exported %d cookies to driver for %s", len(cookies), target_url)

    def configure_page(self, page: BrowserPage) -> BrowserPage:
        """Apply this identity to ``page`` and start capturing its cookies."""

        require_page(page)

        page.set_user_agent(self._user_agent)
        page.set_viewport(self._viewport)

        emulate_timezone = getattr(page, "emulate_timezone", None)
        if callable(emulate_timezone):
            emulate_timezone(self._timezone)
        else:
            logger.debug("Page has no emulate_timezone; keeping driver timezone")

        page.set_extra_http_headers({"Accept-Language": self._accept_language})
        page.evaluate_on_new_document(
            PAGE_INIT_SCRIPT,
            {
                "platform": self._platform,
                "locale": self._locale,
                "screen": dict(self._screen),
            },
        )

        current_url = page.url()
        if current_url and current_url != "about:blank":
            self.export_to_driver(page, current_url)

        page.on("response", self._on_driver_response)
        return page

    def _on_driver_response(self, response: DriverResponse) -> None:
        headers = response.headers() or {}
        for key, value in headers.items():
            if str(key).lower() == "set-cookie" and value:
                self.set_cookies_from_header(value, response.url())

    # ------------------------------------------------------------------
    # HTTP integration
    # ------------------------------------------------------------------
    def get_http_client_config(self, url: str) -> dict[str, Any]:
        headers = {**self._headers, "User-Agent": self._user_agent}

        cookie_header = self.get_cookie_header(url)
        if cookie_header:
            headers["Cookie"] = cookie_header
        if self.referer:
            headers["Referer"] = self.referer

        config: dict[str, Any] = {
            "headers": headers,
            "timeout_s": 30,
            "retry": {
                "max_attempts": 3,
                "delay_s": 1.0,
                "backoff": "exponential",
                "jitter": True,
                "retry_after": True,
                "retry_on": list(_RETRY_ON),
            },
        }
        if self._proxy:
            config["proxy"] = self._proxy
        return config

    def get_launch_config(self) -> dict[str, Any]:
        args = [
            f"--window-size={self._viewport['width']},{self._viewport['height']}",
            "--disable-blink-features=AutomationControlled",
            "--disable-features=IsolateOrigins,site-per-process",
            "--disable-infobars",
            "--disable-background-timer-throttling",
            "--disable-backgrounding-occluded-windows",
            "--disable-renderer-backgrounding",
            "--no-first-run",
            "--no-default-browser-check",
            "--no-sandbox",
            "--disable-setuid-sandbox",
        ]
        if self._proxy:
            args.append(f"--proxy-server={self._proxy}")

        return {
            "headless": "new",
            "args": args,
            "default_viewport": dict(self._viewport),
            "ignore_default_args": ["--enable-automation"],
        }

    def process_response(self, response: Any, url: str) -> None:
        """Record ``Set-Cookie`` data from ``response`` and advance the referer."""

        if response is None:
            return
        self._stats["responses"] += 1
        values = _set_cookie_values(response)
        if values:
            self.set_cookies_from_header(values, url)
        self.last_url = url
        self.referer = url

    def set_referer(self, url: str | None) -> None:
        self.referer = url

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def serialize(self) -> dict[str, Any]:
        return {
            "userAgent": self._user_agent,
            "acceptLanguage": self._accept_language,
            "platform": self._platform,
            "cookies": [c.to_dict() for c in self.jar],
            "headers": dict(self._headers),
            "proxy": self._proxy,
            "viewport": dict(self._viewport),
            "screen": dict(self._screen),
            "timezone": self._timezone,
            "locale": self._locale,
            "lastUrl": self.last_url,
            "referer": self.referer,
        }

    @classmethod
    def deserialize(
        cls,
        data: Mapping[str, Any] | None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> CrawlContext:
        data = data or {}
        defaults = CrawlContextConfig()
        ctx = cls(
            CrawlContextConfig(
                user_agent=data.get("userAgent"),
                accept_language=data.get("acceptLanguage") or defaults.accept_language,
                platform=data.get("platform") or defaults.platform,
                headers=dict(data.get("headers") or {}),
                proxy=data.get("proxy"),
                viewport=dict(data.get("viewport") or defaults.viewport),
                screen=dict(data.get("screen") or defaults.screen),
                timezone=data.get("timezone") or defaults.timezone,
                locale=data.get("locale") or defaults.locale,
            ),
            clock=clock,
        )

        cookies = data.get("cookies")
        if isinstance(cookies, Mapping):
            for domain, records in cookies.items():
                ctx.set_cookies(
                    ({"domain": domain, **r} for r in records), source="restored"
                )
        elif cookies:
            ctx.set_cookies(cookies, source="restored")

        ctx.last_url = data.get("lastUrl")
        ctx.referer = data.get("referer")
        return ctx
