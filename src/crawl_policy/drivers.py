"""Browser-driver seam used by :class:`crawl_policy.context.CrawlContext`.

The context only needs a narrow page surface. Any object providing the
methods of :class:`BrowserPage` works; ``emulate_timezone`` is optional and
skipped when absent. :class:`PlaywrightPage` adapts a Playwright sync
``Page`` to that surface.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Callable, Mapping, Protocol

from .errors import DriverUnavailableError

if TYPE_CHECKING:
    from playwright.sync_api import Page, Response

PAGE_METHODS = (
    "url",
    "cookies",
    "set_cookie",
    "set_user_agent",
    "set_viewport",
    "set_extra_http_headers",
    "evaluate_on_new_document",
    "on",
)

# Runs before any page script. Receives {platform, locale, screen}.
PAGE_INIT_SCRIPT = """(config) => {
  Object.defineProperty(navigator, 'platform', { get: () => config.platform });
  Object.defineProperty(navigator, 'language', { get: () => config.locale });
  Object.defineProperty(navigator, 'languages', { get: () => [config.locale, 'en'] });
  Object.defineProperty(screen, 'width', { get: () => config.screen.width });
  Object.defineProperty(screen, 'height', { get: () => config.screen.height });
  Object.defineProperty(screen, 'availWidth', { get: () => config.screen.width });
  Object.defineProperty(screen, 'availHeight', { get: () => config.screen.height - 40 });
  Object.defineProperty(navigator, 'webdriver', { get: () => false });
  window.chrome = { runtime: {} };
  const originalQuery = window.navigator.permissions.query;
  window.navigator.permissions.query = (parameters) => (
    parameters.name === 'notifications'
      ? Promise.resolve({ state: Notification.permission })
      : originalQuery.call(window.navigator.permissions, parameters)
  );
}"""


class DriverResponse(Protocol):
    def url(self) -> str: ...

    def headers(self) -> Mapping[str, Any]: ...


class BrowserPage(Protocol):
    def url(self) -> str: ...

    def cookies(self) -> list[dict[str, Any]]: ...

    def set_cookie(self, *cookies: dict[str, Any]) -> None: ...

    def set_user_agent(self, user_agent: str) -> None: ...

    def set_viewport(self, viewport: Mapping[str, int]) -> None: ...

    def set_extra_http_headers(self, headers: Mapping[str, str]) -> None: ...

    def evaluate_on_new_document(self, script: str, arg: Any) -> None: ...

    def on(self, event: str, handler: Callable[[DriverResponse], None]) -> None: ...


def require_page(page: object, *methods: str) -> None:
    """Raise :class:`DriverUnavailableError` unless ``page`` has ``methods``."""

    if page is None:
        raise DriverUnavailableError("No browser page was supplied")
    missing = [
        m for m in (methods or PAGE_METHODS) if not callable(getattr(page, m, None))
    ]
    if missing:
        raise DriverUnavailableError(
            f"{type(page).__name__} does not provide: {', '.join(missing)}"
        )


class _PlaywrightResponse:
    def __init__(self, response: Response) -> None:
        self._response = response

    def url(self) -> str:
        return self._response.url

    def headers(self) -> dict[str, Any]:
        # headers_array() keeps repeated Set-Cookie lines apart.
        out: dict[str, Any] = {}
        set_cookies: list[str] = []
        for item in self._response.headers_array():
            name = item["name"].lower()
            if name == "set-cookie":
                set_cookies.append(item["value"])
            else:
                out[name] = item["value"]
        if set_cookies:
            out["set-cookie"] = set_cookies
        return out


class PlaywrightPage:
    """Expose a Playwright sync ``Page`` through the :class:`BrowserPage` surface.

    Playwright fixes the user agent and timezone per browser context, so the
    user agent is sent as an extra request header and ``emulate_timezone`` is
    not offered.
    """

    def __init__(self, page: Page) -> None:
        self._page = page
        self._extra_headers: dict[str, str] = {}

    def url(self) -> str:
        return self._page.url

    def cookies(self) -> list[dict[str, Any]]:
        return [dict(c) for c in self._page.context.cookies()]

    def set_cookie(self, *cookies: dict[str, Any]) -> None:
        prepared = []
        for cookie in cookies:
            cookie = dict(cookie)
            if cookie.get("domain"):
                cookie.pop("url", None)
            prepared.append(cookie)
        self._page.context.add_cookies(prepared)

    def set_user_agent(self, user_agent: str) -> None:
        self._extra_headers["User-Agent"] = user_agent
        self._page.set_extra_http_headers(self._extra_headers)

    def set_viewport(self, viewport: Mapping[str, int]) -> None:
        self._page.set_viewport_size(
            {"width": int(viewport["width"]), "height": int(viewport["height"])}
        )

    def set_extra_http_headers(self, headers: Mapping[str, str]) -> None:
        self._extra_headers.update(headers)
        self._page.set_extra_http_headers(self._extra_headers)

    def evaluate_on_new_document(self, script: str, arg: Any) -> None:
        self._page.add_init_script(script=f"({script})({json.dumps(arg)});")

    def on(self, event: str, handler: Callable[[DriverResponse], None]) -> None:
        if event == "response":
            self._page.on(
                "response",
                lambda response: handler(_PlaywrightResponse(response)),
            )
        else:
            self._page.on(event, handler)
