from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Mapping, Protocol

import requests
from requests import exceptions as req_exc

from .errors import FetchError

logger = logging.getLogger(__name__)

TRANSIENT_HTTP_STATUSES = {429, 500, 502, 503, 504}


def _retry_after_seconds(headers: Mapping[str, str]) -> float | None:
    retry_after = headers.get("Retry-After")
    if not retry_after:
        return None
    try:
        return float(retry_after)
    except ValueError:
        return None


def _set_cookie_values(resp: requests.Response) -> tuple[str, ...]:
    # requests folds repeated headers into one comma-joined value; the raw
    # urllib3 headers keep each Set-Cookie line separate.
    raw_headers = getattr(getattr(resp, "raw", None), "headers", None)
    getlist = getattr(raw_headers, "getlist", None)
    if callable(getlist):
        return tuple(str(v) for v in getlist("Set-Cookie"))
    value = resp.headers.get("Set-Cookie")
    return (value,) if value else ()


@dataclass(frozen=True)
class FetchResult:
    url: str
    final_url: str
    status_code: int
    headers: dict[str, str]
    fetched_at: float
    body: bytes
    set_cookies: tuple[str, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return ""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class Fetcher(Protocol):
    """The narrow HTTP surface the robots and sitemap components depend on."""

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> FetchResult: ...


class HttpClient:
    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        timeout_s: float = 30,
        max_retries: int = 2,
        backoff_base_s: float = 1.0,
        proxy: str | None = None,
    ) -> None:
        self._session = session if session is not None else requests.Session()
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._backoff_base_s = backoff_base_s
        self._proxies = {"http": proxy, "https": proxy} if proxy else None

    def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> FetchResult:
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                resp = self._session.get(
                    url,
                    timeout=self._timeout_s,
                    headers=headers,
                    proxies=self._proxies,
                )

                if (
                    resp.status_code in TRANSIENT_HTTP_STATUSES
                    and attempt < self._max_retries
                ):
                    retry_after = _retry_after_seconds(resp.headers)
                    wait_s = (
                        retry_after
                        if retry_after is not None
                        else self._backoff_base_s * (2**attempt)
                    )
                    logger.debug(
                        "HTTP %s for %s; retrying in %.1fs",
                        resp.status_code,
                        url,
                        wait_s,
                    )
                    time.sleep(wait_s)
                    continue

                # Non-success statuses are returned; callers decide.
                return FetchResult(
                    url=url,
                    final_url=str(resp.url),
                    status_code=int(resp.status_code),
                    headers={k: str(v) for k, v in resp.headers.items()},
                    fetched_at=time.time(),
                    body=resp.content,
                    set_cookies=_set_cookie_values(resp),
                )
            except req_exc.RequestException as e:
                last_error = e
                if attempt >= self._max_retries:
                    break
                time.sleep(self._backoff_base_s * (2**attempt))

        raise FetchError(
            f"Failed to fetch {url}: {last_error}",
            url=url,
        )
