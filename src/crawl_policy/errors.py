"""Error vocabulary shared by the discovery and policy components."""

from __future__ import annotations


class CrawlPolicyError(Exception):
    """Base class for errors raised by crawl_policy."""


class ParseError(CrawlPolicyError):
    """A fetched document is unrecognized or malformed."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class FetchError(CrawlPolicyError):
    """A fetch failed at the network level or returned a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class DriverUnavailableError(CrawlPolicyError):
    """A browser-driver hook was invoked without a compatible page object."""
