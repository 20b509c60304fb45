import pytest
import requests

from crawl_policy import http_client
from crawl_policy.errors import FetchError
from crawl_policy.http_client import FetchResult, HttpClient


class FakeRawHeaders:
    def __init__(self, cookies):
        self._cookies = list(cookies)

    def getlist(self, name):
        return list(self._cookies) if name == "Set-Cookie" else []


class FakeResponse:
    def __init__(self, status_code=200, body=b"ok", headers=None, url="", cookies=None):
        self.status_code = status_code
        self.content = body
        self.headers = dict(headers or {})
        self.url = url
        self.raw = type("Raw", (), {"headers": FakeRawHeaders(cookies or [])})()


class FakeSession:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        outcome.url = outcome.url or url
        return outcome


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr(http_client.time, "sleep", recorded.append)
    return recorded


def _build_client(*outcomes, **kwargs):
    session = FakeSession(*outcomes)
    kwargs.setdefault("backoff_base_s", 0.5)
    return HttpClient(session, **kwargs), session


def test_get_fetches_url_as_given_and_passes_options(sleeps):
    client, session = _build_client(
        FakeResponse(headers={"Content-Type": "text/plain"}),
        timeout_s=5,
        proxy="http://proxy:8080",
    )

    url = "https://e.com/sitemap.xml?utm_source=x&gclid=1"
    res = client.get(url, headers={"X": "1"})

    [(fetched, kwargs)] = session.calls
    assert fetched == url
    assert res.url == url
    assert kwargs["timeout"] == 5
    assert kwargs["headers"] == {"X": "1"}
    proxy = "http://proxy:8080"
    assert kwargs["proxies"] == {"http": proxy, "https": proxy}
    assert res.ok
    assert res.text == "ok"
    assert res.content_type == "text/plain"
    assert sleeps == []


def test_transient_status_is_retried_with_backoff(sleeps):
    client, session = _build_client(
        FakeResponse(503), FakeResponse(502), FakeResponse(200), max_retries=2
    )

    res = client.get("https://e.com/")

    assert res.status_code == 200
    assert len(session.calls) == 3
    assert sleeps == [0.5, 1.0]


def test_retry_after_header_sets_the_wait(sleeps):
    client, _ = _build_client(
        FakeResponse(429, headers={"Retry-After": "3"}), FakeResponse(200)
    )

    client.get("https://e.com/")

    assert sleeps == [3.0]


def test_last_transient_status_is_returned_not_raised(sleeps):
    client, _ = _build_client(FakeResponse(503), FakeResponse(503), max_retries=1)

    res = client.get("https://e.com/")

    assert res.status_code == 503
    assert res.ok is False


def test_client_errors_are_returned_without_retry(sleeps):
    client, session = _build_client(FakeResponse(404))

    assert client.get("https://e.com/x").status_code == 404
    assert len(session.calls) == 1


def test_network_errors_raise_fetch_error_after_retries(sleeps):
    client, session = _build_client(
        requests.ConnectionError("refused"),
        requests.Timeout("slow"),
        max_retries=1,
    )

    with pytest.raises(FetchError, match="slow") as excinfo:
        client.get("https://e.com/")

    assert excinfo.value.url == "https://e.com/"
    assert excinfo.value.status_code is None
    assert len(session.calls) == 2
    assert sleeps == [0.5]


def test_each_set_cookie_header_is_kept(sleeps):
    client, _ = _build_client(FakeResponse(cookies=["a=1; Path=/", "b=2"]))

    assert client.get("https://e.com/").set_cookies == ("a=1; Path=/", "b=2")


def test_fetch_result_properties():
    result = FetchResult(
        url="https://e.com/",
        final_url="https://e.com/",
        status_code=301,
        headers={"content-type": "application/xml"},
        fetched_at=0.0,
        body="café".encode("utf-8"),
    )

    assert result.ok is True
    assert result.content_type == "application/xml"
    assert result.text == "café"
