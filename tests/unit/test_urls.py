import pytest

from crawl_policy.urls import (
    UrlScope,
    domain_matches,
    host_of,
    normalize_domain,
    normalize_url,
    origin_of,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("HTTPS://Example.COM/Path#frag", "https://example.com/Path"),
        ("https://e.com/a?utm_source=x&utm_medium=y", "https://e.com/a"),
        ("https://e.com/a?id=1&gclid=abc&page=2", "https://e.com/a?id=1&page=2"),
        ("https://e.com/a?FBCLID=1", "https://e.com/a"),
        ("https://e.com/a?q=utm_source", "https://e.com/a?q=utm_source"),
    ],
)
def test_normalize_url(raw, expected):
    assert normalize_url(raw) == expected


def test_domains_and_hosts():
    assert normalize_domain(" .Example.COM ") == "example.com"
    assert host_of("https://Shop.Example.com:8443/x") == "shop.example.com"
    assert host_of("not a url") is None
    assert domain_matches("shop.example.com", ".example.com")
    assert not domain_matches("badexample.com", "example.com")
    assert not domain_matches("", "example.com")


@pytest.mark.parametrize(
    "value, expected",
    [
        ("https://E.com:8080/path?q=1", "https://e.com:8080"),
        ("example.com", "https://example.com"),
        ("http://example.com", "http://example.com"),
        ("", None),
    ],
)
def test_origin_of(value, expected):
    assert origin_of(value) == expected


def test_url_scope():
    scope = UrlScope(allow_host_suffixes=("example.com",), follow_offsite=False)

    assert scope.is_allowed("https://example.com/")
    assert scope.is_allowed("https://cdn.example.com/a.js")
    assert not scope.is_allowed("https://other.org/")
    assert not scope.is_allowed("mailto:someone@example.com")
    assert UrlScope((), follow_offsite=True).is_allowed("https://other.org/")
