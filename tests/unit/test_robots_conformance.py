"""Behaviour both robots backends must agree on."""

import pytest

from crawl_policy.robots import RobotsConfig, RobotsPolicyResolver, select_backend

ROBOTS_TXT = """\
# Example policy
User-agent: *
Disallow: /admin      # staff only
Allow: /admin/public
Disallow: /*.pdf$
Crawl-delay: 2

User-agent: BadBot
User-agent: EvilBot
Disallow: /

User-agent: FriendlyBot
Disallow: /private
Crawl-delay: 0.5

Sitemap: https://example.com/sitemap.xml
Sitemap: https://example.com/news.xml
"""

BACKENDS = ["native", "protego"]


def _build_resolver(backend: str, user_agent: str = "crawl-policy"):
    if backend == "protego":
        pytest.importorskip("protego")
    return RobotsPolicyResolver(
        RobotsConfig(user_agent=user_agent, backend=backend),
        fetcher=lambda url: ROBOTS_TXT,
    )


@pytest.mark.parametrize("backend", BACKENDS)
@pytest.mark.parametrize(
    "path, allowed",
    [
        ("/", True),
        ("/blog/post", True),
        ("/admin", False),
        ("/admin/users", False),
        ("/admin/public", True),
        ("/admin/public/page", True),
        ("/files/report.pdf", False),
        ("/files/report.pdf.html", True),
    ],
)
def test_wildcard_group_paths(backend, path, allowed):
    resolver = _build_resolver(backend)

    decision = resolver.is_allowed(f"https://example.com{path}")

    assert decision.allowed is allowed
    assert decision.source == "robots-txt"


@pytest.mark.parametrize("backend", BACKENDS)
def test_wildcard_group_crawl_delay(backend):
    resolver = _build_resolver(backend)

    assert resolver.get_crawl_delay("https://example.com/") == 2000
    assert resolver.is_allowed("https://example.com/").crawl_delay_ms == 2000


@pytest.mark.parametrize("backend", BACKENDS)
@pytest.mark.parametrize("agent", ["BadBot", "evilbot/2.0"])
def test_consecutive_agent_lines_share_one_group(backend, agent):
    resolver = _build_resolver(backend, user_agent=agent)

    assert resolver.is_allowed("https://example.com/").allowed is False
    assert resolver.is_allowed("https://example.com/blog").allowed is False


@pytest.mark.parametrize("backend", BACKENDS)
def test_specific_group_overrides_wildcard(backend):
    resolver = _build_resolver(backend, user_agent="FriendlyBot/1.0")

    assert resolver.is_allowed("https://example.com/admin").allowed is True
    assert resolver.is_allowed("https://example.com/private/x").allowed is False
    assert resolver.get_crawl_delay("https://example.com/") == 500


@pytest.mark.parametrize("backend", BACKENDS)
def test_sitemaps_are_listed_in_order(backend):
    resolver = _build_resolver(backend)

    assert resolver.get_sitemaps("example.com") == [
        "https://example.com/sitemap.xml",
        "https://example.com/news.xml",
    ]


@pytest.mark.parametrize("backend", BACKENDS)
def test_named_group_without_wildcard_leaves_other_agents_alone(backend):
    if backend == "protego":
        pytest.importorskip("protego")
    resolver = RobotsPolicyResolver(
        RobotsConfig(user_agent="crawl-policy", backend=backend),
        fetcher=lambda url: "User-agent: Googlebot\nDisallow: /\n",
    )

    decision = resolver.is_allowed("https://example.com/")

    assert decision.allowed is True
    assert decision.source == "no-matching-agent"


@pytest.mark.parametrize("backend", BACKENDS)
def test_backend_contract_directly(backend):
    if backend == "protego":
        pytest.importorskip("protego")
    rules = select_backend(backend)(ROBOTS_TXT)

    assert set(rules.agents) >= {"*", "badbot", "evilbot", "friendlybot"}
    assert rules.is_allowed("https://example.com/admin/public/x", "*") is True
    assert rules.is_allowed("https://example.com/admin/x", "*") is False
    assert rules.get_crawl_delay("*") == 2000
    assert rules.get_crawl_delay("friendlybot") == 500


@pytest.mark.parametrize("backend", BACKENDS)
@pytest.mark.parametrize(
    "robots_txt, path, allowed, matched",
    [
        (
            "User-agent: *\nDisallow: /*.php\nAllow: /page\n",
            "/page.php",
            True,
            {"type": "allow", "pattern": "/page"},
        ),
        (
            "User-agent: *\nAllow: /a/b\nDisallow: /a/*$\n",
            "/a/b",
            True,
            {"type": "allow", "pattern": "/a/b"},
        ),
        (
            "User-agent: *\nAllow: /p*\nDisallow: /page\n",
            "/page1",
            False,
            {"type": "disallow", "pattern": "/page"},
        ),
        ("User-agent: *\nDisallow: /caf%C3%A9\n", "/caf%c3%a9", True, None),
        ("User-agent: *\nDisallow: /caf%C3%A9\n", "/café", True, None),
    ],
)
def test_precedence_counts_literal_characters_only(
    backend, robots_txt, path, allowed, matched
):
    if backend == "protego":
        pytest.importorskip("protego")
    resolver = RobotsPolicyResolver(
        RobotsConfig(backend=backend), fetcher=lambda url: robots_txt
    )

    decision = resolver.is_allowed(f"https://example.com{path}")

    assert decision.allowed is allowed
    assert decision.matched_rule == matched


@pytest.mark.parametrize("backend", BACKENDS)
def test_matched_rule_is_reported(backend):
    resolver = _build_resolver(backend)

    decision = resolver.is_allowed("https://example.com/admin/users")

    assert decision.matched_rule == {"type": "disallow", "pattern": "/admin"}
