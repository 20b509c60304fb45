import json

from crawl_policy.discovery import DiscoveredUrl
from crawl_policy.manifest import DiscoveryManifest, utc_iso


def test_utc_iso_formats_seconds():
    assert utc_iso(0) == "1970-01-01T00:00:00Z"
    assert utc_iso(1_704_103_200) == "2024-01-01T10:00:00Z"


def test_manifest_records_events_and_totals(tmp_path):
    manifest = DiscoveryManifest(tmp_path / "out", "https://e.com")

    manifest.record(DiscoveredUrl("https://e.com/u/1", "sitemap", pattern="user"))
    manifest.record(DiscoveredUrl("https://e.com/u/2", "sitemap", pattern="user"))
    manifest.record(DiscoveredUrl(url="https://e.com/news", source="rss"))
    summary = manifest.finish(robots={"checks": 3}, patterns=None)

    lines = manifest.events_path.read_text(encoding="utf-8").splitlines()
    events = [json.loads(line) for line in lines]
    assert [e["event"] for e in events] == ["discovered"] * 3
    assert [e["url"] for e in events][-1] == "https://e.com/news"
    assert events[0]["at"].endswith("Z")

    on_disk = json.loads(manifest.summary_path.read_text(encoding="utf-8"))
    assert on_disk == summary
    assert summary["base_url"] == "https://e.com"
    assert summary["urls"] == 3
    assert summary["by_source"] == {"sitemap": 2, "rss": 1}
    assert summary["by_pattern"] == {"user": 2, "(none)": 1}
    assert summary["robots"] == {"checks": 3}
    assert summary["patterns"] is None


def test_manifest_without_urls_still_writes_summary(tmp_path):
    manifest = DiscoveryManifest(tmp_path, "https://e.com", name="empty")

    summary = manifest.finish()

    assert summary["urls"] == 0
    assert not manifest.events_path.exists()
    assert (tmp_path / "empty.json").exists()
