import json

import pytest

from crawl_policy.context import CrawlContext, CrawlContextConfig
from crawl_policy.state import SessionStore


def _build_context() -> CrawlContext:
    ctx = CrawlContext(CrawlContextConfig(user_agent="bot/1.0", platform="Linux"))
    ctx.set_cookies([{"name": "sid", "value": "abc", "domain": "example.com"}])
    ctx.set_referer("https://example.com/start")
    return ctx


def test_missing_session_loads_as_none(tmp_path):
    store = SessionStore(tmp_path / "state")

    assert store.exists() is False
    assert store.load() is None


def test_save_and_load_round_trip(tmp_path):
    store = SessionStore(tmp_path / "state")

    path = store.save(_build_context())

    assert path == tmp_path / "state" / "session.json"
    assert not (tmp_path / "state" / "session.json.tmp").exists()
    restored = store.load()
    assert restored.user_agent == "bot/1.0"
    assert restored.referer == "https://example.com/start"
    assert restored.get_cookie_header("https://example.com/") == "sid=abc"


def test_saved_file_is_plain_json(tmp_path):
    store = SessionStore(tmp_path)
    store.save(_build_context())

    data = json.loads(store.session_path.read_text(encoding="utf-8"))

    assert data["platform"] == "Linux"
    assert [c["name"] for c in data["cookies"]] == ["sid"]


def test_clear_is_idempotent(tmp_path):
    store = SessionStore(tmp_path)
    store.save(_build_context())

    store.clear()
    store.clear()

    assert store.exists() is False


def test_corrupt_session_raises(tmp_path):
    store = SessionStore(tmp_path)
    store.session_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ValueError):
        store.load()
