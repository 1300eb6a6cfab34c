"""Tests for the SQLite page store."""

import sqlite3

import pytest

from conftest import make_page
from contentmap.services.errors import StoreError
from contentmap.services.page_store import PageStore
from contentmap.services.urls import to_id


class TestPages:
    def test_upsert_and_get_by_id(self, store):
        page = make_page("https://example.com/a", title="A")
        store.upsert(page)
        loaded = store.get(page.id)
        assert loaded == page

    def test_get_by_any_url_spelling(self, store):
        store.upsert(make_page("https://example.com/a?y=1&x=2"))
        assert store.get("https://EXAMPLE.com/a/?x=2&y=1") is not None
        assert store.get_by_url("https://example.com/a?x=2&y=1").url == "https://example.com/a?x=2&y=1"

    def test_missing_page(self, store):
        assert store.get("nope") is None
        assert store.get_by_url("https://example.com/unknown") is None

    def test_upsert_overwrites_same_url(self, store):
        store.upsert(make_page("https://example.com/a", title="old"))
        store.upsert(make_page("https://example.com/a", title="new"))
        assert store.count() == 1
        assert store.get(to_id("https://example.com/a")).title == "new"

    def test_exists_by_url_or_canonical(self, store):
        store.upsert(make_page("https://example.com/a?ref=x", canonical="https://example.com/a"))
        assert store.exists("https://example.com/a?ref=x")
        assert store.exists("https://example.com/a/")
        assert not store.exists("https://example.com/b")
        assert not store.exists("not a url")

    def test_all_in_crawl_order(self, store):
        urls = [f"https://example.com/p{i}" for i in range(3)]
        for url in urls:
            store.upsert(make_page(url))
        assert [p.url for p in store.all()] == urls
        assert store.urls() == urls

    def test_counts_and_status_filter(self, store):
        store.upsert(make_page("https://example.com/ok"))
        store.upsert(make_page("https://example.com/gone", status=404))
        store.upsert(make_page("https://example.com/down", status=0, error="timeout"))
        assert store.count() == 3
        assert store.success_count() == 1
        assert [p.url for p in store.by_status(0)] == ["https://example.com/down"]

    def test_clear_keeps_metadata(self, store):
        store.upsert(make_page("https://example.com/a"))
        store.set_metadata("baseUrl", "https://example.com/")
        store.save_artifact("navigation", {"primaryNav": []})
        store.clear()
        assert store.count() == 0
        assert store.load_artifact("navigation") is None
        assert store.get_metadata("baseUrl") == "https://example.com/"


class TestMetadataAndArtifacts:
    def test_metadata_round_trip(self, store):
        store.set_metadata("lastCrawl", {"fetched": 3})
        store.set_metadata("lastCrawl", {"fetched": 4})
        assert store.get_metadata("lastCrawl") == {"fetched": 4}
        assert store.get_metadata("missing", "default") == "default"

    def test_artifact_replaced(self, store):
        store.save_artifact("pageTypes", [{"id": "type-1"}])
        store.save_artifact("pageTypes", [{"id": "type-2"}])
        assert store.load_artifact("pageTypes") == [{"id": "type-2"}]

    def test_unknown_artifact_rejected(self, store):
        with pytest.raises(ValueError):
            store.save_artifact("sitemap", {})


class TestOpen:
    def test_persists_across_connections(self, tmp_path):
        path = tmp_path / "pages.sqlite"
        with PageStore.open(path) as first:
            first.upsert(make_page("https://example.com/a"))
        with PageStore.open(path, must_exist=True) as second:
            assert second.count() == 1

    def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "pages.sqlite"
        with PageStore.open(path):
            pass
        assert path.is_file()

    def test_must_exist_missing_file(self, tmp_path):
        with pytest.raises(StoreError):
            PageStore.open(tmp_path / "absent.sqlite", must_exist=True)

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "pages.sqlite"
        path.write_bytes(b"this is definitely not an sqlite database" * 100)
        with pytest.raises(StoreError):
            PageStore.open(path)

    def test_foreign_database(self, tmp_path):
        path = tmp_path / "other.sqlite"
        conn = sqlite3.connect(str(path))
        conn.execute("CREATE TABLE things (id INTEGER)")
        conn.commit()
        conn.close()
        with pytest.raises(StoreError):
            PageStore.open(path, must_exist=True)
