"""SQLite-backed page store.

Pages are keyed by :func:`~contentmap.services.urls.to_id`; writing a page
whose URL is already stored overwrites it in place.  The same database holds
a small JSON metadata slot for run bookkeeping and the four analysis
artifacts.

Usage::

    store = PageStore.open(settings.db_path)
    store.upsert(page)
    print(store.count())
    store.close()
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional, Union

from contentmap.models.page import Page
from contentmap.services.errors import InvalidURLError, StoreError
from contentmap.services.urls import normalize, to_id

logger = logging.getLogger(__name__)

ARTIFACT_NAMES = ("navigation", "pageTypes", "relationships", "objects")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS pages (
    id           TEXT PRIMARY KEY,
    url          TEXT NOT NULL UNIQUE,
    canonical    TEXT,
    status       INTEGER NOT NULL,
    content_hash TEXT NOT NULL DEFAULT '',
    crawled_at   TEXT NOT NULL,
    data         TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_pages_status ON pages (status);
CREATE INDEX IF NOT EXISTS idx_pages_canonical ON pages (canonical);
CREATE INDEX IF NOT EXISTS idx_pages_crawled_at ON pages (crawled_at);

CREATE TABLE IF NOT EXISTS metadata (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS artifacts (
    name       TEXT PRIMARY KEY,
    data       TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_REQUIRED_TABLES = {"pages", "metadata", "artifacts"}


def _row_to_page(row: sqlite3.Row) -> Page:
    return Page.model_validate_json(row["data"])


class PageStore:
    """Durable keyed collection of crawled :class:`Page` objects."""

    def __init__(self, conn: sqlite3.Connection, path: Union[str, Path] = ":memory:"):
        self._conn = conn
        self.path = path

    @classmethod
    def open(cls, path: Union[str, Path], must_exist: bool = False) -> "PageStore":
        """Open (or create) the store at *path*.

        Args:
            path: Database file, or ``":memory:"``.
            must_exist: Refuse to create a new store; used when resuming.

        Raises:
            StoreError: if *must_exist* is set and the file is missing or is
                not a readable page store, or if the database is corrupt.
        """
        in_memory = str(path) == ":memory:"
        if not in_memory:
            path = Path(path)
            if must_exist and not path.is_file():
                raise StoreError(f"No page store at {path}")
            path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            if must_exist:
                tables = {
                    row["name"]
                    for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
                }
                if not _REQUIRED_TABLES <= tables:
                    conn.close()
                    raise StoreError(f"{path} is not a contentmap page store")
            if not in_memory:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(_SCHEMA)
        except sqlite3.DatabaseError as exc:
            raise StoreError(f"Cannot open page store {path}: {exc}") from exc

        return cls(conn, path)

    def __enter__(self) -> "PageStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def upsert(self, page: Page) -> None:
        """Insert *page*, or overwrite the stored page with the same id."""
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO pages (id, url, canonical, status, content_hash, crawled_at, data)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    url = excluded.url,
                    canonical = excluded.canonical,
                    status = excluded.status,
                    content_hash = excluded.content_hash,
                    crawled_at = excluded.crawled_at,
                    data = excluded.data
                """,
                (
                    page.id,
                    page.url,
                    page.canonical,
                    page.status,
                    page.content_hash,
                    page.crawled_at.isoformat(),
                    page.model_dump_json(),
                ),
            )

    def get(self, key: str) -> Optional[Page]:
        """Return the page whose id or URL is *key*, or ``None``."""
        row = self._conn.execute("SELECT data FROM pages WHERE id = ?", (key,)).fetchone()
        if row:
            return _row_to_page(row)
        return self.get_by_url(key)

    def get_by_url(self, url: str) -> Optional[Page]:
        try:
            page_id = to_id(url)
        except InvalidURLError:
            return None
        row = self._conn.execute("SELECT data FROM pages WHERE id = ?", (page_id,)).fetchone()
        return _row_to_page(row) if row else None

    def by_status(self, status: int) -> List[Page]:
        rows = self._conn.execute(
            "SELECT data FROM pages WHERE status = ? ORDER BY crawled_at, rowid", (status,)
        ).fetchall()
        return [_row_to_page(r) for r in rows]

    def exists(self, url: str) -> bool:
        """True if *url* is stored, either as a page URL or as a page's canonical URL."""
        try:
            normalized = normalize(url)
        except InvalidURLError:
            return False
        row = self._conn.execute(
            "SELECT 1 FROM pages WHERE id = ? OR canonical = ? LIMIT 1",
            (to_id(normalized), normalized),
        ).fetchone()
        return row is not None

    def iter_pages(self) -> Iterator[Page]:
        for row in self._conn.execute("SELECT data FROM pages ORDER BY crawled_at, rowid"):
            yield _row_to_page(row)

    def all(self) -> List[Page]:
        """Every stored page, oldest crawl first."""
        return list(self.iter_pages())

    def urls(self) -> List[str]:
        rows = self._conn.execute("SELECT url FROM pages ORDER BY crawled_at, rowid").fetchall()
        return [r["url"] for r in rows]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM pages").fetchone()[0]

    def success_count(self) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM pages WHERE status >= 200 AND status < 300"
        ).fetchone()[0]

    def clear(self) -> None:
        """Delete every page and artifact.  Metadata is kept."""
        with self._conn:
            self._conn.execute("DELETE FROM pages")
            self._conn.execute("DELETE FROM artifacts")
        logger.info("PageStore: cleared %s", self.path)

    # ------------------------------------------------------------------
    # Metadata and artifacts
    # ------------------------------------------------------------------

    def set_metadata(self, key: str, value: Any) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT INTO metadata (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, json.dumps(value)),
            )

    def get_metadata(self, key: str, default: Any = None) -> Any:
        row = self._conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
        return json.loads(row["value"]) if row else default

    def save_artifact(self, name: str, data: Any) -> None:
        """Store an analysis artifact, replacing the previous run's version."""
        if name not in ARTIFACT_NAMES:
            raise ValueError(f"Unknown artifact {name!r}; expected one of {ARTIFACT_NAMES}")
        with self._conn:
            self._conn.execute(
                "INSERT INTO artifacts (name, data, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(name) DO UPDATE SET data = excluded.data, "
                "updated_at = excluded.updated_at",
                (name, json.dumps(data), datetime.now(timezone.utc).isoformat()),
            )

    def load_artifact(self, name: str) -> Optional[Any]:
        row = self._conn.execute("SELECT data FROM artifacts WHERE name = ?", (name,)).fetchone()
        return json.loads(row["data"]) if row else None
