"""
Seen-article store for Headline Harvester

Persists the URLs of articles that were already extracted so that later runs
do not deliver them again. Rows expire after a fixed retention window.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from collections.abc import Generator

from errors import StoreError
from logging_config import get_logger

logger = get_logger(__name__)

RETENTION_DAYS = 7
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def to_timestamp(moment: datetime | None = None) -> str:
    """UTC text timestamp as stored in first_seen_at. Naive values are read as local time."""
    moment = moment or datetime.now(UTC)
    return moment.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


class SeenArticleStore:
    """
    SQLite-backed set of article URLs with a first-seen timestamp.

    Lifecycle is explicit: open() before use, sweep() once per run before any
    reads, close() when done. A fresh connection is used for every call, so
    one store may be shared by concurrent site workers.
    """

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self._write_lock = threading.Lock()
        self._opened = False

    def __enter__(self) -> "SeenArticleStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._opened

    def open(self) -> "SeenArticleStore":
        """Create the backing file and schema if needed"""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create store directory {self.db_path.parent}: {e}") from e

        self._opened = True
        try:
            self.init_db()
        except StoreError:
            self._opened = False
            raise
        return self

    def close(self) -> None:
        self._opened = False

    def get_connection(self) -> sqlite3.Connection:
        if not self._opened:
            raise StoreError("Seen-article store is not open")
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open seen-article store at {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Connection that commits on success and rolls back on error.

        Raises:
            StoreError: If any database operation fails
        """
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("Store transaction rolled back", extra={"error": str(e)})
            raise StoreError(f"Seen-article store failure: {e}") from e
        finally:
            conn.close()

    def init_db(self):
        """Initialize the seen_articles table"""
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS seen_articles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    article_url TEXT UNIQUE NOT NULL,
                    first_seen_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_seen_first_seen ON seen_articles(first_seen_at)"
            )
        logger.info("Seen-article store initialized", extra={"db_path": str(self.db_path)})

    def has(self, url: str) -> bool:
        """True if the article URL was recorded and not yet swept"""
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM seen_articles WHERE article_url = ?", (url,)
            ).fetchone()
            return row is not None

    def record(self, url: str, seen_at: datetime | None = None) -> bool:
        """
        Record an article URL as seen.

        Duplicate inserts are no-ops.

        Returns:
            True if a new row was written, False if the URL was already present
        """
        with self._write_lock:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO seen_articles (article_url, first_seen_at) VALUES (?, ?)",
                    (url, to_timestamp(seen_at)),
                )
                inserted = cursor.rowcount > 0

        if inserted:
            logger.debug("Recorded seen article", extra={"url": url})
        return inserted

    def sweep(self, retention_days: int = RETENTION_DAYS) -> int:
        """
        Delete records first seen longer ago than the retention window.

        Returns:
            Number of records removed
        """
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        with self._write_lock:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM seen_articles WHERE first_seen_at <= ?",
                    (to_timestamp(cutoff),),
                )
                removed = cursor.rowcount

        logger.info(
            "Swept seen-article store",
            extra={"removed": removed, "retention_days": retention_days},
        )
        return removed

    def count(self) -> int:
        with self.transaction() as conn:
            return conn.execute("SELECT COUNT(*) AS count FROM seen_articles").fetchone()["count"]

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics"""
        with self.transaction() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       MIN(first_seen_at) AS oldest,
                       MAX(first_seen_at) AS newest
                FROM seen_articles
                """
            ).fetchone()
            last_24h = conn.execute(
                "SELECT COUNT(*) AS count FROM seen_articles WHERE first_seen_at > ?",
                (to_timestamp(datetime.now(UTC) - timedelta(days=1)),),
            ).fetchone()["count"]

        return {
            "db_path": str(self.db_path),
            "total_articles": row["total"],
            "articles_24h": last_24h,
            "oldest": row["oldest"],
            "newest": row["newest"],
        }
