"""
TubeIngest - Database Layer

SQLite connection management, schema creation, and orphaned job recovery.
"""

import logging
import sqlite3
from contextlib import contextmanager
import queue

from constants import DB_PATH, STORED_STATUSES

logger = logging.getLogger(__name__)


def get_db() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH, timeout=10, check_same_thread=False)
    conn.execute("PRAGMA busy_timeout=10000")
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


_DB_POOL_SIZE = 5
_db_pool: "queue.LifoQueue[sqlite3.Connection]" = queue.LifoQueue(maxsize=_DB_POOL_SIZE)


def _get_pooled_conn() -> sqlite3.Connection:
    try:
        return _db_pool.get_nowait()
    except queue.Empty:
        return get_db()


def _return_pooled_conn(conn: sqlite3.Connection) -> None:
    try:
        _db_pool.put_nowait(conn)
    except queue.Full:
        conn.close()


@contextmanager
def db_conn() -> sqlite3.Connection:
    conn = _get_pooled_conn()
    try:
        yield conn
        if conn.in_transaction:
            try:
                conn.rollback()
            except sqlite3.Error:
                pass
    except Exception:
        try:
            conn.rollback()
        except sqlite3.Error:
            pass
        raise
    finally:
        conn.row_factory = None
        _return_pooled_conn(conn)


def init_db():
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    allowed = ", ".join(f"'{s}'" for s in STORED_STATUSES)
    with db_conn() as conn:
        # Owned by the CMS; created here only so the videos FK resolves standalone
        conn.execute("""
        CREATE TABLE IF NOT EXISTS categories (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

        conn.execute(f"""
        CREATE TABLE IF NOT EXISTS jobs (
            id TEXT PRIMARY KEY,
            source_url TEXT NOT NULL,
            category_id TEXT NOT NULL,
            processing_status TEXT NOT NULL DEFAULT 'waiting'
                CHECK (processing_status IN ({allowed})),
            error TEXT,
            title TEXT,
            storage_url TEXT,
            thumbnail_url TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            completed_at TIMESTAMP
        )
    """)

        try:
            conn.execute("ALTER TABLE jobs ADD COLUMN started_at TIMESTAMP")
        except sqlite3.OperationalError:
            pass  # Column already exists
        try:
            conn.execute("ALTER TABLE jobs ADD COLUMN video_id TEXT")
        except sqlite3.OperationalError:
            pass
        conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON jobs(processing_status, created_at)")

        # Ingested videos - one row per successful job
        conn.execute("""
        CREATE TABLE IF NOT EXISTS videos (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            slug TEXT,
            source_url TEXT NOT NULL,
            storage_url TEXT NOT NULL,
            thumbnail_url TEXT,
            category_id TEXT NOT NULL,
            origin TEXT DEFAULT 'youtube',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (category_id) REFERENCES categories(id)
        )
    """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_videos_category ON videos(category_id)")

        # Settings table - stores configuration that can be edited via the API
        conn.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

        conn.commit()


def recover_orphaned_jobs(active_ids=()) -> int:
    """Mark processing rows that no live run owns as errored.

    The in-memory registry dies with the process, so any row still stored as
    'processing' after a restart (or not present in active_ids) can never
    finish on its own.
    """
    active_ids = list(active_ids)
    sql = (
        "UPDATE jobs SET processing_status = 'error', "
        "error = 'Interrupted (processing run was lost)', "
        "completed_at = datetime('now') "
        "WHERE processing_status = 'processing'"
    )
    if active_ids:
        placeholders = ",".join("?" for _ in active_ids)
        sql += f" AND id NOT IN ({placeholders})"
    with db_conn() as conn:
        cursor = conn.execute(sql, active_ids)
        conn.commit()
        recovered = cursor.rowcount
    if recovered > 0:
        logger.warning("Recovered %d orphaned job(s)", recovered)
    return recovered
