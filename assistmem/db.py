from __future__ import annotations

import datetime as dt
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".assistmem.sqlite"
DEFAULT_SESSION_ID = "default"
DEFAULT_SESSION_NAME = "default"

# Tables that carry a session_id scoping column added after the first release.
SESSION_SCOPED_TABLES = ("messages", "summaries", "cron_jobs")


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_sessions_updated ON sessions(updated_at DESC);

        CREATE TABLE IF NOT EXISTS messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT,
            role TEXT NOT NULL CHECK(role IN ('user', 'assistant', 'system')),
            content TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            token_count INTEGER,
            metadata TEXT
        );

        CREATE TABLE IF NOT EXISTS facts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            category TEXT NOT NULL,
            subject TEXT NOT NULL DEFAULT '',
            content TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS chunks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            fact_id INTEGER NOT NULL REFERENCES facts(id) ON DELETE CASCADE,
            content TEXT NOT NULL,
            embedding BLOB,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_chunks_fact ON chunks(fact_id);

        CREATE TABLE IF NOT EXISTS message_embeddings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            message_id INTEGER NOT NULL UNIQUE REFERENCES messages(id) ON DELETE CASCADE,
            embedding BLOB NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS summaries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT,
            start_message_id INTEGER NOT NULL,
            end_message_id INTEGER NOT NULL,
            content TEXT NOT NULL,
            token_count INTEGER,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS rolling_summaries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            start_message_id INTEGER NOT NULL,
            end_message_id INTEGER NOT NULL,
            content TEXT NOT NULL,
            token_count INTEGER,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_rolling_summaries_session
            ON rolling_summaries(session_id, end_message_id DESC);

        CREATE TABLE IF NOT EXISTS cron_jobs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            schedule TEXT NOT NULL,
            prompt TEXT NOT NULL,
            channel TEXT NOT NULL DEFAULT 'default',
            enabled INTEGER NOT NULL DEFAULT 1,
            session_id TEXT,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS soul_aspects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            aspect TEXT NOT NULL UNIQUE,
            content TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS channel_links (
            chat_id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            name TEXT,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_channel_links_session ON channel_links(session_id);
        """
    )
    _migrate(conn, "session scoping columns", _add_scoping_columns)
    _migrate(conn, "added columns", _add_missing_columns)
    ensure_default_session(conn)
    _migrate(conn, "default session backfill", _backfill_default_session)
    _migrate(conn, "indexes", _create_indexes)
    _migrate(conn, "facts fts", _create_facts_fts)
    try:
        rebuild_fts_index(conn)
    except sqlite3.Error as exc:
        logger.warning("facts fts rebuild failed", exc_info=exc)
    conn.commit()


def _migrate(conn: sqlite3.Connection, label: str, step) -> None:
    # A partially-migrated database must still open.
    try:
        step(conn)
    except sqlite3.Error as exc:
        logger.warning("schema migration failed: %s", label, exc_info=exc)


def _add_scoping_columns(conn: sqlite3.Connection) -> None:
    for table in SESSION_SCOPED_TABLES:
        _ensure_column(conn, table, "session_id", "TEXT")


def _add_missing_columns(conn: sqlite3.Connection) -> None:
    _ensure_column(conn, "facts", "subject", "TEXT NOT NULL DEFAULT ''")
    _ensure_column(conn, "messages", "token_count", "INTEGER")
    _ensure_column(conn, "messages", "metadata", "TEXT")
    _ensure_column(conn, "cron_jobs", "channel", "TEXT NOT NULL DEFAULT 'default'")
    _ensure_column(conn, "cron_jobs", "created_at", "TEXT")


def _backfill_default_session(conn: sqlite3.Connection) -> None:
    for table in SESSION_SCOPED_TABLES:
        conn.execute(
            f"UPDATE {table} SET session_id = ? WHERE session_id IS NULL",
            (DEFAULT_SESSION_ID,),
        )


def _create_indexes(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_facts_category_subject ON facts(category, subject)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id, id)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_summaries_session ON summaries(session_id, end_message_id)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_cron_jobs_session ON cron_jobs(session_id)")


def _create_facts_fts(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE VIRTUAL TABLE IF NOT EXISTS facts_fts USING fts5(
            category, subject, content,
            content='facts',
            content_rowid='id'
        );

        CREATE TRIGGER IF NOT EXISTS facts_ai AFTER INSERT ON facts BEGIN
            INSERT INTO facts_fts(rowid, category, subject, content)
            VALUES (new.id, new.category, new.subject, new.content);
        END;

        CREATE TRIGGER IF NOT EXISTS facts_ad AFTER DELETE ON facts BEGIN
            INSERT INTO facts_fts(facts_fts, rowid, category, subject, content)
            VALUES ('delete', old.id, old.category, old.subject, old.content);
        END;

        CREATE TRIGGER IF NOT EXISTS facts_au AFTER UPDATE ON facts BEGIN
            INSERT INTO facts_fts(facts_fts, rowid, category, subject, content)
            VALUES ('delete', old.id, old.category, old.subject, old.content);
            INSERT INTO facts_fts(rowid, category, subject, content)
            VALUES (new.id, new.category, new.subject, new.content);
        END;
        """
    )


def rebuild_fts_index(conn: sqlite3.Connection, *, force: bool = False) -> int:
    """Replay every fact row into the FTS index.

    Without ``force`` this only runs when the index holds no documents but the
    facts table does, which is the state left behind by a failed trigger setup.
    """

    fact_count = int(conn.execute("SELECT COUNT(*) FROM facts").fetchone()[0])
    if not force:
        indexed = int(conn.execute("SELECT COUNT(*) FROM facts_fts_docsize").fetchone()[0])
        if indexed > 0 or fact_count == 0:
            return 0
    conn.execute("INSERT INTO facts_fts(facts_fts) VALUES ('rebuild')")
    conn.commit()
    logger.info("rebuilt facts fts index with %d facts", fact_count)
    return fact_count


def ensure_default_session(conn: sqlite3.Connection) -> None:
    now = now_iso()
    conn.execute(
        """
        INSERT OR IGNORE INTO sessions(id, name, created_at, updated_at)
        VALUES (?, ?, ?, ?)
        """,
        (DEFAULT_SESSION_ID, DEFAULT_SESSION_NAME, now, now),
    )


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    if column in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")


def to_json(data: Any) -> str:
    if data is None:
        payload: Any = {}
    else:
        payload = data
    return json.dumps(payload, ensure_ascii=False)

