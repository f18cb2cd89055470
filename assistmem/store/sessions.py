from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING
from uuid import uuid4

from .. import db
from ..errors import DuplicateNameError, ProtectedResourceError
from .types import Session

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=str(row["id"]),
        name=str(row["name"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def _name_owner(store: MemoryStore, name: str) -> str | None:
    row = store.conn.execute("SELECT id FROM sessions WHERE name = ?", (name,)).fetchone()
    return str(row["id"]) if row else None


def create_session(store: MemoryStore, name: str) -> Session:
    if _name_owner(store, name) is not None:
        raise DuplicateNameError(name)
    now = db.now_iso()
    session_id = uuid4().hex
    store.conn.execute(
        "INSERT INTO sessions(id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
        (session_id, name, now, now),
    )
    store.conn.commit()
    return Session(id=session_id, name=name, created_at=now, updated_at=now)


def rename_session(store: MemoryStore, session_id: str, name: str) -> bool:
    owner = _name_owner(store, name)
    if owner is not None and owner != session_id:
        raise DuplicateNameError(name)
    cur = store.conn.execute(
        "UPDATE sessions SET name = ?, updated_at = ? WHERE id = ?",
        (name, db.now_iso(), session_id),
    )
    store.conn.commit()
    return cur.rowcount > 0


def delete_session(store: MemoryStore, session_id: str) -> bool:
    if session_id == db.DEFAULT_SESSION_ID:
        raise ProtectedResourceError("default session")
    if get_session(store, session_id) is None:
        return False
    conn = store.conn
    # Dependents first so nothing is left pointing at a missing session.
    with conn:
        conn.execute(
            """
            DELETE FROM message_embeddings
            WHERE message_id IN (SELECT id FROM messages WHERE session_id = ?)
            """,
            (session_id,),
        )
        conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM summaries WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM rolling_summaries WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM cron_jobs WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM channel_links WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
    logger.info("deleted session %s", session_id)
    return True


def touch_session(store: MemoryStore, session_id: str) -> None:
    store.conn.execute(
        "UPDATE sessions SET updated_at = ? WHERE id = ?", (db.now_iso(), session_id)
    )
    store.conn.commit()


def get_session(store: MemoryStore, session_id: str) -> Session | None:
    row = store.conn.execute(
        "SELECT id, name, created_at, updated_at FROM sessions WHERE id = ?", (session_id,)
    ).fetchone()
    return _row_to_session(row) if row else None


def get_session_by_name(store: MemoryStore, name: str) -> Session | None:
    row = store.conn.execute(
        "SELECT id, name, created_at, updated_at FROM sessions WHERE name = ?", (name,)
    ).fetchone()
    return _row_to_session(row) if row else None


def list_sessions(store: MemoryStore) -> list[Session]:
    rows = store.conn.execute(
        """
        SELECT id, name, created_at, updated_at
        FROM sessions
        ORDER BY updated_at DESC, rowid DESC
        """
    ).fetchall()
    return [_row_to_session(row) for row in rows]


def link_chat(
    store: MemoryStore, chat_id: str | int, session_id: str, name: str | None = None
) -> None:
    store.conn.execute(
        """
        INSERT INTO channel_links(chat_id, session_id, name, created_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(chat_id) DO UPDATE SET
            session_id = excluded.session_id,
            name = excluded.name
        """,
        (str(chat_id), session_id, name, db.now_iso()),
    )
    store.conn.commit()


def unlink_chat(store: MemoryStore, chat_id: str | int) -> bool:
    cur = store.conn.execute("DELETE FROM channel_links WHERE chat_id = ?", (str(chat_id),))
    store.conn.commit()
    return cur.rowcount > 0


def get_session_for_chat(store: MemoryStore, chat_id: str | int) -> str | None:
    row = store.conn.execute(
        "SELECT session_id FROM channel_links WHERE chat_id = ?", (str(chat_id),)
    ).fetchone()
    return str(row["session_id"]) if row else None


def get_chat_for_session(store: MemoryStore, session_id: str) -> str | None:
    row = store.conn.execute(
        "SELECT chat_id FROM channel_links WHERE session_id = ? ORDER BY created_at LIMIT 1",
        (session_id,),
    ).fetchone()
    return str(row["chat_id"]) if row else None
