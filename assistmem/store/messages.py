from __future__ import annotations

import dataclasses
import json
import logging
import math
import sqlite3
from typing import TYPE_CHECKING, Any

from .. import db
from . import sessions as store_sessions
from .types import (
    AttachmentMetadata,
    LocationMetadata,
    Message,
    MessageMetadata,
    ReplyMetadata,
    SchedulerMetadata,
)

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

VALID_ROLES = {"user", "assistant", "system"}

_METADATA_TYPES: dict[str, type] = {
    "scheduler": SchedulerMetadata,
    "attachment": AttachmentMetadata,
    "location": LocationMetadata,
    "reply": ReplyMetadata,
}


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def dump_metadata(metadata: MessageMetadata | None) -> str | None:
    if metadata is None:
        return None
    return db.to_json(dataclasses.asdict(metadata))


def parse_metadata(raw: str | None) -> MessageMetadata | None:
    """Decode a stored metadata column; anything unrecognised reads as no metadata."""

    if not raw:
        return None
    data: Any
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    tag = data.get("type")
    if tag is None and data.get("source") == "scheduler":
        # Rows written before metadata was tagged.
        tag = "scheduler"
        data = {"job_name": data.get("jobName") or data.get("job_name") or ""}
    cls = _METADATA_TYPES.get(str(tag)) if tag is not None else None
    if cls is None:
        return None
    names = {f.name for f in dataclasses.fields(cls)} - {"type"}
    try:
        return cls(**{k: v for k, v in data.items() if k in names})
    except TypeError:
        return None


def _row_to_message(row: sqlite3.Row) -> Message:
    content = str(row["content"])
    token_count = row["token_count"]
    return Message(
        id=int(row["id"]),
        session_id=str(row["session_id"] or db.DEFAULT_SESSION_ID),
        role=row["role"],
        content=content,
        timestamp=str(row["timestamp"]),
        token_count=int(token_count) if token_count else estimate_tokens(content),
        metadata=parse_metadata(row["metadata"]),
    )


def save_message(
    store: MemoryStore,
    role: str,
    content: str,
    session_id: str = db.DEFAULT_SESSION_ID,
    metadata: MessageMetadata | None = None,
) -> int:
    if role not in VALID_ROLES:
        raise ValueError(f"invalid role: {role}")
    cur = store.conn.execute(
        """
        INSERT INTO messages(session_id, role, content, timestamp, token_count, metadata)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            session_id,
            role,
            content,
            db.now_iso(),
            estimate_tokens(content),
            dump_metadata(metadata),
        ),
    )
    message_id = cur.lastrowid
    if message_id is None:
        raise RuntimeError("Failed to save message")
    store_sessions.touch_session(store, session_id)
    return int(message_id)


def get_message(store: MemoryStore, message_id: int) -> Message | None:
    row = store.conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
    return _row_to_message(row) if row else None


def get_recent_messages(
    store: MemoryStore, session_id: str = db.DEFAULT_SESSION_ID, limit: int = 50
) -> list[Message]:
    """Return the tail of a session, oldest first."""

    rows = store.conn.execute(
        """
        SELECT * FROM messages
        WHERE session_id = ?
        ORDER BY id DESC
        LIMIT ?
        """,
        (session_id, max(0, limit)),
    ).fetchall()
    return [_row_to_message(row) for row in reversed(rows)]


def get_messages_between(
    store: MemoryStore, session_id: str, after_id: int, before_id: int
) -> list[Message]:
    rows = store.conn.execute(
        """
        SELECT * FROM messages
        WHERE session_id = ? AND id > ? AND id < ?
        ORDER BY id ASC
        """,
        (session_id, after_id, before_id),
    ).fetchall()
    return [_row_to_message(row) for row in rows]


def count_messages(store: MemoryStore, session_id: str = db.DEFAULT_SESSION_ID) -> int:
    row = store.conn.execute(
        "SELECT COUNT(*) AS c FROM messages WHERE session_id = ?", (session_id,)
    ).fetchone()
    return int(row["c"]) if row else 0


def clear_conversation(store: MemoryStore, session_id: str = db.DEFAULT_SESSION_ID) -> int:
    conn = store.conn
    with conn:
        conn.execute(
            """
            DELETE FROM message_embeddings
            WHERE message_id IN (SELECT id FROM messages WHERE session_id = ?)
            """,
            (session_id,),
        )
        cur = conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM summaries WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM rolling_summaries WHERE session_id = ?", (session_id,))
    return cur.rowcount
