from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

from .. import db
from .types import SoulAspect

if TYPE_CHECKING:
    from ._store import MemoryStore

SOUL_CONTEXT_KEY = "soul_context"


def _row_to_aspect(row: sqlite3.Row) -> SoulAspect:
    return SoulAspect(
        id=int(row["id"]),
        aspect=str(row["aspect"]),
        content=str(row["content"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def set_soul_aspect(store: MemoryStore, aspect: str, content: str) -> int:
    now = db.now_iso()
    store.conn.execute(
        """
        INSERT INTO soul_aspects(aspect, content, created_at, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(aspect) DO UPDATE SET
            content = excluded.content,
            updated_at = excluded.updated_at
        """,
        (aspect, content, now, now),
    )
    store.conn.commit()
    store._invalidate_cache(SOUL_CONTEXT_KEY)
    row = store.conn.execute("SELECT id FROM soul_aspects WHERE aspect = ?", (aspect,)).fetchone()
    return int(row["id"])


def get_soul_aspect(store: MemoryStore, aspect: str) -> SoulAspect | None:
    row = store.conn.execute("SELECT * FROM soul_aspects WHERE aspect = ?", (aspect,)).fetchone()
    return _row_to_aspect(row) if row else None


def list_soul_aspects(store: MemoryStore) -> list[SoulAspect]:
    rows = store.conn.execute("SELECT * FROM soul_aspects ORDER BY aspect").fetchall()
    return [_row_to_aspect(row) for row in rows]


def delete_soul_aspect(store: MemoryStore, aspect_id: int) -> bool:
    cur = store.conn.execute("DELETE FROM soul_aspects WHERE id = ?", (aspect_id,))
    store.conn.commit()
    store._invalidate_cache(SOUL_CONTEXT_KEY)
    return cur.rowcount > 0


def get_soul_context(store: MemoryStore) -> str:
    cached = store._cache.get(SOUL_CONTEXT_KEY)
    if cached is not None:
        return cached
    aspects = list_soul_aspects(store)
    if not aspects:
        text = ""
    else:
        lines = ["## Soul"]
        for item in aspects:
            lines.append(f"\n### {item.aspect}")
            lines.append(item.content)
        text = "\n".join(lines)
    store._cache[SOUL_CONTEXT_KEY] = text
    return text
