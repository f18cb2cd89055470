from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

from .. import db
from .types import Fact

if TYPE_CHECKING:
    from ._store import MemoryStore

FACTS_CONTEXT_KEY = "facts_context"

_FACT_COLUMNS = "id, category, subject, content, created_at, updated_at"


def _row_to_fact(row: sqlite3.Row) -> Fact:
    return Fact(
        id=int(row["id"]),
        category=str(row["category"]),
        subject=str(row["subject"] or ""),
        content=str(row["content"]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )


def save_fact(store: MemoryStore, category: str, subject: str, content: str) -> int:
    now = db.now_iso()
    existing = store.conn.execute(
        "SELECT id FROM facts WHERE category = ? AND subject = ? ORDER BY id LIMIT 1",
        (category, subject),
    ).fetchone()
    if existing:
        fact_id = int(existing["id"])
        store.conn.execute(
            "UPDATE facts SET content = ?, updated_at = ? WHERE id = ?",
            (content, now, fact_id),
        )
    else:
        cur = store.conn.execute(
            """
            INSERT INTO facts(category, subject, content, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (category, subject, content, now, now),
        )
        if cur.lastrowid is None:
            raise RuntimeError("Failed to save fact")
        fact_id = int(cur.lastrowid)
    store.conn.commit()
    store._invalidate_cache(FACTS_CONTEXT_KEY)
    store._schedule_fact_embedding(fact_id)
    return fact_id


def get_fact(store: MemoryStore, fact_id: int) -> Fact | None:
    row = store.conn.execute(
        f"SELECT {_FACT_COLUMNS} FROM facts WHERE id = ?", (fact_id,)
    ).fetchone()
    return _row_to_fact(row) if row else None


def get_all_facts(store: MemoryStore) -> list[Fact]:
    rows = store.conn.execute(
        f"SELECT {_FACT_COLUMNS} FROM facts ORDER BY category, subject"
    ).fetchall()
    return [_row_to_fact(row) for row in rows]


def get_facts_by_category(store: MemoryStore, category: str) -> list[Fact]:
    rows = store.conn.execute(
        f"SELECT {_FACT_COLUMNS} FROM facts WHERE category = ? ORDER BY subject",
        (category,),
    ).fetchall()
    return [_row_to_fact(row) for row in rows]


def get_fact_categories(store: MemoryStore) -> list[str]:
    rows = store.conn.execute("SELECT DISTINCT category FROM facts ORDER BY category").fetchall()
    return [str(row["category"]) for row in rows]


def render_facts_context(facts: list[Fact]) -> str:
    if not facts:
        return ""
    by_category: dict[str, list[Fact]] = {}
    for fact in facts:
        by_category.setdefault(fact.category, []).append(fact)
    lines = ["## Known Facts"]
    for category, items in by_category.items():
        lines.append(f"\n### {category}")
        for fact in items:
            if fact.subject:
                lines.append(f"- **{fact.subject}**: {fact.content}")
            else:
                lines.append(f"- {fact.content}")
    return "\n".join(lines)


def get_facts_for_context(store: MemoryStore) -> str:
    cached = store._cache.get(FACTS_CONTEXT_KEY)
    if cached is not None:
        return cached
    text = render_facts_context(get_all_facts(store))
    store._cache[FACTS_CONTEXT_KEY] = text
    return text


def search_facts(store: MemoryStore, query: str, category: str | None = None) -> list[Fact]:
    pattern = f"%{query}%"
    params: list[str] = [pattern, pattern, pattern]
    where = "(content LIKE ? OR subject LIKE ? OR category LIKE ?)"
    if category:
        where += " AND category = ?"
        params.append(category)
    rows = store.conn.execute(
        f"""
        SELECT {_FACT_COLUMNS} FROM facts
        WHERE {where}
        ORDER BY updated_at DESC, id DESC
        """,
        params,
    ).fetchall()
    return [_row_to_fact(row) for row in rows]


def delete_fact(store: MemoryStore, fact_id: int) -> bool:
    cur = store.conn.execute("DELETE FROM facts WHERE id = ?", (fact_id,))
    store.conn.commit()
    store._invalidate_cache(FACTS_CONTEXT_KEY)
    return cur.rowcount > 0


def delete_fact_by_subject(store: MemoryStore, category: str, subject: str) -> bool:
    cur = store.conn.execute(
        "DELETE FROM facts WHERE category = ? AND subject = ?", (category, subject)
    )
    store.conn.commit()
    store._invalidate_cache(FACTS_CONTEXT_KEY)
    return cur.rowcount > 0
