from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .. import db
from ..semantic import fact_embedding_text, serialize_embedding

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)


async def embed_fact(store: MemoryStore, fact_id: int) -> bool:
    """Replace the chunk for one fact. Returns False when nothing was stored."""

    embedder = store.embedder
    if embedder is None:
        return False
    row = store.conn.execute(
        "SELECT category, subject, content FROM facts WHERE id = ?", (fact_id,)
    ).fetchone()
    if row is None:
        return False
    text = fact_embedding_text(row["category"], row["subject"] or "", row["content"])
    vector = await embedder.embed(text)
    # The fact may have been deleted or rewritten while the embedder ran.
    current = store.conn.execute(
        "SELECT category, subject, content FROM facts WHERE id = ?", (fact_id,)
    ).fetchone()
    if current is None or text != fact_embedding_text(
        current["category"], current["subject"] or "", current["content"]
    ):
        return False
    with store.conn:
        store.conn.execute("DELETE FROM chunks WHERE fact_id = ?", (fact_id,))
        store.conn.execute(
            "INSERT INTO chunks(fact_id, content, embedding, created_at) VALUES (?, ?, ?, ?)",
            (fact_id, text, serialize_embedding(vector), db.now_iso()),
        )
    return True


async def embed_fact_logged(store: MemoryStore, fact_id: int) -> None:
    try:
        await embed_fact(store, fact_id)
    except Exception as exc:
        logger.exception("fact embedding failed", extra={"fact_id": fact_id}, exc_info=exc)


def schedule_fact_embedding(store: MemoryStore, fact_id: int) -> None:
    if store.embedder is None:
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None
    if loop is None:
        asyncio.run(embed_fact_logged(store, fact_id))
        return
    task = loop.create_task(embed_fact_logged(store, fact_id))
    store._pending_embeddings.add(task)
    task.add_done_callback(store._pending_embeddings.discard)


async def embed_missing_facts(store: MemoryStore) -> int:
    if store.embedder is None:
        return 0
    rows = store.conn.execute(
        """
        SELECT facts.id
        FROM facts
        LEFT JOIN chunks ON chunks.fact_id = facts.id
        WHERE chunks.id IS NULL
        ORDER BY facts.id
        """
    ).fetchall()
    embedded = 0
    for row in rows:
        fact_id = int(row["id"])
        try:
            if await embed_fact(store, fact_id):
                embedded += 1
        except Exception as exc:
            logger.exception("fact embedding failed", extra={"fact_id": fact_id}, exc_info=exc)
    if embedded:
        logger.info("embedded %d facts", embedded)
    return embedded


async def embed_message(store: MemoryStore, message_id: int) -> bool:
    embedder = store.embedder
    if embedder is None:
        return False
    row = store.conn.execute(
        """
        SELECT messages.content
        FROM messages
        LEFT JOIN message_embeddings ON message_embeddings.message_id = messages.id
        WHERE messages.id = ? AND message_embeddings.id IS NULL
        """,
        (message_id,),
    ).fetchone()
    if row is None or not str(row["content"]).strip():
        return False
    vector = await embedder.embed(str(row["content"]))
    store.conn.execute(
        """
        INSERT OR IGNORE INTO message_embeddings(message_id, embedding, created_at)
        SELECT id, ?, ? FROM messages WHERE id = ?
        """,
        (serialize_embedding(vector), db.now_iso(), message_id),
    )
    store.conn.commit()
    return True


async def embed_recent_messages(
    store: MemoryStore, session_id: str = db.DEFAULT_SESSION_ID, limit: int = 100
) -> int:
    """Backfill embeddings for the newest ``limit`` messages of a session."""

    embedder = store.embedder
    if embedder is None:
        return 0
    rows = store.conn.execute(
        """
        SELECT messages.id, messages.content
        FROM messages
        LEFT JOIN message_embeddings ON message_embeddings.message_id = messages.id
        WHERE messages.session_id = ? AND message_embeddings.id IS NULL
        ORDER BY messages.id DESC
        LIMIT ?
        """,
        (session_id, limit),
    ).fetchall()
    pending = [(int(row["id"]), str(row["content"])) for row in rows if str(row["content"]).strip()]
    if not pending:
        return 0
    try:
        vectors = await embedder.embed_batch([content for _, content in pending])
    except Exception as exc:
        logger.exception(
            "message embedding failed", extra={"session_id": session_id}, exc_info=exc
        )
        return 0
    now = db.now_iso()
    inserted = 0
    for (message_id, _), vector in zip(pending, vectors, strict=False):
        if not vector:
            continue
        cur = store.conn.execute(
            """
            INSERT OR IGNORE INTO message_embeddings(message_id, embedding, created_at)
            SELECT id, ?, ? FROM messages WHERE id = ?
            """,
            (serialize_embedding(vector), now, message_id),
        )
        inserted += cur.rowcount
    store.conn.commit()
    return inserted
