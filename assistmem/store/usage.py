from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ._store import MemoryStore


def _count(store: MemoryStore, sql: str, params: tuple[Any, ...] = ()) -> int:
    row = store.conn.execute(sql, params).fetchone()
    return int(row[0] or 0) if row else 0


def stats(store: MemoryStore, session_id: str | None = None) -> dict[str, Any]:
    if session_id is None:
        message_where, params = "", ()
    else:
        message_where, params = " WHERE session_id = ?", (session_id,)

    messages = _count(store, "SELECT COUNT(*) FROM messages" + message_where, params)
    estimated_tokens = _count(
        store, "SELECT SUM(token_count) FROM messages" + message_where, params
    )
    summaries = _count(store, "SELECT COUNT(*) FROM summaries" + message_where, params)
    rolling = _count(store, "SELECT COUNT(*) FROM rolling_summaries" + message_where, params)
    cron_jobs = _count(store, "SELECT COUNT(*) FROM cron_jobs" + message_where, params)
    embedded_messages = _count(
        store,
        """
        SELECT COUNT(*) FROM message_embeddings
        JOIN messages ON messages.id = message_embeddings.message_id
        """
        + (" WHERE messages.session_id = ?" if session_id is not None else ""),
        params,
    )
    facts = _count(store, "SELECT COUNT(*) FROM facts")
    embedded_facts = _count(
        store, "SELECT COUNT(DISTINCT fact_id) FROM chunks WHERE embedding IS NOT NULL"
    )
    sessions = _count(store, "SELECT COUNT(*) FROM sessions")
    db_path = str(store.db_path)
    size_bytes = Path(db_path).stat().st_size if Path(db_path).exists() else 0

    return {
        "database": {
            "path": db_path,
            "size_bytes": size_bytes,
            "sessions": sessions,
        },
        "message_count": messages,
        "estimated_tokens": estimated_tokens,
        "summary_count": summaries,
        "rolling_summary_count": rolling,
        "cron_job_count": cron_jobs,
        "embedded_message_count": embedded_messages,
        "fact_count": facts,
        "embedded_fact_count": embedded_facts,
    }
