from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .. import db
from ..summarizer import basic_summary, previous_summary_message
from . import messages as store_messages
from . import search as store_search
from .messages import estimate_tokens
from .types import (
    ConversationContext,
    Message,
    RelevantMessage,
    SmartContext,
    SmartContextStats,
)

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

SUMMARY_HEADER = "[Previous conversation summary]"


def _prune(store: MemoryStore, table: str, session_id: str) -> None:
    keep = max(1, store.config.summary_keep)
    store.conn.execute(
        f"""
        DELETE FROM {table}
        WHERE session_id = ?
          AND id NOT IN (
            SELECT id FROM {table} WHERE session_id = ? ORDER BY id DESC LIMIT ?
          )
        """,
        (session_id, session_id, keep),
    )


def _summary_ending_at(store: MemoryStore, session_id: str, end_id: int) -> str | None:
    row = store.conn.execute(
        """
        SELECT content FROM summaries
        WHERE session_id = ? AND end_message_id = ?
        ORDER BY id DESC
        LIMIT 1
        """,
        (session_id, end_id),
    ).fetchone()
    return str(row["content"]) if row else None


async def _get_or_create_summary(
    store: MemoryStore, session_id: str, before_id: int
) -> str | None:
    """Return one summary covering every session message older than ``before_id``."""

    row = store.conn.execute(
        "SELECT MAX(id) AS last_id FROM messages WHERE session_id = ? AND id < ?",
        (session_id, before_id),
    ).fetchone()
    if row is None or row["last_id"] is None:
        return None
    last_id = int(row["last_id"])

    existing = _summary_ending_at(store, session_id, last_id)
    if existing is not None:
        return existing

    partial = store.conn.execute(
        """
        SELECT start_message_id, end_message_id, content FROM summaries
        WHERE session_id = ? AND end_message_id < ?
        ORDER BY end_message_id DESC, id DESC
        LIMIT 1
        """,
        (session_id, before_id),
    ).fetchone()

    summarizer = store.summarizer
    try:
        if partial is not None and summarizer is not None:
            # Only the newly uncovered messages go to the summarizer.
            new_messages = store_messages.get_messages_between(
                store, session_id, int(partial["end_message_id"]), before_id
            )
            if not new_messages:
                return str(partial["content"])
            start_id = int(partial["start_message_id"])
            summary = await summarizer.summarize(
                [previous_summary_message(str(partial["content"]))]
                + [m.as_chat() for m in new_messages]
            )
        else:
            uncovered = store_messages.get_messages_between(store, session_id, 0, before_id)
            start_id = uncovered[0].id
            if summarizer is not None:
                summary = await summarizer.summarize([m.as_chat() for m in uncovered])
            else:
                summary = basic_summary([m.as_chat() for m in uncovered])
    except Exception as exc:
        logger.exception(
            "conversation summary failed", extra={"session_id": session_id}, exc_info=exc
        )
        uncovered = store_messages.get_messages_between(store, session_id, 0, before_id)
        return basic_summary([m.as_chat() for m in uncovered])

    # Another caller may have stored the same summary while we awaited.
    existing = _summary_ending_at(store, session_id, last_id)
    if existing is not None:
        return existing
    store.conn.execute(
        """
        INSERT INTO summaries(
            session_id, start_message_id, end_message_id, content, token_count, created_at
        )
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (session_id, start_id, last_id, summary, estimate_tokens(summary), db.now_iso()),
    )
    _prune(store, "summaries", session_id)
    store.conn.commit()
    return summary


async def get_conversation_context(
    store: MemoryStore,
    session_id: str = db.DEFAULT_SESSION_ID,
    token_limit: int | None = None,
) -> ConversationContext:
    cfg = store.config
    limit = cfg.token_limit if token_limit is None else token_limit
    available = limit - cfg.reserved_tokens

    newest_first = list(
        reversed(
            store_messages.get_recent_messages(store, session_id, limit=cfg.context_message_cap)
        )
    )
    if not newest_first:
        return ConversationContext(messages=[], total_tokens=0, summarized_count=0)
    total_messages = store_messages.count_messages(store, session_id)

    recent: list[Message] = []
    token_count = 0
    for message in newest_first:
        if token_count + message.token_count > available:
            break
        recent.append(message)
        token_count += message.token_count
    recent.reverse()

    if len(recent) == total_messages:
        return ConversationContext(
            messages=[m.as_chat() for m in recent],
            total_tokens=token_count,
            summarized_count=0,
        )

    before_id = recent[0].id if recent else newest_first[0].id + 1
    summary = await _get_or_create_summary(store, session_id, before_id)

    context_messages: list[dict[str, str]] = []
    if summary:
        context_messages.append({"role": "system", "content": f"{SUMMARY_HEADER}\n{summary}"})
        token_count += estimate_tokens(summary)
    context_messages.extend(m.as_chat() for m in recent)
    return ConversationContext(
        messages=context_messages,
        total_tokens=token_count,
        summarized_count=total_messages - len(recent),
        summary=summary,
    )


async def _summarize_increment(store: MemoryStore, batch: list[Message]) -> str | None:
    summarizer = store.summarizer
    if summarizer is None:
        return basic_summary([m.as_chat() for m in batch])
    try:
        return await summarizer.summarize([m.as_chat() for m in batch])
    except Exception as exc:
        logger.exception("rolling summary increment failed", exc_info=exc)
        return None


async def _get_rolling_summary(
    store: MemoryStore, session_id: str, before_id: int, interval: int
) -> str | None:
    interval = max(1, interval)
    latest = store.conn.execute(
        """
        SELECT start_message_id, end_message_id, content FROM rolling_summaries
        WHERE session_id = ? AND end_message_id < ?
        ORDER BY end_message_id DESC, id DESC
        LIMIT 1
        """,
        (session_id, before_id),
    ).fetchone()
    text = str(latest["content"]) if latest else ""
    covered_end = int(latest["end_message_id"]) if latest else 0
    start_id = int(latest["start_message_id"]) if latest else None

    pending = store_messages.get_messages_between(store, session_id, covered_end, before_id)
    committed = 0
    while len(pending) - committed >= interval:
        batch = pending[committed : committed + interval]
        increment = await _summarize_increment(store, batch)
        if increment is None:
            break
        text = f"{text}\n\n{increment}" if text else increment
        committed += interval

    if committed:
        if start_id is None:
            start_id = pending[0].id
        end_id = pending[committed - 1].id
        store.conn.execute(
            """
            INSERT INTO rolling_summaries(
                session_id, start_message_id, end_message_id, content, token_count, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (session_id, start_id, end_id, text, estimate_tokens(text), db.now_iso()),
        )
        _prune(store, "rolling_summaries", session_id)
        store.conn.commit()

    # Messages short of a full interval are described heuristically and not stored.
    tail = pending[committed:]
    if tail:
        tail_text = basic_summary([m.as_chat() for m in tail])
        text = f"{text}\n\n{tail_text}" if text else tail_text
    return text or None


async def get_smart_context(
    store: MemoryStore,
    session_id: str = db.DEFAULT_SESSION_ID,
    *,
    recent_message_limit: int | None = None,
    rolling_summary_interval: int | None = None,
    semantic_retrieval_count: int | None = None,
    current_query: str | None = None,
) -> SmartContext:
    cfg = store.config
    recent_limit = max(
        0, cfg.recent_message_limit if recent_message_limit is None else recent_message_limit
    )
    interval = (
        cfg.rolling_summary_interval
        if rolling_summary_interval is None
        else rolling_summary_interval
    )
    retrieval_count = (
        cfg.semantic_retrieval_count
        if semantic_retrieval_count is None
        else semantic_retrieval_count
    )

    total = store_messages.count_messages(store, session_id)
    recent = store_messages.get_recent_messages(store, session_id, limit=recent_limit)
    summarized_count = max(0, total - len(recent))

    rolling_summary: str | None = None
    if summarized_count > 0:
        if recent:
            before_id = recent[0].id
        else:
            [newest] = store_messages.get_recent_messages(store, session_id, limit=1)
            before_id = newest.id + 1
        rolling_summary = await _get_rolling_summary(store, session_id, before_id, interval)

    relevant: list[RelevantMessage] = []
    if current_query and store.embedder is not None and retrieval_count > 0:
        relevant = await store_search.search_relevant_messages(
            store,
            current_query,
            session_id,
            exclude_ids={m.id for m in recent},
            limit=retrieval_count,
        )

    total_tokens = sum(m.token_count for m in recent)
    if rolling_summary:
        total_tokens += estimate_tokens(rolling_summary)
    total_tokens += sum(item.message.token_count for item in relevant)
    return SmartContext(
        recent_messages=recent,
        rolling_summary=rolling_summary,
        relevant_messages=relevant,
        total_tokens=total_tokens,
        stats=SmartContextStats(
            recent_count=len(recent),
            summarized_messages=summarized_count,
            relevant_count=len(relevant),
        ),
    )
