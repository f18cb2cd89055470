from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from typing import TYPE_CHECKING

from ..errors import IntegrityMismatch
from ..semantic import cosine_similarity, deserialize_embedding
from .facts import _row_to_fact
from .messages import _row_to_message
from .types import FactSearchResult, RelevantMessage

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

KEYWORD_CANDIDATE_LIMIT = 20


def build_fts_query(query: str) -> str:
    """Phrase match OR any single term, with FTS5 syntax characters neutralised."""

    cleaned = query.replace('"', " ").replace("'", " ").strip()
    terms = [term for term in cleaned.split() if term]
    if not terms:
        return ""
    parts = [f'"{cleaned}"'] + [f'"{term}"' for term in terms]
    return " OR ".join(parts)


def _weights(store: MemoryStore, vector_active: bool) -> tuple[float, float, float]:
    cfg = store.config
    if vector_active:
        return cfg.vector_weight, cfg.keyword_weight, cfg.min_score_threshold
    return 0.0, 1.0, cfg.keyword_only_threshold


async def _vector_pass(
    store: MemoryStore, query: str
) -> list[tuple[int, float, sqlite3.Row]] | None:
    embedder = store.embedder
    if embedder is None:
        return None
    try:
        query_vector = await embedder.embed(query)
    except Exception as exc:
        logger.exception("query embedding failed", exc_info=exc)
        return None
    rows = store.conn.execute(
        """
        SELECT chunks.embedding, facts.id, facts.category, facts.subject, facts.content,
            facts.created_at, facts.updated_at
        FROM chunks
        JOIN facts ON facts.id = chunks.fact_id
        WHERE chunks.embedding IS NOT NULL
        """
    ).fetchall()
    hits: list[tuple[int, float, sqlite3.Row]] = []
    mismatched = 0
    for row in rows:
        try:
            vector = deserialize_embedding(row["embedding"])
            similarity = cosine_similarity(query_vector, vector)
        except IntegrityMismatch:
            mismatched += 1
            continue
        hits.append((int(row["id"]), similarity, row))
    if mismatched:
        logger.warning(
            "skipped %d fact chunks with unusable embeddings (query dimension %d)",
            mismatched,
            len(query_vector),
        )
    return hits


def _keyword_pass(store: MemoryStore, query: str) -> list[tuple[int, float, sqlite3.Row]]:
    fts_query = build_fts_query(query)
    if not fts_query:
        return []
    try:
        rows = store.conn.execute(
            """
            SELECT facts.id, facts.category, facts.subject, facts.content,
                facts.created_at, facts.updated_at, bm25(facts_fts) AS rank
            FROM facts_fts
            JOIN facts ON facts.id = facts_fts.rowid
            WHERE facts_fts MATCH ?
            ORDER BY rank
            LIMIT ?
            """,
            (fts_query, KEYWORD_CANDIDATE_LIMIT),
        ).fetchall()
    except sqlite3.Error as exc:
        logger.warning("keyword search failed", exc_info=exc)
        return []
    if not rows:
        return []
    max_rank = max(max(abs(float(row["rank"])) for row in rows), 1.0)
    return [(int(row["id"]), 1.0 - abs(float(row["rank"])) / max_rank, row) for row in rows]


async def search_facts_hybrid(
    store: MemoryStore, query: str, limit: int | None = None
) -> list[FactSearchResult]:
    limit = limit or store.config.max_search_results
    vector_hits = await _vector_pass(store, query)
    vector_weight, keyword_weight, threshold = _weights(store, vector_hits is not None)

    results: dict[int, FactSearchResult] = {}
    for fact_id, similarity, row in vector_hits or []:
        results[fact_id] = FactSearchResult(
            fact=_row_to_fact(row),
            score=similarity * vector_weight,
            vector_score=similarity,
        )

    keyword_hits = _keyword_pass(store, query)
    for fact_id, normalized, row in keyword_hits:
        existing = results.get(fact_id)
        if existing is None:
            results[fact_id] = FactSearchResult(
                fact=_row_to_fact(row),
                score=normalized * keyword_weight,
                keyword_score=normalized,
            )
            continue
        existing.keyword_score = normalized
        existing.score += normalized * keyword_weight

    ranked = sorted(
        (item for item in results.values() if item.score >= threshold),
        key=lambda item: item.score,
        reverse=True,
    )
    if not ranked and vector_hits is None and keyword_hits:
        # Normalisation can push every keyword-only hit under the threshold;
        # keep FTS order rather than return nothing.
        ranked = [results[fact_id] for fact_id, _, _ in keyword_hits]
    return ranked[:limit]


async def search_relevant_messages(
    store: MemoryStore,
    query: str,
    session_id: str,
    *,
    exclude_ids: Iterable[int] = (),
    limit: int = 5,
) -> list[RelevantMessage]:
    embedder = store.embedder
    if embedder is None or limit <= 0 or not query.strip():
        return []
    try:
        query_vector = await embedder.embed(query)
    except Exception as exc:
        logger.exception("query embedding failed", exc_info=exc)
        return []
    excluded = set(exclude_ids)
    rows = store.conn.execute(
        """
        SELECT messages.*, message_embeddings.embedding
        FROM message_embeddings
        JOIN messages ON messages.id = message_embeddings.message_id
        WHERE messages.session_id = ?
        """,
        (session_id,),
    ).fetchall()
    floor = store.config.message_similarity_floor
    scored: list[RelevantMessage] = []
    mismatched = 0
    for row in rows:
        if int(row["id"]) in excluded:
            continue
        try:
            similarity = cosine_similarity(query_vector, deserialize_embedding(row["embedding"]))
        except IntegrityMismatch:
            mismatched += 1
            continue
        if similarity < floor:
            continue
        scored.append(RelevantMessage(message=_row_to_message(row), similarity=similarity))
    if mismatched:
        logger.warning("skipped %d message embeddings with unusable vectors", mismatched)
    scored.sort(key=lambda item: item.similarity, reverse=True)
    return scored[:limit]

