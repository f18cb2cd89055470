from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from ..errors import IntegrityMismatch
from ..semantic import cosine_similarity, deserialize_embedding
from .facts import get_all_facts
from .types import FactsGraph, GraphLink, GraphNode, LinkType

if TYPE_CHECKING:
    from ._store import MemoryStore

logger = logging.getLogger(__name__)

CATEGORY_NEIGHBORS = 3
CATEGORY_STRENGTH = 0.3
SEMANTIC_THRESHOLD = 0.5
KEYWORD_MIN_SHARED = 2


def significant_words(text: str, stopwords: set[str], min_length: int = 3) -> set[str]:
    tokens = (token.lower() for token in re.findall(r"[A-Za-z0-9_]+", text))
    return {token for token in tokens if len(token) >= min_length and token not in stopwords}


class _LinkSet:
    def __init__(self) -> None:
        self.links: list[GraphLink] = []
        self._seen: set[tuple[int, int, str]] = set()

    def add(self, a: int, b: int, link_type: LinkType, strength: float) -> None:
        if a == b:
            return
        key = (min(a, b), max(a, b), link_type)
        if key in self._seen:
            return
        self._seen.add(key)
        self.links.append(
            GraphLink(source=a, target=b, type=link_type, strength=round(strength, 3))
        )


def build_facts_graph(store: MemoryStore) -> FactsGraph:
    """Project facts into a node/link graph for display. Retrieval never reads it."""

    cfg = store.config
    facts = get_all_facts(store)
    categories = sorted({fact.category for fact in facts})
    groups = {category: index for index, category in enumerate(categories)}
    nodes = [
        GraphNode(
            id=fact.id,
            subject=fact.subject,
            category=fact.category,
            content=fact.content,
            group=groups[fact.category],
        )
        for fact in facts
    ]
    links = _LinkSet()

    by_category: dict[str, list[int]] = {}
    for fact in facts:
        by_category.setdefault(fact.category, []).append(fact.id)
    for ids in by_category.values():
        for index, fact_id in enumerate(ids):
            for neighbor in ids[index + 1 : index + 1 + CATEGORY_NEIGHBORS]:
                links.add(fact_id, neighbor, "category", CATEGORY_STRENGTH)

    _add_semantic_links(store, links, cfg.graph_max_semantic_facts, cfg.graph_max_comparisons)

    keyword_facts = facts[: cfg.graph_max_keyword_facts]
    words = {
        fact.id: significant_words(f"{fact.subject} {fact.content}", store.STOPWORDS)
        for fact in keyword_facts
    }
    comparisons = 0
    for i, left in enumerate(keyword_facts):
        if comparisons >= cfg.graph_max_comparisons:
            break
        for right in keyword_facts[i + 1 :]:
            comparisons += 1
            if comparisons > cfg.graph_max_comparisons:
                break
            shared = words[left.id] & words[right.id]
            if len(shared) < KEYWORD_MIN_SHARED:
                continue
            smaller = max(1, min(len(words[left.id]), len(words[right.id])))
            links.add(left.id, right.id, "keyword", min(1.0, len(shared) / smaller))

    return FactsGraph(nodes=nodes, links=links.links)


def _add_semantic_links(
    store: MemoryStore, links: _LinkSet, max_facts: int, max_comparisons: int
) -> None:
    rows = store.conn.execute(
        """
        SELECT fact_id, embedding FROM chunks
        WHERE embedding IS NOT NULL
        ORDER BY fact_id
        LIMIT ?
        """,
        (max_facts,),
    ).fetchall()
    vectors: list[tuple[int, list[float]]] = []
    for row in rows:
        try:
            vectors.append((int(row["fact_id"]), deserialize_embedding(row["embedding"])))
        except IntegrityMismatch:
            continue
    comparisons = 0
    skipped = 0
    for i, (left_id, left_vec) in enumerate(vectors):
        if comparisons >= max_comparisons:
            break
        for right_id, right_vec in vectors[i + 1 :]:
            comparisons += 1
            if comparisons > max_comparisons:
                break
            try:
                similarity = cosine_similarity(left_vec, right_vec)
            except IntegrityMismatch:
                skipped += 1
                continue
            if similarity > SEMANTIC_THRESHOLD:
                links.add(left_id, right_id, "semantic", similarity)
    if skipped:
        logger.debug("graph: skipped %d mismatched vector pairs", skipped)
