import asyncio

import pytest

from assistmem.config import AssistMemConfig
from assistmem.store.search import build_fts_query


def _seed(store) -> dict[str, int]:
    return {
        "dog": store.save_fact("pets", "dog", "Has a puppy named Rex"),
        "coffee": store.save_fact("drinks", "coffee", "Espresso every morning"),
        "trip": store.save_fact("travel", "trip", "Visiting Kyoto next spring"),
    }


def test_build_fts_query() -> None:
    assert build_fts_query("my dog") == '"my dog" OR "my" OR "dog"'
    assert build_fts_query('say "hi"') == '"say  hi" OR "say" OR "hi"'
    assert build_fts_query("   ") == ""


def test_vector_match_without_keyword_overlap(make_store, topic_embedder) -> None:
    store = make_store(embedder=topic_embedder)
    ids = _seed(store)

    results = asyncio.run(store.search_facts_hybrid("pet"))

    assert [item.fact.id for item in results] == [ids["dog"]]
    [hit] = results
    assert hit.vector_score == pytest.approx(1.0)
    assert hit.keyword_score == 0.0
    assert hit.score == pytest.approx(0.7)


def test_vector_and_keyword_scores_blend(make_store, topic_embedder) -> None:
    store = make_store(embedder=topic_embedder)
    ids = _seed(store)

    [hit] = asyncio.run(store.search_facts_hybrid("puppy"))

    assert hit.fact.id == ids["dog"]
    assert hit.keyword_score > 0.0
    assert hit.score == pytest.approx(0.7 * hit.vector_score + 0.3 * hit.keyword_score)


def test_weak_keyword_only_hits_fall_under_hybrid_threshold(make_store, topic_embedder) -> None:
    store = make_store(embedder=topic_embedder)
    _seed(store)

    assert asyncio.run(store.search_facts_hybrid("Rex")) == []


def test_results_respect_limit_and_order(make_store, topic_embedder) -> None:
    store = make_store(embedder=topic_embedder)
    store.save_fact("pets", "dog", "Has a puppy named Rex")
    store.save_fact("pets", "cat", "Allergic to cats but loves dogs")
    store.save_fact("pets", "vet", "Vet visit for the pet every May")

    results = asyncio.run(store.search_facts_hybrid("dog", limit=2))

    assert len(results) == 2
    assert results[0].score >= results[1].score


def test_keyword_only_mode_without_embedder(make_store) -> None:
    store = make_store()
    store.save_fact("food", "pizza", "Loves pizza with olives")
    store.save_fact("work", "job", "Works as a nurse")

    results = asyncio.run(store.search_facts_hybrid("pizza"))

    assert [item.fact.subject for item in results] == ["pizza"]
    assert results[0].vector_score == 0.0
    assert results[0].score == results[0].keyword_score
    assert asyncio.run(store.search_facts_hybrid("astronomy")) == []


def test_keyword_only_keeps_fts_order_when_threshold_filters_everything(make_store) -> None:
    store = make_store(config=AssistMemConfig(keyword_only_threshold=5.0))
    store.save_fact("food", "pizza", "Loves pizza with olives")

    results = asyncio.run(store.search_facts_hybrid("pizza"))

    assert [item.fact.subject for item in results] == ["pizza"]


def test_fts_syntax_in_queries_is_neutralised(make_store) -> None:
    store = make_store()
    store.save_fact("food", "pizza", "Loves pizza with olives")

    results = asyncio.run(store.search_facts_hybrid('"(pizza* AND'))

    assert [item.fact.subject for item in results] == ["pizza"]


def test_query_embedding_failure_degrades_to_keyword_only(make_store, failing_embedder) -> None:
    store = make_store(embedder=failing_embedder)
    store.save_fact("food", "pizza", "Loves pizza with olives")

    results = asyncio.run(store.search_facts_hybrid("pizza"))

    assert [item.fact.subject for item in results] == ["pizza"]
    assert results[0].score == results[0].keyword_score


def test_mismatched_vectors_are_skipped(
    make_store, topic_embedder, topic_embedder_factory, caplog
) -> None:
    writer = make_store(embedder=topic_embedder)
    writer.save_fact("pets", "dog", "Has a puppy named Rex")

    reader = make_store(embedder=topic_embedder_factory([("dog",), ("coffee",)]))
    results = asyncio.run(reader.search_facts_hybrid("pet"))

    assert results == []
    assert "skipped 1 fact chunks" in caplog.text


def test_search_relevant_messages(make_store, topic_embedder) -> None:
    store = make_store(embedder=topic_embedder)
    other = store.create_session("other")
    puppy = store.save_message("user", "my puppy chewed the sofa")
    coffee = store.save_message("user", "the espresso machine broke")
    store.save_message("user", "ok")
    store.save_message("user", "my puppy is in another session", other.id)
    asyncio.run(store.embed_recent_messages("default"))
    asyncio.run(store.embed_recent_messages(other.id))

    results = asyncio.run(store.search_relevant_messages("dog", "default"))
    assert [item.message.id for item in results] == [puppy]
    assert results[0].similarity == pytest.approx(1.0)

    excluded = asyncio.run(
        store.search_relevant_messages("dog", "default", exclude_ids={puppy})
    )
    assert excluded == []

    both = asyncio.run(store.search_relevant_messages("dog and latte", "default", limit=1))
    assert len(both) == 1
    assert both[0].message.id in {puppy, coffee}
