import asyncio

from assistmem.semantic import deserialize_embedding


def _chunk_count(store, fact_id: int) -> int:
    row = store.conn.execute("SELECT COUNT(*) FROM chunks WHERE fact_id = ?", (fact_id,)).fetchone()
    return int(row[0])


def test_save_fact_upserts_on_category_and_subject(make_store) -> None:
    store = make_store()
    first = store.save_fact("preferences", "coffee", "Takes it black")
    again = store.save_fact("preferences", "coffee", "Switched to oat lattes")
    other = store.save_fact("preferences", "tea", "Likes green tea")

    assert first == again
    assert other != first
    facts = store.get_all_facts()
    assert [(f.subject, f.content) for f in facts] == [
        ("coffee", "Switched to oat lattes"),
        ("tea", "Likes green tea"),
    ]


def test_fact_queries(make_store) -> None:
    store = make_store()
    store.save_fact("work", "employer", "Works at a hospital")
    store.save_fact("family", "sister", "Sister lives in Lisbon")
    store.save_fact("family", "", "Has two cousins")

    assert store.get_fact_categories() == ["family", "work"]
    assert [f.subject for f in store.get_facts_by_category("family")] == ["", "sister"]
    assert [f.content for f in store.search_facts("lisbon")] == ["Sister lives in Lisbon"]
    assert store.search_facts("lives", category="work") == []
    assert len(store.search_facts("family")) == 2


def test_facts_context_rendering_and_cache(make_store) -> None:
    store = make_store()
    assert store.get_facts_for_context() == ""

    store.save_fact("family", "sister", "Lives in Lisbon")
    store.save_fact("family", "", "Has two cousins")
    store.save_fact("work", "employer", "Hospital")

    expected = "\n".join(
        [
            "## Known Facts",
            "\n### family",
            "- Has two cousins",
            "- **sister**: Lives in Lisbon",
            "\n### work",
            "- **employer**: Hospital",
        ]
    )
    assert store.get_facts_for_context() == expected
    assert store._cache["facts_context"] == expected

    # Writes that bypass the store are not visible until the cache is invalidated.
    store.conn.execute("UPDATE facts SET content = 'Clinic' WHERE subject = 'employer'")
    store.conn.commit()
    assert "Hospital" in store.get_facts_for_context()

    store.save_fact("work", "employer", "Clinic")
    assert "Clinic" in store.get_facts_for_context()
    assert store.delete_fact_by_subject("work", "employer")
    assert "### work" not in store.get_facts_for_context()


def test_delete_fact_cascades_chunks(make_store, topic_embedder) -> None:
    store = make_store(embedder=topic_embedder)
    fact_id = store.save_fact("pets", "dog", "Has a puppy named Rex")
    assert _chunk_count(store, fact_id) == 1

    assert store.delete_fact(fact_id)
    assert _chunk_count(store, fact_id) == 0
    assert not store.delete_fact(fact_id)


def test_save_fact_embeds_inline_without_running_loop(make_store, topic_embedder) -> None:
    store = make_store(embedder=topic_embedder)
    fact_id = store.save_fact("pets", "dog", "Has a puppy named Rex")

    assert topic_embedder.calls == ["pets: dog - Has a puppy named Rex"]
    row = store.conn.execute(
        "SELECT content, embedding FROM chunks WHERE fact_id = ?", (fact_id,)
    ).fetchone()
    assert row["content"] == "pets: dog - Has a puppy named Rex"
    assert deserialize_embedding(row["embedding"]) == [1.0, 0.0, 0.0, 0.10000000149011612]

    store.save_fact("pets", "dog", "Adopted a second puppy")
    assert _chunk_count(store, fact_id) == 1


def test_save_fact_schedules_embedding_inside_event_loop(make_store, topic_embedder) -> None:
    store = make_store(embedder=topic_embedder)

    async def scenario() -> int:
        fact_id = store.save_fact("travel", "trip", "Going to Kyoto in spring")
        # The write is visible immediately; the vector follows.
        assert store.get_fact(fact_id) is not None
        assert store._pending_embeddings
        await store.flush_embeddings()
        return fact_id

    fact_id = asyncio.run(scenario())
    assert _chunk_count(store, fact_id) == 1
    assert not store._pending_embeddings


def test_embedding_failure_never_fails_save_fact(make_store, failing_embedder, caplog) -> None:
    store = make_store(embedder=failing_embedder)
    fact_id = store.save_fact("pets", "dog", "Has a puppy")

    assert store.get_fact(fact_id).content == "Has a puppy"
    assert _chunk_count(store, fact_id) == 0
    assert "fact embedding failed" in caplog.text


def test_embed_missing_facts(make_store, topic_embedder) -> None:
    plain = make_store()
    plain.save_fact("pets", "dog", "Has a puppy")
    plain.save_fact("drinks", "coffee", "Espresso daily")

    store = make_store(embedder=topic_embedder)
    assert asyncio.run(store.embed_missing_facts()) == 2
    assert asyncio.run(store.embed_missing_facts()) == 0


def test_soul_aspects(make_store) -> None:
    store = make_store()
    assert store.get_soul_context() == ""

    aspect_id = store.set_soul_aspect("tone", "Warm and concise")
    assert store.set_soul_aspect("tone", "Warm, concise, playful") == aspect_id
    store.set_soul_aspect("boundaries", "No medical diagnoses")

    assert store.get_soul_aspect("tone").content == "Warm, concise, playful"
    assert [a.aspect for a in store.list_soul_aspects()] == ["boundaries", "tone"]
    context = store.get_soul_context()
    assert context.startswith("## Soul\n\n### boundaries\nNo medical diagnoses")
    assert "\n### tone\nWarm, concise, playful" in context

    assert store.delete_soul_aspect(aspect_id)
    assert "tone" not in store.get_soul_context()
    assert store.get_soul_aspect("tone") is None
