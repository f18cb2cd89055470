import asyncio

from assistmem.config import AssistMemConfig
from assistmem.store.context import SUMMARY_HEADER
from assistmem.summarizer import PREVIOUS_SUMMARY_PREFIX, basic_summary


def _notes(store, count: int, session_id: str = "default", start: int = 1) -> list[int]:
    # "user note 01" is 12 characters, i.e. 3 estimated tokens.
    return [
        store.save_message("user", f"user note {i:02d}", session_id)
        for i in range(start, start + count)
    ]


def _summary_rows(store, table: str = "summaries") -> list[tuple[int, int, str]]:
    rows = store.conn.execute(
        f"SELECT start_message_id, end_message_id, content FROM {table} ORDER BY id"
    ).fetchall()
    return [(row[0], row[1], row[2]) for row in rows]


def test_whole_session_fits_without_summary(make_store) -> None:
    store = make_store(config=AssistMemConfig(reserved_tokens=0))
    _notes(store, 25)

    ctx = asyncio.run(store.get_conversation_context(token_limit=1000))

    assert len(ctx.messages) == 25
    assert ctx.summarized_count == 0
    assert ctx.summary is None
    assert ctx.total_tokens == 75
    assert _summary_rows(store) == []


def test_empty_session_context(make_store) -> None:
    store = make_store()
    ctx = asyncio.run(store.get_conversation_context())
    assert ctx.messages == []
    assert ctx.total_tokens == 0


def test_older_messages_are_summarized_and_reused(make_store) -> None:
    store = make_store(config=AssistMemConfig(reserved_tokens=0))
    ids = _notes(store, 25)

    ctx = asyncio.run(store.get_conversation_context(token_limit=15))

    assert ctx.summarized_count == 20
    system, *recent = ctx.messages
    assert system["role"] == "system"
    assert system["content"].startswith(
        f"{SUMMARY_HEADER}\nPrevious conversation (20 messages) covered:"
    )
    assert [m["content"] for m in recent] == [f"user note {i}" for i in range(21, 26)]
    assert ctx.total_tokens == 15 + store.estimate_tokens(ctx.summary)
    assert _summary_rows(store) == [(ids[0], ids[19], ctx.summary)]

    again = asyncio.run(store.get_conversation_context(token_limit=15))
    assert again.summary == ctx.summary
    assert len(_summary_rows(store)) == 1


def test_summary_boundaries_ignore_other_sessions(make_store) -> None:
    store = make_store(config=AssistMemConfig(reserved_tokens=0))
    other = store.create_session("other")
    ids = []
    for i in range(1, 26):
        ids.append(store.save_message("user", f"user note {i:02d}"))
        store.save_message("user", f"side note {i:02d}", other.id)

    ctx = asyncio.run(store.get_conversation_context(token_limit=15))
    asyncio.run(store.get_conversation_context(token_limit=15))

    assert ctx.summarized_count == 20
    assert "side note" not in ctx.summary
    assert _summary_rows(store) == [(ids[0], ids[19], ctx.summary)]


def test_summary_is_extended_from_previous_one(make_store, recording_summarizer) -> None:
    store = make_store(
        config=AssistMemConfig(reserved_tokens=0, summary_keep=1),
        summarizer=recording_summarizer,
    )
    ids = _notes(store, 25)

    first = asyncio.run(store.get_conversation_context(token_limit=15))
    assert first.summary == "summary of 20 messages"
    assert len(recording_summarizer.calls[0]) == 20

    _notes(store, 1, start=26)
    second = asyncio.run(store.get_conversation_context(token_limit=15))

    previous, new_message = recording_summarizer.calls[1]
    assert previous == {
        "role": "system",
        "content": f"{PREVIOUS_SUMMARY_PREFIX}summary of 20 messages",
    }
    assert new_message["content"] == "user note 21"
    assert second.summary == "summary of 2 messages"
    assert second.summarized_count == 21
    # Only the newest summary is kept, and it still starts at the first message.
    assert _summary_rows(store) == [(ids[0], ids[20], "summary of 2 messages")]


def test_failed_summarizer_falls_back_without_persisting(make_store, failing_summarizer) -> None:
    store = make_store(config=AssistMemConfig(reserved_tokens=0), summarizer=failing_summarizer)
    _notes(store, 25)

    ctx = asyncio.run(store.get_conversation_context(token_limit=15))

    assert ctx.summary.startswith("Previous conversation (20 messages) covered:")
    assert len(ctx.messages) == 6
    assert _summary_rows(store) == []


def test_budget_smaller_than_newest_message_summarizes_everything(make_store) -> None:
    store = make_store(config=AssistMemConfig(reserved_tokens=0))
    _notes(store, 25)

    ctx = asyncio.run(store.get_conversation_context(token_limit=2))

    assert ctx.summarized_count == 25
    assert len(ctx.messages) == 1
    assert "(25 messages)" in ctx.summary


def _smart_config(**overrides) -> AssistMemConfig:
    values = {"recent_message_limit": 5, "rolling_summary_interval": 10}
    values.update(overrides)
    return AssistMemConfig(**values)


def test_smart_context_short_session(make_store) -> None:
    store = make_store(config=_smart_config())
    _notes(store, 3)

    ctx = asyncio.run(store.get_smart_context())

    assert [m.content for m in ctx.recent_messages] == [
        "user note 01",
        "user note 02",
        "user note 03",
    ]
    assert ctx.rolling_summary is None
    assert ctx.relevant_messages == []
    assert ctx.stats.summarized_messages == 0
    assert ctx.total_tokens == 9


def test_smart_context_with_empty_recent_window_summarizes_everything(make_store) -> None:
    store = make_store(config=_smart_config(recent_message_limit=0))
    ids = _notes(store, 12)

    ctx = asyncio.run(store.get_smart_context())

    assert ctx.recent_messages == []
    assert ctx.stats.summarized_messages == 12
    parts = ctx.rolling_summary.split("\n\n")
    assert [part.splitlines()[0] for part in parts] == [
        "Previous conversation (10 messages) covered:",
        "Previous conversation (2 messages) covered:",
    ]
    assert ctx.total_tokens == store.estimate_tokens(ctx.rolling_summary)
    [(start, end, _)] = _summary_rows(store, "rolling_summaries")
    assert (start, end) == (ids[0], ids[9])


def test_smart_context_negative_recent_limit_is_treated_as_zero(make_store) -> None:
    store = make_store(config=_smart_config())
    _notes(store, 5)

    ctx = asyncio.run(store.get_smart_context(recent_message_limit=-1))

    assert ctx.recent_messages == []
    assert ctx.stats.summarized_messages == 5
    assert ctx.rolling_summary.startswith("Previous conversation (5 messages) covered:")


def test_rolling_summary_commits_full_intervals(make_store) -> None:
    store = make_store(config=_smart_config())
    ids = _notes(store, 30)

    ctx = asyncio.run(store.get_smart_context())

    assert [m.id for m in ctx.recent_messages] == ids[25:]
    assert ctx.stats.recent_count == 5
    assert ctx.stats.summarized_messages == 25
    assert ctx.stats.relevant_count == 0
    parts = ctx.rolling_summary.split("\n\n")
    assert [part.splitlines()[0] for part in parts] == [
        "Previous conversation (10 messages) covered:",
        "Previous conversation (10 messages) covered:",
        "Previous conversation (5 messages) covered:",
    ]
    assert ctx.total_tokens == 15 + store.estimate_tokens(ctx.rolling_summary)

    # Only whole intervals are stored; the tail is rebuilt on each call.
    [(start, end, content)] = _summary_rows(store, "rolling_summaries")
    assert (start, end) == (ids[0], ids[19])
    assert content == "\n\n".join(parts[:2])

    again = asyncio.run(store.get_smart_context())
    assert again.rolling_summary == ctx.rolling_summary
    assert len(_summary_rows(store, "rolling_summaries")) == 1

    ids += _notes(store, 5, start=31)
    asyncio.run(store.get_smart_context())
    rows = _summary_rows(store, "rolling_summaries")
    assert len(rows) == 2
    assert rows[-1][:2] == (ids[0], ids[29])
    assert rows[-1][2].startswith(content + "\n\n")


def test_rolling_summary_uses_summarizer_per_interval(make_store, recording_summarizer) -> None:
    store = make_store(config=_smart_config(), summarizer=recording_summarizer)
    _notes(store, 30)

    ctx = asyncio.run(store.get_smart_context())

    assert [len(call) for call in recording_summarizer.calls] == [10, 10]
    assert ctx.rolling_summary.startswith("summary of 10 messages\n\nsummary of 10 messages\n\n")


def test_rolling_summary_failure_leaves_heuristic_tail(make_store, failing_summarizer) -> None:
    store = make_store(config=_smart_config(), summarizer=failing_summarizer)
    _notes(store, 30)

    ctx = asyncio.run(store.get_smart_context())

    assert ctx.rolling_summary.startswith("Previous conversation (25 messages) covered:")
    assert _summary_rows(store, "rolling_summaries") == []


def test_smart_context_recalls_relevant_older_messages(make_store, topic_embedder) -> None:
    store = make_store(config=_smart_config(recent_message_limit=3), embedder=topic_embedder)
    puppy = store.save_message("user", "my puppy chewed the sofa")
    for _ in range(10):
        store.save_message("assistant", "ok")
    asyncio.run(store.embed_recent_messages())

    ctx = asyncio.run(store.get_smart_context(current_query="what should I do about the dog?"))

    assert [item.message.id for item in ctx.relevant_messages] == [puppy]
    assert ctx.stats.relevant_count == 1
    assert ctx.total_tokens == (
        sum(m.token_count for m in ctx.recent_messages)
        + store.estimate_tokens(ctx.rolling_summary)
        + ctx.relevant_messages[0].message.token_count
    )

    without_query = asyncio.run(store.get_smart_context())
    assert without_query.relevant_messages == []


def test_basic_summary_matches_stored_summary(make_store) -> None:
    store = make_store(config=AssistMemConfig(reserved_tokens=0))
    _notes(store, 25)

    ctx = asyncio.run(store.get_conversation_context(token_limit=15))

    expected = basic_summary([m.as_chat() for m in store.get_recent_messages(limit=25)][:20])
    assert ctx.summary == expected
