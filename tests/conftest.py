from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from assistmem.config import AssistMemConfig
from assistmem.store import MemoryStore

TOPIC_AXES = [
    ("dog", "dogs", "puppy", "pet", "pets"),
    ("coffee", "espresso", "latte"),
    ("tokyo", "japan", "kyoto"),
]


class TopicEmbedder:
    """Deterministic embedder: one dimension per topic plus a small constant component."""

    model = "topic-test"

    def __init__(self, axes=TOPIC_AXES) -> None:
        self.axes = axes
        self.calls: list[str] = []

    def _vector(self, text: str) -> list[float]:
        words = {word.strip(".,:;!?-").lower() for word in text.split()}
        vector = [1.0 if words & set(axis) else 0.0 for axis in self.axes]
        vector.append(0.1)
        return vector

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return self._vector(text)

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.extend(texts)
        return [self._vector(text) for text in texts]


class FailingEmbedder:
    model = "failing-test"

    async def embed(self, text: str) -> list[float]:
        raise RuntimeError("embedding backend down")

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        raise RuntimeError("embedding backend down")


class RecordingSummarizer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[list[dict[str, str]]] = []

    async def summarize(self, messages) -> str:
        batch = [dict(message) for message in messages]
        self.calls.append(batch)
        if self.fail:
            raise RuntimeError("summarizer unavailable")
        return f"summary of {len(batch)} messages"


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ASSISTMEM_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("ASSISTMEM_EMBEDDING_DISABLED", "1")
    for name in (
        "ASSISTMEM_DB",
        "ASSISTMEM_EMBEDDING_PROVIDER",
        "ASSISTMEM_SUMMARY_PROVIDER",
        "ASSISTMEM_TOKEN_LIMIT",
        "ASSISTMEM_RESERVED_TOKENS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_store(tmp_path: Path):
    """Open stores on one tmp database, closing them at teardown."""

    opened: list[MemoryStore] = []

    def _make(
        *, embedder=None, summarizer=None, config: AssistMemConfig | None = None
    ) -> MemoryStore:
        store = MemoryStore(
            tmp_path / "mem.sqlite",
            config=config or AssistMemConfig(),
            embedder=embedder,
            summarizer=summarizer,
        )
        opened.append(store)
        return store

    yield _make
    for store in opened:
        store.close()


@pytest.fixture
def topic_embedder() -> TopicEmbedder:
    return TopicEmbedder()


@pytest.fixture
def failing_embedder() -> FailingEmbedder:
    return FailingEmbedder()


@pytest.fixture
def recording_summarizer() -> RecordingSummarizer:
    return RecordingSummarizer()


@pytest.fixture
def failing_summarizer() -> RecordingSummarizer:
    return RecordingSummarizer(fail=True)


@pytest.fixture
def topic_embedder_factory():
    return TopicEmbedder
