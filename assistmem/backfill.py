from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from .config import AssistMemConfig, load_config
from .store import MemoryStore

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    facts: int = 0
    messages: int = 0
    skipped: bool = False


class EmbeddingBackfiller:
    """Periodically embeds facts and recent messages that have no vectors yet.

    A tick that fires while the previous one is still running is skipped, not
    queued.
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        *,
        config: AssistMemConfig | None = None,
        store_factory=None,
    ) -> None:
        self.config = config or load_config()
        self.db_path = db_path or self.config.db_path
        self._store_factory = store_factory or (
            lambda: MemoryStore(self.db_path, config=self.config)
        )
        self._running = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def interval_s(self) -> int:
        return max(1, self.config.backfill_interval_s)

    def tick(self) -> BackfillResult:
        if not self._running.acquire(blocking=False):
            logger.info("embedding backfill still running; skipping tick")
            return BackfillResult(skipped=True)
        try:
            return self._run_pass()
        finally:
            self._running.release()

    def _run_pass(self) -> BackfillResult:
        store = self._store_factory()
        try:
            if store.embedder is None:
                return BackfillResult()
            return asyncio.run(self._backfill(store))
        except Exception as exc:
            logger.exception("embedding backfill failed", exc_info=exc)
            return BackfillResult()
        finally:
            store.close()

    async def _backfill(self, store: MemoryStore) -> BackfillResult:
        result = BackfillResult()
        result.facts = await store.embed_missing_facts()
        for session in store.list_sessions():
            result.messages += await store.embed_recent_messages(
                session.id, limit=self.config.backfill_message_limit
            )
        if result.facts or result.messages:
            logger.info(
                "embedding backfill stored %d fact and %d message vectors",
                result.facts,
                result.messages,
            )
        return result

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="embedding-backfill", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        self.tick()
        while not self._stop.wait(self.interval_s()):
            self.tick()

    def run_forever(self) -> None:
        """Run ticks on the calling thread until ``stop`` is called."""

        self._stop.clear()
        self._run()
