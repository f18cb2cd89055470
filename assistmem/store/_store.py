from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from .. import db
from ..config import AssistMemConfig, load_config
from ..errors import ConfigurationError
from ..semantic import EmbeddingProvider, get_embedding_provider
from ..summarizer import Summarizer, build_summarizer
from . import context as store_context
from . import cron as store_cron
from . import facts as store_facts
from . import graph as store_graph
from . import messages as store_messages
from . import search as store_search
from . import sessions as store_sessions
from . import soul as store_soul
from . import usage as store_usage
from . import vectors as store_vectors
from .types import (
    ConversationContext,
    CronJob,
    Fact,
    FactsGraph,
    FactSearchResult,
    Message,
    MessageMetadata,
    RelevantMessage,
    Session,
    SmartContext,
    SoulAspect,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class MemoryStore:
    STOPWORDS = {
        "a",
        "about",
        "an",
        "and",
        "are",
        "as",
        "at",
        "be",
        "but",
        "by",
        "can",
        "for",
        "from",
        "has",
        "have",
        "he",
        "her",
        "his",
        "i",
        "in",
        "is",
        "it",
        "likes",
        "me",
        "my",
        "not",
        "of",
        "on",
        "or",
        "our",
        "she",
        "so",
        "that",
        "the",
        "their",
        "them",
        "then",
        "there",
        "they",
        "this",
        "to",
        "uses",
        "very",
        "was",
        "we",
        "were",
        "what",
        "when",
        "where",
        "which",
        "who",
        "will",
        "with",
        "you",
        "your",
    }

    def __init__(
        self,
        db_path: Path | str | None = None,
        *,
        config: AssistMemConfig | None = None,
        embedder: EmbeddingProvider | None = _UNSET,
        summarizer: Summarizer | None = _UNSET,
        check_same_thread: bool = True,
    ):
        self.config = config or load_config()
        self.db_path = Path(db_path or self.config.db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.initialize_schema(self.conn)
        self.embedder = self._resolve_embedder() if embedder is _UNSET else embedder
        self.summarizer = build_summarizer(self.config) if summarizer is _UNSET else summarizer
        self._cache: dict[str, str] = {}
        self._pending_embeddings: set[asyncio.Task[None]] = set()

    def _resolve_embedder(self) -> EmbeddingProvider | None:
        try:
            return get_embedding_provider(self.config)
        except ConfigurationError as exc:
            logger.info("embeddings unavailable, using keyword-only retrieval: %s", exc)
            return None
        except Exception as exc:
            logger.exception("embedding provider init failed", exc_info=exc)
            return None

    def _invalidate_cache(self, key: str) -> None:
        self._cache.pop(key, None)

    def _schedule_fact_embedding(self, fact_id: int) -> None:
        store_vectors.schedule_fact_embedding(self, fact_id)

    async def flush_embeddings(self) -> None:
        while self._pending_embeddings:
            await asyncio.gather(*list(self._pending_embeddings), return_exceptions=True)

    # Sessions

    def create_session(self, name: str) -> Session:
        return store_sessions.create_session(self, name)

    def rename_session(self, session_id: str, name: str) -> bool:
        return store_sessions.rename_session(self, session_id, name)

    def delete_session(self, session_id: str) -> bool:
        return store_sessions.delete_session(self, session_id)

    def touch_session(self, session_id: str) -> None:
        store_sessions.touch_session(self, session_id)

    def get_session(self, session_id: str) -> Session | None:
        return store_sessions.get_session(self, session_id)

    def get_session_by_name(self, name: str) -> Session | None:
        return store_sessions.get_session_by_name(self, name)

    def list_sessions(self) -> list[Session]:
        return store_sessions.list_sessions(self)

    def link_chat(self, chat_id: str | int, session_id: str, name: str | None = None) -> None:
        store_sessions.link_chat(self, chat_id, session_id, name)

    def unlink_chat(self, chat_id: str | int) -> bool:
        return store_sessions.unlink_chat(self, chat_id)

    def get_session_for_chat(self, chat_id: str | int) -> str | None:
        return store_sessions.get_session_for_chat(self, chat_id)

    def get_chat_for_session(self, session_id: str) -> str | None:
        return store_sessions.get_chat_for_session(self, session_id)

    # Messages

    def save_message(
        self,
        role: str,
        content: str,
        session_id: str = db.DEFAULT_SESSION_ID,
        metadata: MessageMetadata | None = None,
    ) -> int:
        return store_messages.save_message(self, role, content, session_id, metadata)

    def get_message(self, message_id: int) -> Message | None:
        return store_messages.get_message(self, message_id)

    def get_recent_messages(
        self, session_id: str = db.DEFAULT_SESSION_ID, limit: int = 50
    ) -> list[Message]:
        return store_messages.get_recent_messages(self, session_id, limit)

    def count_messages(self, session_id: str = db.DEFAULT_SESSION_ID) -> int:
        return store_messages.count_messages(self, session_id)

    def clear_conversation(self, session_id: str = db.DEFAULT_SESSION_ID) -> int:
        return store_messages.clear_conversation(self, session_id)

    # Facts

    def save_fact(self, category: str, subject: str, content: str) -> int:
        return store_facts.save_fact(self, category, subject, content)

    def get_fact(self, fact_id: int) -> Fact | None:
        return store_facts.get_fact(self, fact_id)

    def get_all_facts(self) -> list[Fact]:
        return store_facts.get_all_facts(self)

    def get_facts_by_category(self, category: str) -> list[Fact]:
        return store_facts.get_facts_by_category(self, category)

    def get_fact_categories(self) -> list[str]:
        return store_facts.get_fact_categories(self)

    def get_facts_for_context(self) -> str:
        return store_facts.get_facts_for_context(self)

    def search_facts(self, query: str, category: str | None = None) -> list[Fact]:
        return store_facts.search_facts(self, query, category)

    def delete_fact(self, fact_id: int) -> bool:
        return store_facts.delete_fact(self, fact_id)

    def delete_fact_by_subject(self, category: str, subject: str) -> bool:
        return store_facts.delete_fact_by_subject(self, category, subject)

    def rebuild_fts_index(self) -> int:
        return db.rebuild_fts_index(self.conn, force=True)

    # Soul

    def set_soul_aspect(self, aspect: str, content: str) -> int:
        return store_soul.set_soul_aspect(self, aspect, content)

    def get_soul_aspect(self, aspect: str) -> SoulAspect | None:
        return store_soul.get_soul_aspect(self, aspect)

    def list_soul_aspects(self) -> list[SoulAspect]:
        return store_soul.list_soul_aspects(self)

    def delete_soul_aspect(self, aspect_id: int) -> bool:
        return store_soul.delete_soul_aspect(self, aspect_id)

    def get_soul_context(self) -> str:
        return store_soul.get_soul_context(self)

    # Cron jobs

    def save_cron_job(
        self,
        name: str,
        schedule: str,
        prompt: str,
        channel: str = "default",
        session_id: str = db.DEFAULT_SESSION_ID,
    ) -> int:
        return store_cron.save_cron_job(self, name, schedule, prompt, channel, session_id)

    def get_cron_jobs(self, enabled_only: bool = True) -> list[CronJob]:
        return store_cron.get_cron_jobs(self, enabled_only)

    def set_cron_job_enabled(self, name: str, enabled: bool) -> bool:
        return store_cron.set_cron_job_enabled(self, name, enabled)

    def delete_cron_job(self, name: str) -> bool:
        return store_cron.delete_cron_job(self, name)

    # Embeddings and retrieval

    async def embed_fact(self, fact_id: int) -> bool:
        return await store_vectors.embed_fact(self, fact_id)

    async def embed_missing_facts(self) -> int:
        return await store_vectors.embed_missing_facts(self)

    async def embed_message(self, message_id: int) -> bool:
        return await store_vectors.embed_message(self, message_id)

    async def embed_recent_messages(
        self, session_id: str = db.DEFAULT_SESSION_ID, limit: int = 100
    ) -> int:
        return await store_vectors.embed_recent_messages(self, session_id, limit)

    async def search_facts_hybrid(
        self, query: str, limit: int | None = None
    ) -> list[FactSearchResult]:
        return await store_search.search_facts_hybrid(self, query, limit)

    async def search_relevant_messages(
        self,
        query: str,
        session_id: str = db.DEFAULT_SESSION_ID,
        *,
        exclude_ids: tuple[int, ...] | set[int] = (),
        limit: int = 5,
    ) -> list[RelevantMessage]:
        return await store_search.search_relevant_messages(
            self, query, session_id, exclude_ids=exclude_ids, limit=limit
        )

    # Context assembly

    async def get_conversation_context(
        self, session_id: str = db.DEFAULT_SESSION_ID, token_limit: int | None = None
    ) -> ConversationContext:
        return await store_context.get_conversation_context(self, session_id, token_limit)

    async def get_smart_context(
        self,
        session_id: str = db.DEFAULT_SESSION_ID,
        *,
        recent_message_limit: int | None = None,
        rolling_summary_interval: int | None = None,
        semantic_retrieval_count: int | None = None,
        current_query: str | None = None,
    ) -> SmartContext:
        return await store_context.get_smart_context(
            self,
            session_id,
            recent_message_limit=recent_message_limit,
            rolling_summary_interval=rolling_summary_interval,
            semantic_retrieval_count=semantic_retrieval_count,
            current_query=current_query,
        )

    def build_facts_graph(self) -> FactsGraph:
        return store_graph.build_facts_graph(self)

    def stats(self, session_id: str | None = None) -> dict[str, Any]:
        return store_usage.stats(self, session_id)

    def close(self) -> None:
        self.conn.close()

    @staticmethod
    def estimate_tokens(text: str) -> int:
        return store_messages.estimate_tokens(text)
