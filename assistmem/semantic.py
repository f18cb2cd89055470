from __future__ import annotations

import asyncio
import logging
import math
import struct
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Protocol

from .errors import ConfigurationError, IntegrityMismatch, TransientProviderError

if TYPE_CHECKING:
    from .config import AssistMemConfig

logger = logging.getLogger(__name__)

DEFAULT_FASTEMBED_MODEL = "BAAI/bge-small-en-v1.5"
DEFAULT_OPENAI_EMBEDDING_MODEL = "text-embedding-3-small"
OPENAI_EMBEDDING_DIMENSIONS = 1536


class EmbeddingProvider(Protocol):
    model: str

    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]: ...


_EMBEDDING_EXECUTOR: ThreadPoolExecutor | None = None


def _get_embedding_executor() -> ThreadPoolExecutor:
    global _EMBEDDING_EXECUTOR
    if _EMBEDDING_EXECUTOR is None:
        _EMBEDDING_EXECUTOR = ThreadPoolExecutor(max_workers=2, thread_name_prefix="embedding")
    return _EMBEDDING_EXECUTOR


class FastEmbedProvider:
    """Local ONNX embeddings; the blocking model call runs on a worker thread."""

    def __init__(self, model: str = DEFAULT_FASTEMBED_MODEL) -> None:
        try:
            from fastembed import TextEmbedding
        except Exception as exc:  # pragma: no cover
            raise RuntimeError("fastembed package is required for local embeddings") from exc
        self.model = model
        self._embedder = TextEmbedding(model_name=model)

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        return [[float(x) for x in vec] for vec in self._embedder.embed(texts)]

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                _get_embedding_executor(), self._embed_sync, list(texts)
            )
        except Exception as exc:
            raise TransientProviderError(f"fastembed embedding failed: {exc}") from exc


class OpenAIEmbeddingProvider:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_OPENAI_EMBEDDING_MODEL,
        dimensions: int = OPENAI_EMBEDDING_DIMENSIONS,
        base_url: str | None = None,
    ) -> None:
        try:
            from openai import AsyncOpenAI
        except Exception as exc:  # pragma: no cover
            raise RuntimeError("openai package is required for openai embeddings") from exc
        self.model = model
        self.dimensions = dimensions
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            resp = await self.client.embeddings.create(
                model=self.model,
                input=list(texts),
                dimensions=self.dimensions,
            )
        except Exception as exc:
            raise TransientProviderError(f"openai embedding failed: {exc}") from exc
        return [list(item.embedding) for item in resp.data]


def get_embedding_provider(cfg: AssistMemConfig) -> EmbeddingProvider:
    """Build the configured provider or raise ConfigurationError."""

    if cfg.embedding_disabled:
        raise ConfigurationError("embeddings disabled")
    provider = (cfg.embedding_provider or "").strip().lower()
    if not provider:
        raise ConfigurationError("no embedding provider configured")
    if provider == "fastembed":
        return FastEmbedProvider(model=cfg.embedding_model or DEFAULT_FASTEMBED_MODEL)
    if provider == "openai":
        if not cfg.embedding_api_key:
            raise ConfigurationError("openai embeddings require an api key")
        return OpenAIEmbeddingProvider(
            api_key=cfg.embedding_api_key,
            model=cfg.embedding_model or DEFAULT_OPENAI_EMBEDDING_MODEL,
        )
    raise ConfigurationError(f"unknown embedding provider: {provider}")


def serialize_embedding(vector: Sequence[float]) -> bytes:
    # Little-endian float32, 4 bytes per dimension.
    return struct.pack(f"<{len(vector)}f", *vector)


def deserialize_embedding(data: bytes | None) -> list[float]:
    if not data:
        raise IntegrityMismatch("empty embedding")
    if len(data) % 4:
        raise IntegrityMismatch(f"embedding length {len(data)} is not a multiple of 4")
    return list(struct.unpack(f"<{len(data) // 4}f", data))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise IntegrityMismatch(f"dimension mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def fact_embedding_text(category: str, subject: str, content: str) -> str:
    return f"{category}: {subject} - {content}"
