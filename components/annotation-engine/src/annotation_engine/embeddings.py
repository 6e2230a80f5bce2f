"""Embedding providers used by the semantic learned-rule tier.

The provider is a black box exposing ``load()`` and ``embed(texts)``.
Importing this module stays lightweight; ``sentence-transformers`` is only
imported when a provider actually loads.

Environment variables:
- EMBEDDING_MODEL_NAME: sentence-transformers model ID (optional; defaults
  to all-MiniLM-L6-v2).
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Protocol, Sequence, runtime_checkable

from anyio import to_thread

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"


def retrieve_exception(future: asyncio.Future) -> None:
    """Mark a shared future's failure as observed.

    Waiters reach shared futures through ``asyncio.shield``; when every
    waiter is cancelled the failure would otherwise go unreported.
    """
    if not future.cancelled() and future.exception() is not None:
        logger.debug("Shared embedding task failed", exc_info=future.exception())


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Text embedding service."""

    async def load(self) -> None:
        """Prepare the provider for ``embed`` calls."""
        ...

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""
        ...


class SentenceTransformerProvider:
    """Embedding provider backed by a local sentence-transformers model."""

    def __init__(self, model_name: str | None = None) -> None:
        """Initialize provider; the model loads on first use."""
        self.model_name = model_name or os.getenv(
            "EMBEDDING_MODEL_NAME", DEFAULT_EMBEDDING_MODEL
        )
        self._encoder: Any | None = None

    def _load_encoder(self):  # type: ignore[no-untyped-def]
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:  # pragma: no cover
            raise ImportError(
                "Semantic search requires sentence-transformers installed."
            ) from exc
        return SentenceTransformer(self.model_name)

    async def load(self) -> None:
        if self._encoder is not None:
            return
        logger.info("Loading embedding model %s", self.model_name)
        # Cancellation abandons the worker thread instead of waiting for it.
        self._encoder = await to_thread.run_sync(
            self._load_encoder, abandon_on_cancel=True
        )

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        if self._encoder is None:
            await self.load()
        return await to_thread.run_sync(
            self._encode, list(texts), abandon_on_cancel=True
        )

    def _encode(self, texts: list[str]) -> list[list[float]]:
        assert self._encoder is not None
        embeddings = self._encoder.encode(texts, convert_to_numpy=True)
        return embeddings.tolist()


class LazyEmbeddingProvider:
    """Wrap a provider so that it loads exactly once.

    The first caller starts the load; callers arriving while it is in
    progress await the same future and then share the loaded provider. A
    failed load is raised to every waiter and the next call retries.
    """

    def __init__(self, provider: EmbeddingProvider) -> None:
        """Initialize the wrapper around an unloaded provider."""
        self._provider = provider
        self._loaded = False
        self._loading: asyncio.Future[None] | None = None

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def is_loading(self) -> bool:
        return self._loading is not None

    async def load(self) -> None:
        """Load the wrapped provider, coalescing concurrent callers."""
        if self._loaded:
            return
        if self._loading is None:
            self._loading = asyncio.ensure_future(self._load_once())
            self._loading.add_done_callback(retrieve_exception)
        await asyncio.shield(self._loading)

    async def _load_once(self) -> None:
        try:
            await self._provider.load()
            self._loaded = True
        except Exception:
            logger.warning("Embedding provider failed to load", exc_info=True)
            raise
        finally:
            self._loading = None

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        await self.load()
        return await self._provider.embed(texts)

    async def shutdown(self) -> None:
        """Release the provider handle; the next call loads it again."""
        loading = self._loading
        if loading is not None:
            # Let an in-flight load settle; waiters see its real outcome.
            await asyncio.wait([loading])
            self._loading = None
        self._loaded = False
        close = getattr(self._provider, "close", None)
        if callable(close):
            result = close()
            if asyncio.iscoroutine(result):
                await result
