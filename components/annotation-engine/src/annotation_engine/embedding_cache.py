"""Bounded in-memory embedding cache with request coalescing."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Sequence

from annotation_engine.embeddings import EmbeddingProvider, retrieve_exception

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 500

_MULTISPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class EmbeddingCacheStats:
    """Snapshot of cache counters."""

    size: int
    max_size: int
    hits: int
    misses: int
    provider_calls: int
    in_flight: int


def hash_text(text: str) -> str:
    """Return the SHA-256 hex digest of whitespace/case-normalized text."""
    normalized = _MULTISPACE.sub(" ", text.lower().strip())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class EmbeddingCache:
    """Content-hash keyed embedding cache in front of a provider.

    Entries are evicted least-recently-used first once ``max_size`` is
    reached. Concurrent ``embed_single`` calls for the same text share one
    provider request.
    """

    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        max_size: int = DEFAULT_MAX_SIZE,
    ) -> None:
        """Initialize an empty cache."""
        if max_size <= 0:
            raise ValueError("max_size must be positive.")
        self.provider = provider
        self.max_size = max_size
        self._entries: OrderedDict[str, list[float]] = OrderedDict()
        self._pending: dict[str, asyncio.Future[list[float]]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._provider_calls = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, text: object) -> bool:
        if not isinstance(text, str):
            return False
        return hash_text(text) in self._entries

    def get(self, text: str) -> list[float] | None:
        """Return the cached vector for text, if present."""
        key = hash_text(text)
        with self._lock:
            vector = self._entries.get(key)
            if vector is None:
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return vector

    def put(self, text: str, vector: Sequence[float]) -> None:
        """Store a vector, evicting one entry when the cache is full."""
        key = hash_text(text)
        with self._lock:
            if key in self._entries:
                self._entries[key] = list(vector)
                self._entries.move_to_end(key)
                return
            if len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted embedding %s", evicted[:12])
            self._entries[key] = list(vector)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._provider_calls = 0

    def stats(self) -> EmbeddingCacheStats:
        with self._lock:
            return EmbeddingCacheStats(
                size=len(self._entries),
                max_size=self.max_size,
                hits=self._hits,
                misses=self._misses,
                provider_calls=self._provider_calls,
                in_flight=len(self._pending),
            )

    async def embed_single(self, text: str) -> list[float]:
        """Embed one text, reusing cached or in-flight results."""
        cached = self.get(text)
        if cached is not None:
            return cached
        key = hash_text(text)
        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._compute_single(key, text))
            pending.add_done_callback(retrieve_exception)
            self._pending[key] = pending
        return await asyncio.shield(pending)

    async def _compute_single(self, key: str, text: str) -> list[float]:
        try:
            vectors = await self._call_provider([text])
            vector = vectors[0]
            self.put(text, vector)
            return vector
        finally:
            self._pending.pop(key, None)

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed many texts with one provider call for the uncached subset."""
        results: list[list[float] | None] = [self.get(text) for text in texts]
        # First raw text per content hash; later variants reuse its vector.
        uncached: dict[str, str] = {}
        for text, vector in zip(texts, results):
            if vector is None:
                uncached.setdefault(hash_text(text), text)
        if not uncached:
            return [vector for vector in results if vector is not None]

        computed = await self._call_provider(list(uncached.values()))
        if len(computed) != len(uncached):
            raise ValueError(
                f"Embedding provider returned {len(computed)} vectors "
                f"for {len(uncached)} texts."
            )
        by_key = dict(zip(uncached, computed))
        merged = [
            vector if vector is not None else by_key[hash_text(text)]
            for text, vector in zip(texts, results)
        ]
        self._store_many(dict(zip(uncached.values(), computed)))
        return merged

    def _store_many(self, vectors: dict[str, list[float]]) -> None:
        try:
            for text, vector in vectors.items():
                self.put(text, vector)
        except Exception:
            logger.warning("Failed to cache embeddings", exc_info=True)

    async def _call_provider(self, texts: list[str]) -> list[list[float]]:
        if self.provider is None:
            raise RuntimeError("No embedding provider configured.")
        with self._lock:
            self._provider_calls += 1
        return await self.provider.embed(texts)
