from __future__ import annotations

import asyncio
import gc
from typing import Sequence
from unittest.mock import AsyncMock

import pytest

from annotation_engine.embedding_cache import EmbeddingCache, hash_text


def test_hash_text_ignores_case_and_whitespace() -> None:
    assert hash_text("Lungs  clear\n bilaterally") == hash_text(
        " lungs clear bilaterally "
    )
    assert hash_text("lungs clear") != hash_text("lungs wheezy")


def test_cache_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError):
        EmbeddingCache(max_size=0)


def test_cache_evicts_exactly_one_entry_when_full() -> None:
    cache = EmbeddingCache(max_size=500)
    for index in range(500):
        cache.put(f"text {index}", [float(index)])
    assert len(cache) == 500

    cache.put("text 500", [500.0])

    assert len(cache) == 500
    assert "text 0" not in cache
    assert "text 1" in cache
    assert "text 500" in cache


def test_cache_get_refreshes_recency() -> None:
    cache = EmbeddingCache(max_size=2)
    cache.put("alpha", [1.0])
    cache.put("beta", [2.0])
    assert cache.get("alpha") == [1.0]

    cache.put("gamma", [3.0])

    assert "alpha" in cache
    assert "beta" not in cache
    assert "gamma" in cache


def test_cache_put_existing_key_does_not_evict() -> None:
    cache = EmbeddingCache(max_size=2)
    cache.put("alpha", [1.0])
    cache.put("beta", [2.0])
    cache.put("ALPHA", [9.0])

    assert len(cache) == 2
    assert cache.get("alpha") == [9.0]


@pytest.mark.asyncio
async def test_embed_calls_provider_once_for_uncached_texts(make_provider) -> None:
    provider = make_provider({"a": [1.0, 0.0], "b": [0.0, 1.0]})
    cache = EmbeddingCache(provider=provider)

    first = await cache.embed(["a", "b", "a"])
    second = await cache.embed(["b", "a"])

    assert provider.calls == [["a", "b"]]
    assert first == [[1.0, 0.0], [0.0, 1.0], [1.0, 0.0]]
    assert second == [[0.0, 1.0], [1.0, 0.0]]
    stats = cache.stats()
    assert stats.size == 2
    assert stats.provider_calls == 1
    assert stats.hits == 2


@pytest.mark.asyncio
async def test_embed_only_requests_missing_texts(make_provider) -> None:
    provider = make_provider()
    cache = EmbeddingCache(provider=provider)
    cache.put("cached note", [5.0, 5.0, 5.0])

    vectors = await cache.embed(["cached note", "fresh note"])

    assert provider.calls == [["fresh note"]]
    assert vectors[0] == [5.0, 5.0, 5.0]
    assert "fresh note" in cache


@pytest.mark.asyncio
async def test_embed_rejects_mismatched_provider_output() -> None:
    class ShortProvider:
        async def load(self) -> None:
            return None

        async def embed(self, texts: Sequence[str]) -> list[list[float]]:
            return [[1.0]]

    cache = EmbeddingCache(provider=ShortProvider())
    with pytest.raises(ValueError, match="returned 1 vectors for 2 texts"):
        await cache.embed(["one", "two"])
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_embed_without_provider_raises() -> None:
    cache = EmbeddingCache()
    with pytest.raises(RuntimeError, match="No embedding provider"):
        await cache.embed(["text"])


@pytest.mark.asyncio
async def test_embed_single_coalesces_concurrent_requests(make_provider) -> None:
    provider = make_provider({"shared": [0.5, 0.5]}, delay=0.02)
    cache = EmbeddingCache(provider=provider)

    results = await asyncio.gather(
        cache.embed_single("shared"),
        cache.embed_single("shared"),
        cache.embed_single("shared"),
    )

    assert results == [[0.5, 0.5]] * 3
    assert provider.calls == [["shared"]]
    assert cache.stats().in_flight == 0
    assert await cache.embed_single("shared") == [0.5, 0.5]
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_embed_single_failure_clears_pending(make_provider) -> None:
    provider = make_provider(fail=True)
    cache = EmbeddingCache(provider=provider)

    with pytest.raises(RuntimeError, match="unavailable"):
        await cache.embed_single("note text")

    assert cache.stats().in_flight == 0
    assert "note text" not in cache

    provider.fail = False
    assert await cache.embed_single("note text") == [9.0, 1.0, 0.0]
    assert len(provider.calls) == 2


def test_clear_resets_entries_and_counters() -> None:
    cache = EmbeddingCache(max_size=4)
    cache.put("alpha", [1.0])
    cache.get("alpha")
    cache.get("missing")

    cache.clear()

    stats = cache.stats()
    assert stats.size == 0
    assert stats.hits == 0
    assert stats.misses == 0


@pytest.mark.asyncio
async def test_cached_text_skips_provider() -> None:
    provider = AsyncMock()
    provider.embed.return_value = [[0.1, 0.2]]
    cache = EmbeddingCache(provider=provider)

    assert await cache.embed(["Heparin drip"]) == [[0.1, 0.2]]
    assert await cache.embed(["heparin  drip"]) == [[0.1, 0.2]]

    provider.embed.assert_awaited_once_with(["Heparin drip"])


@pytest.mark.asyncio
async def test_embed_requests_one_vector_per_normalized_text(make_provider) -> None:
    provider = make_provider({"Heparin drip": [0.3, 0.7]})
    cache = EmbeddingCache(provider=provider)

    vectors = await cache.embed(["Heparin drip", "heparin  drip", "HEPARIN DRIP"])

    assert provider.calls == [["Heparin drip"]]
    assert vectors == [[0.3, 0.7]] * 3
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_embed_single_coalesces_normalized_variants(make_provider) -> None:
    provider = make_provider({"Lungs clear": [1.0, 1.0]}, delay=0.02)
    cache = EmbeddingCache(provider=provider)

    results = await asyncio.gather(
        cache.embed_single("Lungs clear"), cache.embed_single("lungs   CLEAR")
    )

    assert results == [[1.0, 1.0], [1.0, 1.0]]
    assert provider.calls == [["Lungs clear"]]


@pytest.mark.asyncio
async def test_failed_request_after_waiter_timeout_is_not_reported_as_unhandled(
    make_provider,
) -> None:
    loop = asyncio.get_running_loop()
    unhandled: list[dict] = []
    loop.set_exception_handler(lambda _loop, context: unhandled.append(context))
    try:
        cache = EmbeddingCache(provider=make_provider(fail=True, delay=0.02))
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(cache.embed_single("note text"), timeout=0.001)
        await asyncio.sleep(0.05)
        gc.collect()
    finally:
        loop.set_exception_handler(None)

    assert cache.stats().in_flight == 0
    assert unhandled == []
