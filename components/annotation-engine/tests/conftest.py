from __future__ import annotations

import asyncio
from typing import Sequence

import pytest

from annotation_engine.config import InferenceConfig
from annotation_engine.schemas import (
    Annotation,
    Chunk,
    ChunkType,
    LabelScope,
    PatternRule,
    PatternType,
    PrimaryLabel,
    RemoveReason,
)

_ENV_VARS = (
    "ANNOTATION_SEMANTIC_THRESHOLD",
    "ANNOTATION_JACCARD_THRESHOLD",
    "ANNOTATION_MIN_CONFIDENCE",
    "ANNOTATION_ENABLE_PATTERN_RULES",
    "ANNOTATION_ENABLE_SEMANTIC_SEARCH",
    "ANNOTATION_CONFIDENCE_CALIBRATION",
    "ANNOTATION_EMBEDDING_TIMEOUT_SECONDS",
    "ANNOTATION_EMBEDDING_CACHE_SIZE",
    "EMBEDDING_MODEL_NAME",
)


class FakeEmbeddingProvider:
    """Deterministic provider that records every call.

    Texts listed in ``vectors`` get that vector; anything else gets a vector
    derived from its length so distinct texts rarely collide.
    """

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        *,
        fail: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.vectors = vectors or {}
        self.fail = fail
        self.delay = delay
        self.calls: list[list[str]] = []
        self.load_calls = 0

    async def load(self) -> None:
        self.load_calls += 1

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("embedding backend unavailable")
        return [
            self.vectors.get(text, [float(len(text)), 1.0, 0.0]) for text in texts
        ]


@pytest.fixture(autouse=True)
def clear_annotation_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def config() -> InferenceConfig:
    return InferenceConfig()


@pytest.fixture()
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture()
def attestation_chunk() -> Chunk:
    return Chunk(
        id="c-attest",
        text="I have personally seen and examined the patient and agree with the plan.",
        type=ChunkType.ATTESTATION,
    )


@pytest.fixture()
def paragraph_chunk() -> Chunk:
    return Chunk(
        id="c-para",
        text="Patient reports improved appetite and ambulating in hallway.",
        type=ChunkType.PARAGRAPH,
    )


@pytest.fixture()
def learned_ros() -> Annotation:
    return Annotation(
        chunk_id="prior-1",
        raw_text="Review of systems negative except as noted in HPI.",
        section_type=ChunkType.PARAGRAPH,
        label=PrimaryLabel.REMOVE,
        remove_reason=RemoveReason.NORMAL_ROS_EXAM,
        scope=LabelScope.GLOBAL,
        user_id="dr-reviewer",
    )


@pytest.fixture()
def keyword_rule() -> PatternRule:
    return PatternRule(
        id="rule-dc",
        pattern_type=PatternType.KEYWORD,
        pattern_value="Discharge planning",
        label=PrimaryLabel.REMOVE,
        remove_reason=RemoveReason.ADMINISTRATIVE_TEXT,
        effectiveness_score=0.8,
        description="Discharge planning boilerplate",
    )


@pytest.fixture()
def make_provider() -> type[FakeEmbeddingProvider]:
    return FakeEmbeddingProvider
