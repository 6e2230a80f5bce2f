from __future__ import annotations

import pytest

from annotation_engine.duplicates import DuplicateStage, get_duplicate_suggestion
from annotation_engine.schemas import (
    Chunk,
    InferenceContext,
    LabelScope,
    ModelSource,
    PrimaryLabel,
    RemoveReason,
)


def test_duplicate_suggestion_for_flagged_chunk(paragraph_chunk: Chunk) -> None:
    result = get_duplicate_suggestion(paragraph_chunk, {"c-para"})
    assert result is not None
    assert result.annotation.label == PrimaryLabel.REMOVE
    assert result.annotation.remove_reason == RemoveReason.DUPLICATE_DATA
    assert result.annotation.scope == LabelScope.THIS_DOCUMENT
    assert result.explanation.source == ModelSource.DUPLICATE_DETECTOR
    assert result.explanation.confidence == 0.74
    assert result.explanation.reason == "Repeated text detected in note"
    assert result.explanation.signals == ["Text overlaps earlier section"]


def test_duplicate_suggestion_ignores_unflagged_chunk(paragraph_chunk: Chunk) -> None:
    assert get_duplicate_suggestion(paragraph_chunk, frozenset({"other"})) is None


@pytest.mark.asyncio
async def test_duplicate_stage_reads_context(paragraph_chunk: Chunk) -> None:
    stage = DuplicateStage()
    flagged = InferenceContext(duplicate_chunk_ids=frozenset({"c-para"}))
    assert await stage.try_match(paragraph_chunk, flagged) is not None
    assert await stage.try_match(paragraph_chunk, InferenceContext()) is None
