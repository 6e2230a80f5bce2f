"""Turn segmenter-detected duplicates into REMOVE suggestions."""

from __future__ import annotations

from annotation_engine.schemas import (
    Chunk,
    InferenceContext,
    LabelScope,
    MatchResult,
    ModelExplanation,
    ModelSource,
    PrimaryLabel,
    RemoveReason,
    build_annotation,
)

DUPLICATE_CONFIDENCE = 0.74


def get_duplicate_suggestion(
    chunk: Chunk, duplicate_chunk_ids: frozenset[str] | set[str]
) -> MatchResult | None:
    """Suggest removal when the segmenter flagged the chunk as a duplicate."""
    if chunk.id not in duplicate_chunk_ids:
        return None
    annotation = build_annotation(
        chunk,
        PrimaryLabel.REMOVE,
        remove_reason=RemoveReason.DUPLICATE_DATA,
        scope=LabelScope.THIS_DOCUMENT,
    )
    return MatchResult(
        annotation=annotation,
        explanation=ModelExplanation(
            source=ModelSource.DUPLICATE_DETECTOR,
            confidence=DUPLICATE_CONFIDENCE,
            reason="Repeated text detected in note",
            signals=["Text overlaps earlier section"],
        ),
    )


class DuplicateStage:
    """Match stage backed by the segmenter's duplicate set."""

    name = "duplicate"

    async def try_match(
        self, chunk: Chunk, context: InferenceContext
    ) -> MatchResult | None:
        return get_duplicate_suggestion(chunk, context.duplicate_chunk_ids)
