"""Summary statistics for an inference run."""

from __future__ import annotations

from typing import Mapping, Sequence

from pydantic import BaseModel, Field

from annotation_engine.schemas import (
    Annotation,
    ModelExplanation,
    ModelSource,
    PrimaryLabel,
)


class InferenceStats(BaseModel):
    """Distribution of sources and labels over annotated chunks."""

    total_chunks: int = Field(description="Number of annotated chunks")
    avg_confidence: float = Field(description="Mean explanation confidence")
    source_distribution: dict[ModelSource, int]
    label_distribution: dict[PrimaryLabel, int]


def get_inference_stats(
    annotations: Sequence[Annotation],
    explanations: Mapping[str, ModelExplanation],
) -> InferenceStats:
    """Count annotations by source and label.

    Examples:
        >>> get_inference_stats([], {}).avg_confidence
        0.0
    """
    source_distribution = {source: 0 for source in ModelSource}
    confidences: list[float] = []
    for explanation in explanations.values():
        source_distribution[explanation.source] += 1
        confidences.append(explanation.confidence)

    label_distribution = {label: 0 for label in PrimaryLabel}
    for annotation in annotations:
        label_distribution[annotation.label] += 1

    return InferenceStats(
        total_chunks=len(annotations),
        avg_confidence=sum(confidences) / len(confidences) if confidences else 0.0,
        source_distribution=source_distribution,
        label_distribution=label_distribution,
    )
