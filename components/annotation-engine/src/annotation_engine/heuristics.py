"""Rule-of-thumb label guesses from chunk type and phrasing."""

from __future__ import annotations

import re
from dataclasses import dataclass

from annotation_engine.schemas import (
    Chunk,
    ChunkType,
    CondenseStrategy,
    PrimaryLabel,
    RemoveReason,
)

BOILERPLATE_PATTERNS = (
    re.compile(r"I have personally (?:seen and )?examined the patient", re.I),
    re.compile(r"I personally examined the patient", re.I),
    re.compile(r"I was present for the key portions", re.I),
    re.compile(r"I agree with the resident'?s assessment", re.I),
    re.compile(r"The above note was reviewed and edited", re.I),
    re.compile(r"electronically signed by", re.I),
    re.compile(r"This note was generated", re.I),
    re.compile(r"attestation", re.I),
)

NORMAL_EXAM_PATTERNS = (
    re.compile(r"all other systems (?:reviewed|negative)", re.I),
    re.compile(r"review of systems.*negative", re.I),
    re.compile(r"normal (?:ros|review of systems)", re.I),
    re.compile(r"normal (?:physical exam|exam)", re.I),
    re.compile(r"no acute distress", re.I),
    re.compile(r"\bnad\b", re.I),
)

ADMINISTRATIVE_PATTERNS = (
    re.compile(r"discharge instructions", re.I),
    re.compile(r"follow up with", re.I),
    re.compile(r"appointment scheduled", re.I),
    re.compile(r"contact information", re.I),
)

COPIED_PRIOR_PATTERN = re.compile(
    r"copy forward|copied forward|copied from prior|copied prior note", re.I
)
UNCHANGED_PATTERN = re.compile(
    r"unchanged from prior|no interval change|stable compared to", re.I
)

LAB_CONDENSE_CHARS = 250
IMAGING_CONDENSE_CHARS = 280
MEDICATION_CONDENSE_LINES = 8
PARAGRAPH_CONDENSE_CHARS = 450


@dataclass(frozen=True)
class HeuristicLabel:
    """Single heuristic guess for a chunk."""

    label: PrimaryLabel
    confidence: float
    reason: str
    remove_reason: RemoveReason | None = None
    condense_strategy: CondenseStrategy | None = None


def _matches_any(patterns: tuple[re.Pattern[str], ...], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def get_heuristic_label(chunk: Chunk) -> HeuristicLabel | None:
    """Return the first heuristic that applies to the chunk.

    Rules are checked in a fixed priority order and are mutually
    exclusive, so at most one label comes back.

    Args:
        chunk: Chunk to classify.

    Returns:
        The heuristic guess, or None when no rule applies.

    Examples:
        >>> chunk = Chunk(id="c1", text="HPI", type=ChunkType.SECTION_HEADER)
        >>> get_heuristic_label(chunk).label
        <PrimaryLabel.KEEP: 'KEEP'>
    """
    text = chunk.text

    if chunk.is_critical:
        return HeuristicLabel(
            PrimaryLabel.KEEP, 0.95, "Critical clinical indicator detected"
        )

    if chunk.type == ChunkType.SECTION_HEADER:
        return HeuristicLabel(PrimaryLabel.KEEP, 0.9, "Section headers preserved")

    if chunk.type == ChunkType.ATTESTATION:
        return HeuristicLabel(
            PrimaryLabel.REMOVE,
            0.82,
            "Attestation statement",
            remove_reason=RemoveReason.BILLING_ATTESTATION,
        )

    if _matches_any(BOILERPLATE_PATTERNS, text):
        return HeuristicLabel(
            PrimaryLabel.REMOVE,
            0.8,
            "Boilerplate or attestation language",
            remove_reason=RemoveReason.BOILERPLATE_TEMPLATE,
        )

    if _matches_any(NORMAL_EXAM_PATTERNS, text):
        return HeuristicLabel(
            PrimaryLabel.REMOVE,
            0.78,
            "Normal ROS/exam boilerplate",
            remove_reason=RemoveReason.NORMAL_ROS_EXAM,
        )

    if _matches_any(ADMINISTRATIVE_PATTERNS, text):
        return HeuristicLabel(
            PrimaryLabel.REMOVE,
            0.72,
            "Administrative follow-up language",
            remove_reason=RemoveReason.ADMINISTRATIVE_TEXT,
        )

    if COPIED_PRIOR_PATTERN.search(text):
        return HeuristicLabel(
            PrimaryLabel.REMOVE,
            0.76,
            "Explicitly copied from prior note",
            remove_reason=RemoveReason.COPIED_PRIOR_NOTE,
        )

    if UNCHANGED_PATTERN.search(text):
        if chunk.type == ChunkType.IMAGING_REPORT:
            return HeuristicLabel(
                PrimaryLabel.REMOVE,
                0.74,
                "Imaging repeated without interval change",
                remove_reason=RemoveReason.REPEATED_IMAGING,
            )
        if chunk.type == ChunkType.LAB_VALUES:
            return HeuristicLabel(
                PrimaryLabel.REMOVE,
                0.72,
                "Lab results repeated without change",
                remove_reason=RemoveReason.REPEATED_LABS,
            )

    condense = _condense_guess(chunk)
    if condense is not None:
        return condense

    if chunk.suggested_label is not None and chunk.confidence:
        return HeuristicLabel(
            chunk.suggested_label,
            min(chunk.confidence + 0.05, 0.95),
            "Parser rule match",
        )

    return None


def _condense_guess(chunk: Chunk) -> HeuristicLabel | None:
    text = chunk.text
    if chunk.type == ChunkType.LAB_VALUES and len(text) > LAB_CONDENSE_CHARS:
        return HeuristicLabel(
            PrimaryLabel.CONDENSE,
            0.7,
            "Dense lab section",
            condense_strategy=CondenseStrategy.ABNORMAL_ONLY,
        )
    if chunk.type == ChunkType.IMAGING_REPORT and len(text) > IMAGING_CONDENSE_CHARS:
        return HeuristicLabel(
            PrimaryLabel.CONDENSE,
            0.68,
            "Long imaging narrative",
            condense_strategy=CondenseStrategy.ONE_LINE_SUMMARY,
        )
    if (
        chunk.type == ChunkType.MEDICATION_LIST
        and len(text.split("\n")) > MEDICATION_CONDENSE_LINES
    ):
        return HeuristicLabel(
            PrimaryLabel.CONDENSE,
            0.64,
            "Long medication list",
            condense_strategy=CondenseStrategy.ONE_LINE_SUMMARY,
        )
    if chunk.type == ChunkType.PARAGRAPH and len(text) > PARAGRAPH_CONDENSE_CHARS:
        return HeuristicLabel(
            PrimaryLabel.CONDENSE,
            0.62,
            "Extended narrative section",
            condense_strategy=CondenseStrategy.PROBLEM_BASED_SUMMARY,
        )
    return None
