"""Regex extraction of structured fields from clinical chunks."""

from __future__ import annotations

import re
from typing import Iterable

from annotation_engine.schemas import (
    Chunk,
    ChunkType,
    ExtractedField,
    ExtractedFieldCategory,
)
from annotation_engine.text_utils import normalize_field_text

MAX_CONFIDENCE = 0.95
MAX_LABEL_CHARS = 40
MAX_VALUE_CHARS = 120

KEY_VALUE_PATTERN = re.compile(r"([A-Za-z][A-Za-z\s/]+):\s*([^\n]+)")

VITAL_PATTERNS = (
    ("BP", re.compile(r"\bBP[:\s]*([0-9]{2,3}/[0-9]{2,3})", re.I)),
    ("HR", re.compile(r"\bHR[:\s]*([0-9]{2,3})", re.I)),
    ("RR", re.compile(r"\bRR[:\s]*([0-9]{1,2})", re.I)),
    (
        "Temp",
        re.compile(r"\bTemp(?:erature)?[:\s]*([0-9]{2,3}(?:\.[0-9])?\s*[FC]?)", re.I),
    ),
    ("SpO2", re.compile(r"\bSpO2[:\s]*([0-9]{2,3}%?)", re.I)),
)

LAB_PATTERN = re.compile(
    r"\b(WBC|Hgb|HCT|Plt|Na|K|Cl|CO2|BUN|Cr|Glucose|AST|ALT|Bili)\b"
    r"[:\s]*([0-9]+(?:\.[0-9]+)?)",
    re.I,
)

MEDICATION_PATTERN = re.compile(
    r"([A-Z][a-zA-Z]+(?:\s[A-Z][a-zA-Z]+)?)\s+([0-9]+(?:\.[0-9]+)?)\s*"
    r"(mg|mcg|g|units)\b([^.\n]*)"
)

DIAGNOSIS_PATTERN = re.compile(r"\b(?:dx|diagnosis|impression)[:\s]*([^\n]+)", re.I)
PROCEDURE_PATTERN = re.compile(r"\b(?:procedure|performed)[:\s]*([^\n]+)", re.I)
ALLERGY_PATTERN = re.compile(
    r"\b(allerg(?:y|ies)|NKDA|no known drug allergies)[:\s]*([^\n]*)", re.I
)
PROBLEM_PATTERN = re.compile(
    r"\b(problem list|diagnoses|active problems)[:\s]*([^\n]*)", re.I
)
DATE_PATTERN = re.compile(
    r"\b(\d{1,2}/\d{1,2}/\d{2,4}(?:\s+\d{1,2}:\d{2}(?:\s*(?:AM|PM))?)?"
    r"|\d{4}-\d{2}-\d{2})\b"
)


def boost_by_chunk_type(chunk: Chunk, base: float) -> float:
    """Raise confidence for headers and critical chunks, capped at 0.95."""
    if chunk.type == ChunkType.SECTION_HEADER:
        boost = 0.1
    elif chunk.is_critical:
        boost = 0.08
    else:
        boost = 0.0
    return min(base + boost, MAX_CONFIDENCE)


def _tail_or_match(match: re.Match[str]) -> str:
    tail = match.group(2).strip().strip(".;,").strip()
    return tail or match.group(1)


def extract_fields_from_chunk(chunk: Chunk) -> list[ExtractedField]:
    """Extract vitals, labs, medications and other fields from one chunk.

    Args:
        chunk: Source chunk.

    Returns:
        Extracted fields in detection order. Not deduplicated.

    Examples:
        >>> chunk = Chunk(id="c1", text="BP 120/80 HR 72")
        >>> [(f.label, f.value) for f in extract_fields_from_chunk(chunk)]
        [('BP', '120/80'), ('HR', '72')]
    """
    text = chunk.text
    fields: list[ExtractedField] = []

    def add(
        field_id: str,
        category: ExtractedFieldCategory,
        label: str,
        value: str,
        base: float,
    ) -> None:
        fields.append(
            ExtractedField(
                id=field_id,
                category=category,
                label=label,
                value=value,
                confidence=boost_by_chunk_type(chunk, base),
                source_chunk_id=chunk.id,
            )
        )

    for match in KEY_VALUE_PATTERN.finditer(text):
        label = match.group(1).strip()[:MAX_LABEL_CHARS]
        value = match.group(2).strip()[:MAX_VALUE_CHARS]
        if len(label) < 2 or len(value) < 2:
            continue
        add(
            f"{chunk.id}-kv-{len(fields)}",
            ExtractedFieldCategory.KEY_VALUE,
            label,
            value,
            0.62,
        )

    for label, pattern in VITAL_PATTERNS:
        match = pattern.search(text)
        if match:
            add(
                f"{chunk.id}-vital-{label}",
                ExtractedFieldCategory.VITAL_SIGNS,
                label,
                match.group(1).strip(),
                0.75,
            )

    for match in LAB_PATTERN.finditer(text):
        add(
            f"{chunk.id}-lab-{match.group(1)}-{len(fields)}",
            ExtractedFieldCategory.LAB_VALUE,
            match.group(1),
            match.group(2),
            0.68,
        )

    for match in MEDICATION_PATTERN.finditer(text):
        tail = match.group(4).strip()
        dose = f"{match.group(2)} {match.group(3)}"
        add(
            f"{chunk.id}-med-{len(fields)}",
            ExtractedFieldCategory.MEDICATION,
            match.group(1),
            f"{dose} {tail}".strip() if tail else dose,
            0.6,
        )

    match = DIAGNOSIS_PATTERN.search(text)
    if match:
        add(
            f"{chunk.id}-dx",
            ExtractedFieldCategory.DIAGNOSIS,
            "Diagnosis",
            match.group(1).strip()[:MAX_VALUE_CHARS],
            0.58,
        )

    match = PROCEDURE_PATTERN.search(text)
    if match:
        add(
            f"{chunk.id}-proc",
            ExtractedFieldCategory.PROCEDURE,
            "Procedure",
            match.group(1).strip()[:MAX_VALUE_CHARS],
            0.55,
        )

    match = ALLERGY_PATTERN.search(text)
    if match:
        add(
            f"{chunk.id}-allergy",
            ExtractedFieldCategory.ALLERGY,
            "Allergies",
            _tail_or_match(match),
            0.76,
        )

    match = PROBLEM_PATTERN.search(text)
    if match:
        add(
            f"{chunk.id}-problem",
            ExtractedFieldCategory.PROBLEM,
            "Problem List",
            _tail_or_match(match),
            0.6,
        )

    match = DATE_PATTERN.search(text)
    if match:
        add(
            f"{chunk.id}-date",
            ExtractedFieldCategory.DATE_TIME,
            "Date",
            match.group(1),
            0.57,
        )

    return fields


def dedupe_extracted_fields(fields: Iterable[ExtractedField]) -> list[ExtractedField]:
    """Keep the highest-confidence field per normalized (category, label, value)."""
    deduped: dict[tuple[str, str, str], ExtractedField] = {}
    for item in fields:
        key = (
            item.category.value,
            normalize_field_text(item.label),
            normalize_field_text(item.value),
        )
        existing = deduped.get(key)
        if existing is None or item.confidence > existing.confidence:
            deduped[key] = item
    return list(deduped.values())
