from __future__ import annotations

import pytest

from annotation_engine.text_utils import (
    cosine_similarity,
    jaccard_similarity,
    normalize_field_text,
    normalize_text,
    tokenize,
)


def test_normalize_text_strips_punctuation_and_case() -> None:
    assert normalize_text("  Vital   Signs: STABLE!! ") == "vital signs stable"


def test_normalize_field_text_keeps_punctuation() -> None:
    assert normalize_field_text("  120/80   mmHg ") == "120/80 mmhg"


def test_tokenize_drops_stopwords_and_short_tokens() -> None:
    assert tokenize("The patient is in no acute distress") == [
        "patient",
        "acute",
        "distress",
    ]


def test_jaccard_similarity_overlap() -> None:
    assert jaccard_similarity(
        "patient stable today", "patient stable yesterday"
    ) == pytest.approx(0.5)
    assert jaccard_similarity("Lungs clear.", "lungs CLEAR") == 1.0


def test_jaccard_similarity_empty_text_scores_zero() -> None:
    assert jaccard_similarity("", "patient stable") == 0.0
    assert jaccard_similarity("a an of", "patient stable") == 0.0


def test_cosine_similarity() -> None:
    assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_cosine_similarity_degenerate_vectors() -> None:
    assert cosine_similarity([], [1.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_jaccard_similarity_is_symmetric() -> None:
    a = "Lungs clear to auscultation bilaterally"
    b = "Clear lungs, no wheezes"
    assert jaccard_similarity(a, b) == jaccard_similarity(b, a)
    assert jaccard_similarity(a, a) == 1.0
