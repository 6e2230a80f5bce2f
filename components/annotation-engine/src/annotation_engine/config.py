"""Configuration for the annotation inference pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass

from annotation_engine.schemas import ConfidenceCalibration


@dataclass(frozen=True)
class InferenceConfig:
    """Thresholds and feature switches for one inference run.

    Attributes:
        semantic_threshold: Minimum cosine similarity for a semantic
            learned-rule candidate.
        jaccard_threshold: Minimum token overlap for a lexical learned-rule
            candidate.
        min_confidence_threshold: Floor below which pattern and fused
            heuristic results are rejected.
        enable_pattern_rules: Run the pattern-rule stage.
        enable_semantic_search: Run the embedding tier of the learned-rule
            stage.
        confidence_calibration: Post-fusion calibration policy.
        embedding_timeout_seconds: Upper bound for one semantic-tier
            embedding call.
        embedding_cache_size: Capacity of the embedding cache.
    """

    semantic_threshold: float = 0.75
    jaccard_threshold: float = 0.5
    min_confidence_threshold: float = 0.6
    enable_pattern_rules: bool = True
    enable_semantic_search: bool = True
    confidence_calibration: ConfidenceCalibration = ConfidenceCalibration.NONE
    embedding_timeout_seconds: float = 10.0
    embedding_cache_size: int = 500

    def __post_init__(self) -> None:
        # Accept plain strings for the calibration policy.
        object.__setattr__(
            self,
            "confidence_calibration",
            _parse_calibration(self.confidence_calibration),
        )
        if self.embedding_cache_size <= 0:
            raise ValueError("embedding_cache_size must be positive.")

    @classmethod
    def from_env(cls) -> "InferenceConfig":
        """Create config from environment variables."""
        return cls(
            semantic_threshold=_read_float_env("ANNOTATION_SEMANTIC_THRESHOLD", 0.75),
            jaccard_threshold=_read_float_env("ANNOTATION_JACCARD_THRESHOLD", 0.5),
            min_confidence_threshold=_read_float_env(
                "ANNOTATION_MIN_CONFIDENCE", 0.6
            ),
            enable_pattern_rules=_read_bool_env(
                "ANNOTATION_ENABLE_PATTERN_RULES", True
            ),
            enable_semantic_search=_read_bool_env(
                "ANNOTATION_ENABLE_SEMANTIC_SEARCH", True
            ),
            confidence_calibration=_parse_calibration(
                os.getenv("ANNOTATION_CONFIDENCE_CALIBRATION", "none")
            ),
            embedding_timeout_seconds=_read_float_env(
                "ANNOTATION_EMBEDDING_TIMEOUT_SECONDS", 10.0
            ),
            embedding_cache_size=_read_int_env("ANNOTATION_EMBEDDING_CACHE_SIZE", 500),
        )


def _parse_calibration(
    raw: str | ConfidenceCalibration,
) -> ConfidenceCalibration:
    if isinstance(raw, ConfidenceCalibration):
        return raw
    try:
        return ConfidenceCalibration(raw.strip().lower())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in ConfidenceCalibration)
        raise ValueError(
            f"Invalid confidence calibration: {raw!r}. Expected one of: {allowed}"
        ) from exc


def _read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid float for {name}: {raw}") from exc


def _read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {name}: {raw}") from exc


def _read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean for {name}: {raw}")
