"""Signal fusion, confidence calibration and the critical-content guard."""

from __future__ import annotations

import logging
from typing import Sequence

from annotation_engine.config import InferenceConfig
from annotation_engine.heuristics import get_heuristic_label
from annotation_engine.schemas import (
    CandidateSignal,
    Chunk,
    ConfidenceCalibration,
    FusedSignal,
    InferenceContext,
    MatchResult,
    ModelExplanation,
    ModelSource,
    PrimaryLabel,
    build_annotation,
)

logger = logging.getLogger(__name__)

AGREEMENT_BOOST_PER_SIGNAL = 0.05
MAX_AGREEMENT_BOOST = 0.12
MAX_FUSED_CONFIDENCE = 0.97
MAX_CALIBRATED_CONFIDENCE = 0.98
CRITICAL_PENALTY = 0.15
CRITICAL_FLOOR = 0.6


def build_candidate_signals(chunk: Chunk) -> list[CandidateSignal]:
    """Collect independent label guesses for a chunk.

    The heuristic classifier contributes at most one signal; a segmenter
    hint on the chunk contributes a second, independent one.
    """
    signals: list[CandidateSignal] = []
    heuristic = get_heuristic_label(chunk)
    if heuristic is not None:
        signals.append(
            CandidateSignal(
                label=heuristic.label,
                confidence=heuristic.confidence,
                reason=heuristic.reason,
                source=(
                    ModelSource.CRITICAL_SAFETY
                    if chunk.is_critical
                    else ModelSource.HEURISTIC_RULES
                ),
                remove_reason=heuristic.remove_reason,
                condense_strategy=heuristic.condense_strategy,
            )
        )
    if chunk.suggested_label is not None and chunk.confidence:
        signals.append(
            CandidateSignal(
                label=chunk.suggested_label,
                confidence=min(chunk.confidence + 0.04, 0.9),
                reason="Parser suggestion",
                source=ModelSource.HEURISTIC_RULES,
            )
        )
    return signals


def _mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def agreement_boost(count: int) -> float:
    """Confidence bonus for ``count`` signals agreeing on one label.

    A lone signal has nothing to agree with and gets no bonus.

    Examples:
        >>> agreement_boost(1)
        0.0
        >>> agreement_boost(2)
        0.1
        >>> agreement_boost(5)
        0.12
    """
    if count < 2:
        return 0.0
    return min(AGREEMENT_BOOST_PER_SIGNAL * count, MAX_AGREEMENT_BOOST)


def merge_signals(signals: Sequence[CandidateSignal]) -> FusedSignal | None:
    """Merge candidate signals into the best-supported label."""
    if not signals:
        return None

    grouped: dict[PrimaryLabel, list[CandidateSignal]] = {}
    for signal in signals:
        grouped.setdefault(signal.label, []).append(signal)

    best: FusedSignal | None = None
    for label, items in grouped.items():
        average = _mean([item.confidence for item in items])
        score = min(average + agreement_boost(len(items)), MAX_FUSED_CONFIDENCE)
        sources: list[ModelSource] = []
        for item in items:
            if item.source not in sources:
                sources.append(item.source)
        candidate = FusedSignal(
            label=label,
            confidence=score,
            reasons=[item.reason for item in items],
            sources=sources,
            remove_reason=next(
                (item.remove_reason for item in items if item.remove_reason), None
            ),
            condense_strategy=next(
                (item.condense_strategy for item in items if item.condense_strategy),
                None,
            ),
        )
        if best is None or candidate.confidence > best.confidence:
            best = candidate
    return best


def calibrate(score: float, policy: ConfidenceCalibration | str) -> float:
    """Apply a post-hoc calibration policy to a fused confidence.

    Examples:
        >>> round(calibrate(0.8, "conservative"), 2)
        0.72
        >>> calibrate(0.9, "aggressive")
        0.98
    """
    policy = ConfidenceCalibration(policy)
    if policy == ConfidenceCalibration.CONSERVATIVE and score < 0.85:
        score *= 0.9
    elif policy == ConfidenceCalibration.AGGRESSIVE and score > 0.7:
        score = min(score * 1.1, MAX_CALIBRATED_CONFIDENCE)
    return max(0.0, min(score, MAX_CALIBRATED_CONFIDENCE))


def fuse(
    signals: Sequence[CandidateSignal], config: InferenceConfig
) -> FusedSignal | None:
    """Merge and calibrate signals; None when below the confidence floor."""
    merged = merge_signals(signals)
    if merged is None:
        return None
    calibrated = calibrate(merged.confidence, config.confidence_calibration)
    if calibrated < config.min_confidence_threshold:
        return None
    return merged.model_copy(update={"confidence": calibrated})


def apply_critical_safety(chunk: Chunk, candidate: CandidateSignal) -> CandidateSignal:
    """Keep critical chunks that a fused signal would remove."""
    if not chunk.is_critical or candidate.label != PrimaryLabel.REMOVE:
        return candidate
    return candidate.model_copy(
        update={
            "label": PrimaryLabel.KEEP,
            "confidence": max(candidate.confidence - CRITICAL_PENALTY, CRITICAL_FLOOR),
            "reason": "Critical content retained despite removal signal",
            "source": ModelSource.CRITICAL_SAFETY,
            "remove_reason": None,
        }
    )


class HeuristicFusionStage:
    """Final match stage: heuristics, fusion, calibration and safety."""

    name = "heuristic_fusion"

    def __init__(self, config: InferenceConfig) -> None:
        self.config = config

    async def try_match(
        self, chunk: Chunk, context: InferenceContext
    ) -> MatchResult | None:
        return self.match(chunk)

    def match(self, chunk: Chunk) -> MatchResult | None:
        fused = fuse(build_candidate_signals(chunk), self.config)
        if fused is None:
            return None

        if len(fused.sources) > 1:
            source = ModelSource.COMBINED_SIGNALS
        else:
            source = fused.sources[0]
        candidate = apply_critical_safety(
            chunk,
            CandidateSignal(
                label=fused.label,
                confidence=fused.confidence,
                reason=fused.reasons[0] if fused.reasons else "Composite heuristic",
                source=source,
                remove_reason=fused.remove_reason,
                condense_strategy=fused.condense_strategy,
            ),
        )
        if candidate.source == ModelSource.CRITICAL_SAFETY and fused.label != candidate.label:
            logger.info("Critical-safety override kept chunk %s", chunk.id)

        annotation = build_annotation(
            chunk,
            candidate.label,
            remove_reason=candidate.remove_reason,
            condense_strategy=candidate.condense_strategy,
        )
        return MatchResult(
            annotation=annotation,
            explanation=ModelExplanation(
                source=candidate.source,
                confidence=candidate.confidence,
                reason=candidate.reason,
                signals=fused.reasons[:3],
            ),
        )
