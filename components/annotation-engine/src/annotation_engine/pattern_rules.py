"""Authored keyword / n-gram / regex rules."""

from __future__ import annotations

import logging
import re
from typing import Sequence

from annotation_engine.config import InferenceConfig
from annotation_engine.schemas import (
    Chunk,
    InferenceContext,
    MatchResult,
    ModelExplanation,
    ModelSource,
    PatternRule,
    PatternType,
    build_annotation,
)

logger = logging.getLogger(__name__)

_BASE_CONFIDENCE = 0.7
_EFFECTIVENESS_WEIGHT = 0.25
_MAX_CONFIDENCE = 0.92
_SNIPPET_CHARS = 40


def pattern_rule_confidence(effectiveness_score: float) -> float:
    """Map a rule's effectiveness score to a match confidence.

    Examples:
        >>> pattern_rule_confidence(0.8)
        0.9
        >>> pattern_rule_confidence(1.0)
        0.92
    """
    raw = _BASE_CONFIDENCE + effectiveness_score * _EFFECTIVENESS_WEIGHT
    return round(min(raw, _MAX_CONFIDENCE), 4)


def rule_matches(rule: PatternRule, text: str) -> bool:
    """Return whether a rule's pattern occurs in text.

    Raises:
        re.error: If a regex rule does not compile.
    """
    if rule.pattern_type in (PatternType.KEYWORD, PatternType.NGRAM):
        needle = rule.pattern_value.lower()
        return bool(needle) and needle in text.lower()
    if rule.pattern_type == PatternType.REGEX:
        return re.search(rule.pattern_value, text, re.IGNORECASE) is not None
    # Semantic rules are stored but have no matcher.
    return False


def _snippet(value: str) -> str:
    if len(value) <= _SNIPPET_CHARS:
        return value
    return value[:_SNIPPET_CHARS].rstrip() + "..."


def get_pattern_match(
    chunk: Chunk, rules: Sequence[PatternRule]
) -> MatchResult | None:
    """Return the first pattern rule that matches the chunk.

    Rules are tried in the given order. Inactive rules, rules restricted to
    another chunk type and rules with a malformed regex are skipped.
    """
    for rule in rules:
        if not rule.is_active:
            continue
        if rule.chunk_type is not None and rule.chunk_type != chunk.type:
            continue
        try:
            matched = rule_matches(rule, chunk.text)
        except re.error as exc:
            logger.warning(
                "Skipping pattern rule %s with invalid regex %r: %s",
                rule.id,
                rule.pattern_value,
                exc,
            )
            continue
        if not matched:
            continue

        confidence = pattern_rule_confidence(rule.effectiveness_score)
        annotation = build_annotation(
            chunk,
            rule.label,
            remove_reason=rule.remove_reason,
            condense_strategy=rule.condense_strategy,
            scope=rule.scope,
        )
        pattern_type = rule.pattern_type.value
        return MatchResult(
            annotation=annotation,
            explanation=ModelExplanation(
                source=ModelSource.PATTERN_RULE,
                confidence=confidence,
                reason=(
                    f"Matched {pattern_type} pattern "
                    f"'{_snippet(rule.pattern_value)}'"
                ),
                signals=[
                    f"Rule: {rule.description or rule.id}",
                    f"Effectiveness: {round(rule.effectiveness_score * 100)}%",
                ],
            ),
        )
    return None


class PatternRuleStage:
    """Match stage for authored pattern rules."""

    name = "pattern_rule"

    def __init__(
        self, rules: Sequence[PatternRule] | None, config: InferenceConfig
    ) -> None:
        self.rules = list(rules or [])
        self.config = config

    async def try_match(
        self, chunk: Chunk, context: InferenceContext
    ) -> MatchResult | None:
        if not self.config.enable_pattern_rules or not self.rules:
            return None
        result = get_pattern_match(chunk, self.rules)
        if result is None:
            return None
        if result.explanation.confidence < self.config.min_confidence_threshold:
            logger.debug(
                "Pattern match for chunk %s below confidence floor (%.2f)",
                chunk.id,
                result.explanation.confidence,
            )
            return None
        return result
