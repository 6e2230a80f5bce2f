"""Match chunks against previously confirmed annotations.

Search runs in three tiers, most precise first: exact normalized text,
embedding similarity, then token overlap. Semantic and lexical candidates
are weighted by how general the learned rule's scope is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import anyio

from annotation_engine.config import InferenceConfig
from annotation_engine.embedding_cache import EmbeddingCache
from annotation_engine.schemas import (
    Annotation,
    Chunk,
    InferenceContext,
    LabelScope,
    MatchResult,
    ModelExplanation,
    ModelSource,
    build_annotation,
)
from annotation_engine.text_utils import (
    cosine_similarity,
    jaccard_similarity,
    normalize_text,
)

logger = logging.getLogger(__name__)

ACCEPT_THRESHOLD = 0.7
EXACT_THRESHOLD = 0.95
MAX_LEARNED_CONFIDENCE = 0.95


@dataclass(frozen=True)
class LearnedMatch:
    """Best learned rule for a chunk and its weighted score."""

    annotation: Annotation
    score: float
    tier: str


def scope_weight(
    scope: LabelScope, note_type: str | None = None, service: str | None = None
) -> float:
    """Weight applied to a similarity score based on rule scope.

    Examples:
        >>> scope_weight(LabelScope.NOTE_TYPE, note_type="progress")
        0.95
        >>> scope_weight(LabelScope.SERVICE)
        0.7
    """
    if scope == LabelScope.NOTE_TYPE:
        return 0.95 if note_type else 0.75
    if scope == LabelScope.SERVICE:
        return 0.9 if service else 0.7
    if scope == LabelScope.GLOBAL:
        return 0.85
    return 0.8


class LearnedRuleMatcher:
    """Tiered similarity search over confirmed annotations."""

    def __init__(
        self,
        config: InferenceConfig,
        embedding_cache: EmbeddingCache | None = None,
    ) -> None:
        self.config = config
        self.embedding_cache = embedding_cache

    @property
    def semantic_enabled(self) -> bool:
        return (
            self.config.enable_semantic_search
            and self.embedding_cache is not None
            and self.embedding_cache.provider is not None
        )

    def find_exact(
        self, chunk: Chunk, learned: Sequence[Annotation]
    ) -> LearnedMatch | None:
        normalized_chunk = normalize_text(chunk.text)
        for annotation in learned:
            if normalize_text(annotation.raw_text) == normalized_chunk:
                return LearnedMatch(annotation=annotation, score=1.0, tier="exact")
        return None

    async def find_semantic(
        self,
        chunk: Chunk,
        learned: Sequence[Annotation],
        context: InferenceContext,
    ) -> LearnedMatch | None:
        """Best embedding-similarity candidate, or None on any provider failure."""
        if not self.semantic_enabled:
            return None
        assert self.embedding_cache is not None
        texts = [chunk.text, *(annotation.raw_text for annotation in learned)]
        try:
            with anyio.fail_after(self.config.embedding_timeout_seconds):
                embeddings = await self.embedding_cache.embed(texts)
        except TimeoutError:
            logger.warning(
                "Semantic search timed out after %.1fs, falling back to Jaccard",
                self.config.embedding_timeout_seconds,
            )
            return None
        except Exception:
            logger.warning(
                "Semantic search failed, falling back to Jaccard", exc_info=True
            )
            return None

        chunk_embedding, rule_embeddings = embeddings[0], embeddings[1:]
        best: LearnedMatch | None = None
        for annotation, embedding in zip(learned, rule_embeddings):
            similarity = cosine_similarity(chunk_embedding, embedding)
            if similarity <= self.config.semantic_threshold:
                continue
            weighted = similarity * scope_weight(
                annotation.scope, context.note_type, context.service
            )
            if best is None or weighted > best.score:
                best = LearnedMatch(
                    annotation=annotation, score=weighted, tier="semantic"
                )
        return best

    def find_lexical(
        self,
        chunk: Chunk,
        learned: Sequence[Annotation],
        context: InferenceContext,
    ) -> LearnedMatch | None:
        best: LearnedMatch | None = None
        for annotation in learned:
            similarity = jaccard_similarity(chunk.text, annotation.raw_text)
            if similarity < self.config.jaccard_threshold:
                continue
            weighted = similarity * scope_weight(
                annotation.scope, context.note_type, context.service
            )
            if best is None or weighted > best.score:
                best = LearnedMatch(
                    annotation=annotation, score=weighted, tier="lexical"
                )
        return best

    async def find_best(
        self,
        chunk: Chunk,
        learned: Sequence[Annotation],
        context: InferenceContext,
    ) -> LearnedMatch | None:
        if not learned:
            return None
        exact = self.find_exact(chunk, learned)
        if exact is not None:
            return exact
        semantic = await self.find_semantic(chunk, learned, context)
        if semantic is not None:
            return semantic
        return self.find_lexical(chunk, learned, context)

    async def suggest(
        self,
        chunk: Chunk,
        learned: Sequence[Annotation],
        context: InferenceContext,
    ) -> MatchResult | None:
        """Build an annotation from the best learned rule above threshold."""
        match = await self.find_best(chunk, learned, context)
        if match is None or match.score < ACCEPT_THRESHOLD:
            return None

        rule = match.annotation
        annotation = build_annotation(
            chunk,
            rule.label,
            remove_reason=rule.remove_reason,
            condense_strategy=rule.condense_strategy,
            scope=rule.scope,
        )
        is_exact = match.score >= EXACT_THRESHOLD
        return MatchResult(
            annotation=annotation,
            explanation=ModelExplanation(
                source=(
                    ModelSource.LEARNED_EXACT if is_exact else ModelSource.LEARNED_SIMILAR
                ),
                confidence=min(match.score, MAX_LEARNED_CONFIDENCE),
                reason=(
                    "Exact match to learned rule"
                    if is_exact
                    else "Similar wording to learned rule"
                ),
                signals=[
                    f"Scope: {rule.scope.value.replace('_', ' ')}",
                    f"Similarity: {round(match.score * 100)}%",
                ],
            ),
        )


class LearnedRuleStage:
    """Match stage wrapping :class:`LearnedRuleMatcher`."""

    name = "learned_rule"

    def __init__(
        self, matcher: LearnedRuleMatcher, learned: Sequence[Annotation]
    ) -> None:
        self.matcher = matcher
        self.learned = list(learned)

    async def try_match(
        self, chunk: Chunk, context: InferenceContext
    ) -> MatchResult | None:
        return await self.matcher.suggest(chunk, self.learned, context)
