"""Per-document annotation inference.

Each chunk runs through an ordered list of match stages (learned rules,
pattern rules, duplicate detection, heuristic fusion) and takes the first
result. Field extraction runs for every chunk regardless of the outcome.
"""

from __future__ import annotations

import functools
import logging
from typing import Iterable, Protocol, Sequence

import anyio

from annotation_engine.config import InferenceConfig
from annotation_engine.duplicates import DuplicateStage
from annotation_engine.embedding_cache import EmbeddingCache
from annotation_engine.embeddings import EmbeddingProvider, LazyEmbeddingProvider
from annotation_engine.field_extraction import (
    dedupe_extracted_fields,
    extract_fields_from_chunk,
)
from annotation_engine.fusion import HeuristicFusionStage
from annotation_engine.learned_rules import LearnedRuleMatcher, LearnedRuleStage
from annotation_engine.pattern_rules import PatternRuleStage
from annotation_engine.schemas import (
    Annotation,
    Chunk,
    ExtractedField,
    InferenceContext,
    InferenceResult,
    MatchResult,
    ModelExplanation,
    PatternRule,
)

logger = logging.getLogger(__name__)


class MatchStage(Protocol):
    """One tier of the per-chunk decision chain."""

    name: str

    async def try_match(
        self, chunk: Chunk, context: InferenceContext
    ) -> MatchResult | None:
        ...


class AnnotationPipeline:
    """Annotate document chunks and extract structured fields."""

    def __init__(
        self,
        *,
        config: InferenceConfig | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        embedding_cache: EmbeddingCache | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Inference thresholds; read from the environment if omitted.
            embedding_provider: Provider for the semantic tier. Wrapped so it
                loads once on first use. Ignored when ``embedding_cache`` is
                given.
            embedding_cache: Pre-built cache to share across pipelines.
        """
        self.config = config or InferenceConfig.from_env()
        if embedding_cache is None and embedding_provider is not None:
            if not isinstance(embedding_provider, LazyEmbeddingProvider):
                embedding_provider = LazyEmbeddingProvider(embedding_provider)
            embedding_cache = EmbeddingCache(
                provider=embedding_provider,
                max_size=self.config.embedding_cache_size,
            )
        self.embedding_cache = embedding_cache
        self.learned_matcher = LearnedRuleMatcher(self.config, embedding_cache)

    def build_stages(
        self,
        learned_annotations: Sequence[Annotation],
        pattern_rules: Sequence[PatternRule] | None,
    ) -> list[MatchStage]:
        """Return the match stages in priority order."""
        return [
            LearnedRuleStage(self.learned_matcher, learned_annotations),
            PatternRuleStage(pattern_rules, self.config),
            DuplicateStage(),
            HeuristicFusionStage(self.config),
        ]

    async def annotate_async(
        self,
        chunks: Sequence[Chunk],
        *,
        learned_annotations: Sequence[Annotation] = (),
        pattern_rules: Sequence[PatternRule] | None = None,
        note_type: str | None = None,
        service: str | None = None,
        duplicate_chunk_ids: Iterable[str] = (),
    ) -> InferenceResult:
        """Annotate chunks in document order.

        Args:
            chunks: Chunks produced by the segmenter.
            learned_annotations: Human-confirmed annotations to match against.
            pattern_rules: Authored rules, tried in the given order.
            note_type: Note type of the document, for scope weighting.
            service: Clinical service of the document, for scope weighting.
            duplicate_chunk_ids: Chunk IDs the segmenter flagged as repeats.

        Returns:
            Annotations, explanations keyed by chunk ID and deduplicated
            extracted fields.
        """
        context = InferenceContext(
            note_type=note_type,
            service=service,
            duplicate_chunk_ids=frozenset(duplicate_chunk_ids),
        )
        stages = self.build_stages(learned_annotations, pattern_rules)
        return await self.run(chunks, stages, context)

    async def run(
        self,
        chunks: Sequence[Chunk],
        stages: Sequence[MatchStage],
        context: InferenceContext,
    ) -> InferenceResult:
        annotations: list[Annotation] = []
        explanations: dict[str, ModelExplanation] = {}
        extracted: list[ExtractedField] = []

        for chunk in chunks:
            extracted.extend(extract_fields_from_chunk(chunk))
            result = await self._match_chunk(chunk, stages, context)
            if result is None:
                continue
            annotations.append(result.annotation)
            explanations[chunk.id] = result.explanation

        if chunks:
            logger.info(
                "Annotated %d/%d chunks",
                len(annotations),
                len(chunks),
            )
        return InferenceResult(
            annotations=annotations,
            explanations=explanations,
            extracted_fields=dedupe_extracted_fields(extracted),
        )

    async def _match_chunk(
        self,
        chunk: Chunk,
        stages: Sequence[MatchStage],
        context: InferenceContext,
    ) -> MatchResult | None:
        for stage in stages:
            try:
                result = await stage.try_match(chunk, context)
            except Exception:
                logger.warning(
                    "Stage %s failed for chunk %s; leaving it unannotated",
                    stage.name,
                    chunk.id,
                    exc_info=True,
                )
                return None
            if result is not None:
                logger.debug(
                    "Chunk %s labeled %s by %s (%.2f)",
                    chunk.id,
                    result.annotation.label.value,
                    result.explanation.source.value,
                    result.explanation.confidence,
                )
                return result
        return None

    async def shutdown(self) -> None:
        """Release the embedding provider and drop cached vectors."""
        if self.embedding_cache is None:
            return
        provider = self.embedding_cache.provider
        if isinstance(provider, LazyEmbeddingProvider):
            await provider.shutdown()
        self.embedding_cache.clear()


async def annotate_document_async(
    chunks: Sequence[Chunk],
    *,
    learned_annotations: Sequence[Annotation] = (),
    pattern_rules: Sequence[PatternRule] | None = None,
    note_type: str | None = None,
    service: str | None = None,
    duplicate_chunk_ids: Iterable[str] = (),
    config: InferenceConfig | None = None,
    embedding_provider: EmbeddingProvider | None = None,
) -> InferenceResult:
    """Async wrapper that annotates one document with a fresh pipeline."""
    pipeline = AnnotationPipeline(
        config=config, embedding_provider=embedding_provider
    )
    return await pipeline.annotate_async(
        chunks,
        learned_annotations=learned_annotations,
        pattern_rules=pattern_rules,
        note_type=note_type,
        service=service,
        duplicate_chunk_ids=duplicate_chunk_ids,
    )


def annotate_document(
    chunks: Sequence[Chunk],
    *,
    learned_annotations: Sequence[Annotation] = (),
    pattern_rules: Sequence[PatternRule] | None = None,
    note_type: str | None = None,
    service: str | None = None,
    duplicate_chunk_ids: Iterable[str] = (),
    config: InferenceConfig | None = None,
    embedding_provider: EmbeddingProvider | None = None,
) -> InferenceResult:
    """Synchronous wrapper for annotating one document."""
    return anyio.run(
        functools.partial(
            annotate_document_async,
            chunks,
            learned_annotations=learned_annotations,
            pattern_rules=pattern_rules,
            note_type=note_type,
            service=service,
            duplicate_chunk_ids=duplicate_chunk_ids,
            config=config,
            embedding_provider=embedding_provider,
        )
    )
