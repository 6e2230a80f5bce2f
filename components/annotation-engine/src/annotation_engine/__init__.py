"""Clinical chunk annotation inference."""

from annotation_engine.analytics import InferenceStats, get_inference_stats
from annotation_engine.config import InferenceConfig
from annotation_engine.embedding_cache import EmbeddingCache
from annotation_engine.embeddings import (
    EmbeddingProvider,
    LazyEmbeddingProvider,
    SentenceTransformerProvider,
)
from annotation_engine.pipeline import (
    AnnotationPipeline,
    annotate_document,
    annotate_document_async,
)
from annotation_engine.schemas import (
    Annotation,
    Chunk,
    ChunkType,
    CondenseStrategy,
    ExtractedField,
    InferenceResult,
    LabelScope,
    ModelExplanation,
    ModelSource,
    PatternRule,
    PatternType,
    PrimaryLabel,
    RemoveReason,
)

__all__ = [
    "Annotation",
    "AnnotationPipeline",
    "Chunk",
    "ChunkType",
    "CondenseStrategy",
    "EmbeddingCache",
    "EmbeddingProvider",
    "ExtractedField",
    "InferenceConfig",
    "InferenceResult",
    "InferenceStats",
    "LabelScope",
    "LazyEmbeddingProvider",
    "ModelExplanation",
    "ModelSource",
    "PatternRule",
    "PatternType",
    "PrimaryLabel",
    "RemoveReason",
    "SentenceTransformerProvider",
    "annotate_document",
    "annotate_document_async",
    "get_inference_stats",
]
