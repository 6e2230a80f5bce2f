"""Pydantic schemas for chunk annotation inference."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChunkType(str, Enum):
    """Segment type assigned by the document segmenter."""

    SECTION_HEADER = "section_header"
    PARAGRAPH = "paragraph"
    BULLET_LIST = "bullet_list"
    IMAGING_REPORT = "imaging_report"
    LAB_VALUES = "lab_values"
    MEDICATION_LIST = "medication_list"
    VITAL_SIGNS = "vital_signs"
    ATTESTATION = "attestation"
    UNKNOWN = "unknown"


class PrimaryLabel(str, Enum):
    """Disposition of a chunk."""

    KEEP = "KEEP"
    CONDENSE = "CONDENSE"
    REMOVE = "REMOVE"


class RemoveReason(str, Enum):
    DUPLICATE_DATA = "duplicate_data"
    COPIED_PRIOR_NOTE = "copied_prior_note"
    BOILERPLATE_TEMPLATE = "boilerplate_template"
    BILLING_ATTESTATION = "billing_attestation"
    NORMAL_ROS_EXAM = "normal_ros_exam"
    REPEATED_IMAGING = "repeated_imaging"
    REPEATED_LABS = "repeated_labs"
    IRRELEVANT_HISTORICAL = "irrelevant_historical"
    ADMINISTRATIVE_TEXT = "administrative_text"


class CondenseStrategy(str, Enum):
    ABNORMAL_ONLY = "abnormal_only"
    CHANGES_VS_PRIOR = "changes_vs_prior"
    ONE_LINE_SUMMARY = "one_line_summary"
    PROBLEM_BASED_SUMMARY = "problem_based_summary"


class LabelScope(str, Enum):
    """Generality of a learned rule."""

    THIS_DOCUMENT = "this_document"
    NOTE_TYPE = "note_type"
    SERVICE = "service"
    GLOBAL = "global"


class CriticalType(str, Enum):
    ALLERGIES = "allergies"
    ANTICOAGULATION = "anticoagulation"
    CODE_STATUS = "code_status"
    INFUSIONS = "infusions"
    LINES_DRAINS_AIRWAY = "lines_drains_airway"


class PatternType(str, Enum):
    """Pattern rule matching strategy.

    ``SEMANTIC`` exists in the rule store schema but is not matched.
    """

    REGEX = "regex"
    KEYWORD = "keyword"
    NGRAM = "ngram"
    SEMANTIC = "semantic"


class ModelSource(str, Enum):
    """Inference tier that produced an annotation."""

    LEARNED_EXACT = "learned_exact"
    LEARNED_SIMILAR = "learned_similar"
    PATTERN_RULE = "pattern_rule"
    DUPLICATE_DETECTOR = "duplicate_detector"
    HEURISTIC_RULES = "heuristic_rules"
    CRITICAL_SAFETY = "critical_safety"
    COMBINED_SIGNALS = "combined_signals"


class ConfidenceCalibration(str, Enum):
    NONE = "none"
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"


class ExtractedFieldCategory(str, Enum):
    VITAL_SIGNS = "vital_signs"
    LAB_VALUE = "lab_value"
    MEDICATION = "medication"
    DIAGNOSIS = "diagnosis"
    PROCEDURE = "procedure"
    DATE_TIME = "date_time"
    KEY_VALUE = "key_value"
    ALLERGY = "allergy"
    PROBLEM = "problem"


class Chunk(BaseModel):
    """Typed segment of a clinical note, produced by the segmenter."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Stable chunk identifier")
    text: str = Field(description="Chunk text")
    type: ChunkType = Field(ChunkType.UNKNOWN, description="Segment type")
    start_index: int = Field(0, ge=0, description="Start offset in source text")
    end_index: int = Field(0, ge=0, description="End offset in source text")
    is_critical: bool = Field(False, description="Clinically non-removable content")
    critical_type: CriticalType | None = Field(
        None, description="Kind of critical content, if flagged"
    )
    suggested_label: PrimaryLabel | None = Field(
        None, description="Segmenter label hint"
    )
    confidence: float | None = Field(
        None, ge=0.0, le=1.0, description="Segmenter hint confidence"
    )


class Annotation(BaseModel):
    """Label and metadata assigned to a chunk."""

    chunk_id: str
    raw_text: str
    section_type: ChunkType = ChunkType.UNKNOWN
    label: PrimaryLabel
    remove_reason: RemoveReason | None = None
    condense_strategy: CondenseStrategy | None = None
    scope: LabelScope = LabelScope.THIS_DOCUMENT
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str = "system"
    override_justification: str | None = None

    @model_validator(mode="after")
    def _drop_mismatched_metadata(self) -> "Annotation":
        if self.label != PrimaryLabel.REMOVE:
            self.remove_reason = None
        if self.label != PrimaryLabel.CONDENSE:
            self.condense_strategy = None
        return self


class PatternRule(BaseModel):
    """Authored keyword / n-gram / regex rule mapping text to a label."""

    id: str
    pattern_type: PatternType
    pattern_value: str
    label: PrimaryLabel
    remove_reason: RemoveReason | None = None
    condense_strategy: CondenseStrategy | None = None
    chunk_type: ChunkType | None = Field(
        None, description="Restrict the rule to one chunk type"
    )
    scope: LabelScope = LabelScope.GLOBAL
    effectiveness_score: float = Field(0.5, ge=0.0, le=1.0)
    is_active: bool = True
    description: str | None = None


class ModelExplanation(BaseModel):
    """Why a chunk received its annotation."""

    source: ModelSource
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str | None = None
    signals: list[str] = Field(default_factory=list)


class ExtractedField(BaseModel):
    """Structured field pulled from a chunk."""

    id: str
    category: ExtractedFieldCategory
    label: str
    value: str
    confidence: float = Field(ge=0.0, le=1.0)
    source_chunk_id: str


class CandidateSignal(BaseModel):
    """One classifier's independent label guess prior to fusion."""

    label: PrimaryLabel
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str
    source: ModelSource
    remove_reason: RemoveReason | None = None
    condense_strategy: CondenseStrategy | None = None


class FusedSignal(BaseModel):
    """Winning label group after signal fusion."""

    label: PrimaryLabel
    confidence: float = Field(ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)
    sources: list[ModelSource] = Field(default_factory=list)
    remove_reason: RemoveReason | None = None
    condense_strategy: CondenseStrategy | None = None


class MatchResult(BaseModel):
    """Annotation plus explanation emitted by one match stage."""

    annotation: Annotation
    explanation: ModelExplanation


class InferenceContext(BaseModel):
    """Document-level context shared by every chunk in a run."""

    note_type: str | None = None
    service: str | None = None
    duplicate_chunk_ids: frozenset[str] = Field(default_factory=frozenset)


class InferenceResult(BaseModel):
    """Output of one inference pass over a document."""

    annotations: list[Annotation] = Field(default_factory=list)
    explanations: dict[str, ModelExplanation] = Field(default_factory=dict)
    extracted_fields: list[ExtractedField] = Field(default_factory=list)


def build_annotation(
    chunk: Chunk,
    label: PrimaryLabel,
    *,
    remove_reason: RemoveReason | None = None,
    condense_strategy: CondenseStrategy | None = None,
    scope: LabelScope = LabelScope.THIS_DOCUMENT,
) -> Annotation:
    """Create a system annotation for a chunk."""
    return Annotation(
        chunk_id=chunk.id,
        raw_text=chunk.text,
        section_type=chunk.type,
        label=label,
        remove_reason=remove_reason,
        condense_strategy=condense_strategy,
        scope=scope,
    )
