"""Document analysis records: the pipeline's root entity and its value objects.

Field names are snake_case in Python and camelCase on the wire, so the same
models validate service JSON and serialise the outbound record.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import StateTransitionError


DOCUMENT_TYPES = (
    "research_paper",
    "experimental_data",
    "review",
    "protocol",
    "report",
    "other",
)

RELATIONSHIP_TYPES = (
    "contradiction",
    "support",
    "methodological_gap",
    "builds_upon",
    "similar_findings",
)

DocumentType = Literal[
    "research_paper", "experimental_data", "review", "protocol", "report", "other"
]
RelationshipType = Literal[
    "contradiction", "support", "methodological_gap", "builds_upon", "similar_findings"
]


def _lowercase(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


Significance = Annotated[Literal["high", "medium", "low"], BeforeValidator(_lowercase)]
VariableKind = Annotated[
    Literal["independent", "dependent", "control"], BeforeValidator(_lowercase)
]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CamelModel(BaseModel):
    """Base model accepting both snake_case and camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---- Structure

class DocumentSection(CamelModel):
    title: str
    content: str = ""
    level: int = 1
    start_page: Optional[int] = None
    end_page: Optional[int] = None


class DocumentFigure(CamelModel):
    caption: str = ""
    page_number: int = 0
    description: Optional[str] = None


class DocumentTable(CamelModel):
    caption: str = ""
    headers: List[str] = []
    rows: List[List[str]] = []
    page_number: int = 0
    analysis: Optional[str] = None


class DocumentStructure(CamelModel):
    title: Optional[str] = None
    abstract: Optional[str] = None
    introduction: Optional[str] = None
    methodology: Optional[str] = None
    results: Optional[str] = None
    discussion: Optional[str] = None
    conclusion: Optional[str] = None
    references: List[str] = []
    sections: List[DocumentSection] = []
    figures: List[DocumentFigure] = []
    tables: List[DocumentTable] = []


class DocumentMetadata(CamelModel):
    language: str = "en"
    pages: int = 0


class DocumentContent(CamelModel):
    text: str = ""
    structure: DocumentStructure = Field(default_factory=DocumentStructure)
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)


# ---- Research-paper report

class Finding(CamelModel):
    statement: str
    significance: Significance = "low"
    evidence: str = ""
    page: Optional[int] = None


class ResearchMethodology(CamelModel):
    type: str = "unknown"
    description: str = ""
    strengths: List[str] = []
    limitations: List[str] = []


class NoveltyAssessment(CamelModel):
    score: float = Field(0, ge=0, le=10)
    justification: str = ""
    gaps: List[str] = []


class MethodologyCritique(CamelModel):
    score: float = Field(0, ge=0, le=10)
    issues: List[str] = []
    suggestions: List[str] = []


class ResearchPaperAnalysis(CamelModel):
    research_questions: List[str]
    methodology: ResearchMethodology
    key_findings: List[Finding]
    novelty: NoveltyAssessment = Field(default_factory=NoveltyAssessment)
    methodology_critique: MethodologyCritique = Field(default_factory=MethodologyCritique)
    literature_gaps: List[str] = []
    future_work: List[str] = []


# ---- Experimental-data report

class DataQuality(CamelModel):
    score: float = Field(0, ge=0, le=10)
    issues: List[str] = []
    recommendations: List[str] = []


class StatisticalTest(CamelModel):
    type: str
    p_value: Optional[float] = Field(None, ge=0, le=1)
    significant: bool = False
    interpretation: str = ""


class StatisticalSignificance(CamelModel):
    tests: List[StatisticalTest] = []
    overall: bool = False
    confidence: float = Field(0, ge=0, le=100)


class ExperimentalVariable(CamelModel):
    name: str
    type: VariableKind
    description: str = ""
    range: Optional[str] = None


class ExperimentalDesign(CamelModel):
    type: str = "unknown"
    controls: List[str] = []
    variables: List[ExperimentalVariable] = []
    sample_size: int = Field(0, ge=0)
    critique: List[str] = []


class DataPattern(CamelModel):
    description: str
    confidence: float = Field(0, ge=0, le=100)
    implications: List[str] = []


class GeneratedHypothesis(CamelModel):
    statement: str
    rationale: str = ""
    testability: float = Field(0, ge=0, le=10)
    significance: Significance = "low"


class ExperimentalDataAnalysis(CamelModel):
    data_quality: DataQuality
    statistical_significance: StatisticalSignificance
    experimental_design: ExperimentalDesign
    data_patterns: List[DataPattern] = []
    hypotheses: List[GeneratedHypothesis] = []


# ---- Embeddings, relationships, audit

class DocumentEmbeddings(CamelModel):
    summary: List[float] = []
    methodology: List[float] = []
    conclusions: List[float] = []
    full_text: List[float] = []

    def is_empty(self) -> bool:
        return not any([self.summary, self.methodology, self.conclusions, self.full_text])


class RelationshipSection(CamelModel):
    source: str
    target: str
    relationship: str


class DocumentRelationship(CamelModel):
    target_document_id: str
    type: RelationshipType
    similarity: float = Field(ge=0, le=1)
    description: str = ""
    specific_sections: List[RelationshipSection] = []


class Degradation(CamelModel):
    """One non-fatal stage failure recorded on the analysis."""
    stage: str
    reason: str


class DocumentUpload(BaseModel):
    """Inbound blob: bytes plus declared MIME type."""
    filename: str
    mime_type: str
    payload: bytes
    size: Optional[int] = None

    @property
    def byte_size(self) -> int:
        return self.size if self.size is not None else len(self.payload)


class DocumentAnalysis(CamelModel):
    """Root record produced by the pipeline for one input file."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    filename: str
    file_type: str
    size: int = 0
    uploaded_at: str = Field(default_factory=utc_now)
    processed_at: Optional[str] = None
    status: DocumentStatus = DocumentStatus.PROCESSING
    content: DocumentContent = Field(default_factory=DocumentContent)
    document_type: Optional[DocumentType] = None
    research: Optional[ResearchPaperAnalysis] = None
    experimental: Optional[ExperimentalDataAnalysis] = None
    embeddings: DocumentEmbeddings = Field(default_factory=DocumentEmbeddings)
    relationships: List[DocumentRelationship] = []
    degraded: List[Degradation] = []
    completed_stages: List[str] = []
    indexed: bool = False
    error: Optional[str] = None

    @classmethod
    def from_upload(cls, upload: DocumentUpload) -> "DocumentAnalysis":
        return cls(
            filename=upload.filename,
            file_type=upload.mime_type,
            size=upload.byte_size,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status != DocumentStatus.PROCESSING

    @property
    def display_title(self) -> str:
        return self.content.structure.title or self.filename

    def _finish(self, status: DocumentStatus) -> None:
        if self.is_terminal:
            raise StateTransitionError(
                f"Analysis {self.id} is already {self.status.value}; cannot move to {status.value}"
            )
        self.status = status
        self.processed_at = utc_now()

    def mark_completed(self) -> None:
        if not self.content.text:
            raise StateTransitionError(f"Analysis {self.id} has no extracted text")
        self._finish(DocumentStatus.COMPLETED)

    def mark_failed(self, error: Optional[str] = None) -> None:
        self._finish(DocumentStatus.FAILED)
        self.error = error

    def record_degradation(self, stage: str, reason: str) -> None:
        self.degraded.append(Degradation(stage=stage, reason=reason))

    def mark_stage_completed(self, stage: str) -> None:
        if stage not in self.completed_stages:
            self.completed_stages.append(stage)

    def has_completed(self, stage: str) -> bool:
        return stage in self.completed_stages

    def to_dict(self) -> dict:
        """Outbound camelCase representation."""
        return self.model_dump(by_alias=True, mode="json")
