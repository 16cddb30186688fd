"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, List, Dict, Any
from datetime import date, datetime
from enum import Enum

from aerotrain.config import settings


# Enums (matching the service enums)
class ProgramType(str, Enum):
    """Training program types a syllabus can be generated for."""

    INITIAL_TYPE_RATING = "initial_type_rating"
    RECURRENT = "recurrent"
    JOC_MCC = "joc_mcc"
    TYPE_RATING = "type_rating"
    INITIAL = "initial"
    CUSTOM = "custom"


class AuthorityCode(str, Enum):
    """Regulatory authorities accepted in generation options."""

    FAA = "faa"
    EASA = "easa"
    ICAO = "icao"
    TCCA = "tcca"
    CASA = "casa"
    DGCA = "dgca"
    OTHER = "other"


# Health Check Schema
class HealthCheckResponse(BaseModel):
    """Schema for health check endpoint."""

    status: str
    database: str
    regulatory_requirements: int = 0
    active_generations: int = 0
    timestamp: datetime
    version: str = "0.1.0"


# Document Schemas (payload of the text extraction service)
class HeadingPayload(BaseModel):
    level: int = Field(1, ge=1, le=9)
    text: str = Field(..., min_length=1)
    page: Optional[int] = Field(None, ge=1)


class TablePayload(BaseModel):
    rows: List[List[Any]] = Field(default_factory=list)
    page: Optional[int] = Field(None, ge=1)


class DocumentCreate(BaseModel):
    """Schema for storing an extracted document."""

    title: Optional[str] = Field(None, max_length=255)
    file_name: Optional[str] = Field(None, max_length=255)
    text: str
    headings: List[HeadingPayload] = Field(default_factory=list)
    tables: List[TablePayload] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DocumentResponse(BaseModel):
    """Schema for document responses."""

    id: int
    title: str
    file_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    version_number: int = 1
    text_length: int = 0
    heading_count: int = 0
    table_count: int = 0
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class StructureResponse(BaseModel):
    """Parsed document structure with its nested hierarchy."""

    document_id: Optional[int] = None
    title: str
    confidence: float
    processing_time_ms: float
    metadata: Dict[str, Any]
    hierarchy: Dict[str, Any]


# Knowledge Graph Schemas
class KnowledgeGraphExtractRequest(BaseModel):
    """Extraction toggles and bounds; omitted bounds fall back to settings."""

    extract_entities: bool = True
    extract_concepts: bool = True
    extract_relationships: bool = True
    minimum_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    max_nodes: Optional[int] = Field(None, ge=1)
    max_edges_per_node: Optional[int] = Field(None, ge=0)
    link_to_existing: bool = False
    include_document_node: bool = True
    filter_node_types: Optional[List[str]] = None
    save: bool = True


class KnowledgeNodeSchema(BaseModel):
    id: str
    type: str
    content: str
    importance: float
    confidence: float
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class KnowledgeEdgeSchema(BaseModel):
    source: str
    target: str
    relationship: str
    weight: float
    confidence: float
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class CrossDocumentLinkSchema(BaseModel):
    source: str
    target: str
    target_node_id: int
    target_document_id: Optional[int] = None
    target_content: str
    relationship: str
    weight: float
    confidence: float
    match: str

    model_config = ConfigDict(from_attributes=True)


class GraphStatisticsSchema(BaseModel):
    node_count: int
    edge_count: int
    average_degree: float
    most_connected: List[Dict[str, Any]]

    model_config = ConfigDict(from_attributes=True)


class SavedGraphSchema(BaseModel):
    nodes_saved: int
    edges_saved: int
    edges_skipped: int
    links_saved: int


class KnowledgeGraphResponse(BaseModel):
    """Result of a knowledge graph extraction."""

    document_id: Optional[int] = None
    nodes: List[KnowledgeNodeSchema]
    edges: List[KnowledgeEdgeSchema]
    statistics: GraphStatisticsSchema
    cross_document_links: List[CrossDocumentLinkSchema] = Field(default_factory=list)
    processing_time_ms: float = 0.0
    saved: Optional[SavedGraphSchema] = None

    model_config = ConfigDict(from_attributes=True)


class StoredNodeSchema(BaseModel):
    id: int
    document_id: Optional[int] = None
    node_key: str
    node_type: str
    content: str
    importance: float
    confidence: float
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class StoredEdgeSchema(BaseModel):
    id: int
    document_id: Optional[int] = None
    source_id: int
    target_id: int
    relationship: str
    weight: float
    confidence: float
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class StoredGraphResponse(BaseModel):
    """Persisted graph of one document."""

    document_id: int
    nodes: List[StoredNodeSchema]
    edges: List[StoredEdgeSchema]


class SimilarNodeResult(BaseModel):
    node: StoredNodeSchema
    similarity: float


class SimilarNodesResponse(BaseModel):
    query: str
    results: List[SimilarNodeResult]
    total: int


# Syllabus Generation Schemas
class GenerationOptions(BaseModel):
    """Options accepted by syllabus generation; validated before any stage runs."""

    program_type: Optional[ProgramType] = None
    regulatory_authority: Optional[AuthorityCode] = None
    aircraft_type: Optional[str] = Field(None, max_length=64)
    include_simulator_exercises: bool = True
    include_classroom_modules: bool = True
    include_aircraft_exercises: bool = True
    include_assessments: bool = True
    include_knowledge_graph: bool = False
    confidence_threshold: float = Field(0.5, ge=0.0, le=1.0)
    template_id: Optional[str] = None
    min_modules: int = Field(default_factory=lambda: settings.SYLLABUS_MIN_MODULES, ge=1)
    max_modules: int = Field(default_factory=lambda: settings.SYLLABUS_MAX_MODULES, ge=1)
    max_lessons_per_module: int = Field(default_factory=lambda: settings.SYLLABUS_MAX_LESSONS_PER_MODULE, ge=1)
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None

    @model_validator(mode="after")
    def check_module_bounds(self) -> "GenerationOptions":
        if self.max_modules < self.min_modules:
            raise ValueError("max_modules must be greater than or equal to min_modules")
        return self


class GenerationStartRequest(BaseModel):
    """Options stay a raw mapping so malformed values surface as ValidationFailure."""

    document_id: int
    options: Dict[str, Any] = Field(default_factory=dict)


class GenerationProgressResponse(BaseModel):
    """Pollable state of a generation job."""

    generation_id: str
    document_id: int
    status: str  # pending, in_progress, completed, failed
    stage: str
    percent: int
    message: str
    errors: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    elapsed_seconds: Optional[float] = None


class RegulatoryRequirementSchema(BaseModel):
    code: str
    authority: str
    version: str
    description: str
    effective_date: Optional[date] = None
    url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RegulatoryRequirementsResponse(BaseModel):
    authority: str
    requirements: List[RegulatoryRequirementSchema]
    total: int


class CompetencySchema(BaseModel):
    name: str
    description: str
    assessment_criteria: List[str] = Field(default_factory=list)
    regulatory_reference: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ModuleSchema(BaseModel):
    name: str
    description: str
    type: str
    competencies: List[CompetencySchema]
    recommended_duration: float
    regulatory_requirements: List[str] = Field(default_factory=list)
    source: str

    model_config = ConfigDict(from_attributes=True)


class LessonSchema(BaseModel):
    name: str
    description: str
    content: str
    type: str
    module_index: int
    duration: int
    learning_objectives: List[str] = Field(default_factory=list)
    target_competencies: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class RegulatoryComplianceSchema(BaseModel):
    authority: Optional[str] = None
    requirements_met: List[RegulatoryRequirementSchema] = Field(default_factory=list)
    requirements_partially_met: List[RegulatoryRequirementSchema] = Field(default_factory=list)
    requirements_not_met: List[RegulatoryRequirementSchema] = Field(default_factory=list)
    error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SyllabusGraphNodeSchema(BaseModel):
    id: str
    type: str
    content: str

    model_config = ConfigDict(from_attributes=True)


class SyllabusGraphEdgeSchema(BaseModel):
    source: str
    target: str
    relationship: str

    model_config = ConfigDict(from_attributes=True)


class SyllabusGraphSchema(BaseModel):
    nodes: List[SyllabusGraphNodeSchema]
    edges: List[SyllabusGraphEdgeSchema]

    model_config = ConfigDict(from_attributes=True)


class GeneratedSyllabusResponse(BaseModel):
    """A generated syllabus."""

    name: str
    description: str
    program_type: str
    aircraft_type: Optional[str] = None
    total_duration: int
    modules: List[ModuleSchema]
    lessons: List[LessonSchema]
    regulatory_compliance: RegulatoryComplianceSchema
    confidence_score: float
    knowledge_graph: Optional[SyllabusGraphSchema] = None
    warnings: List[str] = Field(default_factory=list)
    version: str = "1.0.0"

    model_config = ConfigDict(from_attributes=True)


class TemplateModuleSchema(BaseModel):
    name: str
    type: str
    description: str
    competencies: List[str] = Field(default_factory=list)


class TemplateResponse(BaseModel):
    id: str
    name: str
    program_type: str
    description: str
    modules: List[TemplateModuleSchema]


# Document Analysis Schemas
class DocumentAnalysisRequest(BaseModel):
    """Which optional stages to run; ``options`` are syllabus generation options."""

    include_knowledge_graph: bool = True
    include_syllabus: bool = True
    save_knowledge_graph: bool = False
    options: Dict[str, Any] = Field(default_factory=dict)


class DocumentAnalysisResponse(BaseModel):
    """Partial results of the nested analysis plus one error field per failed stage."""

    document_id: int
    structure: Optional[Dict[str, Any]] = None
    classification: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    knowledge_graph: Optional[Dict[str, Any]] = None
    syllabus: Optional[Dict[str, Any]] = None
    structure_error: Optional[str] = None
    classification_error: Optional[str] = None
    context_error: Optional[str] = None
    knowledge_graph_error: Optional[str] = None
    syllabus_error: Optional[str] = None
    processing_time_ms: float = 0.0
