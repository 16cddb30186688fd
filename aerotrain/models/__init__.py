"""Database and schema models for AeroTrain."""
from aerotrain.models.database_models import (
    Document,
    DocumentVersion,
    GraphNode,
    GraphEdge,
    RegulatoryRequirementRecord,
    Syllabus,
)
from aerotrain.models.schemas import (
    ProgramType,
    AuthorityCode,
    GenerationOptions,
    DocumentCreate,
    DocumentResponse,
    StructureResponse,
    KnowledgeGraphResponse,
    GeneratedSyllabusResponse,
    GenerationProgressResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "Document",
    "DocumentVersion",
    "GraphNode",
    "GraphEdge",
    "RegulatoryRequirementRecord",
    "Syllabus",
    # Pydantic schemas
    "ProgramType",
    "AuthorityCode",
    "GenerationOptions",
    "DocumentCreate",
    "DocumentResponse",
    "StructureResponse",
    "KnowledgeGraphResponse",
    "GeneratedSyllabusResponse",
    "GenerationProgressResponse",
    "HealthCheckResponse",
]
