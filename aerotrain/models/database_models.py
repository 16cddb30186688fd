"""
SQLAlchemy ORM models for the AeroTrain database.

Documents and their versions hold the output of the text extraction service;
graph_nodes / graph_edges are the persisted cross-document knowledge graph;
regulatory_requirements is the requirements catalog; syllabi stores
generated syllabi.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Date,
    DateTime,
    ForeignKey,
    Float,
    JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from aerotrain.database import Base


class Document(Base):
    """Uploaded training document (metadata only; text lives in versions)."""

    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    file_name = Column(String(255), nullable=True)
    metadata_json = Column(JSON, nullable=True)  # page_count, format, language …
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    versions = relationship(
        "DocumentVersion",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentVersion.version_number",
    )
    syllabi = relationship("Syllabus", back_populates="document", cascade="all, delete-orphan")


class DocumentVersion(Base):
    """One extraction result for a document."""

    __tablename__ = "document_versions"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False, default=1)
    content_text = Column(Text, nullable=True)
    headings_json = Column(JSON, nullable=True)  # [{level, text, page}]
    tables_json = Column(JSON, nullable=True)  # [{rows, page}]
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    document = relationship("Document", back_populates="versions")


class GraphNode(Base):
    """Persisted knowledge graph node."""

    __tablename__ = "graph_nodes"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=True, index=True)
    node_key = Column(String(512), nullable=False, index=True)  # content-derived extraction id
    node_type = Column(String(32), nullable=False, index=True)
    content = Column(Text, nullable=False)
    importance = Column(Float, nullable=False, default=0.5)
    confidence = Column(Float, nullable=False, default=0.5)
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class GraphEdge(Base):
    """Persisted knowledge graph edge between two stored nodes."""

    __tablename__ = "graph_edges"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=True, index=True)
    source_id = Column(Integer, ForeignKey("graph_nodes.id", ondelete="CASCADE"), nullable=False, index=True)
    target_id = Column(Integer, ForeignKey("graph_nodes.id", ondelete="CASCADE"), nullable=False, index=True)
    relationship_type = Column(String(32), nullable=False)
    weight = Column(Float, nullable=False, default=0.5)
    confidence = Column(Float, nullable=False, default=0.5)
    metadata_json = Column(JSON, nullable=True)

    # Relationships
    source = relationship("GraphNode", foreign_keys=[source_id])
    target = relationship("GraphNode", foreign_keys=[target_id])


class RegulatoryRequirementRecord(Base):
    """Requirement record of the regulatory catalog."""

    __tablename__ = "regulatory_requirements"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), nullable=False, index=True)
    authority = Column(String(16), nullable=False, index=True)
    version = Column(String(32), nullable=False)
    description = Column(Text, nullable=False)
    effective_date = Column(Date, nullable=True)
    url = Column(String(512), nullable=True)


class Syllabus(Base):
    """Generated syllabus, stored as JSON alongside a few queryable columns."""

    __tablename__ = "syllabi"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    generation_id = Column(String(64), nullable=True, unique=True)
    name = Column(String(255), nullable=False)
    program_type = Column(String(64), nullable=True)
    aircraft_type = Column(String(64), nullable=True)
    total_duration = Column(Integer, nullable=False, default=0)  # days
    confidence_score = Column(Float, nullable=True)
    content_json = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    document = relationship("Document", back_populates="syllabi")
