"""
Document storage and analysis endpoints.

POST   /                store the output of the text extraction service.
GET    /{id}            document metadata.
DELETE /{id}            delete the document, its graph and syllabi.
POST   /{id}/structure  parse the document's structural hierarchy.
POST   /{id}/analyze    nested analysis (structure, classification, context, graph, syllabus).
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from aerotrain.database import get_db
from aerotrain.models.schemas import (
    DocumentAnalysisRequest,
    DocumentAnalysisResponse,
    DocumentCreate,
    DocumentResponse,
    StructureResponse,
)
from aerotrain.services.document_store import SqlDocumentStore, StoredDocument
from aerotrain.services.errors import ExtractionFailure, ValidationFailure
from aerotrain.services.graph_store import SqlGraphStore
from aerotrain.services.pipeline import DocumentAnalysisPipeline, parse_stored_document, structure_summary
from aerotrain.services.regulatory import SqlRegulatoryCatalog

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_document_or_404(store: SqlDocumentStore, document_id: int) -> StoredDocument:
    document = await store.get_document(document_id)
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document {document_id} not found.",
        )
    return document


# ---------------------------------------------------------------------------
# Create / read / delete
# ---------------------------------------------------------------------------

@router.post(
    "/",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_document(
    payload: DocumentCreate,
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    """
    Store a document produced by the text extraction service.

    The payload carries the plain text plus any headings and tables the
    extraction service recognised.  Nothing is kept when storing fails.
    """
    store = SqlDocumentStore(db)
    try:
        document = await store.save_document(
            text=payload.text,
            title=payload.title,
            file_name=payload.file_name,
            headings=[h.model_dump() for h in payload.headings],
            tables=[t.model_dump() for t in payload.tables],
            metadata=payload.metadata,
        )
        await db.commit()
    except ExtractionFailure as exc:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(exc),
        )
    except Exception as exc:
        await db.rollback()
        logger.exception("Unexpected error storing document %r", payload.title or payload.file_name)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error storing document: {exc}",
        )

    return DocumentResponse.model_validate(document.summary())


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: int,
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    document = await _get_document_or_404(SqlDocumentStore(db), document_id)
    return DocumentResponse.model_validate(document.summary())


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT, response_model=None)
async def delete_document(
    document_id: int,
    db: AsyncSession = Depends(get_db),
) -> None:
    """Delete a document together with its stored graph and generated syllabi."""
    deleted = await SqlDocumentStore(db).delete_document(document_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document {document_id} not found.",
        )
    await db.commit()


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------

@router.post("/{document_id}/structure", response_model=StructureResponse)
async def parse_structure(
    document_id: int,
    db: AsyncSession = Depends(get_db),
) -> StructureResponse:
    """
    Parse the stored document into its element hierarchy.

    Returns the title, the mean element confidence, element counts and the
    nested hierarchy rooted at the document element.
    """
    document = await _get_document_or_404(SqlDocumentStore(db), document_id)
    structure = parse_stored_document(document)
    return StructureResponse.model_validate(structure_summary(structure, document_id))


# ---------------------------------------------------------------------------
# Nested analysis
# ---------------------------------------------------------------------------

@router.post("/{document_id}/analyze", response_model=DocumentAnalysisResponse)
async def analyze_document(
    document_id: int,
    request: Optional[DocumentAnalysisRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> DocumentAnalysisResponse:
    """
    Run structure, classification, context, knowledge graph and syllabus
    analysis over one document.

    A failing stage does not fail the request: its message is returned in
    the matching ``<stage>_error`` field and later stages still run.
    """
    request = request or DocumentAnalysisRequest()
    store = SqlDocumentStore(db)
    await _get_document_or_404(store, document_id)

    pipeline = DocumentAnalysisPipeline(
        store,
        graph_store=SqlGraphStore(db),
        catalog=SqlRegulatoryCatalog(db),
    )
    try:
        analysis = await pipeline.analyze(
            document_id,
            include_knowledge_graph=request.include_knowledge_graph,
            include_syllabus=request.include_syllabus,
            save_graph=request.save_knowledge_graph,
            options=request.options,
        )
    except ValidationFailure as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "errors": exc.errors},
        )
    except ExtractionFailure as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )

    if request.save_knowledge_graph:
        await db.commit()
    return DocumentAnalysisResponse.model_validate(analysis.to_dict())
