"""
Knowledge graph endpoints.

Route summary
-------------
POST /documents/{id}/extract  extract (and optionally store) a document's graph.
GET  /documents/{id}          the stored graph of a document.
GET  /similar?q=              stored nodes similar to a query string.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from aerotrain.database import get_db
from aerotrain.models.schemas import (
    KnowledgeGraphExtractRequest,
    KnowledgeGraphResponse,
    SimilarNodeResult,
    SimilarNodesResponse,
    StoredGraphResponse,
    StoredNodeSchema,
)
from aerotrain.services.document_store import SqlDocumentStore
from aerotrain.services.graph_store import SqlGraphStore
from aerotrain.services.knowledge_graph import (
    ExtractionOptions,
    KnowledgeGraphExtractor,
    NodeType,
    save_knowledge_graph,
)
from aerotrain.services.pipeline import parse_stored_document
from aerotrain.utils.helpers import to_jsonable

logger = logging.getLogger(__name__)

router = APIRouter()


def _extraction_options(request: KnowledgeGraphExtractRequest) -> ExtractionOptions:
    """Request toggles on top of the settings defaults."""
    options = ExtractionOptions(
        extract_entities=request.extract_entities,
        extract_concepts=request.extract_concepts,
        extract_relationships=request.extract_relationships,
        link_to_existing=request.link_to_existing,
        include_document_node=request.include_document_node,
    )
    if request.minimum_confidence is not None:
        options.minimum_confidence = request.minimum_confidence
    if request.max_nodes is not None:
        options.max_nodes = request.max_nodes
    if request.max_edges_per_node is not None:
        options.max_edges_per_node = request.max_edges_per_node
    if request.filter_node_types:
        try:
            options.filter_node_types = [NodeType(t) for t in request.filter_node_types]
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Unknown node type: {exc}",
            )
    return options


# ---------------------------------------------------------------------------
# POST /documents/{document_id}/extract
# ---------------------------------------------------------------------------

@router.post("/documents/{document_id}/extract", response_model=KnowledgeGraphResponse)
async def extract_knowledge_graph(
    document_id: int,
    request: KnowledgeGraphExtractRequest = KnowledgeGraphExtractRequest(),
    db: AsyncSession = Depends(get_db),
) -> KnowledgeGraphResponse:
    """
    Extract a bounded knowledge graph from a stored document.

    With ``save`` set, the graph replaces whatever was stored for the
    document before; edges whose endpoints were filtered out are skipped.
    """
    document = await SqlDocumentStore(db).get_document(document_id)
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document {document_id} not found.",
        )

    options = _extraction_options(request)
    graph_store = SqlGraphStore(db)
    extractor = KnowledgeGraphExtractor(graph_store=graph_store)
    result = await extractor.extract(
        document.text,
        structure=parse_stored_document(document),
        options=options,
        document_id=document_id,
    )

    data = result.to_dict()
    if request.save:
        saved = await save_knowledge_graph(result, graph_store, document_id)
        await db.commit()
        data["saved"] = {
            "nodes_saved": len(saved.node_ids),
            "edges_saved": saved.edges_saved,
            "edges_skipped": saved.edges_skipped,
            "links_saved": saved.links_saved,
        }
        logger.info(
            "Knowledge graph stored for document %d: %d node(s), %d edge(s), %d skipped",
            document_id,
            len(saved.node_ids),
            saved.edges_saved,
            saved.edges_skipped,
        )
    return KnowledgeGraphResponse.model_validate(data)


# ---------------------------------------------------------------------------
# GET /documents/{document_id}
# ---------------------------------------------------------------------------

@router.get("/documents/{document_id}", response_model=StoredGraphResponse)
async def get_document_graph(
    document_id: int,
    db: AsyncSession = Depends(get_db),
) -> StoredGraphResponse:
    if await SqlDocumentStore(db).get_document(document_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document {document_id} not found.",
        )
    nodes, edges = await SqlGraphStore(db).get_graph_for_document(document_id)
    return StoredGraphResponse.model_validate({
        "document_id": document_id,
        "nodes": to_jsonable(nodes),
        "edges": to_jsonable(edges),
    })


# ---------------------------------------------------------------------------
# GET /similar
# ---------------------------------------------------------------------------

@router.get("/similar", response_model=SimilarNodesResponse)
async def find_similar_nodes(
    q: str = Query(..., min_length=1, description="Text to match against stored node content"),
    threshold: float = Query(0.3, ge=0.0, le=1.0),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> SimilarNodesResponse:
    """Stored nodes whose content overlaps the query (word-set Jaccard), best first."""
    matches = await SqlGraphStore(db).find_similar_nodes(q, threshold=threshold, limit=limit)
    results = [
        SimilarNodeResult(node=StoredNodeSchema.model_validate(to_jsonable(node)), similarity=score)
        for node, score in matches
    ]
    return SimilarNodesResponse(query=q, results=results, total=len(results))
