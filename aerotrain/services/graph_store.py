"""
Graph Store: persisted knowledge graph nodes and edges across documents.

The store assigns permanent integer ids.  Saving a document's graph replaces
whatever was stored for that document before (last write wins); concurrent
generations for the same document must be serialized by the caller.
"""
from __future__ import annotations

import abc
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from aerotrain.models.database_models import GraphEdge, GraphNode
from aerotrain.utils.helpers import jaccard_similarity

logger = logging.getLogger(__name__)


@dataclass
class StoredNode:
    id: int
    document_id: Optional[int]
    node_key: str
    node_type: str
    content: str
    importance: float
    confidence: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredEdge:
    id: int
    document_id: Optional[int]
    source_id: int
    target_id: int
    relationship: str
    weight: float
    confidence: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class GraphStore(abc.ABC):
    """Persistence interface for the cross-document knowledge graph."""

    @abc.abstractmethod
    async def save_node(
        self,
        document_id: Optional[int],
        node_key: str,
        node_type: str,
        content: str,
        importance: float,
        confidence: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Persist a node and return its permanent id."""

    @abc.abstractmethod
    async def save_edge(
        self,
        document_id: Optional[int],
        source_id: int,
        target_id: int,
        relationship: str,
        weight: float,
        confidence: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Persist an edge between two stored nodes and return its id."""

    @abc.abstractmethod
    async def clear_document(self, document_id: int) -> None:
        """Delete every node and edge stored for *document_id*."""

    @abc.abstractmethod
    async def get_nodes_excluding_document(self, document_id: Optional[int]) -> List[StoredNode]:
        """All stored nodes that do not belong to *document_id* (all nodes when None)."""

    @abc.abstractmethod
    async def get_graph_for_document(self, document_id: int) -> Tuple[List[StoredNode], List[StoredEdge]]:
        """Nodes and edges stored for one document."""

    async def find_similar_nodes(
        self, query: str, threshold: float = 0.3, limit: int = 10
    ) -> List[Tuple[StoredNode, float]]:
        """Word-set Jaccard search over every stored node, best matches first."""
        scored = []
        for node in await self.get_nodes_excluding_document(None):
            if node.content.lower() == query.lower():
                score = 1.0
            else:
                score = jaccard_similarity(query, node.content)
            if score >= threshold:
                scored.append((node, round(score, 4)))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

class InMemoryGraphStore(GraphStore):
    """Process-local store, used by tests and when no database is configured."""

    def __init__(self) -> None:
        self._nodes: Dict[int, StoredNode] = {}
        self._edges: Dict[int, StoredEdge] = {}
        self._node_ids = itertools.count(1)
        self._edge_ids = itertools.count(1)

    async def save_node(self, document_id, node_key, node_type, content, importance, confidence, metadata=None) -> int:
        node_id = next(self._node_ids)
        self._nodes[node_id] = StoredNode(
            id=node_id, document_id=document_id, node_key=node_key, node_type=node_type,
            content=content, importance=importance, confidence=confidence,
            metadata=dict(metadata or {}),
        )
        return node_id

    async def save_edge(self, document_id, source_id, target_id, relationship, weight, confidence, metadata=None) -> int:
        if source_id not in self._nodes or target_id not in self._nodes:
            raise KeyError(f"edge endpoint missing: {source_id} -> {target_id}")
        edge_id = next(self._edge_ids)
        self._edges[edge_id] = StoredEdge(
            id=edge_id, document_id=document_id, source_id=source_id, target_id=target_id,
            relationship=relationship, weight=weight, confidence=confidence,
            metadata=dict(metadata or {}),
        )
        return edge_id

    async def clear_document(self, document_id: int) -> None:
        doomed = {nid for nid, n in self._nodes.items() if n.document_id == document_id}
        self._edges = {
            eid: e for eid, e in self._edges.items()
            if e.document_id != document_id and e.source_id not in doomed and e.target_id not in doomed
        }
        for node_id in doomed:
            del self._nodes[node_id]

    async def get_nodes_excluding_document(self, document_id: Optional[int]) -> List[StoredNode]:
        return [
            n for n in self._nodes.values()
            if document_id is None or n.document_id != document_id
        ]

    async def get_graph_for_document(self, document_id: int) -> Tuple[List[StoredNode], List[StoredEdge]]:
        nodes = [n for n in self._nodes.values() if n.document_id == document_id]
        edges = [e for e in self._edges.values() if e.document_id == document_id]
        return nodes, edges


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------

def _to_stored_node(row: GraphNode) -> StoredNode:
    return StoredNode(
        id=row.id,
        document_id=row.document_id,
        node_key=row.node_key,
        node_type=row.node_type,
        content=row.content,
        importance=row.importance,
        confidence=row.confidence,
        metadata=row.metadata_json or {},
    )


def _to_stored_edge(row: GraphEdge) -> StoredEdge:
    return StoredEdge(
        id=row.id,
        document_id=row.document_id,
        source_id=row.source_id,
        target_id=row.target_id,
        relationship=row.relationship_type,
        weight=row.weight,
        confidence=row.confidence,
        metadata=row.metadata_json or {},
    )


class SqlGraphStore(GraphStore):
    """Store backed by the ``graph_nodes`` / ``graph_edges`` tables."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def save_node(self, document_id, node_key, node_type, content, importance, confidence, metadata=None) -> int:
        row = GraphNode(
            document_id=document_id,
            node_key=node_key,
            node_type=node_type,
            content=content,
            importance=importance,
            confidence=confidence,
            metadata_json=metadata or None,
        )
        self.db.add(row)
        await self.db.flush()
        return row.id

    async def save_edge(self, document_id, source_id, target_id, relationship, weight, confidence, metadata=None) -> int:
        row = GraphEdge(
            document_id=document_id,
            source_id=source_id,
            target_id=target_id,
            relationship_type=relationship,
            weight=weight,
            confidence=confidence,
            metadata_json=metadata or None,
        )
        self.db.add(row)
        await self.db.flush()
        return row.id

    async def clear_document(self, document_id: int) -> None:
        node_ids = select(GraphNode.id).where(GraphNode.document_id == document_id)
        await self.db.execute(
            delete(GraphEdge).where(
                or_(
                    GraphEdge.document_id == document_id,
                    GraphEdge.source_id.in_(node_ids),
                    GraphEdge.target_id.in_(node_ids),
                )
            )
        )
        await self.db.execute(delete(GraphNode).where(GraphNode.document_id == document_id))
        await self.db.flush()

    async def get_nodes_excluding_document(self, document_id: Optional[int]) -> List[StoredNode]:
        stmt = select(GraphNode).order_by(GraphNode.id)
        if document_id is not None:
            stmt = stmt.where(or_(GraphNode.document_id.is_(None), GraphNode.document_id != document_id))
        result = await self.db.execute(stmt)
        return [_to_stored_node(row) for row in result.scalars().all()]

    async def get_graph_for_document(self, document_id: int) -> Tuple[List[StoredNode], List[StoredEdge]]:
        nodes = await self.db.execute(
            select(GraphNode).where(GraphNode.document_id == document_id).order_by(GraphNode.id)
        )
        edges = await self.db.execute(
            select(GraphEdge).where(GraphEdge.document_id == document_id).order_by(GraphEdge.id)
        )
        return (
            [_to_stored_node(row) for row in nodes.scalars().all()],
            [_to_stored_edge(row) for row in edges.scalars().all()],
        )
