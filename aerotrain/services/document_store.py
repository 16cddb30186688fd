"""
Document Store: stored documents, their extracted text and generated syllabi.

The text extraction service runs upstream; a stored document is its output
(plain text plus pre-extracted headings and tables).  Each save creates a
new version; readers always see the latest one.
"""
from __future__ import annotations

import abc
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from aerotrain.config import settings
from aerotrain.models.database_models import Document, DocumentVersion, GraphEdge, GraphNode, Syllabus
from aerotrain.services.errors import ExtractionFailure

logger = logging.getLogger(__name__)


@dataclass
class StoredDocument:
    id: int
    title: str
    text: str
    file_name: Optional[str] = None
    headings: List[Dict[str, Any]] = field(default_factory=list)
    tables: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    version_number: int = 1
    created_at: Optional[datetime] = None

    @property
    def page_count(self) -> Optional[int]:
        return self.metadata.get("page_count")

    def summary(self) -> Dict[str, Any]:
        """Fields of the document API response."""
        return {
            "id": self.id,
            "title": self.title,
            "file_name": self.file_name,
            "metadata": self.metadata,
            "version_number": self.version_number,
            "text_length": len(self.text),
            "heading_count": len(self.headings),
            "table_count": len(self.tables),
            "created_at": self.created_at,
        }


def _title_for(title: Optional[str], file_name: Optional[str], text: str) -> str:
    if title:
        return title
    if file_name:
        return file_name
    for line in text.splitlines():
        if line.strip():
            return line.strip()[:255]
    return "Untitled document"


class DocumentStore(abc.ABC):
    """Persistence interface for documents and generated syllabi."""

    @abc.abstractmethod
    async def get_document(self, document_id: int) -> Optional[StoredDocument]:
        """Latest version of the document, or None."""

    @abc.abstractmethod
    async def save_document(
        self,
        text: str,
        title: Optional[str] = None,
        file_name: Optional[str] = None,
        headings: Optional[List[Dict[str, Any]]] = None,
        tables: Optional[List[Dict[str, Any]]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredDocument:
        """Store an extraction result as a new document."""

    @abc.abstractmethod
    async def delete_document(self, document_id: int) -> bool:
        """Delete the document and everything stored for it.  False when unknown."""

    @abc.abstractmethod
    async def save_syllabus(self, document_id: int, syllabus: Dict[str, Any], generation_id: Optional[str] = None) -> int:
        """Persist a generated syllabus (as its JSON form) and return its id."""

    async def get_text(self, document_id: int) -> str:
        """
        Extracted text of the document.

        Raises:
            ExtractionFailure: the document is unknown or has no text.
        """
        document = await self.get_document(document_id)
        if document is None:
            raise ExtractionFailure(f"Document {document_id} not found", document_id=document_id)
        if not document.text or not document.text.strip():
            raise ExtractionFailure(f"Document {document_id} has no extracted text", document_id=document_id)
        return document.text

    @staticmethod
    def _check_length(text: str) -> None:
        if len(text) > settings.MAX_TEXT_LENGTH:
            raise ExtractionFailure(
                f"Document text exceeds {settings.MAX_TEXT_LENGTH} characters ({len(text)})"
            )


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

class InMemoryDocumentStore(DocumentStore):
    """Process-local store, used by tests."""

    def __init__(self) -> None:
        self._documents: Dict[int, StoredDocument] = {}
        self.syllabi: Dict[int, Dict[str, Any]] = {}
        self._document_ids = itertools.count(1)
        self._syllabus_ids = itertools.count(1)

    async def get_document(self, document_id: int) -> Optional[StoredDocument]:
        return self._documents.get(document_id)

    async def save_document(self, text, title=None, file_name=None, headings=None, tables=None, metadata=None) -> StoredDocument:
        self._check_length(text)
        document = StoredDocument(
            id=next(self._document_ids),
            title=_title_for(title, file_name, text),
            text=text,
            file_name=file_name,
            headings=list(headings or []),
            tables=list(tables or []),
            metadata=dict(metadata or {}),
            created_at=datetime.now(timezone.utc),
        )
        self._documents[document.id] = document
        return document

    async def delete_document(self, document_id: int) -> bool:
        if self._documents.pop(document_id, None) is None:
            return False
        self.syllabi = {sid: s for sid, s in self.syllabi.items() if s["document_id"] != document_id}
        return True

    async def save_syllabus(self, document_id, syllabus, generation_id=None) -> int:
        syllabus_id = next(self._syllabus_ids)
        self.syllabi[syllabus_id] = {
            "document_id": document_id,
            "generation_id": generation_id,
            "content": syllabus,
        }
        return syllabus_id


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------

class SqlDocumentStore(DocumentStore):
    """Store backed by the ``documents`` / ``document_versions`` / ``syllabi`` tables."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_document(self, document_id: int) -> Optional[StoredDocument]:
        result = await self.db.execute(
            select(Document).options(selectinload(Document.versions)).where(Document.id == document_id)
        )
        document = result.scalar_one_or_none()
        if document is None:
            return None
        latest = document.versions[-1] if document.versions else None
        return StoredDocument(
            id=document.id,
            title=document.title,
            text=(latest.content_text if latest else "") or "",
            file_name=document.file_name,
            headings=(latest.headings_json if latest else None) or [],
            tables=(latest.tables_json if latest else None) or [],
            metadata=document.metadata_json or {},
            version_number=latest.version_number if latest else 0,
            created_at=document.created_at,
        )

    async def save_document(self, text, title=None, file_name=None, headings=None, tables=None, metadata=None) -> StoredDocument:
        self._check_length(text)
        document = Document(
            title=_title_for(title, file_name, text),
            file_name=file_name,
            metadata_json=metadata or {},
        )
        self.db.add(document)
        await self.db.flush()  # populate document.id before the version row

        self.db.add(DocumentVersion(
            document_id=document.id,
            version_number=1,
            content_text=text,
            headings_json=list(headings or []),
            tables_json=list(tables or []),
        ))
        await self.db.flush()
        await self.db.refresh(document)

        logger.info("Document %r stored as id=%d (%d chars)", document.title, document.id, len(text))
        return StoredDocument(
            id=document.id,
            title=document.title,
            text=text,
            file_name=file_name,
            headings=list(headings or []),
            tables=list(tables or []),
            metadata=document.metadata_json or {},
            created_at=document.created_at,
        )

    async def delete_document(self, document_id: int) -> bool:
        document = await self.db.get(Document, document_id)
        if document is None:
            return False
        # graph rows reference the document without an ORM relationship
        await self.db.execute(delete(GraphEdge).where(GraphEdge.document_id == document_id))
        await self.db.execute(delete(GraphNode).where(GraphNode.document_id == document_id))
        await self.db.delete(document)
        await self.db.flush()
        logger.info("Document id=%d deleted", document_id)
        return True

    async def save_syllabus(self, document_id, syllabus, generation_id=None) -> int:
        row = Syllabus(
            document_id=document_id,
            generation_id=generation_id,
            name=syllabus.get("name", "Generated syllabus")[:255],
            program_type=syllabus.get("program_type"),
            aircraft_type=syllabus.get("aircraft_type"),
            total_duration=syllabus.get("total_duration", 0),
            confidence_score=syllabus.get("confidence_score"),
            content_json=syllabus,
        )
        self.db.add(row)
        await self.db.flush()
        logger.info("Syllabus id=%d stored for document id=%d", row.id, document_id)
        return row.id
