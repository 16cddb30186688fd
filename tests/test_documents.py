"""Tests for storing, reading, deleting and analysing documents."""
import pytest
from httpx import AsyncClient

from aerotrain.config import settings
from tests.conftest import SAMPLE_TEXT, create_document, document_payload


# ---------------------------------------------------------------------------
# Create / read / delete
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_document(client: AsyncClient):
    resp = await client.post("/api/documents/", json=document_payload())
    assert resp.status_code == 201
    data = resp.json()
    assert data["title"] == "A320 Type Rating Training Course"
    assert data["file_name"] == "a320_tr.pdf"
    assert data["text_length"] == len(SAMPLE_TEXT)
    assert data["heading_count"] == 6
    assert data["table_count"] == 1
    assert data["metadata"]["format"] == "pdf"
    assert data["version_number"] == 1


@pytest.mark.asyncio
async def test_create_document_title_falls_back_to_file_name(client: AsyncClient):
    payload = document_payload()
    payload["title"] = None
    resp = await client.post("/api/documents/", json=payload)
    assert resp.status_code == 201
    assert resp.json()["title"] == "a320_tr.pdf"


@pytest.mark.asyncio
async def test_create_document_invalid_heading(client: AsyncClient):
    """Heading levels start at 1."""
    resp = await client.post(
        "/api/documents/",
        json=document_payload(headings=[{"level": 0, "text": "Intro"}]),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_document_too_large(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "MAX_TEXT_LENGTH", 10)
    resp = await client.post("/api/documents/", json=document_payload())
    assert resp.status_code == 413
    assert "exceeds" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_get_document(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.get(f"/api/documents/{doc_id}")
    assert resp.status_code == 200
    assert resp.json()["id"] == doc_id


@pytest.mark.asyncio
async def test_get_document_not_found(client: AsyncClient):
    resp = await client.get("/api/documents/99999")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Document 99999 not found."


@pytest.mark.asyncio
async def test_delete_document(client: AsyncClient):
    doc_id = await create_document(client)

    resp = await client.delete(f"/api/documents/{doc_id}")
    assert resp.status_code == 204

    resp = await client.get(f"/api/documents/{doc_id}")
    assert resp.status_code == 404

    resp = await client.delete(f"/api/documents/{doc_id}")
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_parse_structure(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.post(f"/api/documents/{doc_id}/structure")
    assert resp.status_code == 200
    data = resp.json()
    assert data["document_id"] == doc_id
    assert data["title"] == "A320 Type Rating Training Course"
    assert 0.0 <= data["confidence"] <= 1.0
    assert data["metadata"]["section_count"] == 6
    assert data["metadata"]["table_count"] == 1

    hierarchy = data["hierarchy"]
    assert hierarchy["type"] == "document"
    top = hierarchy["children"][0]
    assert top["type"] == "section"
    assert top["level"] == 1
    assert top["children"][0]["type"] == "heading"


@pytest.mark.asyncio
async def test_parse_structure_not_found(client: AsyncClient):
    resp = await client.post("/api/documents/99999/structure")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_parse_structure_without_headings(client: AsyncClient):
    """Plain text still yields a hierarchy of paragraphs."""
    doc_id = await create_document(client, text="Alpha paragraph.\n\nBeta paragraph.", headings=[])
    resp = await client.post(f"/api/documents/{doc_id}/structure")
    assert resp.status_code == 200
    assert resp.json()["metadata"]["paragraph_count"] >= 2


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_analyze_document(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.post(f"/api/documents/{doc_id}/analyze", json={})
    assert resp.status_code == 200
    data = resp.json()
    assert data["document_id"] == doc_id
    for stage in ("structure", "classification", "context", "knowledge_graph", "syllabus"):
        assert data[stage] is not None, stage
        assert data[f"{stage}_error"] is None, data[f"{stage}_error"]

    assert data["syllabus"]["aircraft_type"] == "A320"
    assert len(data["syllabus"]["modules"]) == 3
    assert data["knowledge_graph"]["nodes"]


@pytest.mark.asyncio
async def test_analyze_document_without_optional_stages(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.post(
        f"/api/documents/{doc_id}/analyze",
        json={"include_knowledge_graph": False, "include_syllabus": False},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["structure"] is not None
    assert data["knowledge_graph"] is None
    assert data["syllabus"] is None


@pytest.mark.asyncio
async def test_analyze_document_saves_graph(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.post(
        f"/api/documents/{doc_id}/analyze",
        json={"include_syllabus": False, "save_knowledge_graph": True},
    )
    assert resp.status_code == 200

    resp = await client.get(f"/api/knowledge-graph/documents/{doc_id}")
    assert resp.status_code == 200
    assert len(resp.json()["nodes"]) > 0


@pytest.mark.asyncio
async def test_analyze_document_invalid_options(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.post(
        f"/api/documents/{doc_id}/analyze",
        json={"options": {"min_modules": 0}},
    )
    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert "message" in detail
    assert detail["errors"]


@pytest.mark.asyncio
async def test_analyze_document_not_found(client: AsyncClient):
    resp = await client.post("/api/documents/99999/analyze", json={})
    assert resp.status_code == 404
