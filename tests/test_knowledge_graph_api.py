"""Tests for the knowledge graph endpoints."""
import pytest
from httpx import AsyncClient

from tests.conftest import SAMPLE_TEXT, create_document


@pytest.mark.asyncio
async def test_extract_and_save(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.post(f"/api/knowledge-graph/documents/{doc_id}/extract", json={})
    assert resp.status_code == 200
    data = resp.json()

    assert data["document_id"] == doc_id
    assert data["nodes"]
    node_ids = {n["id"] for n in data["nodes"]}
    assert f"document_{doc_id}" in node_ids
    for edge in data["edges"]:
        assert edge["source"] in node_ids
        assert edge["target"] in node_ids

    saved = data["saved"]
    assert saved["nodes_saved"] == len(data["nodes"])
    assert saved["edges_saved"] + saved["edges_skipped"] == len(data["edges"])
    assert data["statistics"]["node_count"] == len(data["nodes"])


@pytest.mark.asyncio
async def test_extract_without_saving(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.post(
        f"/api/knowledge-graph/documents/{doc_id}/extract",
        json={"save": False},
    )
    assert resp.status_code == 200
    assert resp.json()["saved"] is None

    resp = await client.get(f"/api/knowledge-graph/documents/{doc_id}")
    assert resp.status_code == 200
    assert resp.json()["nodes"] == []


@pytest.mark.asyncio
async def test_extract_respects_node_cap(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.post(
        f"/api/knowledge-graph/documents/{doc_id}/extract",
        json={"max_nodes": 3, "save": False},
    )
    assert resp.status_code == 200
    assert len(resp.json()["nodes"]) <= 3


@pytest.mark.asyncio
async def test_extract_type_filter(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.post(
        f"/api/knowledge-graph/documents/{doc_id}/extract",
        json={"filter_node_types": ["concept"], "save": False},
    )
    assert resp.status_code == 200
    types = {n["type"] for n in resp.json()["nodes"]}
    assert types <= {"concept", "document"}


@pytest.mark.asyncio
async def test_extract_unknown_node_type(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.post(
        f"/api/knowledge-graph/documents/{doc_id}/extract",
        json={"filter_node_types": ["spaceship"]},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_extract_document_not_found(client: AsyncClient):
    resp = await client.post("/api/knowledge-graph/documents/99999/extract", json={})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_stored_graph_matches_extraction(client: AsyncClient):
    doc_id = await create_document(client)
    extracted = (
        await client.post(f"/api/knowledge-graph/documents/{doc_id}/extract", json={})
    ).json()

    resp = await client.get(f"/api/knowledge-graph/documents/{doc_id}")
    assert resp.status_code == 200
    stored = resp.json()
    assert stored["document_id"] == doc_id
    assert {n["node_key"] for n in stored["nodes"]} == {n["id"] for n in extracted["nodes"]}
    assert len(stored["edges"]) == extracted["saved"]["edges_saved"]


@pytest.mark.asyncio
async def test_save_replaces_previous_graph(client: AsyncClient):
    doc_id = await create_document(client)
    await client.post(f"/api/knowledge-graph/documents/{doc_id}/extract", json={})
    await client.post(
        f"/api/knowledge-graph/documents/{doc_id}/extract",
        json={"max_nodes": 2},
    )
    resp = await client.get(f"/api/knowledge-graph/documents/{doc_id}")
    assert len(resp.json()["nodes"]) <= 2


@pytest.mark.asyncio
async def test_stored_graph_document_not_found(client: AsyncClient):
    resp = await client.get("/api/knowledge-graph/documents/99999")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_cross_document_links(client: AsyncClient):
    first = await create_document(client)
    await client.post(f"/api/knowledge-graph/documents/{first}/extract", json={})

    second = await create_document(client, title="A320 Type Rating Copy")
    resp = await client.post(
        f"/api/knowledge-graph/documents/{second}/extract",
        json={"link_to_existing": True, "save": False},
    )
    assert resp.status_code == 200
    links = resp.json()["cross_document_links"]
    assert links
    assert all(link["target_document_id"] == first for link in links)
    assert all(link["target"] == f"db_{link['target_node_id']}" for link in links)


# ---------------------------------------------------------------------------
# Similarity search
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_similar_nodes(client: AsyncClient):
    doc_id = await create_document(client)
    await client.post(f"/api/knowledge-graph/documents/{doc_id}/extract", json={})

    query = SAMPLE_TEXT.strip()[:100]
    resp = await client.get("/api/knowledge-graph/similar", params={"q": query})
    assert resp.status_code == 200
    data = resp.json()
    assert data["query"] == query
    assert data["total"] == len(data["results"]) >= 1
    best = data["results"][0]
    assert best["node"]["node_type"] == "document"
    assert best["similarity"] == 1.0
    scores = [r["similarity"] for r in data["results"]]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_similar_nodes_requires_query(client: AsyncClient):
    resp = await client.get("/api/knowledge-graph/similar")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_similar_nodes_no_match(client: AsyncClient):
    resp = await client.get("/api/knowledge-graph/similar", params={"q": "zzzz qqqq"})
    assert resp.status_code == 200
    assert resp.json()["total"] == 0
