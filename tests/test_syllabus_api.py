"""Tests for syllabus generation, progress polling and catalog endpoints."""
import asyncio

import pytest
from httpx import AsyncClient

from aerotrain.services.generation_manager import generation_manager
from tests.conftest import create_document


async def _start(client: AsyncClient, doc_id: int, options=None) -> str:
    resp = await client.post(
        "/api/syllabus/generate",
        json={"document_id": doc_id, "options": options or {}},
    )
    assert resp.status_code == 202, resp.text
    data = resp.json()
    assert data["document_id"] == doc_id
    assert data["status"] in ("pending", "in_progress", "completed")
    return data["generation_id"]


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_and_fetch_result(client: AsyncClient):
    doc_id = await create_document(client)
    generation_id = await _start(client, doc_id)
    await generation_manager.wait(generation_id)

    resp = await client.get(f"/api/syllabus/generations/{generation_id}/progress")
    assert resp.status_code == 200
    progress = resp.json()
    assert progress["status"] == "completed"
    assert progress["stage"] == "completed"
    assert progress["percent"] == 100
    assert progress["errors"] == []

    resp = await client.get(f"/api/syllabus/generations/{generation_id}/result")
    assert resp.status_code == 200
    syllabus = resp.json()
    assert syllabus["program_type"] == "type_rating"
    assert syllabus["aircraft_type"] == "A320"
    assert len(syllabus["modules"]) == 3
    assert [m["type"] for m in syllabus["modules"]] == ["ground", "simulator", "aircraft"]
    assert syllabus["lessons"]
    assert syllabus["regulatory_compliance"]["authority"] == "easa"
    met = [r["code"] for r in syllabus["regulatory_compliance"]["requirements_met"]]
    assert "EASA FCL.740" in met
    assert syllabus["knowledge_graph"] is None


@pytest.mark.asyncio
async def test_generate_with_options(client: AsyncClient):
    doc_id = await create_document(client)
    generation_id = await _start(client, doc_id, {
        "name": "Line Crew Course",
        "regulatory_authority": "faa",
        "include_knowledge_graph": True,
    })
    await generation_manager.wait(generation_id)

    resp = await client.get(f"/api/syllabus/generations/{generation_id}/result")
    assert resp.status_code == 200
    syllabus = resp.json()
    assert syllabus["name"] == "Line Crew Course"
    assert syllabus["regulatory_compliance"]["authority"] == "faa"
    assert syllabus["knowledge_graph"]["nodes"]


@pytest.mark.asyncio
async def test_generate_invalid_options(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.post(
        "/api/syllabus/generate",
        json={"document_id": doc_id, "options": {"min_modules": 5, "max_modules": 2}},
    )
    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert detail["errors"]
    assert "message" in detail


@pytest.mark.asyncio
async def test_generate_unknown_authority(client: AsyncClient):
    doc_id = await create_document(client)
    resp = await client.post(
        "/api/syllabus/generate",
        json={"document_id": doc_id, "options": {"regulatory_authority": "mars"}},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_generate_document_not_found(client: AsyncClient):
    resp = await client.post("/api/syllabus/generate", json={"document_id": 99999})
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Progress and result states
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unknown_generation(client: AsyncClient):
    resp = await client.get("/api/syllabus/generations/does-not-exist/progress")
    assert resp.status_code == 404
    resp = await client.get("/api/syllabus/generations/does-not-exist/result")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_result_while_running_is_conflict(client: AsyncClient):
    release = asyncio.Event()

    async def runner(job):
        await release.wait()
        return {}

    job = generation_manager.start(1, {}, runner)
    try:
        resp = await client.get(f"/api/syllabus/generations/{job.generation_id}/result")
        assert resp.status_code == 409

        resp = await client.get(f"/api/syllabus/generations/{job.generation_id}/progress")
        assert resp.status_code == 200
        assert resp.json()["status"] in ("pending", "in_progress")
    finally:
        release.set()
        await generation_manager.wait(job.generation_id)


@pytest.mark.asyncio
async def test_result_of_failed_job(client: AsyncClient):
    async def runner(job):
        raise RuntimeError("document vanished")

    job = generation_manager.start(1, {}, runner)
    await generation_manager.wait(job.generation_id)

    resp = await client.get(f"/api/syllabus/generations/{job.generation_id}/result")
    assert resp.status_code == 422
    assert "document vanished" in resp.json()["detail"]

    resp = await client.get(f"/api/syllabus/generations/{job.generation_id}/progress")
    progress = resp.json()
    assert progress["status"] == "failed"
    assert progress["errors"] == ["Failed: document vanished"]


# ---------------------------------------------------------------------------
# Templates and catalog
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_templates(client: AsyncClient):
    resp = await client.get("/api/syllabus/templates")
    assert resp.status_code == 200
    templates = {t["id"]: t for t in resp.json()}
    assert {"type_rating", "joc_mcc", "recurrent", "initial", "custom"} <= set(templates)
    assert templates["type_rating"]["modules"]


@pytest.mark.asyncio
async def test_regulatory_requirements(client: AsyncClient):
    resp = await client.get("/api/syllabus/regulatory/easa")
    assert resp.status_code == 200
    data = resp.json()
    assert data["authority"] == "easa"
    assert data["total"] == 3
    assert [r["code"] for r in data["requirements"]] == [
        "EASA FCL.725",
        "EASA FCL.735.A",
        "EASA FCL.740",
    ]


@pytest.mark.asyncio
async def test_regulatory_requirements_empty_authority(client: AsyncClient):
    resp = await client.get("/api/syllabus/regulatory/casa")
    assert resp.status_code == 200
    assert resp.json()["total"] == 0


@pytest.mark.asyncio
async def test_regulatory_requirements_unknown_authority(client: AsyncClient):
    resp = await client.get("/api/syllabus/regulatory/mars")
    assert resp.status_code == 422
