"""
Syllabus generation endpoints.

Route summary
-------------
POST /generate                        start a background generation job.
GET  /generations/{id}/progress       poll the job's stage and percent.
GET  /generations/{id}/result         the generated syllabus once completed.
GET  /templates                       built-in syllabus templates.
GET  /regulatory/{authority}          the authority's catalog requirements.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from aerotrain.database import get_db
from aerotrain.models.schemas import (
    AuthorityCode,
    GeneratedSyllabusResponse,
    GenerationProgressResponse,
    GenerationStartRequest,
    RegulatoryRequirementsResponse,
    TemplateResponse,
)
from aerotrain.services.document_store import SqlDocumentStore
from aerotrain.services.errors import JobNotFound, JobNotReady, ValidationFailure
from aerotrain.services.generation_manager import JobStatus, generation_manager
from aerotrain.services.pipeline import run_generation
from aerotrain.services.regulatory import SqlRegulatoryCatalog
from aerotrain.services.syllabus_generator import validate_generation_options
from aerotrain.services.syllabus_templates import list_templates

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /generate
# ---------------------------------------------------------------------------

@router.post(
    "/generate",
    response_model=GenerationProgressResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start syllabus generation for a document",
)
async def start_generation(
    request: GenerationStartRequest,
    db: AsyncSession = Depends(get_db),
) -> GenerationProgressResponse:
    """
    Validate the options, then run generation as a background task.

    Returns 202 with the job's ``generation_id``; poll
    ``/generations/{id}/progress`` until the status is ``completed`` or
    ``failed``.
    """
    try:
        options = validate_generation_options(request.options)
    except ValidationFailure as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "errors": exc.errors},
        )

    if await SqlDocumentStore(db).get_document(request.document_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document {request.document_id} not found.",
        )

    job = generation_manager.start(
        request.document_id,
        options.model_dump(mode="json", exclude_unset=True),
        run_generation,
    )
    return GenerationProgressResponse.model_validate(job.to_progress())


# ---------------------------------------------------------------------------
# GET /generations/{generation_id}/...
# ---------------------------------------------------------------------------

@router.get("/generations/{generation_id}/progress", response_model=GenerationProgressResponse)
async def get_generation_progress(generation_id: str) -> GenerationProgressResponse:
    try:
        progress = generation_manager.get_progress(generation_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return GenerationProgressResponse.model_validate(progress)


@router.get("/generations/{generation_id}/result", response_model=GeneratedSyllabusResponse)
async def get_generation_result(generation_id: str) -> GeneratedSyllabusResponse:
    """
    The generated syllabus.

    404 for an unknown (or expired) id, 409 while the job is still running,
    422 when the job failed.
    """
    try:
        result = generation_manager.get_result(generation_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except JobNotReady as exc:
        code = (
            status.HTTP_422_UNPROCESSABLE_ENTITY
            if exc.status == JobStatus.FAILED.value
            else status.HTTP_409_CONFLICT
        )
        raise HTTPException(status_code=code, detail=str(exc))
    return GeneratedSyllabusResponse.model_validate(result)


# ---------------------------------------------------------------------------
# Templates and regulatory catalog
# ---------------------------------------------------------------------------

@router.get("/templates", response_model=List[TemplateResponse])
async def get_templates() -> List[TemplateResponse]:
    return [TemplateResponse.model_validate(t.to_dict()) for t in list_templates()]


@router.get("/regulatory/{authority}", response_model=RegulatoryRequirementsResponse)
async def get_regulatory_requirements(
    authority: AuthorityCode,
    db: AsyncSession = Depends(get_db),
) -> RegulatoryRequirementsResponse:
    requirements = await SqlRegulatoryCatalog(db).get_requirements(authority.value)
    return RegulatoryRequirementsResponse.model_validate({
        "authority": authority.value,
        "requirements": [r.to_dict() for r in requirements],
        "total": len(requirements),
    })
