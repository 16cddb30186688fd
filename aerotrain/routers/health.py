"""
Health check endpoint.

Reports database connectivity, the size of the regulatory catalog and the
number of syllabus generations currently running.
"""
from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timezone
import logging

from aerotrain.database import get_db
from aerotrain.models.database_models import RegulatoryRequirementRecord
from aerotrain.models.schemas import HealthCheckResponse
from aerotrain.services.generation_manager import generation_manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Service status.

    ``degraded`` when the database is unreachable or the regulatory catalog
    is empty (compliance mapping would then match nothing).
    """
    db_status = "ok"
    requirement_count = 0
    try:
        requirement_count = await db.scalar(select(func.count(RegulatoryRequirementRecord.id))) or 0
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_status = "error"

    healthy = db_status == "ok" and requirement_count > 0
    return HealthCheckResponse(
        status="healthy" if healthy else "degraded",
        database=db_status,
        regulatory_requirements=requirement_count,
        active_generations=generation_manager.active_count(),
        timestamp=datetime.now(timezone.utc),
    )
