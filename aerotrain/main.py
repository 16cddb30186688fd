"""
Main FastAPI application for the AeroTrain backend.
Handles CORS, request logging middleware, lifespan events, and router registration.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aerotrain.config import settings
from aerotrain.database import AsyncSessionLocal, close_db, init_db
from aerotrain.routers import documents, health, knowledge_graph, syllabus
from aerotrain.services.generation_manager import generation_manager
from aerotrain.services.regulatory import SqlRegulatoryCatalog

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_regulatory_catalog() -> None:
    """Log which authorities the compliance mapper can match against.  Never raises."""
    try:
        async with AsyncSessionLocal() as session:
            authorities = await SqlRegulatoryCatalog(session).list_authorities()
    except Exception as exc:
        logger.warning("Regulatory catalog unavailable: %s", exc)
        return
    if authorities:
        logger.info("Regulatory catalog covers: %s", ", ".join(authorities))
    else:
        logger.warning("Regulatory catalog is empty; compliance mapping will report nothing met")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting AeroTrain backend ...")
    logger.info("=" * 60)

    # Database tables and the regulatory catalog seed (required; raises on failure)
    try:
        await init_db()
        logger.info("Database connection OK")
    except Exception as exc:
        logger.error("Database connection failed: %s", exc)
        raise

    await _check_regulatory_catalog()

    logger.info("  AeroTrain backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("  Health     : http://%s:%d/api/health", settings.HOST, settings.PORT)

    yield  # server is running

    logger.info("Shutting down AeroTrain backend ...")
    running = generation_manager.active_count()
    if running:
        # Jobs live in memory only; their progress is lost on exit
        logger.warning("%d syllabus generation(s) still running at shutdown", running)
    await close_db()
    logger.info("Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AeroTrain API",
    description=(
        "**AeroTrain**: aviation training document analysis and syllabus generation.\n\n"
        "Store extracted training documents, parse their structure, build "
        "knowledge graphs and generate regulation-aware syllabi.\n\n"
        "Key endpoints:\n"
        "- `POST /api/documents/` store an extracted document\n"
        "- `POST /api/documents/{id}/analyze` run the full analysis\n"
        "- `POST /api/knowledge-graph/documents/{id}/extract` extract a knowledge graph\n"
        "- `POST /api/syllabus/generate` start syllabus generation\n"
        "- `GET  /api/syllabus/generations/{id}/progress` poll a generation\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Progress polling is too chatty to log
    if request.url.path not in ("/api/health", "/api/health/", "/") and not request.url.path.endswith("/progress"):
        logger.info(
            "%s %s -> %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "path": str(request.url.path),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,          prefix="/api/health",          tags=["Health"])
app.include_router(documents.router,       prefix="/api/documents",       tags=["Documents"])
app.include_router(knowledge_graph.router, prefix="/api/knowledge-graph", tags=["Knowledge Graph"])
app.include_router(syllabus.router,        prefix="/api/syllabus",        tags=["Syllabus"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root, returns basic service info."""
    return {
        "name": "AeroTrain API",
        "version": "0.1.0",
        "description": "Aviation Training Syllabus Backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "documents": "/api/documents",
            "knowledge_graph": "/api/knowledge-graph",
            "syllabus": "/api/syllabus",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "aerotrain.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
