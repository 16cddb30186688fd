"""
Shared fixtures for AeroTrain backend tests.

API tests run against a throwaway SQLite database (aiosqlite) in a temp
directory.  Each test function gets freshly created tables, a seeded
regulatory catalog and its own session; tables are dropped afterwards.
"""
from __future__ import annotations

import os
import tempfile
from typing import AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

# Override DATABASE_URL *before* any aerotrain module is imported, so that
# settings.DATABASE_URL and the global engine point at the test DB.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="aerotrain-tests-")
TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'aerotrain_test.db')}",
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from aerotrain.database import AsyncSessionLocal, Base, engine, get_db, init_db  # noqa: E402
from aerotrain.main import app  # noqa: E402


# ---------------------------------------------------------------------------
# Sample document
# ---------------------------------------------------------------------------

SAMPLE_TEXT = """A320 Type Rating Training Course

This A320 type rating course is conducted in accordance with EASA Part-FCL and FCL.725.

Module 1: Aircraft Systems Ground Course
The trainee will be able to describe the hydraulic system of the A320.
The trainee must understand the electrical system and the fuel system.
Knowledge of the flight management system is required before the simulator phase.

Lesson 1.1 Hydraulic System Briefing
The trainee should explain the green, blue and yellow hydraulic circuits.
Hydraulic pressure indications are correctly interpreted.

Module 2: Full Flight Simulator Training
The trainee shall demonstrate ability to perform normal procedures in the simulator.
The trainee will execute engine failure procedures after takeoff.
Engine failures are handled safely and accurately.

Lesson 2.1 Simulator Session Normal Procedures
Crew must perform the before takeoff checklist and the approach briefing in the simulator.

Module 3: Base Training
The trainee will conduct six takeoffs and landings in the aircraft.
Landings are flown accurately within the touchdown zone.

Reference: FCL.740 revalidation requirements apply to this type rating.
"""

SAMPLE_HEADINGS: List[Dict[str, object]] = [
    {"level": 1, "text": "A320 Type Rating Training Course", "page": 1},
    {"level": 2, "text": "Module 1: Aircraft Systems Ground Course", "page": 1},
    {"level": 3, "text": "Lesson 1.1 Hydraulic System Briefing", "page": 2},
    {"level": 2, "text": "Module 2: Full Flight Simulator Training", "page": 2},
    {"level": 3, "text": "Lesson 2.1 Simulator Session Normal Procedures", "page": 3},
    {"level": 2, "text": "Module 3: Base Training", "page": 3},
]


def document_payload(
    text: str = SAMPLE_TEXT,
    headings: Optional[List[Dict[str, object]]] = None,
    title: str = "A320 Type Rating Training Course",
) -> Dict[str, object]:
    return {
        "title": title,
        "file_name": "a320_tr.pdf",
        "text": text,
        "headings": SAMPLE_HEADINGS if headings is None else headings,
        "tables": [{"rows": [["Phase", "Hours"], ["Ground", "40"], ["Simulator", "32"]], "page": 1}],
        "metadata": {"page_count": 4, "format": "pdf"},
    }


@pytest.fixture
def sample_text() -> str:
    return SAMPLE_TEXT


@pytest.fixture
def sample_headings() -> List[Dict[str, object]]:
    return [dict(h) for h in SAMPLE_HEADINGS]


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a DB session for each test.  Tables are created (and the
    regulatory catalog seeded) before the test and dropped after it.
    """
    await init_db()

    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB dependency
    overridden to use the per-test session.
    """

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def create_document(client: AsyncClient, **kwargs) -> int:
    resp = await client.post("/api/documents/", json=document_payload(**kwargs))
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]
