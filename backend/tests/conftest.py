"""Pytest configuration and fixtures for TrayTrack tests.

Every test gets a fresh in-memory SQLite database seeded with a three
station line:

    STA001 (seq 1) ← M1     STA002 (seq 2) ← M2     STA003 (seq 3) ← M3

plus an inactive machine M9, an unassigned machine M0 and parts P1–P4.
"""

import os

# Must be set before traytrack.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret")

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from traytrack.auth.jwt import create_access_token
from traytrack.auth.permissions import resolve_permissions
from traytrack.database import Base, atomic, get_db
from traytrack.main import app
from traytrack.models import Machine, Part, Station
from traytrack.services import tray_documents


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory, seed) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory, seed) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with get_db bound to the test database (one session per request)."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest_asyncio.fixture
async def seed(session_factory):
    """Master data shared by every test."""
    async with session_factory() as session:
        session.add_all([
            Part(id="part-1", number="P1", name="Blank"),
            Part(id="part-2", number="P2", name="Machined"),
            Part(id="part-3", number="P3", name="Left half"),
            Part(id="part-4", number="P4", name="Right half"),
            Station(id="STA001", code="CUT", name="Cutting", sequence_position=1),
            Station(id="STA002", code="MILL", name="Milling", sequence_position=2),
            Station(id="STA003", code="PACK", name="Packing", sequence_position=3),
        ])
        await session.flush()
        session.add_all([
            Machine(id="M1", name="Saw", assigned_station_id="STA001"),
            Machine(id="M2", name="Mill", assigned_station_id="STA002"),
            Machine(id="M3", name="Packer", assigned_station_id="STA003"),
            Machine(id="M9", name="Retired saw", assigned_station_id="STA001", active=False),
            Machine(id="M0", name="Spare", assigned_station_id=None),
        ])
        await session.commit()


@pytest_asyncio.fixture
async def tray(db_session: AsyncSession):
    """A fresh tray document of part P1 created at STA001."""
    async with atomic(db_session):
        document, _root = await tray_documents.create_tray_document(
            db_session, part_number="P1", machine_id="M1", actor_id="admin-1"
        )
    return document


def make_token(role: str, operator_id: str, station_id: str | None = None) -> str:
    return create_access_token(
        operator_id=operator_id,
        role=role,
        permissions=resolve_permissions(role),
        station_id=station_id,
        name=f"{role} {operator_id}",
    )


def auth_headers_for(role: str, station_id: str | None = None, client_type: str = "HH") -> dict:
    return {
        "Authorization": f"Bearer {make_token(role, f'{role}-1', station_id)}",
        "X-Client-Type": client_type,
    }


@pytest.fixture
def admin_headers() -> dict:
    return auth_headers_for("admin", client_type="PC")


@pytest.fixture
def manager_headers() -> dict:
    return auth_headers_for("manager", "STA001")


@pytest.fixture
def operator_headers():
    """Factory: headers for an operator bound to ``station_id``."""
    def _headers(station_id: str, client_type: str = "HH") -> dict:
        return auth_headers_for("operator", station_id, client_type)
    return _headers


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "integration: Integration tests")
