"""
Pytest configuration and shared fixtures for backend tests.
"""

import os
import sys
from pathlib import Path

# Settings are read once at import time; configure them before any app import.
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("THRIVECART_SECRET", "test-thrivecart-secret")
os.environ.setdefault("MEMBERPRESS_BASE_URL", "https://members.test/wp-json/mp/v1")
os.environ.setdefault("MEMBERPRESS_API_KEY", "test-memberpress-key")
os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")
os.environ.setdefault("RESEND_API_KEY", "")

# Add backend and tests directories to path for imports
tests_dir = Path(__file__).parent
backend_dir = tests_dir.parent
sys.path.insert(0, str(backend_dir))
sys.path.insert(0, str(tests_dir))

from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import after path is set
from adapters.memberpress import MemberPressAdapter
from api.dependencies import get_sync_service
from infrastructure.database.connection import get_db
from infrastructure.database.models import Base, SyncOption, SyncOptionKey
from mock_memberpress import API_KEY, BASE_URL, MockMemberPressServer
from services.config_store import SyncConfig
from services.sync_service import ThriveCartSyncService

THRIVECART_SECRET = os.environ["THRIVECART_SECRET"]
ADMIN_API_TOKEN = os.environ["ADMIN_API_TOKEN"]

# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session
        await session.rollback()


# ============================================================================
# MemberPress Fixtures
# ============================================================================

@pytest.fixture
def memberpress_server() -> MockMemberPressServer:
    """In-memory MemberPress REST API."""
    return MockMemberPressServer()


@pytest.fixture
async def memberpress(memberpress_server: MockMemberPressServer) -> AsyncGenerator[MemberPressAdapter, None]:
    """MemberPress adapter wired to the mock server."""
    client = httpx.AsyncClient(transport=memberpress_server.get_mock_transport())
    adapter = MemberPressAdapter(base_url=BASE_URL, api_key=API_KEY, client=client)
    yield adapter
    await client.aclose()


@pytest.fixture
def notifier() -> AsyncMock:
    """Notification collaborator that records calls."""
    mock = AsyncMock()
    mock.send_sync_notification.return_value = True
    return mock


@pytest.fixture
def sync_service(memberpress: MemberPressAdapter, notifier: AsyncMock) -> ThriveCartSyncService:
    return ThriveCartSyncService(memberpress=memberpress, notifier=notifier)


@pytest.fixture
def mapping_table() -> list[dict[str, Any]]:
    """Default mapping table: product 42 → membership 100."""
    return [
        {
            "tc_product_ids": ["42"],
            "membership_id": 100,
            "payment_type": "recurring_monthly",
            "label": "Pro Monthly",
            "active": "1",
        }
    ]


@pytest.fixture
def sync_config(mapping_table: list[dict[str, Any]]) -> SyncConfig:
    return SyncConfig(
        thrivecart_secret=THRIVECART_SECRET,
        admin_email="admin@example.com",
        log_days=30,
        mappings=mapping_table,
    )


@pytest.fixture
async def stored_mappings(db_session: AsyncSession, mapping_table: list[dict[str, Any]]):
    """Persist the mapping table (already in the current format)."""
    db_session.add(SyncOption(key=SyncOptionKey.MAPPINGS, value=mapping_table))
    db_session.add(SyncOption(key=SyncOptionKey.MAPPINGS_MIGRATED_V2, value=True))
    db_session.add(SyncOption(key=SyncOptionKey.ADMIN_EMAIL, value="admin@example.com"))
    await db_session.commit()
    return mapping_table


@pytest.fixture
def admin_headers() -> dict:
    """Authorization headers for the admin endpoints."""
    return {"Authorization": f"Bearer {ADMIN_API_TOKEN}"}


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    sync_service: ThriveCartSyncService,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    # Import app here to avoid circular imports
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_service] = lambda: sync_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
