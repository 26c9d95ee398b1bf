"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks all external services.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CRM_SYNC_ENABLED", "false")

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB, UUID

from jobflow.database import Base
from jobflow.models import Company
from jobflow.services.sync_dispatcher import SyncDispatcher


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# UUID would get NUMERIC affinity in SQLite and mangle all-digit hex ids
@compiles(UUID, "sqlite")
def _compile_uuid_sqlite(type_, compiler, **kw):
    return "CHAR(32)"


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def mock_redis():
    """Mock for async Redis — prevents real Redis calls in tests."""
    with patch("jobflow.utils.redis_client.get_redis", new_callable=AsyncMock) as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.eval = AsyncMock(return_value=1)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
def dispatcher():
    """Stand-in dispatcher that records notifications instead of pushing to the CRM."""
    mock = MagicMock(spec=SyncDispatcher)
    mock.notifications = []
    mock.dispatch.side_effect = mock.notifications.append
    return mock


@pytest.fixture
async def company(db):
    """An active company with a GoHighLevel location."""
    company = Company(
        id=uuid.UUID("a1111111-1111-4111-8111-111111111111"),
        name="Lone Star Coatings",
        ghl_location_id="loc_123",
        ghl_api_key="pit-test-key",
        ghl_appt_calendar="cal_appt",
        ghl_install_calendar="cal_install",
        timezone_name="America/Chicago",
        is_active=True,
    )
    db.add(company)
    await db.commit()
    return company


@pytest.fixture
async def other_company(db):
    """A second tenant, for scope isolation tests."""
    company = Company(
        id=uuid.UUID("b2222222-2222-4222-8222-222222222222"),
        name="Gulf Coast Garage Floors",
        ghl_location_id="loc_456",
        is_active=True,
    )
    db.add(company)
    await db.commit()
    return company


@pytest.fixture
def jane_payload():
    """Flat GoHighLevel workflow webhook for a brand-new contact."""
    return {
        "locationId": "loc_123",
        "contact_id": "ghl_c_1",
        "firstName": "Jane",
        "lastName": "Doe",
        "phone": "+1 (555) 123-4567",
        "email": "Jane@Example.com",
        "address1": "12 Elm St",
        "city": "Austin",
        "state": "TX",
        "postal_code": "78701",
        "contact.jf_referral_source": "Google",
        "contact.est_project_type": "Garage Floor",
    }
