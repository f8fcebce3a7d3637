"""Pytest configuration: in-memory database, controllable clock and fake mail transport."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from covenant.engine import ComplianceEngine
from covenant.models import Property
from covenant.services import (
    create_all_tables,
    create_engine_from_settings,
    create_session_factory,
)
from covenant.services.clock import MockClock
from covenant.services.config import EngineSettings
from covenant.services.notification_service import NotificationService
from covenant.services.store import RetryConfig

# Fixed "now" for every test: first day of a billing month, before the due date
TEST_NOW = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)


class DummyTransport:
    """Records outgoing mail; set fail to make every send raise."""

    def __init__(self, fail: Exception | None = None):
        self.sent = []
        self.fail = fail

    async def send(self, *, to, from_email, subject, html):
        if self.fail is not None:
            raise self.fail
        self.sent.append({"to": to, "from_email": from_email, "subject": subject, "html": html})


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        from_email="hoa@example.com",
        store_retry_base_delay=0.01,
    )


@pytest.fixture
async def db_engine(settings):
    engine = create_engine_from_settings(settings)
    await create_all_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> MockClock:
    return MockClock(TEST_NOW)


@pytest.fixture
def transport() -> DummyTransport:
    return DummyTransport()


@pytest.fixture
def notifier(transport) -> NotificationService:
    return NotificationService(transport, "hoa@example.com")


@pytest.fixture
def make_property(session_factory):
    """Factory inserting a property with fresh scores and returning its id."""

    async def _make(
        address: str = "12 Maple Court",
        land_area_sqft: str = "1000",
        owner_email: str | None = "owner@example.com",
        **fields,
    ) -> int:
        async with session_factory() as session:
            prop = Property(
                address=address,
                owner_name=fields.pop("owner_name", "Jordan Smith"),
                owner_email=owner_email,
                land_area_sqft=Decimal(land_area_sqft),
                **fields,
            )
            session.add(prop)
            await session.commit()
            return prop.id

    return _make


@pytest.fixture
def engine(session_factory, settings, notifier, clock) -> ComplianceEngine:
    return ComplianceEngine(
        session_factory,
        settings,
        notifier=notifier,
        clock=clock,
        retry_config=RetryConfig.no_retry(),
    )
