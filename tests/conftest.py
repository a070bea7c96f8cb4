"""Test configuration and fixtures.

Every test builds its own engine over in-memory repositories, a fixed clock
and recording collaborators, so tests never share state.
"""

from collections.abc import AsyncGenerator
from datetime import datetime

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis, FakeServer

from fleet_compliance.core.cache import Cache
from fleet_compliance.core.config import Settings, clear_settings_cache
from fleet_compliance.engine import ComplianceEngine
from fleet_compliance.services.fleet import InMemoryFleetOperations
from tests.fixtures.builders import MONDAY_MORNING, RecordingDispatcher, StubGateway

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]


@pytest.fixture(autouse=True)
def _fresh_settings() -> None:
    """Drop the cached settings singleton between tests."""
    clear_settings_cache()


@pytest.fixture
def now() -> datetime:
    """Monday 10:00 Manila time, inside the NCR coding window."""
    return MONDAY_MORNING


@pytest.fixture
def settings() -> Settings:
    """Default settings with the cache disabled."""
    return Settings()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    """Dispatcher that keeps every notification."""
    return RecordingDispatcher()


@pytest.fixture
def fleet() -> InMemoryFleetOperations:
    """In-memory fleet operations."""
    return InMemoryFleetOperations()


@pytest.fixture
def gateway(now: datetime) -> StubGateway:
    """Gateway that confirms every document unless told otherwise."""
    return StubGateway(now)


@pytest.fixture
def engine(
    settings: Settings,
    now: datetime,
    dispatcher: RecordingDispatcher,
    fleet: InMemoryFleetOperations,
    gateway: StubGateway,
) -> ComplianceEngine:
    """Engine over in-memory repositories with a clock frozen at ``now``."""
    return ComplianceEngine.build(
        settings,
        dispatcher=dispatcher,
        fleet=fleet,
        gateway=gateway,
        clock=lambda: now,
    )


@pytest_asyncio.fixture
async def redis_cache(settings: Settings) -> AsyncGenerator[Cache, None]:
    """Cache backed by an in-process fake Redis."""
    client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    cache = Cache(client, settings=settings)
    yield cache
    await cache.disconnect()
