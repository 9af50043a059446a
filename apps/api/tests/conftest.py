import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from founditure_gamification.app import create_app
from founditure_gamification.core.settings import settings
from founditure_gamification.db.base import Base
from founditure_gamification.db.session import get_session
from founditure_gamification.observability.gamification import get_gamification_store
from founditure_gamification.services.gamification import get_event_publisher

settings.tracing_enabled = False


@pytest.fixture(autouse=True)
def isolated_event_bus():
    store = get_gamification_store()
    publisher = get_event_publisher()
    store.detach()
    publisher.clear()
    store.reset()
    try:
        yield publisher
    finally:
        store.detach()
        publisher.clear()
        store.reset()


@pytest.fixture
def recorded_events(isolated_event_bus):
    events = []
    isolated_event_bus.subscribe(events.append)
    return events


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Separate connections per session so concurrent writers really interleave."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        await get_event_publisher().drain()
        app.dependency_overrides.clear()
