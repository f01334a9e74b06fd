"""
Pytest configuration and fixtures for the deployment ledger tests.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select, update

from heirloom.core.config import Settings
from heirloom.core.database import create_engine, create_session_factory
from heirloom.core.events import EventBus
from heirloom.core.init_db import create_tables, drop_tables
from heirloom.main import create_app
from heirloom.modules.deployments.models import Deployment
from heirloom.modules.deployments.services import DeploymentLedger


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        _env_file=None,
        DB_TYPE="sqlite",
        SQLITE_PATH=str(tmp_path / "heirloom.db"),
        MAX_VERSIONS=0,
        METRICS_ENABLED=False,
    )


@pytest.fixture
async def engine(settings):
    engine = create_engine(settings)
    await create_tables(engine)
    yield engine
    await drop_tables(engine)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def ledger(session_factory, event_bus) -> DeploymentLedger:
    """Ledger without automatic pruning."""
    return DeploymentLedger(session_factory, max_versions=0, event_bus=event_bus)


@pytest.fixture
def client(settings):
    """HTTP client with the application lifespan running."""
    app = create_app(settings)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def count_deployments(session_factory):
    """Count deployment rows, optionally filtered by status."""

    async def _count(status: str | None = None) -> int:
        query = select(func.count()).select_from(Deployment)
        if status:
            query = query.where(Deployment.status == status)
        async with session_factory() as session:
            return await session.scalar(query)

    return _count


@pytest.fixture
def deactivate_all(session_factory):
    """Force every deployment inactive, bypassing the ledger."""

    async def _deactivate() -> None:
        async with session_factory() as session, session.begin():
            await session.execute(update(Deployment).values(status="inactive"))

    return _deactivate
