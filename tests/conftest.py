"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite file under tmp_path, so tests never share
rows and never touch ./whatsapp_data.db.
"""

import pytest
from fastapi.testclient import TestClient

from whatsapp_store.config import Settings
from whatsapp_store.main import create_app
from whatsapp_store.storage import Base, Storage


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a fresh database file."""
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def storage(settings):
    """Storage handle with the schema applied."""
    handle = Storage(settings.DATABASE_URL)
    handle.create_schema()
    yield handle
    handle.close()


@pytest.fixture
def client(settings):
    """Create test client; the app lifespan opens and closes its own storage."""
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def drop_schema(client: TestClient) -> None:
    """Remove both tables behind a running app to provoke storage failures."""
    Base.metadata.drop_all(bind=client.app.state.storage.engine)
