"""Shared pytest fixtures for testwarden tests."""

import tempfile
from pathlib import Path
from typing import Generator

import pytest
import pytest_asyncio

from testwarden.persistence.database import Database
from tests.helpers import ArtifactFactory


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for testing.

    Yields:
        Path to temporary directory that will be cleaned up after test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir: Path) -> Path:
    """Provide a temporary database path (a file, so sync and async share it)."""
    return temp_dir / "state.db"


@pytest.fixture
def artifact() -> ArtifactFactory:
    return ArtifactFactory()


@pytest_asyncio.fixture
async def db(temp_db_path: Path):
    """Database with both the sync and async connections open."""
    database = Database(temp_db_path)
    await database.initialize_async()
    yield database
    await database.close_all()


@pytest.fixture
def env_config(monkeypatch, temp_dir: Path) -> Path:
    """Point every configured path at a temporary directory."""
    monkeypatch.setenv("TESTWARDEN_DATABASE_PATH", str(temp_dir / "state.db"))
    monkeypatch.setenv("TESTWARDEN_EVIDENCE_DIR", str(temp_dir / "evidence"))
    monkeypatch.setenv("TESTWARDEN_REPORT_DIR", str(temp_dir / "reports"))
    monkeypatch.setenv("TESTWARDEN_HANDOFF_DIR", str(temp_dir / "handoffs"))
    monkeypatch.chdir(temp_dir)
    return temp_dir


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
