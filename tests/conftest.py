"""
Pytest configuration and shared fixtures for metacfg tests.
"""

import pytest

from metacfg.db.session import make_engine
from metacfg.repositories.db import DbConfigRepository
from metacfg.repositories.memory import InMemoryConfigRepository


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine; one fresh database per test."""
    engine = make_engine(f"sqlite:///{tmp_path / 'metacfg.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def repository(engine):
    return DbConfigRepository(engine)


@pytest.fixture
def memory_repository():
    return InMemoryConfigRepository()
