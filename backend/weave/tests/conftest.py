"""
Pytest configuration for weave tests.
"""
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from weave import InMemoryGraphStore, WeaveParams, WeaveService

from factories import SCOPE, add_tension

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test."
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test requiring Neo4j"
    )


@pytest.fixture
def params():
    """Default policy constants."""
    return WeaveParams()


@pytest.fixture
def store():
    """Fresh in-memory graph per test."""
    return InMemoryGraphStore()


@pytest.fixture
def service(store, params):
    """WeaveService with no LLM collaborators."""
    return WeaveService(store, params=params)


@pytest_asyncio.fixture
async def tension(store):
    """A single tension in the default scope."""
    return await add_tension(store, "Library branch closure", tension_id="tn_library1")
