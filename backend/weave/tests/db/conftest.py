"""
Pytest fixtures for graph store tests against a real Neo4j.

Usage:
    TEST_NEO4J_URI=bolt://localhost:7688 pytest -m integration

Tests are skipped when TEST_NEO4J_URI is not set.
"""
import os

import pytest
import pytest_asyncio

from repositories.graph_store import Neo4jGraphStore
from services.neo4j_service import Neo4jService

from factories import DIM


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test requiring Neo4j"
    )


@pytest.fixture(scope="session")
def neo4j_settings():
    """Test Neo4j connection settings from environment."""
    uri = os.getenv("TEST_NEO4J_URI")
    if not uri:
        pytest.skip("TEST_NEO4J_URI not set")
    return {
        'uri': uri,
        'user': os.getenv("TEST_NEO4J_USER", "neo4j"),
        'password': os.getenv("TEST_NEO4J_PASSWORD", "test_password"),
    }


@pytest_asyncio.fixture
async def neo4j(neo4j_settings):
    """
    Per-test connection to a fresh database.

    Clears all data and ensures constraints before each test.
    """
    service = Neo4jService(embedding_dimensions=DIM, **neo4j_settings)
    await service.connect()
    try:
        await service._execute_write("MATCH (n) DETACH DELETE n")
        await service.ensure_schema()
        yield service
    finally:
        await service.close()


@pytest_asyncio.fixture
async def graph_store(neo4j):
    """Neo4jGraphStore using the in-process cosine scan for deterministic lookups."""
    store = Neo4jGraphStore(neo4j)
    store._vector_index_available = False
    return store
