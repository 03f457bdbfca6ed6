"""
Connection Configuration
========================

Builds the Neo4j graph store, the Redis queue and the assembled
WeaveService for the worker and the API from environment variables.
"""
import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class Neo4jConfig:
    """Neo4j connection plus the signal vector index size."""
    uri: str
    user: str
    password: str
    embedding_dimensions: int = 1536

    @classmethod
    def from_env(cls) -> 'Neo4jConfig':
        uri = os.getenv('NEO4J_URI')
        if not uri:
            raise ValueError("NEO4J_URI environment variable is required")

        from config.settings import get_settings
        return cls(
            uri=uri,
            user=os.getenv('NEO4J_USER', 'neo4j'),
            password=os.getenv('NEO4J_PASSWORD', ''),
            embedding_dimensions=get_settings().weave_embedding_dimensions,
        )


@dataclass
class RedisConfig:
    """Redis URL for run jobs and candidate queues."""
    url: str

    @classmethod
    def from_env(cls) -> 'RedisConfig':
        url = os.getenv('REDIS_URL')
        if not url:
            raise ValueError("REDIS_URL environment variable is required")
        return cls(url=url)


def get_neo4j_config() -> Neo4jConfig:
    return Neo4jConfig.from_env()


def get_redis_config() -> RedisConfig:
    return RedisConfig.from_env()


async def create_job_queue():
    """Create and connect the Redis job queue."""
    from services.job_queue import JobQueue
    queue = JobQueue(get_redis_config().url)
    await queue.connect()
    return queue


async def create_neo4j_service(ensure_schema: bool = True):
    """Create and connect Neo4jService; constraints and the vector index are created on first use."""
    from services.neo4j_service import Neo4jService
    config = get_neo4j_config()
    service = Neo4jService(
        uri=config.uri,
        user=config.user,
        password=config.password,
        embedding_dimensions=config.embedding_dimensions,
    )
    await service.connect()
    if ensure_schema:
        await service.ensure_schema()
    return service


def create_weave_service(neo4j_service):
    """
    WeaveService over Neo4j with the policy from settings.

    The OpenAI synthesizer and investigator are only attached when an
    API key is configured; without them SITUATION_WEAVER skips curiosity
    and enrichment.
    """
    from config.settings import get_settings
    from repositories.graph_store import Neo4jGraphStore
    from services.investigator import OpenAIInvestigator
    from services.synthesizer import OpenAISynthesizer
    from weave.service import WeaveService
    from weave.types import WeaveParams

    settings = get_settings()
    synthesizer = investigator = None
    if settings.openai_api_key:
        synthesizer = OpenAISynthesizer()
        investigator = OpenAIInvestigator()
    else:
        logger.warning("⚠️  OPENAI_API_KEY not set; curiosity and synthesis are disabled")

    return WeaveService(
        Neo4jGraphStore(neo4j_service),
        synthesizer=synthesizer,
        investigator=investigator,
        params=WeaveParams.from_settings(settings),
    )
