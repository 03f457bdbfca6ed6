"""
Configuration: settings and service construction.
"""
from .settings import Settings, get_settings
from .database import (
    Neo4jConfig,
    RedisConfig,
    create_job_queue,
    create_neo4j_service,
    create_weave_service,
)

__all__ = [
    'Settings',
    'get_settings',
    'Neo4jConfig',
    'RedisConfig',
    'create_job_queue',
    'create_neo4j_service',
    'create_weave_service',
]
