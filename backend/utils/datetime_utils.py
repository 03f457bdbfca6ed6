"""
Datetime utility functions for handling Neo4j DateTime objects
"""
from datetime import datetime, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Timezone-aware now; all weave timestamps are UTC."""
    return datetime.now(timezone.utc)


def neo4j_datetime_to_python(neo4j_dt) -> Optional[datetime]:
    """
    Convert Neo4j DateTime to Python datetime

    Handles:
    - None -> None
    - Neo4j DateTime with to_native() -> Python datetime
    - Already Python datetime -> return as-is
    - String ISO format -> parse to datetime

    Naive results are assumed to be UTC.
    """
    if neo4j_dt is None:
        return None

    value = None
    if isinstance(neo4j_dt, datetime):
        value = neo4j_dt
    elif hasattr(neo4j_dt, 'to_native'):
        value = neo4j_dt.to_native()
    elif isinstance(neo4j_dt, str):
        try:
            value = datetime.fromisoformat(neo4j_dt.replace('Z', '+00:00'))
        except ValueError as e:
            logger.warning(f"Failed to parse datetime string '{neo4j_dt}': {e}")
            return None
    else:
        logger.warning(f"Cannot convert {type(neo4j_dt)} to Python datetime: {neo4j_dt}")
        return None

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value
