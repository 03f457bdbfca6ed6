"""
Utility functions
"""
from .datetime_utils import neo4j_datetime_to_python, utc_now
from .url_utils import normalize_url, extract_domain, source_key

__all__ = ['neo4j_datetime_to_python', 'utc_now', 'normalize_url', 'extract_domain', 'source_key']
