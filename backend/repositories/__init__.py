"""
Repository Pattern - Storage abstraction layer

Repositories hide storage details (Neo4j) from the weave engine.
Consumers work with domain models, not Cypher rows.

Architecture (Neo4j-centric):
- Neo4j: Signals, Evidence, Tensions, Stories, curiosity outcomes,
  findings, budget ledgers and the per-scope run lock
- Neo4jGraphStore implements weave.store.GraphStore over Neo4jService
"""
from .graph_store import Neo4jGraphStore

__all__ = [
    'Neo4jGraphStore',
]
