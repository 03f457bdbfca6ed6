"""
Neo4j Graph Service - connection and schema for the weave graph

Neo4j is the SINGLE SOURCE OF TRUTH for signals, tensions and stories.
Cypher for individual operations lives in repositories.graph_store.

Node Types:
- Signal: {id, signal_type, title, summary, confidence, embedding, source_url, scope, ...}
- Evidence: {key, signal_id, source_url, source_domain} - one per attesting URL
- Tension: {id, title, summary, severity, category, scope}
- Story: {id, tension_id, headline, arc, energy, synthesis_pending, ...} - derived view
- CuriosityOutcome: {key, signal_id, tension_id, state, attempt_count}
- Finding: {id, scope, finding_type, target_id, status}
- Scope: {scope, status, run_seq, stop_requested} - durable run lock
- BudgetLedger: {key, scope, run_seq, limit_cents, spent_cents}
- DeferredCandidate: {id, scope, payload_json, reason}

Relationships:
- (Signal)-[:SOURCED_FROM]->(Evidence)
- (Signal)-[:RESPONDS_TO {strength, explanation}]->(Tension)
- (Story)-[:CONTAINS]->(Tension)                      primary, exactly one
- (Story)-[:CONTAINS {linked_at, run_seq}]->(Signal)  add-only
- (Tension)-[:ABSORBED_INTO]->(Story)
"""
import os
import logging
from typing import Dict, List, Optional

from neo4j import AsyncGraphDatabase, AsyncDriver

logger = logging.getLogger(__name__)


class Neo4jService:
    """Service for Neo4j graph operations"""

    def __init__(
        self,
        uri: str = None,
        user: str = None,
        password: str = None,
        embedding_dimensions: int = None,
    ):
        """Initialize Neo4j connection settings"""
        self.uri = uri or os.getenv('NEO4J_URI', 'bolt://neo4j:7687')
        self.user = user or os.getenv('NEO4J_USER', 'neo4j')
        self.password = password or os.getenv('NEO4J_PASSWORD', 'weave_neo4j_pass')
        self.embedding_dimensions = embedding_dimensions or int(os.getenv('WEAVE_EMBEDDING_DIMENSIONS', '1536'))

        self.driver: Optional[AsyncDriver] = None

    async def connect(self):
        """Establish connection to Neo4j"""
        if not self.driver:
            self.driver = AsyncGraphDatabase.driver(
                self.uri,
                auth=(self.user, self.password)
            )
            # Verify connectivity
            await self.driver.verify_connectivity()
            logger.info(f"✅ Connected to Neo4j at {self.uri}")

    async def close(self):
        """Close Neo4j connection"""
        if self.driver:
            await self.driver.close()
            self.driver = None
            logger.info("🔌 Closed Neo4j connection")

    async def _execute_write(self, query: str, parameters: Dict = None):
        """Execute write query, return the single result row (or None)"""
        async with self.driver.session() as session:
            result = await session.run(query, parameters or {})
            return await result.single()

    async def _execute_write_all(self, query: str, parameters: Dict = None) -> List[Dict]:
        """Execute write query, return all result rows"""
        async with self.driver.session() as session:
            result = await session.run(query, parameters or {})
            return await result.data()

    async def _execute_read(self, query: str, parameters: Dict = None) -> List[Dict]:
        """Execute read query"""
        async with self.driver.session() as session:
            result = await session.run(query, parameters or {})
            return await result.data()

    async def ensure_schema(self):
        """Create constraints and indexes for the weave graph."""
        constraints = [
            # Unique IDs for all node types
            "CREATE CONSTRAINT signal_id IF NOT EXISTS FOR (s:Signal) REQUIRE s.id IS UNIQUE",
            "CREATE CONSTRAINT tension_id IF NOT EXISTS FOR (t:Tension) REQUIRE t.id IS UNIQUE",
            "CREATE CONSTRAINT story_id IF NOT EXISTS FOR (s:Story) REQUIRE s.id IS UNIQUE",
            "CREATE CONSTRAINT finding_id IF NOT EXISTS FOR (f:Finding) REQUIRE f.id IS UNIQUE",
            "CREATE CONSTRAINT deferred_id IF NOT EXISTS FOR (d:DeferredCandidate) REQUIRE d.id IS UNIQUE",
            # One story per tension (MERGE key for create-if-absent)
            "CREATE CONSTRAINT story_tension IF NOT EXISTS FOR (s:Story) REQUIRE s.tension_id IS UNIQUE",
            # Merge keys
            "CREATE CONSTRAINT evidence_key IF NOT EXISTS FOR (e:Evidence) REQUIRE e.key IS UNIQUE",
            "CREATE CONSTRAINT curiosity_key IF NOT EXISTS FOR (c:CuriosityOutcome) REQUIRE c.key IS UNIQUE",
            "CREATE CONSTRAINT scope_key IF NOT EXISTS FOR (s:Scope) REQUIRE s.scope IS UNIQUE",
            "CREATE CONSTRAINT ledger_key IF NOT EXISTS FOR (b:BudgetLedger) REQUIRE b.key IS UNIQUE",
            # Indexes for common queries
            "CREATE INDEX signal_scope_type IF NOT EXISTS FOR (s:Signal) ON (s.scope, s.signal_type)",
            "CREATE INDEX tension_scope IF NOT EXISTS FOR (t:Tension) ON (t.scope)",
            "CREATE INDEX story_scope IF NOT EXISTS FOR (s:Story) ON (s.scope)",
            "CREATE INDEX finding_scope_status IF NOT EXISTS FOR (f:Finding) ON (f.scope, f.status)",
            "CREATE INDEX curiosity_scope_state IF NOT EXISTS FOR (c:CuriosityOutcome) ON (c.scope, c.state)",
            # Vector index for reconciliation lookups
            f"CREATE VECTOR INDEX signal_embedding IF NOT EXISTS FOR (s:Signal) ON (s.embedding) "
            f"OPTIONS {{indexConfig: {{`vector.dimensions`: {int(self.embedding_dimensions)}, "
            f"`vector.similarity_function`: 'cosine'}}}}",
        ]

        for constraint_query in constraints:
            try:
                await self._execute_write(constraint_query)
                logger.info(f"✅ {constraint_query.split()[1]} {constraint_query.split()[2]} ensured")
            except Exception as e:
                logger.warning(f"⚠️  Constraint/index creation failed (may already exist): {e}")
