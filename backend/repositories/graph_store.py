"""
Graph Store - Neo4j implementation of weave.store.GraphStore

Storage strategy:
- Neo4j only. Every method is a single Cypher statement, so each one is
  atomic on its own. Multi-step phases are NOT wrapped in a transaction.
- Create-if-absent uses MERGE on a uniquely-constrained key with an
  ON CREATE token (the generated id) to tell "created" from "matched".
- Edges that must not duplicate (RESPONDS_TO, CONTAINS, ABSORBED_INTO)
  are MERGEd with the same ON CREATE token, so concurrent writers
  produce one edge and exactly one of them counts it as new.

Similarity search uses the `signal_embedding` vector index when present.
An exact in-process cosine scan of the scope's signals answers whenever
the index cannot.
"""
import json
import logging
import secrets
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from models.domain import (
    CuriosityOutcome,
    CuriosityState,
    Evidence,
    Finding,
    FindingStatus,
    IDLE,
    Respondent,
    ScopeState,
    Signal,
    SignalType,
    Story,
    StoryMembership,
    Tension,
    outcome_key,
)
from services.neo4j_service import Neo4jService
from utils.datetime_utils import neo4j_datetime_to_python, utc_now
from utils.id_generator import generate_id
from utils.url_utils import normalize_url
from weave.budget import BudgetLedger

logger = logging.getLogger(__name__)

VECTOR_INDEX = 'signal_embedding'
# Index hits are filtered by scope/type afterwards, so over-fetch;
# a full window that filters short falls back to the exact scan
VECTOR_OVERFETCH = 10


def _index_score_to_cosine(score: float) -> float:
    """Neo4j reports cosine similarity rescaled to (1 + cos) / 2."""
    return 2.0 * float(score) - 1.0


def _cosine(a: List[float], b: List[float]) -> float:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def _is_missing_index_error(error: Exception) -> bool:
    """True when the vector index (or the procedure) does not exist, as opposed to a transient failure."""
    code = getattr(error, 'code', None) or ''
    if code.endswith('ProcedureNotFound'):
        return True
    message = str(error).lower()
    return 'no such vector schema index' in message or (
        'index' in message and ('does not exist' in message or 'not found' in message)
    )


def _write_token() -> str:
    """ON CREATE marker: only the write that created an edge reads its own token back."""
    return secrets.token_hex(8)


class Neo4jGraphStore:
    """
    GraphStore backed by Neo4jService.

    Consumers work with models.domain types; Cypher stays in here.
    """

    def __init__(self, neo4j_service: Neo4jService):
        self.neo4j = neo4j_service
        self._vector_index_available = True

    async def ensure_schema(self) -> None:
        await self.neo4j.ensure_schema()

    # =========================================================================
    # SCOPE STATE
    # =========================================================================

    _MERGE_SCOPE = """
        MERGE (s:Scope {scope: $scope})
        ON CREATE SET
            s.status = 'idle',
            s.run_seq = 0,
            s.stop_requested = false,
            s.updated_at = datetime()
    """

    async def ensure_scope(self, scope: str) -> ScopeState:
        row = await self.neo4j._execute_write(
            self._MERGE_SCOPE + " RETURN s {.*} AS state",
            {'scope': scope},
        )
        return ScopeState.from_neo4j_row(row['state'])

    async def get_scope(self, scope: str) -> Optional[ScopeState]:
        rows = await self.neo4j._execute_read("""
            MATCH (s:Scope {scope: $scope})
            RETURN s {.*} AS state
        """, {'scope': scope})
        return ScopeState.from_neo4j_row(rows[0]['state']) if rows else None

    async def transition_scope_status(
        self,
        scope: str,
        allowed_from: Sequence[str],
        new_status: str,
    ) -> Tuple[bool, str]:
        # The locked_at write takes the node lock before status is read
        row = await self.neo4j._execute_write(self._MERGE_SCOPE + """
            SET s.locked_at = datetime()
            WITH s, s.status AS before
            WITH s, before, before IN $allowed_from AS transitioned
            SET s.status = CASE WHEN transitioned THEN $new_status ELSE before END,
                s.updated_at = CASE WHEN transitioned THEN datetime() ELSE s.updated_at END
            RETURN transitioned, before
        """, {
            'scope': scope,
            'allowed_from': list(allowed_from),
            'new_status': new_status,
        })
        return bool(row['transitioned']), row['before'] or IDLE

    async def set_scope_status(self, scope: str, status: str) -> None:
        await self.neo4j._execute_write(self._MERGE_SCOPE + """
            SET s.status = $status, s.updated_at = datetime()
        """, {'scope': scope, 'status': status})

    async def increment_run_seq(self, scope: str) -> int:
        row = await self.neo4j._execute_write(self._MERGE_SCOPE + """
            SET s.run_seq = coalesce(s.run_seq, 0) + 1
            RETURN s.run_seq AS run_seq
        """, {'scope': scope})
        return row['run_seq']

    async def set_stop_requested(self, scope: str, requested: bool) -> None:
        await self.neo4j._execute_write(self._MERGE_SCOPE + """
            SET s.stop_requested = $requested
        """, {'scope': scope, 'requested': requested})

    # =========================================================================
    # SIGNALS
    # =========================================================================

    async def find_similar_signals(
        self,
        scope: str,
        signal_type: SignalType,
        embedding: List[float],
        limit: int = 5,
    ) -> List[Tuple[Signal, float]]:
        if self._vector_index_available:
            try:
                hits = await self._query_vector_index(scope, signal_type, embedding, limit)
            except Exception as e:
                if _is_missing_index_error(e):
                    self._vector_index_available = False
                    logger.warning(f"⚠️  Vector index unavailable, using cosine scan from now on: {e}")
                else:
                    logger.warning(f"⚠️  Vector query failed, using cosine scan for this lookup: {e}")
            else:
                if hits is not None:
                    return hits
        return await self._scan_similar(scope, signal_type, embedding, limit)

    async def _query_vector_index(
        self,
        scope: str,
        signal_type: SignalType,
        embedding: List[float],
        limit: int,
    ) -> Optional[List[Tuple[Signal, float]]]:
        """
        Index hits filtered to (scope, type, live).

        Returns None when the filter left fewer than `limit` hits out of a
        full over-fetch window: other scopes crowded the neighbourhood and
        only the exact scan can answer.
        """
        k = limit * VECTOR_OVERFETCH
        rows = await self.neo4j._execute_read("""
            CALL db.index.vector.queryNodes($index, $k, $embedding)
            YIELD node, score
            RETURN node {.*} AS signal, score
            ORDER BY score DESC
        """, {'index': VECTOR_INDEX, 'k': k, 'embedding': list(embedding)})

        hits = [
            (Signal.from_neo4j_row(r['signal']), _index_score_to_cosine(r['score']))
            for r in rows
            if r['signal'].get('scope') == scope
            and r['signal'].get('signal_type') == signal_type.value
            and r['signal'].get('superseded_by') is None
        ]
        if len(hits) < limit and len(rows) >= k:
            logger.debug(f"Vector window of {k} held {len(hits)} {signal_type.value} hits in {scope}")
            return None
        return hits[:limit]

    async def _scan_similar(
        self,
        scope: str,
        signal_type: SignalType,
        embedding: List[float],
        limit: int,
    ) -> List[Tuple[Signal, float]]:
        rows = await self.neo4j._execute_read("""
            MATCH (s:Signal {scope: $scope, signal_type: $signal_type})
            WHERE s.superseded_by IS NULL AND s.embedding IS NOT NULL
            RETURN s {.*} AS signal
        """, {'scope': scope, 'signal_type': signal_type.value})

        scored = [
            (Signal.from_neo4j_row(r['signal']), _cosine(embedding, r['signal']['embedding']))
            for r in rows
        ]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]

    async def create_signal(self, signal: Signal) -> Signal:
        row = await self.neo4j._execute_write("""
            MERGE (s:Signal {id: $id})
            ON CREATE SET
                s.signal_type = $signal_type,
                s.title = $title,
                s.summary = $summary,
                s.confidence = $confidence,
                s.base_confidence = $base_confidence,
                s.embedding = $embedding,
                s.source_url = $source_url,
                s.source_domain = $source_domain,
                s.content_date = $content_date,
                s.actors = $actors,
                s.scope = $scope,
                s.corroboration_count = $corroboration_count,
                s.source_diversity = $source_diversity,
                s.created_at = datetime(),
                s.updated_at = datetime()
            RETURN s {.*} AS signal
        """, {
            'id': signal.id,
            'signal_type': signal.signal_type.value,
            'title': signal.title,
            'summary': signal.summary,
            'confidence': signal.confidence,
            'base_confidence': signal.base_confidence,
            'embedding': list(signal.embedding) if signal.embedding else None,
            'source_url': signal.source_url,
            'source_domain': signal.source_domain,
            'content_date': signal.content_date,
            'actors': list(signal.actors),
            'scope': signal.scope,
            'corroboration_count': signal.corroboration_count,
            'source_diversity': signal.source_diversity,
        })
        return Signal.from_neo4j_row(row['signal'])

    async def get_signal(self, signal_id: str) -> Optional[Signal]:
        rows = await self.neo4j._execute_read("""
            MATCH (s:Signal {id: $id})
            RETURN s {.*} AS signal
        """, {'id': signal_id})
        return Signal.from_neo4j_row(rows[0]['signal']) if rows else None

    async def add_evidence(self, signal_id: str, evidence: Evidence) -> bool:
        evidence_id = generate_id('evidence')
        row = await self.neo4j._execute_write("""
            MATCH (s:Signal {id: $signal_id})
            MERGE (e:Evidence {key: $key})
            ON CREATE SET
                e.id = $evidence_id,
                e.signal_id = $signal_id,
                e.source_url = $source_url,
                e.source_domain = $source_domain,
                e.similarity = $similarity,
                e.retrieved_at = coalesce($retrieved_at, datetime())
            MERGE (s)-[:SOURCED_FROM]->(e)
            RETURN e.id = $evidence_id AS created
        """, {
            'signal_id': signal_id,
            'key': f"{signal_id}|{normalize_url(evidence.source_url)}",
            'evidence_id': evidence_id,
            'source_url': evidence.source_url,
            'source_domain': evidence.source_domain,
            'similarity': evidence.similarity,
            'retrieved_at': evidence.retrieved_at,
        })
        return bool(row and row['created'])

    async def list_evidence(self, signal_id: str) -> List[Evidence]:
        rows = await self.neo4j._execute_read("""
            MATCH (:Signal {id: $signal_id})-[:SOURCED_FROM]->(e:Evidence)
            RETURN e.source_url AS source_url,
                   e.source_domain AS source_domain,
                   e.similarity AS similarity,
                   e.retrieved_at AS retrieved_at
            ORDER BY e.retrieved_at
        """, {'signal_id': signal_id})
        return [
            Evidence(
                source_url=r['source_url'],
                source_domain=r['source_domain'] or "",
                similarity=r['similarity'],
                retrieved_at=neo4j_datetime_to_python(r['retrieved_at']),
            )
            for r in rows
        ]

    async def update_signal_confidence(
        self,
        signal_id: str,
        confidence: float,
        corroboration_count: int,
        source_diversity: int,
    ) -> None:
        await self.neo4j._execute_write("""
            MATCH (s:Signal {id: $id})
            SET s.confidence = $confidence,
                s.corroboration_count = $corroboration_count,
                s.source_diversity = $source_diversity,
                s.updated_at = datetime()
        """, {
            'id': signal_id,
            'confidence': confidence,
            'corroboration_count': corroboration_count,
            'source_diversity': source_diversity,
        })

    # =========================================================================
    # TENSIONS
    # =========================================================================

    async def create_tension(self, tension: Tension) -> Tension:
        row = await self.neo4j._execute_write("""
            MERGE (t:Tension {id: $id})
            ON CREATE SET
                t.title = $title,
                t.summary = $summary,
                t.severity = $severity,
                t.category = $category,
                t.scope = $scope,
                t.origin_signal_id = $origin_signal_id,
                t.created_at = coalesce($created_at, datetime())
            RETURN t {.*} AS tension
        """, {
            'id': tension.id,
            'title': tension.title,
            'summary': tension.summary,
            'severity': tension.severity,
            'category': tension.category,
            'scope': tension.scope,
            'origin_signal_id': tension.origin_signal_id,
            'created_at': tension.created_at,
        })
        return Tension.from_neo4j_row(row['tension'])

    async def get_tension(self, tension_id: str) -> Optional[Tension]:
        rows = await self.neo4j._execute_read("""
            MATCH (t:Tension {id: $id})
            RETURN t {.*} AS tension
        """, {'id': tension_id})
        return Tension.from_neo4j_row(rows[0]['tension']) if rows else None

    async def list_tensions(self, scope: str) -> List[Tension]:
        rows = await self.neo4j._execute_read("""
            MATCH (t:Tension {scope: $scope})
            RETURN t {.*} AS tension
            ORDER BY t.id
        """, {'scope': scope})
        return [Tension.from_neo4j_row(r['tension']) for r in rows]

    async def list_storyless_tensions(self, scope: str) -> List[Tension]:
        rows = await self.neo4j._execute_read("""
            MATCH (t:Tension {scope: $scope})
            WHERE NOT (:Story)-[:CONTAINS]->(t)
              AND NOT (t)-[:ABSORBED_INTO]->(:Story)
            RETURN t {.*} AS tension
            ORDER BY t.id
        """, {'scope': scope})
        return [Tension.from_neo4j_row(r['tension']) for r in rows]

    async def add_responds_to(
        self,
        signal_id: str,
        tension_id: str,
        strength: float,
        explanation: str,
    ) -> bool:
        row = await self.neo4j._execute_write("""
            MATCH (s:Signal {id: $signal_id}), (t:Tension {id: $tension_id})
            MERGE (s)-[r:RESPONDS_TO]->(t)
            ON CREATE SET
                r.strength = $strength,
                r.explanation = $explanation,
                r.created_at = datetime(),
                r.token = $token
            RETURN r.token = $token AS created
        """, {
            'token': _write_token(),
            'signal_id': signal_id,
            'tension_id': tension_id,
            'strength': strength,
            'explanation': explanation,
        })
        return bool(row and row['created'])

    async def get_respondents(self, tension_id: str) -> List[Respondent]:
        rows = await self.neo4j._execute_read("""
            MATCH (s:Signal)-[r:RESPONDS_TO]->(:Tension {id: $tension_id})
            RETURN s {.*} AS signal,
                   r.strength AS strength,
                   r.explanation AS explanation,
                   r.created_at AS created_at
            ORDER BY s.id
        """, {'tension_id': tension_id})
        return [
            Respondent(
                signal=Signal.from_neo4j_row(r['signal']),
                tension_id=tension_id,
                strength=r['strength'] or 0.0,
                explanation=r['explanation'] or "",
                created_at=neo4j_datetime_to_python(r['created_at']),
            )
            for r in rows
        ]

    # =========================================================================
    # STORIES
    # =========================================================================

    async def create_story(
        self,
        story: Story,
        signal_ids: Sequence[str],
        run_seq: int,
    ) -> Tuple[Story, bool]:
        row = await self.neo4j._execute_write("""
            MATCH (t:Tension {id: $tension_id})
            MERGE (s:Story {tension_id: $tension_id})
            ON CREATE SET
                s.id = $id,
                s.scope = $scope,
                s.headline = $headline,
                s.summary = $summary,
                s.arc = $arc,
                s.status = $status,
                s.energy = $energy,
                s.signal_count = $signal_count,
                s.type_diversity = $type_diversity,
                s.source_domain_count = $source_domain_count,
                s.synthesis_pending = $synthesis_pending,
                s.needs_refinement = $needs_refinement,
                s.created_at = datetime(),
                s.updated_at = datetime()
            MERGE (s)-[:CONTAINS]->(t)
            WITH s, s.id = $id AS created
            CALL {
                WITH s, created
                UNWIND CASE WHEN created THEN $signal_ids ELSE [] END AS sid
                MATCH (sig:Signal {id: sid})
                MERGE (s)-[r:CONTAINS]->(sig)
                ON CREATE SET r.linked_at = datetime(), r.run_seq = $run_seq
                RETURN count(r) AS linked
            }
            RETURN s {.*} AS story, created, linked
        """, {
            'tension_id': story.tension_id,
            'id': story.id,
            'scope': story.scope,
            'headline': story.headline,
            'summary': story.summary,
            'arc': story.arc.value,
            'status': story.status.value,
            'energy': story.energy,
            'signal_count': story.signal_count,
            'type_diversity': story.type_diversity,
            'source_domain_count': story.source_domain_count,
            'synthesis_pending': story.synthesis_pending,
            'needs_refinement': story.needs_refinement,
            'signal_ids': list(dict.fromkeys(signal_ids)),
            'run_seq': run_seq,
        })
        if row is None:
            raise LookupError(f"Tension {story.tension_id} not found")
        return Story.from_neo4j_row(row['story']), bool(row['created'])

    async def get_story(self, story_id: str) -> Optional[Story]:
        rows = await self.neo4j._execute_read("""
            MATCH (s:Story {id: $id})
            RETURN s {.*} AS story
        """, {'id': story_id})
        return Story.from_neo4j_row(rows[0]['story']) if rows else None

    async def list_stories(self, scope: str) -> List[Story]:
        rows = await self.neo4j._execute_read("""
            MATCH (s:Story {scope: $scope})
            RETURN s {.*} AS story
        """, {'scope': scope})
        return [Story.from_neo4j_row(r['story']) for r in rows]

    async def get_story_signal_sets(self, scope: str) -> Dict[str, Set[str]]:
        rows = await self.neo4j._execute_read("""
            MATCH (s:Story {scope: $scope})
            OPTIONAL MATCH (s)-[:CONTAINS]->(sig:Signal)
            RETURN s.id AS story_id, collect(sig.id) AS signal_ids
        """, {'scope': scope})
        return {r['story_id']: set(r['signal_ids']) for r in rows}

    async def get_story_tension_ids(self, story_id: str) -> List[str]:
        rows = await self.neo4j._execute_read("""
            MATCH (s:Story {id: $id})
            OPTIONAL MATCH (absorbed:Tension)-[:ABSORBED_INTO]->(s)
            WITH s, absorbed ORDER BY absorbed.id
            RETURN s.tension_id AS primary, collect(absorbed.id) AS absorbed
        """, {'id': story_id})
        if not rows:
            return []
        return [rows[0]['primary']] + list(rows[0]['absorbed'])

    async def link_signals(self, story_id: str, signal_ids: Sequence[str], run_seq: int) -> int:
        if not signal_ids:
            return 0
        row = await self.neo4j._execute_write("""
            MATCH (s:Story {id: $story_id})
            UNWIND $signal_ids AS sid
            MATCH (sig:Signal {id: sid})
            MERGE (s)-[r:CONTAINS]->(sig)
            ON CREATE SET r.linked_at = datetime(), r.run_seq = $run_seq, r.token = $token
            RETURN sum(CASE WHEN r.token = $token THEN 1 ELSE 0 END) AS linked
        """, {
            'token': _write_token(),
            'story_id': story_id,
            'signal_ids': list(dict.fromkeys(signal_ids)),
            'run_seq': run_seq,
        })
        return row['linked'] if row else 0

    async def get_memberships(self, story_id: str) -> List[StoryMembership]:
        rows = await self.neo4j._execute_read("""
            MATCH (:Story {id: $story_id})-[r:CONTAINS]->(sig:Signal)
            RETURN sig.id AS signal_id, r.run_seq AS run_seq, r.linked_at AS linked_at
            ORDER BY r.run_seq, sig.id
        """, {'story_id': story_id})
        return [
            StoryMembership(
                story_id=story_id,
                signal_id=r['signal_id'],
                run_seq=r['run_seq'] or 0,
                linked_at=neo4j_datetime_to_python(r['linked_at']),
            )
            for r in rows
        ]

    async def get_story_signals(self, story_id: str) -> List[Signal]:
        rows = await self.neo4j._execute_read("""
            MATCH (:Story {id: $story_id})-[:CONTAINS]->(sig:Signal)
            RETURN sig {.*} AS signal
            ORDER BY sig.id
        """, {'story_id': story_id})
        return [Signal.from_neo4j_row(r['signal']) for r in rows]

    async def absorb_tension(self, tension_id: str, story_id: str) -> bool:
        row = await self.neo4j._execute_write("""
            MATCH (t:Tension {id: $tension_id}), (s:Story {id: $story_id})
            // write-lock the tension so the guard reads committed absorptions
            SET t._lock = true
            REMOVE t._lock
            WITH t, s
            WHERE NOT (t)-[:ABSORBED_INTO]->(:Story)
              AND NOT (:Story)-[:CONTAINS]->(t)
            MERGE (t)-[r:ABSORBED_INTO]->(s)
            ON CREATE SET r.absorbed_at = datetime(), r.token = $token
            RETURN r.token = $token AS absorbed
        """, {'tension_id': tension_id, 'story_id': story_id, 'token': _write_token()})
        return bool(row and row['absorbed'])

    async def save_story_metrics(self, story: Story) -> None:
        await self.neo4j._execute_write("""
            MATCH (s:Story {id: $id})
            SET s.arc = $arc,
                s.status = $status,
                s.energy = $energy,
                s.signal_count = $signal_count,
                s.type_diversity = $type_diversity,
                s.source_domain_count = $source_domain_count,
                s.synthesis_pending = $synthesis_pending,
                s.needs_refinement = $needs_refinement,
                s.updated_at = datetime()
        """, {
            'id': story.id,
            'arc': story.arc.value,
            'status': story.status.value,
            'energy': story.energy,
            'signal_count': story.signal_count,
            'type_diversity': story.type_diversity,
            'source_domain_count': story.source_domain_count,
            'synthesis_pending': story.synthesis_pending,
            'needs_refinement': story.needs_refinement,
        })

    async def apply_synthesis(self, story_id: str, lede: str, narrative: str) -> bool:
        row = await self.neo4j._execute_write("""
            MATCH (s:Story {id: $id})
            SET s.lede = $lede,
                s.narrative = $narrative,
                s.synthesis_pending = false,
                s.last_synthesized_at = datetime(),
                s.updated_at = datetime()
            RETURN count(s) AS updated
        """, {'id': story_id, 'lede': lede, 'narrative': narrative})
        return bool(row and row['updated'])

    # =========================================================================
    # CURIOSITY OUTCOMES
    # =========================================================================

    async def get_curiosity_outcome(self, signal_id: str, tension_id: str) -> Optional[CuriosityOutcome]:
        rows = await self.neo4j._execute_read("""
            MATCH (c:CuriosityOutcome {key: $key})
            RETURN c {.*} AS outcome
        """, {'key': outcome_key(signal_id, tension_id)})
        return CuriosityOutcome.from_neo4j_row(rows[0]['outcome']) if rows else None

    async def save_curiosity_outcome(self, outcome: CuriosityOutcome) -> None:
        await self.neo4j._execute_write("""
            MERGE (c:CuriosityOutcome {key: $key})
            SET c.signal_id = $signal_id,
                c.tension_id = $tension_id,
                c.scope = $scope,
                c.state = $state,
                c.attempt_count = $attempt_count,
                c.last_error = $last_error,
                c.last_run_seq = $last_run_seq,
                c.updated_at = datetime()
        """, {
            'key': outcome.key,
            'signal_id': outcome.signal_id,
            'tension_id': outcome.tension_id,
            'scope': outcome.scope,
            'state': outcome.state.value,
            'attempt_count': outcome.attempt_count,
            'last_error': outcome.last_error,
            'last_run_seq': outcome.last_run_seq,
        })

    async def list_curiosity_outcomes(
        self,
        scope: str,
        states: Optional[Sequence[CuriosityState]] = None,
    ) -> List[CuriosityOutcome]:
        rows = await self.neo4j._execute_read("""
            MATCH (c:CuriosityOutcome {scope: $scope})
            WHERE $states IS NULL OR c.state IN $states
            RETURN c {.*} AS outcome
            ORDER BY c.key
        """, {
            'scope': scope,
            'states': [s.value for s in states] if states is not None else None,
        })
        return [CuriosityOutcome.from_neo4j_row(r['outcome']) for r in rows]

    # =========================================================================
    # DEFERRED CANDIDATES
    # =========================================================================

    async def defer_candidate(self, scope: str, payload: dict, reason: str) -> str:
        deferred_id = generate_id('deferred')
        await self.neo4j._execute_write("""
            CREATE (d:DeferredCandidate {
                id: $id,
                scope: $scope,
                payload_json: $payload_json,
                reason: $reason,
                deferred_at: datetime()
            })
        """, {
            'id': deferred_id,
            'scope': scope,
            'payload_json': json.dumps(payload, default=str),
            'reason': reason,
        })
        return deferred_id

    async def take_deferred_candidates(self, scope: str) -> List[dict]:
        row = await self.neo4j._execute_write("""
            OPTIONAL MATCH (d:DeferredCandidate {scope: $scope})
            WITH d ORDER BY d.deferred_at
            WITH collect(d) AS items
            WITH items, [d IN items | d.payload_json] AS payloads
            FOREACH (d IN items | DETACH DELETE d)
            RETURN payloads
        """, {'scope': scope})
        payloads = row['payloads'] if row else []
        return [json.loads(p) for p in payloads]

    # =========================================================================
    # FINDINGS
    # =========================================================================

    async def create_finding_if_new(self, finding: Finding) -> Tuple[Finding, bool]:
        row = await self.neo4j._execute_write("""
            OPTIONAL MATCH (existing:Finding {
                target_id: $target_id,
                finding_type: $finding_type,
                status: 'open'
            })
            WITH existing ORDER BY existing.created_at LIMIT 1
            FOREACH (_ IN CASE WHEN existing IS NULL THEN [1] ELSE [] END |
                CREATE (:Finding {
                    id: $id,
                    scope: $scope,
                    finding_type: $finding_type,
                    target_id: $target_id,
                    description: $description,
                    severity: $severity,
                    status: 'open',
                    created_at: coalesce($created_at, datetime())
                })
            )
            WITH existing
            MATCH (f:Finding {id: coalesce(existing.id, $id)})
            RETURN f {.*} AS finding, existing IS NULL AS created
        """, {
            'id': finding.id,
            'scope': finding.scope,
            'finding_type': finding.finding_type.value,
            'target_id': finding.target_id,
            'description': finding.description,
            'severity': finding.severity.value,
            'created_at': finding.created_at,
        })
        return Finding.from_neo4j_row(row['finding']), bool(row['created'])

    async def get_finding(self, finding_id: str) -> Optional[Finding]:
        rows = await self.neo4j._execute_read("""
            MATCH (f:Finding {id: $id})
            RETURN f {.*} AS finding
        """, {'id': finding_id})
        return Finding.from_neo4j_row(rows[0]['finding']) if rows else None

    async def list_findings(self, scope: str, status: Optional[FindingStatus] = None) -> List[Finding]:
        rows = await self.neo4j._execute_read("""
            MATCH (f:Finding {scope: $scope})
            WHERE $status IS NULL OR f.status = $status
            RETURN f {.*} AS finding
            ORDER BY f.created_at DESC
        """, {'scope': scope, 'status': status.value if status else None})
        return [Finding.from_neo4j_row(r['finding']) for r in rows]

    async def set_finding_status(self, finding_id: str, status: FindingStatus) -> Optional[Finding]:
        rows = await self.neo4j._execute_write_all("""
            MATCH (f:Finding {id: $id})
            SET f.status = $status,
                f.resolved_at = CASE WHEN $status = 'open' THEN null ELSE datetime() END
            RETURN f {.*} AS finding
        """, {'id': finding_id, 'status': status.value})
        return Finding.from_neo4j_row(rows[0]['finding']) if rows else None

    async def resolve_stale_findings(self, scope: str, older_than: datetime) -> int:
        row = await self.neo4j._execute_write("""
            MATCH (f:Finding {scope: $scope, status: 'open'})
            WHERE f.created_at < $older_than
            SET f.status = 'resolved', f.resolved_at = datetime()
            RETURN count(f) AS resolved
        """, {'scope': scope, 'older_than': older_than})
        return row['resolved'] if row else 0

    # =========================================================================
    # BUDGET LEDGER
    # =========================================================================

    async def save_budget_ledger(self, ledger: BudgetLedger) -> None:
        await self.neo4j._execute_write("""
            MERGE (b:BudgetLedger {key: $key})
            SET b.scope = $scope,
                b.run_seq = $run_seq,
                b.limit_cents = $limit_cents,
                b.spent_cents = $spent_cents,
                b.calls = $calls,
                b.updated_at = datetime()
        """, {
            'key': f"{ledger.scope}:{ledger.run_seq}",
            'scope': ledger.scope,
            'run_seq': ledger.run_seq,
            'limit_cents': ledger.limit_cents,
            'spent_cents': ledger.spent_cents,
            'calls': ledger.calls,
        })

    async def get_budget_ledger(self, scope: str, run_seq: Optional[int] = None) -> Optional[BudgetLedger]:
        rows = await self.neo4j._execute_read("""
            MATCH (b:BudgetLedger {scope: $scope})
            WHERE $run_seq IS NULL OR b.run_seq = $run_seq
            RETURN b {.*} AS ledger
            ORDER BY b.run_seq DESC
            LIMIT 1
        """, {'scope': scope, 'run_seq': run_seq})
        return BudgetLedger.from_neo4j_row(rows[0]['ledger']) if rows else None
