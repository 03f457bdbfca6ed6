"""
GraphStore protocol - the only shared mutable resource of the weave.

Two implementations:
- repositories.graph_store.Neo4jGraphStore: production, Cypher over Neo4jService
- weave.memory_store.InMemoryGraphStore: tests and dry runs

Contract:
- Every method is one atomic operation (create-if-absent where it
  creates). A run is NOT one transaction; partial progress across
  phases is expected and must leave a queryable graph.
- CONTAINS edges are add-only. Nothing here unlinks a signal from a story.
- Scope status is compare-and-set, so the run lock is durable and
  shared by every worker talking to the same store.
"""
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence, Set, Tuple

from models.domain import (
    CuriosityOutcome,
    CuriosityState,
    Evidence,
    Finding,
    FindingStatus,
    Respondent,
    ScopeState,
    Signal,
    SignalType,
    Story,
    StoryMembership,
    Tension,
)
from weave.budget import BudgetLedger


class GraphStore(Protocol):

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def ensure_schema(self) -> None:
        """Create constraints/indexes the store relies on. Idempotent."""
        ...

    # ------------------------------------------------------------------
    # Scope state (run lock)
    # ------------------------------------------------------------------

    async def ensure_scope(self, scope: str) -> ScopeState:
        ...

    async def get_scope(self, scope: str) -> Optional[ScopeState]:
        ...

    async def transition_scope_status(
        self,
        scope: str,
        allowed_from: Sequence[str],
        new_status: str,
    ) -> Tuple[bool, str]:
        """
        Compare-and-set the scope status.

        Returns (transitioned, status_before). The scope is created in
        'idle' first if it does not exist.
        """
        ...

    async def set_scope_status(self, scope: str, status: str) -> None:
        ...

    async def increment_run_seq(self, scope: str) -> int:
        """Bump and return the scope's run sequence."""
        ...

    async def set_stop_requested(self, scope: str, requested: bool) -> None:
        ...

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    async def find_similar_signals(
        self,
        scope: str,
        signal_type: SignalType,
        embedding: List[float],
        limit: int = 5,
    ) -> List[Tuple[Signal, float]]:
        """Nearest same-type signals in scope, (signal, cosine) best first."""
        ...

    async def create_signal(self, signal: Signal) -> Signal:
        """Create-if-absent on id. Returns the stored signal."""
        ...

    async def get_signal(self, signal_id: str) -> Optional[Signal]:
        ...

    async def add_evidence(self, signal_id: str, evidence: Evidence) -> bool:
        """Merge evidence by source_url. True when it was new."""
        ...

    async def list_evidence(self, signal_id: str) -> List[Evidence]:
        ...

    async def update_signal_confidence(
        self,
        signal_id: str,
        confidence: float,
        corroboration_count: int,
        source_diversity: int,
    ) -> None:
        ...

    # ------------------------------------------------------------------
    # Tensions and RESPONDS_TO
    # ------------------------------------------------------------------

    async def create_tension(self, tension: Tension) -> Tension:
        """Create-if-absent on id."""
        ...

    async def get_tension(self, tension_id: str) -> Optional[Tension]:
        ...

    async def list_tensions(self, scope: str) -> List[Tension]:
        ...

    async def list_storyless_tensions(self, scope: str) -> List[Tension]:
        """Tensions with no primary story and no ABSORBED_INTO edge."""
        ...

    async def add_responds_to(
        self,
        signal_id: str,
        tension_id: str,
        strength: float,
        explanation: str,
    ) -> bool:
        """
        Create-if-absent RESPONDS_TO. True when created; False when it
        already existed or either node is missing.
        """
        ...

    async def get_respondents(self, tension_id: str) -> List[Respondent]:
        ...

    # ------------------------------------------------------------------
    # Stories
    # ------------------------------------------------------------------

    async def create_story(
        self,
        story: Story,
        signal_ids: Sequence[str],
        run_seq: int,
    ) -> Tuple[Story, bool]:
        """
        Create-if-absent keyed by story.tension_id, together with the
        CONTAINS edge to the tension and to each signal.

        Returns (story, created). When a story already exists for the
        tension it is returned untouched.
        """
        ...

    async def get_story(self, story_id: str) -> Optional[Story]:
        ...

    async def list_stories(self, scope: str) -> List[Story]:
        ...

    async def get_story_signal_sets(self, scope: str) -> Dict[str, Set[str]]:
        """story_id -> member signal ids, for every story in scope."""
        ...

    async def get_story_tension_ids(self, story_id: str) -> List[str]:
        """Primary tension first, then absorbed tensions."""
        ...

    async def link_signals(self, story_id: str, signal_ids: Sequence[str], run_seq: int) -> int:
        """MERGE CONTAINS edges. Returns how many were new."""
        ...

    async def get_memberships(self, story_id: str) -> List[StoryMembership]:
        ...

    async def get_story_signals(self, story_id: str) -> List[Signal]:
        ...

    async def absorb_tension(self, tension_id: str, story_id: str) -> bool:
        ...

    async def save_story_metrics(self, story: Story) -> None:
        """
        Persist derived fields: arc, status, energy, counts,
        synthesis_pending, needs_refinement. Never touches lede/narrative.
        """
        ...

    async def apply_synthesis(self, story_id: str, lede: str, narrative: str) -> bool:
        """Set lede + narrative and clear synthesis_pending in one write."""
        ...

    # ------------------------------------------------------------------
    # Curiosity outcomes
    # ------------------------------------------------------------------

    async def get_curiosity_outcome(self, signal_id: str, tension_id: str) -> Optional[CuriosityOutcome]:
        ...

    async def save_curiosity_outcome(self, outcome: CuriosityOutcome) -> None:
        ...

    async def list_curiosity_outcomes(
        self,
        scope: str,
        states: Optional[Sequence[CuriosityState]] = None,
    ) -> List[CuriosityOutcome]:
        ...

    # ------------------------------------------------------------------
    # Deferred candidates
    # ------------------------------------------------------------------

    async def defer_candidate(self, scope: str, payload: dict, reason: str) -> str:
        ...

    async def take_deferred_candidates(self, scope: str) -> List[dict]:
        """Remove and return every deferred payload for the scope."""
        ...

    # ------------------------------------------------------------------
    # Findings
    # ------------------------------------------------------------------

    async def create_finding_if_new(self, finding: Finding) -> Tuple[Finding, bool]:
        """Deduplicate on (target_id, finding_type) among open findings."""
        ...

    async def get_finding(self, finding_id: str) -> Optional[Finding]:
        ...

    async def list_findings(self, scope: str, status: Optional[FindingStatus] = None) -> List[Finding]:
        ...

    async def set_finding_status(self, finding_id: str, status: FindingStatus) -> Optional[Finding]:
        ...

    async def resolve_stale_findings(self, scope: str, older_than: datetime) -> int:
        ...

    # ------------------------------------------------------------------
    # Budget ledger
    # ------------------------------------------------------------------

    async def save_budget_ledger(self, ledger: BudgetLedger) -> None:
        ...

    async def get_budget_ledger(self, scope: str, run_seq: Optional[int] = None) -> Optional[BudgetLedger]:
        """Ledger for a run, or the latest one when run_seq is None."""
        ...
