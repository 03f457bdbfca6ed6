"""
In-memory GraphStore for tests and dry runs.

Each method completes without awaiting anything, so on a single event
loop every call is atomic. Returned objects are copies; mutating them
never changes stored state.
"""
import copy
import logging
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
)
from utils.datetime_utils import utc_now
from utils.id_generator import generate_id
from utils.url_utils import normalize_url
from weave.budget import BudgetLedger

logger = logging.getLogger(__name__)


def cosine_similarity(a: List[float], b: List[float]) -> float:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class InMemoryGraphStore:
    """Dictionary-backed GraphStore."""

    def __init__(self):
        self.scopes: Dict[str, ScopeState] = {}
        self.signals: Dict[str, Signal] = {}
        self.evidence: Dict[str, Dict[str, Evidence]] = {}
        self.tensions: Dict[str, Tension] = {}
        # (signal_id, tension_id) -> (strength, explanation, created_at)
        self.responds_to: Dict[Tuple[str, str], Tuple[float, str, datetime]] = {}
        self.stories: Dict[str, Story] = {}
        self.story_by_tension: Dict[str, str] = {}
        self.absorbed: Dict[str, str] = {}
        self.memberships: Dict[str, Dict[str, StoryMembership]] = {}
        self.curiosity: Dict[str, CuriosityOutcome] = {}
        self.deferred: Dict[str, List[dict]] = {}
        self.findings: Dict[str, Finding] = {}
        self.ledgers: Dict[Tuple[str, int], BudgetLedger] = {}

    async def ensure_schema(self) -> None:
        return None

    # ===== Scope state =====

    def _scope(self, scope: str) -> ScopeState:
        if scope not in self.scopes:
            self.scopes[scope] = ScopeState(scope=scope, status=IDLE, updated_at=utc_now())
        return self.scopes[scope]

    async def ensure_scope(self, scope: str) -> ScopeState:
        return copy.copy(self._scope(scope))

    async def get_scope(self, scope: str) -> Optional[ScopeState]:
        state = self.scopes.get(scope)
        return copy.copy(state) if state else None

    async def transition_scope_status(
        self,
        scope: str,
        allowed_from: Sequence[str],
        new_status: str,
    ) -> Tuple[bool, str]:
        state = self._scope(scope)
        before = state.status
        if before not in allowed_from:
            return False, before
        state.status = new_status
        state.updated_at = utc_now()
        return True, before

    async def set_scope_status(self, scope: str, status: str) -> None:
        state = self._scope(scope)
        state.status = status
        state.updated_at = utc_now()

    async def increment_run_seq(self, scope: str) -> int:
        state = self._scope(scope)
        state.run_seq += 1
        return state.run_seq

    async def set_stop_requested(self, scope: str, requested: bool) -> None:
        self._scope(scope).stop_requested = requested

    # ===== Signals =====

    async def find_similar_signals(
        self,
        scope: str,
        signal_type: SignalType,
        embedding: List[float],
        limit: int = 5,
    ) -> List[Tuple[Signal, float]]:
        scored = []
        for signal in self.signals.values():
            if signal.scope != scope or signal.signal_type is not signal_type:
                continue
            if signal.superseded_by or not signal.embedding:
                continue
            scored.append((copy.deepcopy(signal), cosine_similarity(embedding, signal.embedding)))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]

    async def create_signal(self, signal: Signal) -> Signal:
        if signal.id not in self.signals:
            now = utc_now()
            stored = copy.deepcopy(signal)
            stored.created_at = stored.created_at or now
            stored.updated_at = now
            self.signals[signal.id] = stored
        return copy.deepcopy(self.signals[signal.id])

    async def get_signal(self, signal_id: str) -> Optional[Signal]:
        signal = self.signals.get(signal_id)
        return copy.deepcopy(signal) if signal else None

    async def add_evidence(self, signal_id: str, evidence: Evidence) -> bool:
        if signal_id not in self.signals:
            return False
        key = normalize_url(evidence.source_url)
        bucket = self.evidence.setdefault(signal_id, {})
        if key in bucket:
            return False
        stored = copy.copy(evidence)
        stored.retrieved_at = stored.retrieved_at or utc_now()
        bucket[key] = stored
        return True

    async def list_evidence(self, signal_id: str) -> List[Evidence]:
        return [copy.copy(e) for e in self.evidence.get(signal_id, {}).values()]

    async def update_signal_confidence(
        self,
        signal_id: str,
        confidence: float,
        corroboration_count: int,
        source_diversity: int,
    ) -> None:
        signal = self.signals.get(signal_id)
        if signal is None:
            return
        signal.confidence = confidence
        signal.corroboration_count = corroboration_count
        signal.source_diversity = source_diversity
        signal.updated_at = utc_now()

    # ===== Tensions =====

    async def create_tension(self, tension: Tension) -> Tension:
        if tension.id not in self.tensions:
            stored = copy.copy(tension)
            stored.created_at = stored.created_at or utc_now()
            self.tensions[tension.id] = stored
        return copy.copy(self.tensions[tension.id])

    async def get_tension(self, tension_id: str) -> Optional[Tension]:
        tension = self.tensions.get(tension_id)
        return copy.copy(tension) if tension else None

    async def list_tensions(self, scope: str) -> List[Tension]:
        return [copy.copy(t) for t in self.tensions.values() if t.scope == scope]

    async def list_storyless_tensions(self, scope: str) -> List[Tension]:
        return [
            copy.copy(t) for t in self.tensions.values()
            if t.scope == scope and t.id not in self.story_by_tension and t.id not in self.absorbed
        ]

    async def add_responds_to(
        self,
        signal_id: str,
        tension_id: str,
        strength: float,
        explanation: str,
    ) -> bool:
        if signal_id not in self.signals or tension_id not in self.tensions:
            return False
        key = (signal_id, tension_id)
        if key in self.responds_to:
            return False
        self.responds_to[key] = (strength, explanation, utc_now())
        return True

    async def get_respondents(self, tension_id: str) -> List[Respondent]:
        respondents = []
        for (signal_id, tid), (strength, explanation, created_at) in self.responds_to.items():
            if tid != tension_id:
                continue
            respondents.append(Respondent(
                signal=copy.deepcopy(self.signals[signal_id]),
                tension_id=tension_id,
                strength=strength,
                explanation=explanation,
                created_at=created_at,
            ))
        return respondents

    # ===== Stories =====

    async def create_story(
        self,
        story: Story,
        signal_ids: Sequence[str],
        run_seq: int,
    ) -> Tuple[Story, bool]:
        existing_id = self.story_by_tension.get(story.tension_id)
        if existing_id:
            return copy.copy(self.stories[existing_id]), False

        now = utc_now()
        stored = copy.copy(story)
        stored.created_at = stored.created_at or now
        stored.updated_at = now
        self.stories[stored.id] = stored
        self.story_by_tension[stored.tension_id] = stored.id
        self.memberships[stored.id] = {}
        self._link(stored.id, signal_ids, run_seq, now)
        return copy.copy(stored), True

    def _link(self, story_id: str, signal_ids: Sequence[str], run_seq: int, now: datetime) -> int:
        members = self.memberships.setdefault(story_id, {})
        added = 0
        for signal_id in signal_ids:
            if signal_id in members or signal_id not in self.signals:
                continue
            members[signal_id] = StoryMembership(
                story_id=story_id, signal_id=signal_id, run_seq=run_seq, linked_at=now,
            )
            added += 1
        return added

    async def get_story(self, story_id: str) -> Optional[Story]:
        story = self.stories.get(story_id)
        return copy.copy(story) if story else None

    async def list_stories(self, scope: str) -> List[Story]:
        return [copy.copy(s) for s in self.stories.values() if s.scope == scope]

    async def get_story_signal_sets(self, scope: str) -> Dict[str, Set[str]]:
        return {
            story_id: set(self.memberships.get(story_id, {}))
            for story_id, story in self.stories.items()
            if story.scope == scope
        }

    async def get_story_tension_ids(self, story_id: str) -> List[str]:
        story = self.stories.get(story_id)
        if story is None:
            return []
        absorbed = sorted(tid for tid, sid in self.absorbed.items() if sid == story_id)
        return [story.tension_id] + absorbed

    async def link_signals(self, story_id: str, signal_ids: Sequence[str], run_seq: int) -> int:
        if story_id not in self.stories:
            return 0
        return self._link(story_id, signal_ids, run_seq, utc_now())

    async def get_memberships(self, story_id: str) -> List[StoryMembership]:
        return [copy.copy(m) for m in self.memberships.get(story_id, {}).values()]

    async def get_story_signals(self, story_id: str) -> List[Signal]:
        return [copy.deepcopy(self.signals[sid]) for sid in self.memberships.get(story_id, {})]

    async def absorb_tension(self, tension_id: str, story_id: str) -> bool:
        if story_id not in self.stories or tension_id not in self.tensions:
            return False
        if tension_id in self.absorbed or tension_id in self.story_by_tension:
            return False
        self.absorbed[tension_id] = story_id
        return True

    async def save_story_metrics(self, story: Story) -> None:
        stored = self.stories.get(story.id)
        if stored is None:
            return
        stored.arc = story.arc
        stored.status = story.status
        stored.energy = story.energy
        stored.signal_count = story.signal_count
        stored.type_diversity = story.type_diversity
        stored.source_domain_count = story.source_domain_count
        stored.synthesis_pending = story.synthesis_pending
        stored.needs_refinement = story.needs_refinement
        stored.updated_at = utc_now()

    async def apply_synthesis(self, story_id: str, lede: str, narrative: str) -> bool:
        stored = self.stories.get(story_id)
        if stored is None:
            return False
        now = utc_now()
        stored.lede = lede
        stored.narrative = narrative
        stored.synthesis_pending = False
        stored.last_synthesized_at = now
        stored.updated_at = now
        return True

    # ===== Curiosity =====

    async def get_curiosity_outcome(self, signal_id: str, tension_id: str) -> Optional[CuriosityOutcome]:
        outcome = self.curiosity.get(f"{signal_id}:{tension_id}")
        return copy.copy(outcome) if outcome else None

    async def save_curiosity_outcome(self, outcome: CuriosityOutcome) -> None:
        stored = copy.copy(outcome)
        stored.updated_at = utc_now()
        self.curiosity[outcome.key] = stored

    async def list_curiosity_outcomes(
        self,
        scope: str,
        states: Optional[Sequence[CuriosityState]] = None,
    ) -> List[CuriosityOutcome]:
        return [
            copy.copy(o) for o in self.curiosity.values()
            if o.scope == scope and (states is None or o.state in states)
        ]

    # ===== Deferred candidates =====

    async def defer_candidate(self, scope: str, payload: dict, reason: str) -> str:
        deferred_id = generate_id('deferred')
        self.deferred.setdefault(scope, []).append({
            'id': deferred_id,
            'payload': copy.deepcopy(payload),
            'reason': reason,
            'deferred_at': utc_now().isoformat(),
        })
        return deferred_id

    async def take_deferred_candidates(self, scope: str) -> List[dict]:
        entries = self.deferred.pop(scope, [])
        return [entry['payload'] for entry in entries]

    # ===== Findings =====

    async def create_finding_if_new(self, finding: Finding) -> Tuple[Finding, bool]:
        for existing in self.findings.values():
            if (existing.status is FindingStatus.OPEN
                    and existing.target_id == finding.target_id
                    and existing.finding_type is finding.finding_type):
                return copy.copy(existing), False
        stored = copy.copy(finding)
        stored.created_at = stored.created_at or utc_now()
        self.findings[stored.id] = stored
        return copy.copy(stored), True

    async def get_finding(self, finding_id: str) -> Optional[Finding]:
        finding = self.findings.get(finding_id)
        return copy.copy(finding) if finding else None

    async def list_findings(self, scope: str, status: Optional[FindingStatus] = None) -> List[Finding]:
        found = [
            copy.copy(f) for f in self.findings.values()
            if f.scope == scope and (status is None or f.status is status)
        ]
        found.sort(key=lambda f: f.created_at, reverse=True)
        return found

    async def set_finding_status(self, finding_id: str, status: FindingStatus) -> Optional[Finding]:
        finding = self.findings.get(finding_id)
        if finding is None:
            return None
        finding.status = status
        finding.resolved_at = utc_now() if status is not FindingStatus.OPEN else None
        return copy.copy(finding)

    async def resolve_stale_findings(self, scope: str, older_than: datetime) -> int:
        resolved = 0
        now = utc_now()
        for finding in self.findings.values():
            if (finding.scope == scope and finding.status is FindingStatus.OPEN
                    and finding.created_at and finding.created_at < older_than):
                finding.status = FindingStatus.RESOLVED
                finding.resolved_at = now
                resolved += 1
        return resolved

    # ===== Budget =====

    async def save_budget_ledger(self, ledger: BudgetLedger) -> None:
        stored = copy.copy(ledger)
        stored.updated_at = utc_now()
        self.ledgers[(ledger.scope, ledger.run_seq)] = stored

    async def get_budget_ledger(self, scope: str, run_seq: Optional[int] = None) -> Optional[BudgetLedger]:
        if run_seq is not None:
            ledger = self.ledgers.get((scope, run_seq))
            return copy.copy(ledger) if ledger else None
        runs = [seq for (s, seq) in self.ledgers if s == scope]
        if not runs:
            return None
        return copy.copy(self.ledgers[(scope, max(runs))])
