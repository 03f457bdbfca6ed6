"""
Core weave types.

Candidate payloads, reconciliation outcomes, tension hubs and the
policy parameters every phase reads. Graph entities themselves live in
models.domain.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Set, Dict, Any

from models.domain import Signal, SignalType, Tension, Respondent
from utils.datetime_utils import neo4j_datetime_to_python


# =============================================================================
# PARAMETERS
# =============================================================================

@dataclass
class WeaveParams:
    """
    Policy constants for one weave.

    The absorption (0.5) and mega-tension (30) values are operating
    policy, not derived quantities, so they are configurable via
    WEAVE_* settings.
    """
    # Reconciliation bands
    dedup_threshold: float = 0.85
    corroborate_threshold: float = 0.92
    max_confidence_boost: float = 0.3
    similar_candidates: int = 5

    # Hub / story thresholds
    source_key: str = "domain"
    min_respondents: int = 2
    min_sources: int = 2
    absorption_threshold: float = 0.5
    mega_tension_threshold: int = 30

    # Arc, in runs
    fading_after_quiet_runs: int = 3
    cold_after_quiet_runs: int = 6
    sustain_runs: int = 2

    # Curiosity
    curiosity_max_attempts: int = 3
    curiosity_max_per_run: int = 10

    # Budget, cents (0 = unlimited)
    run_budget_cents: int = 0
    synthesis_cost_cents: int = 10
    investigation_cost_cents: int = 5

    # Supervisor
    finding_expiry_days: int = 30

    @classmethod
    def from_settings(cls, settings=None) -> 'WeaveParams':
        """Build params from config.settings (WEAVE_* env vars)."""
        if settings is None:
            from config.settings import get_settings
            settings = get_settings()
        return cls(
            dedup_threshold=settings.weave_dedup_threshold,
            corroborate_threshold=settings.weave_corroborate_threshold,
            max_confidence_boost=settings.weave_max_confidence_boost,
            source_key=settings.weave_source_key,
            min_respondents=settings.weave_min_respondents,
            min_sources=settings.weave_min_sources,
            absorption_threshold=settings.weave_absorption_threshold,
            mega_tension_threshold=settings.weave_mega_tension_threshold,
            fading_after_quiet_runs=settings.weave_fading_after_quiet_runs,
            cold_after_quiet_runs=settings.weave_cold_after_quiet_runs,
            sustain_runs=settings.weave_sustain_runs,
            curiosity_max_attempts=settings.weave_curiosity_max_attempts,
            curiosity_max_per_run=settings.weave_curiosity_max_per_run,
            run_budget_cents=settings.weave_run_budget_cents,
            synthesis_cost_cents=settings.weave_synthesis_cost_cents,
            investigation_cost_cents=settings.weave_investigation_cost_cents,
            finding_expiry_days=settings.weave_finding_expiry_days,
        )


# =============================================================================
# CANDIDATES (from the extraction service)
# =============================================================================

@dataclass
class ResponseHint:
    """A RESPONDS_TO edge proposed by extraction for a candidate."""
    tension_id: str
    strength: float = 0.5
    explanation: str = ""

    def to_dict(self) -> dict:
        return {'tension_id': self.tension_id, 'strength': self.strength, 'explanation': self.explanation}


@dataclass
class CandidateSignal:
    """
    Candidate signal payload as produced by extraction.

    {type, title, summary, confidence, embedding, source_url,
     content_date, actors[], scope, responds_to[]}
    """
    signal_type: SignalType
    title: str
    source_url: str
    scope: str
    summary: str = ""
    confidence: float = 0.5
    embedding: Optional[List[float]] = field(default=None, repr=False)
    content_date: Optional[datetime] = None
    actors: List[str] = field(default_factory=list)
    responds_to: List[ResponseHint] = field(default_factory=list)

    def __post_init__(self):
        self.signal_type = SignalType.parse(self.signal_type)
        self.confidence = min(max(float(self.confidence), 0.0), 1.0)
        self.content_date = neo4j_datetime_to_python(self.content_date)

    def to_signal(self, signal_id: str) -> Signal:
        return Signal(
            id=signal_id,
            signal_type=self.signal_type,
            title=self.title,
            summary=self.summary,
            confidence=self.confidence,
            base_confidence=self.confidence,
            embedding=self.embedding,
            source_url=self.source_url,
            content_date=self.content_date,
            actors=list(self.actors),
            scope=self.scope,
        )

    def to_dict(self) -> dict:
        return {
            'type': self.signal_type.value,
            'title': self.title,
            'summary': self.summary,
            'confidence': self.confidence,
            'embedding': self.embedding,
            'source_url': self.source_url,
            'content_date': self.content_date.isoformat() if self.content_date else None,
            'actors': list(self.actors),
            'scope': self.scope,
            'responds_to': [r.to_dict() for r in self.responds_to],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], scope: Optional[str] = None) -> 'CandidateSignal':
        """Parse a queue/API payload. `scope` overrides the payload's scope."""
        return cls(
            signal_type=payload.get('type') or payload['signal_type'],
            title=payload.get('title') or "",
            summary=payload.get('summary') or "",
            confidence=payload.get('confidence', 0.5),
            embedding=payload.get('embedding'),
            source_url=payload.get('source_url') or "",
            content_date=neo4j_datetime_to_python(payload.get('content_date')),
            actors=list(payload.get('actors') or []),
            scope=scope or payload.get('scope') or "",
            responds_to=[
                ResponseHint(
                    tension_id=r['tension_id'],
                    strength=float(r.get('strength', 0.5)),
                    explanation=r.get('explanation') or "",
                )
                for r in payload.get('responds_to') or []
            ],
        )


# =============================================================================
# RECONCILIATION
# =============================================================================

class OutcomeKind(Enum):
    CREATED = "created"
    DEDUPLICATED = "deduplicated"
    CORROBORATED = "corroborated"


@dataclass
class ReconcileOutcome:
    """
    Created(signal_id) | Deduplicated(into=signal_id) | Corroborated(signal_id, evidence_added)
    """
    kind: OutcomeKind
    signal_id: str
    similarity: Optional[float] = None
    evidence_added: bool = False
    responses_linked: int = 0

    @property
    def into(self) -> Optional[str]:
        return self.signal_id if self.kind is OutcomeKind.DEDUPLICATED else None

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'signal_id': self.signal_id,
            'similarity': self.similarity,
            'evidence_added': self.evidence_added,
            'responses_linked': self.responses_linked,
        }


# =============================================================================
# HUBS
# =============================================================================

@dataclass
class TensionHub:
    """A storyless tension whose respondents cleared the existence threshold."""
    tension: Tension
    respondents: List[Respondent]
    source_keys: Set[str] = field(default_factory=set)

    @property
    def tension_id(self) -> str:
        return self.tension.id

    @property
    def signal_ids(self) -> Set[str]:
        return {r.signal_id for r in self.respondents}


# =============================================================================
# RUN REPORTS
# =============================================================================

@dataclass
class PhaseReport:
    """What one run_phase call did. Returned to the API/worker."""
    scope: str
    phase: str
    status: str
    run_seq: int = 0
    stopped: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'scope': self.scope,
            'phase': self.phase,
            'status': self.status,
            'run_seq': self.run_seq,
            'stopped': self.stopped,
            'details': self.details,
        }
