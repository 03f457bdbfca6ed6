"""
Signal Weave Engine
===================

Incrementally reconciles civic signals into a graph and lets Stories
emerge from tension hubs. The graph is mutated, never rebuilt; Stories
are derived views that can always be regenerated from Tension +
RESPONDS_TO edges.

ARCHITECTURE (one run per scope):
    Candidates -> Reconciler            -> Signals (Created / Deduplicated / Corroborated)
               -> StoryMaterializer (A) -> Stories from tension hubs
               -> StoryGrower (B)       -> membership, metrics, arc
               -> CuriosityInvestigator -> RESPONDS_TO for thin tensions (bounded retries)
               -> EnrichmentScheduler (C) -> lede/narrative under a run budget
               -> Supervisor            -> Findings

PUBLIC API:
- WeaveService: command/query facade (reconcile, run_phase, reset_scope_lock, findings, budget)
- GraphStore: storage protocol; InMemoryGraphStore for tests
- classify_arc: pure arc state machine
"""

from .types import (
    WeaveParams,
    CandidateSignal,
    ResponseHint,
    ReconcileOutcome,
    OutcomeKind,
    TensionHub,
    PhaseReport,
)
from .errors import (
    WeaveError,
    ScopeBusyError,
    PhaseNotEnabledError,
    NotFoundError,
    EmbeddingUnavailableError,
    InvestigationError,
    SynthesisError,
    RunStopped,
)
from .budget import BudgetLedger
from .store import GraphStore
from .memory_store import InMemoryGraphStore
from .arc import classify_arc, arrival_history
from .reconciler import Reconciler
from .hubs import TensionHubFinder
from .materializer import StoryMaterializer
from .grower import StoryGrower
from .curiosity import (
    CuriosityInvestigator,
    Investigator,
    InvestigationRequest,
    InvestigationResult,
    DiscoveredRespondent,
)
from .enrichment import (
    EnrichmentScheduler,
    Synthesizer,
    SynthesisRequest,
    SynthesisResult,
)
from .supervisor import Supervisor
from .phases import phase_enabled, PHASE_ORDER
from .service import WeaveService

__all__ = [
    # Types
    'WeaveParams',
    'CandidateSignal',
    'ResponseHint',
    'ReconcileOutcome',
    'OutcomeKind',
    'TensionHub',
    'PhaseReport',
    'BudgetLedger',

    # Errors
    'WeaveError',
    'ScopeBusyError',
    'PhaseNotEnabledError',
    'NotFoundError',
    'EmbeddingUnavailableError',
    'InvestigationError',
    'SynthesisError',
    'RunStopped',

    # Storage
    'GraphStore',
    'InMemoryGraphStore',

    # Engine
    'classify_arc',
    'arrival_history',
    'Reconciler',
    'TensionHubFinder',
    'StoryMaterializer',
    'StoryGrower',
    'CuriosityInvestigator',
    'Investigator',
    'InvestigationRequest',
    'InvestigationResult',
    'DiscoveredRespondent',
    'EnrichmentScheduler',
    'Synthesizer',
    'SynthesisRequest',
    'SynthesisResult',
    'Supervisor',
    'phase_enabled',
    'PHASE_ORDER',
    'WeaveService',
]
