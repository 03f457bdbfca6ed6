"""
Domain Models - Storage-agnostic data structures

These models represent the weave's entities independent of storage layer.
The engine, workers and API operate on these models, not raw database rows.

Architecture:
- Domain models are pure Python objects (dataclasses)
- Storage details (Neo4j) are abstracted behind the GraphStore protocol
- Story is derived data, regenerable from Tension + RESPONDS_TO edges
"""

from .signal import Signal, SignalType, Evidence
from .tension import Tension, Respondent
from .story import Story, StoryMembership, Arc, StoryStatus
from .curiosity import CuriosityOutcome, CuriosityState, outcome_key
from .finding import Finding, FindingType, FindingSeverity, FindingStatus
from .scope import ScopeState, Phase, IDLE, COMPLETE, is_running

__all__ = [
    # Graph nodes
    'Signal',
    'SignalType',
    'Evidence',
    'Tension',
    'Respondent',

    # Materialized views
    'Story',
    'StoryMembership',
    'Arc',
    'StoryStatus',

    # Investigation
    'CuriosityOutcome',
    'CuriosityState',
    'outcome_key',

    # Supervisor
    'Finding',
    'FindingType',
    'FindingSeverity',
    'FindingStatus',

    # Run lock
    'ScopeState',
    'Phase',
    'IDLE',
    'COMPLETE',
    'is_running',
]
