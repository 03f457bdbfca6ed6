"""
Story domain model - materialized view of one Tension and its respondents

A Story is derived data. The source of truth is the Tension node and its
RESPONDS_TO edges; every field here can be regenerated from them by the
materializer and grower.

Neo4j shape:
- (:Story)-[:CONTAINS]->(:Tension)                        exactly one, primary
- (:Story)-[:CONTAINS {linked_at, run_seq}]->(:Signal)    add-only
- (:Tension)-[:ABSORBED_INTO]->(:Story)                   hubs folded in by overlap
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from utils.datetime_utils import neo4j_datetime_to_python


class Arc(Enum):
    """Story lifecycle stage."""
    EMERGING = "emerging"
    GROWING = "growing"
    STABLE = "stable"
    FADING = "fading"
    RESURGENT = "resurgent"
    COLD = "cold"

    @property
    def is_quiet(self) -> bool:
        return self in (Arc.FADING, Arc.COLD)


class StoryStatus(Enum):
    """Corroboration status derived from type and source diversity."""
    EMERGING = "emerging"
    CONFIRMED = "confirmed"
    ECHO = "echo"


@dataclass
class Story:
    """
    Story view.

    ID format: st_xxxxxxxx
    """
    id: str
    tension_id: str
    scope: str = ""

    headline: str = ""
    summary: str = ""
    lede: Optional[str] = None
    narrative: Optional[str] = None

    arc: Arc = Arc.EMERGING
    status: StoryStatus = StoryStatus.EMERGING
    energy: float = 0.0

    signal_count: int = 0
    type_diversity: int = 0
    source_domain_count: int = 0

    synthesis_pending: bool = True
    needs_refinement: bool = False

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_synthesized_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.arc, Arc):
            self.arc = Arc(self.arc)
        if not isinstance(self.status, StoryStatus):
            self.status = StoryStatus(self.status)

    def __hash__(self):
        return hash(self.id)

    @property
    def is_multi_perspective(self) -> bool:
        """Mixed respondent types: synthesis must keep perspectives apart."""
        return self.type_diversity > 1

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tension_id': self.tension_id,
            'scope': self.scope,
            'headline': self.headline,
            'summary': self.summary,
            'lede': self.lede,
            'narrative': self.narrative,
            'arc': self.arc.value,
            'status': self.status.value,
            'energy': round(self.energy, 4),
            'signal_count': self.signal_count,
            'type_diversity': self.type_diversity,
            'source_domain_count': self.source_domain_count,
            'synthesis_pending': self.synthesis_pending,
            'needs_refinement': self.needs_refinement,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'last_synthesized_at': self.last_synthesized_at.isoformat() if self.last_synthesized_at else None,
        }

    @classmethod
    def from_neo4j_row(cls, row: dict) -> 'Story':
        return cls(
            id=row['id'],
            tension_id=row.get('tension_id') or "",
            scope=row.get('scope') or "",
            headline=row.get('headline') or "",
            summary=row.get('summary') or "",
            lede=row.get('lede'),
            narrative=row.get('narrative'),
            arc=row.get('arc') or Arc.EMERGING.value,
            status=row.get('status') or StoryStatus.EMERGING.value,
            energy=row.get('energy') or 0.0,
            signal_count=row.get('signal_count') or 0,
            type_diversity=row.get('type_diversity') or 0,
            source_domain_count=row.get('source_domain_count') or 0,
            synthesis_pending=bool(row.get('synthesis_pending')),
            needs_refinement=bool(row.get('needs_refinement')),
            created_at=neo4j_datetime_to_python(row.get('created_at')),
            updated_at=neo4j_datetime_to_python(row.get('updated_at')),
            last_synthesized_at=neo4j_datetime_to_python(row.get('last_synthesized_at')),
        )


@dataclass
class StoryMembership:
    """A CONTAINS edge from a story to one signal."""
    story_id: str
    signal_id: str
    run_seq: int
    linked_at: Optional[datetime] = None
