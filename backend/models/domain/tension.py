"""
Tension domain model - an unresolved situation that signals respond to

A Tension is the hub of a potential Story. It accumulates RESPONDS_TO
edges over time; once two or more distinct sources respond, the
materializer turns it into a Story.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from utils.datetime_utils import neo4j_datetime_to_python
from .signal import Signal


@dataclass
class Tension:
    """
    Tension hub node.

    ID format: tn_xxxxxxxx
    """
    id: str
    title: str
    summary: str = ""
    severity: str = "medium"
    category: Optional[str] = None
    scope: str = ""

    # Tension-typed signal this hub was extracted from (if any)
    origin_signal_id: Optional[str] = None

    created_at: Optional[datetime] = None

    def __hash__(self):
        return hash(self.id)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'summary': self.summary,
            'severity': self.severity,
            'category': self.category,
            'scope': self.scope,
            'origin_signal_id': self.origin_signal_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_neo4j_row(cls, row: dict) -> 'Tension':
        return cls(
            id=row['id'],
            title=row.get('title') or "",
            summary=row.get('summary') or "",
            severity=row.get('severity') or "medium",
            category=row.get('category'),
            scope=row.get('scope') or "",
            origin_signal_id=row.get('origin_signal_id'),
            created_at=neo4j_datetime_to_python(row.get('created_at')),
        )


@dataclass
class Respondent:
    """A signal together with its RESPONDS_TO edge onto one tension."""
    signal: Signal
    tension_id: str
    strength: float = 0.0
    explanation: str = ""
    created_at: Optional[datetime] = None

    @property
    def signal_id(self) -> str:
        return self.signal.id
