"""
Signal domain model - a typed, sourced observation

A Signal is produced by the extraction service and reconciled into the
graph by the Reconciler. After creation only confidence, corroboration
count and source diversity change.

Neo4j shape:
- (:Signal {id, signal_type, title, summary, confidence, ...})
- (:Signal)-[:SOURCED_FROM]->(:Evidence {source_url, source_domain})
- (:Signal)-[:RESPONDS_TO {strength, explanation}]->(:Tension)
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List

from utils.datetime_utils import neo4j_datetime_to_python
from utils.url_utils import extract_domain


class SignalType(Enum):
    """Closed set of signal kinds."""
    GATHERING = "gathering"
    AID = "aid"
    NEED = "need"
    NOTICE = "notice"
    TENSION = "tension"

    @classmethod
    def parse(cls, value) -> 'SignalType':
        """Accept enum members, values, or names in any case."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value == text:
                return member
        raise ValueError(f"Unknown signal type: {value!r}")


@dataclass
class Evidence:
    """One independent attestation of a signal (merged by source_url)."""
    source_url: str
    source_domain: str = ""
    similarity: Optional[float] = None
    retrieved_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.source_domain:
            self.source_domain = extract_domain(self.source_url)


@dataclass
class Signal:
    """
    Signal - storage-agnostic representation.

    ID format: sg_xxxxxxxx (11 chars)
    """
    id: str
    signal_type: SignalType
    title: str
    summary: str = ""

    # Confidence: base_confidence is what extraction reported,
    # confidence is base plus a bounded corroboration boost
    confidence: float = 0.5
    base_confidence: Optional[float] = None

    embedding: Optional[List[float]] = field(default=None, repr=False)

    source_url: str = ""
    source_domain: str = ""
    content_date: Optional[datetime] = None
    actors: List[str] = field(default_factory=list)
    scope: str = ""

    corroboration_count: int = 0
    source_diversity: int = 1
    superseded_by: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.signal_type = SignalType.parse(self.signal_type)
        self.content_date = neo4j_datetime_to_python(self.content_date)
        self.created_at = neo4j_datetime_to_python(self.created_at)
        if self.base_confidence is None:
            self.base_confidence = self.confidence
        if not self.source_domain and self.source_url:
            self.source_domain = extract_domain(self.source_url)

    def __hash__(self):
        return hash(self.id)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'signal_type': self.signal_type.value,
            'title': self.title,
            'summary': self.summary,
            'confidence': self.confidence,
            'base_confidence': self.base_confidence,
            'source_url': self.source_url,
            'source_domain': self.source_domain,
            'content_date': self.content_date.isoformat() if self.content_date else None,
            'actors': list(self.actors),
            'scope': self.scope,
            'corroboration_count': self.corroboration_count,
            'source_diversity': self.source_diversity,
            'superseded_by': self.superseded_by,
        }

    @classmethod
    def from_neo4j_row(cls, row: dict) -> 'Signal':
        """Create Signal from a row returned as `s {.*}` or flattened aliases."""
        return cls(
            id=row['id'],
            signal_type=row['signal_type'],
            title=row.get('title') or "",
            summary=row.get('summary') or "",
            confidence=row.get('confidence') if row.get('confidence') is not None else 0.5,
            base_confidence=row.get('base_confidence'),
            embedding=row.get('embedding'),
            source_url=row.get('source_url') or "",
            source_domain=row.get('source_domain') or "",
            content_date=neo4j_datetime_to_python(row.get('content_date')),
            actors=list(row.get('actors') or []),
            scope=row.get('scope') or "",
            corroboration_count=row.get('corroboration_count') or 0,
            source_diversity=row.get('source_diversity') or 1,
            superseded_by=row.get('superseded_by'),
            created_at=neo4j_datetime_to_python(row.get('created_at')),
            updated_at=neo4j_datetime_to_python(row.get('updated_at')),
        )
