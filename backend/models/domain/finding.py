"""
Finding domain model - supervisor-produced issue for human triage

Findings are deduplicated on (target_id, finding_type) while open, so a
repeated sweep over an unchanged graph does not pile up duplicates.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from utils.datetime_utils import neo4j_datetime_to_python


class FindingType(Enum):
    EMPTY_STORY = "empty_story"
    ORPHANED_HUB = "orphaned_hub"
    ABANDONED_INVESTIGATION = "abandoned_investigation"
    ECHO_STORY = "echo_story"
    REFINEMENT_NEEDED = "refinement_needed"


class FindingSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class FindingStatus(Enum):
    OPEN = "open"
    DISMISSED = "dismissed"
    RESOLVED = "resolved"


@dataclass
class Finding:
    """
    ID format: fd_xxxxxxxx
    """
    id: str
    scope: str
    finding_type: FindingType
    target_id: str
    description: str = ""
    severity: FindingSeverity = FindingSeverity.INFO
    status: FindingStatus = FindingStatus.OPEN
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.finding_type, FindingType):
            self.finding_type = FindingType(self.finding_type)
        if not isinstance(self.severity, FindingSeverity):
            self.severity = FindingSeverity(self.severity)
        if not isinstance(self.status, FindingStatus):
            self.status = FindingStatus(self.status)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'scope': self.scope,
            'finding_type': self.finding_type.value,
            'target_id': self.target_id,
            'description': self.description,
            'severity': self.severity.value,
            'status': self.status.value,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
        }

    @classmethod
    def from_neo4j_row(cls, row: dict) -> 'Finding':
        return cls(
            id=row['id'],
            scope=row.get('scope') or "",
            finding_type=row['finding_type'],
            target_id=row.get('target_id') or "",
            description=row.get('description') or "",
            severity=row.get('severity') or FindingSeverity.INFO.value,
            status=row.get('status') or FindingStatus.OPEN.value,
            created_at=neo4j_datetime_to_python(row.get('created_at')),
            resolved_at=neo4j_datetime_to_python(row.get('resolved_at')),
        )
