"""
CuriosityOutcome domain model - bounded-retry investigation state

One outcome per (signal, tension) pair. The attempt count is carried in
the record itself so it survives process restarts and scheduling cycles:

    pending -> in_progress -> done | skipped
                           -> failed(1) -> failed(2) -> failed(3) -> abandoned

abandoned is terminal and is never re-attempted.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from utils.datetime_utils import neo4j_datetime_to_python


class CuriosityState(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (CuriosityState.DONE, CuriosityState.SKIPPED, CuriosityState.ABANDONED)


def outcome_key(signal_id: str, tension_id: str) -> str:
    """Stable identity of an investigation pair."""
    return f"{signal_id}:{tension_id}"


@dataclass
class CuriosityOutcome:
    signal_id: str
    tension_id: str
    scope: str = ""
    state: CuriosityState = CuriosityState.PENDING
    attempt_count: int = 0
    last_error: Optional[str] = None
    last_run_seq: Optional[int] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.state, CuriosityState):
            self.state = CuriosityState(self.state)

    @property
    def key(self) -> str:
        return outcome_key(self.signal_id, self.tension_id)

    @property
    def is_retryable(self) -> bool:
        return self.state in (CuriosityState.PENDING, CuriosityState.FAILED)

    def to_dict(self) -> dict:
        return {
            'key': self.key,
            'signal_id': self.signal_id,
            'tension_id': self.tension_id,
            'scope': self.scope,
            'state': self.state.value,
            'attempt_count': self.attempt_count,
            'last_error': self.last_error,
            'last_run_seq': self.last_run_seq,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_neo4j_row(cls, row: dict) -> 'CuriosityOutcome':
        return cls(
            signal_id=row['signal_id'],
            tension_id=row['tension_id'],
            scope=row.get('scope') or "",
            state=row.get('state') or CuriosityState.PENDING.value,
            attempt_count=row.get('attempt_count') or 0,
            last_error=row.get('last_error'),
            last_run_seq=row.get('last_run_seq'),
            updated_at=neo4j_datetime_to_python(row.get('updated_at')),
        )
