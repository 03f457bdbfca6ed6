"""
Scope domain model - durable per-scope run lock and phase status

The status string doubles as the run lock: while it reads running_<phase>
no other run may start for the scope. It is stored beside the graph so
that distributed workers observe the same lock.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from utils.datetime_utils import neo4j_datetime_to_python


IDLE = "idle"
COMPLETE = "complete"
RUNNING_PREFIX = "running_"


class Phase(Enum):
    BOOTSTRAP = "bootstrap"
    SCRAPE = "scrape"
    SYNTHESIS = "synthesis"
    SITUATION_WEAVER = "situation_weaver"
    SUPERVISOR = "supervisor"
    FULL_RUN = "full_run"

    @classmethod
    def parse(cls, value) -> 'Phase':
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value == text or member.name.lower() == text:
                return member
        raise ValueError(f"Unknown phase: {value!r}")

    @property
    def running_status(self) -> str:
        return f"{RUNNING_PREFIX}{self.value}"

    @property
    def complete_status(self) -> str:
        if self is Phase.FULL_RUN:
            return COMPLETE
        return f"{self.value}_complete"


def is_running(status: Optional[str]) -> bool:
    return bool(status) and status.startswith(RUNNING_PREFIX)


@dataclass
class ScopeState:
    scope: str
    status: str = IDLE
    run_seq: int = 0
    stop_requested: bool = False
    updated_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return is_running(self.status)

    def to_dict(self) -> dict:
        return {
            'scope': self.scope,
            'status': self.status,
            'run_seq': self.run_seq,
            'stop_requested': self.stop_requested,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_neo4j_row(cls, row: dict) -> 'ScopeState':
        return cls(
            scope=row['scope'],
            status=row.get('status') or IDLE,
            run_seq=row.get('run_seq') or 0,
            stop_requested=bool(row.get('stop_requested')),
            updated_at=neo4j_datetime_to_python(row.get('updated_at')),
        )
