"""
Run budget ledger.

A monotonically-decreasing allowance for expensive calls in one run.
limit_cents == 0 means unlimited. Spending happens on attempt, so a
failed call still consumes budget.
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional

from utils.datetime_utils import neo4j_datetime_to_python, utc_now


@dataclass
class BudgetLedger:
    scope: str
    run_seq: int = 0
    limit_cents: int = 0
    spent_cents: int = 0
    calls: int = 0
    updated_at: Optional[datetime] = None

    @property
    def unlimited(self) -> bool:
        return self.limit_cents <= 0

    @property
    def remaining_cents(self) -> Optional[int]:
        """None when unlimited."""
        if self.unlimited:
            return None
        return max(self.limit_cents - self.spent_cents, 0)

    def has_budget(self, cost_cents: int) -> bool:
        if self.unlimited:
            return True
        return self.spent_cents + cost_cents <= self.limit_cents

    def spend(self, cost_cents: int) -> None:
        """Record a spend. Recorded even if it overshoots the limit."""
        self.spent_cents += cost_cents
        self.calls += 1
        self.updated_at = utc_now()

    def try_spend(self, cost_cents: int) -> bool:
        if not self.has_budget(cost_cents):
            return False
        self.spend(cost_cents)
        return True

    def to_dict(self) -> dict:
        data = asdict(self)
        data['remaining_cents'] = self.remaining_cents
        data['unlimited'] = self.unlimited
        data['updated_at'] = self.updated_at.isoformat() if self.updated_at else None
        return data

    @classmethod
    def from_neo4j_row(cls, row: dict) -> 'BudgetLedger':
        return cls(
            scope=row['scope'],
            run_seq=row.get('run_seq') or 0,
            limit_cents=row.get('limit_cents') or 0,
            spent_cents=row.get('spent_cents') or 0,
            calls=row.get('calls') or 0,
            updated_at=neo4j_datetime_to_python(row.get('updated_at')),
        )
