"""
CuriosityInvestigator - bounded-retry research for thin tensions.

A tension is thin when its evidence is one-sided: respondents from fewer
than two distinct sources, or respondents that all share one signal
type. Its strongest respondent (or the signal it was extracted from) is
paired with it and handed to the external investigator.

Per-pair lifecycle, persisted as CuriosityOutcome:

    pending -> in_progress -> done | skipped
    in_progress -> failed(n)                 (error or timeout)
    failed(max_attempts) -> abandoned         (promoted at the start of the next pass)

A pair is attempted at most once per run; retries happen on later runs.
Abandoned pairs are counted as coverage gaps and never retried.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Set, Tuple

from models.domain import (
    CuriosityOutcome,
    CuriosityState,
    Respondent,
    Signal,
    SignalType,
    Tension,
)
from utils.url_utils import source_key
from weave.budget import BudgetLedger
from weave.store import GraphStore
from weave.types import WeaveParams

logger = logging.getLogger(__name__)

POOL_PER_TYPE = 5


# =============================================================================
# Investigator contract (implemented by services.investigator)
# =============================================================================

@dataclass
class InvestigationRequest:
    tension: Tension
    anchor: Signal
    respondents: List[Respondent]
    candidates: List[Signal]


@dataclass
class DiscoveredRespondent:
    signal_id: str
    strength: float = 0.5
    explanation: str = ""


@dataclass
class InvestigationResult:
    curious: bool
    respondents: List[DiscoveredRespondent] = field(default_factory=list)
    reason: str = ""


class Investigator(Protocol):
    async def investigate(self, request: InvestigationRequest) -> InvestigationResult:
        """Raise on error or timeout; the caller records Failed(n)."""
        ...


# =============================================================================
# Investigator driver
# =============================================================================

@dataclass
class CuriosityReport:
    attempted: int = 0
    done: int = 0
    skipped: int = 0
    failed: int = 0
    newly_abandoned: int = 0
    total_abandoned: int = 0
    edges_created: int = 0
    budget_exhausted: bool = False

    def to_dict(self) -> dict:
        return {
            'attempted': self.attempted,
            'done': self.done,
            'skipped': self.skipped,
            'failed': self.failed,
            'newly_abandoned': self.newly_abandoned,
            'total_abandoned': self.total_abandoned,
            'edges_created': self.edges_created,
            'budget_exhausted': self.budget_exhausted,
        }


def is_thin(respondents: List[Respondent], source_key_mode: str = 'domain') -> bool:
    """One-sided evidence: fewer than two sources, or a single signal type."""
    keys = {source_key(r.signal.source_url, source_key_mode) for r in respondents}
    keys.discard('')
    types = {r.signal.signal_type for r in respondents}
    return len(keys) < 2 or len(types) <= 1


class CuriosityInvestigator:

    def __init__(
        self,
        store: GraphStore,
        investigator: Investigator,
        params: Optional[WeaveParams] = None,
    ):
        self.store = store
        self.investigator = investigator
        self.params = params or WeaveParams()

    async def run(
        self,
        scope: str,
        run_seq: int,
        ledger: Optional[BudgetLedger] = None,
    ) -> CuriosityReport:
        report = CuriosityReport()
        await self._settle_previous_runs(scope, report)

        attempted: Set[str] = set()
        for anchor_id, tension, respondents in await self.find_candidates(scope):
            if report.attempted >= self.params.curiosity_max_per_run:
                break

            outcome = await self.store.get_curiosity_outcome(anchor_id, tension.id)
            if outcome is None:
                outcome = CuriosityOutcome(signal_id=anchor_id, tension_id=tension.id, scope=scope)
            if outcome.key in attempted or not outcome.is_retryable:
                continue

            cost = self.params.investigation_cost_cents
            if ledger is not None and not ledger.has_budget(cost):
                report.budget_exhausted = True
                logger.info(f"💸 Curiosity budget exhausted for {scope}")
                break
            if ledger is not None:
                ledger.spend(cost)

            attempted.add(outcome.key)
            report.attempted += 1
            await self._attempt(outcome, tension, respondents, run_seq, report)

        report.total_abandoned = len(
            await self.store.list_curiosity_outcomes(scope, [CuriosityState.ABANDONED])
        )
        if report.total_abandoned:
            logger.info(f"🕳️  {report.total_abandoned} abandoned investigations in {scope} (coverage gaps)")

        logger.info(
            f"🔬 Curiosity for {scope}: {report.attempted} attempted, {report.done} done, "
            f"{report.skipped} skipped, {report.failed} failed, {report.newly_abandoned} newly abandoned"
        )
        return report

    async def _settle_previous_runs(self, scope: str, report: CuriosityReport) -> None:
        """
        An in_progress left by a crashed run counts as a failed attempt.
        Failed pairs at the attempt cap become abandoned.
        """
        stale = await self.store.list_curiosity_outcomes(
            scope, [CuriosityState.IN_PROGRESS, CuriosityState.FAILED]
        )
        for outcome in stale:
            changed = False
            if outcome.state is CuriosityState.IN_PROGRESS:
                outcome.state = CuriosityState.FAILED
                outcome.last_error = outcome.last_error or "interrupted"
                changed = True
            if (outcome.state is CuriosityState.FAILED
                    and outcome.attempt_count >= self.params.curiosity_max_attempts):
                outcome.state = CuriosityState.ABANDONED
                report.newly_abandoned += 1
                changed = True
                logger.warning(
                    f"🛑 Abandoned investigation {outcome.key} after {outcome.attempt_count} attempts"
                )
            if changed:
                await self.store.save_curiosity_outcome(outcome)

    async def _attempt(
        self,
        outcome: CuriosityOutcome,
        tension: Tension,
        respondents: List[Respondent],
        run_seq: int,
        report: CuriosityReport,
    ) -> None:
        outcome.state = CuriosityState.IN_PROGRESS
        outcome.attempt_count += 1
        outcome.last_run_seq = run_seq
        await self.store.save_curiosity_outcome(outcome)

        anchor = await self.store.get_signal(outcome.signal_id)
        try:
            if anchor is None:
                raise LookupError(f"anchor signal {outcome.signal_id} not found")
            candidates = await self._candidate_pool(anchor, tension, respondents)
            result = await self.investigator.investigate(InvestigationRequest(
                tension=tension,
                anchor=anchor,
                respondents=respondents,
                candidates=candidates,
            ))
        except Exception as e:
            outcome.state = CuriosityState.FAILED
            outcome.last_error = str(e) or type(e).__name__
            await self.store.save_curiosity_outcome(outcome)
            report.failed += 1
            logger.warning(
                f"⚠️  Investigation {outcome.key} failed "
                f"(attempt {outcome.attempt_count}/{self.params.curiosity_max_attempts}): {outcome.last_error}"
            )
            return

        if not result.curious:
            outcome.state = CuriosityState.SKIPPED
            report.skipped += 1
        else:
            allowed = {s.id for s in candidates}
            for found in result.respondents:
                if found.signal_id not in allowed:
                    logger.debug(f"Ignoring unknown respondent {found.signal_id} for {tension.id}")
                    continue
                if await self.store.add_responds_to(
                    found.signal_id, tension.id, found.strength, found.explanation,
                ):
                    report.edges_created += 1
            outcome.state = CuriosityState.DONE
            report.done += 1

        outcome.last_error = None
        await self.store.save_curiosity_outcome(outcome)

    async def find_candidates(self, scope: str) -> List[Tuple[str, Tension, List[Respondent]]]:
        """(anchor_signal_id, tension, respondents) for every thin tension in scope."""
        found = []
        for tension in await self.store.list_tensions(scope):
            respondents = await self.store.get_respondents(tension.id)
            if respondents:
                if not is_thin(respondents, self.params.source_key):
                    continue
                anchor = max(respondents, key=lambda r: (r.strength, r.signal_id)).signal_id
            elif tension.origin_signal_id:
                anchor = tension.origin_signal_id
            else:
                continue
            found.append((anchor, tension, respondents))
        found.sort(key=lambda item: item[1].id)
        return found

    async def _candidate_pool(
        self,
        anchor: Signal,
        tension: Tension,
        respondents: List[Respondent],
    ) -> List[Signal]:
        """Nearby signals of every type that do not already respond to the tension."""
        if not anchor.embedding:
            return []
        excluded = {r.signal_id for r in respondents} | {anchor.id}
        pool: Dict[str, Signal] = {}
        for signal_type in SignalType:
            for signal, _ in await self.store.find_similar_signals(
                tension.scope or anchor.scope, signal_type, anchor.embedding, limit=POOL_PER_TYPE,
            ):
                if signal.id not in excluded:
                    pool[signal.id] = signal
        return list(pool.values())
