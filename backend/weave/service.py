"""
WeaveService - command/query facade over the weave engine.

Commands:
- reconcile(candidate)
- run_phase(scope, phase)       gated by the durable scope status
- reset_scope_lock(scope)       administrative override for a stuck run
- request_stop(scope)

Queries:
- get_scope_status, list_findings / dismiss_finding, get_budget,
  list_stories / get_story_detail

run_phase takes the scope lock with a compare-and-set on the status
(idle | X_complete -> running_X), fails fast when it cannot, and on any
exception or stop puts the status back to what it was. Graph writes
already committed by the phase stand.
"""
import logging
from typing import Iterable, List, Optional, Union

from models.domain import (
    Finding,
    FindingStatus,
    IDLE,
    Phase,
    ScopeState,
    Story,
    is_running,
)
from weave.budget import BudgetLedger
from weave.curiosity import CuriosityInvestigator, Investigator
from weave.enrichment import EnrichmentScheduler, Synthesizer
from weave.errors import NotFoundError, PhaseNotEnabledError, RunStopped, ScopeBusyError
from weave.grower import StoryGrower
from weave.materializer import StoryMaterializer
from weave.phases import PHASE_ORDER, allowed_statuses, phase_table
from weave.reconciler import Reconciler
from weave.store import GraphStore
from weave.supervisor import Supervisor
from weave.types import CandidateSignal, PhaseReport, ReconcileOutcome, WeaveParams

logger = logging.getLogger(__name__)


class WeaveService:

    def __init__(
        self,
        store: GraphStore,
        synthesizer: Optional[Synthesizer] = None,
        investigator: Optional[Investigator] = None,
        params: Optional[WeaveParams] = None,
    ):
        self.store = store
        self.params = params or WeaveParams()
        self.synthesizer = synthesizer
        self.investigator = investigator

        self.reconciler = Reconciler(store, self.params)
        self.materializer = StoryMaterializer(store, self.params)
        self.grower = StoryGrower(store, self.params)
        self.supervisor = Supervisor(store, self.params)
        self.curiosity = CuriosityInvestigator(store, investigator, self.params) if investigator else None
        self.enrichment = EnrichmentScheduler(store, synthesizer, self.params) if synthesizer else None

    # =========================================================================
    # Commands
    # =========================================================================

    async def reconcile(self, candidate: Union[CandidateSignal, dict]) -> ReconcileOutcome:
        if isinstance(candidate, dict):
            candidate = CandidateSignal.from_dict(candidate)
        return await self.reconciler.reconcile(candidate)

    async def run_phase(
        self,
        scope: str,
        phase: Union[Phase, str],
        candidates: Optional[Iterable[Union[CandidateSignal, dict]]] = None,
    ) -> PhaseReport:
        """
        Run one phase (or FULL_RUN) for a scope.

        Raises:
            ScopeBusyError: another run holds the scope
            PhaseNotEnabledError: prerequisite phases have not completed
        """
        phase = Phase.parse(phase)
        transitioned, before = await self.store.transition_scope_status(
            scope, allowed_statuses(phase), phase.running_status,
        )
        if not transitioned:
            if is_running(before):
                raise ScopeBusyError(scope, before)
            raise PhaseNotEnabledError(scope, phase.value, before)

        candidates = list(candidates or [])

        await self.store.set_stop_requested(scope, False)
        logger.info(f"🚀 [{scope}] {phase.value} started (from {before})")

        report = PhaseReport(scope=scope, phase=phase.value, status=phase.running_status)
        try:
            steps = PHASE_ORDER if phase is Phase.FULL_RUN else [phase]
            for step in steps:
                await self._execute(step, scope, report, candidates)
                await self._check_stop(scope)
        except RunStopped:
            await self.store.set_scope_status(scope, before)
            await self.store.set_stop_requested(scope, False)
            if candidates and 'scrape' not in report.details:
                await self._defer_unscraped(scope, candidates)
            report.stopped = True
            report.status = before
            logger.info(f"🛑 [{scope}] {phase.value} stopped, status restored to {before}")
            return report
        except Exception as e:
            await self.store.set_scope_status(scope, before)
            logger.error(f"❌ [{scope}] {phase.value} failed, status restored to {before}: {e}", exc_info=True)
            raise

        await self.store.set_scope_status(scope, phase.complete_status)
        report.status = phase.complete_status
        logger.info(f"✅ [{scope}] {phase.value} complete")
        return report

    async def _execute(
        self,
        phase: Phase,
        scope: str,
        report: PhaseReport,
        candidates: Optional[Iterable[Union[CandidateSignal, dict]]],
    ) -> None:
        if phase is Phase.BOOTSTRAP:
            await self.store.ensure_schema()
            state = await self.store.ensure_scope(scope)
            report.run_seq = state.run_seq
            report.details['bootstrap'] = {'run_seq': state.run_seq}

        elif phase is Phase.SCRAPE:
            deferred = await self.store.take_deferred_candidates(scope)
            batch: List[Union[CandidateSignal, dict]] = list(deferred) + list(candidates or [])
            batch_report = await self.reconciler.reconcile_batch(batch, scope)
            report.details['scrape'] = {**batch_report.to_dict(), 'retried_deferred': len(deferred)}

        elif phase is Phase.SYNTHESIS:
            run_seq = await self.store.increment_run_seq(scope)
            report.run_seq = run_seq
            materialized = await self.materializer.materialize(scope, run_seq)
            report.details['materialize'] = materialized.to_dict()
            await self._check_stop(scope)
            grown = await self.grower.grow(scope, run_seq)
            report.details['grow'] = grown.to_dict()

        elif phase is Phase.SITUATION_WEAVER:
            state = await self.store.ensure_scope(scope)
            report.run_seq = state.run_seq
            ledger = await self.store.get_budget_ledger(scope, state.run_seq) or BudgetLedger(
                scope=scope, run_seq=state.run_seq, limit_cents=self.params.run_budget_cents,
            )

            if self.curiosity:
                curiosity = await self.curiosity.run(scope, state.run_seq, ledger)
                report.details['curiosity'] = curiosity.to_dict()
                await self.store.save_budget_ledger(ledger)
                await self._check_stop(scope)
            else:
                report.details['curiosity'] = {'skipped': 'no investigator configured'}

            if self.enrichment:
                enrichment = await self.enrichment.run(
                    scope, ledger, should_stop=lambda: self._stop_requested(scope),
                )
                report.details['enrichment'] = enrichment.to_dict()
                await self.store.save_budget_ledger(ledger)
                if enrichment.stopped:
                    raise RunStopped(scope)
            else:
                report.details['enrichment'] = {'skipped': 'no synthesizer configured'}
                await self.store.save_budget_ledger(ledger)

            report.details['budget'] = ledger.to_dict()

        elif phase is Phase.SUPERVISOR:
            swept = await self.supervisor.sweep(scope)
            report.details['supervisor'] = swept.to_dict()

    async def _defer_unscraped(self, scope: str, candidates: List[Union[CandidateSignal, dict]]) -> None:
        """A stop before SCRAPE keeps the inbound batch for the next run."""
        for candidate in candidates:
            payload = candidate.to_dict() if isinstance(candidate, CandidateSignal) else candidate
            await self.store.defer_candidate(scope, payload, "run stopped before scrape")
        logger.info(f"📦 [{scope}] deferred {len(candidates)} unscraped candidates")

    async def _stop_requested(self, scope: str) -> bool:
        state = await self.store.get_scope(scope)
        return bool(state and state.stop_requested)

    async def _check_stop(self, scope: str) -> None:
        if await self._stop_requested(scope):
            raise RunStopped(scope)

    async def reset_scope_lock(self, scope: str) -> ScopeState:
        await self.store.ensure_scope(scope)
        await self.store.set_scope_status(scope, IDLE)
        await self.store.set_stop_requested(scope, False)
        logger.warning(f"🔓 [{scope}] scope lock reset to {IDLE}")
        return await self.store.get_scope(scope)

    async def request_stop(self, scope: str) -> ScopeState:
        state = await self.store.get_scope(scope)
        if state is None:
            raise NotFoundError(f"Unknown scope '{scope}'")
        await self.store.set_stop_requested(scope, True)
        logger.info(f"✋ [{scope}] stop requested (status={state.status})")
        return await self.store.get_scope(scope)

    async def dismiss_finding(self, finding_id: str) -> Finding:
        finding = await self.store.set_finding_status(finding_id, FindingStatus.DISMISSED)
        if finding is None:
            raise NotFoundError(f"Unknown finding '{finding_id}'")
        return finding

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_scope_status(self, scope: str) -> dict:
        state = await self.store.get_scope(scope) or ScopeState(scope=scope)
        return {**state.to_dict(), 'phase_enabled': phase_table(state.status)}

    async def list_findings(self, scope: str, status: Optional[Union[FindingStatus, str]] = None) -> List[Finding]:
        if status is not None and not isinstance(status, FindingStatus):
            status = FindingStatus(status)
        return await self.store.list_findings(scope, status)

    async def get_budget(self, scope: str, run_seq: Optional[int] = None) -> Optional[BudgetLedger]:
        return await self.store.get_budget_ledger(scope, run_seq)

    async def list_stories(self, scope: str) -> List[Story]:
        stories = await self.store.list_stories(scope)
        return sorted(stories, key=lambda s: (-s.energy, s.id))

    async def get_story_detail(self, story_id: str) -> dict:
        story = await self.store.get_story(story_id)
        if story is None:
            raise NotFoundError(f"Unknown story '{story_id}'")
        signals = await self.store.get_story_signals(story_id)
        return {
            **story.to_dict(),
            'tension_ids': await self.store.get_story_tension_ids(story_id),
            'signals': [s.to_dict() for s in sorted(signals, key=lambda s: s.id)],
        }
