"""
EnrichmentScheduler (Phase C) - budget-gated narrative synthesis.

Pending stories are synthesized in priority order (Resurgent first, then
energy, then age) until the run budget runs out. A result is applied in
one write (lede + narrative + pending cleared) or not at all: failures
leave the story pending for a later run, and a stop requested while a
call is in flight discards its result.

Stories with mixed respondent types get a perspective hint so the
synthesizer surfaces the disagreement instead of resolving it.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Awaitable, List, Optional, Protocol

from models.domain import Arc, Signal, SignalType, Story
from utils.datetime_utils import utc_now
from weave.budget import BudgetLedger
from weave.store import GraphStore
from weave.types import WeaveParams

logger = logging.getLogger(__name__)

PERSPECTIVE_HINT = (
    "Respondents include different kinds of signals. Surface the disagreement as "
    "multiple perspectives rather than resolving it into one account."
)


# =============================================================================
# Synthesizer contract (implemented by services.synthesizer)
# =============================================================================

@dataclass
class SynthesisRequest:
    story: Story
    signals: List[Signal]
    perspective_hint: Optional[str] = None
    editorial_notes: List[str] = field(default_factory=list)


@dataclass
class SynthesisResult:
    lede: str
    narrative: str


class Synthesizer(Protocol):
    async def synthesize(self, request: SynthesisRequest) -> SynthesisResult:
        """Raise on error or timeout; the story stays pending."""
        ...


# =============================================================================
# Scheduling
# =============================================================================

def priority_key(story: Story):
    """Resurgent first, then highest energy, then oldest."""
    created = story.created_at.timestamp() if story.created_at else 0.0
    return (0 if story.arc is Arc.RESURGENT else 1, -story.energy, created, story.id)


def editorial_notes(story: Story, signals: List[Signal], now: datetime) -> List[str]:
    """Context the synthesizer should respect beyond the raw signals."""
    notes = []
    if story.arc is Arc.RESURGENT:
        last_quiet = story.last_synthesized_at or story.updated_at
        if last_quiet:
            days = max(int((now - last_quiet).total_seconds() // 86400), 1)
            notes.append(
                f"This story went quiet for approximately {days} days and is now active again. "
                f"Frame it as a resurgence."
            )
        else:
            notes.append("This story went quiet and is now active again. Frame it as a resurgence.")

    types = {s.signal_type for s in signals}
    if SignalType.TENSION in types and types & {SignalType.AID, SignalType.GATHERING}:
        notes.append("Both the problem and community responses are present. Surface both perspectives.")
    if len(types) >= 3:
        notes.append(
            f"Signals span {len(types)} types; surface the different perspectives rather than flattening them."
        )
    return notes


@dataclass
class EnrichmentReport:
    pending: int = 0
    enriched: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    discarded: List[str] = field(default_factory=list)
    budget_exhausted: bool = False
    stopped: bool = False

    def to_dict(self) -> dict:
        return {
            'pending': self.pending,
            'enriched': len(self.enriched),
            'failed': len(self.failed),
            'discarded': len(self.discarded),
            'budget_exhausted': self.budget_exhausted,
            'stopped': self.stopped,
        }


StopCheck = Callable[[], Awaitable[bool]]


class EnrichmentScheduler:

    def __init__(
        self,
        store: GraphStore,
        synthesizer: Synthesizer,
        params: Optional[WeaveParams] = None,
    ):
        self.store = store
        self.synthesizer = synthesizer
        self.params = params or WeaveParams()

    async def run(
        self,
        scope: str,
        ledger: BudgetLedger,
        should_stop: Optional[StopCheck] = None,
    ) -> EnrichmentReport:
        report = EnrichmentReport()
        pending = sorted(
            (s for s in await self.store.list_stories(scope) if s.synthesis_pending),
            key=priority_key,
        )
        report.pending = len(pending)
        cost = self.params.synthesis_cost_cents

        for story in pending:
            if should_stop and await should_stop():
                report.stopped = True
                break
            if not ledger.has_budget(cost):
                report.budget_exhausted = True
                logger.info(
                    f"💸 Budget exhausted for {scope}: {len(report.enriched)} enriched, "
                    f"{report.pending - len(report.enriched) - len(report.failed)} left pending"
                )
                break

            ledger.spend(cost)
            signals = await self.store.get_story_signals(story.id)
            request = SynthesisRequest(
                story=story,
                signals=signals,
                perspective_hint=PERSPECTIVE_HINT if story.is_multi_perspective else None,
                editorial_notes=editorial_notes(story, signals, utc_now()),
            )

            try:
                result = await self.synthesizer.synthesize(request)
            except Exception as e:
                report.failed.append(story.id)
                logger.error(f"❌ Synthesis failed for {story.id}, left pending: {e}")
                continue

            if should_stop and await should_stop():
                report.discarded.append(story.id)
                report.stopped = True
                logger.info(f"🛑 Stop requested; discarded synthesis for {story.id}")
                break

            await self.store.apply_synthesis(story.id, result.lede, result.narrative)
            report.enriched.append(story.id)
            logger.info(f"📝 Synthesized story {story.id} '{story.headline[:60]}'")

        return report
