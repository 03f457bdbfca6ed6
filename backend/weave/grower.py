"""
StoryGrower (Phase B) - attach new respondents and refresh story metadata.

For every story in scope: link respondents of its primary and absorbed
tensions that are not yet members, recompute counts, energy and status,
re-run the arc classifier, and flag mega-tensions for refinement.
CONTAINS edges are only ever added. No LLM calls.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from models.domain import FindingSeverity, FindingType, Story
from utils.datetime_utils import utc_now
from weave.arc import arrival_history, classify_arc
from weave.metrics import compute_story_metrics
from weave.store import GraphStore
from weave.supervisor import record_finding
from weave.types import WeaveParams

logger = logging.getLogger(__name__)


@dataclass
class GrowReport:
    stories: int = 0
    signals_linked: int = 0
    refinement_flagged: int = 0
    arcs: Dict[str, str] = field(default_factory=dict)
    empty_stories: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        arc_counts: Dict[str, int] = {}
        for arc in self.arcs.values():
            arc_counts[arc] = arc_counts.get(arc, 0) + 1
        return {
            'stories': self.stories,
            'signals_linked': self.signals_linked,
            'refinement_flagged': self.refinement_flagged,
            'arcs': arc_counts,
            'empty_stories': len(self.empty_stories),
        }


class StoryGrower:

    def __init__(self, store: GraphStore, params: Optional[WeaveParams] = None):
        self.store = store
        self.params = params or WeaveParams()

    async def grow(self, scope: str, run_seq: int) -> GrowReport:
        report = GrowReport()
        for story in await self.store.list_stories(scope):
            await self.grow_story(story, run_seq, report)
            report.stories += 1

        logger.info(
            f"🌱 Phase B for {scope}: {report.stories} stories, "
            f"+{report.signals_linked} signals, {report.refinement_flagged} flagged"
        )
        return report

    async def grow_story(self, story: Story, run_seq: int, report: GrowReport) -> None:
        respondent_ids = set()
        for tension_id in await self.store.get_story_tension_ids(story.id):
            respondent_ids.update(r.signal_id for r in await self.store.get_respondents(tension_id))

        memberships = await self.store.get_memberships(story.id)
        new_ids = sorted(respondent_ids - {m.signal_id for m in memberships})
        linked = 0
        if new_ids:
            linked = await self.store.link_signals(story.id, new_ids, run_seq)
            memberships = await self.store.get_memberships(story.id)
        report.signals_linked += linked

        if not memberships:
            report.empty_stories.append(story.id)
            await record_finding(
                self.store, story.scope, FindingType.EMPTY_STORY, story.id,
                f"Story '{story.headline}' has no member signals",
                FindingSeverity.ERROR,
            )
            return

        signals = await self.store.get_story_signals(story.id)
        metrics = compute_story_metrics(signals, memberships, utc_now())

        previous_arc = story.arc
        story.arc = classify_arc(
            arrival_history(memberships, run_seq),
            previous_arc=previous_arc,
            was_fading=previous_arc.is_quiet,
            fading_after_quiet_runs=self.params.fading_after_quiet_runs,
            cold_after_quiet_runs=self.params.cold_after_quiet_runs,
            sustain_runs=self.params.sustain_runs,
        )
        if story.arc is not previous_arc:
            logger.info(f"📈 Story {story.id} arc {previous_arc.value} -> {story.arc.value}")

        story.signal_count = metrics.signal_count
        story.type_diversity = metrics.type_diversity
        story.source_domain_count = metrics.source_domain_count
        story.energy = metrics.energy
        story.status = metrics.status

        if not story.needs_refinement and len(respondent_ids) > self.params.mega_tension_threshold:
            story.needs_refinement = True
            report.refinement_flagged += 1
            logger.info(f"⚠️  Story {story.id} flagged for refinement ({len(respondent_ids)} respondents)")

        if linked:
            story.synthesis_pending = True

        await self.store.save_story_metrics(story)
        report.arcs[story.id] = story.arc.value
