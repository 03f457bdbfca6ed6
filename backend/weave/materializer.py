"""
StoryMaterializer (Phase A) - promote tension hubs into Stories.

For each hub:
1. Containment check: |hub ∩ story| / |hub| against every story in scope.
   At or above absorption_threshold the hub is absorbed into that story
   (missing signals linked, ABSORBED_INTO recorded, synthesis re-queued)
   instead of creating an overlapping second story.
2. Otherwise create the Story, keyed by tension id so a second attempt
   returns the existing one.

Never calls the LLM. Running it twice on an unchanged graph creates nothing.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from models.domain import Story, StoryMembership
from utils.datetime_utils import utc_now
from utils.id_generator import generate_story_id
from weave.arc import classify_arc
from weave.hubs import TensionHubFinder
from weave.metrics import compute_story_metrics
from weave.store import GraphStore
from weave.types import TensionHub, WeaveParams

logger = logging.getLogger(__name__)


def containment(hub_signals: Set[str], story_signals: Set[str]) -> float:
    """Share of the hub's signals already in the story."""
    if not hub_signals:
        return 0.0
    return len(hub_signals & story_signals) / len(hub_signals)


def best_containment(hub_signals: Set[str], story_sets: Dict[str, Set[str]]) -> Tuple[Optional[str], float]:
    best_id, best_score = None, 0.0
    for story_id in sorted(story_sets):
        score = containment(hub_signals, story_sets[story_id])
        if score > best_score:
            best_id, best_score = story_id, score
    return best_id, best_score


@dataclass
class MaterializeReport:
    hubs: int = 0
    created: List[str] = field(default_factory=list)
    absorbed: Dict[str, str] = field(default_factory=dict)  # tension_id -> story_id
    signals_linked: int = 0

    def to_dict(self) -> dict:
        return {
            'hubs': self.hubs,
            'stories_created': len(self.created),
            'stories_absorbed': len(self.absorbed),
            'signals_linked': self.signals_linked,
        }


class StoryMaterializer:

    def __init__(self, store: GraphStore, params: Optional[WeaveParams] = None):
        self.store = store
        self.params = params or WeaveParams()
        self.hub_finder = TensionHubFinder(store, self.params)

    async def materialize(self, scope: str, run_seq: int) -> MaterializeReport:
        report = MaterializeReport()
        hubs = await self.hub_finder.find_hubs(scope)
        report.hubs = len(hubs)

        story_sets = await self.store.get_story_signal_sets(scope)

        for hub in hubs:
            story_id, score = best_containment(hub.signal_ids, story_sets)

            if story_id and score >= self.params.absorption_threshold:
                linked = await self._absorb(hub, story_id, run_seq)
                story_sets[story_id] |= hub.signal_ids
                report.absorbed[hub.tension_id] = story_id
                report.signals_linked += linked
                logger.info(
                    f"🧲 Absorbed tension {hub.tension_id} into {story_id} "
                    f"(containment={score:.2f}, +{linked} signals)"
                )
                continue

            story, created = await self._create(hub, scope, run_seq)
            if created:
                story_sets[story.id] = set(hub.signal_ids)
                report.created.append(story.id)
                report.signals_linked += len(hub.signal_ids)
                logger.info(
                    f"🧵 Materialized story {story.id} '{story.headline[:60]}' "
                    f"({story.signal_count} signals, {len(hub.source_keys)} sources)"
                )

        logger.info(
            f"✅ Phase A for {scope}: {len(report.created)} created, "
            f"{len(report.absorbed)} absorbed from {report.hubs} hubs"
        )
        return report

    async def _absorb(self, hub: TensionHub, story_id: str, run_seq: int) -> int:
        linked = await self.store.link_signals(story_id, sorted(hub.signal_ids), run_seq)
        await self.store.absorb_tension(hub.tension_id, story_id)

        story = await self.store.get_story(story_id)
        if story is not None and not story.synthesis_pending:
            story.synthesis_pending = True
            await self.store.save_story_metrics(story)
        return linked

    async def _create(self, hub: TensionHub, scope: str, run_seq: int) -> Tuple[Story, bool]:
        now = utc_now()
        signals = [r.signal for r in hub.respondents]
        memberships = [
            StoryMembership(story_id="", signal_id=s.id, run_seq=run_seq, linked_at=now)
            for s in signals
        ]
        metrics = compute_story_metrics(signals, memberships, now)

        story = Story(
            id=generate_story_id(),
            tension_id=hub.tension_id,
            scope=scope,
            headline=hub.tension.title,
            summary=hub.tension.summary,
            arc=classify_arc([len(signals)], previous_arc=None, was_fading=False),
            status=metrics.status,
            energy=metrics.energy,
            signal_count=metrics.signal_count,
            type_diversity=metrics.type_diversity,
            source_domain_count=metrics.source_domain_count,
            synthesis_pending=True,
            needs_refinement=len(hub.respondents) > self.params.mega_tension_threshold,
        )
        if story.needs_refinement:
            logger.info(
                f"⚠️  Mega-tension {hub.tension_id} flagged for refinement "
                f"({len(hub.respondents)} respondents)"
            )
        return await self.store.create_story(story, sorted(hub.signal_ids), run_seq)
