"""
Supervisor - sweeps a scope for issues that need a human.

Structural inconsistencies (a story with no members, a hub left without
a story) and coverage gaps (abandoned investigations) are recorded as
Findings, never raised. Findings are deduplicated on (target_id, type)
while open, and open findings older than finding_expiry_days are
auto-resolved.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Optional

from models.domain import (
    CuriosityState,
    Finding,
    FindingSeverity,
    FindingType,
    StoryStatus,
)
from utils.datetime_utils import utc_now
from utils.id_generator import generate_finding_id
from weave.hubs import TensionHubFinder
from weave.store import GraphStore
from weave.types import WeaveParams

logger = logging.getLogger(__name__)


async def record_finding(
    store: GraphStore,
    scope: str,
    finding_type: FindingType,
    target_id: str,
    description: str,
    severity: FindingSeverity = FindingSeverity.INFO,
) -> bool:
    """Create the finding unless an open one exists for (target_id, type)."""
    _, created = await store.create_finding_if_new(Finding(
        id=generate_finding_id(),
        scope=scope,
        finding_type=finding_type,
        target_id=target_id,
        description=description,
        severity=severity,
    ))
    if created:
        logger.warning(f"🚩 Finding {finding_type.value} on {target_id}: {description}")
    return created


@dataclass
class SupervisorReport:
    created: Dict[str, int] = field(default_factory=dict)
    expired: int = 0

    def bump(self, finding_type: FindingType):
        self.created[finding_type.value] = self.created.get(finding_type.value, 0) + 1

    def to_dict(self) -> dict:
        return {
            'findings_created': sum(self.created.values()),
            'by_type': dict(self.created),
            'expired': self.expired,
        }


class Supervisor:

    def __init__(self, store: GraphStore, params: Optional[WeaveParams] = None):
        self.store = store
        self.params = params or WeaveParams()
        self.hub_finder = TensionHubFinder(store, self.params)

    async def sweep(self, scope: str) -> SupervisorReport:
        report = SupervisorReport()

        for story in await self.store.list_stories(scope):
            if not await self.store.get_memberships(story.id):
                if await record_finding(
                    self.store, scope, FindingType.EMPTY_STORY, story.id,
                    f"Story '{story.headline}' has no member signals",
                    FindingSeverity.ERROR,
                ):
                    report.bump(FindingType.EMPTY_STORY)
                continue

            if story.status is StoryStatus.ECHO:
                if await record_finding(
                    self.store, scope, FindingType.ECHO_STORY, story.id,
                    f"Story '{story.headline}' repeats a single signal type across "
                    f"{story.signal_count} signals",
                ):
                    report.bump(FindingType.ECHO_STORY)

            if story.needs_refinement:
                if await record_finding(
                    self.store, scope, FindingType.REFINEMENT_NEEDED, story.id,
                    f"Story '{story.headline}' exceeds {self.params.mega_tension_threshold} "
                    f"respondents and should be split",
                ):
                    report.bump(FindingType.REFINEMENT_NEEDED)

        for hub in await self.hub_finder.find_hubs(scope):
            if await record_finding(
                self.store, scope, FindingType.ORPHANED_HUB, hub.tension_id,
                f"Tension '{hub.tension.title}' qualifies as a story but has none "
                f"({len(hub.respondents)} respondents)",
                FindingSeverity.WARNING,
            ):
                report.bump(FindingType.ORPHANED_HUB)

        for outcome in await self.store.list_curiosity_outcomes(scope, [CuriosityState.ABANDONED]):
            if await record_finding(
                self.store, scope, FindingType.ABANDONED_INVESTIGATION, outcome.key,
                f"Investigation of signal {outcome.signal_id} for tension {outcome.tension_id} "
                f"abandoned after {outcome.attempt_count} attempts: {outcome.last_error or 'unknown error'}",
            ):
                report.bump(FindingType.ABANDONED_INVESTIGATION)

        cutoff = utc_now() - timedelta(days=self.params.finding_expiry_days)
        report.expired = await self.store.resolve_stale_findings(scope, cutoff)

        logger.info(
            f"🩺 Supervisor for {scope}: {sum(report.created.values())} new findings, "
            f"{report.expired} expired"
        )
        return report
