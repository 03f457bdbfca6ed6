"""
Story metrics: pure functions for status, energy and recency.

Energy weights: velocity 40%, recency 20%, source diversity 10%,
triangulation 20%, volume 10%. Every component is clamped to [0, 1] so
energy is too.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from models.domain import Signal, StoryMembership, StoryStatus
from utils.url_utils import extract_domain

RECENCY_HORIZON_DAYS = 14.0
VELOCITY_WINDOW_DAYS = 7
ECHO_MIN_SIGNALS = 5


def story_status(type_diversity: int, source_domain_count: int, signal_count: int) -> StoryStatus:
    """
    echo:      one signal type repeated across many signals
    confirmed: at least two sources and two signal types
    emerging:  everything else
    """
    if type_diversity == 1 and signal_count >= ECHO_MIN_SIGNALS:
        return StoryStatus.ECHO
    if source_domain_count >= 2 and type_diversity >= 2:
        return StoryStatus.CONFIRMED
    return StoryStatus.EMERGING


def recency_score(last_activity: Optional[datetime], now: datetime) -> float:
    """1.0 for activity today, falling linearly to 0.0 at 14+ days."""
    if last_activity is None:
        return 0.0
    age_days = (now - last_activity).total_seconds() / 86400.0
    return min(max(1.0 - age_days / RECENCY_HORIZON_DAYS, 0.0), 1.0)


def velocity_score(linked_at: Iterable[Optional[datetime]], now: datetime) -> float:
    """Signals linked in the last 7 days, per day, capped at 1."""
    cutoff = now - timedelta(days=VELOCITY_WINDOW_DAYS)
    recent = sum(1 for t in linked_at if t is not None and t >= cutoff)
    return min(recent / VELOCITY_WINDOW_DAYS, 1.0)


def story_energy(
    velocity: float,
    recency: float,
    source_diversity: float,
    triangulation: float,
    volume: float,
) -> float:
    return velocity * 0.4 + recency * 0.2 + source_diversity * 0.1 + triangulation * 0.2 + volume * 0.1


@dataclass
class StoryMetrics:
    signal_count: int
    type_diversity: int
    source_domain_count: int
    energy: float
    status: StoryStatus
    last_activity: Optional[datetime] = None


def compute_story_metrics(
    signals: List[Signal],
    memberships: List[StoryMembership],
    now: datetime,
) -> StoryMetrics:
    """
    Aggregate metrics for a story from its member signals.

    Recency follows the newest content_date (or created_at when the
    extractor gave no date); velocity follows CONTAINS linked_at.
    """
    signal_count = len(signals)
    type_diversity = len({s.signal_type for s in signals})
    domains = {s.source_domain or extract_domain(s.source_url) for s in signals}
    domains.discard('')
    source_domain_count = len(domains)

    activity = [s.content_date or s.created_at for s in signals]
    activity = [t for t in activity if t is not None]
    last_activity = max(activity) if activity else None

    energy = story_energy(
        velocity=velocity_score((m.linked_at for m in memberships), now),
        recency=recency_score(last_activity, now),
        source_diversity=min(source_domain_count / 5.0, 1.0),
        triangulation=min(type_diversity / 5.0, 1.0),
        volume=min(signal_count / 10.0, 1.0),
    )

    return StoryMetrics(
        signal_count=signal_count,
        type_diversity=type_diversity,
        source_domain_count=source_domain_count,
        energy=energy,
        status=story_status(type_diversity, source_domain_count, signal_count),
        last_activity=last_activity,
    )
