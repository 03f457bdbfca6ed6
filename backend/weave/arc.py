"""
Arc classifier - pure lifecycle state machine for Stories.

    Emerging -> Growing -> Stable -> Fading -> Cold
                                  `-> Resurgent (on new arrivals while Fading/Cold)

Inputs are the per-run arrival counts (new CONTAINS edges per run, oldest
first, current run last) and the story's previous arc. `was_fading` is
passed explicitly rather than inferred from energy: a quiet story that
gets new signals is Resurgent, not Emerging, and only the previous arc
can tell the two apart.
"""
from typing import Iterable, List, Optional, Sequence

from models.domain import Arc, StoryMembership


def trailing_quiet_runs(arrivals: Sequence[int]) -> int:
    """Number of consecutive zero-arrival runs at the end of the history."""
    quiet = 0
    for count in reversed(arrivals):
        if count > 0:
            break
        quiet += 1
    return quiet


def is_sustained(arrivals: Sequence[int], runs: int) -> bool:
    """The last `runs` runs all had arrivals."""
    if runs <= 0 or len(arrivals) < runs:
        return False
    return all(count > 0 for count in arrivals[-runs:])


def is_plateaued(arrivals: Sequence[int]) -> bool:
    """Latest run brought nothing, or no more than the run before it."""
    if not arrivals:
        return True
    latest = arrivals[-1]
    if latest == 0:
        return True
    return len(arrivals) >= 2 and latest <= arrivals[-2]


def classify_arc(
    arrivals: Sequence[int],
    previous_arc: Optional[Arc],
    was_fading: bool,
    fading_after_quiet_runs: int = 3,
    cold_after_quiet_runs: int = 6,
    sustain_runs: int = 2,
) -> Arc:
    """
    Assign a lifecycle stage.

    Args:
        arrivals: new-signal counts per run since the story was created
        previous_arc: the arc stored on the story, None for a brand-new story
        was_fading: previous arc was Fading or Cold
    """
    if previous_arc is None:
        return Arc.EMERGING

    latest = arrivals[-1] if arrivals else 0

    if latest > 0 and was_fading:
        return Arc.RESURGENT

    quiet = trailing_quiet_runs(arrivals)
    if quiet >= cold_after_quiet_runs:
        return Arc.COLD
    if quiet >= fading_after_quiet_runs:
        return Arc.FADING

    if previous_arc in (Arc.EMERGING, Arc.RESURGENT):
        if is_sustained(arrivals, sustain_runs):
            return Arc.GROWING
        return previous_arc

    if previous_arc is Arc.GROWING:
        return Arc.STABLE if is_plateaued(arrivals) else Arc.GROWING

    if previous_arc is Arc.STABLE:
        accelerating = len(arrivals) >= 2 and latest > arrivals[-2]
        if accelerating and is_sustained(arrivals, sustain_runs):
            return Arc.GROWING
        return Arc.STABLE

    # Fading/Cold without new arrivals and below the quiet thresholds
    return previous_arc


def arrival_history(memberships: Iterable[StoryMembership], current_run_seq: int) -> List[int]:
    """
    Per-run arrival counts from the story's first CONTAINS run through
    `current_run_seq` inclusive.
    """
    counts = {}
    for m in memberships:
        counts[m.run_seq] = counts.get(m.run_seq, 0) + 1
    if not counts:
        return []
    first = min(counts)
    last = max(current_run_seq, max(counts))
    return [counts.get(seq, 0) for seq in range(first, last + 1)]
