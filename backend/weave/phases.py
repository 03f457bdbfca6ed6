"""
Phase gating - which phase may start from which scope status.

Mirrors the admin UI's phaseEnabled table. Nothing is enabled while a
run_* status is active; BOOTSTRAP and FULL_RUN are always enabled otherwise.
"""
from typing import Dict, List, Optional, Set

from models.domain import COMPLETE, IDLE, Phase, is_running

PHASE_ORDER = [
    Phase.BOOTSTRAP,
    Phase.SCRAPE,
    Phase.SYNTHESIS,
    Phase.SITUATION_WEAVER,
    Phase.SUPERVISOR,
]

SETTLED_STATUSES = [IDLE, COMPLETE] + [p.complete_status for p in PHASE_ORDER]

# None = any settled status
PREREQUISITES: Dict[Phase, Optional[Set[str]]] = {
    Phase.BOOTSTRAP: None,
    Phase.FULL_RUN: None,
    Phase.SCRAPE: {
        'bootstrap_complete', 'scrape_complete', 'synthesis_complete',
        'situation_weaver_complete', COMPLETE,
    },
    Phase.SYNTHESIS: {
        'scrape_complete', 'synthesis_complete', 'situation_weaver_complete', COMPLETE,
    },
    Phase.SITUATION_WEAVER: {
        'synthesis_complete', 'situation_weaver_complete', COMPLETE,
    },
    Phase.SUPERVISOR: {
        'situation_weaver_complete', COMPLETE,
    },
}


def phase_enabled(phase: Phase, status: Optional[str]) -> bool:
    status = status or IDLE
    if is_running(status):
        return False
    allowed = PREREQUISITES[phase]
    return status in (SETTLED_STATUSES if allowed is None else allowed)


def allowed_statuses(phase: Phase) -> List[str]:
    """Statuses a run of `phase` may start from (compare-and-set input)."""
    allowed = PREREQUISITES[phase]
    if allowed is None:
        return list(SETTLED_STATUSES)
    return sorted(allowed)


def phase_table(status: Optional[str]) -> Dict[str, bool]:
    return {phase.value: phase_enabled(phase, status) for phase in PHASE_ORDER + [Phase.FULL_RUN]}
