"""
Weave exceptions.

Transient external failures (embedding lookup, investigation, synthesis)
are caught where they happen and turned into deferrals, Failed(n)
outcomes or still-pending stories. Run-lock errors propagate to the
caller so that a second run fails fast instead of queueing.
"""


class WeaveError(Exception):
    """Base class for weave errors."""


class ScopeBusyError(WeaveError):
    """A run is already active for this scope."""

    def __init__(self, scope: str, status: str):
        self.scope = scope
        self.status = status
        super().__init__(f"Scope '{scope}' is busy ({status})")


class PhaseNotEnabledError(WeaveError):
    """The scope status does not allow this phase yet."""

    def __init__(self, scope: str, phase: str, status: str):
        self.scope = scope
        self.phase = phase
        self.status = status
        super().__init__(f"Phase '{phase}' is not enabled for scope '{scope}' in status '{status}'")


class NotFoundError(WeaveError):
    """Referenced node does not exist."""


class EmbeddingUnavailableError(WeaveError):
    """Candidate has no embedding or the similarity lookup failed."""


class InvestigationError(WeaveError):
    """Curiosity investigation call failed or timed out."""


class SynthesisError(WeaveError):
    """Narrative synthesis call failed or timed out."""


class RunStopped(WeaveError):
    """A stop was requested for the scope while the run was in progress."""

    def __init__(self, scope: str):
        self.scope = scope
        super().__init__(f"Run for scope '{scope}' was stopped")
