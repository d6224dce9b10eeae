# errors.py
# Exception hierarchy shared by the agent loop and its collaborators.
#
# Only AgentBusyError and GoalError ever escape AgentLoop.run(); everything
# else is converted into a RunResult or a step annotation.


class SurfacePilotError(Exception):
    """Base class for every error raised by this package."""


# ---------------------------------------------------------------------------
# Input errors
# ---------------------------------------------------------------------------


class AgentBusyError(SurfacePilotError):
    """Raised when run() is called while a run is already in progress."""


class GoalError(SurfacePilotError):
    """Raised when the goal is empty or whitespace-only."""


class ActionValidationError(SurfacePilotError):
    """Raised when an action's parameters are missing, malformed or out of bounds.

    Never retried.
    """


# ---------------------------------------------------------------------------
# Runtime errors
# ---------------------------------------------------------------------------


class PrimitiveError(SurfacePilotError):
    """Raised when a surface primitive fails after all retries."""


class TransportError(SurfacePilotError):
    """Perception or decision call failed or timed out."""


class PerceptionError(TransportError):
    """The surface could not produce a snapshot."""


class OracleTransportError(TransportError):
    """The decision oracle could not be reached or did not answer in time."""


class PolicyError(SurfacePilotError):
    """The persisted policy exists but cannot be used."""
