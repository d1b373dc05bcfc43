# =============================================================================
# takeover_engine/errors.py
#
# Failure taxonomy. None of these is fatal to the decision loop: they are
# raised inside a collaborator and caught at its boundary, where the
# collaborator degrades to a no-op or simulated fallback.
# =============================================================================


class TakeoverError(Exception):
    """Base class for all takeover-engine errors."""


class SensorUnavailable(TakeoverError):
    """The metrics source cannot produce real samples (e.g. no camera)."""


class NotificationUnavailable(TakeoverError):
    """A speech / vibration sink is missing or failed."""


class InvalidSample(TakeoverError):
    """A metrics payload could not be coerced into a DriverMetricsSample."""


class InvalidModeTransition(TakeoverError):
    """An autonomy-mode change that the transition table does not allow."""

    def __init__(self, current, requested, reason: str = ""):
        self.current   = current
        self.requested = requested
        msg = f"Mode transition {current.value} → {requested.value} not allowed"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
