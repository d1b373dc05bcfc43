# =============================================================================
# simulation/metrics_source.py
#
# SimulatedMetricsSource — stands in for the face-tracking model.
#
# Two cadences:
#   • sample tick (500 ms)  publish the current simulated DriverMetricsSample
#   • event tick  (4.5 s)   in auto mode, roll for attentiveness events:
#         r > 0.95  eyes close        r < 0.03  face leaves the frame
#         r > 0.85  eyes open         r > 0.08  face is found again
#
# The readiness score is read back from the driver state the core has
# fused, so the HUD gauge follows the decision loop rather than leading it.
#
# Manual overrides (toggle eyes, drop the face, turn the head) switch the
# source out of auto mode so scripted scenarios are not overwritten.
# =============================================================================

import random
import threading
from typing import Callable, Optional

import config
from takeover_engine.data_structures import (
    DriverMetricsSample, DriverState, HeadPose,
)
from core.scheduler import PeriodicTask
from core.logger import get_logger

log = get_logger(__name__)

SampleSink = Callable[[DriverMetricsSample], None]


class SimulatedMetricsSource:
    """
    Usage:
        source = SimulatedMetricsSource(session.submit_metrics_sample,
                                        lambda: session.driver_state)
        source.start()
        source.set_face_detected(False)     # scripted face loss
        source.stop()
    """

    def __init__(
        self,
        sink: SampleSink,
        driver_state_fn: Callable[[], DriverState] = lambda: DriverState.ALERT,
        seed: Optional[int] = None,
        sample_period_s: float = config.METRICS_SAMPLE_TICK_S,
        event_period_s: float = config.METRICS_EVENT_TICK_S,
    ):
        self._sink            = sink
        self._driver_state_fn = driver_state_fn
        self._rng             = random.Random(seed)
        self._lock            = threading.Lock()

        self.eyes_open     = True
        self.face_detected = True
        self.head_pose     = HeadPose.FORWARD
        self.auto_mode     = True

        self._sample_task = PeriodicTask("metrics-sample", sample_period_s, self.emit_sample)
        self._event_task  = PeriodicTask("metrics-events", event_period_s, self.roll_event)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        self.emit_sample()
        self._sample_task.start()
        self._event_task.start()
        log.info("SimulatedMetricsSource started "
                 f"(auto={'on' if self.auto_mode else 'off'}).")

    def stop(self) -> None:
        self._event_task.stop()
        self._sample_task.stop()
        log.info("SimulatedMetricsSource stopped.")

    # ── Ticks ─────────────────────────────────────────────────────────────────

    def roll_event(self) -> None:
        """One auto-simulation roll. No-op when auto mode is off."""
        with self._lock:
            if not self.auto_mode:
                return
            r = self._rng.random()
            if r > config.SIM_EYES_CLOSE_ABOVE:
                self.eyes_open = False
            elif r > config.SIM_EYES_OPEN_ABOVE:
                self.eyes_open = True

            if r < config.SIM_FACE_LOST_BELOW:
                self.face_detected = False
            elif r > config.SIM_FACE_FOUND_ABOVE:
                self.face_detected = True
        log.debug(f"Sim event r={r:.3f} eyes_open={self.eyes_open} "
                  f"face={self.face_detected}")

    def build_sample(self) -> DriverMetricsSample:
        with self._lock:
            eyes, face, pose = self.eyes_open, self.face_detected, self.head_pose
        return DriverMetricsSample(
            eyes_open=eyes,
            face_detected=face,
            head_pose=pose,
            blink_duration_s=config.SIM_BLINK_DURATION_S,
            readiness_score=self._readiness(self._driver_state_fn()),
        )

    def emit_sample(self) -> None:
        self._sink(self.build_sample())

    def _readiness(self, state: DriverState) -> float:
        lo, hi = config.SIM_READINESS_BY_STATE.get(
            DriverState(state).value, (0.0, 0.0)
        )
        return self._rng.uniform(lo, hi)

    # ── Manual overrides ──────────────────────────────────────────────────────

    def toggle_eyes(self) -> bool:
        with self._lock:
            self.auto_mode = False
            self.eyes_open = not self.eyes_open
            return self.eyes_open

    def set_face_detected(self, detected: bool) -> None:
        with self._lock:
            self.auto_mode = False
            self.face_detected = bool(detected)

    def set_head_pose(self, pose: HeadPose) -> None:
        with self._lock:
            self.auto_mode = False
            self.head_pose = HeadPose(pose)

    def set_auto_mode(self, enabled: bool) -> None:
        with self._lock:
            self.auto_mode = bool(enabled)
