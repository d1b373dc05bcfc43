# =============================================================================
# takeover_engine/session.py
#
# TakeoverSession — single owner of all core state.
#
# Call flow per decision tick (every 300 ms):
#   1. DriverStateTracker.update(latest sample)   → DriverState
#   2. arbitrate(...)                              → Decision
#   3. ModeStateMachine.transition(...)            → on_enter / on_exit effects
#   4. Commit target speed / urgency / hazards / call flag when they differ
#   5. Edge effects: distraction warning, "safely parked" entry
#   6. Publish a SessionSnapshot if anything changed
#
# Speed tick (every 50 ms): SpeedGovernor.tick(), publish if speed moved.
#
# Thread safety:
#   Both ticks, sample submission and operator requests run under one
#   RLock, so each tick sees and leaves a consistent state. Snapshots are
#   numbered under that lock and delivered after it is released, in
#   order: a snapshot older than the last one delivered is dropped.
#   Notifier calls are fire-and-forget; a sink fault is logged and can
#   never roll back a tick.
#
# Fail-safe hold:
#   A fault inside a decision tick is logged as a critical LogEntry, the
#   pre-tick state is restored, and the loop keeps running.
# =============================================================================

import threading
import time
from typing import Callable, List, Optional, Tuple

from takeover_engine.data_structures import (
    AutonomyMode, DriverMetricsSample, DriverState, EmergencyContext,
    EngineSettings, SessionSnapshot, Severity, SpeedState, TakeoverUrgency,
)
from takeover_engine.errors import InvalidModeTransition, InvalidSample
from takeover_engine.log_stream import LogStream
from takeover_engine.mode_arbitration import (
    ArbitrationInput, ModeStateMachine, arbitrate, takeover_message,
)
from takeover_engine.speed_governor import SpeedGovernor
from takeover_engine.state_fusion import (
    DriverStateTracker, driver_insight, readiness_band,
)
from alerts.notifier import (
    CATEGORY_DISTRACTION, CATEGORY_EMERGENCY, NotificationSink,
)
from core.scheduler import PeriodicTask
from core.logger import get_logger

log = get_logger(__name__)

SnapshotCallback = Callable[[SessionSnapshot], None]

DISTRACTION_SPEECH = "Warning: Driver distraction detected. Please focus on the road."
DISTRACTION_LOG    = "Driver gaze shifted for > 5s."
PARKED_LOG         = "Vehicle Safely Parked. Emergency responders notified."
RELEASE_RESET_LOG  = "Driver monitoring restarted from ALERT after operator release."


class TakeoverSession:
    """
    Usage:
        session = TakeoverSession(notifier=DedupingNotifier(voice))
        session.subscribe(server.emit_snapshot)
        session.start()                       # both schedulers

        session.submit_metrics_sample(sample) # from the metrics source
        snap = session.snapshot()

        session.stop()
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        notifier: Optional[NotificationSink] = None,
        emergency_context: Optional[EmergencyContext] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or EngineSettings()
        self.notifier = notifier or NotificationSink()
        self._clock   = clock
        self._lock    = threading.RLock()

        s = self.settings
        self.log_stream = LogStream(capacity=s.log_capacity, clock=clock)
        self.speed      = SpeedState(current=s.initial_speed, target=s.initial_speed)
        self.governor   = SpeedGovernor(
            self.speed, s.accel_step, s.brake_step, s.speed_epsilon
        )
        self.tracker    = DriverStateTracker(
            now=clock(),
            face_loss_threshold_s=s.face_loss_unresponsive_s,
            eyes_closed_threshold_s=s.eyes_closed_drowsy_s,
        )
        self.modes      = ModeStateMachine(AutonomyMode.MANUAL)
        self.modes.on_enter(AutonomyMode.EMERGENCY_CONTROL, self._on_enter_emergency)
        self.modes.on_exit(AutonomyMode.EMERGENCY_CONTROL, self._on_exit_emergency)

        self.urgency           = TakeoverUrgency.NONE
        self.hazards_active    = False
        self.emergency_context = emergency_context or EmergencyContext()
        self.sensor_source     = "simulated"

        self._sample: Optional[DriverMetricsSample] = None
        self._distraction_warned = False
        self._parked             = False

        self._subscribers: List[SnapshotCallback] = []
        # Snapshots are numbered under _lock; delivery drops any older than
        # the last one handed to subscribers
        self._snapshot_seq   = 0
        self._published_seq  = 0
        self._publish_lock   = threading.RLock()
        self._decision_task: Optional[PeriodicTask] = None
        self._speed_task:    Optional[PeriodicTask] = None

        log.info("TakeoverSession initialized.")

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the decision and speed schedulers."""
        self._decision_task = PeriodicTask(
            "decision-tick", self.settings.decision_tick_s, self.decision_tick
        )
        self._speed_task = PeriodicTask(
            "speed-tick", self.settings.speed_tick_s, self.speed_tick
        )
        self._decision_task.start()
        self._speed_task.start()
        log.info("TakeoverSession started.")

    def stop(self) -> None:
        """Stop both schedulers; no tick runs after this returns."""
        for task in (self._decision_task, self._speed_task):
            if task is not None:
                task.stop()
        self._decision_task = None
        self._speed_task    = None
        log.info("TakeoverSession stopped.")

    # ── Input ─────────────────────────────────────────────────────────────────

    def submit_metrics_sample(self, sample: DriverMetricsSample) -> None:
        """Replace the latest sample. Fire-and-forget; never blocks on a tick."""
        with self._lock:
            self._sample = sample

    def submit_metrics_payload(self, payload: dict) -> bool:
        """
        Accept a raw dict from an external source.
        A payload that cannot be interpreted is dropped and the previous
        sample stays in effect.
        """
        try:
            sample = DriverMetricsSample.from_payload(payload)
        except InvalidSample as exc:
            log.warning(f"{exc} — keeping previous sample.")
            return False
        self.submit_metrics_sample(sample)
        return True

    def set_sensor_source(self, source: str) -> None:
        with self._lock:
            self.sensor_source = source

    def subscribe(self, callback: SnapshotCallback) -> None:
        self._subscribers.append(callback)

    # ── Decision Tick ─────────────────────────────────────────────────────────

    def decision_tick(self) -> bool:
        """
        One fusion + arbitration pass. Never raises.

        Returns:
            True if anything observable changed (and a snapshot was published).
        """
        with self._lock:
            checkpoint = self._checkpoint()
            try:
                changed = self._decide()
            except Exception as exc:
                log.error(f"Decision tick fault: {exc}", exc_info=True)
                self._restore(checkpoint)
                self.log_stream.append(
                    f"Decision fault ({type(exc).__name__}): holding previous state.",
                    Severity.CRITICAL,
                )
                changed = True
            staged = self._stage_snapshot() if changed else None

        if staged is not None:
            self._publish(*staged)
        return changed

    def _decide(self) -> bool:
        now = self._clock()
        previous_state = self.tracker.state
        state, changed = self.tracker.update(self._sample, now)

        if state is not DriverState.DISTRACTED:
            self._distraction_warned = False

        decision = arbitrate(ArbitrationInput(
            driver_state=state,
            previous_driver_state=previous_state,
            speed=self.speed.current,
            previous_mode=self.modes.mode,
            previous_target_speed=self.speed.target,
            previous_urgency=self.urgency,
            time_in_state_s=self.tracker.time_in_state(now),
            distraction_warned=self._distraction_warned,
        ), self.settings)

        # Urgency first so the emergency entry sees HIGH already committed
        if decision.urgency is not self.urgency:
            self._set_urgency(decision.urgency)
            changed = True

        if decision.mode is not self.modes.mode:
            self.modes.transition(decision.mode, reason=state.value)
            changed = True

        if decision.target_speed != self.speed.target:
            self.speed.target = decision.target_speed
            changed = True

        if decision.hazards is not None and decision.hazards != self.hazards_active:
            self.hazards_active = decision.hazards
            changed = True

        if decision.calling is not None and decision.calling != self.emergency_context.is_calling:
            self.emergency_context = self.emergency_context.with_calling(decision.calling)
            changed = True

        if decision.distraction_warning:
            self._notify("speak", DISTRACTION_SPEECH, CATEGORY_DISTRACTION)
            self.log_stream.append(DISTRACTION_LOG, Severity.WARNING)
            self._distraction_warned = True
            changed = True

        if decision.stopped and not self._parked:
            self._parked = True
            self.log_stream.append(PARKED_LOG, Severity.INFO)
            changed = True

        return changed

    # ── Transition Arcs ───────────────────────────────────────────────────────

    def _on_enter_emergency(self, previous: AutonomyMode, _target, reason: str) -> None:
        ctx = self.emergency_context.with_calling(True)
        self.emergency_context = ctx
        self.hazards_active    = True
        self._parked           = False
        self.log_stream.append(
            f"CRITICAL: Driver {reason or 'UNRESPONSIVE'} detected. Taking control.",
            Severity.CRITICAL,
        )
        self._notify(
            "speak",
            "Critical emergency. Driver unresponsive. Initiating safe stop and "
            f"alerting {ctx.hospital_name}. Contacting {ctx.contact_name} now.",
            CATEGORY_EMERGENCY,
        )

    def _on_exit_emergency(self, _previous, target: AutonomyMode, reason: str) -> None:
        self.emergency_context = self.emergency_context.with_calling(False)
        self.hazards_active    = False
        self._parked           = False
        self.log_stream.append(
            f"Emergency control released to {target.value} ({reason}).",
            Severity.INFO,
        )

    def _set_urgency(self, urgency: TakeoverUrgency) -> None:
        self.urgency = urgency
        pattern = self._vibration_pattern(urgency)
        if pattern:
            self._notify("vibrate", pattern)

    def _notify(self, method: str, *args) -> None:
        """Fire-and-forget sink call; a sink fault never reaches the tick."""
        try:
            getattr(self.notifier, method)(*args)
        except Exception as exc:
            log.warning(f"Notifier {method} failed: {exc}")

    def _vibration_pattern(self, urgency: TakeoverUrgency):
        if urgency is TakeoverUrgency.HIGH:
            return self.settings.vibrate_high
        if urgency is TakeoverUrgency.MEDIUM:
            return self.settings.vibrate_medium
        return ()

    # ── Speed Tick ────────────────────────────────────────────────────────────

    def speed_tick(self) -> bool:
        """One governor step. Returns True if the current speed moved."""
        with self._lock:
            moved = self.governor.tick()
            staged = self._stage_snapshot() if moved else None
        if staged is not None:
            self._publish(*staged)
        return moved

    # ── Operator Requests ─────────────────────────────────────────────────────

    def request_mode(self, mode: AutonomyMode) -> None:
        """
        Operator switch between MANUAL and AUTONOMOUS.

        Raises:
            InvalidModeTransition: in or into EMERGENCY_CONTROL.
        """
        mode = AutonomyMode(mode)
        with self._lock:
            if (mode is AutonomyMode.EMERGENCY_CONTROL
                    or self.modes.mode is AutonomyMode.EMERGENCY_CONTROL):
                raise InvalidModeTransition(
                    self.modes.mode, mode, "use release_emergency_control()"
                )
            if not self.modes.transition(mode, reason="operator request", operator=True):
                return
            self.log_stream.append(f"Autonomy mode set to {mode.value} by operator.")
            staged = self._stage_snapshot()
        self._publish(*staged)

    def release_emergency_control(self) -> None:
        """
        Explicit operator exit from EMERGENCY_CONTROL back to MANUAL.

        Raises:
            InvalidModeTransition: release disabled, not in emergency control,
                                   vehicle still moving, or driver not ALERT.
        """
        with self._lock:
            current = self.modes.mode
            target  = AutonomyMode.MANUAL
            if not self.settings.allow_emergency_release:
                raise InvalidModeTransition(current, target, "release disabled")
            if current is not AutonomyMode.EMERGENCY_CONTROL:
                raise InvalidModeTransition(current, target, "not in emergency control")
            if self.speed.current > 0:
                raise InvalidModeTransition(current, target, "vehicle still moving")
            if self.tracker.state is not DriverState.ALERT:
                raise InvalidModeTransition(
                    current, target, f"driver is {self.tracker.state.value}"
                )
            self.modes.transition(target, reason="operator release", operator=True)
            self._set_urgency(TakeoverUrgency.NONE)
            # Time-in-state restarts so the next episode is judged from scratch
            self.tracker.reset(self._clock())
            self._distraction_warned = False
            self.log_stream.append(RELEASE_RESET_LOG, Severity.INFO)
            staged = self._stage_snapshot()
        self._publish(*staged)

    # ── Snapshot ──────────────────────────────────────────────────────────────

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return self._build_snapshot()

    def _build_snapshot(self) -> SessionSnapshot:
        sample = self._sample
        readiness = sample.readiness_score if sample is not None else 100.0
        state = self.tracker.state
        return SessionSnapshot(
            driver_state      = state,
            mode              = self.modes.mode,
            speed             = self.speed.current,
            target_speed      = self.speed.target,
            urgency           = self.urgency,
            hazards_active    = self.hazards_active,
            emergency_context = self.emergency_context,
            log_entries       = self.log_stream.entries(),
            takeover_message  = takeover_message(self.modes.mode, self.urgency),
            insight           = driver_insight(state),
            readiness_score   = readiness,
            readiness_band    = readiness_band(readiness),
            sensor_source     = self.sensor_source,
            metrics           = sample,
        )

    def _stage_snapshot(self) -> Tuple[int, SessionSnapshot]:
        """Build and number a snapshot. Caller holds _lock."""
        self._snapshot_seq += 1
        return self._snapshot_seq, self._build_snapshot()

    def _publish(self, seq: int, snapshot: SessionSnapshot) -> None:
        with self._publish_lock:
            if seq <= self._published_seq:
                log.debug(f"Dropped stale snapshot #{seq} (latest #{self._published_seq})")
                return
            self._published_seq = seq
            self._deliver(snapshot)

    def _deliver(self, snapshot: SessionSnapshot) -> None:
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as exc:
                log.warning(f"Snapshot subscriber failed: {exc}")

    # ── Fail-safe hold ────────────────────────────────────────────────────────

    def _checkpoint(self) -> tuple:
        t = self.tracker
        return (
            t.state, t.entered_at, t.previous, self.modes.mode,
            self.speed.target, self.urgency, self.hazards_active,
            self.emergency_context, self._distraction_warned, self._parked,
        )

    def _restore(self, cp: tuple) -> None:
        t = self.tracker
        (t.state, t.entered_at, t.previous, self.modes.mode,
         self.speed.target, self.urgency, self.hazards_active,
         self.emergency_context, self._distraction_warned, self._parked) = cp

    # ── Read-only accessors ───────────────────────────────────────────────────

    @property
    def driver_state(self) -> DriverState:
        return self.tracker.state

    @property
    def mode(self) -> AutonomyMode:
        return self.modes.mode

    @property
    def latest_sample(self) -> Optional[DriverMetricsSample]:
        return self._sample
