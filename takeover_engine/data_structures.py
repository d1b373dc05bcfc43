# =============================================================================
# takeover_engine/data_structures.py
# Shared enums and dataclasses that flow between every module in the
# takeover pipeline. All fields have sensible defaults so partial updates
# never crash downstream.
# =============================================================================

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple

import config
from takeover_engine.errors import InvalidSample


# ── Enums ─────────────────────────────────────────────────────────────────────

class HeadPose(str, Enum):
    FORWARD = "forward"
    LEFT    = "left"
    RIGHT   = "right"
    DOWN    = "down"


class DriverState(str, Enum):
    ALERT        = "ALERT"
    DISTRACTED   = "DISTRACTED"
    DROWSY       = "DROWSY"
    UNRESPONSIVE = "UNRESPONSIVE"


class AutonomyMode(str, Enum):
    MANUAL            = "MANUAL"
    AUTONOMOUS        = "AUTONOMOUS"
    EMERGENCY_CONTROL = "EMERGENCY_CONTROL"


class TakeoverUrgency(str, Enum):
    NONE   = "NONE"
    LOW    = "LOW"
    MEDIUM = "MEDIUM"
    HIGH   = "HIGH"


class Severity(str, Enum):
    INFO     = "info"
    WARNING  = "warning"
    CRITICAL = "critical"


# ── Metrics Input ─────────────────────────────────────────────────────────────

def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


_TRUE_STRINGS  = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


def _parse_flag(value, name: str) -> bool:
    """JSON bools pass through; "true"/"false", "1"/"0", "yes"/"no" strings are parsed."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


@dataclass(frozen=True)
class DriverMetricsSample:
    """
    One attentiveness sample from the metrics source.

    Out-of-range numbers are clamped on construction so a bad sensor value
    never stops the control loop: readiness into [0, 100], blink duration
    to >= 0.
    """
    eyes_open:        bool     = True
    face_detected:    bool     = True
    head_pose:        HeadPose = HeadPose.FORWARD
    blink_duration_s: float    = 0.0
    readiness_score:  float    = 100.0

    def __post_init__(self):
        object.__setattr__(self, "readiness_score", _clamp(
            float(self.readiness_score), config.READINESS_MIN, config.READINESS_MAX
        ))
        object.__setattr__(self, "blink_duration_s",
                           max(0.0, float(self.blink_duration_s)))
        if not isinstance(self.head_pose, HeadPose):
            object.__setattr__(self, "head_pose", HeadPose(self.head_pose))

    @property
    def is_nominal(self) -> bool:
        """Face visible, eyes open, looking ahead."""
        return (self.face_detected and self.eyes_open
                and self.head_pose is HeadPose.FORWARD)

    @classmethod
    def from_payload(cls, payload: dict) -> "DriverMetricsSample":
        """
        Build a sample from a camelCase JSON-style dict.

        Raises:
            InvalidSample: if a field cannot be interpreted at all
                           (unknown head pose, non-numeric score,
                           flag that is not a bool or "true"/"false", or a
                           payload that is not a dict).
        """
        try:
            return cls(
                eyes_open        = _parse_flag(payload.get("eyesOpen", True), "eyesOpen"),
                face_detected    = _parse_flag(payload.get("faceDetected", True), "faceDetected"),
                head_pose        = HeadPose(str(payload.get("headPose", "forward")).lower()),
                blink_duration_s = float(payload.get("blinkDuration", 0.0)),
                readiness_score  = float(payload.get("readinessScore", 100.0)),
            )
        except (AttributeError, TypeError, ValueError) as exc:
            raise InvalidSample(f"Malformed metrics payload {payload!r}: {exc}") from exc


# ── Session State ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EmergencyContext:
    hospital_name:  str  = config.EMERGENCY_HOSPITAL_NAME
    distance_label: str  = config.EMERGENCY_DISTANCE
    contact_name:   str  = config.EMERGENCY_CONTACT_NAME
    # Toggled by mode arbitration only
    is_calling:     bool = False

    def with_calling(self, calling: bool) -> "EmergencyContext":
        return self if calling == self.is_calling else replace(self, is_calling=calling)


@dataclass
class SpeedState:
    """Current speed is written by the governor, target by arbitration."""
    current: float = config.INITIAL_SPEED_KPH
    target:  float = config.INITIAL_SPEED_KPH


@dataclass(frozen=True)
class LogEntry:
    id:           str
    timestamp_ms: int
    message:      str
    severity:     Severity = Severity.INFO

    def to_dict(self) -> dict:
        return {
            "id":        self.id,
            "timestamp": self.timestamp_ms,
            "message":   self.message,
            "type":      self.severity.value,
        }


# ── Settings ──────────────────────────────────────────────────────────────────

@dataclass
class EngineSettings:
    """
    Every recognized tunable of the core, defaulting to config.py.
    Override individual fields for tests or from the CLI.
    """
    decision_tick_s:           float = config.DECISION_TICK_S
    speed_tick_s:              float = config.SPEED_TICK_S
    face_loss_unresponsive_s:  float = config.FACE_LOSS_UNRESPONSIVE_S
    eyes_closed_drowsy_s:      float = config.EYES_CLOSED_DROWSY_S
    distraction_warning_s:     float = config.DISTRACTION_WARNING_S
    distraction_medium_above:  float = config.DISTRACTION_MEDIUM_ABOVE_KPH
    emergency_decel_per_tick:  float = config.EMERGENCY_DECEL_PER_TICK
    emergency_stop_below:      float = config.EMERGENCY_STOP_BELOW_KPH
    repeat_distraction_warning: bool = config.REPEAT_DISTRACTION_WARNING
    allow_emergency_release:   bool  = config.ALLOW_EMERGENCY_RELEASE
    initial_speed:             float = config.INITIAL_SPEED_KPH
    accel_step:                float = config.SPEED_ACCEL_STEP
    brake_step:                float = config.SPEED_BRAKE_STEP
    speed_epsilon:             float = config.SPEED_EPSILON
    log_capacity:              int   = config.LOG_CAPACITY
    vibrate_high:    Tuple[int, ...] = config.VIBRATE_PATTERN_HIGH
    vibrate_medium:  Tuple[int, ...] = config.VIBRATE_PATTERN_MEDIUM


# ── Published Snapshot ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SessionSnapshot:
    """
    Read-only view handed to the presentation layer after each tick that
    changed something. Consumers never see the live session objects.
    """
    driver_state:      DriverState      = DriverState.ALERT
    mode:              AutonomyMode     = AutonomyMode.MANUAL
    speed:             float            = config.INITIAL_SPEED_KPH
    target_speed:      float            = config.INITIAL_SPEED_KPH
    urgency:           TakeoverUrgency  = TakeoverUrgency.NONE
    hazards_active:    bool             = False
    emergency_context: EmergencyContext = field(default_factory=EmergencyContext)
    log_entries:       Tuple[LogEntry, ...] = ()
    takeover_message:  str              = ""
    insight:           str              = ""
    readiness_score:   float            = 100.0
    readiness_band:    str              = "nominal"
    sensor_source:     str              = "simulated"
    metrics:           Optional[DriverMetricsSample] = None

    def to_dict(self) -> dict:
        """JSON-ready dict with the keys the HUD expects."""
        ctx = self.emergency_context
        return {
            "driverState":     self.driver_state.value,
            "mode":            self.mode.value,
            "speed":           round(self.speed, 2),
            "targetSpeed":     round(self.target_speed, 2),
            "torUrgency":      self.urgency.value,
            "hazardsActive":   self.hazards_active,
            "emergencyContext": {
                "hospitalName": ctx.hospital_name,
                "distance":     ctx.distance_label,
                "contactName":  ctx.contact_name,
                "isCalling":    ctx.is_calling,
            },
            "logs":            [entry.to_dict() for entry in self.log_entries],
            "alertMessage":    self.takeover_message,
            "insight":         self.insight,
            "readinessScore":  round(self.readiness_score, 1),
            "readinessBand":   self.readiness_band,
            "sensorSource":    self.sensor_source,
            "metrics":         None if self.metrics is None else {
                "eyesOpen":       self.metrics.eyes_open,
                "faceDetected":   self.metrics.face_detected,
                "headPose":       self.metrics.head_pose.value,
                "blinkDuration":  self.metrics.blink_duration_s,
                "readinessScore": self.metrics.readiness_score,
            },
        }
