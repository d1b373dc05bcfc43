# =============================================================================
# config.py — Central Configuration for the Takeover Arbitration DMS
# All tunable parameters live here. Never hardcode values in modules.
# =============================================================================

import os

# ── Paths ─────────────────────────────────────────────────────────────────────
BASE_DIR    = os.path.dirname(os.path.abspath(__file__))
ASSETS_DIR  = os.path.join(BASE_DIR, "assets")
LOGS_DIR    = os.path.join(BASE_DIR, "logs")
os.makedirs(LOGS_DIR, exist_ok=True)

DEBUG_MODE  = False

# ── Logging ───────────────────────────────────────────────────────────────────
LOG_FORMAT              = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT         = "%H:%M:%S"
LOG_FILE_PATTERN        = "takeover_%Y%m%d.log"   # strftime, one file per day

# ── Scheduling ────────────────────────────────────────────────────────────────
DECISION_TICK_S         = 0.300   # State fusion + mode arbitration
SPEED_TICK_S            = 0.050   # Speed governor
METRICS_SAMPLE_TICK_S   = 0.500   # Metrics source sampling cadence
METRICS_EVENT_TICK_S    = 4.500   # Random attentiveness events (auto sim)
SCHEDULER_JOIN_TIMEOUT  = 2.0     # Seconds to wait for a task thread on stop

# ── State Fusion ──────────────────────────────────────────────────────────────
# Strict greater-than comparisons: an exactly-equal duration does not escalate
FACE_LOSS_UNRESPONSIVE_S = 3.0
EYES_CLOSED_DROWSY_S     = 2.5

READINESS_MIN            = 0.0
READINESS_MAX            = 100.0
READINESS_NOMINAL_ABOVE  = 70.0
READINESS_DEGRADED_ABOVE = 30.0

# ── Mode Arbitration ──────────────────────────────────────────────────────────
DISTRACTION_WARNING_S        = 5.0
DISTRACTION_MEDIUM_ABOVE_KPH = 40.0   # DISTRACTED above this speed → MEDIUM
EMERGENCY_DECEL_PER_TICK     = 10.0   # Target drops this far below speed/tick
EMERGENCY_STOP_BELOW_KPH     = 1.0    # Force target 0 below this speed
# The source re-issues the distraction warning every tick past the threshold.
# False = warn once per continuous DISTRACTED episode.
REPEAT_DISTRACTION_WARNING   = True
# Exit from EMERGENCY_CONTROL is an explicit operator action, off by default
ALLOW_EMERGENCY_RELEASE      = False

# ── Speed Governor ────────────────────────────────────────────────────────────
INITIAL_SPEED_KPH       = 80.0
SPEED_ACCEL_STEP        = 0.3     # km/h per speed tick toward higher target
SPEED_BRAKE_STEP        = 0.7     # km/h per speed tick toward lower target
SPEED_EPSILON           = 0.2     # |current − target| below this → snap

# ── Log Stream ────────────────────────────────────────────────────────────────
LOG_CAPACITY            = 20

# ── Emergency Context ─────────────────────────────────────────────────────────
EMERGENCY_HOSPITAL_NAME = "Saint Mary's Medical Center"
EMERGENCY_DISTANCE      = "1.2km"
EMERGENCY_CONTACT_NAME  = "Family Emergency Line"

# ── Notifications ─────────────────────────────────────────────────────────────
# Vibration patterns in milliseconds: on, off, on, …
VIBRATE_PATTERN_HIGH    = (200, 100, 200)
VIBRATE_PATTERN_MEDIUM  = (100,)

VOICE_RATE              = 170     # pyttsx3 words per minute
VOICE_VOLUME            = 1.0

HAPTIC_SOUND_PATH       = os.path.join(ASSETS_DIR, "haptic.wav")
HAPTIC_TONE_FREQ        = 180.0   # Hz, low buzz that reads as vibration
HAPTIC_TONE_VOLUME      = 0.6

# ── Metrics Simulation ────────────────────────────────────────────────────────
SIM_BLINK_DURATION_S    = 0.12
SIM_EYES_CLOSE_ABOVE    = 0.95
SIM_EYES_OPEN_ABOVE     = 0.85
SIM_FACE_LOST_BELOW     = 0.03
SIM_FACE_FOUND_ABOVE    = 0.08
# Readiness score (low, high) reported for each driver state
SIM_READINESS_BY_STATE  = {
    "ALERT":        (94.0, 99.0),
    "DISTRACTED":   (40.0, 50.0),
    "DROWSY":       (15.0, 20.0),
    "UNRESPONSIVE": (5.0,   5.0),
}

# ── Camera Probe ──────────────────────────────────────────────────────────────
CAMERA_INDEX            = 0
CAMERA_WIDTH            = 640
CAMERA_HEIGHT           = 480

# ── Snapshot Server ───────────────────────────────────────────────────────────
SERVER_HOST                 = "0.0.0.0"
SERVER_PORT                 = 5055
SERVER_CORS_ALLOWED_ORIGINS = "*"
SERVER_ASYNC_MODE           = "threading"
EMIT_EVENT_NAME             = "takeover_snapshot"
