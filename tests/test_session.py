import time

import pytest

from alerts.notifier import NotificationSink
from conftest import FACE_LOST, LOOKING_LEFT, NOMINAL, RecordingNotifier, run_ticks
from takeover_engine import session as session_module
from takeover_engine.data_structures import (
    AutonomyMode, DriverState, EmergencyContext, EngineSettings, Severity,
    TakeoverUrgency,
)
from takeover_engine.errors import InvalidModeTransition
from takeover_engine.session import (
    DISTRACTION_LOG, DISTRACTION_SPEECH, PARKED_LOG, RELEASE_RESET_LOG,
    TakeoverSession,
)


def messages(session, severity=None):
    return [e.message for e in session.log_stream.entries()
            if severity is None or e.severity is severity]


def drive_to_stop(session, clock, sample, decisions=400, speed_ticks_per_decision=6):
    """Interleave speed ticks and decision ticks on the fake clock."""
    session.submit_metrics_sample(sample)
    for _ in range(decisions):
        for _ in range(speed_ticks_per_decision):
            clock.advance(0.05)
            session.speed_tick()
        session.decision_tick()


# --- Emergency takeover ---

def test_four_seconds_of_face_loss_takes_control(session, clock, notifier):
    run_ticks(session, clock, FACE_LOST, count=13)

    assert session.driver_state is DriverState.UNRESPONSIVE
    assert session.mode is AutonomyMode.EMERGENCY_CONTROL
    assert session.urgency is TakeoverUrgency.HIGH
    assert session.speed.target == 70.0
    assert session.hazards_active is True
    assert session.emergency_context.is_calling is True

    critical = messages(session, Severity.CRITICAL)
    assert critical == ["CRITICAL: Driver UNRESPONSIVE detected. Taking control."]
    assert [c for c, _ in notifier.spoken] == ["emergency"]
    assert DISTRACTION_LOG not in messages(session)
    assert notifier.vibrations == [(100,), (200, 100, 200)]


def test_emergency_side_effects_fire_once_per_episode(session, clock, notifier):
    run_ticks(session, clock, FACE_LOST, count=63)

    assert len(messages(session, Severity.CRITICAL)) == 1
    assert len(notifier.spoken) == 1
    assert notifier.vibrations.count((200, 100, 200)) == 1


def test_emergency_speech_names_hospital_and_contact(clock, notifier):
    ctx = EmergencyContext(hospital_name="Riverside General", contact_name="Alex")
    session = TakeoverSession(notifier=notifier, emergency_context=ctx, clock=clock)
    run_ticks(session, clock, FACE_LOST, count=13)

    _, text = notifier.spoken[0]
    assert "Riverside General" in text
    assert "Alex" in text


def test_drowsy_driver_also_triggers_emergency(session, clock):
    session.submit_metrics_payload({"eyesOpen": False})
    for _ in range(10):
        clock.advance(0.3)
        session.decision_tick()

    assert session.driver_state is DriverState.DROWSY
    assert session.mode is AutonomyMode.EMERGENCY_CONTROL
    assert messages(session, Severity.CRITICAL) == [
        "CRITICAL: Driver DROWSY detected. Taking control."
    ]


def test_emergency_from_autonomous_mode(session, clock):
    session.request_mode(AutonomyMode.AUTONOMOUS)
    run_ticks(session, clock, FACE_LOST, count=13)
    assert session.mode is AutonomyMode.EMERGENCY_CONTROL


def test_safe_stop_reaches_zero_and_parks_once(session, clock):
    drive_to_stop(session, clock, FACE_LOST)

    assert session.speed.current == 0.0
    assert session.speed.target == 0.0
    assert messages(session).count(PARKED_LOG) == 1
    assert session.urgency is TakeoverUrgency.HIGH
    assert session.snapshot().takeover_message == "AI EMERGENCY CONTROL ACTIVE"


def test_speed_never_negative_during_safe_stop(session, clock):
    seen = []
    session.subscribe(lambda snap: seen.append(snap.speed))
    drive_to_stop(session, clock, FACE_LOST, decisions=200)
    assert seen and min(seen) >= 0.0


def test_emergency_control_is_sticky_after_recovery(session, clock):
    run_ticks(session, clock, FACE_LOST, count=13)
    run_ticks(session, clock, NOMINAL, count=20)

    assert session.driver_state is DriverState.ALERT
    assert session.mode is AutonomyMode.EMERGENCY_CONTROL
    assert session.hazards_active is True
    assert session.emergency_context.is_calling is True


# --- Distraction ---

def test_distraction_at_speed_is_medium_urgency(session, clock, notifier):
    run_ticks(session, clock, LOOKING_LEFT, count=1)

    assert session.driver_state is DriverState.DISTRACTED
    assert session.urgency is TakeoverUrgency.MEDIUM
    assert notifier.vibrations == [(100,)]
    assert session.snapshot().takeover_message == "ATTENTION REQUIRED"


def test_distraction_warning_repeats_after_five_seconds(session, clock, notifier):
    run_ticks(session, clock, LOOKING_LEFT, count=20)

    assert notifier.spoken == [("distraction", DISTRACTION_SPEECH)] * 3
    assert messages(session, Severity.WARNING) == [DISTRACTION_LOG] * 3


def test_distraction_warning_once_per_episode(clock, notifier):
    settings = EngineSettings(repeat_distraction_warning=False)
    session = TakeoverSession(settings=settings, notifier=notifier, clock=clock)

    run_ticks(session, clock, LOOKING_LEFT, count=30)
    assert len(notifier.spoken) == 1

    # A new episode warns again
    run_ticks(session, clock, NOMINAL, count=1)
    run_ticks(session, clock, LOOKING_LEFT, count=30)
    assert len(notifier.spoken) == 2


def test_no_distraction_warning_under_autopilot(session, clock, notifier):
    session.request_mode(AutonomyMode.AUTONOMOUS)
    run_ticks(session, clock, LOOKING_LEFT, count=30)
    assert notifier.spoken == []
    assert session.urgency is TakeoverUrgency.MEDIUM


def test_recovery_clears_urgency(session, clock):
    run_ticks(session, clock, LOOKING_LEFT, count=3)
    run_ticks(session, clock, NOMINAL, count=1)

    assert session.driver_state is DriverState.ALERT
    assert session.urgency is TakeoverUrgency.NONE
    assert session.hazards_active is False
    assert session.mode is AutonomyMode.MANUAL


# --- Operator requests ---

def test_request_mode_toggles_manual_and_autonomous(session):
    session.request_mode(AutonomyMode.AUTONOMOUS)
    assert session.mode is AutonomyMode.AUTONOMOUS
    session.request_mode("MANUAL")
    assert session.mode is AutonomyMode.MANUAL
    assert "Autonomy mode set to AUTONOMOUS by operator." in messages(session)


def test_request_mode_cannot_touch_emergency_control(session, clock):
    with pytest.raises(InvalidModeTransition):
        session.request_mode(AutonomyMode.EMERGENCY_CONTROL)

    run_ticks(session, clock, FACE_LOST, count=13)
    with pytest.raises(InvalidModeTransition):
        session.request_mode(AutonomyMode.MANUAL)
    assert session.mode is AutonomyMode.EMERGENCY_CONTROL


def test_release_disabled_by_default(session, clock):
    run_ticks(session, clock, FACE_LOST, count=13)
    with pytest.raises(InvalidModeTransition):
        session.release_emergency_control()


def test_release_requires_stopped_vehicle(clock, notifier):
    settings = EngineSettings(allow_emergency_release=True)
    session = TakeoverSession(settings=settings, notifier=notifier, clock=clock)
    run_ticks(session, clock, FACE_LOST, count=13)
    run_ticks(session, clock, NOMINAL, count=1)

    with pytest.raises(InvalidModeTransition) as excinfo:
        session.release_emergency_control()
    assert excinfo.value.current is AutonomyMode.EMERGENCY_CONTROL


def test_release_after_stop_with_alert_driver(clock, notifier):
    settings = EngineSettings(allow_emergency_release=True, initial_speed=0.0)
    session = TakeoverSession(settings=settings, notifier=notifier, clock=clock)
    run_ticks(session, clock, FACE_LOST, count=13)
    assert session.mode is AutonomyMode.EMERGENCY_CONTROL

    # Driver still unresponsive
    with pytest.raises(InvalidModeTransition):
        session.release_emergency_control()

    run_ticks(session, clock, NOMINAL, count=1)
    clock.advance(2.0)
    session.release_emergency_control()

    assert session.mode is AutonomyMode.MANUAL
    assert session.hazards_active is False
    assert session.emergency_context.is_calling is False
    assert session.urgency is TakeoverUrgency.NONE
    # Driver monitoring starts a fresh ALERT episode at release time
    assert session.driver_state is DriverState.ALERT
    assert session.tracker.entered_at == clock.now
    assert session.log_stream.entries()[0].message == RELEASE_RESET_LOG


# --- Fail-safe hold ---

def test_decision_fault_holds_previous_state(session, clock, monkeypatch):
    def broken(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(session_module, "arbitrate", broken)
    session.submit_metrics_sample(FACE_LOST)
    clock.advance(0.3)

    assert session.decision_tick() is True
    assert session.driver_state is DriverState.ALERT
    assert session.mode is AutonomyMode.MANUAL
    entry = session.log_stream.entries()[0]
    assert entry.severity is Severity.CRITICAL
    assert entry.message.startswith("Decision fault (RuntimeError)")


class BrokenSink(NotificationSink):
    def speak(self, text, category="general"):
        raise RuntimeError("speaker unplugged")

    def vibrate(self, pattern):
        raise RuntimeError("haptics offline")


def test_failing_notifier_still_takes_control(clock):
    session = TakeoverSession(notifier=BrokenSink(), clock=clock)
    run_ticks(session, clock, FACE_LOST, count=30)

    assert session.mode is AutonomyMode.EMERGENCY_CONTROL
    assert session.hazards_active is True
    assert session.speed.target == 70.0
    assert messages(session, Severity.CRITICAL) == [
        "CRITICAL: Driver UNRESPONSIVE detected. Taking control."
    ]
    assert not any(m.startswith("Decision fault") for m in messages(session))


def test_failing_notifier_during_distraction_keeps_state(clock):
    session = TakeoverSession(notifier=BrokenSink(), clock=clock)
    run_ticks(session, clock, LOOKING_LEFT, count=20)

    assert session.driver_state is DriverState.DISTRACTED
    assert session.urgency is TakeoverUrgency.MEDIUM
    assert messages(session, Severity.WARNING) == [DISTRACTION_LOG] * 3


# --- Input and publishing ---

def test_publishes_only_on_change(session, clock):
    seen = []
    session.subscribe(seen.append)

    run_ticks(session, clock, NOMINAL, count=3)
    assert seen == []

    run_ticks(session, clock, LOOKING_LEFT, count=1)
    assert len(seen) == 1
    assert seen[0].driver_state is DriverState.DISTRACTED


def test_failing_subscriber_does_not_break_tick(session, clock):
    seen = []

    def broken(_snap):
        raise RuntimeError("subscriber down")

    session.subscribe(broken)
    session.subscribe(seen.append)
    run_ticks(session, clock, LOOKING_LEFT, count=1)
    assert len(seen) == 1


def test_stale_snapshot_is_not_delivered_after_newer_one(session):
    seen = []
    session.subscribe(seen.append)

    # Decision snapshot built first but delivered after a speed tick
    with session._lock:
        older = session._stage_snapshot()
    session.speed.target = 0.0
    assert session.speed_tick() is True
    session._publish(*older)

    assert len(seen) == 1
    assert seen[0].speed == pytest.approx(79.3)


def test_snapshots_are_numbered_across_both_ticks(session, clock):
    seen = []
    session.subscribe(seen.append)
    session.speed.target = 0.0

    session.speed_tick()
    run_ticks(session, clock, LOOKING_LEFT, count=1)
    session.speed_tick()

    assert len(seen) == 3
    assert session._published_seq == session._snapshot_seq == 3
    assert [s.speed for s in seen] == pytest.approx([79.3, 79.3, 78.6])


def test_invalid_payload_keeps_previous_sample(session):
    assert session.submit_metrics_payload({"headPose": "left", "readinessScore": 150})
    assert session.latest_sample.readiness_score == 100.0

    assert session.submit_metrics_payload({"headPose": "sideways"}) is False
    assert session.latest_sample.head_pose.value == "left"


def test_payload_flags_parse_strings_and_reject_junk(session):
    assert session.submit_metrics_payload({"eyesOpen": "false"}) is True
    assert session.latest_sample.eyes_open is False
    assert session.submit_metrics_payload({"faceDetected": "No"}) is True
    assert session.latest_sample.face_detected is False

    assert session.submit_metrics_payload({"faceDetected": "maybe"}) is False
    assert session.submit_metrics_payload({"eyesOpen": 1}) is False
    assert session.latest_sample.face_detected is False


@pytest.mark.parametrize("payload", [["eyesOpen"], None, "eyesOpen=false"])
def test_non_mapping_payload_is_dropped(session, payload):
    session.submit_metrics_payload({"headPose": "left"})
    assert session.submit_metrics_payload(payload) is False
    assert session.latest_sample.head_pose.value == "left"


def test_snapshot_dict_shape(session, clock):
    session.set_sensor_source("camera")
    run_ticks(session, clock, LOOKING_LEFT, count=1)
    data = session.snapshot().to_dict()

    assert data["driverState"] == "DISTRACTED"
    assert data["mode"] == "MANUAL"
    assert data["torUrgency"] == "MEDIUM"
    assert data["sensorSource"] == "camera"
    assert data["metrics"]["headPose"] == "left"
    assert set(data["emergencyContext"]) == {
        "hospitalName", "distance", "contactName", "isCalling",
    }


def test_start_and_stop_schedulers():
    settings = EngineSettings(decision_tick_s=0.01, speed_tick_s=0.01)
    session = TakeoverSession(settings=settings, notifier=RecordingNotifier())
    session.submit_metrics_sample(NOMINAL)
    session.start()
    time.sleep(0.1)
    session.stop()

    assert session._decision_task is None
    assert session._speed_task is None
    assert session.mode is AutonomyMode.MANUAL
