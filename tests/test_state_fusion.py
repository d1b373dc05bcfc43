import pytest

from conftest import EYES_CLOSED, FACE_LOST, LOOKING_LEFT, NOMINAL
from takeover_engine.data_structures import DriverMetricsSample, DriverState, HeadPose
from takeover_engine.state_fusion import (
    DriverStateTracker, driver_insight, fuse, readiness_band,
)


# --- fuse() ---

def test_face_loss_below_threshold_is_distracted():
    assert fuse(FACE_LOST, DriverState.ALERT, 1.0) is DriverState.DISTRACTED


def test_face_loss_threshold_is_strict():
    assert fuse(FACE_LOST, DriverState.DISTRACTED, 3.0) is DriverState.DISTRACTED
    assert fuse(FACE_LOST, DriverState.DISTRACTED, 3.0001) is DriverState.UNRESPONSIVE


def test_eyes_closed_threshold_is_strict():
    assert fuse(EYES_CLOSED, DriverState.ALERT, 2.5) is DriverState.ALERT
    assert fuse(EYES_CLOSED, DriverState.ALERT, 2.5001) is DriverState.DROWSY


def test_face_loss_takes_precedence_over_closed_eyes():
    sample = DriverMetricsSample(face_detected=False, eyes_open=False)
    assert fuse(sample, DriverState.ALERT, 10.0) is DriverState.UNRESPONSIVE


@pytest.mark.parametrize("pose", [HeadPose.LEFT, HeadPose.RIGHT, HeadPose.DOWN])
def test_head_turned_is_distracted(pose):
    sample = DriverMetricsSample(head_pose=pose)
    assert fuse(sample, DriverState.ALERT, 0.0) is DriverState.DISTRACTED


@pytest.mark.parametrize("previous", list(DriverState))
@pytest.mark.parametrize("elapsed", [0.0, 2.9, 60.0])
def test_nominal_sample_recovers_immediately(previous, elapsed):
    assert fuse(NOMINAL, previous, elapsed) is DriverState.ALERT


def test_escalated_state_holds_while_condition_persists():
    assert fuse(FACE_LOST, DriverState.UNRESPONSIVE, 0.0) is DriverState.UNRESPONSIVE
    assert fuse(EYES_CLOSED, DriverState.DROWSY, 0.0) is DriverState.DROWSY


def test_custom_thresholds():
    assert fuse(FACE_LOST, DriverState.DISTRACTED, 1.5,
                face_loss_threshold_s=1.0) is DriverState.UNRESPONSIVE


# --- DriverStateTracker ---

def test_entry_time_moves_only_on_change():
    tracker = DriverStateTracker(now=0.0)
    tracker.update(NOMINAL, now=1.0)
    assert tracker.entered_at == 0.0

    state, changed = tracker.update(LOOKING_LEFT, now=2.0)
    assert (state, changed) == (DriverState.DISTRACTED, True)
    assert tracker.entered_at == 2.0

    _, changed = tracker.update(LOOKING_LEFT, now=3.0)
    assert changed is False
    assert tracker.entered_at == 2.0
    assert tracker.time_in_state(3.5) == pytest.approx(1.5)


def test_sustained_face_loss_reaches_unresponsive_and_never_alert():
    tracker = DriverStateTracker(now=0.0)
    states = []
    for tick in range(1, 40):
        state, _ = tracker.update(FACE_LOST, now=tick * 0.3)
        states.append(state)

    assert DriverState.UNRESPONSIVE in states
    assert DriverState.ALERT not in states
    first = states.index(DriverState.UNRESPONSIVE)
    assert all(s is DriverState.UNRESPONSIVE for s in states[first:])


def test_momentary_face_loss_does_not_escalate():
    tracker = DriverStateTracker(now=0.0)
    tracker.update(NOMINAL, now=0.3)
    state, _ = tracker.update(LOOKING_LEFT, now=0.6)
    assert state is DriverState.DISTRACTED
    state, _ = tracker.update(FACE_LOST, now=0.9)
    assert state is DriverState.DISTRACTED
    state, _ = tracker.update(NOMINAL, now=1.2)
    assert state is DriverState.ALERT


def test_missing_sample_keeps_state():
    tracker = DriverStateTracker(now=0.0)
    assert tracker.update(None, now=100.0) == (DriverState.ALERT, False)


# --- Presentation helpers ---

@pytest.mark.parametrize("score,band", [
    (99.0, "nominal"), (70.1, "nominal"), (70.0, "degraded"),
    (45.0, "degraded"), (30.0, "critical"), (5.0, "critical"),
])
def test_readiness_band(score, band):
    assert readiness_band(score) == band


def test_driver_insight_covers_every_state():
    assert "nominal" in driver_insight(DriverState.ALERT)
    assert "lane departure" in driver_insight(DriverState.DISTRACTED)
    assert driver_insight(DriverState.DROWSY).startswith("CRITICAL")
    assert driver_insight(DriverState.UNRESPONSIVE).startswith("CRITICAL")
