import pytest

from alerts.notifier import NotificationSink
from takeover_engine.data_structures import DriverMetricsSample, HeadPose
from takeover_engine.session import TakeoverSession


# --- Fakes ---

class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier(NotificationSink):
    def __init__(self):
        self.spoken = []
        self.vibrations = []

    def speak(self, text, category="general"):
        self.spoken.append((category, text))

    def vibrate(self, pattern):
        self.vibrations.append(tuple(pattern))


NOMINAL      = DriverMetricsSample()
FACE_LOST    = DriverMetricsSample(face_detected=False)
EYES_CLOSED  = DriverMetricsSample(eyes_open=False)
LOOKING_LEFT = DriverMetricsSample(head_pose=HeadPose.LEFT)


# --- Fixtures ---

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def session(clock, notifier):
    return TakeoverSession(notifier=notifier, clock=clock)


def run_ticks(session, clock, sample, count, period=0.3):
    """Submit sample and run count decision ticks, advancing the clock first."""
    session.submit_metrics_sample(sample)
    for _ in range(count):
        clock.advance(period)
        session.decision_tick()
