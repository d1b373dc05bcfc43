# =============================================================================
# takeover_engine/speed_governor.py
#
# SpeedGovernor — moves the actual speed toward the target on its own tick.
#
#   |v − v*| < ε     → v = v*            (terminal snap)
#   v* > v           → v = min(v*, v + a)
#   v* < v           → v = max(v*, v − b)
#
# With a = 0.3 and b = 0.7 km/h per 50 ms tick, braking authority is
# ~2.3× acceleration. A step never carries the speed past its target, so a
# target of 0 is reached exactly and never undershot.
# =============================================================================

from config import SPEED_ACCEL_STEP, SPEED_BRAKE_STEP, SPEED_EPSILON
from takeover_engine.data_structures import SpeedState


def step_speed(
    current: float,
    target: float,
    accel_step: float = SPEED_ACCEL_STEP,
    brake_step: float = SPEED_BRAKE_STEP,
    epsilon: float = SPEED_EPSILON,
) -> float:
    """One governor tick. Pure."""
    if abs(current - target) < epsilon:
        return target
    if target > current:
        return min(target, current + accel_step)
    return max(target, current - brake_step)


class SpeedGovernor:
    """
    Applies step_speed() to a shared SpeedState. Only the governor writes
    SpeedState.current.
    """

    def __init__(
        self,
        speed: SpeedState,
        accel_step: float = SPEED_ACCEL_STEP,
        brake_step: float = SPEED_BRAKE_STEP,
        epsilon: float = SPEED_EPSILON,
    ):
        self.speed      = speed
        self.accel_step = accel_step
        self.brake_step = brake_step
        self.epsilon    = epsilon

    def tick(self) -> bool:
        """Advance one tick. Returns True if the current speed moved."""
        before = self.speed.current
        self.speed.current = step_speed(
            before, self.speed.target,
            self.accel_step, self.brake_step, self.epsilon,
        )
        return self.speed.current != before

    @property
    def is_braking(self) -> bool:
        return self.speed.target < self.speed.current

    @property
    def converged(self) -> bool:
        return self.speed.current == self.speed.target
