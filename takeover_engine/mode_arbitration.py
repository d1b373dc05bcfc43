# =============================================================================
# takeover_engine/mode_arbitration.py
#
# Mode Arbitration Engine — maps driver state + vehicle context to
# {autonomy mode, target speed, takeover urgency}.
#
# Two layers:
#
#   arbitrate()        Pure per-tick decision. Level outputs (urgency,
#                      target speed, hazard/call stand-down) plus flags the
#                      session turns into edge-triggered effects.
#
#   ModeStateMachine   Explicit transition table. Side effects hang off the
#                      transition arcs as on_enter / on_exit callbacks, so a
#                      transition that does not happen cannot fire them.
#
# Mode diagram:
#
#              operator                 automatic
#   MANUAL  ◄──────────►  AUTONOMOUS  ──────────►  EMERGENCY_CONTROL
#      │                                                 │
#      └──────────────────── automatic ─────────────────►│
#      ◄──────────── operator release (opt-in) ──────────┘
#
# EMERGENCY_CONTROL is sticky for the decision loop: only the opt-in
# operator release leaves it.
# =============================================================================

from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from takeover_engine.data_structures import (
    AutonomyMode, DriverState, EngineSettings, TakeoverUrgency,
)
from takeover_engine.errors import InvalidModeTransition
from core.logger import get_logger

log = get_logger(__name__)

EMERGENCY_TRIGGER_STATES = frozenset({DriverState.UNRESPONSIVE, DriverState.DROWSY})

AUTOMATIC = "automatic"
OPERATOR  = "operator"

# (from, to) → who may take the arc
MODE_TRANSITIONS: Dict[Tuple[AutonomyMode, AutonomyMode], str] = {
    (AutonomyMode.MANUAL,            AutonomyMode.AUTONOMOUS):        OPERATOR,
    (AutonomyMode.AUTONOMOUS,        AutonomyMode.MANUAL):            OPERATOR,
    (AutonomyMode.MANUAL,            AutonomyMode.EMERGENCY_CONTROL): AUTOMATIC,
    (AutonomyMode.AUTONOMOUS,        AutonomyMode.EMERGENCY_CONTROL): AUTOMATIC,
    (AutonomyMode.EMERGENCY_CONTROL, AutonomyMode.MANUAL):            OPERATOR,
}

# on_enter / on_exit callback signature: (from_mode, to_mode, reason)
TransitionCallback = Callable[[AutonomyMode, AutonomyMode, str], None]


class ModeStateMachine:
    """
    Owns the current AutonomyMode and fires callbacks on transition arcs.

    Usage:
        machine = ModeStateMachine()
        machine.on_enter(AutonomyMode.EMERGENCY_CONTROL, start_hazards)
        machine.transition(AutonomyMode.EMERGENCY_CONTROL, reason="UNRESPONSIVE")
    """

    def __init__(self, initial: AutonomyMode = AutonomyMode.MANUAL):
        self.mode = initial
        self._on_enter: Dict[AutonomyMode, List[TransitionCallback]] = defaultdict(list)
        self._on_exit:  Dict[AutonomyMode, List[TransitionCallback]] = defaultdict(list)

    def on_enter(self, mode: AutonomyMode, callback: TransitionCallback) -> None:
        self._on_enter[mode].append(callback)

    def on_exit(self, mode: AutonomyMode, callback: TransitionCallback) -> None:
        self._on_exit[mode].append(callback)

    def can_transition(self, target: AutonomyMode, operator: bool = False) -> bool:
        actor = MODE_TRANSITIONS.get((self.mode, target))
        if actor is None:
            return False
        return actor == AUTOMATIC or operator

    def transition(
        self,
        target: AutonomyMode,
        reason: str = "",
        operator: bool = False,
    ) -> bool:
        """
        Move to target, firing on_exit(current) then on_enter(target).

        Returns:
            False if already in target (nothing fires), True otherwise.

        Raises:
            InvalidModeTransition: arc missing from MODE_TRANSITIONS, or an
                                   operator-only arc requested automatically.
        """
        if target is self.mode:
            return False
        if not self.can_transition(target, operator):
            raise InvalidModeTransition(self.mode, target, reason)

        previous = self.mode
        for callback in self._on_exit[previous]:
            callback(previous, target, reason)
        self.mode = target
        log.info(f"Autonomy mode: {previous.value} → {target.value}"
                 + (f" ({reason})" if reason else ""))
        for callback in self._on_enter[target]:
            callback(previous, target, reason)
        return True


# ── Per-tick decision ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ArbitrationInput:
    driver_state:          DriverState
    previous_driver_state: DriverState
    speed:                 float
    previous_mode:         AutonomyMode
    previous_target_speed: float
    previous_urgency:      TakeoverUrgency
    # Seconds spent in driver_state, 0 on the tick it was entered
    time_in_state_s:       float = 0.0
    # A distraction warning already went out in this DISTRACTED episode
    distraction_warned:    bool  = False


@dataclass(frozen=True)
class Decision:
    mode:                AutonomyMode
    target_speed:        float
    urgency:             TakeoverUrgency
    # None = leave as is
    hazards:             Optional[bool] = None
    calling:             Optional[bool] = None
    distraction_warning: bool = False
    # Emergency control with the vehicle at exactly 0 km/h
    stopped:             bool = False


def arbitrate(inp: ArbitrationInput, settings: EngineSettings = None) -> Decision:
    """Pure mode-arbitration step. Never mutates its input."""
    settings = settings or EngineSettings()

    mode         = inp.previous_mode
    target_speed = inp.previous_target_speed
    urgency      = TakeoverUrgency.NONE
    hazards      = None
    calling      = None
    warning      = False

    if inp.driver_state in EMERGENCY_TRIGGER_STATES:
        mode         = AutonomyMode.EMERGENCY_CONTROL
        urgency      = TakeoverUrgency.HIGH
        target_speed = max(0.0, inp.speed - settings.emergency_decel_per_tick)

    elif inp.driver_state is DriverState.DISTRACTED:
        urgency = (TakeoverUrgency.MEDIUM
                   if inp.speed > settings.distraction_medium_above
                   else TakeoverUrgency.LOW)
        if (inp.time_in_state_s > settings.distraction_warning_s
                and mode is AutonomyMode.MANUAL):
            warning = settings.repeat_distraction_warning or not inp.distraction_warned

    elif mode is not AutonomyMode.EMERGENCY_CONTROL:
        hazards = False
        calling = False

    stopped = False
    if mode is AutonomyMode.EMERGENCY_CONTROL and inp.speed < settings.emergency_stop_below:
        target_speed = 0.0
        stopped = inp.speed == 0

    return Decision(
        mode=mode,
        target_speed=target_speed,
        urgency=urgency,
        hazards=hazards,
        calling=calling,
        distraction_warning=warning,
        stopped=stopped,
    )


def takeover_message(mode: AutonomyMode, urgency: TakeoverUrgency) -> str:
    """Banner text for the alert overlay."""
    if mode is AutonomyMode.EMERGENCY_CONTROL:
        return "AI EMERGENCY CONTROL ACTIVE"
    if urgency is TakeoverUrgency.HIGH:
        return "IMMEDIATE TAKEOVER REQUIRED!"
    if urgency is TakeoverUrgency.MEDIUM:
        return "ATTENTION REQUIRED"
    return ""
