"""
main.py — Takeover DMS Entry Point
Wires the takeover core to its collaborators and runs both schedulers.

Components (start order; shutdown is the reverse):
  1. Notifiers           voice (pyttsx3) + haptic (pygame), deduplicated
  2. TakeoverSession     decision tick 300 ms + speed tick 50 ms
  3. Metrics source      simulated samples every 500 ms, events every 4.5 s
  4. Snapshot server     Flask-SocketIO bridge to the HUD

Usage:
  python main.py
  python main.py --no-server          # console only
  python main.py --no-audio           # no haptic tones
  python main.py --no-voice           # no speech
  python main.py --no-camera          # skip the camera probe
  python main.py --seed 7 --duration 60
  python main.py --allow-release      # operator may leave emergency control
  python main.py --debug              # verbose output
"""

import argparse
import logging
import os
import sys
import threading

# ── Project-root imports ──────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, ROOT)

import config
from alerts.alert_system          import HapticAlertSystem
from alerts.notifier              import CompositeNotifier, DedupingNotifier, VoiceNotifier
from camera.capture               import probe_sensor_source
from core.logger                  import get_logger, set_console_level
from core.thread_manager          import ThreadManager
from server.websocket_server      import SnapshotServer
from simulation.metrics_source    import SimulatedMetricsSource
from takeover_engine.data_structures import EngineSettings, SessionSnapshot
from takeover_engine.session      import TakeoverSession

log = get_logger("main")


# ──────────────────────────────────────────────────────────────────────────────
# Argument parsing
# ──────────────────────────────────────────────────────────────────────────────

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Takeover DMS — driver monitoring & takeover arbitration")
    p.add_argument("--no-server", action="store_true",
                   help="Do not start the HUD snapshot server.")
    p.add_argument("--no-audio",  action="store_true",
                   help="Disable haptic (pygame) alerts.")
    p.add_argument("--no-voice",  action="store_true",
                   help="Disable spoken (pyttsx3) alerts.")
    p.add_argument("--no-camera", action="store_true",
                   help="Skip the camera probe; report a simulated sensor.")
    p.add_argument("--seed",      type=int, default=None,
                   help="Seed for the simulated metrics source.")
    p.add_argument("--duration",  type=float, default=None,
                   help="Stop after this many seconds (default: run until Ctrl+C).")
    p.add_argument("--decision-tick", type=float, default=config.DECISION_TICK_S,
                   help=f"Decision tick period in seconds (default: {config.DECISION_TICK_S}).")
    p.add_argument("--speed-tick",    type=float, default=config.SPEED_TICK_S,
                   help=f"Speed tick period in seconds (default: {config.SPEED_TICK_S}).")
    p.add_argument("--warn-once", action="store_true",
                   help="Issue the distraction warning once per episode instead of every tick.")
    p.add_argument("--allow-release", action="store_true",
                   help="Allow an operator to release emergency control.")
    p.add_argument("--port",      type=int, default=config.SERVER_PORT,
                   help=f"Snapshot server port (default: {config.SERVER_PORT}).")
    p.add_argument("--debug",     action="store_true",
                   help="Enable verbose debug output.")
    return p.parse_args(argv)


def build_settings(args) -> EngineSettings:
    return EngineSettings(
        decision_tick_s=args.decision_tick,
        speed_tick_s=args.speed_tick,
        repeat_distraction_warning=not args.warn_once,
        allow_emergency_release=args.allow_release,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Console reporter
# ──────────────────────────────────────────────────────────────────────────────

class ConsoleReporter:
    """Logs a one-line status whenever mode, driver state or urgency changes."""

    def __init__(self):
        self._last = None

    def __call__(self, snap: SessionSnapshot) -> None:
        key = (snap.driver_state, snap.mode, snap.urgency, snap.hazards_active)
        if key == self._last:
            return
        self._last = key
        log.info(
            f"Driver={snap.driver_state.value:<12} Mode={snap.mode.value:<17} "
            f"TOR={snap.urgency.value:<6} Speed={snap.speed:5.1f}/{snap.target_speed:5.1f} "
            f"Hazards={'ON' if snap.hazards_active else 'off'}"
        )


# ──────────────────────────────────────────────────────────────────────────────
# Main
# ──────────────────────────────────────────────────────────────────────────────

def main(argv=None) -> int:
    args = parse_args(argv)
    if args.debug:
        config.DEBUG_MODE = True
        set_console_level(logging.DEBUG)

    # ── Notifiers ─────────────────────────────────────────────────────────────
    sinks = CompositeNotifier()
    if not args.no_voice:
        sinks.add(VoiceNotifier())
    if not args.no_audio:
        sinks.add(HapticAlertSystem())
    notifier = DedupingNotifier(sinks)

    # ── Core ──────────────────────────────────────────────────────────────────
    session = TakeoverSession(settings=build_settings(args), notifier=notifier)
    session.subscribe(ConsoleReporter())
    session.set_sensor_source("simulated" if args.no_camera else probe_sensor_source())

    source = SimulatedMetricsSource(
        session.submit_metrics_sample,
        driver_state_fn=lambda: session.driver_state,
        seed=args.seed,
    )

    tm = ThreadManager()
    tm.register("Notifiers", notifier.start, notifier.stop)
    tm.register("TakeoverSession", session.start, session.stop)
    tm.register("MetricsSource", source.start, source.stop)

    if not args.no_server:
        server = SnapshotServer(session, port=args.port)
        session.subscribe(server.emit_snapshot)
        tm.register("SnapshotServer", server.start_background, server.stop)

    done = threading.Event()
    try:
        tm.start_all()
        log.info("Running — press Ctrl+C to quit.")
        done.wait(timeout=args.duration)
    except KeyboardInterrupt:
        log.info("KeyboardInterrupt — shutting down.")
    finally:
        tm.stop_all()

    final = session.snapshot()
    log.info(f"Final state: driver={final.driver_state.value} "
             f"mode={final.mode.value} speed={final.speed:.1f}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
