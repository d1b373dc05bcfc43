# =============================================================================
# core/scheduler.py
#
# PeriodicTask — runs a callback on a fixed period in a daemon thread.
#
# Timing:
#   Deadlines are computed on time.monotonic() from the previous deadline,
#   so the period does not drift by the callback's own run time. If a
#   callback overruns a whole period the missed deadlines are skipped
#   rather than replayed in a burst. A task never overlaps with itself.
#
# Cancellation:
#   stop() sets a threading.Event and joins the thread. Once stop() has
#   returned (from any thread other than the task's own) no callback of
#   this task is running and none will start.
# =============================================================================

import threading
import time
from typing import Callable, Optional

from config import SCHEDULER_JOIN_TIMEOUT
from core.logger import get_logger

log = get_logger(__name__)


class PeriodicTask:
    """
    Usage:
        task = PeriodicTask("decision-tick", 0.3, session.decision_tick)
        task.start()
        ...
        task.stop()
    """

    def __init__(
        self,
        name: str,
        period_s: float,
        callback: Callable[[], None],
        join_timeout: float = SCHEDULER_JOIN_TIMEOUT,
    ):
        if period_s <= 0:
            raise ValueError(f"{name}: period must be > 0, got {period_s}")
        self.name         = name
        self.period_s     = period_s
        self._callback    = callback
        self._join_timeout = join_timeout
        self._stop_event  = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.tick_count   = 0

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        if self.running:
            log.warning(f"{self.name} already running.")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name=self.name, daemon=True
        )
        self._thread.start()
        log.debug(f"{self.name} started (period={self.period_s * 1000:.0f}ms)")

    def stop(self) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout=self._join_timeout)
        if thread.is_alive():
            log.error(f"{self.name} did not stop within {self._join_timeout:.1f}s")
        else:
            log.debug(f"{self.name} stopped after {self.tick_count} ticks")
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ── Loop ──────────────────────────────────────────────────────────────────

    def _run(self) -> None:
        next_deadline = time.monotonic() + self.period_s
        while not self._stop_event.wait(timeout=max(0.0, next_deadline - time.monotonic())):
            try:
                self._callback()
            except Exception as exc:
                # A failing tick must not kill the schedule
                log.error(f"{self.name} tick failed: {exc}", exc_info=True)
            self.tick_count += 1

            next_deadline += self.period_s
            now = time.monotonic()
            if next_deadline < now:
                skipped = int((now - next_deadline) / self.period_s) + 1
                next_deadline += skipped * self.period_s
