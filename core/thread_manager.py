# =============================================================================
# core/thread_manager.py
#
# ThreadManager — start / stop orchestration for the takeover DMS.
#
# Components are registered as (name, start_fn, stop_fn) in dependency order:
# notifiers before the session that speaks through them, the session before
# the metrics source that feeds it, the snapshot server last.
#
#   start_all()  starts in registration order and pushes each component
#                onto a started stack. If a start fails, everything already
#                on the stack is stopped and the error re-raised.
#   stop_all()   pops the stack (LIFO). Shutdown errors are logged, never
#                raised, so the process always gets to exit.
# =============================================================================

import time
from typing import Callable, Dict, List, NamedTuple, Optional

from core.logger import get_logger

log = get_logger(__name__)


class Component(NamedTuple):
    name:     str
    start_fn: Optional[Callable[[], None]]
    stop_fn:  Optional[Callable[[], None]]


class ThreadManager:
    """
    Usage:
        tm = ThreadManager()
        tm.register("Notifiers",       notifier.start, notifier.stop)
        tm.register("TakeoverSession", session.start,  session.stop)
        tm.start_all()
        ...
        tm.stop_all()
    """

    def __init__(self):
        self._components: List[Component] = []
        self._stack:      List[Component] = []
        self.startup_ms:  Dict[str, float] = {}

    def register(
        self,
        name:     str,
        start_fn: Optional[Callable[[], None]] = None,
        stop_fn:  Optional[Callable[[], None]] = None,
    ) -> None:
        self._components.append(Component(name, start_fn, stop_fn))
        log.debug(f"Registered component: {name}")

    def start_all(self) -> None:
        log.info("=" * 50)
        log.info("  Starting Takeover DMS")
        log.info("=" * 50)
        t_all = time.perf_counter()

        for component in self._components:
            t0 = time.perf_counter()
            try:
                if component.start_fn is not None:
                    component.start_fn()
            except Exception as e:
                log.error(f"  ✗  {component.name} failed to start: {e}", exc_info=True)
                self.stop_all()
                raise
            self._stack.append(component)
            self.startup_ms[component.name] = (time.perf_counter() - t0) * 1000
            log.info(f"  ✓  {component.name:<25} started  "
                     f"({self.startup_ms[component.name]:.0f}ms)")

        log.info(f"  All components ready in {(time.perf_counter() - t_all) * 1000:.0f}ms")
        log.info("=" * 50)

    def stop_all(self) -> None:
        if not self._stack:
            return
        log.info("Shutting down Takeover DMS …")
        while self._stack:
            component = self._stack.pop()
            if component.stop_fn is None:
                continue
            try:
                component.stop_fn()
                log.info(f"  ✓  {component.name} stopped.")
            except Exception as e:
                log.error(f"  ✗  {component.name} shutdown error: {e}", exc_info=True)
        log.info("Takeover DMS shut down cleanly.")

    @property
    def started(self) -> List[str]:
        return [c.name for c in self._stack]
