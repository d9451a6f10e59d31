"""
Aggregate View Refresh Coordinator

Rebuilds the configured aggregate views one after the other, on a fixed
timer and on manual request. At most one cycle runs at a time: a trigger
that arrives while a cycle is RUNNING is dropped with a warning, not
queued. The next timer tick is the retry.

State machine:
    IDLE --trigger--> RUNNING --all views attempted--> IDLE
    RUNNING --trigger--> RUNNING (trigger dropped)

The per-view status board keeps only the latest result of each view and
is the sole failure signal of this task; exceptions never leave a cycle.
"""

import logging
import threading
import time
from typing import Callable, Dict, Iterable, Optional

from ..interfaces.records import RefreshOutcome, ViewRefreshStatus
from ..storage.base import Store, ViewNotFoundError

logger = logging.getLogger(__name__)


class RunGate:
    """
    Compare-and-set running flag.

    The internal lock is held only for the test-and-set itself, never for
    the duration of a cycle, so callers that lose the race return at once.
    """

    def __init__(self):
        self._flag_lock = threading.Lock()
        self._running = False

    def try_enter(self) -> bool:
        """Set the flag if clear. Returns False if it was already set."""
        with self._flag_lock:
            if self._running:
                return False
            self._running = True
            return True

    def leave(self):
        with self._flag_lock:
            self._running = False

    @property
    def running(self) -> bool:
        return self._running


class RefreshStatusBoard:
    """Thread-safe map of view name -> last ViewRefreshStatus."""

    def __init__(self):
        self._lock = threading.Lock()
        self._statuses: Dict[str, ViewRefreshStatus] = {}

    def record(self, status: ViewRefreshStatus):
        with self._lock:
            self._statuses[status.view_name] = status

    def get(self, view_name: str) -> Optional[ViewRefreshStatus]:
        with self._lock:
            return self._statuses.get(view_name)

    def snapshot(self) -> Dict[str, dict]:
        """Copy of the status map, serialized per view."""
        with self._lock:
            return {name: status.to_dict() for name, status in self._statuses.items()}

    def is_healthy(self) -> bool:
        """Healthy iff no view's last refresh failed."""
        with self._lock:
            return all(
                status.outcome != RefreshOutcome.FAILED
                for status in self._statuses.values()
            )

    def summary(self) -> Dict[str, str]:
        with self._lock:
            return {name: status.outcome.value for name, status in self._statuses.items()}


class RefreshCoordinator:
    """
    Serial, mutually exclusive refresh of aggregate views.

    Usage:
        coordinator = RefreshCoordinator(store, ["sat_common_view_difference"], 600)
        coordinator.start()          # timer thread
        coordinator.trigger_manual() # fire-and-forget
        coordinator.stop()
    """

    def __init__(
        self,
        store: Store,
        view_names: Iterable[str],
        interval_seconds: float = 600.0,
        status_board: Optional[RefreshStatusBoard] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            store: Store providing view existence, rebuild and analyze
            view_names: Ordered view names; blank entries are ignored
            interval_seconds: Timer period
            status_board: Shared status board (created if None)
            clock: Monotonic clock for durations
        """
        self.store = store
        self.view_names = [name.strip() for name in view_names if name and name.strip()]
        self.interval_seconds = interval_seconds
        self.status_board = status_board or RefreshStatusBoard()
        self.clock = clock

        self.gate = RunGate()
        self._stats_lock = threading.Lock()
        self.stats = {
            'cycles_completed': 0,
            'triggers_dropped': 0,
            'manual_triggers': 0,
        }

        self._stop_event = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None

        logger.info(f"RefreshCoordinator initialized with {len(self.view_names)} views")
        for index, name in enumerate(self.view_names):
            logger.debug(f"  View[{index}]: {name}")

    @property
    def is_running(self) -> bool:
        return self.gate.running

    def is_healthy(self) -> bool:
        return self.status_board.is_healthy()

    def _count(self, name: str):
        with self._stats_lock:
            self.stats[name] += 1

    def get_stats(self) -> dict:
        with self._stats_lock:
            return dict(self.stats)

    def run_cycle(self) -> bool:
        """
        Run one refresh cycle in the calling thread.

        Returns:
            True if the cycle ran, False if it was dropped because another
            cycle was RUNNING
        """
        if not self.gate.try_enter():
            self._drop_trigger("timer")
            return False
        try:
            self._refresh_all()
        finally:
            self.gate.leave()
        return True

    def trigger_manual(self) -> bool:
        """
        Start a cycle on a background thread and return immediately.

        Returns:
            True if a cycle was started, False if one was already RUNNING
        """
        self._count('manual_triggers')
        logger.info("Manual refresh triggered for all views")
        if not self.gate.try_enter():
            self._drop_trigger("manual")
            return False

        thread = threading.Thread(
            target=self._run_entered,
            name="ManualRefresh",
            daemon=True
        )
        thread.start()
        return True

    def _run_entered(self):
        """Cycle body for a caller that already holds the gate."""
        try:
            self._refresh_all()
        except Exception as e:
            logger.exception(f"Manual refresh cycle failed: {e}")
        finally:
            # One thread per trigger: its store connection dies with it
            try:
                self.store.release_thread()
            finally:
                self.gate.leave()

    def _drop_trigger(self, source: str):
        self._count('triggers_dropped')
        logger.warning(f"Previous refresh cycle still in progress, dropping {source} trigger")

    def _refresh_all(self):
        if not self.view_names:
            logger.warning("No aggregate views configured for refresh, skipping cycle")
            return

        logger.info(f"Starting refresh cycle for {len(self.view_names)} views")
        cycle_start = self.clock()

        for view_name in self.view_names:
            self._refresh_view(view_name)

        self._count('cycles_completed')
        logger.info(
            f"Refresh cycle finished in {(self.clock() - cycle_start) * 1000:.0f} ms "
            f"({'healthy' if self.is_healthy() else 'UNHEALTHY'})"
        )

    def _refresh_view(self, view_name: str):
        start = self.clock()
        try:
            if not self.store.view_exists(view_name):
                raise ViewNotFoundError(f"Aggregate view '{view_name}' does not exist")
            self.store.rebuild_view(view_name)
            self.store.analyze_view(view_name)
        except Exception as e:
            duration_ms = (self.clock() - start) * 1000
            logger.error(f"Failed to refresh view '{view_name}' after {duration_ms:.0f} ms: {e}")
            self.status_board.record(ViewRefreshStatus(
                view_name=view_name,
                outcome=RefreshOutcome.FAILED,
                duration_ms=duration_ms,
                error=str(e),
            ))
            return

        duration_ms = (self.clock() - start) * 1000
        logger.info(f"Refreshed and analyzed view {view_name} in {duration_ms:.0f} ms")
        self.status_board.record(ViewRefreshStatus(
            view_name=view_name,
            outcome=RefreshOutcome.SUCCESS,
            duration_ms=duration_ms,
        ))

    def start(self):
        """Start the timer thread. The first cycle runs immediately."""
        if self._timer_thread and self._timer_thread.is_alive():
            logger.warning("Refresh timer already running")
            return

        self._stop_event.clear()
        self._timer_thread = threading.Thread(
            target=self._timer_loop,
            name="RefreshTimer",
            daemon=True
        )
        self._timer_thread.start()
        logger.info(f"Refresh timer started (every {self.interval_seconds:.0f}s)")

    def _timer_loop(self):
        while not self._stop_event.is_set():
            tick_start = self.clock()
            try:
                self.run_cycle()
            except Exception as e:
                logger.exception(f"Refresh cycle error: {e}")
            elapsed = self.clock() - tick_start
            self._stop_event.wait(max(0.0, self.interval_seconds - elapsed))
        self.store.release_thread()

    def stop(self, timeout: Optional[float] = None):
        """Stop the timer. A cycle in flight runs to completion."""
        self._stop_event.set()
        if self._timer_thread:
            self._timer_thread.join(timeout=timeout)
            self._timer_thread = None
        logger.info("Refresh timer stopped")

    def get_status(self) -> dict:
        """Status snapshot for the health server."""
        return {
            'running': self.is_running,
            'healthy': self.is_healthy(),
            'views': self.status_board.snapshot(),
            'configured_views': list(self.view_names),
            'stats': self.get_stats(),
        }
