import logging
import threading
import time
from typing import Callable, Dict, Optional

from .context import OrchestratorContext
from .tasks import advance_statuses, check_health, generate_tournaments

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs ``func`` every ``interval_seconds`` on its own daemon thread.

    A task never overlaps with itself: a trigger that arrives while the
    previous run is still in flight is skipped and logged.
    """

    def __init__(self, name: str, interval_seconds: float, func: Callable,
                 stop_event: threading.Event = None):
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self.runs = 0
        self.skipped = 0
        self.last_result = None
        self._stop = stop_event or threading.Event()
        self._guard = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._guard.locked()

    def trigger(self) -> bool:
        """Run once now unless already running. Returns False when skipped."""
        if not self._guard.acquire(blocking=False):
            self.skipped += 1
            logger.warning(f"{self.name} is still running, skipping this trigger")
            return False
        try:
            self.last_result = self.func()
            self.runs += 1
        except Exception:
            logger.exception(f"{self.name} failed")
        finally:
            self._guard.release()
        return True

    def _loop(self):
        next_run = time.monotonic() + self.interval_seconds
        while not self._stop.wait(max(0.0, next_run - time.monotonic())):
            self.trigger()
            next_run += self.interval_seconds
            behind = time.monotonic() - next_run
            if behind > 0:
                missed = int(behind // self.interval_seconds) + 1
                self.skipped += missed
                logger.warning(f"{self.name} overran its interval, skipping {missed} trigger(s)")
                next_run += missed * self.interval_seconds

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._loop, name=f"task-{self.name}", daemon=True)
        self._thread.start()
        logger.info(f"Scheduled {self.name} every {self.interval_seconds:g}s")

    def join(self, timeout: float = None) -> bool:
        """Wait for the loop thread; False if it is still alive afterwards."""
        if self._thread is not None:
            self._thread.join(timeout)
            return not self._thread.is_alive()
        return True


class Orchestrator:
    """Owns the three periodic tasks and their shared context."""

    def __init__(self, context: OrchestratorContext):
        self.context = context
        self._stop = threading.Event()
        cfg = context.config
        self.tasks: Dict[str, PeriodicTask] = {
            'generate_tournaments': PeriodicTask(
                'generate_tournaments',
                cfg.AUTOMATED_TOURNAMENT_INTERVAL * 60,
                lambda: generate_tournaments(context),
                self._stop
            ),
            'advance_statuses': PeriodicTask(
                'advance_statuses',
                cfg.STATUS_UPDATE_INTERVAL * 60,
                lambda: advance_statuses(context),
                self._stop
            ),
            'health_check': PeriodicTask(
                'health_check',
                cfg.HEALTH_CHECK_INTERVAL * 60,
                lambda: check_health(context),
                self._stop
            ),
        }
        self._initial_run: Optional[threading.Thread] = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def start(self):
        cfg = self.context.config
        logger.info("Starting tournament orchestrator")
        logger.info(f"Tournament service: {cfg.TOURNAMENT_SERVICE_URL}")
        logger.info(f"Auth service: {cfg.AUTH_SERVICE_URL}")
        logger.info(f"Automated game types: {', '.join(cfg.AUTOMATED_GAME_TYPES)}")

        for task in self.tasks.values():
            task.start()

        if cfg.RUN_GENERATION_ON_START:
            self._initial_run = threading.Thread(
                target=self.tasks['generate_tournaments'].trigger,
                name='task-generate_tournaments-initial',
                daemon=True
            )
            self._initial_run.start()

    def stop(self, timeout: float = 10.0):
        if self._stop.is_set():
            return
        logger.info("Shutting down orchestrator...")
        self._stop.set()
        still_running = [name for name, task in self.tasks.items() if not task.join(timeout)]
        if self._initial_run is not None:
            self._initial_run.join(timeout)
            if self._initial_run.is_alive():
                still_running.append(self._initial_run.name)
        if still_running:
            logger.warning(
                f"Closing context while tasks are still running after {timeout:g}s: {', '.join(still_running)}"
            )
        self.context.close()
        logger.info("Orchestrator stopped")

    def run_forever(self):
        self.start()
        try:
            while not self._stop.wait(1.0):
                pass
        finally:
            self.stop()
