"""
SweepScheduler -- In-process polling loop for the pending sweeper.

Contract:
    Calls ``sweep()`` every ``interval_seconds`` on a background thread for
    deployments without an external cron.  ``tick()`` runs one pass and is
    public for testing.

Invariants enforced:
    - Graceful shutdown: ``stop()`` lets the current pass finish.
    - A failing pass is logged and never ends the loop.

Non-goals:
    - NOT a distributed scheduler; several instances may run side by side
      because the ledger claim keeps them from double-sending.
"""

from __future__ import annotations

import threading
from typing import Callable

from booking_kernel.logging_config import get_logger
from booking_workflow.domain.types import SweepResult

logger = get_logger("workflow.scheduler")


class SweepScheduler:
    def __init__(
        self,
        sweep: Callable[[], SweepResult],
        interval_seconds: float = 60.0,
    ):
        self._sweep = sweep
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_result: SweepResult | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> SweepResult:
        """Run one sweep pass.  Errors are logged and reported in the result."""
        try:
            result = self._sweep()
        except Exception as exc:
            logger.exception("scheduler_tick_failed")
            result = SweepResult(processed=0, errors=(str(exc) or type(exc).__name__,))
        if result.errors:
            logger.warning(
                "scheduler_sweep_errors",
                extra={"processed": result.processed, "errors": list(result.errors)},
            )
        self._last_result = result
        return result

    def start(self) -> None:
        """Start the loop in a daemon thread.  No-op if already running."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="booking-form-sweeper",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait up to ``timeout`` seconds for the loop to end."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    def run_forever(self) -> None:
        """Run the loop on the calling thread until ``stop()`` is called."""
        logger.info("scheduler_started", extra={"interval_seconds": self._interval})
        self._run_loop()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def last_result(self) -> SweepResult | None:
        return self._last_result

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)
