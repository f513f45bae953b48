"""Interval trigger for ingestion cycles."""

import logging
import threading
from typing import Optional

from ..models.core import CycleResult
from .ingestion import IngestionOrchestrator


logger = logging.getLogger(__name__)


class IntervalScheduler:
    """Runs an ingestion cycle every ``interval_seconds`` on a daemon thread.

    Manual triggers compete with the timer for the orchestrator's single
    slot; whichever loses gets ALREADY_PROCESSING.
    """

    def __init__(self, orchestrator: IngestionOrchestrator, interval_seconds: float = 10):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, run_immediately: bool = True) -> None:
        if self.is_running:
            logger.warning("Scheduler already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            args=(run_immediately,),
            name="ingestion-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Scheduler started, interval {self.interval_seconds}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Scheduler stopped")

    def trigger(self) -> CycleResult:
        """Run a cycle now in the calling thread"""
        return self.orchestrator.run_ingestion_cycle()

    def run_forever(self) -> None:
        """Start the timer and block until stopped or interrupted"""
        self.start()
        try:
            while not self._stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down scheduler")
        finally:
            self.stop()

    def _loop(self, run_immediately: bool) -> None:
        if run_immediately:
            self._tick()
        while not self._stop_event.wait(self.interval_seconds):
            self._tick()

    def _tick(self) -> None:
        try:
            self.orchestrator.run_ingestion_cycle()
        except Exception as e:
            # keep the timer alive; the next tick retries
            logger.exception(f"Scheduled cycle failed: {e}")
