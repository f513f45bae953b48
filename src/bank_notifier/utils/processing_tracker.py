"""Run statistics for ingestion cycles."""

import threading
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..models.core import CycleResult, CycleStatus


@dataclass
class RunStatistics:
    """Totals accumulated across ingestion cycles since startup"""
    total_runs: int = 0
    completed_runs: int = 0
    bootstrap_runs: int = 0
    recovery_runs: int = 0
    aborted_runs: int = 0
    rejected_triggers: int = 0
    total_processed: int = 0
    total_succeeded: int = 0
    total_skipped: int = 0
    total_outgoing: int = 0
    total_failed: int = 0
    total_duplicates: int = 0
    total_filtered: int = 0
    errors: int = 0
    last_process_time: Optional[str] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)


class ProcessingTracker:
    """Tracks cycle results and exposes run statistics.

    Cycles update the tracker from the scheduler thread while the CLI or
    other callers read it, so every access holds the tracker's lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._stats = RunStatistics()
        self._last_cycle: Optional[CycleResult] = None
        self.started_at = datetime.now(timezone.utc)

    def record_cycle(self, result: CycleResult) -> None:
        """Add the counters of a finished cycle"""
        if result.status is CycleStatus.ALREADY_PROCESSING:
            self.record_rejected()
            return

        with self._lock:
            stats = self._stats
            stats.total_runs += 1
            stats.total_processed += result.processed
            stats.total_succeeded += result.succeeded
            stats.total_skipped += result.skipped
            stats.total_outgoing += result.outgoing
            stats.total_failed += result.failed
            stats.total_duplicates += result.duplicates
            stats.total_filtered += result.filtered

            if result.status is CycleStatus.COMPLETED:
                stats.completed_runs += 1
            elif result.status is CycleStatus.BOOTSTRAPPED:
                stats.bootstrap_runs += 1
            elif result.status is CycleStatus.RECOVERED:
                stats.recovery_runs += 1
            elif result.status is CycleStatus.ABORTED:
                stats.aborted_runs += 1
                stats.errors += 1
                stats.last_error = result.error

            stats.last_process_time = datetime.now(timezone.utc).isoformat()
            self._last_cycle = result

    def record_rejected(self) -> None:
        """Count a trigger turned away because a cycle was already running"""
        with self._lock:
            self._stats.rejected_triggers += 1

    @property
    def last_cycle(self) -> Optional[CycleResult]:
        with self._lock:
            return self._last_cycle

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            data = self._stats.to_dict()
            data['started_at'] = self.started_at.isoformat()
            data['last_cycle'] = self._last_cycle.to_dict() if self._last_cycle else None
        return data

    def reset(self) -> None:
        with self._lock:
            self._stats = RunStatistics()
            self._last_cycle = None
