"""PULSE: Sync Performance Tracker."""

import time
from typing import Callable

from app.models.sync_models import PerformanceMetrics


def _epoch_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


class PerformanceTracker:
    """Accumulates batch counters and elapsed time for one run."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.metrics = PerformanceMetrics(start_time=_epoch_ms(clock))

    def record_batch(self, success_count: int, error_count: int) -> None:
        self.metrics.batches_processed += 1
        self.metrics.success_count += success_count
        self.metrics.error_count += error_count

    def elapsed_ms(self) -> int:
        return _epoch_ms(self._clock) - self.metrics.start_time

    def progress_report(self) -> str:
        m = self.metrics
        return (
            f"Batch {m.batches_processed} | Success: {m.success_count} | "
            f"Errors: {m.error_count} | Elapsed: {round(self.elapsed_ms() / 1000)}s"
        )

    def finish(self) -> PerformanceMetrics:
        self.metrics.end_time = _epoch_ms(self._clock)
        self.metrics.duration = self.metrics.end_time - self.metrics.start_time
        return self.metrics.model_copy()
