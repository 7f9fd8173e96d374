"""PULSE: Batch Scheduler.

Runs one sync pass over a ranked company list:
  * consecutive groups of batch_size, strictly one group at a time
  * companies inside a group run concurrently and are all awaited
  * batch_delay_ms pause between groups to stay under provider rate limits
  * no new group starts once max_execution_ms has elapsed; groups already
    started always finish (partial run, not an error)
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from app.core.logging import get_logger
from app.models.sync_models import PerformanceMetrics, SyncOutcome, SyncResult
from app.sync.tracker import PerformanceTracker

logger = get_logger("sync.scheduler")

T = TypeVar("T")

Worker = Callable[[T], Awaitable[List[SyncResult]]]
ErrorHandler = Callable[[T, BaseException], List[SyncResult]]


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into consecutive groups of at most size."""
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def crash_result(company, exc: BaseException) -> List[SyncResult]:
    """Stand-in result for a company whose worker raised."""
    return [
        SyncResult(
            company_id=getattr(company, "id", str(company)),
            company=getattr(company, "name", str(company)),
            platform="unknown",
            status=SyncOutcome.API_ERROR,
            error=f"{type(exc).__name__}: {exc}",
        )
    ]


@dataclass
class BatchRunResult:
    """Aggregate outcome of one scheduler pass."""

    results: List[SyncResult] = field(default_factory=list)
    success_count: int = 0
    error_count: int = 0
    elapsed_ms: int = 0
    batches_completed: int = 0
    batches_total: int = 0
    partial_run: bool = False
    batch_sizes: List[int] = field(default_factory=list)
    performance: Optional[PerformanceMetrics] = None


class BatchScheduler:
    """Time-boxed, rate-paced batch runner."""

    def __init__(
        self,
        batch_size: int = 3,
        batch_delay_ms: int = 1000,
        max_execution_ms: int = 270_000,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.batch_size = batch_size
        self.batch_delay_ms = batch_delay_ms
        self.max_execution_ms = max_execution_ms
        self._clock = clock
        self._sleep = sleep
        self.tracker: Optional[PerformanceTracker] = None

    async def _run_one(self, company: T, worker: Worker, on_error: ErrorHandler) -> List[SyncResult]:
        try:
            return await worker(company)
        except Exception as e:
            logger.error(f"Worker crashed for {getattr(company, 'name', company)}: {e}")
            return on_error(company, e)

    async def run(
        self,
        companies: Sequence[T],
        worker: Worker,
        on_error: ErrorHandler = crash_result,
    ) -> BatchRunResult:
        started = self._clock()
        # Fresh per run, on the same clock as the time budget
        tracker = self.tracker = PerformanceTracker(clock=self._clock)
        batches = chunk(companies, self.batch_size)
        outcome = BatchRunResult(batches_total=len(batches))

        for index, batch in enumerate(batches):
            elapsed_ms = (self._clock() - started) * 1000
            if elapsed_ms > self.max_execution_ms:
                logger.warning(
                    f"Time limit reached after {index} of {len(batches)} batches, stopping",
                    extra={"batch": index, "duration_ms": int(elapsed_ms)},
                )
                outcome.partial_run = True
                break

            names = ", ".join(str(getattr(c, "name", c)) for c in batch)
            logger.info(f"Batch {index + 1}/{len(batches)}: {names}", extra={"batch": index + 1})

            # _run_one never raises, so gather cannot cancel siblings
            batch_results = await asyncio.gather(
                *(self._run_one(c, worker, on_error) for c in batch)
            )
            flat = [r for company_results in batch_results for r in company_results]
            successes = sum(1 for r in flat if r.status == SyncOutcome.SUCCESS)
            errors = sum(1 for r in flat if r.status.is_failure)

            outcome.results.extend(flat)
            outcome.success_count += successes
            outcome.error_count += errors
            outcome.batches_completed += 1
            outcome.batch_sizes.append(len(batch))
            tracker.record_batch(successes, errors)
            logger.info(tracker.progress_report(), extra={"batch": index + 1})

            if index < len(batches) - 1 and self.batch_delay_ms > 0:
                await self._sleep(self.batch_delay_ms / 1000)

        outcome.elapsed_ms = int((self._clock() - started) * 1000)
        outcome.performance = tracker.finish()
        return outcome
