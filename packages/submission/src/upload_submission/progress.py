"""Progress snapshots with processing rate and time remaining.

Upload dialogs show "42 records/sec" and "3m 5s remaining" next to the
progress bar. ProgressTracker derives those from the coordinator's per-batch
progress updates so every caller (UI, Temporal heartbeat, logs) reports the
same numbers.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass


def format_duration(seconds: float) -> str:
    """Render seconds as '1h 2m', '3m 5s' or '12s'."""
    total = max(0, math.ceil(seconds))
    if total > 3600:
        return f"{total // 3600}h {(total % 3600) // 60}m"
    if total > 60:
        return f"{total // 60}m {total % 60}s"
    return f"{total}s"


@dataclass(frozen=True)
class ProgressSnapshot:
    batch_index: int
    total_batches: int
    processed_records: int
    total_records: int
    success_count: int = 0
    failure_count: int = 0
    elapsed_seconds: float = 0.0
    records_per_second: float = 0.0
    seconds_remaining: float | None = None

    @property
    def finished(self) -> bool:
        return self.processed_records >= self.total_records

    @property
    def percent(self) -> float:
        if self.total_records == 0:
            return 100.0
        return round(100.0 * self.processed_records / self.total_records, 1)

    @property
    def time_remaining(self) -> str:
        if self.finished:
            return "0s"
        if self.seconds_remaining is None:
            return "Calculating..."
        return format_duration(self.seconds_remaining)

    def describe(self) -> str:
        return (
            f"Batch {self.batch_index + 1}/{self.total_batches}, "
            f"{self.processed_records}/{self.total_records} records "
            f"({self.success_count} ok, {self.failure_count} failed), "
            f"{self.records_per_second:.1f} records/sec, {self.time_remaining} remaining"
        )


class ProgressTracker:
    def __init__(
        self,
        total_batches: int,
        total_records: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.total_batches = total_batches
        self.total_records = total_records
        self._clock = clock
        self._started_at = clock()
        self.latest: ProgressSnapshot | None = None

    def update(
        self,
        batch_index: int,
        processed_records: int,
        success_count: int = 0,
        failure_count: int = 0,
    ) -> ProgressSnapshot:
        elapsed = self._clock() - self._started_at
        rate = processed_records / elapsed if elapsed > 0 else 0.0
        remaining_records = self.total_records - processed_records
        seconds_remaining = remaining_records / rate if rate > 0 and remaining_records > 0 else None

        self.latest = ProgressSnapshot(
            batch_index=batch_index,
            total_batches=self.total_batches,
            processed_records=processed_records,
            total_records=self.total_records,
            success_count=success_count,
            failure_count=failure_count,
            elapsed_seconds=elapsed,
            records_per_second=rate,
            seconds_remaining=seconds_remaining,
        )
        return self.latest
