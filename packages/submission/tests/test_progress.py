"""Tests for progress snapshots and duration formatting."""

import pytest
from upload_submission.progress import ProgressSnapshot, ProgressTracker, format_duration


class FakeClock:
    def __init__(self, *readings: float) -> None:
        self.readings = list(readings)

    def __call__(self) -> float:
        return self.readings.pop(0)


@pytest.mark.parametrize(
    "seconds,expected",
    [
        (0, "0s"),
        (12.2, "13s"),
        (60, "60s"),
        (185, "3m 5s"),
        (3600, "60m 0s"),
        (3725, "1h 2m"),
    ],
)
def test_format_duration(seconds: float, expected: str):
    assert format_duration(seconds) == expected


def test_rate_and_time_remaining():
    tracker = ProgressTracker(total_batches=3, total_records=30, clock=FakeClock(0.0, 2.0))
    snapshot = tracker.update(0, processed_records=10, success_count=9, failure_count=1)

    assert snapshot.records_per_second == 5.0
    assert snapshot.seconds_remaining == 4.0
    assert snapshot.time_remaining == "4s"
    assert snapshot.percent == 33.3
    assert tracker.latest is snapshot


def test_describe():
    tracker = ProgressTracker(total_batches=3, total_records=30, clock=FakeClock(0.0, 2.0))
    snapshot = tracker.update(0, 10, 9, 1)
    assert snapshot.describe() == (
        "Batch 1/3, 10/30 records (9 ok, 1 failed), 5.0 records/sec, 4s remaining"
    )


def test_calculating_before_any_time_passed():
    tracker = ProgressTracker(total_batches=2, total_records=20, clock=FakeClock(5.0, 5.0))
    snapshot = tracker.update(0, 10)

    assert snapshot.records_per_second == 0.0
    assert snapshot.seconds_remaining is None
    assert snapshot.time_remaining == "Calculating..."


def test_finished_run():
    snapshot = ProgressSnapshot(batch_index=2, total_batches=3, processed_records=30, total_records=30)
    assert snapshot.finished
    assert snapshot.percent == 100.0
    assert snapshot.time_remaining == "0s"
