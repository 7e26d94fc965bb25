"""Tests for the RequestPacer token bucket.

Verifies:
  - A pacer without a rate never waits
  - Bursts go out immediately, then requests are spaced
  - Invalid rates are rejected
"""

import asyncio
import time

import pytest
from upload_submission.pacing import RequestPacer


async def test_disabled_pacer_never_waits():
    pacer = RequestPacer(rate=None)
    for _ in range(50):
        await pacer.wait()
    assert pacer.enabled is False
    assert pacer.waits == 0


async def test_burst_defaults_to_rate():
    pacer = RequestPacer(rate=5.0)
    assert pacer.burst == 5.0
    assert pacer.available == 5.0


async def test_slow_rate_still_allows_one_request():
    pacer = RequestPacer(rate=0.5)
    assert pacer.burst == 1.0
    await pacer.wait()
    assert pacer.waits == 0


async def test_burst_goes_out_without_waiting():
    pacer = RequestPacer(rate=5.0, burst=3.0)
    for _ in range(3):
        await pacer.wait()
    assert pacer.waits == 0
    assert pacer.available < 1.0


async def test_blocks_when_drained():
    """With the bucket empty, wait() sleeps roughly 1/rate seconds."""
    pacer = RequestPacer(rate=20.0, burst=1.0)
    await pacer.wait()

    start = time.monotonic()
    await pacer.wait()
    elapsed = time.monotonic() - start

    assert pacer.waits == 1
    assert elapsed >= 0.03, f"Expected blocking wait, got {elapsed:.3f}s"


async def test_refill_does_not_exceed_burst():
    pacer = RequestPacer(rate=100.0, burst=2.0)
    await pacer.wait()
    await asyncio.sleep(0.05)
    pacer._top_up(pacer.rate)
    assert pacer.available <= 2.0


@pytest.mark.parametrize("rate", [0, -1.0])
def test_rejects_non_positive_rate(rate: float):
    with pytest.raises(ValueError, match="rate must be positive"):
        RequestPacer(rate=rate)
