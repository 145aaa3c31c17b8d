# tests/unit/test_ratelimit.py
"""
Unit tests for the bandwidth limiters.

Most token bucket tests use a manual clock, so they check exact wait times
and throughput bounds without sleeping. The upload reader is tested from a
worker thread, the way the HTTP transport reads it.
"""

import asyncio
import io
import threading
import time
from typing import List, Tuple
from unittest.mock import AsyncMock, patch

import pytest

from bucketflow.exceptions import TransferCancelled
from bucketflow.ratelimit import (
    PacedReader,
    RateLimiter,
    TokenBucket,
    UnlimitedRateLimiter,
    create_rate_limiter,
)


class ManualClock:
    """A monotonic clock advanced explicitly by the test."""

    def __init__(self) -> None:
        self.now: float = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_bucket_starts_full() -> None:
    """
    Tests that a burst up to capacity needs no wait.
    """
    bucket: TokenBucket = TokenBucket(rate=100, capacity=200, clock=ManualClock())
    assert bucket.reserve(200) == 0.0
    assert bucket.available == 0.0


def test_capacity_defaults_to_one_second_of_rate() -> None:
    """
    Tests the default burst size.
    """
    bucket: TokenBucket = TokenBucket(rate=512, clock=ManualClock())
    assert bucket.capacity == 512


def test_deficit_translates_into_wait_time() -> None:
    """
    Tests that reserving beyond the available tokens returns the time
    needed to refill the deficit.
    """
    bucket: TokenBucket = TokenBucket(rate=100, capacity=100, clock=ManualClock())
    assert bucket.reserve(100) == 0.0
    assert bucket.reserve(50) == pytest.approx(0.5)
    # The next reservation queues behind the first one
    assert bucket.reserve(100) == pytest.approx(1.5)


def test_refill_is_capped_at_capacity() -> None:
    """
    Tests that idle time never accumulates more than one burst.
    """
    clock: ManualClock = ManualClock()
    bucket: TokenBucket = TokenBucket(rate=100, capacity=100, clock=clock)
    bucket.reserve(100)
    clock.advance(0.5)
    assert bucket.available == pytest.approx(50)
    clock.advance(1000)
    assert bucket.available == pytest.approx(100)


def test_throughput_never_exceeds_rate_times_window() -> None:
    """
    Tests the conservation bound: bytes released by time T never exceed
    `capacity + rate * T`.

    Arrange:
        - A bucket of 1000 B/s with a 1000 B burst.
        - A caller that asks for 300 B every 50 ms of wall time.
    Act:
        - Record when each reservation is allowed to move its bytes.
    Assert:
        - For every release time, the cumulative bytes stay within bound.
    """
    clock: ManualClock = ManualClock()
    rate: float = 1000.0
    capacity: float = 1000.0
    bucket: TokenBucket = TokenBucket(rate=rate, capacity=capacity, clock=clock)

    releases: List[Tuple[float, int]] = []
    for _ in range(200):
        delay: float = bucket.reserve(300)
        releases.append((clock.now + delay, 300))
        clock.advance(0.05)

    releases.sort()
    released: int = 0
    for release_time, nbytes in releases:
        released += nbytes
        assert released <= capacity + rate * release_time + 1e-6


def test_concurrent_reservations_are_all_accounted() -> None:
    """
    Tests that reservations from many threads are never lost.
    """
    bucket: TokenBucket = TokenBucket(rate=1000, capacity=1000, clock=ManualClock())

    def _reserve_many() -> None:
        for _ in range(500):
            bucket.reserve(10)

    threads: List[threading.Thread] = [
        threading.Thread(target=_reserve_many) for _ in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert bucket.available == pytest.approx(1000 - 8 * 500 * 10)


def test_invalid_parameters_are_rejected() -> None:
    """
    Tests that non-positive rates and capacities raise.
    """
    with pytest.raises(ValueError):
        TokenBucket(rate=0)
    with pytest.raises(ValueError):
        TokenBucket(rate=10, capacity=-1)
    with pytest.raises(ValueError):
        TokenBucket(rate=10).reserve(-5)


def test_unlimited_limiter_never_waits() -> None:
    """
    Tests the no-op limiter.
    """
    limiter: UnlimitedRateLimiter = UnlimitedRateLimiter()
    assert limiter.reserve(10**12) == 0.0


@pytest.mark.parametrize(
    "bytes_per_second, expected_type",
    [(0, UnlimitedRateLimiter), (None, UnlimitedRateLimiter), (1024, TokenBucket)],
)
def test_create_rate_limiter(bytes_per_second: int, expected_type: type) -> None:
    """
    Tests that a zero or missing cap yields the unlimited limiter.

    Args:
        bytes_per_second (int): The configured cap.
        expected_type (type): The expected limiter class.
    """
    limiter: RateLimiter = create_rate_limiter(bytes_per_second)
    assert isinstance(limiter, expected_type)


@pytest.mark.asyncio
async def test_acquire_waits_for_reserved_delay() -> None:
    """
    Tests that `acquire` sleeps exactly as long as the reservation requires.
    """
    bucket: TokenBucket = TokenBucket(rate=100, capacity=100, clock=ManualClock())
    event: asyncio.Event = asyncio.Event()

    with patch("bucketflow.ratelimit.interruptible_sleep", new=AsyncMock()) as sleep:
        await bucket.acquire(100, event)
        sleep.assert_not_awaited()
        await bucket.acquire(200, event)

    sleep.assert_awaited_once()
    assert sleep.await_args.args[0] == pytest.approx(2.0)
    assert sleep.await_args.args[1] is event


@pytest.mark.asyncio
async def test_acquire_is_interrupted_by_cancellation() -> None:
    """
    Tests that a fired signal aborts a pending wait for tokens.
    """
    bucket: TokenBucket = TokenBucket(rate=1, capacity=1)
    bucket.reserve(1)
    event: asyncio.Event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, event.set)

    with pytest.raises(TransferCancelled):
        await bucket.acquire(100, event)


@pytest.mark.asyncio
async def test_cancelled_acquire_returns_its_tokens() -> None:
    """
    Tests that a reservation aborted by cancellation does not stay in debt.

    Arrange:
        - Drain the bucket, then make the wait for tokens fail with a cancel.
    Act:
        - Acquire 200 more bytes.
    Assert:
        - `TransferCancelled` propagates.
        - The bucket is back at zero rather than 200 bytes in debt.
    """
    # Arrange
    bucket: TokenBucket = TokenBucket(rate=100, capacity=100, clock=ManualClock())
    bucket.reserve(100)
    sleep: AsyncMock = AsyncMock(side_effect=TransferCancelled("Wait cancelled"))

    # Act
    with patch("bucketflow.ratelimit.interruptible_sleep", new=sleep):
        with pytest.raises(TransferCancelled):
            await bucket.acquire(200, asyncio.Event())

    # Assert
    assert bucket.available == 0.0


def test_refund_is_capped_at_capacity() -> None:
    """
    Tests that refunds never push the bucket above its burst size.
    """
    bucket: TokenBucket = TokenBucket(rate=100, capacity=100, clock=ManualClock())
    bucket.refund(50)
    assert bucket.available == 100.0


def test_acquire_blocking_cancelled_refunds() -> None:
    """
    Tests the thread-blocking wait with a signal that already fired.
    """
    bucket: TokenBucket = TokenBucket(rate=100, capacity=100, clock=ManualClock())
    bucket.reserve(100)
    event: asyncio.Event = asyncio.Event()
    event.set()

    with pytest.raises(TransferCancelled):
        bucket.acquire_blocking(300, event)

    assert bucket.available == 0.0


def test_acquire_blocking_waits_for_tokens() -> None:
    """
    Tests that the thread-blocking wait lasts as long as the deficit needs.
    """
    bucket: TokenBucket = TokenBucket(rate=1000, capacity=100)
    bucket.reserve(100)

    start: float = time.monotonic()
    bucket.acquire_blocking(100)

    assert time.monotonic() - start >= 0.09


@pytest.mark.asyncio
async def test_paced_reader_does_not_pace_event_loop_reads() -> None:
    """
    Tests that reads on the creating thread pass straight through.
    """
    bucket: TokenBucket = TokenBucket(rate=1, capacity=1, clock=ManualClock())
    reader: PacedReader = PacedReader(b"abcdefgh", bucket, chunk_size=3)

    assert reader.read() == b"abc"
    assert reader.readall() == b"defgh"
    assert reader.bytes_paced == 0
    assert bucket.available == 1.0


@pytest.mark.asyncio
async def test_paced_reader_paces_executor_reads_in_chunks() -> None:
    """
    Tests that reads from a worker thread draw chunk-sized reservations.

    Arrange:
        - A reader over 1000 bytes with 300 byte chunks and a recording limiter.
    Act:
        - Read the body to the end from a worker thread.
    Assert:
        - The body is intact and was reserved as 300, 300, 300, 100.
    """
    # Arrange
    reservations: List[int] = []

    class RecordingLimiter(RateLimiter):
        def reserve(self, nbytes: int) -> float:
            reservations.append(nbytes)
            return 0.0

    reader: PacedReader = PacedReader(b"p" * 1000, RecordingLimiter(), chunk_size=300)

    # Act
    data: bytes = await asyncio.to_thread(reader.readall)

    # Assert
    assert data == b"p" * 1000
    assert reservations == [300, 300, 300, 100]
    assert reader.bytes_paced == 1000


def test_paced_reader_seek_and_tell() -> None:
    """
    Tests rewinding, as done before a request is resent.
    """
    reader: PacedReader = PacedReader(b"0123456789", UnlimitedRateLimiter(), 4)

    assert reader.seekable()
    assert len(reader) == 10
    reader.read(2)
    assert reader.tell() == 2
    assert reader.seek(-3, io.SEEK_END) == 7
    assert reader.read() == b"789"
    assert reader.seek(0) == 0
    assert reader.read(100) == b"0123"
    with pytest.raises(ValueError):
        reader.seek(-1)
