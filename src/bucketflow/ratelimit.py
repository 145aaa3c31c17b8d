# src/bucketflow/ratelimit.py
"""
Bandwidth limiting for object bodies.

All body bytes read from or written to the store are paced through one
shared `RateLimiter`. The token bucket works by reservation: a caller takes
the bytes it needs immediately, possibly driving the bucket into debt, and
is told how long to wait before the bytes may move. Reservations are made
under a `threading.Lock`, so one limiter can be shared by concurrent tasks
and by threads running their own event loops.
"""

import asyncio
import io
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

from bucketflow.exceptions import TransferCancelled
from bucketflow.signals import interruptible_sleep

logger: logging.Logger = logging.getLogger(__name__)

# Longest uninterrupted sleep of a thread waiting for tokens.
_BLOCKING_POLL_S: float = 0.05


class RateLimiter(ABC):
    """Bounds the aggregate number of bytes per second moved by the engine."""

    @abstractmethod
    def reserve(self, nbytes: int) -> float:
        """
        Reserve `nbytes` worth of tokens.

        Args:
            nbytes (int): Number of bytes about to be transferred.

        Returns:
            float: Seconds the caller must wait before moving the bytes.
        """

    async def acquire(
        self, nbytes: int, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """
        Wait until `nbytes` may be transferred.

        Args:
            nbytes (int): Number of bytes about to be transferred.
            cancel_event (asyncio.Event, optional): Cancellation signal that
                interrupts the wait.

        Raises:
            TransferCancelled: If the signal fires while waiting.
        """
        delay: float = self.reserve(nbytes)
        if delay <= 0:
            return
        try:
            await interruptible_sleep(delay, cancel_event)
        except (TransferCancelled, asyncio.CancelledError):
            self.refund(nbytes)
            raise

    def acquire_blocking(
        self, nbytes: int, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """
        Thread-blocking variant of `acquire` for code running off the event loop.

        The wait is sliced so that a fired cancellation signal is noticed
        within `_BLOCKING_POLL_S`.

        Args:
            nbytes (int): Number of bytes about to be transferred.
            cancel_event (asyncio.Event, optional): Cancellation signal.

        Raises:
            TransferCancelled: If the signal fires before or while waiting.
        """
        delay: float = self.reserve(nbytes)
        deadline: float = time.monotonic() + delay
        while True:
            if cancel_event is not None and cancel_event.is_set():
                self.refund(nbytes)
                raise TransferCancelled("Wait cancelled")
            remaining: float = deadline - time.monotonic()
            if remaining <= 0:
                return
            time.sleep(min(remaining, _BLOCKING_POLL_S))

    def refund(self, nbytes: int) -> None:
        """Return tokens of a reservation whose bytes never moved."""


class UnlimitedRateLimiter(RateLimiter):
    """A limiter that never waits."""

    def reserve(self, nbytes: int) -> float:
        return 0.0


class TokenBucket(RateLimiter):
    """
    A thread-safe token bucket measured in bytes.

    The bucket holds at most `capacity` tokens and refills at `rate` tokens
    per second. Over any window of `T` seconds the bytes released never
    exceed `capacity + rate * T`.
    """

    def __init__(
        self,
        rate: float,
        capacity: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the token bucket, starting full.

        Args:
            rate (float): Refill rate in bytes per second.
            capacity (float, optional): Burst size in bytes. Defaults to one
                second worth of `rate`.
            clock (Callable[[], float]): Monotonic time source in seconds.
        """
        if rate <= 0:
            raise ValueError(f"Rate must be positive, got {rate}")
        if capacity is not None and capacity <= 0:
            raise ValueError(f"Capacity must be positive, got {capacity}")
        self._rate: float = float(rate)
        self._capacity: float = float(capacity) if capacity else float(rate)
        self._clock: Callable[[], float] = clock
        self._lock: threading.Lock = threading.Lock()
        self._tokens: float = self._capacity
        self._last_refill: float = clock()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def available(self) -> float:
        """Tokens currently available; negative while the bucket is in debt."""
        with self._lock:
            self._refill()
            return self._tokens

    def _refill(self) -> None:
        now: float = self._clock()
        elapsed: float = max(0.0, now - self._last_refill)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._last_refill = now

    def reserve(self, nbytes: int) -> float:
        if nbytes < 0:
            raise ValueError(f"Cannot reserve a negative byte count: {nbytes}")
        with self._lock:
            self._refill()
            self._tokens -= nbytes
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self._rate

    def refund(self, nbytes: int) -> None:
        with self._lock:
            self._refill()
            self._tokens = min(self._capacity, self._tokens + nbytes)


class PacedReader(io.RawIOBase):
    """
    A seekable, read-only view of an upload body that draws from a limiter.

    The HTTP transport reads file-like request bodies from an executor
    thread while it writes them to the socket, so those reads block until
    the limiter releases the bytes. Reads made on the event loop thread
    (request signing and checksums, before anything is sent) are not paced.
    Each read returns at most `chunk_size` bytes.
    """

    def __init__(
        self,
        data: bytes,
        limiter: RateLimiter,
        chunk_size: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Initializes the reader.

        Args:
            data (bytes): The body to upload.
            limiter (RateLimiter): Limiter shared by all transfers.
            chunk_size (int): Largest number of bytes returned per read.
            cancel_event (asyncio.Event, optional): Cancellation signal that
                aborts a pending wait.
        """
        super().__init__()
        self._data: memoryview = memoryview(data)
        self._limiter: RateLimiter = limiter
        self._chunk_size: int = chunk_size
        self._cancel_event: Optional[asyncio.Event] = cancel_event
        self._position: int = 0
        self._loop_thread: int = threading.get_ident()
        self.bytes_paced: int = 0

    def __len__(self) -> int:
        return len(self._data)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._position

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            position: int = offset
        elif whence == io.SEEK_CUR:
            position = self._position + offset
        elif whence == io.SEEK_END:
            position = len(self._data) + offset
        else:
            raise ValueError(f"Invalid whence: {whence}")
        if position < 0:
            raise ValueError(f"Negative seek position {position}")
        self._position = position
        return position

    def read(self, size: int = -1) -> bytes:
        available: int = max(0, len(self._data) - self._position)
        if size is None or size < 0:
            size = available
        size = min(size, available, self._chunk_size)
        if size == 0:
            return b""
        if threading.get_ident() != self._loop_thread:
            self._limiter.acquire_blocking(size, self._cancel_event)
            self.bytes_paced += size
        chunk: bytes = bytes(self._data[self._position : self._position + size])
        self._position += size
        return chunk

    def readinto(self, buffer: Any) -> int:
        chunk: bytes = self.read(len(buffer))
        buffer[: len(chunk)] = chunk
        return len(chunk)

    def readall(self) -> bytes:
        parts: List[bytes] = []
        while True:
            chunk: bytes = self.read()
            if not chunk:
                return b"".join(parts)
            parts.append(chunk)


def create_rate_limiter(
    bytes_per_second: Optional[int], burst: Optional[int] = None
) -> RateLimiter:
    """
    Build the limiter for a configured bandwidth cap.

    Args:
        bytes_per_second (int, optional): The cap; zero or None disables it.
        burst (int, optional): Token bucket capacity in bytes.

    Returns:
        RateLimiter: A `TokenBucket`, or an `UnlimitedRateLimiter` when no cap
            is configured.
    """
    if not bytes_per_second:
        return UnlimitedRateLimiter()
    logger.debug(f"Limiting bandwidth to {bytes_per_second} B/s (burst={burst}).")
    return TokenBucket(bytes_per_second, burst)
