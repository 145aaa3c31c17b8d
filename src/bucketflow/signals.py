# src/bucketflow/signals.py
"""
Cancellation helpers for the transfer engine.

A single `asyncio.Event` acts as the cancellation signal for a top-level
operation. This module provides the context manager that sets it from
SIGINT/SIGTERM, plus the checks and sleeps the engine performs at every
suspension point so that a fired signal unwinds work promptly.
"""

import asyncio
import logging
import signal
from types import FrameType
from typing import Any, Dict, Optional, Set

from bucketflow.exceptions import TransferCancelled

logger: logging.Logger = logging.getLogger(__name__)


def raise_if_cancelled(cancel_event: Optional[asyncio.Event], what: str) -> None:
    """
    Raise `TransferCancelled` if the cancellation signal has fired.

    Args:
        cancel_event (asyncio.Event, optional): The cancellation signal.
        what (str): Description of the operation, used in the message.
    """
    if cancel_event is not None and cancel_event.is_set():
        raise TransferCancelled(f"{what} cancelled")


async def interruptible_sleep(
    delay: float, cancel_event: Optional[asyncio.Event]
) -> None:
    """
    Sleep for `delay` seconds, waking early if the cancellation signal fires.

    Args:
        delay (float): Number of seconds to wait.
        cancel_event (asyncio.Event, optional): The cancellation signal.

    Raises:
        TransferCancelled: If the signal is set before or during the wait.
    """
    raise_if_cancelled(cancel_event, "Wait")
    if delay <= 0:
        return
    if cancel_event is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise TransferCancelled("Wait cancelled")


class GracefulShutdown:
    """
    An async context manager that turns POSIX signals into cancellation.

    The first SIGINT/SIGTERM sets the returned `asyncio.Event`, which every
    transfer client checks before each remote call. A second signal cancels
    the task that entered the context so in-flight requests are abandoned.
    Previous handlers are restored on exit.
    """

    def __init__(self) -> None:
        self._event: asyncio.Event = asyncio.Event()
        self._old_handlers: Dict[signal.Signals, Any] = {}
        self._task: Optional["asyncio.Task[Any]"] = None

    async def __aenter__(self) -> asyncio.Event:
        """
        Registers signal handlers and returns the cancellation event.

        Returns:
            asyncio.Event: The event that is set when a handled signal arrives.
        """
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        self._task = asyncio.current_task()
        signals_to_handle: Set[signal.Signals] = {
            signal.SIGINT,
            signal.SIGTERM,
        }

        def _handler(sig: int, _: Optional[FrameType]) -> None:
            if self._event.is_set():
                logger.critical("Received second shutdown signal. Aborting transfers.")
                if self._task is not None:
                    loop.call_soon_threadsafe(self._task.cancel)
            else:
                logger.warning(
                    f"Received shutdown signal: {signal.strsignal(sig)}. "
                    "Cancelling after the current requests..."
                )
                loop.call_soon_threadsafe(self._event.set)

        for sig in signals_to_handle:
            try:
                # signal.signal must be called from the main thread
                self._old_handlers[sig] = signal.signal(sig, _handler)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not set handler for {sig.name}: {e}")

        return self._event

    async def __aexit__(self, *args: Any) -> None:
        """Restores original signal handlers."""
        for sig, handler in self._old_handlers.items():
            try:
                signal.signal(sig, handler)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not restore handler for {sig.name}: {e}")
        self._old_handlers.clear()
        self._task = None
