"""Bounded retry and cancellable waiting.

Every retry loop in the pipeline goes through :func:`call_with_retry`
or :class:`Backoff`; none of them retries indefinitely.  Waits use
:meth:`threading.Event.wait` so a cancellation signal interrupts them
immediately.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from acmepipe.errors import Cancelled, PipelineError

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Backoff:
    """Delay schedule for a bounded retry loop.

    Attributes
    ----------
    max_attempts:
        Total number of attempts (first try included).
    delay_seconds:
        Base delay between attempts.
    strategy:
        ``"fixed"`` or ``"exponential"``.
    max_delay_seconds:
        Upper bound applied to exponential delays.

    """

    max_attempts: int = 3
    delay_seconds: float = 1.0
    strategy: str = "exponential"
    max_delay_seconds: float = 60.0

    def delay(self, attempt: int) -> float:
        """Delay to wait after the 1-based *attempt* failed."""
        if self.strategy == "fixed":
            return self.delay_seconds
        return min(self.delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)


def wait(seconds: float, cancel_event: threading.Event | None = None) -> None:
    """Sleep for *seconds*, raising :class:`Cancelled` if *cancel_event* fires."""
    if seconds <= 0:
        check_cancelled(cancel_event)
        return
    if cancel_event is None:
        time.sleep(seconds)
        return
    if cancel_event.wait(timeout=seconds):
        msg = "Operation cancelled while waiting"
        raise Cancelled(msg)


def check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        msg = "Operation cancelled"
        raise Cancelled(msg)


def call_with_retry(
    func: Callable[[], T],
    backoff: Backoff,
    *,
    description: str,
    cancel_event: threading.Event | None = None,
) -> T:
    """Call *func*, retrying retryable :class:`PipelineError` failures.

    Non-retryable errors propagate immediately.  After
    ``backoff.max_attempts`` failed attempts the last error is raised.

    Parameters
    ----------
    func:
        Zero-argument callable performing one attempt.
    backoff:
        Attempt count and delay schedule.
    description:
        Short label used in log messages.
    cancel_event:
        Optional cancellation signal checked between attempts.

    """
    attempts = max(1, backoff.max_attempts)
    for attempt in range(1, attempts + 1):
        check_cancelled(cancel_event)
        try:
            return func()
        except PipelineError as exc:
            if not exc.retryable or attempt == attempts:
                raise
            delay = backoff.delay(attempt)
            log.warning(
                "%s attempt %d/%d failed: %s (retrying in %.1fs)",
                description,
                attempt,
                attempts,
                exc.detail,
                delay,
            )
            wait(delay, cancel_event)

    msg = f"{description}: retry loop exited without a result"
    raise RuntimeError(msg)
