"""
Retry logic with exponential backoff for backend round-trips.
"""

import logging
import random
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import TypeVar

from forklift_orchestrator.exceptions import CancelledError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP statuses worth retrying: throttling and server-side failures.
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass
class BackoffPolicy:
    """
    Exponential backoff with jitter.

    The n-th delay (n starting at 0) is base_delay * factor**n, multiplied by a
    random factor in [1 - jitter, 1 + jitter] and clipped to max_delay.

    Example:
        >>> policy = BackoffPolicy(base_delay=1.0, max_delay=30.0, jitter=0.0)
        >>> [policy.delay(n) for n in range(7)]
        [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]
    """

    base_delay: float = 1.0
    max_delay: float = 30.0
    factor: float = 2.0
    jitter: float = 0.2
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    def delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based)."""
        raw = self.base_delay * (self.factor**attempt)
        if self.jitter:
            raw *= self.rng.uniform(1 - self.jitter, 1 + self.jitter)
        return min(raw, self.max_delay)

    def delays(self) -> Iterator[float]:
        """Endless sequence of successive delays."""
        attempt = 0
        while True:
            yield self.delay(attempt)
            attempt += 1

    @property
    def max_first_delay(self) -> float:
        """Upper bound of the first delay, i.e. the longest single polling interval at start."""
        return min(self.base_delay * (1 + self.jitter), self.max_delay)

    @classmethod
    def from_config(cls, reconcile_config: dict) -> "BackoffPolicy":
        """Build a policy from the `reconcile` section of the configuration."""
        return cls(
            base_delay=float(reconcile_config.get("base_delay", 1.0)),
            max_delay=float(reconcile_config.get("max_delay", 30.0)),
            factor=float(reconcile_config.get("factor", 2.0)),
            jitter=float(reconcile_config.get("jitter", 0.2)),
        )


def is_retryable_status(status: int | None) -> bool:
    """
    Determine if a backend HTTP status should be retried.

    Args:
        status: HTTP status code, or None/0 when no response was received

    Returns:
        True for throttling, server errors and missing responses
    """
    if not status:
        return True
    return status in RETRYABLE_STATUSES


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if a low-level exception (no HTTP status) should be retried.

    Retryable errors include connection resets, timeouts and unreachable hosts.
    """
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True

    error_msg = str(error).lower()
    return any(
        keyword in error_msg
        for keyword in [
            "connection",
            "timeout",
            "timed out",
            "network",
            "unreachable",
            "max retries exceeded",
        ]
    )


def sleep_or_cancel(delay: float, cancel: threading.Event | None) -> None:
    """
    Sleep for `delay` seconds, returning early with CancelledError if `cancel` is set.
    """
    if delay <= 0:
        if cancel is not None and cancel.is_set():
            raise CancelledError()
        return
    if cancel is None:
        time.sleep(delay)
        return
    if cancel.wait(delay):
        raise CancelledError()


def retry_transient(
    func: Callable[[], T],
    policy: BackoffPolicy,
    deadline: float,
    cancel: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    on_retry: Callable[[Exception, int, float], None] | None = None,
) -> T:
    """
    Call `func`, retrying TransientError with backoff until `deadline`.

    Any other exception propagates immediately.

    Args:
        func: Zero-argument callable performing one backend round-trip
        policy: Backoff policy for the delays between attempts
        deadline: Absolute deadline on the `clock` timeline
        cancel: Optional cancellation event checked while sleeping
        clock: Monotonic clock
        on_retry: Optional callback called before each sleep: (error, attempt, delay)

    Returns:
        Result of the first successful call

    Raises:
        TransientError: The last transient error, once the deadline is reached
        CancelledError: If `cancel` is set while waiting
    """
    for attempt, delay in enumerate(policy.delays(), start=1):
        try:
            return func()
        except TransientError as e:
            remaining = deadline - clock()
            if remaining <= 0:
                raise

            delay = min(delay, remaining)
            if on_retry is not None:
                on_retry(e, attempt, delay)
            else:
                logger.debug(f"Attempt {attempt} failed: {e}. Retrying in {delay:.2f}s")

            sleep_or_cancel(delay, cancel)

    raise AssertionError("unreachable")  # policy.delays() never ends
