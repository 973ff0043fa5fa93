"""
Polling primitive shared by every waiting phase.

Each phase (pool steady, node idle, tasks complete) is a predicate checked
at a fixed interval until it holds or its deadline passes. Time is read
from an injectable clock and slept through an injectable sleep function,
so tests can drive the loop with a fake clock.
"""

import time
from enum import Enum
from typing import Callable, Optional


class WaitOutcome(str, Enum):
    """Result of a wait: exactly one of these is returned."""
    MET = "met"
    TIMED_OUT = "timed_out"


Clock = Callable[[], float]
Sleep = Callable[[float], None]


def wait_until(
    predicate: Callable[[], bool],
    interval: float,
    timeout: float,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
    on_tick: Optional[Callable[[float], None]] = None,
) -> WaitOutcome:
    """
    Poll predicate until it holds or timeout seconds have elapsed.

    The predicate is always checked at least once. Between checks,
    on_tick(elapsed_seconds) is called and the loop sleeps for interval.

    Args:
        predicate: Zero-argument callable, True when the wait is over
        interval: Seconds to sleep between checks
        timeout: Seconds after which the wait gives up
        clock: Monotonic time source
        sleep: Sleep function
        on_tick: Progress callback

    Returns:
        WaitOutcome.MET or WaitOutcome.TIMED_OUT

    Raises:
        ValueError: If interval is not positive or timeout is negative
        Exception: Whatever the predicate raises, unchanged
    """
    if interval <= 0:
        raise ValueError(f"interval must be positive, got {interval}")
    if timeout < 0:
        raise ValueError(f"timeout must not be negative, got {timeout}")

    start = clock()
    while True:
        if predicate():
            return WaitOutcome.MET
        elapsed = clock() - start
        if elapsed >= timeout:
            return WaitOutcome.TIMED_OUT
        if on_tick is not None:
            on_tick(elapsed)
        sleep(interval)
