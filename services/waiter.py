# services/waiter.py - poll until an eventually consistent read catches up
import asyncio
import inspect
import time
from typing import Any, Callable, Optional

from errors import ConvergenceTimeout, WaitCancelled


async def wait_until(
    predicate: Callable[[], Any],
    max_attempts: int = 5,
    interval: float = 1.0,
    cancel: Optional[asyncio.Event] = None,
) -> int:
    """
    Evaluate ``predicate`` until it is truthy.

    Parameters
    ----------
    predicate : callable
        Zero-argument callable returning a bool, or an awaitable of one.
    max_attempts : int
        Total number of evaluations, the first one included.
    interval : float
        Seconds slept between two evaluations.
    cancel : asyncio.Event, optional
        Setting it interrupts the wait immediately.

    Returns
    -------
    int
        The attempt on which the predicate held.

    Raises
    ------
    ConvergenceTimeout
        If the last attempt is still false.
    WaitCancelled
        If ``cancel`` was set before the predicate held.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    started = time.monotonic()
    for attempt in range(1, max_attempts + 1):
        if cancel is not None and cancel.is_set():
            raise WaitCancelled(attempt - 1)
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return attempt
        if attempt == max_attempts:
            break
        if cancel is None:
            await asyncio.sleep(interval)
        else:
            try:
                await asyncio.wait_for(cancel.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            else:
                raise WaitCancelled(attempt)
    raise ConvergenceTimeout(max_attempts, time.monotonic() - started)
