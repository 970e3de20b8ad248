"""Poll-until-predicate helper used to confirm that a command took effect."""
import asyncio
import inspect
import logging
import time
from typing import Awaitable, Callable, Union

logger = logging.getLogger(__name__)

Predicate = Callable[[], Union[bool, Awaitable[bool]]]


async def poll_until(
    predicate: Predicate,
    timeout_ms: int,
    interval_ms: int,
) -> bool:
    """
    Re-evaluate ``predicate`` every ``interval_ms`` until it returns True or
    ``timeout_ms`` elapses. The predicate is always checked at least once.

    Args:
        predicate: sync or async callable returning a bool
        timeout_ms: overall deadline
        interval_ms: delay between checks

    Returns:
        True if the predicate held before the deadline
    """
    deadline = time.monotonic() + timeout_ms / 1000
    attempts = 0

    while True:
        attempts += 1
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            logger.debug(f"Predicate satisfied after {attempts} poll(s)")
            return True

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.debug(f"Predicate not satisfied after {attempts} poll(s)")
            return False
        await asyncio.sleep(min(interval_ms / 1000, remaining))
