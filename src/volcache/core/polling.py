"""Bounded polling for cloud resource state.

``wait_until`` is the only way volcache waits for the platform: describe the
resource, check it, sleep a fixed interval, repeat until the deadline. The
clock and sleep functions are injectable so waits can be tested without
real time passing.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from volcache.core.errors import WaitTimeoutError
from volcache.core.logging import get_logger

_logger = get_logger("polling")

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


async def wait_until(
    describe: Callable[[], Awaitable[T]],
    ready: Callable[[T], bool],
    *,
    timeout_seconds: float,
    poll_interval_seconds: float,
    operation: str,
    resource_id: str,
    failed: Callable[[T], BaseException | None] | None = None,
    describe_state: Callable[[T], str] = str,
    clock: Clock = time.monotonic,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Poll ``describe()`` until ``ready(result)`` holds or the deadline passes.

    The first describe happens immediately. Exceptions raised by
    ``describe`` propagate unchanged and end the wait.

    Args:
        describe: Fetches the current resource description.
        ready: Returns True when the description is the awaited state.
        timeout_seconds: Maximum total wait.
        poll_interval_seconds: Sleep between two describes.
        operation: Name of the wait, used in logs and errors.
        resource_id: Id of the awaited resource.
        failed: Optional check returning an exception to raise when the
            resource entered a terminal failure state.
        describe_state: Renders a description for logs and timeout errors.
        clock: Monotonic clock in seconds.
        sleep: Coroutine sleeping for the given number of seconds.

    Returns:
        The description that satisfied ``ready``.

    Raises:
        WaitTimeoutError: If the deadline passed before ``ready`` held.
    """
    start = clock()
    deadline = start + timeout_seconds
    polls = 0

    while True:
        result = await describe()
        polls += 1
        if ready(result):
            _logger.debug(
                "wait_satisfied",
                operation=operation,
                resource_id=resource_id,
                polls=polls,
                elapsed_seconds=round(clock() - start, 1),
            )
            return result

        if failed is not None:
            error = failed(result)
            if error is not None:
                raise error

        now = clock()
        if now >= deadline:
            elapsed = now - start
            last_state = describe_state(result)
            raise WaitTimeoutError(
                f"{operation}: {resource_id} did not reach the expected state "
                f"within {timeout_seconds:.0f}s (last state: {last_state})",
                operation=operation,
                resource_id=resource_id,
                elapsed_seconds=elapsed,
                timeout_seconds=timeout_seconds,
                last_state=last_state,
            )

        _logger.debug(
            "wait_polling",
            operation=operation,
            resource_id=resource_id,
            state=describe_state(result),
            elapsed_seconds=round(now - start, 1),
        )
        await sleep(min(poll_interval_seconds, deadline - now))
