"""Bounded polling used by waits, confirmations and broker consumption."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from .errors import SessionUnreachable, WaitTimeout, is_session_lost

log = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.25

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


async def poll_until(
    probe: Callable[[], Awaitable[Any]],
    *,
    timeout: float,
    interval: float = DEFAULT_POLL_INTERVAL,
    description: str = "condition",
    clock: Clock = time.monotonic,
    sleep: Sleep = asyncio.sleep,
    error_factory: Optional[Callable[[str], Exception]] = None,
) -> Any:
    """Call ``probe`` until it returns a truthy value or ``timeout`` elapses.

    Errors raised by the probe count as "not yet" except a lost session,
    which is raised immediately as :class:`SessionUnreachable`.
    """

    deadline = clock() + timeout
    last_error: Optional[BaseException] = None
    while True:
        try:
            result = await probe()
            if result:
                return result
        except SessionUnreachable:
            raise
        except Exception as exc:
            if is_session_lost(exc):
                raise SessionUnreachable(str(exc)) from exc
            last_error = exc
            log.debug("Probe for %s raised: %s", description, exc)
        remaining = deadline - clock()
        if remaining <= 0:
            message = f"Timed out after {timeout:g}s waiting for {description}"
            error = error_factory(message) if error_factory else WaitTimeout(message)
            raise error from last_error
        await sleep(min(interval, remaining))
