"""Time-budgeted retry around a single interpreter step."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, Optional

from .config import RetryPolicy
from .dispatcher import ActionOutcome
from .errors import ConfigurationError, StepFailed, WaitTimeout, is_session_lost
from .polling import Clock, Sleep

log = logging.getLogger(__name__)

MIN_RETRY_INTERVAL = 0.1

AttemptKind = Literal["ok", "session_unreachable", "configuration", "failure"]
Step = Callable[[], Awaitable[ActionOutcome]]


@dataclass(slots=True)
class AttemptResult:
    kind: AttemptKind
    outcome: Optional[ActionOutcome] = None
    error: Optional[BaseException] = None


def classify(error: BaseException) -> AttemptResult:
    if isinstance(error, ConfigurationError):
        return AttemptResult(kind="configuration", error=error)
    if is_session_lost(error):
        return AttemptResult(kind="session_unreachable", error=error)
    return AttemptResult(kind="failure", error=error)


class RetryWrapper:
    """Re-run a step every ``delay_seconds`` until it passes or the budget runs out.

    The budget is ``max_attempts * (delay_seconds + 1)`` seconds of wall
    time, so ``max_attempts`` bounds elapsed time rather than the number of
    calls. A lost browser session is rebuilt through ``reinitialize`` and
    does not count as the step's failure cause; configuration errors stop
    the step at once.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        reinitialize: Optional[Callable[[], Awaitable[None]]] = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.policy = policy
        self._reinitialize = reinitialize
        self._clock = clock
        self._sleep = sleep
        self.last_attempts = 0
        self.reinitializations = 0

    async def run(self, description: str, step: Step) -> ActionOutcome:
        budget = self.policy.budget_seconds
        deadline = self._clock() + budget
        last_cause: Optional[BaseException] = None
        attempts = 0
        log.info("Attempting step: %s", description)

        while True:
            attempts += 1
            self.last_attempts = attempts
            result = await self._attempt(step)

            if result.kind == "ok":
                log.debug("Step succeeded after %d attempt(s): %s", attempts, description)
                return result.outcome
            if result.kind == "configuration":
                log.error("Configuration error in step '%s': %s", description, result.error)
                raise StepFailed(
                    f"Failed step '{description}': {result.error}", cause=result.error, attempts=attempts
                )
            if result.kind == "session_unreachable":
                log.warning("Browser unreachable during step '%s', reinitializing session", description)
                reinit_error = await self._reinit()
                if reinit_error is not None:
                    last_cause = reinit_error
            else:
                last_cause = result.error
                log.warning("Retry attempt %d failed for step '%s': %s", attempts, description, result.error)

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await self._sleep(min(max(self.policy.delay_seconds, MIN_RETRY_INTERVAL), remaining))

        log.error("Step '%s' timed out after %g seconds", description, budget)
        if last_cause is None:
            timeout = WaitTimeout(f"Step '{description}' timed out after {budget:g} seconds")
            raise StepFailed(str(timeout), cause=timeout, attempts=attempts)
        raise StepFailed(
            f"Failed step '{description}' after {attempts} attempts: {last_cause}",
            cause=last_cause,
            attempts=attempts,
        )

    async def _attempt(self, step: Step) -> AttemptResult:
        try:
            outcome = await step()
        except Exception as exc:
            return classify(exc)
        return AttemptResult(kind="ok", outcome=outcome)

    async def _reinit(self) -> Optional[BaseException]:
        self.reinitializations += 1
        if self._reinitialize is None:
            return None
        try:
            await self._reinitialize()
        except Exception as exc:
            log.error("Session reinitialization failed: %s", exc)
            return exc
        return None
