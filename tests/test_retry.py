import asyncio

import pytest

from engine.config import RetryPolicy
from engine.dispatcher import ActionOutcome
from engine.errors import ElementNotFound, SessionUnreachable, StepFailed, UnsupportedCondition, WaitTimeout
from engine.retry import RetryWrapper, classify

from fakes import FakeClock


def _wrapper(attempts=3, delay=2, reinitialize=None):
    clock = FakeClock()
    wrapper = RetryWrapper(
        RetryPolicy(max_attempts=attempts, delay_seconds=delay),
        reinitialize=reinitialize,
        clock=clock,
        sleep=clock.sleep,
    )
    return wrapper, clock


def _scripted(*results):
    """Step returning or raising each entry in turn, repeating the last one."""

    calls = []

    async def step():
        calls.append(len(calls))
        result = results[min(len(calls) - 1, len(results) - 1)]
        if isinstance(result, BaseException):
            raise result
        return result

    return step, calls


def test_classification_tags():
    assert classify(UnsupportedCondition("x")).kind == "configuration"
    assert classify(SessionUnreachable("x")).kind == "session_unreachable"
    assert classify(RuntimeError("Target page, context or browser has been closed")).kind == "session_unreachable"
    assert classify(ElementNotFound("x")).kind == "failure"


def test_success_on_third_attempt_without_reinitialization():
    reinits = []

    async def reinitialize():
        reinits.append(True)

    wrapper, clock = _wrapper(reinitialize=reinitialize)
    done = ActionOutcome(ok=True, details={})
    step, calls = _scripted(ElementNotFound("a"), ElementNotFound("b"), done)

    outcome = asyncio.run(wrapper.run("step", step))

    assert outcome is done
    assert len(calls) == 3
    assert reinits == []
    assert clock.sleeps == [2, 2]


def test_budget_is_nine_seconds_for_three_attempts_two_second_delay():
    wrapper, clock = _wrapper()
    step, calls = _scripted(ElementNotFound("never"))

    with pytest.raises(StepFailed) as excinfo:
        asyncio.run(wrapper.run("step", step))

    assert clock.now == pytest.approx(9.0)
    assert isinstance(excinfo.value.cause, ElementNotFound)
    assert excinfo.value.attempts == len(calls)


def test_each_session_loss_triggers_exactly_one_reinitialization():
    reinits = []

    async def reinitialize():
        reinits.append(True)

    wrapper, _ = _wrapper(reinitialize=reinitialize)
    done = ActionOutcome(ok=True, details={})
    step, calls = _scripted(SessionUnreachable("gone"), done)

    outcome = asyncio.run(wrapper.run("step", step))

    assert outcome is done
    assert len(reinits) == 1
    assert wrapper.reinitializations == 1


def test_session_loss_is_not_recorded_as_cause():
    wrapper, _ = _wrapper(attempts=1, delay=1)
    step, _ = _scripted(SessionUnreachable("gone"))

    with pytest.raises(StepFailed) as excinfo:
        asyncio.run(wrapper.run("step", step))

    assert isinstance(excinfo.value.cause, WaitTimeout)


def test_last_failure_is_kept_across_session_losses():
    wrapper, _ = _wrapper(attempts=2, delay=1)
    step, _ = _scripted(ElementNotFound("missing"), SessionUnreachable("gone"))

    with pytest.raises(StepFailed) as excinfo:
        asyncio.run(wrapper.run("step", step))

    assert str(excinfo.value.cause) == "missing"


def test_configuration_errors_are_fatal_immediately():
    wrapper, clock = _wrapper()
    step, calls = _scripted(UnsupportedCondition("bad"))

    with pytest.raises(StepFailed) as excinfo:
        asyncio.run(wrapper.run("step", step))

    assert len(calls) == 1
    assert clock.now == 0
    assert isinstance(excinfo.value.__cause__, UnsupportedCondition)
