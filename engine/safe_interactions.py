"""Shared interaction helpers that confirm each mutation before proceeding."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from playwright.async_api import Locator, Page

from .errors import ExecutionError, is_session_lost
from .polling import DEFAULT_POLL_INTERVAL, Clock, Sleep, poll_until

log = logging.getLogger(__name__)

DEFAULT_ACTION_TIMEOUT = 10.0
DEFAULT_CONFIRM_TIMEOUT = 2.0


class MutationNotConfirmed(ExecutionError):
    """The page never reflected a value the interaction wrote."""

    code = "MUTATION_NOT_CONFIRMED"


def _ms(seconds: Optional[float], default: float = DEFAULT_ACTION_TIMEOUT) -> float:
    return (seconds if seconds is not None else default) * 1000


async def prepare_locator(page: Page, locator: Locator, timeout: Optional[float] = None) -> Locator:
    """Ensure the locator points to an interactable element."""

    del page

    timeout_ms = _ms(timeout)
    await locator.wait_for(state="attached", timeout=timeout_ms)
    await locator.scroll_into_view_if_needed(timeout=timeout_ms)
    await locator.wait_for(state="visible", timeout=timeout_ms)
    if not await locator.is_enabled():
        raise ExecutionError("Element is not enabled for interaction", code="ELEMENT_DISABLED")
    return locator


async def safe_click(
    page: Page,
    locator: Locator,
    *,
    timeout: Optional[float] = None,
    click_count: int = 1,
) -> None:
    """Click an element, falling back to a forced click when actionability checks stall."""

    timeout_ms = _ms(timeout)
    target = await prepare_locator(page, locator, timeout)
    try:
        if click_count == 2:
            await target.dblclick(timeout=timeout_ms)
        else:
            await target.click(timeout=timeout_ms)
    except Exception as exc:
        if is_session_lost(exc):
            raise
        log.warning("Click retry with force due to: %s", exc)
        if click_count == 2:
            await target.dblclick(timeout=timeout_ms, force=True)
        else:
            await target.click(timeout=timeout_ms, force=True)


async def safe_hover(page: Page, locator: Locator, *, timeout: Optional[float] = None) -> None:
    timeout_ms = _ms(timeout)
    target = await prepare_locator(page, locator, timeout)
    try:
        await target.hover(timeout=timeout_ms)
    except Exception as exc:
        if is_session_lost(exc):
            raise
        log.warning("Hover retry with force due to: %s", exc)
        await target.hover(timeout=timeout_ms, force=True)


async def safe_fill(
    page: Page,
    locator: Locator,
    value: str,
    *,
    timeout: Optional[float] = None,
    confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
    clock: Clock = time.monotonic,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """Replace the element's value and wait until the page reports it back."""

    timeout_ms = _ms(timeout)
    target = await prepare_locator(page, locator, timeout)
    await target.fill("", timeout=timeout_ms)
    await target.fill(value, timeout=timeout_ms)

    async def value_matches() -> bool:
        return await target.input_value() == value

    await _confirm(value_matches, f"value '{value}'", confirm_timeout, clock, sleep)


async def safe_clear(
    page: Page,
    locator: Locator,
    *,
    timeout: Optional[float] = None,
    confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
    clock: Clock = time.monotonic,
    sleep: Sleep = asyncio.sleep,
) -> None:
    timeout_ms = _ms(timeout)
    target = await prepare_locator(page, locator, timeout)
    await target.clear(timeout=timeout_ms)

    async def is_empty() -> bool:
        return await target.input_value() == ""

    await _confirm(is_empty, "empty value", confirm_timeout, clock, sleep)


async def safe_select(
    page: Page,
    locator: Locator,
    label: str,
    *,
    timeout: Optional[float] = None,
    confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
    clock: Clock = time.monotonic,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """Select an option by its visible text, falling back to its value attribute."""

    timeout_ms = _ms(timeout)
    target = await prepare_locator(page, locator, timeout)
    try:
        await target.select_option(label=label, timeout=timeout_ms)
    except Exception as exc:
        if is_session_lost(exc):
            raise
        log.warning("Select by label failed, retrying by value for '%s': %s", label, exc)
        await target.select_option(value=label, timeout=timeout_ms)

    async def option_selected() -> bool:
        selected = await target.evaluate(
            "el => el.selectedIndex >= 0 ? [el.options[el.selectedIndex].text, el.value] : []"
        )
        return label in [str(item).strip() for item in selected or []]

    await _confirm(option_selected, f"option '{label}'", confirm_timeout, clock, sleep)


async def safe_submit(page: Page, locator: Locator, *, timeout: Optional[float] = None) -> None:
    """Submit the form that owns the element (or the element itself if it is a form)."""

    target = await prepare_locator(page, locator, timeout)
    submitted = await target.evaluate(
        """
        el => {
            const form = el.tagName === 'FORM' ? el : el.form || el.closest('form');
            if (!form) {
                return false;
            }
            if (typeof form.requestSubmit === 'function') {
                form.requestSubmit();
            } else {
                form.submit();
            }
            return true;
        }
        """
    )
    if not submitted:
        log.info("Element has no owning form; pressing Enter instead")
        await target.press("Enter", timeout=_ms(timeout))


async def safe_upload(page: Page, locator: Locator, path: str, *, timeout: Optional[float] = None) -> None:
    # File inputs are usually hidden, so only attachment is required.
    del page
    await locator.wait_for(state="attached", timeout=_ms(timeout))
    await locator.set_input_files(path, timeout=_ms(timeout))


async def _confirm(probe, description: str, timeout: float, clock: Clock, sleep: Sleep) -> None:
    await poll_until(
        probe,
        timeout=timeout,
        interval=min(DEFAULT_POLL_INTERVAL, timeout),
        description=f"element to show {description}",
        clock=clock,
        sleep=sleep,
        error_factory=MutationNotConfirmed,
    )
