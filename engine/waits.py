"""Pre-step wait predicates, each evaluated by bounded polling."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import Locator

from testplan.dsl import RecordBase
from testplan.dsl.models import WaitBase
from testplan.params import DatasetRow, ParameterResolver

from .config import RunConfig
from .errors import SessionUnreachable, UnsupportedWait, WaitTimeout, is_session_lost
from .locator_resolver import LocatorResolver
from .polling import Clock, Sleep, poll_until

log = logging.getLogger(__name__)

MAX_MATCHES_INSPECTED = 10

Probe = Callable[[], Awaitable[bool]]


def effective_timeout(record: RecordBase, config: RunConfig) -> float:
    if record.wait is not None and record.wait.timeout is not None:
        return record.wait.timeout
    if record.timeout is not None:
        return record.timeout
    return config.default_timeout


async def _any_match(locator: Locator, check: Callable[[Locator], Awaitable[bool]]) -> bool:
    count = await locator.count()
    for index in range(min(count, MAX_MATCHES_INSPECTED)):
        if await check(locator.nth(index)):
            return True
    return False


async def _is_visible(locator: Locator) -> bool:
    return await locator.is_visible()


async def _is_clickable(locator: Locator) -> bool:
    return await locator.is_visible() and await locator.is_enabled()


class WaitEvaluator:
    def __init__(
        self,
        session,
        resolver: LocatorResolver,
        params: ParameterResolver,
        config: RunConfig,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.session = session
        self.resolver = resolver
        self.params = params
        self.config = config
        self._clock = clock
        self._sleep = sleep

    async def apply_wait(
        self,
        record: RecordBase,
        page_id: Optional[str] = None,
        element_id: Optional[str] = None,
        row: Optional[DatasetRow] = None,
    ) -> None:
        spec = record.wait
        if spec is None:
            return
        timeout = effective_timeout(record, self.config)
        builder = getattr(self, f"_probe_{spec.kind}", None)
        if builder is None:
            raise UnsupportedWait(f"Unsupported wait: {spec.kind}")
        probe = await builder(spec, page_id, element_id, row, timeout)
        log.debug("Waiting up to %ss for '%s' (record %d)", timeout, spec.kind, record.index)
        await poll_until(
            probe,
            timeout=timeout,
            interval=self.config.poll_interval,
            description=f"wait '{spec.kind}' on {element_id or 'page'}",
            clock=self._clock,
            sleep=self._sleep,
            error_factory=WaitTimeout,
        )

    async def _probe_visible(self, spec: WaitBase, page_id, element_id, row, timeout) -> Probe:
        return self._element_probe(page_id, element_id, row, lambda loc: _any_match(loc, _is_visible))

    async def _probe_clickable(self, spec: WaitBase, page_id, element_id, row, timeout) -> Probe:
        return self._element_probe(page_id, element_id, row, lambda loc: _any_match(loc, _is_clickable))

    async def _probe_present(self, spec: WaitBase, page_id, element_id, row, timeout) -> Probe:
        async def present(loc: Locator) -> bool:
            return await loc.count() > 0

        return self._element_probe(page_id, element_id, row, present)

    async def _probe_invisible(self, spec: WaitBase, page_id, element_id, row, timeout) -> Probe:
        async def probe() -> bool:
            for _candidate, _selector, locator in self.resolver.candidate_locators(page_id, element_id, row):
                if await _any_match(locator, _is_visible):
                    return False
            return True

        return probe

    async def _probe_text_present(self, spec, page_id, element_id, row, timeout) -> Probe:
        text = self.params.resolve(spec.text, row) or ""

        async def contains_text(loc: Locator) -> bool:
            return text in (await loc.inner_text())

        return self._element_probe(page_id, element_id, row, lambda loc: _any_match(loc, contains_text))

    async def _probe_stale(self, spec, page_id, element_id, row, timeout) -> Probe:
        resolved = self.resolver.cache.get(page_id, element_id)
        if resolved is None:
            resolved = await self.resolver.resolve_element(page_id, element_id, row, timeout=timeout)
        handle = resolved.handle

        async def probe() -> bool:
            if handle is None:
                return True
            try:
                return bool(await handle.evaluate("el => !el.isConnected"))
            except Exception as exc:
                if is_session_lost(exc):
                    raise SessionUnreachable(str(exc)) from exc
                return True

        return probe

    async def _probe_url_contains(self, spec, page_id, element_id, row, timeout) -> Probe:
        fragment = self.params.resolve(spec.fragment, row) or ""

        async def probe() -> bool:
            return fragment in self.session.page.url

        return probe

    async def _probe_custom(self, spec, page_id, element_id, row, timeout) -> Probe:
        script = self.params.resolve(spec.script, row)

        async def probe() -> bool:
            result: Any = await self.session.page.evaluate(script)
            return result is True

        return probe

    def _element_probe(
        self,
        page_id: str,
        element_id: str,
        row: Optional[DatasetRow],
        check: Callable[[Locator], Awaitable[bool]],
    ) -> Probe:
        async def probe() -> bool:
            for _candidate, _selector, locator in self.resolver.candidate_locators(page_id, element_id, row):
                if await check(locator):
                    return True
            return False

        return probe
