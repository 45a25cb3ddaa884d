"""Fallback element resolution over ordered locator candidates."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional, Tuple

from playwright.async_api import Locator

from testplan.catalog import TestCatalog
from testplan.dsl import CandidateAttempt, LocatorCandidate, ResolvedElement
from testplan.params import DatasetRow, ParameterResolver

from .config import RunConfig
from .errors import ElementNotFound, SessionUnreachable, UnsupportedLocatorStrategy
from .polling import Clock, Sleep, poll_until

log = logging.getLogger(__name__)


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def build_selector(strategy: str, value: str) -> str:
    """Translate a candidate into a Playwright selector string."""

    if strategy == "id":
        return f"[id={_quote(value)}]"
    if strategy == "class":
        return f"[class~={_quote(value)}]"
    if strategy == "css":
        return value
    if strategy == "xpath":
        return f"xpath={value}"
    if strategy == "name":
        return f"[name={_quote(value)}]"
    if strategy == "tag":
        return f"css={value}"
    if strategy == "text":
        return f"text={value}"
    if strategy == "aria_label":
        return f"[aria-label={_quote(value)}]"
    raise UnsupportedLocatorStrategy(f"Unsupported locator type: {strategy}")


class PageHandleCache:
    """Per-page table of resolved handles, rebuilt whenever a page reloads."""

    def __init__(self) -> None:
        self._pages: Dict[str, Dict[str, ResolvedElement]] = {}

    def get(self, page_id: str, element_id: str) -> Optional[ResolvedElement]:
        return self._pages.get(page_id, {}).get(element_id)

    def put(self, resolved: ResolvedElement) -> None:
        self._pages.setdefault(resolved.page_id, {})[resolved.element_id] = resolved

    def invalidate(self, page_id: str) -> None:
        self._pages.pop(page_id, None)

    def clear(self) -> None:
        self._pages.clear()

    def pages(self) -> List[str]:
        return list(self._pages)


class LocatorResolver:
    """Try each candidate of an element in ordinal order until one matches."""

    def __init__(
        self,
        session,
        catalog: TestCatalog,
        params: ParameterResolver,
        config: RunConfig,
        cache: Optional[PageHandleCache] = None,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.session = session
        self.catalog = catalog
        self.params = params
        self.config = config
        self.cache = cache or PageHandleCache()
        self._clock = clock
        self._sleep = sleep

    def candidate_locators(
        self, page_id: str, element_id: str, row: Optional[DatasetRow] = None
    ) -> List[Tuple[LocatorCandidate, str, Locator]]:
        page = self.session.page
        entries = []
        for candidate in self.catalog.candidates(page_id, element_id):
            selector = build_selector(candidate.strategy, self.params.resolve(candidate.value, row))
            entries.append((candidate, selector, page.locator(selector)))
        return entries

    async def resolve_element(
        self,
        page_id: str,
        element_id: str,
        row: Optional[DatasetRow] = None,
        *,
        timeout: Optional[float] = None,
        use_cache: bool = True,
    ) -> ResolvedElement:
        if use_cache:
            cached = self.cache.get(page_id, element_id)
            if cached is not None:
                return cached

        timeout = timeout if timeout is not None else self.config.default_timeout
        attempts: List[CandidateAttempt] = []
        for candidate, selector, locator in self.candidate_locators(page_id, element_id, row):
            try:
                await poll_until(
                    lambda: _has_match(locator),
                    timeout=timeout,
                    interval=self.config.poll_interval,
                    description=f"{element_id} via {selector}",
                    clock=self._clock,
                    sleep=self._sleep,
                )
                target = locator.first
                handle = await target.element_handle()
            except SessionUnreachable:
                raise
            except Exception as exc:
                log.warning(
                    "Failed to find element %s on page %s with locator %s, trying next: %s",
                    element_id,
                    page_id,
                    selector,
                    exc,
                )
                attempts.append(CandidateAttempt(candidate=candidate, selector=selector, matched=False, error=str(exc)))
                continue

            log.debug("Resolved %s.%s via candidate %d (%s)", page_id, element_id, candidate.ordinal, selector)
            resolved = ResolvedElement(
                page_id=page_id,
                element_id=element_id,
                candidate=candidate,
                selector=selector,
                locator=target,
                handle=handle,
                metadata={"failed_candidates": len(attempts)},
            )
            self.cache.put(resolved)
            return resolved

        raise ElementNotFound(
            f"No valid locator found for {element_id} on page {page_id}",
            details={"attempts": [{"selector": a.selector, "error": a.error} for a in attempts]},
        )

    async def count_matches(self, page_id: str, element_id: str, row: Optional[DatasetRow] = None) -> int:
        """Live match count of the first candidate that matches anything."""

        for _candidate, _selector, locator in self.candidate_locators(page_id, element_id, row):
            count = await locator.count()
            if count:
                return count
        return 0

    def reload_page(self, page_id: str) -> None:
        """Drop every cached handle of ``page_id``; entries are rebuilt on next use."""

        log.debug("Reloading element table for page %s", page_id)
        self.cache.invalidate(page_id)


async def _has_match(locator: Locator) -> bool:
    return await locator.count() > 0
