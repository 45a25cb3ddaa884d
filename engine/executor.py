"""Script interpreter: a state machine over indexed records, replayed per dataset row."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx

from testplan.catalog import TestCatalog
from testplan.dsl import ActionBase, AssertionBase, RecordBase, TestScript
from testplan.params import DatasetRow, ParameterResolver

from .broker import BrokerClient, KafkaBroker
from .config import RunConfig, ensure_run_directories, load_config
from .dispatcher import ActionContext, ActionDispatcher, ActionOutcome
from .errors import DatasetRunFailed, InvalidBranchTarget, ScriptFailed, StepFailed
from .http_client import build_http_client
from .locator_resolver import LocatorResolver
from .polling import Clock, Sleep, poll_until
from .retry import RetryWrapper
from .session import BrowserSession
from .structured_logging import StructuredLogger, prepare_log_paths
from .waits import WaitEvaluator

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Running:
    pointer: int


@dataclass(frozen=True, slots=True)
class Succeeded:
    pass


@dataclass(frozen=True, slots=True)
class Failed:
    cause: StepFailed


InterpreterState = Union[Running, Succeeded, Failed]


def next_state(state: Running, outcome: ActionOutcome, length: int) -> InterpreterState:
    """Pure transition after the record at ``state.pointer`` succeeded.

    A branch outcome carries the 1-based index to continue at; anything
    else falls through to the next record. Running off the end succeeds.
    """

    if outcome.next_index is not None:
        if outcome.next_index < 1:
            raise InvalidBranchTarget(f"Branch target {outcome.next_index} is below 1")
        pointer = outcome.next_index - 1
    else:
        pointer = state.pointer + 1
    if pointer >= length:
        return Succeeded()
    return Running(pointer)


class ScriptInterpreter:
    """Executes a script's actions for one row, then its assertions."""

    def __init__(
        self,
        dispatcher: ActionDispatcher,
        waits: WaitEvaluator,
        resolver: LocatorResolver,
        retry: RetryWrapper,
        events: Optional[StructuredLogger] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.waits = waits
        self.resolver = resolver
        self.retry = retry
        self.events = events

    async def run(
        self, script: TestScript, row: Optional[DatasetRow] = None, row_number: Optional[int] = None
    ) -> InterpreterState:
        state: InterpreterState = Running(0) if script.actions else Succeeded()
        while isinstance(state, Running):
            record = script.actions[state.pointer]
            description = record.describe()
            try:
                outcome = await self.retry.run(description, lambda: self._step(record, row))
            except StepFailed as exc:
                log.error("Test '%s' stopped at action %d: %s", script.test_id, record.index, exc)
                self._log(script.test_id, record, description, row_number, error=exc)
                return Failed(exc)
            self._log(script.test_id, record, description, row_number, outcome=outcome)
            state = next_state(state, outcome, len(script))
        return state

    async def run_assertions(
        self, script: TestScript, row: Optional[DatasetRow] = None, row_number: Optional[int] = None
    ) -> List[ActionOutcome]:
        outcomes: List[ActionOutcome] = []
        for record in script.assertions:
            description = record.describe()
            try:
                outcome = await self.retry.run(description, lambda: self._check(record, row))
            except StepFailed as exc:
                self._log(script.test_id, record, description, row_number, error=exc)
                raise ScriptFailed(
                    f"Assertion {record.index} of test '{script.test_id}' failed: {exc}",
                    test_id=script.test_id,
                    row_number=row_number,
                    step=exc,
                ) from exc
            self._log(script.test_id, record, description, row_number, outcome=outcome)
            outcomes.append(outcome)
        return outcomes

    async def _step(self, record: ActionBase, row: Optional[DatasetRow]) -> ActionOutcome:
        await self.waits.apply_wait(record, record.page, record.element, row)
        if record.page and record.element:
            self.resolver.reload_page(record.page)
        return await self.dispatcher.execute(record, row)

    async def _check(self, record: AssertionBase, row: Optional[DatasetRow]) -> ActionOutcome:
        await self.waits.apply_wait(record, record.page, record.element, row)
        if record.page and record.element:
            self.resolver.reload_page(record.page)
        return await self.dispatcher.evaluate(record, row)

    def _log(
        self,
        test_id: str,
        record: RecordBase,
        description: str,
        row_number: Optional[int],
        *,
        outcome: Optional[ActionOutcome] = None,
        error: Optional[StepFailed] = None,
    ) -> None:
        if self.events is None:
            return
        selector = None
        if outcome is not None and outcome.resolved is not None:
            selector = {"selector": outcome.resolved.selector, "strategy": outcome.resolved.strategy}
        cause = error.cause if error is not None else None
        self.events.log_event(
            test_id=test_id,
            record=record.payload(),
            description=description,
            ok=error is None,
            row=row_number,
            attempts=self.retry.last_attempts,
            result=outcome.details if outcome is not None else None,
            warnings=outcome.warnings if outcome is not None else None,
            error=str(error) if error is not None else None,
            error_code=getattr(cause, "code", type(cause).__name__) if cause is not None else None,
            selector=selector,
        )


class ScenarioExecutor:
    """Owns one browser session, broker client and HTTP client for a scenario."""

    def __init__(
        self,
        catalog: TestCatalog,
        config: Optional[RunConfig] = None,
        *,
        session: Optional[BrowserSession] = None,
        broker: Optional[BrokerClient] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        run_id: Optional[str] = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.catalog = catalog
        self.config = config or load_config()
        self.run_id = run_id or f"run-{int(time.time())}"
        self.session = session or BrowserSession(self.config)
        if broker is None and self.config.broker_enabled:
            broker = KafkaBroker(self.config)
        self.broker = broker
        self.http = http_client or build_http_client(self.config)
        self._clock = clock
        self._sleep = sleep

        self.params = ParameterResolver(catalog.params)
        self.resolver = LocatorResolver(self.session, catalog, self.params, self.config, clock=clock, sleep=sleep)
        self.waits = WaitEvaluator(self.session, self.resolver, self.params, self.config, clock=clock, sleep=sleep)
        self.context = ActionContext(
            self.session,
            catalog,
            self.resolver,
            self.params,
            self.config,
            broker=self.broker,
            http=self.http,
            clock=clock,
            sleep=sleep,
        )
        self.dispatcher = ActionDispatcher(self.context)
        self.retry = RetryWrapper(self.config.retry_policy, reinitialize=self._reinitialize, clock=clock, sleep=sleep)
        self.interpreter = ScriptInterpreter(self.dispatcher, self.waits, self.resolver, self.retry)
        self.session.add_restart_listener(self.resolver.cache.clear)
        self.paths: Optional[Dict[str, Path]] = None

    async def __aenter__(self) -> "ScenarioExecutor":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def start(self) -> None:
        self.paths = ensure_run_directories(self.run_id, self.config)
        if self.config.event_log and self.interpreter.events is None:
            log_paths = prepare_log_paths(self.run_id, self.paths["base"])
            self.interpreter.events = StructuredLogger(self.run_id, log_paths)
        if not self.session.started:
            await self.session.start()

    async def close(self) -> None:
        if self.interpreter.events is not None:
            self.interpreter.events.close()
            self.interpreter.events = None
        if self.broker is not None:
            await self.broker.close()
        await self.http.aclose()
        await self.session.close()

    async def navigate_to(self, page_id: str) -> None:
        """Open ``page_id`` under the configured base URL, retrying like any step."""

        await self.retry.run(f"Navigate to page '{page_id}'", lambda: self._open_page(page_id))

    async def _open_page(self, page_id: str) -> ActionOutcome:
        path = self.catalog.page_path(page_id)
        url = f"{self.config.base_url}{path}"
        log.info("Navigating to page %s (%s)", page_id, url)
        page = self.session.page
        await page.goto(url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout * 1000)

        async def arrived() -> bool:
            return path in self.session.page.url

        await poll_until(
            arrived,
            timeout=self.config.navigation_timeout,
            interval=self.config.poll_interval,
            description=f"page '{page_id}'",
            clock=self._clock,
            sleep=self._sleep,
        )
        self.resolver.reload_page(page_id)
        self.context.current_page = page_id
        return ActionOutcome(ok=True, details={"page": page_id, "current_url": self.session.page.url})

    async def execute_test(self, test_id: str, on_row_failure: Optional[str] = None) -> None:
        """Run the test's actions once, or once per dataset row when it has one."""

        definition = self.catalog.test(test_id)
        rows = self.catalog.dataset(test_id)
        policy = on_row_failure or self.config.on_row_failure
        log.info("Starting test execution: %s", test_id)

        if rows is None:
            await self._run_row(definition.script, None, None)
            return

        failures: List[ScriptFailed] = []
        for number, row in enumerate(rows, start=1):
            log.info("Executing test %s with data row %d: %s", test_id, number, row)
            if definition.reset_session_per_row:
                await self.session.restart()
                if definition.start_page:
                    await self._open_page(definition.start_page)
            try:
                await self._run_row(definition.script, row, number)
            except ScriptFailed as exc:
                if policy != "continue":
                    raise
                log.error("Row %d of test %s failed, continuing: %s", number, test_id, exc)
                failures.append(exc)
        if failures:
            raise DatasetRunFailed(test_id, failures)

    async def assert_test(self, test_id: str, *, per_row: bool = True) -> List[ActionOutcome]:
        """Check the test's assertions once per dataset row, or once without a dataset.

        ``per_row=False`` checks them a single time without row values.
        """

        definition = self.catalog.test(test_id)
        rows = self.catalog.dataset(test_id) if per_row else None
        log.info("Running assertions for test: %s", test_id)
        if not rows:
            return await self.interpreter.run_assertions(definition.script)
        outcomes: List[ActionOutcome] = []
        for number, row in enumerate(rows, start=1):
            outcomes.extend(await self.interpreter.run_assertions(definition.script, row, number))
        return outcomes

    async def capture_screenshot(self, path: Optional[Path] = None) -> bytes:
        data = await self.session.screenshot(full_page=True)
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        return data

    async def _run_row(self, script: TestScript, row: Optional[DatasetRow], number: Optional[int]) -> None:
        state = await self.interpreter.run(script, row, number)
        if isinstance(state, Failed):
            where = f" with data row {number}" if number is not None else ""
            raise ScriptFailed(
                f"Test '{script.test_id}' failed{where}: {state.cause}",
                test_id=script.test_id,
                row_number=number,
                step=state.cause,
            )

    async def _reinitialize(self) -> None:
        await self.session.restart()
        if self.context.current_page is not None:
            await self._open_page(self.context.current_page)
