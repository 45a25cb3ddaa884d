"""Maps each typed record onto the session, broker or HTTP side effect it names."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from testplan.catalog import TestCatalog
from testplan.dsl import (
    ActionBase,
    AssertionBase,
    AttributeAssertion,
    CheckAction,
    ClearAction,
    ClickAction,
    ConsumeAction,
    CountAssertion,
    DoubleClickAction,
    EnabledAssertion,
    EnterTextAction,
    HoverAction,
    HttpCallAction,
    LoadStateAction,
    NavigateAction,
    ProduceAction,
    RecordBase,
    ResolvedElement,
    SaveStateAction,
    SelectOptionAction,
    SubmitAction,
    TextAssertion,
    UploadFileAction,
    UrlAssertion,
    VisibleAssertion,
)
from testplan.params import DatasetRow, ParameterResolver

from .assertions import assert_condition
from .broker import BrokerClient, BrokerMessage
from .config import RunConfig
from .errors import (
    BrokerConsumeTimeout,
    ConfigurationError,
    ElementNotFound,
    FileNotFound,
    UnsupportedAssertion,
    UnsupportedCondition,
    UnsupportedOperation,
)
from .http_client import send_request
from .locator_resolver import LocatorResolver
from .polling import Clock, Sleep, poll_until
from .safe_interactions import (
    safe_clear,
    safe_click,
    safe_fill,
    safe_hover,
    safe_select,
    safe_submit,
    safe_upload,
)
from .waits import effective_timeout

log = logging.getLogger(__name__)

BROKER_POLL_SECONDS = 0.1


@dataclass(slots=True)
class ActionOutcome:
    ok: bool
    details: Dict[str, Any]
    next_index: Optional[int] = None
    resolved: Optional[ResolvedElement] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ok": self.ok, "details": self.details}
        if self.next_index is not None:
            payload["next_index"] = self.next_index
        if self.warnings:
            payload["warnings"] = self.warnings
        if self.error:
            payload["error"] = self.error
        return payload


class ActionContext:
    """Everything one scenario's dispatcher touches."""

    def __init__(
        self,
        session,
        catalog: TestCatalog,
        resolver: LocatorResolver,
        params: ParameterResolver,
        config: RunConfig,
        *,
        broker: Optional[BrokerClient] = None,
        http: Optional[httpx.AsyncClient] = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.session = session
        self.catalog = catalog
        self.resolver = resolver
        self.params = params
        self.config = config
        self.broker = broker
        self.http = http
        self.clock = clock
        self.sleep = sleep
        self.snapshots: Dict[str, List[Dict[str, Any]]] = {}
        self.current_page: Optional[str] = None

    @property
    def broker_active(self) -> bool:
        return self.broker is not None and self.config.broker_enabled


class ActionDispatcher:
    def __init__(self, context: ActionContext) -> None:
        self.context = context

    async def execute(self, record: ActionBase, row: Optional[DatasetRow] = None) -> ActionOutcome:
        if isinstance(record, EnterTextAction):
            return await self._enter_text(record, row)
        if isinstance(record, ClickAction):
            return await self._click(record, row)
        if isinstance(record, SelectOptionAction):
            return await self._select_option(record, row)
        if isinstance(record, HoverAction):
            return await self._hover(record, row)
        if isinstance(record, ClearAction):
            return await self._clear(record, row)
        if isinstance(record, SubmitAction):
            return await self._submit(record, row)
        if isinstance(record, DoubleClickAction):
            return await self._double_click(record, row)
        if isinstance(record, UploadFileAction):
            return await self._upload_file(record, row)
        if isinstance(record, NavigateAction):
            return await self._navigate(record, row)
        if isinstance(record, CheckAction):
            return await self._check(record, row)
        if isinstance(record, SaveStateAction):
            return await self._save_state(record)
        if isinstance(record, LoadStateAction):
            return await self._load_state(record)
        if isinstance(record, ProduceAction):
            return await self._produce(record, row)
        if isinstance(record, ConsumeAction):
            return await self._consume(record, row)
        if isinstance(record, HttpCallAction):
            return await self._http_call(record, row)
        raise UnsupportedOperation(f"Unsupported operation: {getattr(record, 'record_name', record)}")

    async def evaluate(self, record: AssertionBase, row: Optional[DatasetRow] = None) -> ActionOutcome:
        """Probe the live state named by an assertion and compare it."""

        actual = await self._probe(record, row)
        expected = self.context.params.resolve(record.expected, row)
        assert_condition(actual, expected, record.operator)
        return ActionOutcome(ok=True, details={"actual": actual, "expected": expected, "operator": record.operator})

    # ------------------------------------------------------------------
    # element operations
    # ------------------------------------------------------------------
    def _timeout(self, record: RecordBase) -> float:
        return effective_timeout(record, self.context.config)

    async def _resolve(self, record: RecordBase, row: Optional[DatasetRow]) -> ResolvedElement:
        return await self.context.resolver.resolve_element(
            record.page, record.element, row, timeout=self._timeout(record)
        )

    def _value(self, record: ActionBase, row: Optional[DatasetRow]) -> str:
        return self.context.params.resolve(record.value, row) or ""

    def _element_outcome(self, resolved: ResolvedElement, **details: Any) -> ActionOutcome:
        details.update({"selector": resolved.selector, "ordinal": resolved.ordinal})
        return ActionOutcome(ok=True, details=details, resolved=resolved)

    async def _enter_text(self, record: EnterTextAction, row: Optional[DatasetRow]) -> ActionOutcome:
        ctx = self.context
        resolved = await self._resolve(record, row)
        value = self._value(record, row)
        await safe_fill(
            ctx.session.page,
            resolved.locator,
            value,
            timeout=self._timeout(record),
            confirm_timeout=ctx.config.confirm_timeout,
            clock=ctx.clock,
            sleep=ctx.sleep,
        )
        return self._element_outcome(resolved, value=value)

    async def _click(self, record: ClickAction, row: Optional[DatasetRow]) -> ActionOutcome:
        resolved = await self._resolve(record, row)
        await safe_click(self.context.session.page, resolved.locator, timeout=self._timeout(record))
        return self._element_outcome(resolved)

    async def _double_click(self, record: DoubleClickAction, row: Optional[DatasetRow]) -> ActionOutcome:
        resolved = await self._resolve(record, row)
        await safe_click(self.context.session.page, resolved.locator, timeout=self._timeout(record), click_count=2)
        return self._element_outcome(resolved, click_count=2)

    async def _select_option(self, record: SelectOptionAction, row: Optional[DatasetRow]) -> ActionOutcome:
        ctx = self.context
        resolved = await self._resolve(record, row)
        label = self._value(record, row)
        await safe_select(
            ctx.session.page,
            resolved.locator,
            label,
            timeout=self._timeout(record),
            confirm_timeout=ctx.config.confirm_timeout,
            clock=ctx.clock,
            sleep=ctx.sleep,
        )
        return self._element_outcome(resolved, option=label)

    async def _hover(self, record: HoverAction, row: Optional[DatasetRow]) -> ActionOutcome:
        resolved = await self._resolve(record, row)
        await safe_hover(self.context.session.page, resolved.locator, timeout=self._timeout(record))
        return self._element_outcome(resolved)

    async def _clear(self, record: ClearAction, row: Optional[DatasetRow]) -> ActionOutcome:
        ctx = self.context
        resolved = await self._resolve(record, row)
        await safe_clear(
            ctx.session.page,
            resolved.locator,
            timeout=self._timeout(record),
            confirm_timeout=ctx.config.confirm_timeout,
            clock=ctx.clock,
            sleep=ctx.sleep,
        )
        return self._element_outcome(resolved)

    async def _submit(self, record: SubmitAction, row: Optional[DatasetRow]) -> ActionOutcome:
        resolved = await self._resolve(record, row)
        await safe_submit(self.context.session.page, resolved.locator, timeout=self._timeout(record))
        return self._element_outcome(resolved)

    async def _upload_file(self, record: UploadFileAction, row: Optional[DatasetRow]) -> ActionOutcome:
        path = Path(self._value(record, row))
        if not path.exists():
            raise FileNotFound(f"File not found: {path}")
        resolved = await self._resolve(record, row)
        await safe_upload(
            self.context.session.page, resolved.locator, str(path.resolve()), timeout=self._timeout(record)
        )
        return self._element_outcome(resolved, path=str(path))

    async def _navigate(self, record: NavigateAction, row: Optional[DatasetRow]) -> ActionOutcome:
        ctx = self.context
        target_path = ctx.catalog.page_path(record.target_page)
        details: Dict[str, Any] = {"target_page": record.target_page}
        timeout = self._timeout(record)

        # Without a trigger this only waits for a redirect already under way.
        if record.element:
            resolved = await self._resolve(record, row)
            await safe_click(ctx.session.page, resolved.locator, timeout=timeout)
            details["trigger"] = resolved.selector

        async def arrived() -> bool:
            return target_path in ctx.session.page.url

        await poll_until(
            arrived,
            timeout=timeout,
            interval=ctx.config.poll_interval,
            description=f"URL containing '{target_path}'",
            clock=ctx.clock,
            sleep=ctx.sleep,
        )
        ctx.resolver.reload_page(record.target_page)
        ctx.current_page = record.target_page
        details["current_url"] = ctx.session.page.url
        return ActionOutcome(ok=True, details=details)

    async def _check(self, record: CheckAction, row: Optional[DatasetRow]) -> ActionOutcome:
        """Pick the next index from the condition; never fails on a false condition.

        An element that cannot be resolved counts as a false condition and
        takes the false branch straight away instead of retrying the step.
        """

        try:
            resolved = await self._resolve(record, row)
        except ElementNotFound as exc:
            log.info("Check %d: element %s not found, condition '%s' is false", record.index, record.element, record.condition)
            met = False
            resolved = None
            warnings = [str(exc)]
        else:
            met = await self._condition_met(record.condition, resolved)
            warnings = []
        next_index = record.next_index(met)
        log.info("Check %d: condition '%s' is %s, continuing at %d", record.index, record.condition, met, next_index)
        return ActionOutcome(
            ok=True,
            details={"condition": record.condition, "met": met},
            next_index=next_index,
            resolved=resolved,
            warnings=warnings,
        )

    async def _condition_met(self, condition: str, resolved: ResolvedElement) -> bool:
        if condition == "present":
            return True
        if condition == "visible":
            return await resolved.locator.is_visible()
        if condition == "enabled":
            return await resolved.locator.is_enabled()
        raise UnsupportedCondition(f"Unsupported condition: {condition}")

    # ------------------------------------------------------------------
    # session state
    # ------------------------------------------------------------------
    async def _save_state(self, record: SaveStateAction) -> ActionOutcome:
        cookies = await self.context.session.capture_cookies()
        self.context.snapshots[record.state_key] = cookies
        log.info("Saved session state '%s' (%d cookies)", record.state_key, len(cookies))
        return ActionOutcome(ok=True, details={"state_key": record.state_key, "cookies": len(cookies)})

    async def _load_state(self, record: LoadStateAction) -> ActionOutcome:
        cookies = self.context.snapshots.get(record.state_key)
        if cookies is None:
            log.warning("No saved state for key: %s", record.state_key)
            return ActionOutcome(
                ok=True,
                details={"state_key": record.state_key, "restored": False},
                warnings=[f"No saved state for key: {record.state_key}"],
            )
        await self.context.session.restore_cookies(cookies)
        self.context.resolver.cache.clear()
        log.info("Restored session state '%s'", record.state_key)
        return ActionOutcome(ok=True, details={"state_key": record.state_key, "restored": True})

    # ------------------------------------------------------------------
    # broker and http
    # ------------------------------------------------------------------
    def _broker_skipped(self, record: ActionBase) -> Optional[ActionOutcome]:
        if self.context.broker_active:
            return None
        log.info("Broker is disabled; skipping %s", record.describe())
        return ActionOutcome(ok=True, details={"skipped": True})

    async def _produce(self, record: ProduceAction, row: Optional[DatasetRow]) -> ActionOutcome:
        skipped = self._broker_skipped(record)
        if skipped is not None:
            return skipped
        params = self.context.params
        topic = params.resolve(record.topic, row)
        key = params.resolve(record.key, row)
        message = params.resolve(record.message, row)
        await self.context.broker.produce(topic, key, message)
        return ActionOutcome(ok=True, details={"topic": topic, "key": key})

    async def _consume(self, record: ConsumeAction, row: Optional[DatasetRow]) -> ActionOutcome:
        skipped = self._broker_skipped(record)
        if skipped is not None:
            return skipped
        ctx = self.context
        topic = ctx.params.resolve(record.topic, row)
        key = ctx.params.resolve(record.key, row)
        fragment = ctx.params.resolve(record.value_contains, row)
        await ctx.broker.subscribe(topic)

        def matches(message: BrokerMessage) -> bool:
            if message.topic != topic or message.key != key:
                return False
            return fragment is None or fragment in (message.value or "")

        async def next_match() -> Optional[BrokerMessage]:
            for message in await ctx.broker.poll(BROKER_POLL_SECONDS):
                if matches(message):
                    return message
            return None

        timeout = self._timeout(record)
        found = await poll_until(
            next_match,
            timeout=timeout,
            interval=BROKER_POLL_SECONDS,
            description=f"message with key '{key}' on topic '{topic}'",
            clock=ctx.clock,
            sleep=ctx.sleep,
            error_factory=BrokerConsumeTimeout,
        )
        log.info("Consumed message with key %s from topic %s", key, topic)
        return ActionOutcome(ok=True, details={"topic": topic, "key": key, "value": found.value})

    async def _http_call(self, record: HttpCallAction, row: Optional[DatasetRow]) -> ActionOutcome:
        ctx = self.context
        if ctx.http is None:
            raise ConfigurationError("No HTTP client configured")
        url = ctx.params.resolve(record.url, row)
        body = ctx.params.resolve(record.body, row)
        headers = ctx.params.resolve_mapping(record.headers, row)
        response = await send_request(ctx.http, ctx.params.resolve(record.method, row), url, body, headers)
        return ActionOutcome(ok=True, details={"url": url, "status": response.status_code})

    # ------------------------------------------------------------------
    # assertion probes
    # ------------------------------------------------------------------
    async def _probe(self, record: AssertionBase, row: Optional[DatasetRow]) -> Any:
        ctx = self.context
        if isinstance(record, UrlAssertion):
            return ctx.session.page.url
        if isinstance(record, CountAssertion):
            return await ctx.resolver.count_matches(record.page, record.element, row)
        if isinstance(record, VisibleAssertion):
            try:
                resolved = await self._resolve(record, row)
            except ElementNotFound:
                return False
            return await resolved.locator.is_visible()
        if isinstance(record, EnabledAssertion):
            return await (await self._resolve(record, row)).locator.is_enabled()
        if isinstance(record, TextAssertion):
            return (await (await self._resolve(record, row)).locator.inner_text()).strip()
        if isinstance(record, AttributeAssertion):
            resolved = await self._resolve(record, row)
            return await resolved.locator.get_attribute(ctx.params.resolve(record.attribute_name, row))
        raise UnsupportedAssertion(f"Unsupported assertion type: {getattr(record, 'record_name', record)}")
