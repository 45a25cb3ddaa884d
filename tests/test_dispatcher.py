import asyncio
import json

import httpx
import pytest

from engine.broker import BrokerMessage
from engine.config import RunConfig
from engine.dispatcher import ActionContext, ActionDispatcher
from engine.errors import AssertionMismatch, BrokerConsumeTimeout, FileNotFound, HttpCallFailed, WaitTimeout
from engine.http_client import build_http_client
from engine.locator_resolver import LocatorResolver
from testplan.catalog import TestCatalog
from testplan.dsl import assertions, operations
from testplan.params import ParameterResolver

from fakes import FakeBroker, FakeClock, FakeElement, FakePage, FakeSession

PAGES = {
    "form": {
        "path": "/form",
        "elements": {
            "name": {"locators": [{"strategy": "id", "value": "name"}]},
            "color": {"locators": [{"strategy": "name", "value": "color"}]},
            "upload": {"locators": [{"strategy": "css", "value": "input[type=file]"}]},
            "next": {"locators": [{"strategy": "text", "value": "Next"}]},
            "banner": {"locators": [{"strategy": "id", "value": "banner"}]},
            "rows": {"locators": [{"strategy": "css", "value": "tr.item"}]},
        },
    },
    "done": {"path": "/done"},
}


def _dispatcher(page=None, *, broker=None, handler=None, **settings):
    page = page or FakePage(url="https://app.test/form")
    clock = FakeClock()
    catalog = TestCatalog.from_mapping({"params": {"api": "https://api.test"}, "pages": PAGES})
    config = RunConfig.from_mapping(
        {"base_url": "https://app.test", "default_timeout": 2, "poll_interval": 0.5, **settings}
    )
    session = FakeSession(page)
    params = ParameterResolver(catalog.params)
    resolver = LocatorResolver(session, catalog, params, config, clock=clock, sleep=clock.sleep)
    http = build_http_client(config, transport=httpx.MockTransport(handler)) if handler else None
    context = ActionContext(
        session, catalog, resolver, params, config, broker=broker, http=http, clock=clock, sleep=clock.sleep
    )
    return ActionDispatcher(context), page, clock


def _action(**data):
    data.setdefault("index", 1)
    return operations.parse(data)


def test_enter_text_resolves_row_value_and_confirms():
    dispatcher, page, _ = _dispatcher()
    field = page.add('[id="name"]')[0]

    outcome = asyncio.run(
        dispatcher.execute(_action(operation="enter_text", page="form", element="name", value="${data.name}"), {"name": "Ada"})
    )

    assert outcome.ok
    assert field.value == "Ada"
    assert outcome.details["selector"] == '[id="name"]'


def test_select_option_by_visible_text():
    dispatcher, page, _ = _dispatcher()
    select = page.add('[name="color"]', FakeElement(options=["Blue", "Green"]))[0]

    asyncio.run(dispatcher.execute(_action(operation="select_option", page="form", element="color", value="Blue")))

    assert select.selected == "Blue"


def test_upload_of_missing_file_fails_before_touching_page(tmp_path):
    dispatcher, page, _ = _dispatcher()
    page.add("input[type=file]")

    with pytest.raises(FileNotFound):
        asyncio.run(
            dispatcher.execute(
                _action(operation="upload_file", page="form", element="upload", value=str(tmp_path / "nope.pdf"))
            )
        )

    assert page.actions == []
    assert page.count_calls == []


def test_upload_existing_file(tmp_path):
    dispatcher, page, _ = _dispatcher()
    page.add("input[type=file]")
    document = tmp_path / "cv.pdf"
    document.write_bytes(b"%PDF")

    asyncio.run(dispatcher.execute(_action(operation="upload_file", page="form", element="upload", value=str(document))))

    assert any(name == "set_input_files" for _, name, _ in page.actions)


def test_navigate_clicks_trigger_waits_for_url_and_reloads_target_table():
    dispatcher, page, _ = _dispatcher()
    page.add("text=Next", FakeElement(on_click=lambda p: setattr(p, "url", "https://app.test/done")))
    resolver = dispatcher.context.resolver
    asyncio.run(resolver.resolve_element("form", "next"))
    stale_target = type("Entry", (), {"page_id": "done", "element_id": "x"})()
    resolver.cache.put(stale_target)

    outcome = asyncio.run(
        dispatcher.execute(_action(operation="navigate", page="form", element="next", target_page="done"))
    )

    assert outcome.details["current_url"] == "https://app.test/done"
    assert resolver.cache.get("done", "x") is None
    assert dispatcher.context.current_page == "done"


def test_navigate_without_trigger_waits_for_redirect():
    dispatcher, page, clock = _dispatcher()

    def redirect(now):
        if now >= 1:
            page.url = "https://app.test/done"

    clock.on_sleep = redirect
    outcome = asyncio.run(dispatcher.execute(_action(operation="navigate", target_page="done")))

    assert outcome.details["current_url"] == "https://app.test/done"
    assert page.visited == []


def test_navigate_without_redirect_times_out_on_wait_timeout():
    dispatcher, page, clock = _dispatcher()
    record = _action(operation="navigate", target_page="done", wait={"kind": "url_contains", "fragment": "/form", "timeout": 1})

    with pytest.raises(WaitTimeout):
        asyncio.run(dispatcher.execute(record))

    assert page.visited == []
    assert page.url == "https://app.test/form"
    assert clock.now == pytest.approx(1.0)


def test_check_returns_branch_target_without_failing():
    dispatcher, page, _ = _dispatcher()
    page.add('[id="banner"]', FakeElement(visible=False))
    check = dict(operation="check", page="form", element="banner", if_true_next=5, if_false_next=3)

    visible = asyncio.run(dispatcher.execute(_action(condition="visible", **check)))
    present = asyncio.run(dispatcher.execute(_action(condition="present", **check)))

    assert (visible.ok, visible.next_index) == (True, 3)
    assert present.next_index == 5


def test_check_on_missing_element_takes_false_branch():
    dispatcher, _, _ = _dispatcher()

    outcome = asyncio.run(
        dispatcher.execute(
            _action(operation="check", page="form", element="banner", condition="present", if_true_next=2, if_false_next=4)
        )
    )

    assert outcome.next_index == 4
    assert outcome.warnings


def test_save_and_load_state_round_trip_cookies():
    dispatcher, page, _ = _dispatcher()
    session = dispatcher.context.session
    session.cookies = [{"name": "sid", "value": "1"}]

    asyncio.run(dispatcher.execute(_action(operation="save_state", state_key="login")))
    session.cookies = []
    asyncio.run(dispatcher.execute(_action(operation="load_state", state_key="login")))

    assert session.cookies == [{"name": "sid", "value": "1"}]
    assert page.reloads == 1


def test_load_of_unknown_state_only_warns():
    dispatcher, page, _ = _dispatcher()

    outcome = asyncio.run(dispatcher.execute(_action(operation="load_state", state_key="never-saved")))

    assert outcome.ok
    assert outcome.details["restored"] is False
    assert page.reloads == 0


def test_http_call_resolves_templates_and_defaults_json_content_type():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["content_type"] = request.headers.get("content-type")
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"ok": True})

    dispatcher, _, _ = _dispatcher(handler=handler)
    record = _action(
        operation="http_call",
        method="post",
        url="${param.api}/users",
        body='{"name": "${data.name}"}',
        headers={"Authorization": "Bearer ${data.token}"},
    )

    outcome = asyncio.run(dispatcher.execute(record, {"name": "Ada", "token": "t0k"}))

    assert outcome.details["status"] == 201
    assert seen == {
        "method": "POST",
        "url": "https://api.test/users",
        "content_type": "application/json",
        "auth": "Bearer t0k",
        "body": {"name": "Ada"},
    }


def test_http_call_non_success_status_fails():
    dispatcher, _, _ = _dispatcher(handler=lambda request: httpx.Response(503))

    with pytest.raises(HttpCallFailed) as excinfo:
        asyncio.run(dispatcher.execute(_action(operation="http_call", url="https://api.test/health")))

    assert excinfo.value.details["status"] == 503


def test_broker_operations_are_skipped_when_disabled():
    broker = FakeBroker()
    dispatcher, _, _ = _dispatcher(broker=broker, broker_enabled=False)

    outcome = asyncio.run(dispatcher.execute(_action(operation="produce", topic="orders", key="k", message="m")))

    assert outcome.details == {"skipped": True}
    assert broker.produced == []


def test_produce_resolves_fields():
    broker = FakeBroker()
    dispatcher, _, _ = _dispatcher(broker=broker, broker_enabled=True)

    asyncio.run(
        dispatcher.execute(
            _action(operation="produce", topic="orders", key="${data.id}", message='{"id": "${data.id}"}'), {"id": "9"}
        )
    )

    assert broker.produced == [BrokerMessage(topic="orders", key="9", value='{"id": "9"}')]


def test_consume_matches_key_and_substring():
    broker = FakeBroker()
    dispatcher, _, clock = _dispatcher(broker=broker, broker_enabled=True)

    def deliver(now):
        if broker.polls == 3:
            broker.pending = [
                BrokerMessage(topic="orders", key="other", value="status=ready"),
                BrokerMessage(topic="orders", key="9", value="status=pending"),
                BrokerMessage(topic="orders", key="9", value="status=ready"),
            ]

    clock.on_sleep = deliver
    outcome = asyncio.run(
        dispatcher.execute(
            _action(operation="consume", topic="orders", key="${data.id}", value_contains="ready"), {"id": "9"}
        )
    )

    assert broker.subscriptions == ["orders"]
    assert outcome.details["value"] == "status=ready"


def test_consume_without_match_times_out():
    broker = FakeBroker()
    dispatcher, _, clock = _dispatcher(broker=broker, broker_enabled=True)

    with pytest.raises(BrokerConsumeTimeout):
        asyncio.run(dispatcher.execute(_action(operation="consume", topic="orders", key="9", timeout=1)))

    assert clock.now == pytest.approx(1.0)


def test_assertion_probes():
    dispatcher, page, _ = _dispatcher()
    page.add('[id="banner"]', FakeElement(text="  Hello Ada  ", attributes={"data-state": "open"}))
    page.add("tr.item", FakeElement(), FakeElement(), FakeElement())

    def check(**data):
        data.setdefault("index", 1)
        return asyncio.run(dispatcher.evaluate(assertions.parse(data), {"name": "Ada"}))

    assert check(assertion_type="url", operator="contains", expected="/form").ok
    assert check(assertion_type="text", page="form", element="banner", operator="equals", expected="Hello ${data.name}").ok
    assert check(
        assertion_type="attribute", page="form", element="banner", attribute_name="data-state", operator="equals", expected="open"
    ).ok
    assert check(assertion_type="count", page="form", element="rows", operator="greaterThan", expected="2").ok
    assert check(assertion_type="visible", page="form", element="banner", operator="true").ok
    assert check(assertion_type="enabled", page="form", element="banner", operator="true").ok

    with pytest.raises(AssertionMismatch):
        check(assertion_type="count", page="form", element="rows", operator="lessThan", expected="3")
