"""Hand-written stand-ins for Playwright, the broker and the wall clock."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from engine.broker import BrokerMessage
from engine.errors import SessionUnreachable


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []
        self.on_sleep: Optional[Callable[[float], None]] = None

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep(self.now)


@dataclass
class FakeElement:
    text: str = ""
    value: str = ""
    visible: bool = True
    enabled: bool = True
    connected: bool = True
    attributes: Dict[str, str] = field(default_factory=dict)
    options: List[str] = field(default_factory=list)
    selected: Optional[str] = None
    in_form: bool = True
    on_click: Optional[Callable[["FakePage"], None]] = None
    ignore_input: bool = False


class FakeHandle:
    def __init__(self, element: FakeElement) -> None:
        self.element = element

    async def evaluate(self, script: str, *args: Any) -> Any:
        if "isConnected" in script:
            return not self.element.connected
        return None


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str, index: Optional[int] = None) -> None:
        self.page = page
        self.selector = selector
        self.index = index

    # discovery -----------------------------------------------------------
    def _matches(self) -> List[FakeElement]:
        self.page.check_alive()
        elements = self.page.dom.get(self.selector, [])
        if self.index is None:
            return list(elements)
        return elements[self.index : self.index + 1]

    def _element(self) -> FakeElement:
        matches = self._matches()
        if not matches:
            raise TimeoutError(f"Timeout waiting for {self.selector}")
        return matches[0]

    def _log(self, action: str, **details: Any) -> None:
        self.page.actions.append((self.selector, action, details))

    async def count(self) -> int:
        self.page.count_calls.append(self.selector)
        return len(self._matches())

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self.page, self.selector, 0)

    def nth(self, index: int) -> "FakeLocator":
        return FakeLocator(self.page, self.selector, index)

    async def element_handle(self, **kwargs: Any) -> FakeHandle:
        return FakeHandle(self._element())

    # state probes ----------------------------------------------------------
    async def is_visible(self) -> bool:
        matches = self._matches()
        return bool(matches) and matches[0].visible

    async def is_enabled(self) -> bool:
        return self._element().enabled

    async def inner_text(self, **kwargs: Any) -> str:
        return self._element().text

    async def input_value(self, **kwargs: Any) -> str:
        return self._element().value

    async def get_attribute(self, name: str, **kwargs: Any) -> Optional[str]:
        return self._element().attributes.get(name)

    # interactions ----------------------------------------------------------
    async def wait_for(self, *, state: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self._log("wait_for", state=state, timeout=timeout)
        element = self._element()
        if state == "visible" and not element.visible:
            raise TimeoutError(f"{self.selector} is not visible")

    async def scroll_into_view_if_needed(self, **kwargs: Any) -> None:
        self._log("scroll_into_view_if_needed", **kwargs)

    async def click(self, **kwargs: Any) -> None:
        self._log("click", **kwargs)
        element = self._element()
        if element.on_click is not None:
            element.on_click(self.page)

    async def dblclick(self, **kwargs: Any) -> None:
        self._log("dblclick", **kwargs)
        self._element()

    async def hover(self, **kwargs: Any) -> None:
        self._log("hover", **kwargs)
        self._element()

    async def fill(self, value: str, **kwargs: Any) -> None:
        self._log("fill", value=value, **kwargs)
        element = self._element()
        if not element.ignore_input:
            element.value = value

    async def clear(self, **kwargs: Any) -> None:
        self._log("clear", **kwargs)
        element = self._element()
        if not element.ignore_input:
            element.value = ""

    async def press(self, key: str, **kwargs: Any) -> None:
        self._log("press", key=key, **kwargs)

    async def select_option(self, value: Any = None, *, label: Optional[str] = None, **kwargs: Any) -> List[str]:
        self._log("select_option", value=value, label=label, **kwargs)
        element = self._element()
        wanted = label if label is not None else value
        if wanted not in element.options:
            raise ValueError(f"No option {wanted!r}")
        element.selected = wanted
        element.value = wanted
        return [wanted]

    async def set_input_files(self, files: Any, **kwargs: Any) -> None:
        self._log("set_input_files", files=files, **kwargs)
        self._element()

    async def evaluate(self, script: str, *args: Any) -> Any:
        self._log("evaluate", script=script)
        element = self._element()
        if "selectedIndex" in script:
            return [element.selected, element.value] if element.selected is not None else []
        if "requestSubmit" in script:
            if element.in_form:
                self.page.submitted.append(self.selector)
            return element.in_form
        return None


class FakePage:
    def __init__(self, url: str = "about:blank") -> None:
        self.url = url
        self.dom: Dict[str, List[FakeElement]] = {}
        self.actions: List[tuple] = []
        self.count_calls: List[str] = []
        self.visited: List[str] = []
        self.goto_errors: List[Exception] = []
        self.submitted: List[str] = []
        self.script_results: Dict[str, Any] = {}
        self.closed = False
        self.reloads = 0

    def add(self, selector: str, *elements: FakeElement) -> List[FakeElement]:
        self.dom.setdefault(selector, []).extend(elements or [FakeElement()])
        return self.dom[selector]

    def check_alive(self) -> None:
        if self.closed:
            raise RuntimeError("Target page, context or browser has been closed")

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def is_closed(self) -> bool:
        return self.closed

    async def goto(self, url: str, **kwargs: Any) -> None:
        self.check_alive()
        if self.goto_errors:
            raise self.goto_errors.pop(0)
        self.visited.append(url)
        self.url = url

    async def evaluate(self, script: str, *args: Any) -> Any:
        self.check_alive()
        return self.script_results.get(script)

    async def reload(self, **kwargs: Any) -> None:
        self.reloads += 1

    async def screenshot(self, **kwargs: Any) -> bytes:
        return b"\x89PNG fake"


class FakeSession:
    """Stands in for :class:`engine.session.BrowserSession`."""

    def __init__(self, page: Optional[FakePage] = None) -> None:
        self._page = page or FakePage()
        self.started = False
        self.restarts = 0
        self.cookies: List[Dict[str, Any]] = []
        self.restored: List[List[Dict[str, Any]]] = []
        self._listeners: List[Callable[[], None]] = []
        self.page_factory: Optional[Callable[[], FakePage]] = None

    @property
    def page(self) -> FakePage:
        if self._page.closed:
            raise SessionUnreachable("Browser page is not available")
        return self._page

    def add_restart_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    async def start(self) -> None:
        self.started = True

    async def restart(self) -> None:
        self.restarts += 1
        if self.page_factory is not None:
            self._page = self.page_factory()
        else:
            self._page.closed = False
        for listener in self._listeners:
            listener()

    async def close(self) -> None:
        self.started = False

    async def capture_cookies(self) -> List[Dict[str, Any]]:
        return [dict(cookie) for cookie in self.cookies]

    async def restore_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        self.restored.append(cookies)
        self.cookies = [dict(cookie) for cookie in cookies]
        await self._page.reload()

    async def screenshot(self, *, full_page: bool = True) -> bytes:
        return await self.page.screenshot(full_page=full_page)


class FakeBroker:
    def __init__(self) -> None:
        self.produced: List[BrokerMessage] = []
        self.subscriptions: List[str] = []
        self.pending: List[BrokerMessage] = []
        self.polls = 0
        self.closed = False

    async def produce(self, topic: str, key: Optional[str], value: Optional[str]) -> None:
        self.produced.append(BrokerMessage(topic=topic, key=key, value=value))

    async def subscribe(self, topic: str) -> None:
        if topic not in self.subscriptions:
            self.subscriptions.append(topic)

    async def poll(self, timeout: float) -> List[BrokerMessage]:
        self.polls += 1
        batch, self.pending = self.pending, []
        return batch

    async def close(self) -> None:
        self.closed = True
