"""
In-process stand-ins for the Playwright page surface the engine uses.

FakePage keeps a tiny "DOM": selector -> list of FakeElement. Element state
(visibility, CSS, interactivity) is declared directly, and the perception
scripts are answered by identity, so no browser is needed.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from uiverify.browser import BrowserStatus
from uiverify.perception import (
    ACCESSIBILITY_SCRIPT,
    CSS_PROPERTY_SCRIPT,
    INTERACTIVITY_SCRIPT,
    VISIBILITY_SCRIPT,
)


@dataclass
class FakeElement:
    text: str = ""
    html: str = ""
    visible: bool = True
    display: str = "block"
    visibility: str = "visible"
    opacity: float = 1.0
    hidden_attr: bool = False
    disabled: bool = False
    covered: bool = False
    in_viewport: bool = True
    box: Optional[Dict[str, float]] = field(default_factory=lambda: {"x": 10, "y": 10, "width": 100, "height": 30})
    css: Dict[str, str] = field(default_factory=dict)
    attributes: Dict[str, str] = field(default_factory=dict)
    a11y_issues: List[str] = field(default_factory=list)
    value: str = ""
    checked: bool = False
    selected: Optional[str] = None
    on_click: Optional[Callable[["FakePage"], None]] = None

    @property
    def sized(self) -> bool:
        return bool(self.box) and self.box["width"] > 0 and self.box["height"] > 0

    @property
    def style_hidden(self) -> bool:
        return self.display == "none" or self.visibility == "hidden"


@dataclass
class FakeConsoleMessage:
    type: str
    text: str
    location: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FakePageError:
    message: str
    stack: Optional[str] = None


@dataclass
class FakeRequest:
    url: str
    method: str = "GET"
    resource_type: str = "document"
    timing: Dict[str, float] = field(default_factory=lambda: {"requestStart": 1.0, "responseStart": 21.5})
    failure: Optional[str] = None


@dataclass
class FakeResponse:
    url: str
    status: int = 200
    status_text: str = "OK"
    request: Optional[FakeRequest] = None

    def __post_init__(self):
        if self.request is None:
            self.request = FakeRequest(url=self.url)


class FakeKeyboard:
    def __init__(self):
        self.events: List[Tuple[str, str, Any]] = []

    async def press(self, key, delay=0):
        self.events.append(("press", key, delay))

    async def down(self, key):
        self.events.append(("down", key, None))

    async def up(self, key):
        self.events.append(("up", key, None))


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str, index: Optional[int] = None):
        self.page = page
        self.selector = selector
        self.index = index

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self.page, self.selector, 0)

    def _element(self, timeout=None) -> FakeElement:
        elements = self.page.elements.get(self.selector, [])
        if not elements:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {self.selector}")
        return elements[self.index or 0]

    async def count(self):
        return len(self.page.elements.get(self.selector, []))

    async def wait_for(self, state="visible", timeout=None):
        element = self._element(timeout)
        if state == "visible" and not element.visible:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {self.selector} to be visible")

    async def is_visible(self):
        elements = self.page.elements.get(self.selector, [])
        return bool(elements) and elements[0].visible

    async def scroll_into_view_if_needed(self, timeout=None):
        self._element(timeout)
        self.page.calls.append(("scroll_into_view", self.selector))

    async def evaluate(self, script, arg=None, timeout=None):
        el = self._element(timeout)
        if script == INTERACTIVITY_SCRIPT:
            reachable = el.sized and not el.style_hidden
            clickable = reachable and not el.covered
            return {
                "clickable": clickable,
                "disabled": el.disabled,
                "covered": reachable and el.covered,
                "inViewport": el.in_viewport,
                "sized": el.sized,
                "styleHidden": el.style_hidden,
            }
        if script == VISIBILITY_SCRIPT:
            return {
                "visible": el.visible,
                "display": el.display,
                "visibility": el.visibility,
                "opacity": el.opacity,
                "hidden": el.hidden_attr,
            }
        if script == CSS_PROPERTY_SCRIPT:
            return el.css.get(arg, "")
        if script == ACCESSIBILITY_SCRIPT:
            label = el.attributes.get("aria-label", "")
            role = el.attributes.get("role", "")
            return {
                "hasAriaLabel": bool(label),
                "hasAriaRole": bool(role),
                "ariaLabels": {"label": label, "role": role, "labelledBy": "", "describedBy": ""},
                "issues": list(el.a11y_issues),
            }
        raise AssertionError(f"unexpected script: {script[:40]}")

    async def click(self, timeout=None):
        el = self._element(timeout)
        self.page.calls.append(("click", self.selector))
        if el.on_click:
            el.on_click(self.page)

    async def fill(self, value, timeout=None):
        self._element(timeout).value = value
        self.page.calls.append(("fill", self.selector, value))

    async def press_sequentially(self, text, delay=None, timeout=None):
        self._element(timeout).value += text
        self.page.calls.append(("press_sequentially", self.selector, text, delay))

    async def hover(self, timeout=None):
        self._element(timeout)
        self.page.calls.append(("hover", self.selector))

    async def focus(self, timeout=None):
        self._element(timeout)
        self.page.calls.append(("focus", self.selector))

    async def select_option(self, value, timeout=None):
        self._element(timeout).selected = value
        self.page.calls.append(("select_option", self.selector, value))

    async def check(self, timeout=None):
        self._element(timeout).checked = True

    async def uncheck(self, timeout=None):
        self._element(timeout).checked = False

    async def text_content(self, timeout=None):
        return self._element(timeout).text

    async def inner_html(self, timeout=None):
        return self._element(timeout).html

    async def get_attribute(self, name, timeout=None):
        return self._element(timeout).attributes.get(name)

    async def drag_to(self, target, timeout=None):
        if self.index is None and len(self.page.elements.get(self.selector, [])) > 1:
            raise PlaywrightError(f"strict mode violation: {self.selector} resolved to several elements")
        self._element(timeout)
        target._element(timeout)
        self.page.calls.append(("drag_to", self.selector, target.selector))

    async def bounding_box(self, timeout=None):
        el = self._element(timeout)
        return dict(el.box) if el.box and el.visible else None

    async def screenshot(self, path, timeout=None):
        el = self._element(timeout)
        size = (int(el.box["width"]), int(el.box["height"]))
        Image.new("RGB", size, self.page.color).save(path)


class FakeContext:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


class FakePage:
    def __init__(self, url: str = "about:blank", color=(255, 255, 255), size=(64, 48)):
        self.url = url
        self.color = color
        self.size = size
        self.html = "<html><body></body></html>"
        self.elements: Dict[str, List[FakeElement]] = {}
        self.listeners: Dict[str, List[Callable]] = {}
        self.calls: List[tuple] = []
        self.keyboard = FakeKeyboard()
        self.context = FakeContext()
        self.viewport_size: Optional[Dict[str, int]] = {"width": 1920, "height": 1080}
        self.on_goto: List[Callable[["FakePage"], None]] = []
        self.goto_error: Optional[Exception] = None
        self.screenshot_error: Optional[Exception] = None
        self.closed = False

    def add(self, selector: str, **kwargs) -> FakeElement:
        element = FakeElement(**kwargs)
        self.elements.setdefault(selector, []).append(element)
        return element

    def remove(self, selector: str) -> None:
        self.elements.pop(selector, None)

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    # events

    def on(self, event, handler):
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event, handler):
        self.listeners[event].remove(handler)

    def emit(self, event, payload):
        for handler in list(self.listeners.get(event, [])):
            handler(payload)

    def listener_count(self) -> int:
        return sum(len(handlers) for handlers in self.listeners.values())

    # page API

    async def goto(self, url, wait_until=None, timeout=None):
        if self.goto_error:
            raise self.goto_error
        self.url = url
        self.calls.append(("goto", url, wait_until))
        for hook in self.on_goto:
            hook(self)

    async def content(self):
        return self.html

    async def screenshot(self, path, full_page=False, timeout=None):
        if self.screenshot_error:
            raise self.screenshot_error
        Image.new("RGB", self.size, self.color).save(path)
        self.calls.append(("screenshot", path, full_page))

    async def evaluate(self, script, arg=None):
        self.calls.append(("evaluate", script, arg))

    async def wait_for_timeout(self, ms):
        self.calls.append(("wait_for_timeout", ms))

    async def wait_for_url(self, pattern, timeout=None):
        if pattern.strip("*/") not in self.url:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for url {pattern}")

    async def wait_for_load_state(self, state="load", timeout=None):
        self.calls.append(("wait_for_load_state", state))

    async def wait_for_function(self, expression, timeout=None):
        self.calls.append(("wait_for_function", expression))

    async def set_viewport_size(self, size):
        self.viewport_size = dict(size)

    def set_default_timeout(self, timeout):
        self.calls.append(("set_default_timeout", timeout))

    def set_default_navigation_timeout(self, timeout):
        self.calls.append(("set_default_navigation_timeout", timeout))

    async def close(self):
        self.closed = True


class FakeBrowserManager:
    """Hands out one prepared FakePage per create_page call."""

    def __init__(self, *pages: FakePage):
        self.pages = list(pages)
        self.created: List[FakePage] = []
        self.closed: List[FakePage] = []
        self.create_error: Optional[Exception] = None
        self.close_error: Optional[Exception] = None
        self.cleaned_up = False
        self.open: List[FakePage] = []

    async def create_page(self, page_id=None):
        if self.create_error:
            raise self.create_error
        page = self.pages.pop(0) if self.pages else FakePage()
        self.created.append(page)
        self.open.append(page)
        return page

    async def set_viewport(self, page, viewport):
        await page.set_viewport_size(viewport.as_playwright())

    async def close_page(self, page):
        self.closed.append(page)
        if page in self.open:
            self.open.remove(page)
        if self.close_error:
            raise self.close_error
        await page.close()

    async def cleanup(self):
        self.cleaned_up = True

    def get_status(self):
        return BrowserStatus(browser_open=not self.cleaned_up, context_open=bool(self.open), page_count=len(self.open))


@pytest.fixture
def page():
    return FakePage(url="https://app.test/")


@pytest.fixture
def evidence_dir(tmp_path):
    return tmp_path / "evidence"
