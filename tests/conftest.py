"""
Shared fixtures: a small in-memory browser good enough for the engine.

FakeDriver answers the handful of WebDriver calls the engine makes
(get, current_url, title, find_elements, execute_script,
save_screenshot, quit). FakeDOM is the DOMQuery over the same pages.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pytest
from selenium.common.exceptions import TimeoutException, WebDriverException

from pagesmith.core.config import EngineConfig
from pagesmith.core.page_object_store import PageObjectStore
from pagesmith.core.session_manager import SessionManager
from pagesmith.layers.sense.dom_mapper import BrowserEvent, DOMQuery, DOMSnapshot, RawElement
from pagesmith.layers.sense.selector_resolver import is_text_selector, parse_text_selector

INTERACTIVE_TAGS = ("button", "textarea", "select")

_ATTRIBUTE_SELECTOR = re.compile(r'^\[([\w-]+)="((?:[^"\\]|\\.)*)"\]$')
_XPATH_TEXT = re.compile(r'normalize-space\(\.\)=(["\'])(.*?)\1')


@dataclass
class FakeNode:
    tag: str
    text: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)
    visible: bool = True
    in_form: bool = False
    value: str = ""
    selected: bool = False
    clicks: int = 0

    @property
    def is_interactive(self) -> bool:
        attrs = self.attributes
        if self.tag in INTERACTIVE_TAGS:
            return True
        if self.tag == "a":
            return "href" in attrs
        if self.tag == "input":
            return attrs.get("type") != "hidden"
        return attrs.get("role") == "button" or "onclick" in attrs

    @property
    def is_clickable(self) -> bool:
        attrs = self.attributes
        if self.tag == "input":
            return attrs.get("type") in ("submit", "button", "reset", "image")
        return self.is_interactive and self.tag not in ("textarea", "select")


def node(tag, text="", **attrs):
    """node("button", "Go", id="go"); use class_ for the class attribute."""
    if "class_" in attrs:
        attrs["class"] = attrs.pop("class_")
    attrs = {k.replace("_", "-"): v for k, v in attrs.items()}
    return FakeNode(tag=tag, text=text, attributes=attrs)


@dataclass
class FakePage:
    url: str
    title: str = ""
    nodes: List[FakeNode] = field(default_factory=list)

    def match(self, selector: str) -> List[FakeNode]:
        return [n for n in self.nodes if matches(n, selector)]


def matches(n: FakeNode, selector: str) -> bool:
    if is_text_selector(selector):
        return " ".join(n.text.split()) == parse_text_selector(selector)
    xpath_text = _XPATH_TEXT.search(selector)
    if xpath_text:
        return " ".join(n.text.split()) == xpath_text.group(2)
    if selector.startswith("#"):
        return n.attributes.get("id") == selector[1:]
    if selector.startswith("."):
        return selector[1:] in (n.attributes.get("class") or "").split()
    attribute = _ATTRIBUTE_SELECTOR.match(selector)
    if attribute:
        name, value = attribute.group(1), attribute.group(2).replace('\\"', '"').replace("\\\\", "\\")
        return n.attributes.get(name) == value
    return n.tag == selector


class FakeElement:
    def __init__(self, driver: "FakeDriver", n: FakeNode):
        self._driver = driver
        self.node = n

    @property
    def tag_name(self):
        return self.node.tag

    def click(self):
        self._driver._check_alive()
        self.node.clicks += 1
        if self.node.is_clickable:
            self._driver.queue_event("click", self.node)
        if self.node.attributes.get("type") in ("checkbox", "radio"):
            self.node.selected = not self.node.selected
            self._driver.queue_event("check" if self.node.selected else "uncheck", self.node)
        href = self.node.attributes.get("href")
        if self.node.tag == "a" and href:
            self._driver.get(href)

    def clear(self):
        self.node.value = ""

    def send_keys(self, text):
        self._driver._check_alive()
        self.node.value += text
        self._driver.queue_event("fill", self.node, self.node.value)

    def is_selected(self):
        return self.node.selected


class FakeDriver:
    def __init__(self, pages: Optional[List[FakePage]] = None):
        self.site: Dict[str, FakePage] = {p.url: p for p in pages or []}
        self.page: Optional[FakePage] = None
        self.current_url = "about:blank"
        self.failing_urls: Dict[str, Exception] = {}
        self.crashed = False
        self.quit_count = 0
        self.quit_error: Optional[Exception] = None
        self.screenshots: List[str] = []
        self.pending_events: List[BrowserEvent] = []

    def add_page(self, page: FakePage) -> FakePage:
        self.site[page.url] = page
        return page

    def queue_event(self, action, n, value=None):
        """What the page listener would queue for an event on `n`."""
        last = self.pending_events[-1] if self.pending_events else None
        if action == "fill" and last is not None and last.action == "fill" and last.element.attributes == n.attributes:
            last.value = value
            return
        counts = {}
        for css_class in (n.attributes.get("class") or "").split():
            counts[css_class] = sum(css_class in (m.attributes.get("class") or "").split() for m in self.page.nodes)
        self.pending_events.append(
            BrowserEvent(action=action, element=_record(None, n), class_counts=counts, value=value, url=self.current_url)
        )

    def crash(self):
        self.crashed = True

    def _check_alive(self):
        if self.crashed:
            raise WebDriverException("chrome not reachable")

    @property
    def title(self):
        self._check_alive()
        return self.page.title if self.page else ""

    def get(self, url):
        self._check_alive()
        if url in self.failing_urls:
            raise self.failing_urls[url]
        if url not in self.site:
            raise TimeoutException("timeout: Timed out receiving message from renderer")
        self.page = self.site[url]
        self.current_url = url

    def find_elements(self, by, value):
        self._check_alive()
        if self.page is None:
            return []
        return [FakeElement(self, n) for n in self.page.match(value)]

    def execute_script(self, script, *args):
        self._check_alive()
        if "document.readyState" in script:
            return "complete"
        if "getBoundingClientRect" in script:
            return True
        return None

    def save_screenshot(self, path):
        self._check_alive()
        with open(path, "wb") as f:
            f.write(b"\x89PNG")
        self.screenshots.append(path)
        return True

    def quit(self):
        self.quit_count += 1
        if self.quit_error is not None:
            raise self.quit_error


def _record(index: Optional[int], n: FakeNode) -> RawElement:
    return RawElement(
        index=index,
        tag=n.tag,
        type=n.attributes.get("type", ""),
        text=n.text,
        attributes=dict(n.attributes),
        width=100.0 if n.visible else 0.0,
        height=20.0 if n.visible else 0.0,
        display="block" if n.visible else "none",
        visibility="visible",
        in_form=n.in_form,
    )


class FakeDOM(DOMQuery):
    """DOMQuery reading the FakeDriver's current page."""

    def __init__(self, driver: FakeDriver):
        self.driver = driver

    def _page(self) -> FakePage:
        self.driver._check_alive()
        return self.driver.page or FakePage(url="about:blank")

    def _class_counts(self, page: FakePage) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for n in page.nodes:
            for css_class in (n.attributes.get("class") or "").split():
                counts[css_class] = counts.get(css_class, 0) + 1
        return counts

    def _interactive(self, page: FakePage) -> List[FakeNode]:
        return [n for n in page.nodes if n.is_interactive]

    def query_interactive(self) -> DOMSnapshot:
        page = self._page()
        return DOMSnapshot(
            elements=[_record(i, n) for i, n in enumerate(self._interactive(page))],
            class_counts=self._class_counts(page),
            title=page.title,
        )

    def title(self) -> str:
        return self._page().title

    def describe(self, selector: str) -> Optional[DOMSnapshot]:
        page = self._page()
        interactive = self._interactive(page)
        for n in page.nodes:
            if matches(n, selector):
                index = next((i for i, m in enumerate(interactive) if m is n), None)
                return DOMSnapshot(elements=[_record(index, n)], class_counts=self._class_counts(page), title=page.title)
        return None

    def count(self, selector: str) -> int:
        return len(self._page().match(selector))

    def drain_events(self) -> List[BrowserEvent]:
        self.driver._check_alive()
        events, self.driver.pending_events = self.driver.pending_events, []
        return events


LOGIN_URL = "https://app.test/login"
DASHBOARD_URL = "https://app.test/dashboard"


def login_page() -> FakePage:
    return FakePage(
        url=LOGIN_URL,
        title="Sign in",
        nodes=[
            node("h1", "Welcome back"),
            node("input", type="email", id="email", placeholder="Email address"),
            node("input", type="password", name="password", placeholder="Password"),
            node("input", type="checkbox", id="remember"),
            node("button", "Log in", id="login", type="submit"),
            node("a", "Dashboard", href=DASHBOARD_URL, class_="nav-link"),
            node("span", "Send", class_="cta"),
        ],
    )


def dashboard_page() -> FakePage:
    return FakePage(
        url=DASHBOARD_URL,
        title="Dashboard",
        nodes=[node("button", "Log out", data_testid="logout")],
    )


@pytest.fixture
def driver():
    return FakeDriver([login_page(), dashboard_page()])


@pytest.fixture
def store():
    return PageObjectStore()


@pytest.fixture
def config(tmp_path):
    return EngineConfig(artifacts_dir=str(tmp_path / "artifacts"))


@pytest.fixture
def manager(driver, store, config):
    manager = SessionManager(
        store,
        driver_factory=lambda options: driver,
        config=config,
        dom_factory=FakeDOM,
        register_atexit=False,
    )
    yield manager
    manager.end_all()
