"""
DOM Mapper - Interactive Element Extraction.

Scans a loaded page and turns every visible interactive node into an
ElementDescriptor with a ranked selector strategy.

All browser access goes through a DOMQuery. SeleniumDOMQuery ships one
JavaScript pass into the page and gets plain records back; tests inject
a fake DOMQuery and never need a browser.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, TYPE_CHECKING
import logging

from pagesmith.core.models import ClickPreview, ElementDescriptor, new_id
from pagesmith.core.naming import slugify, unique_name
from pagesmith.layers.sense.selector_resolver import (
    DocumentContext,
    SelectorResolution,
    normalize_text,
    resolve,
    to_locator,
)

if TYPE_CHECKING:
    from selenium.webdriver.remote.webdriver import WebDriver

logger = logging.getLogger(__name__)

# Bump when the shape of the records returned by the page script changes.
EXTRACTION_CONTRACT_VERSION = 1

INTERACTIVE_SELECTOR = (
    'button, a[href], input:not([type="hidden"]), textarea, select, '
    '[role="button"], [onclick]'
)

MODAL_TOGGLE_ATTRIBUTES = ("data-toggle", "data-bs-toggle")

# sessionStorage key of the tester event queue kept by the page listener.
EVENT_QUEUE_KEY = "__pagesmith_events"


@dataclass
class RawElement:
    """One node as reported by the page script. Plain data only."""
    index: Optional[int]
    tag: str
    type: str = ""
    text: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)
    width: float = 0.0
    height: float = 0.0
    display: str = ""
    visibility: str = ""
    in_form: bool = False

    @property
    def is_visible(self) -> bool:
        if self.width <= 0 or self.height <= 0:
            return False
        return self.display != "none" and self.visibility != "hidden"

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "RawElement":
        rect = record.get("rect") or {}
        return cls(
            index=None if record.get("index") is None else int(record["index"]),
            tag=(record.get("tag") or "").lower(),
            type=(record.get("type") or "").lower(),
            text=record.get("text") or "",
            attributes={k: str(v) for k, v in (record.get("attributes") or {}).items() if v is not None},
            width=float(rect.get("width", 0) or 0),
            height=float(rect.get("height", 0) or 0),
            display=record.get("display") or "",
            visibility=record.get("visibility") or "",
            in_form=bool(record.get("inForm", False)),
        )


@dataclass
class DOMSnapshot:
    """Everything one extraction pass needs from the page."""
    elements: List[RawElement] = field(default_factory=list)
    class_counts: Dict[str, int] = field(default_factory=dict)
    title: str = ""
    version: int = EXTRACTION_CONTRACT_VERSION


@dataclass
class BrowserEvent:
    """Something the tester did directly in the browser window."""
    action: str
    element: RawElement
    class_counts: Dict[str, int] = field(default_factory=dict)
    value: Optional[str] = None
    url: str = ""

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "BrowserEvent":
        value = record.get("value")
        return cls(
            action=record.get("action") or "",
            element=RawElement.from_record(record.get("element") or {}),
            class_counts=dict(record.get("classCounts") or {}),
            value=None if value is None else str(value),
            url=record.get("url") or "",
        )


class DOMQuery(ABC):
    """
    Access to the live document.

    Everything is read-only except `drain_events`, which empties the
    queue of tester events the page has collected since the last call.
    """

    @abstractmethod
    def query_interactive(self) -> DOMSnapshot:
        """Return every interactive node plus document-wide class counts."""

    @abstractmethod
    def title(self) -> str:
        ...

    @abstractmethod
    def describe(self, selector: str) -> Optional[DOMSnapshot]:
        """Snapshot containing only the first node matching `selector`, or None."""

    @abstractmethod
    def count(self, selector: str) -> int:
        ...

    def drain_events(self) -> List[BrowserEvent]:
        """Tester events queued by the page since the last drain, oldest first."""
        return []


class SeleniumDOMQuery(DOMQuery):
    """
    DOMQuery backed by a Selenium WebDriver.

    Example:
        >>> dom = SeleniumDOMQuery(driver)
        >>> snapshot = dom.query_interactive()
        >>> len(snapshot.elements)
        12
    """

    def __init__(self, driver: "WebDriver"):
        self.driver = driver

    def query_interactive(self) -> DOMSnapshot:
        result = self.driver.execute_script(self._get_mapper_script(), "snapshot", INTERACTIVE_SELECTOR) or {}
        return self._to_snapshot(result)

    def title(self) -> str:
        return self.driver.title or ""

    def describe(self, selector: str) -> Optional[DOMSnapshot]:
        matches = self.driver.find_elements(*to_locator(selector))
        if not matches:
            return None
        result = self.driver.execute_script(
            self._get_mapper_script(), "describe", INTERACTIVE_SELECTOR, matches[0]
        ) or {}
        return self._to_snapshot(result)

    def count(self, selector: str) -> int:
        return len(self.driver.find_elements(*to_locator(selector)))

    def drain_events(self) -> List[BrowserEvent]:
        """
        Install the page listener if this document lacks it, then empty its queue.

        The queue lives in sessionStorage so a click that leaves the page
        survives a same-origin navigation.
        """
        result = self.driver.execute_script(self._get_listener_script(), INTERACTIVE_SELECTOR) or {}
        return [BrowserEvent.from_record(r) for r in result.get("events", [])]

    def _to_snapshot(self, result: Mapping[str, Any]) -> DOMSnapshot:
        version = result.get("version", EXTRACTION_CONTRACT_VERSION)
        if version != EXTRACTION_CONTRACT_VERSION:
            logger.warning(f"[DOMMapper] Page script returned contract v{version}, expected v{EXTRACTION_CONTRACT_VERSION}")
        return DOMSnapshot(
            elements=[RawElement.from_record(r) for r in result.get("elements", [])],
            class_counts=dict(result.get("classCounts") or {}),
            title=result.get("title") or "",
            version=version,
        )

    def _get_mapper_script(self) -> str:
        """
        JavaScript returning plain records. arguments[0] is the mode and
        arguments[1] the interactive selector.

        `index` is the position among interactive nodes in both modes, so a
        described node carries the same index extraction gave it. It is
        null for a node that is not interactive.
        """
        return r"""
        const mode = arguments[0];
        const VERSION = %d;

        const classCounts = {};
        document.querySelectorAll('[class]').forEach(el => {
            el.classList.forEach(c => { classCounts[c] = (classCounts[c] || 0) + 1; });
        });

        const toRecord = (el, index) => {
            const rect = el.getBoundingClientRect();
            const style = window.getComputedStyle(el);
            const attrs = {};
            for (const attr of Array.from(el.attributes)) {
                attrs[attr.name] = (attr.value || '').substring(0, 150);
            }
            return {
                index: index,
                tag: el.tagName.toLowerCase(),
                type: (el.getAttribute('type') || '').toLowerCase(),
                text: (el.innerText || el.value || '').substring(0, 200).trim(),
                attributes: attrs,
                rect: { width: rect.width, height: rect.height },
                display: style.display,
                visibility: style.visibility,
                inForm: el.closest('form') !== null
            };
        };

        let elements = [];
        if (mode === 'describe') {
            const el = arguments[2];
            const position = Array.from(document.querySelectorAll(arguments[1])).indexOf(el);
            elements = [toRecord(el, position < 0 ? null : position)];
        } else {
            elements = Array.from(document.querySelectorAll(arguments[1]))
                .slice(0, 2000)
                .map((el, i) => toRecord(el, i));
        }

        return {
            version: VERSION,
            title: document.title,
            classCounts: classCounts,
            elements: elements
        };
        """ % EXTRACTION_CONTRACT_VERSION

    def _get_listener_script(self) -> str:
        """JavaScript that listens for tester clicks, typing and choices. arguments[0] is the interactive selector."""
        return r"""
        const KEY = '%s';
        const read = () => {
            try { return JSON.parse(window.sessionStorage.getItem(KEY) || '[]'); }
            catch (e) { return window[KEY] || []; }
        };
        const write = (events) => {
            try { window.sessionStorage.setItem(KEY, JSON.stringify(events)); }
            catch (e) { window[KEY] = events; }
        };

        if (!window.__pagesmithListening) {
            window.__pagesmithListening = true;
            const interactive = arguments[0];
            const CLICKABLE = 'button, a[href], [role="button"], [onclick], ' +
                'input[type="submit"], input[type="button"], input[type="reset"], input[type="image"]';
            const CHOICES = ['checkbox', 'radio'];
            const TYPED = ['', 'text', 'email', 'password', 'search', 'tel', 'url', 'number', 'date'];
            let nextId = 1;

            const describe = (el) => {
                const attrs = {};
                for (const attr of Array.from(el.attributes)) {
                    attrs[attr.name] = (attr.value || '').substring(0, 150);
                }
                const classCounts = {};
                el.classList.forEach(c => { classCounts[c] = document.getElementsByClassName(c).length; });
                const position = Array.from(document.querySelectorAll(interactive)).indexOf(el);
                return {
                    element: {
                        index: position < 0 ? null : position,
                        tag: el.tagName.toLowerCase(),
                        type: (el.getAttribute('type') || '').toLowerCase(),
                        text: (el.innerText || '').substring(0, 200).trim(),
                        attributes: attrs
                    },
                    classCounts: classCounts
                };
            };

            const push = (action, el, value) => {
                el.__pagesmithId = el.__pagesmithId || nextId++;
                const events = read();
                const last = events[events.length - 1];
                if (action === 'fill' && last && last.action === 'fill' &&
                        last.target === el.__pagesmithId && last.url === window.location.href) {
                    last.value = value;
                } else {
                    const event = describe(el);
                    event.action = action;
                    event.value = value === undefined ? null : value;
                    event.url = window.location.href;
                    event.target = el.__pagesmithId;
                    events.push(event);
                }
                write(events);
            };

            document.addEventListener('click', (e) => {
                const el = e.target.closest ? e.target.closest(CLICKABLE) : null;
                if (el) push('click', el);
            }, true);
            document.addEventListener('input', (e) => {
                const el = e.target;
                const typed = el.tagName === 'TEXTAREA' ||
                    (el.tagName === 'INPUT' && TYPED.includes((el.getAttribute('type') || '').toLowerCase()));
                if (typed) push('fill', el, el.value);
            }, true);
            document.addEventListener('change', (e) => {
                const el = e.target;
                if (el.tagName === 'SELECT') {
                    push('select', el, el.value);
                } else if (el.tagName === 'INPUT' && CHOICES.includes((el.type || '').toLowerCase())) {
                    push(el.checked ? 'check' : 'uncheck', el);
                }
            }, true);
        }

        const events = read();
        write([]);
        return { version: %d, events: events };
        """ % (EVENT_QUEUE_KEY, EXTRACTION_CONTRACT_VERSION)


def detect_element_type(tag: str, input_type: str = "", role: str = "") -> str:
    """Classify a node from its tag and type attribute."""
    tag = (tag or "").lower()
    input_type = (input_type or "").lower()
    if tag == "button" or role == "button":
        return "button"
    if tag == "a":
        return "link"
    if tag == "select":
        return "dropdown"
    if tag == "input":
        if input_type == "checkbox":
            return "checkbox"
        if input_type == "radio":
            return "radio"
        if input_type in ("submit", "button", "reset", "image"):
            return "button"
        return "input"
    if tag == "textarea":
        return "input"
    return "other"


def generate_element_name(raw: RawElement, element_type: str) -> str:
    """
    Pick a readable snake_case name.

    Visible text, then placeholder, aria-label, id and name attribute;
    `<type>_element` when none of them yields anything usable.
    """
    attrs = raw.attributes
    for candidate in (
        normalize_text(raw.text),
        attrs.get("placeholder"),
        attrs.get("aria-label"),
        attrs.get("id"),
        attrs.get("name"),
    ):
        slug = slugify(candidate or "")
        if slug:
            return slug
    return f"{element_type}_element"


def click_preview(raw: Optional[RawElement]) -> ClickPreview:
    """What clicking `raw` is expected to do, judged from its markup."""
    if raw is None:
        return ClickPreview()
    attrs = raw.attributes
    href = attrs.get("href") or None
    return ClickPreview(
        will_navigate=raw.tag == "a" and bool(href),
        target_url=href,
        will_open_modal=any(attrs.get(a) == "modal" for a in MODAL_TOGGLE_ATTRIBUTES),
        will_submit_form=raw.type == "submit" or (raw.tag == "button" and raw.in_form),
    )


class ElementExtractor:
    """
    Builds ElementDescriptors for every interactive element on the page.

    Example:
        >>> extractor = ElementExtractor(SeleniumDOMQuery(driver))
        >>> for element in extractor.extract():
        ...     print(element.name, element.primary_selector)
    """

    def __init__(self, dom: DOMQuery):
        self.dom = dom
        self.last_title = ""

    def extract(self) -> List[ElementDescriptor]:
        snapshot = self.dom.query_interactive()
        self.last_title = snapshot.title

        descriptors: List[ElementDescriptor] = []
        seen_indexes = set()
        taken_names: List[str] = []
        skipped = 0

        for raw in snapshot.elements:
            if raw.index in seen_indexes:
                continue
            seen_indexes.add(raw.index)
            if not raw.is_visible:
                skipped += 1
                continue
            descriptor = self.build_descriptor(raw, snapshot.class_counts, taken_names)
            if descriptor is None:
                continue
            taken_names.append(descriptor.name)
            descriptors.append(descriptor)

        logger.debug(f"[DOMMapper] Extracted {len(descriptors)} elements ({skipped} hidden skipped)")
        return descriptors

    def build_descriptor(
        self,
        raw: RawElement,
        class_counts: Mapping[str, int],
        taken_names: Optional[List[str]] = None,
        name: Optional[str] = None,
    ) -> Optional[ElementDescriptor]:
        """Descriptor for one raw node, or None when no selector can be produced."""
        element_type = detect_element_type(raw.tag, raw.type, raw.attributes.get("role", ""))
        resolution = self.resolve(raw, class_counts)
        if not resolution.primary:
            return None
        base_name = slugify(name) if name else generate_element_name(raw, element_type)
        text = normalize_text(raw.text)
        return ElementDescriptor(
            id=new_id("element"),
            name=unique_name(base_name or f"{element_type}_element", taken_names or []),
            primary_selector=resolution.primary,
            alternative_selectors=resolution.alternatives,
            element_type=element_type,
            attributes=raw.attributes,
            text_snapshot=text or None,
            is_stable=not resolution.is_weak,
            dom_index=raw.index,
        )

    @staticmethod
    def resolve(raw: RawElement, class_counts: Mapping[str, int]) -> SelectorResolution:
        return resolve(raw.attributes, raw.text, DocumentContext(tag=raw.tag, class_counts=class_counts))

    def describe_selector(self, selector: str) -> Optional[DOMSnapshot]:
        """Snapshot of the first node matching `selector`, or None when nothing matches."""
        snapshot = self.dom.describe(selector)
        if snapshot is None or not snapshot.elements:
            return None
        return snapshot
