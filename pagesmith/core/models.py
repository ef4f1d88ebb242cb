"""
Data model for the element-mapping engine.

Element descriptors, page object models and test steps are plain
dataclasses with to_dict()/from_dict() so the persistence collaborator
can store them as flat structured records.
"""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional
import re
import uuid

from pagesmith.core.naming import strip_query

ELEMENT_TYPES = ("button", "link", "input", "dropdown", "checkbox", "radio", "other")
STEP_ACTIONS = ("click", "fill", "select", "check", "uncheck", "hover", "navigate", "wait", "assert")
ASSERTION_KINDS = ("visible", "text", "value", "count", "url", "title")

MAX_ALTERNATIVE_SELECTORS = 3


def new_id(prefix: str) -> str:
    """Opaque identifier such as `element-3f2a9c0b41de`."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now()
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class ElementDescriptor:
    """
    One interactive element observed on a page.

    `attributes` is an immutable snapshot taken at discovery time.
    Identity across visits is approximated by `primary_selector`;
    `dom_index` is kept as a secondary key for weak (tag-only) selectors.
    """
    id: str
    name: str
    primary_selector: str
    alternative_selectors: List[str] = field(default_factory=list)
    element_type: str = "other"
    attributes: Mapping[str, str] = field(default_factory=dict)
    text_snapshot: Optional[str] = None
    last_verified_at: datetime = field(default_factory=datetime.now)
    is_stable: bool = False
    dom_index: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.primary_selector or not self.primary_selector.strip():
            raise ValueError("primary_selector must be non-empty")
        if self.element_type not in ELEMENT_TYPES:
            raise ValueError(f"Unknown element type: {self.element_type}")
        self.alternative_selectors = [
            s for s in self.alternative_selectors if s and s != self.primary_selector
        ][:MAX_ALTERNATIVE_SELECTORS]
        self.attributes = MappingProxyType(dict(self.attributes))

    @property
    def all_selectors(self) -> List[str]:
        return [self.primary_selector, *self.alternative_selectors]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "primary_selector": self.primary_selector,
            "alternative_selectors": list(self.alternative_selectors),
            "element_type": self.element_type,
            "attributes": dict(self.attributes),
            "text_snapshot": self.text_snapshot,
            "last_verified_at": _iso(self.last_verified_at),
            "is_stable": self.is_stable,
            "dom_index": self.dom_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ElementDescriptor":
        return cls(
            id=data["id"],
            name=data["name"],
            primary_selector=data["primary_selector"],
            alternative_selectors=data.get("alternative_selectors", []),
            element_type=data.get("element_type", "other"),
            attributes=data.get("attributes", {}),
            text_snapshot=data.get("text_snapshot"),
            last_verified_at=_parse_time(data.get("last_verified_at")),
            is_stable=data.get("is_stable", False),
            dom_index=data.get("dom_index"),
        )


@dataclass
class PageObjectModel:
    """The accumulated model of a page or page family."""
    id: str
    name: str
    url: str
    url_pattern: str
    elements: List[ElementDescriptor] = field(default_factory=list)
    version: int = 1
    last_updated_at: datetime = field(default_factory=datetime.now)
    title: str = ""

    def matches(self, url: str) -> bool:
        """Exact URL, or a URL inside this page family."""
        if url == self.url:
            return True
        return bool(self.url_pattern) and re.match(self.url_pattern, strip_query(url)) is not None

    def find_element(self, element_id: Optional[str]) -> Optional[ElementDescriptor]:
        if not element_id:
            return None
        for element in self.elements:
            if element.id == element_id:
                return element
        return None

    def element_names(self) -> List[str]:
        return [element.name for element in self.elements]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "url_pattern": self.url_pattern,
            "elements": [element.to_dict() for element in self.elements],
            "version": self.version,
            "last_updated_at": _iso(self.last_updated_at),
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageObjectModel":
        return cls(
            id=data["id"],
            name=data["name"],
            url=data["url"],
            url_pattern=data.get("url_pattern", ""),
            elements=[ElementDescriptor.from_dict(e) for e in data.get("elements", [])],
            version=data.get("version", 1),
            last_updated_at=_parse_time(data.get("last_updated_at")),
            title=data.get("title", ""),
        )


@dataclass
class Assertion:
    """Typed payload of an `assert` step."""
    kind: str
    expected: Any = None

    def __post_init__(self) -> None:
        if self.kind not in ASSERTION_KINDS:
            raise ValueError(f"Unknown assertion kind: {self.kind}")

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "expected": self.expected}


@dataclass
class TestStep:
    """One recorded action, with enough data to regenerate it as code."""
    __test__ = False  # keep pytest from collecting this as a test class

    id: str
    action: str
    element_id: Optional[str] = None
    element_name: Optional[str] = None
    selector: Optional[str] = None
    value: Any = None
    assertion: Optional[Assertion] = None
    screenshot_path: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if self.action not in STEP_ACTIONS:
            raise ValueError(f"Unknown step action: {self.action}")
        if self.action == "assert" and self.assertion is None:
            raise ValueError("assert steps need an assertion payload")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "element_id": self.element_id,
            "element_name": self.element_name,
            "selector": self.selector,
            "value": self.value,
            "assertion": self.assertion.to_dict() if self.assertion else None,
            "screenshot_path": self.screenshot_path,
            "timestamp": _iso(self.timestamp),
        }


@dataclass
class ClickPreview:
    """What a click on a selector is expected to do."""
    will_navigate: bool = False
    target_url: Optional[str] = None
    will_open_modal: bool = False
    will_submit_form: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "will_navigate": self.will_navigate,
            "target_url": self.target_url,
            "will_open_modal": self.will_open_modal,
            "will_submit_form": self.will_submit_form,
        }


@dataclass
class GeneratedArtifacts:
    """Source text produced by the code synthesizer. Writing files is the caller's job."""
    test_source: str
    test_file_name: str
    page_object_source: Optional[str] = None
    page_object_file_name: Optional[str] = None
    steps: List[TestStep] = field(default_factory=list)

    def files(self) -> Dict[str, str]:
        """Relative file name -> source text."""
        files = {self.test_file_name: self.test_source}
        if self.page_object_source and self.page_object_file_name:
            files[self.page_object_file_name] = self.page_object_source
        return files

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_code": self.test_source,
            "test_file_name": self.test_file_name,
            "page_object_code": self.page_object_source,
            "page_object_file_name": self.page_object_file_name,
            "steps": [step.to_dict() for step in self.steps],
        }
