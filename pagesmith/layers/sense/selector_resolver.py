"""
Selector Resolver - Ranked, resilient selectors for one element.

Pure functions only: given an element's attribute snapshot, its visible
text and a little document context, produce a primary selector plus up
to three fallbacks. Nothing here touches a browser.

ID and explicit test attributes survive styling refactors; text and
class selectors degrade gracefully but are volatile, so callers must
re-validate them (see PageObjectStore.verify_stability).
"""

from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple
import json
import re

from selenium.webdriver.common.by import By

TEST_ID_ATTRIBUTES = ("data-testid", "data-test", "data-cy")
TEXT_SELECTOR_TAGS = ("button", "a")
TEXT_SELECTOR_ROLES = ("button", "link")
MAX_TEXT_SELECTOR_LENGTH = 30
MAX_ALTERNATIVES = 3

TEXT_PREFIX = "text="
XPATH_PREFIX = "xpath="

_CSS_IDENTIFIER = re.compile(r"^-?[_a-zA-Z][_a-zA-Z0-9-]*$")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class DocumentContext:
    """What the resolver may know about the document around the element."""
    tag: str = ""
    class_counts: Mapping[str, int] = field(default_factory=dict)

    def is_unique_class(self, css_class: str) -> bool:
        return self.class_counts.get(css_class, 0) == 1


@dataclass
class SelectorResolution:
    """Result of resolve(). `is_weak` means only a bare tag name was found."""
    primary: str
    alternatives: List[str] = field(default_factory=list)
    is_weak: bool = False


def normalize_text(text: Optional[str]) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def css_escape(value: str) -> str:
    """Escape a string for use as a CSS identifier (CSS.escape semantics)."""
    if _CSS_IDENTIFIER.match(value):
        return value
    out = []
    for index, char in enumerate(value):
        if char.isdigit() and (index == 0 or (index == 1 and value[0] == "-")):
            out.append(f"\\{ord(char):x} ")
        elif char.isalnum() or char in "-_" or ord(char) > 0x7F:
            out.append(char)
        else:
            out.append("\\" + char)
    return "".join(out)


def quote_attribute(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def id_selector(element_id: str) -> str:
    """`#id`, or `[id="..."]` when the id is not a valid CSS identifier."""
    if _CSS_IDENTIFIER.match(element_id):
        return "#" + element_id
    return attribute_selector("id", element_id)


def attribute_selector(name: str, value: str) -> str:
    return f"[{name}={quote_attribute(value)}]"


def text_selector(text: str) -> str:
    return TEXT_PREFIX + json.dumps(text, ensure_ascii=False)


def class_selector(css_class: str) -> str:
    return "." + css_escape(css_class)


def is_text_selector(selector: str) -> bool:
    return selector.startswith(TEXT_PREFIX)


def parse_text_selector(selector: str) -> str:
    raw = selector[len(TEXT_PREFIX):]
    if len(raw) >= 2 and raw[0] == raw[-1] == '"':
        return json.loads(raw)
    return raw


def is_bare_tag(selector: str) -> bool:
    return bool(re.match(r"^[a-zA-Z][a-zA-Z0-9-]*$|^\*$", selector or ""))


def xpath_literal(value: str) -> str:
    """Quote a string for XPath 1.0, which has no escape sequences."""
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    parts = value.split('"')
    return "concat(" + ", '\"', ".join(f'"{part}"' for part in parts) + ")"


def to_locator(selector: str) -> Tuple[str, str]:
    """
    Translate an engine selector into a Selenium (By, value) locator.

    `text="..."` selectors become an XPath matching the innermost element
    whose normalized text equals the value.
    """
    if is_text_selector(selector):
        literal = xpath_literal(parse_text_selector(selector))
        return By.XPATH, f"//*[normalize-space(.)={literal}][not(.//*[normalize-space(.)={literal}])]"
    if selector.startswith(XPATH_PREFIX):
        return By.XPATH, selector[len(XPATH_PREFIX):]
    if selector.startswith("//") or selector.startswith("(//"):
        return By.XPATH, selector
    return By.CSS_SELECTOR, selector


def _split_classes(attributes: Mapping[str, str]) -> List[str]:
    return [c for c in (attributes.get("class") or "").split() if c]


def _candidates(
    attributes: Mapping[str, str],
    text: str,
    context: DocumentContext,
) -> Tuple[List[str], List[str]]:
    """Return (primary candidates in priority order, alternative candidates in priority order)."""
    tag = (context.tag or "").lower()
    role = (attributes.get("role") or "").strip()
    primary: List[str] = []
    alternatives: List[str] = []

    element_id = (attributes.get("id") or "").strip()
    if element_id:
        primary.append(id_selector(element_id))

    for attr in TEST_ID_ATTRIBUTES:
        value = (attributes.get(attr) or "").strip()
        if value:
            primary.append(attribute_selector(attr, value))
            break

    aria_label = (attributes.get("aria-label") or "").strip()
    aria_selector = attribute_selector("aria-label", aria_label) if aria_label else None
    if aria_selector:
        primary.append(aria_selector)

    name = (attributes.get("name") or "").strip()
    if name:
        primary.append(attribute_selector("name", name))

    text_candidate = None
    if text and len(text) < MAX_TEXT_SELECTOR_LENGTH:
        text_candidate = text_selector(text)
        if tag in TEXT_SELECTOR_TAGS or role in TEXT_SELECTOR_ROLES:
            primary.append(text_candidate)

    unique_classes = [class_selector(c) for c in _split_classes(attributes) if context.is_unique_class(c)]
    primary.extend(unique_classes[:1])

    if text_candidate:
        alternatives.append(text_candidate)
    if aria_selector:
        alternatives.append(aria_selector)
    alternatives.extend(unique_classes)
    if role:
        alternatives.append(attribute_selector("role", role))

    return primary, alternatives


def resolve(
    attributes: Optional[Mapping[str, str]],
    text: Optional[str],
    document_context: Optional[DocumentContext] = None,
) -> SelectorResolution:
    """
    Produce a ranked primary selector and up to three alternatives.

    Primary priority (first match wins): id, test-id attribute,
    aria-label, name, short text (buttons/links only), a class unique in
    the document, bare tag name.

    Alternatives come from text, aria-label, unique classes and role,
    skipping whichever was chosen as primary.

    Example:
        >>> resolve({"id": "go"}, "Go", DocumentContext(tag="button")).primary
        '#go'
    """
    context = document_context or DocumentContext()
    tag = (context.tag or "").lower()

    if attributes is None:
        return SelectorResolution(primary=tag or "*", alternatives=[], is_weak=True)

    clean_text = normalize_text(text)
    primary_candidates, alternative_candidates = _candidates(attributes, clean_text, context)

    if primary_candidates:
        primary = primary_candidates[0]
        is_weak = False
    else:
        primary = tag or "*"
        is_weak = True

    alternatives: List[str] = []
    for candidate in alternative_candidates:
        if candidate != primary and candidate not in alternatives:
            alternatives.append(candidate)
        if len(alternatives) == MAX_ALTERNATIVES:
            break

    return SelectorResolution(primary=primary, alternatives=alternatives, is_weak=is_weak)
