"""
Code Synthesizer - page object classes and test scripts from recordings.

Two output dialects:

- `playwright-ts`: a Playwright Test spec plus a TypeScript page object
  class with `click<Name>()` / `fill<Name>(value)` style methods.
- `pytest-selenium`: a pytest test taking a `driver` fixture plus a
  Python page object class with `click_<name>()` style methods.

Output is a pure function of (steps, page object): same input, same text.
"""

from typing import List, Optional, Sequence
from urllib.parse import urlsplit
import logging

from pagesmith.core.config import DIALECTS
from pagesmith.core.models import ElementDescriptor, GeneratedArtifacts, PageObjectModel, TestStep
from pagesmith.core.naming import split_words, to_camel_case, to_pascal_case, to_snake_case
from pagesmith.layers.sense.selector_resolver import to_locator

logger = logging.getLogger(__name__)

CLICKABLE_TYPES = ("button", "link", "other")
FILLABLE_TYPES = ("input",)
SELECTABLE_TYPES = ("dropdown",)
CHECKABLE_TYPES = ("checkbox", "radio")

_BY_CONSTANTS = {
    "css selector": "By.CSS_SELECTOR",
    "xpath": "By.XPATH",
}


def build_test_name(steps: Sequence[TestStep]) -> str:
    """'Test with fill, click, navigate' from the first three step kinds."""
    actions = [step.action for step in steps[:3]]
    return f"Test with {', '.join(actions)}".strip()


def has_method(element: ElementDescriptor, action: str) -> bool:
    """Whether the generated page object exposes `action` for this element."""
    if action == "click":
        return element.element_type in CLICKABLE_TYPES
    if action == "fill":
        return element.element_type in FILLABLE_TYPES
    if action == "select":
        return element.element_type in SELECTABLE_TYPES
    if action in ("check", "uncheck"):
        return element.element_type in CHECKABLE_TYPES
    return False


def _page_base_words(pom_name: str) -> List[str]:
    words = split_words(pom_name)
    if len(words) > 1 and words[-1].lower() == "page":
        words = words[:-1]
    return [w.lower() for w in words]


def ts_string(value) -> str:
    """Single-quoted TypeScript string literal."""
    text = "" if value is None else str(value)
    escaped = (
        text.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return f"'{escaped}'"


def py_string(value) -> str:
    return repr("" if value is None else str(value))


class CodeSynthesizer:
    """
    Turns a page object and a list of recorded steps into source text.

    Example:
        >>> synthesizer = CodeSynthesizer()
        >>> artifacts = synthesizer.generate(steps, pom)
        >>> print(artifacts.test_source)
    """

    def __init__(self, dialect: str = "playwright-ts"):
        if dialect not in DIALECTS:
            raise ValueError(f"Unknown dialect: {dialect} (expected one of {', '.join(DIALECTS)})")
        self.dialect = dialect

    @property
    def is_typescript(self) -> bool:
        return self.dialect == "playwright-ts"

    def generate(self, steps: Sequence[TestStep], pom: Optional[PageObjectModel] = None) -> GeneratedArtifacts:
        return GeneratedArtifacts(
            test_source=self.generate_test(steps, pom),
            test_file_name=self.test_file_name(steps),
            page_object_source=self.generate_page_object(pom) if pom else None,
            page_object_file_name=self.page_object_file_name(pom.name) if pom else None,
            steps=list(steps),
        )

    def generate_test(self, steps: Sequence[TestStep], pom: Optional[PageObjectModel] = None) -> str:
        if self.is_typescript:
            return self._ts_test(steps, pom)
        return self._py_test(steps, pom)

    def generate_page_object(self, pom: PageObjectModel) -> str:
        if self.is_typescript:
            return self._ts_page_object(pom)
        return self._py_page_object(pom)

    def file_name(self, pom_name: str) -> str:
        """`LoginPage` -> `login.page` (TypeScript) or `login_page` (Python)."""
        words = _page_base_words(pom_name)
        if self.is_typescript:
            return "-".join(words) + ".page"
        return "_".join(words + ["page"])

    def page_object_file_name(self, pom_name: str) -> str:
        extension = ".ts" if self.is_typescript else ".py"
        return f"pages/{self.file_name(pom_name)}{extension}"

    def test_file_name(self, steps: Sequence[TestStep]) -> str:
        slug = to_snake_case(build_test_name(steps))
        if self.is_typescript:
            return slug.replace("_", "-") + ".spec.ts"
        return f"{slug}.py"

    def _bound_element(self, step: TestStep, pom: Optional[PageObjectModel]) -> Optional[ElementDescriptor]:
        if pom is None:
            return None
        element = pom.find_element(step.element_id)
        if element is not None and has_method(element, step.action):
            return element
        return None

    # -- Playwright / TypeScript -------------------------------------------------

    def _ts_test(self, steps: Sequence[TestStep], pom: Optional[PageObjectModel]) -> str:
        lines = ["import { test, expect } from '@playwright/test';"]
        if pom:
            lines.append(f"import {{ {pom.name} }} from './pages/{self.file_name(pom.name)}';")
        lines.append("")
        lines.append(f"test({ts_string(build_test_name(steps))}, async ({{ page }}) => {{")
        if pom:
            var = to_camel_case(pom.name)
            lines.append(f"  const {var} = new {pom.name}(page);")
            lines.append(f"  await {var}.navigate();")
            lines.append("")
        for step in steps:
            lines.append(self._ts_step(step, pom))
        lines.append("});")
        return "\n".join(lines) + "\n"

    def _ts_step(self, step: TestStep, pom: Optional[PageObjectModel]) -> str:
        element = self._bound_element(step, pom)
        if element is not None:
            var = to_camel_case(pom.name)
            method = step.action + to_pascal_case(element.name)
            if step.action in ("fill", "select"):
                return f"  await {var}.{method}({ts_string(step.value)});"
            return f"  await {var}.{method}();"

        selector = ts_string(step.selector)
        if step.action == "click":
            return f"  await page.click({selector});"
        if step.action == "fill":
            return f"  await page.fill({selector}, {ts_string(step.value)});"
        if step.action == "select":
            return f"  await page.selectOption({selector}, {ts_string(step.value)});"
        if step.action in ("check", "uncheck", "hover"):
            return f"  await page.{step.action}({selector});"
        if step.action == "navigate":
            return f"  await page.goto({ts_string(step.value)});"
        if step.action == "wait":
            return f"  await page.waitForTimeout({int(step.value or 0)});"
        return self._ts_assert(step)

    def _ts_assert(self, step: TestStep) -> str:
        assertion = step.assertion
        locator = f"page.locator({ts_string(step.selector)})"
        expected = ts_string(assertion.expected)
        if assertion.kind == "visible":
            return f"  await expect({locator}).toBeVisible();"
        if assertion.kind == "text":
            return f"  await expect({locator}).toHaveText({expected});"
        if assertion.kind == "value":
            return f"  await expect({locator}).toHaveValue({expected});"
        if assertion.kind == "count":
            return f"  await expect({locator}).toHaveCount({int(assertion.expected or 0)});"
        if assertion.kind == "url":
            return f"  await expect(page).toHaveURL({expected});"
        return f"  await expect(page).toHaveTitle({expected});"

    def _ts_page_object(self, pom: PageObjectModel) -> str:
        lines = [
            "import { Page, Locator } from '@playwright/test';",
            "",
            f"export class {pom.name} {{",
            "  private page: Page;",
            "",
            "  // Locators",
        ]
        for element in pom.elements:
            lines.append(f"  private {to_camel_case(element.name)}: Locator;")

        lines += ["", "  constructor(page: Page) {", "    this.page = page;", ""]
        for element in pom.elements:
            lines.append(
                f"    this.{to_camel_case(element.name)} = page.locator({ts_string(element.primary_selector)});"
            )
        lines += [
            "  }",
            "",
            "  async navigate(): Promise<void> {",
            f"    await this.page.goto({ts_string(pom.url)});",
            "  }",
            "",
        ]

        for element in pom.elements:
            prop = to_camel_case(element.name)
            pascal = to_pascal_case(element.name)
            if has_method(element, "click"):
                lines += [
                    f"  async click{pascal}(): Promise<void> {{",
                    f"    await this.{prop}.click();",
                    "  }",
                    "",
                ]
            if has_method(element, "fill"):
                lines += [
                    f"  async fill{pascal}(value: string): Promise<void> {{",
                    f"    await this.{prop}.fill(value);",
                    "  }",
                    "",
                    f"  async get{pascal}Value(): Promise<string> {{",
                    f"    return await this.{prop}.inputValue();",
                    "  }",
                    "",
                ]
            if has_method(element, "select"):
                lines += [
                    f"  async select{pascal}(value: string): Promise<void> {{",
                    f"    await this.{prop}.selectOption(value);",
                    "  }",
                    "",
                ]
            if has_method(element, "check"):
                lines += [
                    f"  async check{pascal}(): Promise<void> {{",
                    f"    await this.{prop}.check();",
                    "  }",
                    "",
                    f"  async uncheck{pascal}(): Promise<void> {{",
                    f"    await this.{prop}.uncheck();",
                    "  }",
                    "",
                ]

        path = urlsplit(pom.url).path or "/"
        lines += [
            "  // Assertions",
            "  async isLoaded(): Promise<boolean> {",
            f"    return this.page.url().includes({ts_string(path)});",
            "  }",
            "}",
        ]
        return "\n".join(lines) + "\n"

    # -- pytest / Selenium ---------------------------------------------------------

    @staticmethod
    def _py_locator(selector: Optional[str]) -> str:
        by, value = to_locator(selector or "")
        return f"{_BY_CONSTANTS[by]}, {py_string(value)}"

    def _py_test(self, steps: Sequence[TestStep], pom: Optional[PageObjectModel]) -> str:
        body: List[str] = []
        for step in steps:
            body.extend(self._py_step(step, pom))

        actions = {step.action for step in steps if self._bound_element(step, pom) is None}
        imports = []
        if "wait" in actions:
            imports.append("import time")
            imports.append("")
        if "select" in actions:
            imports.append("from selenium.common.exceptions import NoSuchElementException")
        if actions - {"navigate", "wait"} or any(s.action == "assert" for s in steps):
            imports.append("from selenium.webdriver.common.by import By")
        if "hover" in actions:
            imports.append("from selenium.webdriver.common.action_chains import ActionChains")
        if "select" in actions:
            imports.append("from selenium.webdriver.support.ui import Select")
        if pom:
            if imports and imports[-1]:
                imports.append("")
            imports.append(f"from pages.{self.file_name(pom.name)} import {pom.name}")

        while imports and not imports[-1]:
            imports.pop()
        lines = imports + ["", ""] if imports else []
        lines.append(f"def {to_snake_case(build_test_name(steps))}(driver):")
        if pom:
            var = to_snake_case(pom.name)
            lines.append(f"    {var} = {pom.name}(driver)")
            lines.append(f"    {var}.navigate()")
            if body:
                lines.append("")
        lines.extend(body)
        if not pom and not body:
            lines.append("    pass")
        return "\n".join(lines) + "\n"

    def _py_step(self, step: TestStep, pom: Optional[PageObjectModel]) -> List[str]:
        element = self._bound_element(step, pom)
        if element is not None:
            var = to_snake_case(pom.name)
            method = f"{step.action}_{to_snake_case(element.name)}"
            if step.action in ("fill", "select"):
                return [f"    {var}.{method}({py_string(step.value)})"]
            return [f"    {var}.{method}()"]

        find = f"driver.find_element({self._py_locator(step.selector)})"
        if step.action == "click":
            return [f"    {find}.click()"]
        if step.action == "fill":
            return [
                f"    element = {find}",
                "    element.clear()",
                f"    element.send_keys({py_string(step.value)})",
            ]
        if step.action == "select":
            value = py_string(step.value)
            return [
                f"    dropdown = Select({find})",
                "    try:",
                f"        dropdown.select_by_value({value})",
                "    except NoSuchElementException:",
                f"        dropdown.select_by_visible_text({value})",
            ]
        if step.action in ("check", "uncheck"):
            condition = "not element.is_selected()" if step.action == "check" else "element.is_selected()"
            return [
                f"    element = {find}",
                f"    if {condition}:",
                "        element.click()",
            ]
        if step.action == "hover":
            return [f"    ActionChains(driver).move_to_element({find}).perform()"]
        if step.action == "navigate":
            return [f"    driver.get({py_string(step.value)})"]
        if step.action == "wait":
            return [f"    time.sleep({int(step.value or 0) / 1000})"]
        return [self._py_assert(step, find)]

    def _py_assert(self, step: TestStep, find: str) -> str:
        assertion = step.assertion
        expected = py_string(assertion.expected)
        if assertion.kind == "visible":
            return f"    assert {find}.is_displayed()"
        if assertion.kind == "text":
            return f"    assert {find}.text == {expected}"
        if assertion.kind == "value":
            return f"    assert {find}.get_attribute('value') == {expected}"
        if assertion.kind == "count":
            find_all = f"driver.find_elements({self._py_locator(step.selector)})"
            return f"    assert len({find_all}) == {int(assertion.expected or 0)}"
        if assertion.kind == "url":
            return f"    assert driver.current_url == {expected}"
        return f"    assert driver.title == {expected}"

    def _py_page_object(self, pom: PageObjectModel) -> str:
        needs_select = any(has_method(e, "select") for e in pom.elements)
        lines = []
        if needs_select:
            lines.append("from selenium.common.exceptions import NoSuchElementException")
        lines.append("from selenium.webdriver.common.by import By")
        if needs_select:
            lines.append("from selenium.webdriver.support.ui import Select")
        lines += ["", "", f"class {pom.name}:", f"    URL = {py_string(pom.url)}", ""]

        for element in pom.elements:
            lines.append(f"    {to_snake_case(element.name).upper()} = ({self._py_locator(element.primary_selector)})")
        if pom.elements:
            lines.append("")

        lines += [
            "    def __init__(self, driver):",
            "        self.driver = driver",
            "",
            "    def navigate(self):",
            "        self.driver.get(self.URL)",
            "",
        ]

        for element in pom.elements:
            snake = to_snake_case(element.name)
            find = f"self.driver.find_element(*self.{snake.upper()})"
            if has_method(element, "click"):
                lines += [f"    def click_{snake}(self):", f"        {find}.click()", ""]
            if has_method(element, "fill"):
                lines += [
                    f"    def fill_{snake}(self, value):",
                    f"        element = {find}",
                    "        element.clear()",
                    "        element.send_keys(value)",
                    "",
                    f"    def get_{snake}_value(self):",
                    f"        return {find}.get_attribute('value')",
                    "",
                ]
            if has_method(element, "select"):
                lines += [
                    f"    def select_{snake}(self, value):",
                    f"        dropdown = Select({find})",
                    "        try:",
                    "            dropdown.select_by_value(value)",
                    "        except NoSuchElementException:",
                    "            dropdown.select_by_visible_text(value)",
                    "",
                ]
            if has_method(element, "check"):
                lines += [
                    f"    def check_{snake}(self):",
                    f"        element = {find}",
                    "        if not element.is_selected():",
                    "            element.click()",
                    "",
                    f"    def uncheck_{snake}(self):",
                    f"        element = {find}",
                    "        if element.is_selected():",
                    "            element.click()",
                    "",
                ]

        path = urlsplit(pom.url).path or "/"
        lines += [
            "    def is_loaded(self):",
            f"        return {py_string(path)} in self.driver.current_url",
        ]
        return "\n".join(lines) + "\n"
