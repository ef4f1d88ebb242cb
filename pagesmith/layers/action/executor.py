"""
Action Executor - UI Interactions Against the Live Page.

Performs one primitive per call (click, fill, select, check, uncheck,
hover, navigate, wait). A selector matching nothing fails immediately;
there are no retries. Driver errors propagate so the caller can decide
whether the session survived.
"""

from dataclasses import dataclass
from typing import Any, Optional, TYPE_CHECKING
import logging
import time

from selenium.common.exceptions import NoSuchElementException, TimeoutException
from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.support.ui import Select, WebDriverWait

from pagesmith.layers.sense.selector_resolver import to_locator

if TYPE_CHECKING:
    from selenium.webdriver.remote.webdriver import WebDriver
    from selenium.webdriver.remote.webelement import WebElement

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Result of an action execution."""
    success: bool
    action: str
    target: str
    duration_ms: float
    error: Optional[str] = None
    metadata: Optional[dict] = None


class ActionExecutor:
    """
    Execute actions against the page behind `driver`.

    Each element action resolves the selector once, scrolls the element
    into view and waits for the document to settle afterwards.

    Example:
        >>> executor = ActionExecutor(driver)
        >>> result = executor.click("#login")
        >>> result.success
        True
    """

    def __init__(self, driver: "WebDriver", timeout: float = 5.0):
        """
        Args:
            driver: Selenium WebDriver owned by the calling session
            timeout: Seconds to wait for document.readyState after an action
        """
        self.driver = driver
        self.timeout = timeout

    def execute(self, action: str, selector: Optional[str] = None, value: Any = None) -> ActionResult:
        """Dispatch by action name, as recorded in a TestStep."""
        action = action.lower()
        if action == "click":
            return self.click(selector)
        elif action == "fill":
            return self.fill(selector, "" if value is None else str(value))
        elif action == "select":
            return self.select(selector, "" if value is None else str(value))
        elif action == "check":
            return self.check(selector)
        elif action == "uncheck":
            return self.uncheck(selector)
        elif action == "hover":
            return self.hover(selector)
        elif action == "navigate":
            return self.navigate(str(value or selector))
        elif action == "wait":
            return self.wait(float(value or 0))
        raise ValueError(f"Unsupported action: {action}")

    def click(self, selector: str) -> ActionResult:
        return self._perform("click", selector, lambda element: element.click())

    def fill(self, selector: str, text: str, clear_first: bool = True) -> ActionResult:
        def _fill(element: "WebElement") -> None:
            if clear_first:
                element.clear()
            element.send_keys(text)

        return self._perform("fill", selector, _fill)

    def select(self, selector: str, value: str) -> ActionResult:
        """Select an <option> by value, falling back to its visible text."""
        def _select(element: "WebElement") -> None:
            dropdown = Select(element)
            try:
                dropdown.select_by_value(value)
            except NoSuchElementException:
                dropdown.select_by_visible_text(value)

        return self._perform("select", selector, _select)

    def check(self, selector: str) -> ActionResult:
        return self._perform("check", selector, lambda element: self._set_checked(element, True))

    def uncheck(self, selector: str) -> ActionResult:
        return self._perform("uncheck", selector, lambda element: self._set_checked(element, False))

    def hover(self, selector: str) -> ActionResult:
        return self._perform(
            "hover", selector, lambda element: ActionChains(self.driver).move_to_element(element).perform()
        )

    def navigate(self, url: str) -> ActionResult:
        start_time = time.time()
        self.driver.get(url)
        self._wait_for_stability()
        return ActionResult(
            success=True,
            action="navigate",
            target=url,
            duration_ms=(time.time() - start_time) * 1000,
        )

    def wait(self, seconds: float) -> ActionResult:
        """Wait for a specified duration."""
        time.sleep(max(seconds, 0))
        return ActionResult(success=True, action="wait", target="", duration_ms=seconds * 1000)

    def _perform(self, action: str, selector: str, operation) -> ActionResult:
        start_time = time.time()
        element = self._find_element(selector)
        if element is None:
            logger.debug(f"[ActionExecutor] {action}: no element matches {selector}")
            return ActionResult(
                success=False,
                action=action,
                target=selector,
                duration_ms=(time.time() - start_time) * 1000,
                error="Element not found",
            )

        self._scroll_into_view(element)
        operation(element)
        self._wait_for_stability()

        return ActionResult(
            success=True,
            action=action,
            target=selector,
            duration_ms=(time.time() - start_time) * 1000,
        )

    def _find_element(self, selector: str) -> Optional["WebElement"]:
        """First element matching `selector`, or None. Single lookup, no polling."""
        matches = self.driver.find_elements(*to_locator(selector))
        return matches[0] if matches else None

    @staticmethod
    def _set_checked(element: "WebElement", checked: bool) -> None:
        if element.is_selected() != checked:
            element.click()

    def _scroll_into_view(self, element: "WebElement") -> None:
        """Scroll an element into the viewport unless it is already there."""
        in_view = self.driver.execute_script("""
            var rect = arguments[0].getBoundingClientRect();
            return (
                rect.top >= 0 &&
                rect.left >= 0 &&
                rect.bottom <= (window.innerHeight || document.documentElement.clientHeight) &&
                rect.right <= (window.innerWidth || document.documentElement.clientWidth)
            );
        """, element)

        if not in_view:
            self.driver.execute_script(
                "arguments[0].scrollIntoView({block: 'center'});",
                element
            )

    def _wait_for_stability(self) -> None:
        """Wait for document.readyState to reach 'complete'."""
        try:
            WebDriverWait(self.driver, self.timeout).until(
                lambda d: d.execute_script("return document.readyState") == "complete"
            )
        except TimeoutException:
            logger.debug(f"[ActionExecutor] Document not ready after {self.timeout}s, continuing")
