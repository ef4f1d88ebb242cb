"""
Session Manager - one live browser per authoring session.

A session is started, navigated, acted upon, optionally recorded, and
ended. Navigation feeds the page object store; actions on the page are
mirrored into the session's recorder while it is armed.

What the tester does directly in the browser window is picked up too:
each page gets a small listener, and its queue is drained at the start
of every session call, ahead of that call's own step. Events caused by
the engine's own actions are drained right after the action and dropped.

Callers serialize calls per session. Different sessions are independent
and may be driven from different threads.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set
import atexit
import logging
import re
import threading

from selenium.common.exceptions import (
    InvalidSessionIdException,
    NoSuchWindowException,
    WebDriverException,
)

from pagesmith.core.config import EngineConfig, SessionOptions
from pagesmith.core.driver_factory import create_driver
from pagesmith.core.errors import (
    DriverCrashedError,
    DriverError,
    ElementNotFoundError,
    NavigationError,
    PageSmithError,
    ResolutionError,
    SessionNotFoundError,
)
from pagesmith.core.models import (
    Assertion,
    ClickPreview,
    ElementDescriptor,
    GeneratedArtifacts,
    PageObjectModel,
    TestStep,
    new_id,
)
from pagesmith.core.naming import guard_leading_digit, to_snake_case
from pagesmith.core.page_object_store import PageObjectStore
from pagesmith.core.recorder import Recorder
from pagesmith.generators.code_synthesizer import CodeSynthesizer
from pagesmith.layers.action.executor import ActionExecutor, ActionResult
from pagesmith.layers.sense.dom_mapper import (
    BrowserEvent,
    DOMQuery,
    ElementExtractor,
    SeleniumDOMQuery,
    click_preview,
    detect_element_type,
)
from pagesmith.layers.sense.selector_resolver import is_bare_tag, normalize_text
from pagesmith.reporters.flight_recorder import FlightRecorder

logger = logging.getLogger(__name__)

FATAL_DRIVER_MESSAGES = (
    "chrome not reachable",
    "disconnected",
    "session deleted",
    "target window already closed",
    "invalid session id",
)

ELEMENT_ACTIONS = ("click", "fill", "select", "check", "uncheck", "hover")
PAGE_ASSERTIONS = ("url", "title")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_fatal_driver_error(error: WebDriverException) -> bool:
    """True when the browser behind the driver is gone for good."""
    if isinstance(error, (InvalidSessionIdException, NoSuchWindowException)):
        return True
    message = (getattr(error, "msg", None) or str(error)).lower()
    return any(marker in message for marker in FATAL_DRIVER_MESSAGES)


def element_name(name: str) -> str:
    """Keep identifier-like names as given, snake_case anything else."""
    name = (name or "").strip()
    if _IDENTIFIER.match(name):
        return name
    return guard_leading_digit(to_snake_case(name))


@dataclass
class Session:
    """One authoring session and the browser it owns."""
    id: str
    driver: Any
    options: SessionOptions
    dom: DOMQuery
    executor: ActionExecutor
    flight_recorder: FlightRecorder
    recorder: Recorder = field(default_factory=Recorder)
    current_url: Optional[str] = None
    current_page_object: Optional[PageObjectModel] = None
    element_mappings: Dict[str, ElementDescriptor] = field(default_factory=dict)
    state: str = "created"  # created, navigated, ended
    crashed: bool = False
    last_artifacts: Optional[GeneratedArtifacts] = None
    created_at: datetime = field(default_factory=datetime.now)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def extractor(self) -> ElementExtractor:
        return ElementExtractor(self.dom)

    @property
    def is_recording(self) -> bool:
        return self.recorder.is_armed

    @property
    def recorded_steps(self) -> List[TestStep]:
        return self.recorder.steps

    def find_element_id(self, selector: str) -> Optional[str]:
        """Mapped element whose primary or alternative selector is `selector`."""
        for element in self.element_mappings.values():
            if selector == element.primary_selector or selector in element.alternative_selectors:
                return element.id
        return None

    def to_dict(self) -> Dict[str, Any]:
        pom = self.current_page_object
        return {
            "id": self.id,
            "state": self.state,
            "crashed": self.crashed,
            "current_url": self.current_url,
            "page_object": {"id": pom.id, "name": pom.name, "version": pom.version} if pom else None,
            "is_recording": self.is_recording,
            "recorded_steps": len(self.recorder),
            "mapped_elements": len(self.element_mappings),
            "created_at": self.created_at.isoformat(),
        }


class SessionManager:
    """
    Owns every live authoring session.

    Example:
        >>> manager = SessionManager(PageObjectStore())
        >>> session = manager.start(SessionOptions(headless=True))
        >>> manager.navigate(session.id, "https://example.com/login")
        >>> manager.start_recording(session.id)
        >>> manager.fill(session.id, "#email", "a@b.test", name="emailField")
        >>> manager.click(session.id, "#login", name="loginButton")
        >>> print(manager.stop_recording(session.id))
        >>> manager.end(session.id)
    """

    def __init__(
        self,
        store: PageObjectStore,
        driver_factory: Callable[[SessionOptions], Any] = create_driver,
        config: Optional[EngineConfig] = None,
        dom_factory: Callable[[Any], DOMQuery] = SeleniumDOMQuery,
        register_atexit: bool = True,
    ):
        """
        Args:
            store: Page object store shared by these sessions
            driver_factory: Called with SessionOptions, returns a WebDriver
            config: Engine configuration (artifacts dir, screenshots, dialect)
            dom_factory: Builds the DOMQuery used for extraction from a driver
            register_atexit: End all sessions when the interpreter exits
        """
        self.store = store
        self.driver_factory = driver_factory
        self.config = config or EngineConfig()
        self.dom_factory = dom_factory
        self._sessions: Dict[str, Session] = {}
        self._starting: Set[str] = set()
        self._lock = threading.Lock()
        if register_atexit:
            atexit.register(self.end_all)

    # -- lifecycle ---------------------------------------------------------------

    def start(self, options: Optional[SessionOptions] = None, session_id: Optional[str] = None) -> Session:
        """Launch a browser and register a new session."""
        options = options or SessionOptions()
        session_id = session_id or new_id("session")
        with self._lock:
            if session_id in self._sessions or session_id in self._starting:
                raise ValueError(f"Session already exists: {session_id}")
            self._starting.add(session_id)

        try:
            session = self._launch(options, session_id)
            with self._lock:
                self._sessions[session_id] = session
        finally:
            with self._lock:
                self._starting.discard(session_id)

        session.flight_recorder.log_info(f"Session started (headless={options.headless})")
        logger.info(f"[SessionManager] Started session {session_id}")
        return session

    def _launch(self, options: SessionOptions, session_id: str) -> Session:
        """Start the browser and wrap it. The browser is quit if the wrapping fails."""
        try:
            driver = self.driver_factory(options)
        except WebDriverException as e:
            raise DriverError(f"Could not start browser: {e.msg or e}", cause=e) from e

        try:
            return Session(
                id=session_id,
                driver=driver,
                options=options,
                dom=self.dom_factory(driver),
                executor=ActionExecutor(driver, timeout=options.page_load_timeout),
                flight_recorder=FlightRecorder(output_dir=self.config.artifacts_dir, run_name=session_id),
            )
        except Exception:
            try:
                driver.quit()
            except WebDriverException as e:
                logger.warning(f"[SessionManager] Driver quit failed for {session_id}: {e}")
            raise

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def active_sessions(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def end(self, session_id: str) -> Optional[str]:
        """
        Tear a session down. The browser is always quit, even after a crash.

        Returns the path of the written flight record, if any. Ending an
        unknown or already ended session raises SessionNotFoundError.
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)

        with session.lock:
            session.recorder.disarm()
            session.state = "ended"
            try:
                session.driver.quit()
            except WebDriverException as e:
                logger.warning(f"[SessionManager] Driver quit failed for {session_id}: {e}")
                session.flight_recorder.log_warning(f"Driver quit failed: {e}")

            record_path = None
            try:
                record_path = session.flight_recorder.save()
            except OSError as e:
                logger.warning(f"[SessionManager] Could not write flight record for {session_id}: {e}")

        logger.info(f"[SessionManager] Ended session {session_id}")
        return record_path

    def end_all(self) -> int:
        """End every live session. Returns how many were ended."""
        ended = 0
        for session in self.active_sessions():
            try:
                self.end(session.id)
                ended += 1
            except SessionNotFoundError:
                continue
        return ended

    def __enter__(self) -> "SessionManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.end_all()

    # -- navigation ----------------------------------------------------------------

    def navigate(self, session_id: str, url: str) -> PageObjectModel:
        """
        Load `url`, extract its elements and fold them into the store.

        On navigation failure the session keeps its previous page and
        mappings. On success the mappings are rebuilt from the page object.
        """
        session = self._get_active(session_id)
        with session.lock:
            self._collect_tester_events(session)
            try:
                session.executor.navigate(url)
            except WebDriverException as e:
                self._check_fatal(session, e)
                session.flight_recorder.log_error(f"Navigation to {url} failed", e)
                raise NavigationError(e.msg or str(e), cause=e) from e

            self._discard_engine_events(session)
            current_url = self._current_url(session) or url
            pom = self._analyze(session, current_url)

            session.current_url = current_url
            session.current_page_object = pom
            session.element_mappings = {element.id: element for element in pom.elements}
            session.state = "navigated"

            session.flight_recorder.log_navigation(current_url, pom.name, len(pom.elements))
            session.recorder.record(TestStep(id=new_id("step"), action="navigate", value=url))
            self._screenshot(session, "navigate")
            return pom

    def _analyze(self, session: Session, url: str) -> PageObjectModel:
        extractor = session.extractor
        elements = self._driver_call(session, extractor.extract)
        title = extractor.last_title or self._driver_call(session, session.dom.title)
        return self.store.upsert_from_extraction(url, title, elements)

    # -- actions ---------------------------------------------------------------------

    def click(self, session_id: str, selector: str, name: Optional[str] = None) -> TestStep:
        return self._act(session_id, "click", selector, name=name)

    def fill(self, session_id: str, selector: str, value: str, name: Optional[str] = None) -> TestStep:
        return self._act(session_id, "fill", selector, value=value, name=name)

    def select(self, session_id: str, selector: str, value: str, name: Optional[str] = None) -> TestStep:
        return self._act(session_id, "select", selector, value=value, name=name)

    def check(self, session_id: str, selector: str, name: Optional[str] = None) -> TestStep:
        return self._act(session_id, "check", selector, name=name)

    def uncheck(self, session_id: str, selector: str, name: Optional[str] = None) -> TestStep:
        return self._act(session_id, "uncheck", selector, name=name)

    def hover(self, session_id: str, selector: str, name: Optional[str] = None) -> TestStep:
        return self._act(session_id, "hover", selector, name=name)

    def wait(self, session_id: str, milliseconds: int) -> TestStep:
        if milliseconds < 0:
            raise ValueError("milliseconds must not be negative")
        session = self._get_active(session_id)
        with session.lock:
            self._collect_tester_events(session)
            session.executor.wait(milliseconds / 1000)
            step = TestStep(id=new_id("step"), action="wait", value=int(milliseconds))
            session.recorder.record(step)
            return step

    def add_assertion(
        self,
        session_id: str,
        kind: str,
        expected: Any = None,
        selector: Optional[str] = None,
        name: Optional[str] = None,
    ) -> TestStep:
        """Record an expectation. Nothing is checked against the live page."""
        assertion = Assertion(kind=kind, expected=expected)
        if kind not in PAGE_ASSERTIONS and not selector:
            raise ValueError(f"'{kind}' assertions need a selector")
        session = self._get_active(session_id)
        with session.lock:
            self._collect_tester_events(session)
            element_id = session.find_element_id(selector) if selector else None
            mapped = session.element_mappings.get(element_id) if element_id else None
            step = TestStep(
                id=new_id("step"),
                action="assert",
                element_id=element_id,
                element_name=mapped.name if mapped else name,
                selector=selector,
                assertion=assertion,
            )
            session.recorder.record(step)
            return step

    def _act(
        self,
        session_id: str,
        action: str,
        selector: str,
        value: Any = None,
        name: Optional[str] = None,
    ) -> TestStep:
        """
        Perform one element action.

        An unmapped selector given a `name` is mapped before the action
        runs, so the step can reference the new descriptor. An action that
        changes the URL also records a navigate step.
        """
        if action not in ELEMENT_ACTIONS:
            raise ValueError(f"Unsupported element action: {action}")
        if not selector:
            raise ValueError("selector must be non-empty")
        session = self._get_active(session_id)
        with session.lock:
            self._collect_tester_events(session)
            element_id = session.find_element_id(selector)
            if element_id is None and name and session.current_page_object is not None:
                try:
                    element_id = self._map(session, selector, name).id
                except ResolutionError as e:
                    logger.warning(f"[SessionManager] Could not map '{name}' ({selector}): {e}")

            url_before = self._current_url(session)
            result: ActionResult = self._driver_call(session, session.executor.execute, action, selector, value)
            self._discard_engine_events(session)
            session.flight_recorder.log_action_result(action, selector, result.success, result.error)
            if not result.success:
                raise ElementNotFoundError(selector)

            mapped = session.element_mappings.get(element_id) if element_id else None
            step = TestStep(
                id=new_id("step"),
                action=action,
                element_id=element_id,
                element_name=mapped.name if mapped else name,
                selector=selector,
                value=value,
                screenshot_path=self._screenshot(session, action),
            )
            session.recorder.record(step)

            url_after = self._current_url(session)
            if url_after and url_before and url_after != url_before:
                self._record_url_change(session, url_after)
            return step

    # -- recording ---------------------------------------------------------------------

    def start_recording(self, session_id: str) -> None:
        session = self._get_active(session_id)
        with session.lock:
            self._collect_tester_events(session)
            session.recorder.arm()
            session.flight_recorder.log_info("Recording started")

    def stop_recording(self, session_id: str) -> str:
        """Disarm, synthesize the recorded steps and return the test source. Steps are then discarded."""
        session = self.get_session(session_id)
        with session.lock:
            if not session.crashed:
                self._collect_tester_events(session)
            session.recorder.disarm()
            steps = session.recorder.steps
            artifacts = self._synthesizer().generate(steps, session.current_page_object)
            session.last_artifacts = artifacts
            session.recorder.clear()
            session.flight_recorder.log_info(f"Recording stopped ({len(steps)} steps)")
            return artifacts.test_source

    def generate_artifacts(self, session_id: str, dialect: Optional[str] = None) -> GeneratedArtifacts:
        """
        Test and page object sources for the session.

        Uses the steps recorded so far, or the last stopped recording when
        nothing is being recorded.
        """
        session = self.get_session(session_id)
        with session.lock:
            steps = session.recorder.steps
            if not steps and session.last_artifacts is not None:
                steps = session.last_artifacts.steps
            return self._synthesizer(dialect).generate(steps, session.current_page_object)

    def _synthesizer(self, dialect: Optional[str] = None) -> CodeSynthesizer:
        return CodeSynthesizer(dialect or self.config.dialect)

    # -- element mapping -----------------------------------------------------------

    def map_element(self, session_id: str, selector: str, name: str) -> ElementDescriptor:
        """Explicitly map `selector` under `name` in the current page object."""
        if not name or not name.strip():
            raise ValueError("name must be non-empty")
        session = self._get_active(session_id)
        with session.lock:
            return self._map(session, selector, name)

    def _map(self, session: Session, selector: str, name: str) -> ElementDescriptor:
        pom = session.current_page_object
        if pom is None:
            raise PageSmithError("No page loaded; navigate first")

        snapshot = self._driver_call(session, session.extractor.describe_selector, selector)
        if snapshot is None:
            raise ElementNotFoundError(selector)
        raw = snapshot.elements[0]
        matches = self._driver_call(session, session.dom.count, selector)

        resolution = ElementExtractor.resolve(raw, snapshot.class_counts)
        if (resolution.is_weak or is_bare_tag(selector)) and matches != 1:
            raise ResolutionError(f"No unique selector for {selector} ({matches} matches)")

        alternatives = [s for s in [resolution.primary, *resolution.alternatives] if s != selector]
        if resolution.is_weak:
            alternatives = [s for s in alternatives if not is_bare_tag(s)]
        text = normalize_text(raw.text)
        element_type = detect_element_type(raw.tag, raw.type, raw.attributes.get("role", ""))
        descriptor = ElementDescriptor(
            id=new_id("element"),
            name=element_name(name) or f"{element_type}_element",
            primary_selector=selector,
            alternative_selectors=alternatives,
            element_type=element_type,
            attributes=raw.attributes,
            text_snapshot=text or None,
            is_stable=matches == 1,
            dom_index=raw.index,
        )
        descriptor = self.store.add_element(pom, descriptor)
        session.element_mappings[descriptor.id] = descriptor
        session.flight_recorder.log_info(f"Mapped {descriptor.name} -> {descriptor.primary_selector}")
        return descriptor

    def verify_stability(self, session_id: str, element_id: str) -> bool:
        """
        Re-check an element's selectors on the live page.

        A working alternative is promoted to primary. Returns False when
        no selector resolves any more.
        """
        session = self._get_active(session_id)
        with session.lock:
            pom = session.current_page_object
            descriptor = session.element_mappings.get(element_id)
            if descriptor is None and pom is not None:
                descriptor = pom.find_element(element_id)
            if descriptor is None:
                raise ElementNotFoundError(element_id)

            owner = pom if pom is not None and pom.find_element(descriptor.id) is descriptor else None
            return self.store.verify_stability(
                descriptor,
                lambda selector: self._driver_call(session, session.dom.count, selector) > 0,
                pom=owner,
            )

    def preview_click(self, session_id: str, selector: str) -> ClickPreview:
        """Guess what clicking `selector` would do without clicking it."""
        session = self._get_active(session_id)
        with session.lock:
            snapshot = self._driver_call(session, session.extractor.describe_selector, selector)
            return click_preview(snapshot.elements[0] if snapshot else None)

    # -- tester events --------------------------------------------------------------

    def _collect_tester_events(self, session: Session) -> None:
        """Record what the tester did in the window since the last session call."""
        if session.state != "navigated":
            return
        for event in self._driver_call(session, session.dom.drain_events):
            step = self._event_step(session, event)
            if step is None:
                continue
            session.flight_recorder.log_info(f"Tester {step.action} on {step.selector}")
            session.recorder.record(step)

        url = self._current_url(session)
        if url and session.current_url and url != session.current_url:
            self._record_url_change(session, url)

    def _discard_engine_events(self, session: Session) -> None:
        """Drop the events the engine's own action just caused."""
        dropped = self._driver_call(session, session.dom.drain_events)
        if dropped:
            logger.debug(f"[SessionManager] Dropped {len(dropped)} events raised by the engine in {session.id}")

    def _event_step(self, session: Session, event: BrowserEvent) -> Optional[TestStep]:
        if event.action not in ELEMENT_ACTIONS:
            logger.debug(f"[SessionManager] Ignoring tester event '{event.action}'")
            return None
        selector = ElementExtractor.resolve(event.element, event.class_counts).primary
        if not selector:
            return None
        element_id = session.find_element_id(selector)
        mapped = session.element_mappings.get(element_id) if element_id else None
        return TestStep(
            id=new_id("step"),
            action=event.action,
            element_id=element_id,
            element_name=mapped.name if mapped else None,
            selector=selector,
            value=event.value if event.action in ("fill", "select") else None,
        )

    def _record_url_change(self, session: Session, url: str) -> None:
        session.current_url = url
        session.flight_recorder.log_navigation(url)
        session.recorder.record(TestStep(id=new_id("step"), action="navigate", value=url))

    # -- helpers -------------------------------------------------------------------

    def _get_active(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session.crashed:
            raise DriverCrashedError(f"Browser for session {session_id} has crashed; end the session and start a new one")
        return session

    def _driver_call(self, session: Session, fn: Callable, *args):
        try:
            return fn(*args)
        except WebDriverException as e:
            self._check_fatal(session, e)
            raise DriverError(e.msg or str(e), cause=e) from e

    def _check_fatal(self, session: Session, error: WebDriverException) -> None:
        if not is_fatal_driver_error(error):
            return
        session.crashed = True
        session.recorder.disarm()
        session.flight_recorder.log_error("Browser crashed", error)
        logger.error(f"[SessionManager] Browser for session {session.id} crashed: {error}")
        raise DriverCrashedError(error.msg or str(error), cause=error) from error

    def _current_url(self, session: Session) -> Optional[str]:
        url = self._driver_call(session, getattr, session.driver, "current_url")
        return url if isinstance(url, str) else None

    def _screenshot(self, session: Session, label: str) -> Optional[str]:
        if not self.config.screenshot_on_action:
            return None
        name = f"{len(session.flight_recorder.entries):03d}_{label}"
        return session.flight_recorder.capture_screenshot(name, session.driver)
