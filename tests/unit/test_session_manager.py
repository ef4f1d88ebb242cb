import json
import os
import threading

import pytest
from selenium.common.exceptions import InvalidSessionIdException, WebDriverException

from pagesmith.core.config import EngineConfig, SessionOptions
from pagesmith.core.errors import (
    DriverCrashedError,
    DriverError,
    ElementNotFoundError,
    NavigationError,
    PageSmithError,
    ResolutionError,
    SessionNotFoundError,
)
from pagesmith.core.session_manager import SessionManager, element_name, is_fatal_driver_error

from conftest import DASHBOARD_URL, LOGIN_URL, FakeDOM, FakeDriver, FakePage, dashboard_page, login_page, node


@pytest.fixture
def session(manager):
    return manager.start(SessionOptions(headless=True))


@pytest.fixture
def on_login(manager, session):
    manager.navigate(session.id, LOGIN_URL)
    return session


def test_start_and_get(manager, session):
    assert manager.get_session(session.id) is session
    assert session.state == "created"
    assert manager.active_sessions() == [session]


def test_duplicate_session_id_is_rejected(manager):
    manager.start(session_id="s1")
    with pytest.raises(ValueError):
        manager.start(session_id="s1")


def test_driver_start_failure(store, config):
    def broken(options):
        raise WebDriverException("cannot find Chrome binary")

    manager = SessionManager(store, driver_factory=broken, config=config, register_atexit=False)
    with pytest.raises(DriverError, match="Chrome binary"):
        manager.start()
    assert manager.active_sessions() == []


def test_navigate_builds_page_object(manager, on_login):
    pom = on_login.current_page_object
    assert pom.name == "LoginPage"
    assert pom.element_names() == ["email_address", "password", "remember", "log_in", "dashboard"]
    assert on_login.state == "navigated"
    assert on_login.current_url == LOGIN_URL
    assert set(on_login.element_mappings) == {e.id for e in pom.elements}


def test_revisit_merges_into_same_page_object(manager, on_login):
    first = on_login.current_page_object
    manager.navigate(on_login.id, LOGIN_URL)
    assert on_login.current_page_object is first
    assert first.version == 2
    assert len(first.elements) == 5


def test_failed_navigation_keeps_previous_state(manager, on_login):
    pom = on_login.current_page_object
    with pytest.raises(NavigationError):
        manager.navigate(on_login.id, "https://app.test/missing")
    assert on_login.current_url == LOGIN_URL
    assert on_login.current_page_object is pom
    assert not on_login.crashed


def test_unknown_session(manager):
    with pytest.raises(SessionNotFoundError):
        manager.navigate("session-nope", LOGIN_URL)


def test_actions_outside_recording_are_not_recorded(manager, on_login):
    step = manager.click(on_login.id, "#login")
    assert step.action == "click"
    assert on_login.recorded_steps == []


def test_recorded_steps_reference_mapped_elements(manager, on_login):
    manager.start_recording(on_login.id)
    manager.fill(on_login.id, "#email", "a@b.c")
    manager.check(on_login.id, "#remember")
    steps = on_login.recorded_steps

    assert [s.action for s in steps] == ["fill", "check"]
    assert steps[0].element_name == "email_address"
    assert steps[0].value == "a@b.c"
    assert steps[1].element_id == on_login.current_page_object.elements[2].id
    assert on_login.driver.page.nodes[3].selected is True


def test_click_on_unmapped_selector_with_name_maps_first(manager, on_login, driver):
    manager.start_recording(on_login.id)
    step = manager.click(on_login.id, ".cta", name="submit")

    assert step.action == "click"
    assert step.element_name == "submit"
    mapped = on_login.element_mappings[step.element_id]
    assert mapped.name == "submit"
    assert mapped.primary_selector == ".cta"
    assert mapped.alternative_selectors == ['text="Send"']
    assert driver.page.nodes[6].clicks == 1


def test_missing_element(manager, on_login):
    with pytest.raises(ElementNotFoundError):
        manager.click(on_login.id, "#nope")


def test_click_that_changes_url_records_navigate(manager, on_login):
    manager.start_recording(on_login.id)
    manager.click(on_login.id, 'text="Dashboard"')
    steps = on_login.recorded_steps
    assert [s.action for s in steps] == ["click", "navigate"]
    assert steps[1].value == DASHBOARD_URL
    assert on_login.current_url == DASHBOARD_URL


def test_wait_and_assertions(manager, on_login):
    manager.start_recording(on_login.id)
    manager.wait(on_login.id, 0)
    step = manager.add_assertion(on_login.id, "visible", selector="#login")
    manager.add_assertion(on_login.id, "title", "Sign in")

    assert step.element_name == "log_in"
    assert [s.action for s in on_login.recorded_steps] == ["wait", "assert", "assert"]
    with pytest.raises(ValueError):
        manager.wait(on_login.id, -1)
    with pytest.raises(ValueError):
        manager.add_assertion(on_login.id, "text", "x")
    with pytest.raises(ValueError):
        manager.add_assertion(on_login.id, "color", "red", selector="#login")


def test_stop_recording_returns_source_and_clears(manager, on_login):
    manager.start_recording(on_login.id)
    manager.fill(on_login.id, "#email", "a@b.c")
    manager.click(on_login.id, "#login")
    source = manager.stop_recording(on_login.id)

    assert "await loginPage.fillEmailAddress('a@b.c');" in source
    assert "await loginPage.clickLogIn();" in source
    assert on_login.recorded_steps == []
    assert not on_login.is_recording
    assert len(manager.generate_artifacts(on_login.id).steps) == 2


def test_generate_artifacts_in_other_dialect(manager, on_login):
    manager.start_recording(on_login.id)
    manager.click(on_login.id, "#login")
    artifacts = manager.generate_artifacts(on_login.id, "pytest-selenium")
    assert artifacts.page_object_file_name == "pages/login_page.py"
    assert "login_page.click_log_in()" in artifacts.test_source


def test_map_element(manager, on_login):
    descriptor = manager.map_element(on_login.id, "h1", "Page Heading")
    assert descriptor.name == "page_heading"
    assert descriptor.primary_selector == "h1"
    assert descriptor.is_stable is True
    assert descriptor.text_snapshot == "Welcome back"
    assert on_login.current_page_object.find_element(descriptor.id) is descriptor


def test_map_keeps_identifier_names(manager, on_login):
    assert manager.map_element(on_login.id, ".cta", "sendButton").name == "sendButton"


def test_map_ambiguous_bare_tag_fails(manager, on_login):
    with pytest.raises(ResolutionError):
        manager.map_element(on_login.id, "input", "field")


def test_map_requires_page_and_name(manager, session):
    with pytest.raises(PageSmithError, match="navigate first"):
        manager.map_element(session.id, "#email", "email")
    with pytest.raises(ValueError):
        manager.map_element(session.id, "#email", "  ")


def test_verify_stability_promotes_alternative(manager, on_login, driver):
    dashboard = on_login.current_page_object.elements[4]
    assert dashboard.primary_selector == 'text="Dashboard"'

    driver.page.nodes[5].text = "Home"
    assert manager.verify_stability(on_login.id, dashboard.id) is True
    assert dashboard.primary_selector == ".nav-link"


def test_verify_stability_all_gone(manager, on_login, driver):
    dashboard = on_login.current_page_object.elements[4]
    driver.page.nodes.pop(5)
    assert manager.verify_stability(on_login.id, dashboard.id) is False
    with pytest.raises(ElementNotFoundError):
        manager.verify_stability(on_login.id, "element-unknown")


def test_preview_click(manager, on_login):
    preview = manager.preview_click(on_login.id, 'text="Dashboard"')
    assert preview.will_navigate is True
    assert preview.target_url == DASHBOARD_URL
    assert manager.preview_click(on_login.id, "#nope").will_navigate is False


def test_crash_marks_session_and_blocks_further_calls(manager, on_login, driver):
    driver.crash()
    with pytest.raises(DriverCrashedError):
        manager.click(on_login.id, "#login")
    assert on_login.crashed
    with pytest.raises(DriverCrashedError):
        manager.navigate(on_login.id, LOGIN_URL)
    manager.end(on_login.id)
    assert driver.quit_count == 1


def test_end_writes_flight_record_and_second_end_fails(manager, on_login, driver):
    path = manager.end(on_login.id)
    with open(path, encoding="utf-8") as f:
        record = json.load(f)
    assert record["metadata"]["run_name"] == on_login.id
    assert driver.quit_count == 1
    with pytest.raises(SessionNotFoundError):
        manager.end(on_login.id)


def test_end_survives_quit_failure(manager, session, driver):
    driver.quit_error = WebDriverException("already gone")
    manager.end(session.id)
    assert manager.active_sessions() == []


def test_screenshots_follow_config(store, tmp_path):
    driver = FakeDriver([login_page()])
    config = EngineConfig(artifacts_dir=str(tmp_path), screenshot_on_action=False)
    manager = SessionManager(store, driver_factory=lambda o: driver, config=config,
                             dom_factory=FakeDOM, register_atexit=False)
    session = manager.start()
    manager.navigate(session.id, LOGIN_URL)
    assert manager.click(session.id, "#login").screenshot_path is None
    assert driver.screenshots == []
    manager.end_all()


def test_screenshot_taken_per_action(manager, on_login, driver):
    step = manager.click(on_login.id, "#login")
    assert step.screenshot_path and os.path.exists(step.screenshot_path)


def test_sessions_on_separate_threads_are_independent(store, config):
    drivers = []

    def factory(options):
        drivers.append(FakeDriver([login_page(), dashboard_page()]))
        return drivers[-1]

    manager = SessionManager(store, driver_factory=factory, config=config,
                             dom_factory=FakeDOM, register_atexit=False)
    errors = []

    def run():
        try:
            session = manager.start()
            manager.navigate(session.id, LOGIN_URL)
            manager.start_recording(session.id)
            manager.fill(session.id, "#email", session.id)
            assert len(session.recorded_steps) == 1
            manager.end(session.id)
        except Exception as e:  # surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(store.all()) == 1
    assert store.all()[0].version == 4


def test_is_fatal_driver_error():
    assert is_fatal_driver_error(InvalidSessionIdException("x"))
    assert is_fatal_driver_error(WebDriverException("disconnected: not connected to DevTools"))
    assert not is_fatal_driver_error(WebDriverException("element click intercepted"))


def test_element_name():
    assert element_name("loginButton") == "loginButton"
    assert element_name("Log in button") == "log_in_button"
    assert element_name("  submit ") == "submit"


def test_concurrent_start_with_same_id_launches_one_browser(store, config):
    entered, release = threading.Event(), threading.Event()
    launched = []

    def slow_factory(options):
        browser = FakeDriver([login_page()])
        launched.append(browser)
        entered.set()
        release.wait(5)
        return browser

    manager = SessionManager(
        store, driver_factory=slow_factory, config=config, dom_factory=FakeDOM, register_atexit=False
    )
    first = threading.Thread(target=manager.start, kwargs={"session_id": "x"})
    first.start()
    assert entered.wait(5)
    with pytest.raises(ValueError):
        manager.start(session_id="x")
    release.set()
    first.join()

    assert len(launched) == 1
    assert [s.id for s in manager.active_sessions()] == ["x"]
    manager.end_all()


def test_driver_is_quit_when_session_setup_fails(store, config, driver):
    def broken_dom(browser):
        raise RuntimeError("no DOM access")

    manager = SessionManager(
        store, driver_factory=lambda options: driver, config=config, dom_factory=broken_dom, register_atexit=False
    )
    with pytest.raises(RuntimeError):
        manager.start(session_id="x")
    assert driver.quit_count == 1
    assert manager.active_sessions() == []

    manager.dom_factory = FakeDOM
    assert manager.start(session_id="x").id == "x"
    manager.end_all()


def test_mapped_camel_case_name_does_not_collide_with_extracted_name(manager, on_login):
    descriptor = manager.map_element(on_login.id, ".cta", "logIn")
    assert descriptor.name == "logIn_2"

    page_object = manager.generate_artifacts(on_login.id).page_object_source
    assert page_object.count("async clickLogIn(): Promise<void> {") == 1
    assert page_object.count("private logIn: Locator;") == 1
    assert "async clickLogIn2(): Promise<void> {" in page_object


def test_digit_leading_mapped_name_gives_valid_python(manager, on_login):
    descriptor = manager.map_element(on_login.id, ".cta", "2fa code")
    assert descriptor.name == "el_2fa_code"

    page_object = manager.generate_artifacts(on_login.id, "pytest-selenium").page_object_source
    assert "    EL_2FA_CODE = (By.CSS_SELECTOR, '.cta')" in page_object
    compile(page_object, "login_page.py", "exec")


def test_mapping_bare_tag_reuses_extracted_element(manager, session, driver):
    driver.add_page(FakePage(
        url="https://app.test/plain",
        title="Plain",
        nodes=[node("h1", "Title"), node("p", "Intro"), node("button")],
    ))
    pom = manager.navigate(session.id, "https://app.test/plain")
    assert [(e.primary_selector, e.dom_index) for e in pom.elements] == [("button", 0)]

    descriptor = manager.map_element(session.id, "button", "go")
    assert descriptor is pom.elements[0]
    assert len(pom.elements) == 1


def test_tester_actions_in_the_window_are_recorded(manager, on_login, driver):
    manager.start_recording(on_login.id)
    driver.find_elements("css selector", "#email")[0].send_keys("me@x.test")
    driver.find_elements("css selector", "#remember")[0].click()
    manager.click(on_login.id, "#login")

    steps = on_login.recorded_steps
    assert [(s.action, s.selector) for s in steps] == [("fill", "#email"), ("check", "#remember"), ("click", "#login")]
    assert steps[0].value == "me@x.test"
    assert steps[0].element_name == "email_address"
    assert steps[1].value is None


def test_tester_navigation_is_recorded(manager, on_login, driver):
    manager.start_recording(on_login.id)
    driver.find_elements("css selector", ".nav-link")[0].click()
    manager.wait(on_login.id, 0)

    steps = on_login.recorded_steps
    assert [(s.action, s.selector or s.value) for s in steps] == [
        ("click", 'text="Dashboard"'),
        ("navigate", DASHBOARD_URL),
        ("wait", 0),
    ]
    assert steps[0].element_name == "dashboard"
    assert on_login.current_url == DASHBOARD_URL


def test_engine_actions_are_not_recorded_twice(manager, on_login, driver):
    manager.start_recording(on_login.id)
    manager.fill(on_login.id, "#email", "a@b.c")
    manager.check(on_login.id, "#remember")
    manager.click(on_login.id, "#login")

    assert [s.action for s in on_login.recorded_steps] == ["fill", "check", "click"]
    assert driver.pending_events == []


def test_tester_events_before_recording_are_dropped(manager, on_login, driver):
    driver.find_elements("css selector", "#login")[0].click()
    manager.start_recording(on_login.id)
    manager.wait(on_login.id, 0)
    assert [s.action for s in on_login.recorded_steps] == ["wait"]


def test_tester_events_are_flushed_by_stop_recording(manager, on_login, driver):
    manager.start_recording(on_login.id)
    driver.find_elements("css selector", "#login")[0].click()
    test = manager.stop_recording(on_login.id)
    assert "clickLogIn()" in test
