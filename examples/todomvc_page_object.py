#!/usr/bin/env python3
"""
TodoMVC Page Object Example
===========================

Maps the TodoMVC demo, records a short interaction and prints the
generated Playwright page object and test.

Usage:
    python examples/todomvc_page_object.py
"""

from pagesmith import InteractiveEngine

URL = "https://demo.playwright.dev/todomvc/"


def main():
    print("=" * 60)
    print("PageSmith - TodoMVC Page Object Example")
    print("=" * 60)
    print()

    engine = InteractiveEngine()
    started = engine.start_session({"headless": False, "viewport": {"width": 1280, "height": 800}})
    if not started.success:
        print(f"Could not start browser: {started.error}")
        return
    session_id = started.payload["id"]

    try:
        page = engine.navigate(session_id, URL)
        if not page.success:
            print(f"Navigation failed: {page.error}")
            return

        print(f"Mapped {page.payload['name']} with {len(page.payload['elements'])} elements:")
        for element in page.payload["elements"]:
            print(f"  {element['name']:<30} {element['primary_selector']}")
        print()

        engine.start_recording(session_id)
        engine.fill(session_id, ".new-todo", "Buy milk", element_name="newTodo")
        engine.add_assertion(session_id, "value", "Buy milk", selector=".new-todo")
        result = engine.stop_recording(session_id)

        if result.success:
            print(f"--- {result.payload['page_object_file_name']} ---")
            print(result.payload["page_object_code"])
            print(f"--- {result.payload['test_file_name']} ---")
            print(result.payload["test_code"])
        else:
            print(f"Recording failed: {result.error}")

    finally:
        ended = engine.end_session(session_id)
        if ended.success:
            print(f"Flight record: {ended.payload['flight_record']}")


if __name__ == "__main__":
    main()
