"""
PageSmith - Interactive Page Object and Test Authoring

Drives a live browser session, maps the interactive elements it sees
into accumulating page objects, records what the tester does and turns
the recording into page object classes and runnable tests.
"""

__version__ = "0.1.0"

from pagesmith.api import InteractiveEngine, OperationResult

__all__ = [
    "InteractiveEngine",
    "OperationResult",
    "__version__",
]
