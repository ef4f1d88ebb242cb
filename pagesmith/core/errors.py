"""
Engine errors.

Every failure the engine surfaces to its caller derives from
PageSmithError, so the API layer can translate them into an
error string without catching programming errors by accident.
"""

from typing import Optional


class PageSmithError(Exception):
    """Base class for all engine errors."""


class NotFoundError(PageSmithError):
    """An addressed resource does not exist."""


class SessionNotFoundError(NotFoundError):
    """Unknown session id, or the session has already ended."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class ElementNotFoundError(NotFoundError):
    """A selector matched nothing, or an element id is unknown."""

    def __init__(self, target: str):
        super().__init__(f"Element not found: {target}")
        self.target = target


class PageObjectNotFoundError(NotFoundError):
    """Unknown page object id."""

    def __init__(self, pom_id: str):
        super().__init__(f"Page object not found: {pom_id}")
        self.pom_id = pom_id


class ResolutionError(PageSmithError):
    """No usable selector could be produced for an explicitly mapped element."""


class DriverError(PageSmithError):
    """The browser driver reported an error. The message is the driver's own."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class NavigationError(DriverError):
    """Navigation failed (timeout, network error). The session keeps its prior state."""


class DriverCrashedError(DriverError):
    """The browser engine is gone. The session must be ended and a new one started."""
