"""Core module - sessions, page object store and recording."""

from pagesmith.core.page_object_store import PageObjectStore
from pagesmith.core.session_manager import Session, SessionManager
from pagesmith.core.driver_factory import create_driver

__all__ = ["PageObjectStore", "Session", "SessionManager", "create_driver"]
