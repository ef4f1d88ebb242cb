"""
Engine facade for an outer API layer.

Every call returns an OperationResult instead of raising, so a web
route can hand the result straight back as JSON. Engine errors and bad
arguments become `error` strings; anything else is a bug and propagates.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional
import logging

from pagesmith.core.config import EngineConfig, SessionOptions
from pagesmith.core.errors import PageSmithError
from pagesmith.core.page_object_store import PageObjectStore
from pagesmith.core.persistence import JsonDirectoryPersistence
from pagesmith.core.session_manager import SessionManager

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Outcome of one engine operation."""
    success: bool
    payload: Any = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": self.success}
        if self.success:
            result["data"] = self.payload
        else:
            result["error"] = self.error
        return result


class InteractiveEngine:
    """
    Session-id keyed entry points for the authoring workflow.

    Example:
        >>> engine = InteractiveEngine()
        >>> session_id = engine.start_session({"headless": True}).payload["id"]
        >>> engine.navigate(session_id, "https://example.com/login")
        >>> engine.end_session(session_id).success
        True
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        manager: Optional[SessionManager] = None,
    ):
        self.config = config or EngineConfig.from_env()
        if manager is None:
            persistence = JsonDirectoryPersistence(self.config.store_dir) if self.config.store_dir else None
            store = PageObjectStore(persistence)
            store.load()
            manager = SessionManager(store, config=self.config)
        self.manager = manager

    @property
    def store(self) -> PageObjectStore:
        return self.manager.store

    def _run(self, operation: str, fn: Callable[[], Any]) -> OperationResult:
        try:
            return OperationResult(success=True, payload=fn())
        except (PageSmithError, ValueError) as e:
            logger.info(f"[InteractiveEngine] {operation} failed: {e}")
            return OperationResult(success=False, error=str(e))

    def start_session(self, options: Optional[Mapping] = None, session_id: Optional[str] = None) -> OperationResult:
        return self._run(
            "start_session",
            lambda: self.manager.start(SessionOptions.from_dict(options), session_id).to_dict(),
        )

    def navigate(self, session_id: str, url: str) -> OperationResult:
        return self._run("navigate", lambda: self.manager.navigate(session_id, url).to_dict())

    def click(self, session_id: str, selector: str, element_name: Optional[str] = None) -> OperationResult:
        return self._run("click", lambda: self.manager.click(session_id, selector, element_name).to_dict())

    def fill(self, session_id: str, selector: str, value: str, element_name: Optional[str] = None) -> OperationResult:
        return self._run("fill", lambda: self.manager.fill(session_id, selector, value, element_name).to_dict())

    def select(self, session_id: str, selector: str, value: str, element_name: Optional[str] = None) -> OperationResult:
        return self._run("select", lambda: self.manager.select(session_id, selector, value, element_name).to_dict())

    def check(self, session_id: str, selector: str, element_name: Optional[str] = None) -> OperationResult:
        return self._run("check", lambda: self.manager.check(session_id, selector, element_name).to_dict())

    def uncheck(self, session_id: str, selector: str, element_name: Optional[str] = None) -> OperationResult:
        return self._run("uncheck", lambda: self.manager.uncheck(session_id, selector, element_name).to_dict())

    def hover(self, session_id: str, selector: str, element_name: Optional[str] = None) -> OperationResult:
        return self._run("hover", lambda: self.manager.hover(session_id, selector, element_name).to_dict())

    def wait(self, session_id: str, milliseconds: int) -> OperationResult:
        return self._run("wait", lambda: self.manager.wait(session_id, milliseconds).to_dict())

    def add_assertion(
        self,
        session_id: str,
        kind: str,
        expected: Any = None,
        selector: Optional[str] = None,
        element_name: Optional[str] = None,
    ) -> OperationResult:
        return self._run(
            "add_assertion",
            lambda: self.manager.add_assertion(session_id, kind, expected, selector, element_name).to_dict(),
        )

    def start_recording(self, session_id: str) -> OperationResult:
        return self._run("start_recording", lambda: self.manager.start_recording(session_id))

    def stop_recording(self, session_id: str) -> OperationResult:
        def _stop():
            test_code = self.manager.stop_recording(session_id)
            artifacts = self.manager.get_session(session_id).last_artifacts
            return artifacts.to_dict() if artifacts else {"test_code": test_code}

        return self._run("stop_recording", _stop)

    def map_element(self, session_id: str, selector: str, name: str) -> OperationResult:
        return self._run("map_element", lambda: self.manager.map_element(session_id, selector, name).to_dict())

    def verify_stability(self, session_id: str, element_id: str) -> OperationResult:
        def _verify():
            stable = self.manager.verify_stability(session_id, element_id)
            element = self.manager.get_session(session_id).element_mappings.get(element_id)
            return {"is_stable": stable, "element": element.to_dict() if element else None}

        return self._run("verify_stability", _verify)

    def preview_click(self, session_id: str, selector: str) -> OperationResult:
        return self._run("preview_click", lambda: self.manager.preview_click(session_id, selector).to_dict())

    def generate_artifacts(self, session_id: str, dialect: Optional[str] = None) -> OperationResult:
        return self._run(
            "generate_artifacts", lambda: self.manager.generate_artifacts(session_id, dialect).to_dict()
        )

    def get_session(self, session_id: str) -> OperationResult:
        return self._run("get_session", lambda: self.manager.get_session(session_id).to_dict())

    def list_sessions(self) -> OperationResult:
        return self._run("list_sessions", lambda: [s.to_dict() for s in self.manager.active_sessions()])

    def end_session(self, session_id: str) -> OperationResult:
        return self._run("end_session", lambda: {"flight_record": self.manager.end(session_id)})

    def list_page_objects(self) -> OperationResult:
        return self._run("list_page_objects", lambda: [pom.to_dict() for pom in self.store.all()])

    def prune(self, pom_id: str, element_ids=None, older_than=None) -> OperationResult:
        return self._run(
            "prune",
            lambda: {"removed": self.store.prune(pom_id, older_than=older_than, element_ids=element_ids)},
        )

    def shutdown(self) -> int:
        return self.manager.end_all()
