"""
Flight Recorder - Session Activity Log and Screenshots.

Captures what happened in one authoring session (navigations, actions,
warnings, screenshots) and writes it as `flight_record.json` when the
session ends.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from datetime import datetime
import json
import logging
import os
import re

from selenium.common.exceptions import WebDriverException

logger = logging.getLogger(__name__)

_UNSAFE_FILE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass
class LogEntry:
    """A single log entry in the flight record."""
    timestamp: datetime
    step: int
    event_type: str  # 'navigation', 'action', 'info', 'warning', 'error'
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    screenshot_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "step": self.step,
            "event_type": self.event_type,
            "message": self.message,
            "data": self.data,
            "screenshot_path": self.screenshot_path,
        }


class FlightRecorder:
    """
    Records one session's activity.

    Acts as a "Black Box" for the session, capturing:
    - Navigations and the page objects they produced
    - Action results
    - Screenshots after each action

    Example:
        >>> recorder = FlightRecorder(run_name=session.id)
        >>> recorder.log_navigation("https://example.com")
        >>> recorder.capture_screenshot("step_1", driver)
        >>> recorder.save()
    """

    def __init__(
        self,
        output_dir: str = "./pagesmith_artifacts",
        run_name: Optional[str] = None,
    ):
        """
        Initialize the flight recorder.

        Args:
            output_dir: Directory for flight records and screenshots
            run_name: Optional name for this run (the session id)
        """
        self.output_dir = output_dir
        self.run_name = run_name or datetime.now().strftime("%Y%m%d_%H%M%S")
        self.entries: List[LogEntry] = []
        self.metadata: Dict[str, Any] = {
            "start_time": datetime.now().isoformat(),
            "run_name": self.run_name,
        }

        self.run_dir = os.path.join(output_dir, self.run_name)
        self.screenshots_dir = os.path.join(self.run_dir, "screenshots")

    def _append(self, event_type: str, message: str, data: Optional[Dict[str, Any]] = None) -> LogEntry:
        entry = LogEntry(
            timestamp=datetime.now(),
            step=len(self.entries),
            event_type=event_type,
            message=message,
            data=data or {},
        )
        self.entries.append(entry)
        return entry

    def log_navigation(self, url: str, page_object: Optional[str] = None, element_count: int = 0) -> None:
        """Log a navigation event."""
        self._append(
            "navigation",
            f"Navigated to {url}",
            {"url": url, "page_object": page_object, "element_count": element_count},
        )
        self.metadata["url"] = url

    def log_action_result(
        self,
        action: str,
        target: str,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        """Log an action result."""
        self._append(
            "action",
            f"{action} {target}: {'success' if success else 'failed'}",
            {"action": action, "target": target, "success": success, "error": error},
        )

    def log_info(self, message: str) -> None:
        """Log a general information message."""
        self._append("info", message)

    def log_warning(self, message: str) -> None:
        """Log a warning."""
        self._append("warning", message)

    def log_error(self, message: str, exception: Optional[BaseException] = None) -> None:
        """Log an error."""
        self._append("error", message, {"exception": str(exception) if exception else None})

    def capture_screenshot(self, name: str, driver=None) -> Optional[str]:
        """
        Capture a screenshot and attach it to the last entry.

        Returns:
            Path to saved screenshot, or None if it could not be taken
        """
        if driver is None:
            return None
        path = os.path.join(self.screenshots_dir, f"{_UNSAFE_FILE_CHARS.sub('_', name)}.png")
        try:
            os.makedirs(self.screenshots_dir, exist_ok=True)
            if not driver.save_screenshot(path):
                return None
        except (WebDriverException, OSError) as e:
            logger.warning(f"[FlightRecorder] Screenshot '{name}' failed: {e}")
            return None

        if self.entries:
            self.entries[-1].screenshot_path = path
        return path

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": self.metadata,
            "entries": [entry.to_dict() for entry in self.entries],
        }

    def save(self) -> str:
        """
        Write the JSON flight record.

        Returns:
            Path to flight_record.json
        """
        self.metadata["end_time"] = datetime.now().isoformat()
        self.metadata["total_actions"] = len([e for e in self.entries if e.event_type == "action"])

        os.makedirs(self.run_dir, exist_ok=True)
        json_path = os.path.join(self.run_dir, "flight_record.json")
        with open(json_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, default=str)
        return json_path
