"""
Recorder - turns the session's actions into an ordered list of TestSteps.

The session manager calls record() directly after each action; nothing
is broadcast. Steps are only kept while the recorder is armed.
"""

from datetime import timedelta
from typing import List
import logging
import threading

from pagesmith.core.models import TestStep

logger = logging.getLogger(__name__)


class Recorder:
    """
    Armed/disarmed step collector.

    Example:
        >>> recorder = Recorder()
        >>> recorder.arm()
        >>> recorder.record(step)
        True
        >>> recorder.disarm()
    """

    def __init__(self):
        self._armed = False
        self._steps: List[TestStep] = []
        self._lock = threading.Lock()

    @property
    def is_armed(self) -> bool:
        return self._armed

    def arm(self) -> None:
        """Start a fresh recording window. Previously recorded steps are dropped."""
        with self._lock:
            self._steps = []
            self._armed = True

    def disarm(self) -> None:
        with self._lock:
            self._armed = False

    def record(self, step: TestStep) -> bool:
        """
        Append `step` if armed. Returns False (and drops the step) otherwise.

        A timestamp equal to or earlier than the previous step's is pushed
        one microsecond past it, so steps stay strictly ordered.
        """
        with self._lock:
            if not self._armed:
                return False
            if self._steps and step.timestamp <= self._steps[-1].timestamp:
                step.timestamp = self._steps[-1].timestamp + timedelta(microseconds=1)
            self._steps.append(step)
            logger.debug(f"[Recorder] Step {len(self._steps)}: {step.action} {step.element_name or step.selector or ''}")
            return True

    @property
    def steps(self) -> List[TestStep]:
        with self._lock:
            return list(self._steps)

    def clear(self) -> None:
        with self._lock:
            self._steps = []

    def __len__(self) -> int:
        return len(self._steps)
