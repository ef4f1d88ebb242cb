"""Action Layer - element interactions."""

from pagesmith.layers.action.executor import ActionExecutor, ActionResult

__all__ = ["ActionExecutor", "ActionResult"]
