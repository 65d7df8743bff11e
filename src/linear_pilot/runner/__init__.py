"""Cursor agent CLI runner."""

from src.linear_pilot.runner.cursor import AgentRunError, CursorRunner, PlanResult

__all__ = [
    "AgentRunError",
    "CursorRunner",
    "PlanResult",
]
