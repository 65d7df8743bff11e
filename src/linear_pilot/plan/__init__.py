"""Plan document protocol.

Parses, edits and renders the checklist that tracks implementation progress.
"""

from src.linear_pilot.plan.document import (
    PlanDocument,
    PlanStep,
    StepStatus,
    checklist_from_plan,
    mark_done,
    parse_done,
    parse_pending,
)

__all__ = [
    "PlanDocument",
    "PlanStep",
    "StepStatus",
    "checklist_from_plan",
    "mark_done",
    "parse_done",
    "parse_pending",
]
