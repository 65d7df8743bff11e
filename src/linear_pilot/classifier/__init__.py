"""Text classifiers for agent and user messages.

- needs_clarification: does plan-mode output ask the user questions
- is_approval: does a follow-up message approve the plan
"""

from src.linear_pilot.classifier.approval import is_approval
from src.linear_pilot.classifier.clarification import needs_clarification

__all__ = [
    "is_approval",
    "needs_clarification",
]
