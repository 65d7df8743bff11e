"""Job phases run from the work queue.

- PlanningPhase: initial plan for a delegated issue
- ClarificationPhase: user reply while waiting for clarification or approval
- ImplementationPhase: step-by-step implementation and pull request
- SelfReviewPhase: agent review pass and handoff
- PullRequestCommentPhase: ``@handle`` instructions on pull requests
"""

from src.linear_pilot.phases.base import Phase, PhaseServices, branch_name
from src.linear_pilot.phases.implementation import ImplementationPhase
from src.linear_pilot.phases.planning import ClarificationPhase, PlanningPhase
from src.linear_pilot.phases.pr_comment import PullRequestCommentPhase
from src.linear_pilot.phases.review import SelfReviewPhase

__all__ = [
    "ClarificationPhase",
    "ImplementationPhase",
    "Phase",
    "PhaseServices",
    "PlanningPhase",
    "PullRequestCommentPhase",
    "SelfReviewPhase",
    "branch_name",
]
