"""Issue lifecycle models.

This module defines the data models for the issue lifecycle, including:
- IssueState: Enum of all lifecycle states
- IssueRecord: Persisted record for one delegated Linear issue
- WorkspaceInstallation: OAuth installation for one Linear organization
- VALID_TRANSITIONS: Map defining allowed state transitions

The models use Pydantic for validation, consistent with the webhook and
event models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, Field


class IssueState(str, Enum):
    """Lifecycle states of a delegated issue.

    State Flow:
        planning → [awaiting_clarification ↔ awaiting_approval] → in_progress
        → reviewing → implemented

    Attributes:
        PLANNING: Plan is being generated (or checkout failed and is retryable).
        AWAITING_CLARIFICATION: Draft plan posted with open questions.
        AWAITING_APPROVAL: Checklist plan posted; waiting for approval.
        IN_PROGRESS: Steps are being implemented on the feature branch.
        REVIEWING: Pull request opened; self-review pending or running.
        IMPLEMENTED: Self-review done and pull request handed to humans.
    """

    PLANNING = "planning"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    AWAITING_APPROVAL = "awaiting_approval"
    IN_PROGRESS = "in_progress"
    REVIEWING = "reviewing"
    IMPLEMENTED = "implemented"


WAITING_STATES: FrozenSet[IssueState] = frozenset(
    {IssueState.AWAITING_CLARIFICATION, IssueState.AWAITING_APPROVAL}
)


class IssueRecord(BaseModel):
    """Persisted orchestration record for one Linear issue.

    Optional fields follow merge-on-null semantics in the repository: an
    upsert that passes None for a field keeps the stored value.

    Attributes:
        issue_id: Linear issue id (primary key).
        organization_id: Linear organization that owns the issue.
        state: Current lifecycle state.
        repo_path: Local checkout used for this issue.
        agent_session_id: Agent session used for conversational replies.
        plan_comment_id: Linear comment holding the checklist plan.
        pr_url: URL of the pull request opened for this issue.
        created_at: When the record was first written (UTC).
        updated_at: When the record was last written (UTC).
    """

    issue_id: str = Field(
        ...,
        min_length=1,
        description="Linear issue id",
    )

    organization_id: str = Field(
        ...,
        description="Linear organization id",
    )

    state: IssueState = Field(
        default=IssueState.PLANNING,
        description="Current lifecycle state",
    )

    repo_path: Optional[str] = Field(
        default=None,
        description="Filesystem path of the checkout used for this issue",
    )

    agent_session_id: Optional[str] = Field(
        default=None,
        description="Linear agent session used for thread messages",
    )

    plan_comment_id: Optional[str] = Field(
        default=None,
        description="Linear comment holding the checklist plan",
    )

    pr_url: Optional[str] = Field(
        default=None,
        description="URL of the pull request opened for this issue",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the record was created (UTC)",
    )

    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the record was last updated (UTC)",
    )


class WorkspaceInstallation(BaseModel):
    """OAuth installation of the agent in a Linear organization."""

    organization_id: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)
    installed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


# Valid state transitions map
#
# Every non-terminal state may transition to itself so that a retried
# phase re-writing the same state is accepted.
VALID_TRANSITIONS: Dict[IssueState, FrozenSet[IssueState]] = {
    # PLANNING: plan produced, with or without open questions
    IssueState.PLANNING: frozenset(
        {
            IssueState.PLANNING,
            IssueState.AWAITING_CLARIFICATION,
            IssueState.AWAITING_APPROVAL,
        }
    ),
    # AWAITING_CLARIFICATION: re-plan after answers, or approve straight away
    IssueState.AWAITING_CLARIFICATION: frozenset(
        {
            IssueState.AWAITING_CLARIFICATION,
            IssueState.AWAITING_APPROVAL,
            IssueState.IN_PROGRESS,
        }
    ),
    # AWAITING_APPROVAL: feedback re-plans, approval starts work
    IssueState.AWAITING_APPROVAL: frozenset(
        {
            IssueState.AWAITING_CLARIFICATION,
            IssueState.AWAITING_APPROVAL,
            IssueState.IN_PROGRESS,
        }
    ),
    # IN_PROGRESS: pull request opened
    IssueState.IN_PROGRESS: frozenset(
        {
            IssueState.IN_PROGRESS,
            IssueState.REVIEWING,
        }
    ),
    # REVIEWING: self-review finished
    IssueState.REVIEWING: frozenset(
        {
            IssueState.REVIEWING,
            IssueState.IMPLEMENTED,
        }
    ),
    # IMPLEMENTED: terminal
    IssueState.IMPLEMENTED: frozenset(),
}


def is_valid_transition(from_state: IssueState, to_state: IssueState) -> bool:
    """Check if a state transition is valid.

    Example:
        >>> is_valid_transition(IssueState.PLANNING, IssueState.AWAITING_APPROVAL)
        True
        >>> is_valid_transition(IssueState.IMPLEMENTED, IssueState.PLANNING)
        False
    """
    return to_state in VALID_TRANSITIONS.get(from_state, frozenset())


def is_terminal_state(state: IssueState) -> bool:
    """Check if a state has no outgoing transitions."""
    return len(VALID_TRANSITIONS.get(state, frozenset())) == 0
