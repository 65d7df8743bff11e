"""Issue lifecycle state and persistence.

This module manages issue progression through lifecycle states:
- planning → awaiting_clarification ↔ awaiting_approval
- → in_progress → reviewing → implemented

Records are persisted to PostgreSQL (or memory in development) with
merge-on-null upserts.
"""

from src.linear_pilot.state.models import (
    VALID_TRANSITIONS,
    WAITING_STATES,
    IssueRecord,
    IssueState,
    WorkspaceInstallation,
    is_terminal_state,
    is_valid_transition,
)
from src.linear_pilot.state.machine import (
    InvalidTransitionError,
    IssueLifecycle,
    PreconditionError,
    accepts_follow_up,
    require,
    should_plan,
)
from src.linear_pilot.state.repository import (
    DatabaseError,
    InMemoryIssueRepository,
    InMemoryWorkspaceRepository,
    IssueRepository,
    PostgresRepository,
    WorkspaceRepository,
)

__all__ = [
    # Models
    "IssueRecord",
    "IssueState",
    "VALID_TRANSITIONS",
    "WAITING_STATES",
    "WorkspaceInstallation",
    "is_terminal_state",
    "is_valid_transition",
    # Lifecycle
    "InvalidTransitionError",
    "IssueLifecycle",
    "PreconditionError",
    "accepts_follow_up",
    "require",
    "should_plan",
    # Repository
    "DatabaseError",
    "InMemoryIssueRepository",
    "InMemoryWorkspaceRepository",
    "IssueRepository",
    "PostgresRepository",
    "WorkspaceRepository",
]
