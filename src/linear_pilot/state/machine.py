"""Issue lifecycle state machine.

This module implements IssueLifecycle, the single place where issue
records change state. It validates every write against VALID_TRANSITIONS,
persists through an IssueRepository with merge-on-null semantics, and
emits a state-transition event for observability.

It also holds the decision rules the dispatcher and phases share:
- should_plan: whether an assignment may start planning
- accepts_follow_up: whether a follow-up message should be acted on
- require: precondition checks on stored record fields
"""

import logging
from typing import Dict, List, Optional

from src.linear_pilot.events.emitter import EventEmitter, NullEventEmitter
from src.linear_pilot.events.models import EventType, PilotEvent
from src.linear_pilot.state.models import (
    WAITING_STATES,
    IssueRecord,
    IssueState,
    is_valid_transition,
)
from src.linear_pilot.state.repository import IssueRepository


logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """Raised when a write would move a record along a disallowed edge.

    Attributes:
        issue_id: The issue whose record was being written.
        from_state: The stored state.
        to_state: The attempted target state.
    """

    def __init__(
        self,
        issue_id: str,
        from_state: IssueState,
        to_state: IssueState,
    ):
        self.issue_id = issue_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition for {issue_id} from {from_state.value} to {to_state.value}"
        )


class PreconditionError(Exception):
    """Raised when a phase starts without the record data it needs.

    Attributes:
        issue_id: The issue being processed.
        requirement: Name of the missing record or field.
    """

    def __init__(self, issue_id: str, requirement: str):
        self.issue_id = issue_id
        self.requirement = requirement
        super().__init__(f"Issue {issue_id} is missing {requirement}")


def should_plan(record: Optional[IssueRecord]) -> bool:
    """Assignments only start planning for new issues or issues still planning.

    Replaying an assignment after the issue has moved on is a no-op.
    """
    return record is None or record.state == IssueState.PLANNING


def accepts_follow_up(record: Optional[IssueRecord]) -> bool:
    """Follow-up messages are only acted on while waiting for the user."""
    return record is not None and record.state in WAITING_STATES


def require(record: Optional[IssueRecord], issue_id: str, *fields: str) -> IssueRecord:
    """Return ``record`` if it exists and every named field is set.

    Raises:
        PreconditionError: Naming the first missing requirement.
    """
    if record is None:
        raise PreconditionError(issue_id, "an issue record")
    for field_name in fields:
        if not getattr(record, field_name):
            raise PreconditionError(issue_id, field_name)
    return record


class IssueLifecycle:
    """State machine over persisted issue records.

    Attributes:
        repository: The issue repository for persistence.
        event_emitter: Receives a STATE_TRANSITION event per state change.

    Example:
        >>> lifecycle = IssueLifecycle(InMemoryIssueRepository())
        >>> await lifecycle.record(
        ...     "issue-1", "org-1", IssueState.PLANNING, agent_session_id="s-1"
        ... )
        >>> await lifecycle.record("issue-1", "org-1", IssueState.AWAITING_APPROVAL)
    """

    def __init__(
        self,
        repository: IssueRepository,
        event_emitter: Optional[EventEmitter] = None,
    ):
        self.repository = repository
        self.event_emitter = event_emitter or NullEventEmitter()

    async def get(self, issue_id: str) -> Optional[IssueRecord]:
        return await self.repository.get(issue_id)

    async def record(
        self,
        issue_id: str,
        organization_id: str,
        state: IssueState,
        repo_path: Optional[str] = None,
        agent_session_id: Optional[str] = None,
        plan_comment_id: Optional[str] = None,
        pr_url: Optional[str] = None,
    ) -> IssueRecord:
        """Write ``state`` (and any non-null fields) for an issue.

        A missing record may be created in any state; the upsert that
        creates it is the first write the issue sees.

        Raises:
            InvalidTransitionError: If the stored state cannot move to ``state``.
        """
        existing = await self.repository.get(issue_id)
        from_state = existing.state if existing is not None else None

        if from_state is not None and not is_valid_transition(from_state, state):
            logger.warning(
                "Rejected invalid transition",
                extra={
                    "issue_id": issue_id,
                    "from_state": from_state.value,
                    "to_state": state.value,
                },
            )
            raise InvalidTransitionError(issue_id, from_state, state)

        updated = await self.repository.upsert(
            issue_id,
            organization_id,
            state,
            repo_path=repo_path,
            agent_session_id=agent_session_id,
            plan_comment_id=plan_comment_id,
            pr_url=pr_url,
        )

        if from_state != state:
            logger.info(
                "Issue state changed",
                extra={
                    "issue_id": issue_id,
                    "from_state": from_state.value if from_state else None,
                    "to_state": state.value,
                },
            )
            await self._safe_emit(
                PilotEvent(
                    event_type=EventType.STATE_TRANSITION,
                    subject=issue_id,
                    organization_id=organization_id,
                    details={
                        "from_state": from_state.value if from_state else None,
                        "to_state": state.value,
                    },
                )
            )

        return updated

    async def list_resumable(self) -> List[IssueRecord]:
        """Records whose work was interrupted mid-flight (in_progress, reviewing)."""
        in_progress = await self.repository.list_by_state(IssueState.IN_PROGRESS)
        reviewing = await self.repository.list_by_state(IssueState.REVIEWING)
        return in_progress + reviewing

    async def count_by_state(self) -> Dict[str, int]:
        return {
            state.value: len(await self.repository.list_by_state(state))
            for state in IssueState
        }

    async def _safe_emit(self, event: PilotEvent) -> None:
        try:
            await self.event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit lifecycle event",
                extra={"event_type": event.event_type.value, "subject": event.subject},
            )
