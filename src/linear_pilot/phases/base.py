"""Shared plumbing for job phases.

A phase is a coroutine run as one queued job. Every phase installs a
boundary catch: precondition failures are logged loudly and collaborator
failures are logged, reported to the user and emitted as ERROR events.
Nothing raised inside a phase reaches the work queue.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Optional

from src.linear_pilot.events.emitter import EventEmitter, NullEventEmitter
from src.linear_pilot.events.models import EventType, PilotEvent
from src.linear_pilot.git.repository import GitRepository
from src.linear_pilot.github.client import GitHubClient
from src.linear_pilot.jobs.locks import EntityLockTable
from src.linear_pilot.jobs.queue import WorkQueue
from src.linear_pilot.linear.client import LinearClient
from src.linear_pilot.runner.cursor import CursorRunner
from src.linear_pilot.state.machine import IssueLifecycle, PreconditionError

logger = logging.getLogger(__name__)

LinearClientFactory = Callable[[str], LinearClient]

STATUS_IN_PROGRESS = "In Progress"
STATUS_IN_REVIEW = "In Review"


def branch_name(prefix: str, identifier: str) -> str:
    """Deterministic feature branch for an issue, e.g. ``linear-pilot/eng-42``."""
    return f"{prefix}/{identifier.lower()}"


@dataclass
class PhaseServices:
    """Collaborators shared by all phases.

    Attributes:
        lifecycle: Issue state machine over the record store.
        queue: Work queue for enqueuing follow-on phases.
        locks: Per-PR lock table.
        git: Source-control adapter.
        github: GitHub REST client.
        runner: Coding-agent CLI runner.
        linear_factory: Builds a Linear client for a workspace access token.
        event_emitter: Observability sink.
        branch_prefix: Prefix for issue feature branches.
    """

    lifecycle: IssueLifecycle
    queue: WorkQueue
    locks: EntityLockTable
    git: GitRepository
    github: GitHubClient
    runner: CursorRunner
    linear_factory: LinearClientFactory
    event_emitter: EventEmitter = field(default_factory=NullEventEmitter)
    branch_prefix: str = "linear-pilot"

    @asynccontextmanager
    async def linear(self, access_token: str) -> AsyncIterator[LinearClient]:
        client = self.linear_factory(access_token)
        try:
            yield client
        finally:
            await client.close()


class Phase:
    """Base class with the boundary-catch helpers every phase uses."""

    name = "phase"

    def __init__(self, services: PhaseServices):
        self.services = services

    async def _post(
        self,
        linear: LinearClient,
        agent_session_id: Optional[str],
        body: str,
        kind: str = "response",
    ) -> None:
        """Post to the agent session thread, logging instead of raising."""
        if not agent_session_id:
            return
        try:
            await linear.post_agent_activity(agent_session_id, body, kind=kind)
        except Exception:
            logger.warning(
                "Failed to post agent activity",
                exc_info=True,
                extra={"phase": self.name, "agent_session_id": agent_session_id},
            )

    async def _set_status(self, linear: LinearClient, issue_id: str, status_name: str) -> None:
        try:
            await linear.update_issue_status(issue_id, status_name)
        except Exception:
            logger.warning(
                "Failed to update Linear status",
                exc_info=True,
                extra={"phase": self.name, "issue_id": issue_id, "status": status_name},
            )

    async def _fail(
        self,
        subject: str,
        organization_id: Optional[str],
        exc: BaseException,
    ) -> None:
        """Log a collaborator failure and emit an ERROR event."""
        logger.error(
            "Phase failed",
            exc_info=exc,
            extra={"phase": self.name, "subject": subject},
        )
        await self._emit(
            EventType.ERROR,
            subject,
            organization_id,
            {
                "phase": self.name,
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            },
        )

    async def _precondition_failed(
        self,
        exc: PreconditionError,
        organization_id: Optional[str],
    ) -> None:
        """Record data the phase needs is missing; the issue stays parked."""
        logger.error(
            "Phase precondition failed: %s",
            exc,
            extra={
                "phase": self.name,
                "issue_id": exc.issue_id,
                "requirement": exc.requirement,
            },
        )
        await self._emit(
            EventType.ERROR,
            exc.issue_id,
            organization_id,
            {
                "phase": self.name,
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            },
        )

    async def _complete(
        self,
        subject: str,
        organization_id: Optional[str],
        outcome: str,
        **details: Any,
    ) -> None:
        await self._emit(
            EventType.COMPLETION,
            subject,
            organization_id,
            {"phase": self.name, "outcome": outcome, **details},
        )

    async def _emit(
        self,
        event_type: EventType,
        subject: str,
        organization_id: Optional[str],
        details: Dict[str, Any],
    ) -> None:
        try:
            await self.services.event_emitter.emit(
                PilotEvent(
                    event_type=event_type,
                    subject=subject,
                    organization_id=organization_id,
                    details=details,
                )
            )
        except Exception:
            logger.exception(
                "Failed to emit phase event",
                extra={"event_type": event_type.value, "subject": subject},
            )
