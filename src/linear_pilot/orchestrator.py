"""Dispatcher connecting normalized webhook events to queued phase jobs.

Receives events from the webhook routes and turns each into at most one
job on the work queue:

- AssignmentEvent → PlanningPhase (only for new issues or issues still planning)
- FollowUpEvent → ClarificationPhase (only while awaiting clarification/approval)
- PullRequestTriggerEvent → PullRequestCommentPhase

The dispatcher never writes issue records; phases own every state change.
It resolves the Linear credentials for the event's organization, posts a
best-effort acknowledgement and returns without waiting for the job.
"""

import logging
from functools import partial
from typing import Optional, Union

from src.linear_pilot.phases import messages
from src.linear_pilot.phases.base import PhaseServices
from src.linear_pilot.phases.implementation import ImplementationPhase
from src.linear_pilot.phases.planning import ClarificationPhase, PlanningPhase
from src.linear_pilot.phases.pr_comment import PullRequestCommentPhase
from src.linear_pilot.phases.review import SelfReviewPhase
from src.linear_pilot.state.machine import accepts_follow_up, should_plan
from src.linear_pilot.state.models import IssueState
from src.linear_pilot.state.repository import WorkspaceRepository
from src.linear_pilot.webhook.models import (
    AssignmentEvent,
    FollowUpEvent,
    PullRequestTriggerEvent,
)

logger = logging.getLogger(__name__)

PilotWebhookEvent = Union[AssignmentEvent, FollowUpEvent, PullRequestTriggerEvent]


class PilotOrchestrator:
    """Routes events to phases and resumes interrupted work at startup.

    Attributes:
        services: Collaborators shared with every phase.
        workspaces: Per-organization OAuth token store.
        default_access_token: Linear token used when an organization has
            no stored installation.
        planning: Initial planning phase.
        clarification: Follow-up handling phase.
        implementation: Step-by-step implementation phase.
        review: Self-review phase.
        pr_comment: Pull request instruction phase.
    """

    def __init__(
        self,
        services: PhaseServices,
        workspaces: WorkspaceRepository,
        default_access_token: Optional[str] = None,
    ):
        self.services = services
        self.workspaces = workspaces
        self.default_access_token = default_access_token

        self.review = SelfReviewPhase(services)
        self.implementation = ImplementationPhase(services, self.review)
        self.planning = PlanningPhase(services)
        self.clarification = ClarificationPhase(services, self.implementation)
        self.pr_comment = PullRequestCommentPhase(services)

    async def resolve_access_token(self, organization_id: str) -> Optional[str]:
        """Stored workspace token for the organization, else the static token."""
        token = await self.workspaces.get_access_token(organization_id)
        return token or self.default_access_token

    async def dispatch(self, event: PilotWebhookEvent) -> None:
        """Handle one normalized event. Never raises."""
        try:
            if isinstance(event, AssignmentEvent):
                await self.handle_assignment(event)
            elif isinstance(event, FollowUpEvent):
                await self.handle_follow_up(event)
            elif isinstance(event, PullRequestTriggerEvent):
                await self.handle_pull_request_trigger(event)
            else:
                logger.warning("Unknown event type %s, ignoring", type(event).__name__)
        except Exception:
            logger.exception(
                "Failed to dispatch event",
                extra={"event_type": type(event).__name__},
            )

    async def handle_assignment(self, event: AssignmentEvent) -> None:
        issue_id = event.issue_id
        token = await self.resolve_access_token(event.organization_id)
        if not token:
            logger.error(
                "No Linear access token for organization, ignoring assignment",
                extra={"issue_id": issue_id, "organization_id": event.organization_id},
            )
            return

        if event.agent_session_id is None and not await self._assigned_to_app(token, event):
            return

        record = await self.services.lifecycle.get(issue_id)
        if not should_plan(record):
            logger.info(
                "Duplicate assignment, issue already past planning",
                extra={"issue_id": issue_id, "state": record.state.value},
            )
            return

        await self._acknowledge(token, event.agent_session_id, messages.assignment_acknowledged())
        logger.info("Enqueuing planning", extra={"issue_id": issue_id})
        self.services.queue.enqueue(
            partial(
                self.planning.run,
                issue_id,
                event.organization_id,
                token,
                event.agent_session_id,
            ),
            label="planning",
        )

    async def _assigned_to_app(self, token: str, event: AssignmentEvent) -> bool:
        """Plain assignee changes only count when the assignee is the app user."""
        async with self.services.linear(token) as linear:
            viewer_id = await linear.viewer_id()
        if event.assignee_id != viewer_id:
            logger.debug(
                "Issue assigned to someone else, ignoring",
                extra={"issue_id": event.issue_id, "assignee_id": event.assignee_id},
            )
            return False
        return True

    async def handle_follow_up(self, event: FollowUpEvent) -> None:
        issue_id = event.issue_id
        record = await self.services.lifecycle.get(issue_id)
        if not accepts_follow_up(record):
            logger.info(
                "Follow-up for issue not awaiting input, ignoring",
                extra={
                    "issue_id": issue_id,
                    "state": record.state.value if record else None,
                },
            )
            return

        token = await self.resolve_access_token(event.organization_id)
        if not token:
            logger.error(
                "No Linear access token for organization, ignoring follow-up",
                extra={"issue_id": issue_id, "organization_id": event.organization_id},
            )
            return

        await self._acknowledge(token, event.agent_session_id, messages.follow_up_acknowledged())
        logger.info("Enqueuing clarification", extra={"issue_id": issue_id})
        self.services.queue.enqueue(
            partial(
                self.clarification.run,
                issue_id,
                event.organization_id,
                token,
                event.message,
            ),
            label="clarification",
        )

    async def handle_pull_request_trigger(self, event: PullRequestTriggerEvent) -> None:
        logger.info(
            "Enqueuing pull request instruction",
            extra={"pull_request": event.pull_request, "author": event.author},
        )
        self.services.queue.enqueue(
            partial(
                self.pr_comment.run,
                event.owner,
                event.repo,
                event.pr_number,
                event.instruction,
                event.reply,
            ),
            label="pr_comment",
        )

    async def resume_interrupted(self) -> int:
        """Re-enqueue issues whose implementation or review was cut short.

        Returns:
            Number of jobs enqueued.
        """
        resumed = 0
        for record in await self.services.lifecycle.list_resumable():
            token = await self.resolve_access_token(record.organization_id)
            if not token:
                logger.warning(
                    "No Linear access token, cannot resume issue",
                    extra={"issue_id": record.issue_id, "state": record.state.value},
                )
                continue

            if record.state == IssueState.IN_PROGRESS:
                phase, label = self.implementation, "implementation"
            else:
                phase, label = self.review, "review"

            logger.info(
                "Resuming interrupted issue",
                extra={"issue_id": record.issue_id, "state": record.state.value},
            )
            self.services.queue.enqueue(
                partial(phase.run, record.issue_id, record.organization_id, token),
                label=label,
            )
            resumed += 1
        return resumed

    async def _acknowledge(self, token: str, agent_session_id: Optional[str], body: str) -> None:
        if not agent_session_id:
            return
        try:
            async with self.services.linear(token) as linear:
                await linear.post_agent_activity(agent_session_id, body, kind="thought")
        except Exception:
            logger.warning(
                "Failed to acknowledge event",
                exc_info=True,
                extra={"agent_session_id": agent_session_id},
            )
