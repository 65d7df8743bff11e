"""Planning and clarification phases.

PlanningPhase runs once per delegated issue: it checks out the repository,
asks the agent for a plan and either posts a draft with questions
(awaiting_clarification) or persists a checklist plan comment and asks for
approval (awaiting_approval).

ClarificationPhase handles each user reply while the issue is waiting:
an approval starts implementation, anything else re-plans with the full
conversation.
"""

import logging
from functools import partial
from typing import List, Optional

from src.linear_pilot.classifier.approval import is_approval
from src.linear_pilot.linear.client import LinearClient
from src.linear_pilot.linear.models import IssueDetails
from src.linear_pilot.phases import messages, prompts
from src.linear_pilot.phases.base import Phase, PhaseServices
from src.linear_pilot.phases.implementation import ImplementationPhase
from src.linear_pilot.plan.document import checklist_from_plan
from src.linear_pilot.runner.cursor import PlanResult
from src.linear_pilot.state.machine import (
    PreconditionError,
    accepts_follow_up,
    require,
    should_plan,
)
from src.linear_pilot.state.models import IssueState

logger = logging.getLogger(__name__)


class PlanningPhase(Phase):
    """Initial plan for a newly delegated issue."""

    name = "planning"

    async def run(
        self,
        issue_id: str,
        organization_id: str,
        access_token: str,
        agent_session_id: Optional[str] = None,
    ) -> None:
        async with self.services.linear(access_token) as linear:
            session_id = agent_session_id
            try:
                record = await self.services.lifecycle.get(issue_id)
                if not should_plan(record):
                    logger.info(
                        "Issue already past planning, skipping",
                        extra={"issue_id": issue_id, "state": record.state.value},
                    )
                    return

                session_id = agent_session_id or (record.agent_session_id if record else None)
                if not session_id:
                    raise PreconditionError(issue_id, "agent_session_id")

                await self.services.lifecycle.record(
                    issue_id,
                    organization_id,
                    IssueState.PLANNING,
                    agent_session_id=session_id,
                )
                await self._plan(linear, issue_id, organization_id, session_id)
            except PreconditionError as exc:
                await self._precondition_failed(exc, organization_id)
            except Exception as exc:
                await self._fail(issue_id, organization_id, exc)
                await self._post(linear, session_id, messages.planning_failed(exc))

    async def _plan(
        self,
        linear: LinearClient,
        issue_id: str,
        organization_id: str,
        session_id: str,
    ) -> None:
        issue = await linear.fetch_issue_with_comments(issue_id)

        repo_path = await self._checkout(linear, issue_id, organization_id, session_id)
        if repo_path is None:
            return

        await self.services.lifecycle.record(
            issue_id, organization_id, IssueState.PLANNING, repo_path=repo_path
        )

        result = await self.services.runner.run_plan_mode(
            prompts.initial_plan_prompt(issue.title, issue.description),
            repo_path,
        )
        await self._publish(
            linear,
            issue,
            organization_id,
            session_id,
            repo_path,
            result,
            messages.clarification_needed,
        )

    async def _checkout(
        self,
        linear: LinearClient,
        issue_id: str,
        organization_id: str,
        session_id: str,
    ) -> Optional[str]:
        """Clone or reuse the issue checkout; on failure notify and return None."""
        try:
            path = await self.services.git.ensure_checkout(issue_id)
        except Exception as exc:
            await self._fail(issue_id, organization_id, exc)
            await self._post(linear, session_id, messages.checkout_failed(exc))
            return None
        return str(path)

    async def _publish(
        self,
        linear: LinearClient,
        issue: IssueDetails,
        organization_id: str,
        session_id: str,
        repo_path: str,
        result: PlanResult,
        draft_message,
    ) -> None:
        """Post the agent's plan and park the issue waiting for the user."""
        if result.needs_clarification:
            await self._post(linear, session_id, draft_message(result.raw))
            await self.services.lifecycle.record(
                issue.id,
                organization_id,
                IssueState.AWAITING_CLARIFICATION,
                repo_path=repo_path,
            )
            await self._complete(issue.id, organization_id, "clarification_requested")
            return

        checklist = checklist_from_plan(result.raw)
        comment_id = await linear.create_comment(issue.id, messages.plan_comment(checklist))
        await self.services.lifecycle.record(
            issue.id,
            organization_id,
            IssueState.AWAITING_APPROVAL,
            repo_path=repo_path,
            plan_comment_id=comment_id,
        )
        await self._post(linear, session_id, messages.plan_for_approval(checklist))
        await self._complete(issue.id, organization_id, "plan_posted", plan_comment_id=comment_id)


class ClarificationPhase(PlanningPhase):
    """A user reply while the issue waits for clarification or approval."""

    name = "clarification"

    def __init__(self, services: PhaseServices, implementation: ImplementationPhase):
        super().__init__(services)
        self.implementation = implementation

    async def run(  # type: ignore[override]
        self,
        issue_id: str,
        organization_id: str,
        access_token: str,
        message: str = "",
    ) -> None:
        async with self.services.linear(access_token) as linear:
            session_id: Optional[str] = None
            try:
                record = await self.services.lifecycle.get(issue_id)
                if not accepts_follow_up(record):
                    logger.info(
                        "Issue is not awaiting input, ignoring follow-up",
                        extra={
                            "issue_id": issue_id,
                            "state": record.state.value if record else None,
                        },
                    )
                    return

                record = require(record, issue_id, "agent_session_id")
                session_id = record.agent_session_id
                await self._follow_up(
                    linear,
                    issue_id,
                    organization_id,
                    access_token,
                    session_id,
                    message,
                    record.plan_comment_id,
                )
            except PreconditionError as exc:
                await self._precondition_failed(exc, organization_id)
            except Exception as exc:
                await self._fail(issue_id, organization_id, exc)
                await self._post(linear, session_id, messages.replanning_failed(exc))

    async def _follow_up(
        self,
        linear: LinearClient,
        issue_id: str,
        organization_id: str,
        access_token: str,
        session_id: str,
        message: str,
        plan_comment_id: Optional[str] = None,
    ) -> None:
        issue = await linear.fetch_issue_with_comments(issue_id)

        repo_path = await self._checkout(linear, issue_id, organization_id, session_id)
        if repo_path is None:
            return

        reply = message.strip() or issue.last_comment_body
        if is_approval(reply):
            if plan_comment_id is None:
                logger.info(
                    "Approval received before any plan was posted",
                    extra={"issue_id": issue_id},
                )
                await self._post(linear, session_id, messages.no_plan_to_approve())
                return
            await self._post(linear, session_id, messages.approval_received())
            await self.services.lifecycle.record(
                issue_id, organization_id, IssueState.IN_PROGRESS, repo_path=repo_path
            )
            logger.info("Plan approved, enqueuing implementation", extra={"issue_id": issue_id})
            self.services.queue.enqueue(
                partial(self.implementation.run, issue_id, organization_id, access_token),
                label="implementation",
            )
            await self._complete(issue_id, organization_id, "approved")
            return

        conversation: List[str] = [comment.body for comment in issue.comments]
        if message.strip():
            conversation.append(message.strip())

        result = await self.services.runner.run_plan_mode(
            prompts.clarification_prompt(issue.title, issue.description, conversation),
            repo_path,
        )
        await self._publish(
            linear,
            issue,
            organization_id,
            session_id,
            repo_path,
            result,
            messages.more_clarification_needed,
        )
