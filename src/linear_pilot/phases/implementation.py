"""Implementation phase: execute the approved plan one step at a time.

The phase is re-entrant. Progress lives in the Linear plan comment: each
finished step is checked off there right after its commit is pushed, so a
run that dies halfway resumes at the first unchecked step and a plan with
no unchecked steps goes straight to the pull request. A pull request
already open for the branch (recorded, or reported by GitHub as a 422 on
create) is reused rather than opened again.
"""

import logging
from functools import partial
from pathlib import Path
from typing import Optional

from src.linear_pilot.github.client import GitHubAPIError
from src.linear_pilot.linear.client import LinearClient
from src.linear_pilot.linear.models import IssueDetails
from src.linear_pilot.phases import messages, prompts
from src.linear_pilot.phases.base import (
    STATUS_IN_PROGRESS,
    STATUS_IN_REVIEW,
    Phase,
    PhaseServices,
    branch_name,
)
from src.linear_pilot.phases.review import SelfReviewPhase
from src.linear_pilot.plan.document import PlanDocument
from src.linear_pilot.state.machine import PreconditionError, require
from src.linear_pilot.state.models import IssueRecord, IssueState

logger = logging.getLogger(__name__)


class ImplementationPhase(Phase):
    """Runs pending plan steps, opens the pull request and hands off to review."""

    name = "implementation"

    def __init__(self, services: PhaseServices, review: SelfReviewPhase):
        super().__init__(services)
        self.review = review

    async def run(self, issue_id: str, organization_id: str, access_token: str) -> None:
        async with self.services.linear(access_token) as linear:
            session_id: Optional[str] = None
            try:
                record = require(
                    await self.services.lifecycle.get(issue_id),
                    issue_id,
                    "agent_session_id",
                    "plan_comment_id",
                )
                session_id = record.agent_session_id
                if record.state != IssueState.IN_PROGRESS:
                    logger.info(
                        "Issue is not in progress, skipping implementation",
                        extra={"issue_id": issue_id, "state": record.state.value},
                    )
                    return
                await self._implement(linear, record, organization_id, access_token)
            except PreconditionError as exc:
                await self._precondition_failed(exc, organization_id)
            except Exception as exc:
                await self._fail(issue_id, organization_id, exc)
                await self._post(linear, session_id, messages.implementation_failed(exc))

    async def _implement(
        self,
        linear: LinearClient,
        record: IssueRecord,
        organization_id: str,
        access_token: str,
    ) -> None:
        issue_id = record.issue_id
        session_id = record.agent_session_id

        issue = await linear.fetch_issue_with_comments(issue_id)
        document = PlanDocument.parse(await linear.fetch_comment(record.plan_comment_id))
        if document.is_empty:
            logger.warning("Plan comment has no steps", extra={"issue_id": issue_id})
            await self._post(linear, session_id, messages.nothing_to_implement())
            return

        git = self.services.git
        path = await git.ensure_checkout(issue_id)
        branch = branch_name(self.services.branch_prefix, issue.identifier)
        created = await git.switch_or_create_branch(path, branch)

        await self._set_status(linear, issue_id, STATUS_IN_PROGRESS)
        await self.services.lifecycle.record(
            issue_id, organization_id, IssueState.IN_PROGRESS, repo_path=str(path)
        )

        branch_url = git.branch_web_url(branch)
        if created:
            await self._post(linear, session_id, messages.new_branch(branch, branch_url))
        else:
            first_pending = document.pending[0].number if document.pending else None
            await self._post(
                linear, session_id, messages.resume_branch(branch, branch_url, first_pending)
            )

        await self._run_steps(linear, record, document, path)
        pr_url = record.pr_url or await self._open_pull_request(
            linear, issue, organization_id, session_id, document, path, branch
        )
        if pr_url is None:
            return

        await self._set_status(linear, issue_id, STATUS_IN_REVIEW)
        await self.services.lifecycle.record(
            issue_id, organization_id, IssueState.REVIEWING, pr_url=pr_url
        )
        await self._post(linear, session_id, messages.pull_request_opened(pr_url))
        await self._complete(issue_id, organization_id, "pull_request_opened", pr_url=pr_url)

        self.services.queue.enqueue(
            partial(self.review.run, issue_id, organization_id, access_token),
            label="review",
        )

    async def _run_steps(
        self,
        linear: LinearClient,
        record: IssueRecord,
        document: PlanDocument,
        path: Path,
    ) -> None:
        """Implement each pending step, checking it off once pushed."""
        total = len(document.steps)
        for step in document.pending:
            logger.info(
                "Implementing step",
                extra={"issue_id": record.issue_id, "step": step.number, "total_steps": total},
            )
            await self._post(
                linear,
                record.agent_session_id,
                messages.starting_step(step.number, total, step.text),
            )

            await self.services.runner.run_write_mode(
                prompts.step_prompt(document.render(), step), path
            )
            committed = await self.services.git.commit_and_push(path, step.label)

            document.mark_done(step.number)
            await linear.update_comment(record.plan_comment_id, document.render())
            await self._post(
                linear,
                record.agent_session_id,
                messages.step_complete(step.number, total, step.text, committed),
            )

    async def _open_pull_request(
        self,
        linear: LinearClient,
        issue: IssueDetails,
        organization_id: str,
        session_id: str,
        document: PlanDocument,
        path: Path,
        branch: str,
    ) -> Optional[str]:
        git = self.services.git
        owner, repo = git.remote_slug()
        base = await git.default_branch(path)
        body = prompts.pull_request_body(
            issue.identifier, issue.url, issue.description, document.steps
        )
        try:
            return await self.services.github.create_pull_request(
                owner=owner,
                repo=repo,
                title=issue.title,
                body=body,
                head=branch,
                base=base,
            )
        except GitHubAPIError as exc:
            if exc.status_code == 422:
                existing = await self.services.github.find_open_pull_request(owner, repo, branch)
                if existing is not None:
                    logger.info(
                        "Pull request already open for branch, reusing it",
                        extra={"issue_id": issue.id, "branch": branch, "pr_url": existing.html_url},
                    )
                    return existing.html_url
            await self._fail(issue.id, organization_id, exc)
            await self._post(linear, session_id, messages.pr_creation_failed(exc))
            return None
