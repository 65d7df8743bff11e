"""Self-review phase: one agent pass over the finished branch before handoff."""

import logging
from typing import Optional

from src.linear_pilot.linear.client import LinearClient
from src.linear_pilot.phases import messages, prompts
from src.linear_pilot.phases.base import STATUS_IN_REVIEW, Phase, branch_name
from src.linear_pilot.state.machine import PreconditionError, require
from src.linear_pilot.state.models import IssueRecord, IssueState

logger = logging.getLogger(__name__)

REVIEW_COMMIT_MESSAGE = "Code review fixes"


class SelfReviewPhase(Phase):
    name = "review"

    async def run(self, issue_id: str, organization_id: str, access_token: str) -> None:
        async with self.services.linear(access_token) as linear:
            session_id: Optional[str] = None
            try:
                record = require(
                    await self.services.lifecycle.get(issue_id),
                    issue_id,
                    "agent_session_id",
                    "repo_path",
                    "pr_url",
                )
                session_id = record.agent_session_id
                if record.state != IssueState.REVIEWING:
                    logger.info(
                        "Issue is not in review, skipping self-review",
                        extra={"issue_id": issue_id, "state": record.state.value},
                    )
                    return
                await self._review(linear, record, organization_id)
            except PreconditionError as exc:
                await self._precondition_failed(exc, organization_id)
            except Exception as exc:
                await self._fail(issue_id, organization_id, exc)
                await self._post(linear, session_id, messages.review_failed(exc))

    async def _approved_plan(self, linear: LinearClient, record: IssueRecord) -> str:
        if not record.plan_comment_id:
            return ""
        try:
            return await linear.fetch_comment(record.plan_comment_id)
        except Exception:
            logger.warning(
                "Could not fetch plan for review, continuing without it",
                exc_info=True,
                extra={"issue_id": record.issue_id},
            )
            return ""

    async def _review(
        self,
        linear: LinearClient,
        record: IssueRecord,
        organization_id: str,
    ) -> None:
        issue_id = record.issue_id
        session_id = record.agent_session_id
        await self._post(linear, session_id, messages.review_starting())

        issue = await linear.fetch_issue_with_comments(issue_id)
        plan = await self._approved_plan(linear, record)

        # The checkout may have been wiped since implementation finished
        git = self.services.git
        path = await git.ensure_checkout(issue_id)
        await git.switch_or_create_branch(
            path, branch_name(self.services.branch_prefix, issue.identifier)
        )
        diff = await git.diff_against_base(path)

        head_before = await git.head_sha(path)
        await self.services.runner.run_write_mode(
            prompts.review_prompt(issue.title, issue.description, plan, diff), path
        )
        await git.commit_and_push(path, REVIEW_COMMIT_MESSAGE)
        changed = head_before != await git.head_sha(path)

        logger.info("Self-review finished", extra={"issue_id": issue_id, "changed": changed})
        await self._post(
            linear,
            session_id,
            messages.review_had_fixes() if changed else messages.review_clean(),
        )

        await self._set_status(linear, issue_id, STATUS_IN_REVIEW)
        await self._post(linear, session_id, messages.pr_announce(record.pr_url, issue.creator_name))
        await linear.create_comment(issue_id, messages.pr_ready_comment(record.pr_url))

        await self.services.lifecycle.record(
            issue_id, organization_id, IssueState.IMPLEMENTED, pr_url=record.pr_url
        )
        await self._complete(issue_id, organization_id, "implemented", changed=changed)
