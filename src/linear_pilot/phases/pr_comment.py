"""PR comment phase: apply an ``@handle`` instruction left on an open pull request.

Runs for any pull request in any repository the token can push to, not
only ones this service opened. At most one instruction per pull request is
processed at a time; a second trigger while one is running gets a busy
reply instead of being queued behind it.
"""

import logging

from src.linear_pilot.git.repository import repository_remote_url
from src.linear_pilot.jobs.locks import PullRequestKey
from src.linear_pilot.phases import messages, prompts
from src.linear_pilot.phases.base import Phase
from src.linear_pilot.webhook.models import InlineReply, ReplyLocation

logger = logging.getLogger(__name__)

COMMIT_SUMMARY_LENGTH = 72


def checkout_key(key: PullRequestKey) -> str:
    return f"pr-{key.owner}-{key.repo}-{key.number}"


class PullRequestCommentPhase(Phase):
    """Applies reviewer instructions to a pull request branch.

    Replies go back where the instruction came from: into the inline review
    thread, or as a conversation comment quoting the original text.
    """

    name = "pr_comment"

    async def run(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        instruction: str,
        reply: ReplyLocation,
    ) -> None:
        key = PullRequestKey(owner, repo, pr_number)
        async with self.services.locks.hold(key) as acquired:
            if not acquired:
                logger.info("Pull request busy, rejecting instruction", extra={"pull_request": str(key)})
                await self._reply(key, reply, messages.pr_comment_busy())
                return

            try:
                await self._apply(key, instruction, reply)
            except Exception as exc:
                await self._fail(str(key), None, exc)
                await self._reply(key, reply, messages.pr_comment_failed(exc))

    async def _apply(self, key: PullRequestKey, instruction: str, reply: ReplyLocation) -> None:
        await self._reply(key, reply, messages.pr_comment_started())

        pull_request = await self.services.github.get_pull_request(key.owner, key.repo, key.number)

        git = self.services.git
        path = await git.ensure_checkout(
            checkout_key(key), remote_url=repository_remote_url(key.owner, key.repo)
        )
        await git.switch_or_create_branch(path, pull_request.head_ref)
        await git.pull(path)
        diff = await git.diff_against_base(path, pull_request.base_ref)

        head_before = await git.head_sha(path)
        await self.services.runner.run_write_mode(
            prompts.pr_comment_prompt(instruction, diff), path
        )
        summary = instruction.splitlines()[0][:COMMIT_SUMMARY_LENGTH]
        await git.commit_and_push(path, f"pr comment: {summary}")
        changed = head_before != await git.head_sha(path)

        logger.info(
            "Applied pull request instruction",
            extra={"pull_request": str(key), "changed": changed},
        )
        await self._reply(key, reply, messages.pr_comment_done(changed))
        await self._complete(str(key), None, "applied", changed=changed)

    async def _reply(self, key: PullRequestKey, reply: ReplyLocation, body: str) -> None:
        """Answer in the originating location; failures are logged, never raised."""
        github = self.services.github
        try:
            if isinstance(reply, InlineReply):
                await github.reply_to_review_comment(
                    key.owner, key.repo, key.number, reply.comment_id, body
                )
            else:
                text = body
                if reply.original_body.strip():
                    text = f"{messages.quote(reply.original_body.strip())}\n\n{body}"
                await github.create_issue_comment(key.owner, key.repo, key.number, text)
        except Exception:
            logger.warning(
                "Failed to reply on pull request",
                exc_info=True,
                extra={"pull_request": str(key), "reply_kind": reply.kind},
            )
