"""User-facing messages posted to Linear threads and GitHub pull requests."""

from typing import Optional

APPROVAL_CALL_TO_ACTION = (
    "_Reply **approved** to start work, or share feedback and I'll update the plan._"
)


def _error_block(error: BaseException) -> str:
    return f"```\n{error}\n```"


# ---------------------------------------------------------------------------
# Dispatcher acknowledgements
# ---------------------------------------------------------------------------


def assignment_acknowledged() -> str:
    return "On it. I'm reading the ticket and will post an implementation plan shortly."


def follow_up_acknowledged() -> str:
    return "Thanks, reading your reply and reworking the plan."


# ---------------------------------------------------------------------------
# Planning and clarification
# ---------------------------------------------------------------------------


def checkout_failed(error: BaseException) -> str:
    return (
        "I couldn't check out the repository. Make sure `PILOT_GITHUB_REPO_URL` "
        "and `PILOT_GITHUB_TOKEN` are configured correctly.\n\n" + _error_block(error)
    )


def planning_failed(error: BaseException) -> str:
    return (
        "I hit an error while generating the plan. Check the server logs for "
        "details.\n\n" + _error_block(error)
    )


def replanning_failed(error: BaseException) -> str:
    return (
        "I hit an error while updating the plan. Check the server logs for "
        "details.\n\n" + _error_block(error)
    )


def clarification_needed(plan_raw: str) -> str:
    return (
        "## Implementation Plan (Draft)\n\n"
        "I've started on this ticket but have a few questions before I can "
        f"finalize the plan.\n\n{plan_raw}\n\n---\n"
        "_Reply with your answers and I'll update the plan._"
    )


def more_clarification_needed(plan_raw: str) -> str:
    return (
        "## Updated Implementation Plan\n\n"
        "Thanks for the details. I still have a couple of follow-up questions:"
        f"\n\n{plan_raw}\n\n---\n"
        "_Reply and I'll finalize the plan._"
    )


def plan_comment(checklist: str) -> str:
    return f"## Implementation Plan\n\n{checklist}"


def plan_for_approval(checklist: str) -> str:
    return f"{plan_comment(checklist)}\n\n---\n{APPROVAL_CALL_TO_ACTION}"


def approval_received() -> str:
    return "Plan approved. Starting work now."


def no_plan_to_approve() -> str:
    return (
        "There is no plan to approve yet. Please answer the open questions "
        "above and I will draft one."
    )


# ---------------------------------------------------------------------------
# Implementation
# ---------------------------------------------------------------------------


def nothing_to_implement() -> str:
    return (
        "The plan comment has no steps in the `- [ ] Step N: ...` format, so "
        "there is nothing to implement. Implementation cancelled."
    )


def new_branch(branch_name: str, branch_url: str) -> str:
    return f"Created branch [{branch_name}]({branch_url}). Starting implementation."


def resume_branch(branch_name: str, branch_url: str, resume_from: Optional[int]) -> str:
    if resume_from is None:
        return (
            f"Back on [{branch_name}]({branch_url}). All steps are already done, "
            "opening the pull request."
        )
    return f"Back on [{branch_name}]({branch_url}). Resuming from Step {resume_from}."


def starting_step(step_number: int, total_steps: int, step_text: str) -> str:
    return f"Working on step {step_number}/{total_steps}: {step_text}"


def step_complete(step_number: int, total_steps: int, step_text: str, committed: bool) -> str:
    suffix = "" if committed else " (no changes needed)"
    return f"Finished step {step_number}/{total_steps}: {step_text}{suffix}"


def implementation_failed(error: BaseException) -> str:
    return (
        "I hit an error during implementation. Completed steps stay checked off "
        "in the plan, so a retry resumes from the first unchecked step.\n\n"
        + _error_block(error)
    )


def pr_creation_failed(error: BaseException) -> str:
    return (
        "All steps are done but opening the pull request failed.\n\n"
        + _error_block(error)
    )


def pull_request_opened(pr_url: str) -> str:
    return f"Opened a pull request: [View PR]({pr_url}). Running a self-review next."


# ---------------------------------------------------------------------------
# Self-review
# ---------------------------------------------------------------------------


def review_starting() -> str:
    return "Doing a self-review of the diff before handing this off."


def review_had_fixes() -> str:
    return "Self-review found a few problems. Fixes are committed and pushed."


def review_clean() -> str:
    return "Self-review is clean. No fixes needed."


def review_failed(error: BaseException) -> str:
    return "I hit an error during self-review.\n\n" + _error_block(error)


def pr_announce(pr_url: str, creator_name: Optional[str]) -> str:
    reviewer = f"@{creator_name}" if creator_name else "the team"
    return f"All steps are done. The PR is ready for review: [View PR]({pr_url}). {reviewer}, over to you."


def pr_ready_comment(pr_url: str) -> str:
    return f"PR is up and ready for review: [View PR]({pr_url})"


# ---------------------------------------------------------------------------
# Pull request comments
# ---------------------------------------------------------------------------


def pr_comment_started() -> str:
    return "Got it. Working on this now."


def pr_comment_busy() -> str:
    return "I'm still working on a previous request on this PR. Try again once it's done."


def pr_comment_done(had_changes: bool) -> str:
    if had_changes:
        return "Done. The changes are committed and pushed to the branch."
    return "I looked into it and no changes were needed."


def pr_comment_failed(error: BaseException) -> str:
    return "I hit an error while processing your request.\n\n" + _error_block(error)


def quote(text: str) -> str:
    return "\n".join(f"> {line}" for line in text.split("\n"))
