"""Prompts handed to the coding agent for each phase."""

from typing import Iterable, Optional

from src.linear_pilot.plan.document import PlanStep

NO_DIFF_PLACEHOLDER = "(no diff available, the branch may be up to date with its base)"


def _description_section(description: Optional[str]) -> str:
    if description and description.strip():
        return f"\n\n## Description\n{description.strip()}"
    return ""


def initial_plan_prompt(title: str, description: Optional[str]) -> str:
    return (
        "You are a software engineer planning work on a Linear ticket.\n\n"
        "Please produce a concise implementation plan for the following ticket. "
        "If you need any clarifications before you can create a solid plan, list "
        'them at the end under a "## Clarifying Questions" heading.\n\n'
        f"## Ticket Title\n{title}{_description_section(description)}\n\n"
        "Output format:\n"
        "1. A numbered implementation plan.\n"
        '2. (Optional) A "## Clarifying Questions" section if you need more details.'
    )


def clarification_prompt(
    title: str,
    description: Optional[str],
    conversation: Iterable[str],
) -> str:
    transcript = "\n\n---\n\n".join(f"[Comment]\n{body}" for body in conversation)
    return (
        "You are a software engineer planning work on a Linear ticket.\n\n"
        "The following is the ticket details and the conversation so far. A user has "
        "responded to your previous plan or clarifying questions. Please update your "
        "implementation plan based on their answers. If you still need more "
        'information, list remaining questions under "## Clarifying Questions".\n\n'
        f"## Ticket Title\n{title}{_description_section(description)}\n\n"
        f"## Conversation\n{transcript}\n\n"
        "Output format:\n"
        "1. An updated numbered implementation plan.\n"
        '2. (Optional) A "## Clarifying Questions" section if you still need more details.'
    )


def step_prompt(plan_document: str, step: PlanStep) -> str:
    return "\n".join(
        [
            "You are a software engineer implementing a feature step by step.",
            "",
            "## Full Implementation Plan",
            plan_document,
            "",
            "## Current Task",
            "Please implement the following step completely, making all necessary code changes:",
            "",
            step.label,
        ]
    )


def review_prompt(
    title: str,
    description: Optional[str],
    approved_plan: str,
    diff: str,
) -> str:
    lines = [
        "You are a senior software engineer performing a self-review of code you just implemented.",
        "Read the issue description, the approved implementation plan and the diff,",
        "then fix any real problems you find: bugs, logic errors, missed edge cases,",
        "style inconsistencies, missing error handling, or divergence from the plan.",
        "Do NOT make unnecessary changes.",
        "",
        "## Issue",
        f"**Title:** {title}",
    ]
    if description and description.strip():
        lines.append(f"**Description:**\n{description.strip()}")
    lines.append("")
    if approved_plan:
        lines.extend([f"## Approved Implementation Plan\n{approved_plan}", ""])
    lines.extend(
        [
            "## Code Diff (changes to review)",
            "```diff",
            diff or NO_DIFF_PLACEHOLDER,
            "```",
            "",
            "Review the diff carefully against the issue and plan.",
            "If you find problems, fix them now. If everything looks good, make no changes.",
        ]
    )
    return "\n".join(lines)


def pr_comment_prompt(instruction: str, diff: str) -> str:
    diff_section = (
        f"## Current PR Diff (for context)\n```diff\n{diff}\n```"
        if diff.strip()
        else NO_DIFF_PLACEHOLDER
    )
    return "\n".join(
        [
            "You are a software engineer working on an open pull request.",
            "A code reviewer has left a comment requesting a specific change.",
            "Please implement the requested change exactly. Do NOT make unrelated modifications.",
            "",
            "## Reviewer Instruction",
            instruction,
            "",
            diff_section,
        ]
    )


def pull_request_body(
    identifier: str,
    issue_url: str,
    description: Optional[str],
    steps: Iterable[PlanStep],
) -> str:
    summary = "\n".join(f"- {step.text}" for step in steps)
    return "\n".join(
        [
            f"Resolves [{identifier}]({issue_url})",
            "",
            "## Description",
            description.strip() if description and description.strip() else "See Linear ticket.",
            "",
            "## Implementation Summary",
            summary,
            "",
            "## Test Plan",
            "- Run existing tests to verify nothing is broken",
            "- Manually verify the implemented functionality against the Linear ticket",
        ]
    )
