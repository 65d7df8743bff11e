"""Detection of clarifying questions in plan-mode output.

The planning agent is asked to list anything it needs answered under a
"## Clarifying Questions" heading. Output needs clarification when:

- it has a "Clarifying Questions" (or bare "Questions") heading whose
  section is not an explicit "none", or
- one of its last 20 lines is a numbered list item ending in "?".

Loose phrasing elsewhere in the text ("I clarified the schema", a
rhetorical question mid-plan) does not count.
"""

import logging
import re
from typing import List

logger = logging.getLogger(__name__)

QUESTIONS_HEADING_PATTERN = re.compile(
    r"^#{1,6}\s*(?:clarifying\s+)?questions\s*:?\s*$",
    re.IGNORECASE | re.MULTILINE,
)

ANY_HEADING_PATTERN = re.compile(r"^#{1,6}\s", re.MULTILINE)

NUMBERED_QUESTION_PATTERN = re.compile(r"^\s*\d+[.)]\s+.*\?\s*$")

EMPTY_SECTION_PATTERN = re.compile(
    r"^[-*\s_]*(?:none|n/?a|nothing|no\s+(?:further\s+|remaining\s+|open\s+|outstanding\s+)?"
    r"(?:clarifying\s+)?questions?)\b.*$",
    re.IGNORECASE,
)

TRAILING_WINDOW_LINES = 20


def needs_clarification(output: str) -> bool:
    """Decide whether plan-mode output is asking the user questions.

    Args:
        output: Raw plan-mode output from the agent.

    Returns:
        True if the output contains open clarifying questions.

    Example:
        >>> needs_clarification("1. Add model\\n\\n## Clarifying Questions\\n1. What auth method?")
        True
        >>> needs_clarification("1. Add model\\n\\nNo remaining clarifying questions.")
        False
    """
    if not output or not output.strip():
        return False

    for heading in QUESTIONS_HEADING_PATTERN.finditer(output):
        if _section_has_questions(_section_after(output, heading.end())):
            logger.debug("Clarifying questions section found")
            return True

    tail: List[str] = output.rstrip().split("\n")[-TRAILING_WINDOW_LINES:]
    if any(NUMBERED_QUESTION_PATTERN.match(line) for line in tail):
        logger.debug("Numbered question found near end of plan output")
        return True

    return False


def _section_after(output: str, start: int) -> str:
    """Return the text between ``start`` and the next markdown heading."""
    next_heading = ANY_HEADING_PATTERN.search(output, start)
    end = next_heading.start() if next_heading else len(output)
    return output[start:end]


def _section_has_questions(section: str) -> bool:
    lines = [line.strip() for line in section.split("\n") if line.strip()]
    if not lines:
        return False
    return not all(EMPTY_SECTION_PATTERN.match(line) for line in lines)
