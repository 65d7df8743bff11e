"""Plan document checklist protocol.

A plan document is free-form markdown in which implementation steps are
written one per line using the checklist grammar::

    - [ ] Step 1: Add the settings model      (pending)
    - [x] Step 2: Wire settings into startup  (done)

Every other line is carried through untouched. The document is parsed
into an ordered list of lines, edited in structured form, and rendered
back deterministically. Rendering an unedited document reproduces the
input exactly.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

STEP_LINE_PATTERN = re.compile(r"^- \[(?P<mark>[ xX])\] (?P<body>Step (?P<number>\d+): (?P<text>.+))$")

CLARIFYING_SECTION_PATTERN = re.compile(r"^#{1,6}\s*Clarif", re.IGNORECASE | re.MULTILINE)

NUMBERED_ITEM_PATTERN = re.compile(r"^(\d+)\.\s+(.+)$")


class StepStatus(str, Enum):
    """Completion state of a plan step."""

    PENDING = "pending"
    DONE = "done"


@dataclass(frozen=True)
class PlanStep:
    """One checklist step.

    Attributes:
        number: The step number as written in the document.
        text: Step description with surrounding whitespace removed.
        status: Whether the step is pending or done.
    """

    number: int
    text: str
    status: StepStatus

    @property
    def label(self) -> str:
        return f"Step {self.number}: {self.text}"


@dataclass
class _Line:
    raw: str
    mark: Optional[str] = None
    body: str = ""
    step_number: int = 0
    step_text: str = ""

    @property
    def is_step(self) -> bool:
        return self.mark is not None

    @property
    def status(self) -> StepStatus:
        return StepStatus.PENDING if self.mark == " " else StepStatus.DONE

    def render(self) -> str:
        if not self.is_step:
            return self.raw
        return f"- [{self.mark}] {self.body}"


class PlanDocument:
    """Parsed plan document.

    Example:
        >>> doc = PlanDocument.parse("- [ ] Step 1: Add model\\n- [ ] Step 2: Add route")
        >>> doc.mark_done(1)
        True
        >>> doc.render()
        '- [x] Step 1: Add model\\n- [ ] Step 2: Add route'
    """

    def __init__(self, lines: List[_Line]):
        self._lines = lines

    @classmethod
    def parse(cls, text: str) -> "PlanDocument":
        lines: List[_Line] = []
        for raw in text.split("\n"):
            match = STEP_LINE_PATTERN.match(raw)
            if match is None:
                lines.append(_Line(raw=raw))
                continue
            lines.append(
                _Line(
                    raw=raw,
                    mark=match.group("mark"),
                    body=match.group("body"),
                    step_number=int(match.group("number")),
                    step_text=match.group("text").strip(),
                )
            )
        return cls(lines)

    @property
    def steps(self) -> List[PlanStep]:
        """All steps in document order."""
        return [
            PlanStep(number=line.step_number, text=line.step_text, status=line.status)
            for line in self._lines
            if line.is_step
        ]

    @property
    def pending(self) -> List[PlanStep]:
        return [s for s in self.steps if s.status == StepStatus.PENDING]

    @property
    def done(self) -> List[PlanStep]:
        return [s for s in self.steps if s.status == StepStatus.DONE]

    @property
    def is_empty(self) -> bool:
        """True when the document contains no steps at all."""
        return not any(line.is_step for line in self._lines)

    @property
    def is_complete(self) -> bool:
        """True when there are steps and none of them is pending."""
        return not self.is_empty and not self.pending

    def mark_done(self, step_number: int) -> bool:
        """Mark the first pending step with ``step_number`` as done.

        Returns:
            True if a step was changed, False if no pending step had that number.
        """
        for line in self._lines:
            if (
                line.is_step
                and line.status == StepStatus.PENDING
                and line.step_number == step_number
            ):
                line.mark = "x"
                return True
        return False

    def render(self) -> str:
        return "\n".join(line.render() for line in self._lines)


def parse_pending(document: str) -> List[PlanStep]:
    """Return the pending steps of ``document`` in document order."""
    return PlanDocument.parse(document).pending


def parse_done(document: str) -> List[PlanStep]:
    """Return the completed steps of ``document`` in document order."""
    return PlanDocument.parse(document).done


def mark_done(document: str, step_number: int) -> str:
    """Return ``document`` with pending step ``step_number`` marked done.

    The document is returned unchanged when no pending step has that number.
    """
    parsed = PlanDocument.parse(document)
    parsed.mark_done(step_number)
    return parsed.render()


def checklist_from_plan(plan_text: str) -> str:
    """Convert an agent's numbered plan into the checklist grammar.

    Anything from a clarifying-questions heading onward is dropped. Each
    top-level numbered item becomes a pending step; steps are numbered
    1..k in order of appearance regardless of the agent's own numbering.
    All other lines are kept as written.

    Args:
        plan_text: Raw plan-mode output.

    Returns:
        Markdown checklist suitable for the plan comment.
    """
    match = CLARIFYING_SECTION_PATTERN.search(plan_text)
    plan_only = plan_text[: match.start()] if match else plan_text

    converted: List[str] = []
    step_number = 0
    for line in plan_only.strip().split("\n"):
        item = NUMBERED_ITEM_PATTERN.match(line)
        if item is None:
            converted.append(line)
            continue
        step_number += 1
        converted.append(f"- [ ] Step {step_number}: {item.group(2).strip()}")

    return "\n".join(converted).strip()
