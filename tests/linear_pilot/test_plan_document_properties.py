"""Property-based and example tests for the plan document checklist protocol.

Properties:
- Parsing and rendering an unedited document reproduces it exactly
- mark_done moves exactly one step from pending to done and touches no
  other line
- Pending and done steps partition the document's steps
- Marking steps 1..k done in order leaves nothing pending and every step
  done, in order, with its original text
- checklist_from_plan numbers steps 1..k and drops clarifying questions
"""

from typing import List, Tuple

from hypothesis import given, settings, strategies as st

from src.linear_pilot.plan.document import (
    PlanDocument,
    StepStatus,
    checklist_from_plan,
    mark_done,
    parse_done,
    parse_pending,
)


# =============================================================================
# Strategies
# =============================================================================


step_text = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",), blacklist_characters="\n\r"),
    min_size=1,
    max_size=60,
).filter(lambda s: s.strip() == s and s != "")

free_line = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",), blacklist_characters="\n\r"),
    max_size=60,
).filter(lambda s: not s.startswith("- ["))


@st.composite
def plan_documents(draw: st.DrawFn) -> Tuple[str, List[Tuple[int, str, bool]]]:
    """A document of interleaved prose and steps, plus the steps it holds."""
    count = draw(st.integers(min_value=0, max_value=8))
    lines: List[str] = []
    steps: List[Tuple[int, str, bool]] = []
    for number in range(1, count + 1):
        lines.extend(draw(st.lists(free_line, max_size=2)))
        text = draw(step_text)
        done = draw(st.booleans())
        lines.append(f"- [{'x' if done else ' '}] Step {number}: {text}")
        steps.append((number, text, done))
    lines.extend(draw(st.lists(free_line, max_size=2)))
    return "\n".join(lines), steps


# =============================================================================
# Properties
# =============================================================================


@settings(max_examples=100)
@given(plan_documents())
def test_round_trip_without_edits_is_lossless(document):
    text, _ = document
    assert PlanDocument.parse(text).render() == text


@settings(max_examples=100)
@given(plan_documents())
def test_parsed_steps_match_generated_steps(document):
    text, steps = document
    parsed = PlanDocument.parse(text)

    assert [(s.number, s.text) for s in parsed.steps] == [(n, t) for n, t, _ in steps]
    assert [s.number for s in parse_pending(text)] == [n for n, _, done in steps if not done]
    assert [s.number for s in parse_done(text)] == [n for n, _, done in steps if done]


@settings(max_examples=100)
@given(plan_documents(), st.data())
def test_mark_done_changes_exactly_one_line(document, data):
    text, steps = document
    pending = [n for n, _, done in steps if not done]
    if not pending:
        assert mark_done(text, 1) == text
        return

    target = data.draw(st.sampled_from(pending))
    updated = mark_done(text, target)

    before = text.split("\n")
    after = updated.split("\n")
    changed = [(b, a) for b, a in zip(before, after) if b != a]
    assert len(before) == len(after)
    assert len(changed) == 1
    old_line, new_line = changed[0]
    assert old_line.startswith("- [ ] ")
    assert new_line == "- [x] " + old_line[len("- [ ] "):]

    assert target not in [s.number for s in parse_pending(updated)]
    assert target in [s.number for s in parse_done(updated)]


@settings(max_examples=100)
@given(st.lists(step_text, min_size=1, max_size=8), st.lists(free_line, max_size=3))
def test_marking_every_step_in_order_completes_the_plan(texts, preamble):
    lines = list(preamble) + [f"- [ ] Step {i}: {t}" for i, t in enumerate(texts, start=1)]
    text = "\n".join(lines)

    for number in range(1, len(texts) + 1):
        text = mark_done(text, number)

    assert parse_pending(text) == []
    assert [(s.number, s.text) for s in parse_done(text)] == list(enumerate(texts, start=1))


@settings(max_examples=100)
@given(plan_documents())
def test_pending_and_done_partition_steps(document):
    text, _ = document
    parsed = PlanDocument.parse(text)
    assert len(parsed.pending) + len(parsed.done) == len(parsed.steps)
    assert parsed.is_empty == (len(parsed.steps) == 0)
    assert parsed.is_complete == (bool(parsed.steps) and not parsed.pending)


# =============================================================================
# Examples
# =============================================================================


class TestPlanDocument:
    def test_step_text_that_looks_like_a_step_survives_completion(self):
        text = "- [ ] Step 1: a\n- [ ] Step 2: b\n- [ ] Step 3: Step 1: e"
        for number in (1, 2, 3):
            text = mark_done(text, number)

        assert parse_pending(text) == []
        assert [s.text for s in parse_done(text)] == ["a", "b", "Step 1: e"]

    def test_mark_done_unknown_step_is_a_no_op(self):
        doc = PlanDocument.parse("- [ ] Step 1: Add model")
        assert doc.mark_done(4) is False
        assert doc.render() == "- [ ] Step 1: Add model"

    def test_mark_done_already_done_step_is_a_no_op(self):
        text = "- [x] Step 1: Add model\n- [ ] Step 2: Add route"
        assert mark_done(text, 1) == text

    def test_uppercase_x_counts_as_done(self):
        steps = PlanDocument.parse("- [X] Step 1: Add model").steps
        assert steps[0].status == StepStatus.DONE

    def test_indented_or_malformed_lines_are_not_steps(self):
        text = "\n".join(
            [
                "  - [ ] Step 1: indented",
                "- [ ] step 2: lowercase",
                "- [] Step 3: missing space",
                "* [ ] Step 4: star bullet",
            ]
        )
        assert PlanDocument.parse(text).is_empty

    def test_step_text_containing_step_marker_is_untouched(self):
        text = "- [ ] Step 1: rename Step 2: helpers"
        assert mark_done(text, 1) == "- [x] Step 1: rename Step 2: helpers"

    def test_label(self):
        step = PlanDocument.parse("- [ ] Step 3: Write tests").steps[0]
        assert step.label == "Step 3: Write tests"

    def test_complete_plan(self):
        doc = PlanDocument.parse("## Plan\n- [x] Step 1: a\n- [x] Step 2: b")
        assert doc.is_complete
        assert not doc.is_empty
        assert doc.pending == []


class TestChecklistFromPlan:
    def test_numbered_items_become_contiguous_steps(self):
        plan = "Here is the plan:\n\n1. Add model\n3. Add route\n7. Write tests"
        checklist = checklist_from_plan(plan)
        assert checklist == (
            "Here is the plan:\n\n"
            "- [ ] Step 1: Add model\n"
            "- [ ] Step 2: Add route\n"
            "- [ ] Step 3: Write tests"
        )

    def test_clarifying_questions_are_dropped(self):
        plan = (
            "1. Add model\n2. Add route\n\n"
            "## Clarifying Questions\n1. Which database?"
        )
        checklist = checklist_from_plan(plan)
        assert "Which database" not in checklist
        assert [s.number for s in parse_pending(checklist)] == [1, 2]

    def test_nested_items_are_kept_as_prose(self):
        plan = "1. Add model\n   1. with a migration\n2. Add route"
        steps = parse_pending(checklist_from_plan(plan))
        assert [s.text for s in steps] == ["Add model", "Add route"]

    def test_plan_without_numbered_items_has_no_steps(self):
        assert PlanDocument.parse(checklist_from_plan("Just do it.")).is_empty
