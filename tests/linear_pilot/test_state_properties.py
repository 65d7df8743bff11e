"""Property-based tests for the issue record store and lifecycle state machine.

Properties:
- Merge-on-null: an upsert never erases a stored optional field
- Transitions outside VALID_TRANSITIONS are rejected and leave the record as is
- Only state changes emit STATE_TRANSITION events
- Assignment and follow-up decisions depend only on the stored state
"""

import asyncio
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest
from hypothesis import given, settings, strategies as st

from src.linear_pilot.events.models import EventType
from src.linear_pilot.state import (
    VALID_TRANSITIONS,
    IssueLifecycle,
    IssueRecord,
    IssueState,
    InMemoryIssueRepository,
    InMemoryWorkspaceRepository,
    InvalidTransitionError,
    PreconditionError,
    accepts_follow_up,
    is_terminal_state,
    is_valid_transition,
    require,
    should_plan,
)


def run_async(coro):
    return asyncio.run(coro)


OPTIONAL_FIELDS = ("repo_path", "agent_session_id", "plan_comment_id", "pr_url")

states = st.sampled_from(list(IssueState))
optional_values = st.one_of(st.none(), st.text(min_size=1, max_size=20))


@st.composite
def upserts(draw: st.DrawFn) -> dict:
    return {
        "state": draw(states),
        **{field: draw(optional_values) for field in OPTIONAL_FIELDS},
    }


# =============================================================================
# Merge-on-null
# =============================================================================


@settings(max_examples=100)
@given(st.lists(upserts(), min_size=1, max_size=8))
def test_upsert_keeps_last_non_null_value_per_field(writes: List[dict]):
    async def scenario():
        repo = InMemoryIssueRepository()
        for write in writes:
            await repo.upsert("issue-1", "org-1", **write)
        return await repo.get("issue-1")

    record = run_async(scenario())

    assert record.state == writes[-1]["state"]
    for field in OPTIONAL_FIELDS:
        non_null = [w[field] for w in writes if w[field] is not None]
        expected: Optional[str] = non_null[-1] if non_null else None
        assert getattr(record, field) == expected


def test_upsert_overwrites_organization_and_keeps_created_at():
    async def scenario():
        repo = InMemoryIssueRepository()
        first = await repo.upsert("issue-1", "org-1", IssueState.PLANNING, agent_session_id="s-1")
        second = await repo.upsert("issue-1", "org-2", IssueState.AWAITING_APPROVAL)
        return first, second

    first, second = run_async(scenario())
    assert second.organization_id == "org-2"
    assert second.agent_session_id == "s-1"
    assert second.created_at == first.created_at
    assert second.updated_at >= first.updated_at


def test_list_by_state():
    async def scenario():
        repo = InMemoryIssueRepository()
        await repo.upsert("a", "org", IssueState.IN_PROGRESS)
        await repo.upsert("b", "org", IssueState.REVIEWING)
        await repo.upsert("c", "org", IssueState.IN_PROGRESS)
        return await repo.list_by_state(IssueState.IN_PROGRESS)

    assert sorted(r.issue_id for r in run_async(scenario())) == ["a", "c"]


def test_workspace_tokens():
    async def scenario():
        repo = InMemoryWorkspaceRepository()
        missing = await repo.get_access_token("org-1")
        await repo.upsert_workspace("org-1", "token-a")
        await repo.upsert_workspace("org-1", "token-b")
        return missing, await repo.get_access_token("org-1")

    assert run_async(scenario()) == (None, "token-b")


# =============================================================================
# Transitions
# =============================================================================


@settings(max_examples=100)
@given(states, states)
def test_lifecycle_enforces_transition_table(from_state: IssueState, to_state: IssueState):
    async def scenario():
        repo = InMemoryIssueRepository()
        await repo.upsert("issue-1", "org-1", from_state, pr_url="https://example/pr/1")
        lifecycle = IssueLifecycle(repo)
        try:
            await lifecycle.record("issue-1", "org-1", to_state)
            raised = False
        except InvalidTransitionError:
            raised = True
        return raised, await repo.get("issue-1")

    raised, record = run_async(scenario())
    allowed = to_state in VALID_TRANSITIONS[from_state]
    assert raised is not allowed
    assert record.state == (to_state if allowed else from_state)
    assert record.pr_url == "https://example/pr/1"


def test_implemented_is_the_only_terminal_state():
    assert [s for s in IssueState if is_terminal_state(s)] == [IssueState.IMPLEMENTED]


def test_non_terminal_states_allow_self_transition():
    for state in IssueState:
        if not is_terminal_state(state):
            assert is_valid_transition(state, state)


def test_happy_path_is_valid():
    path = [
        IssueState.PLANNING,
        IssueState.AWAITING_CLARIFICATION,
        IssueState.AWAITING_APPROVAL,
        IssueState.IN_PROGRESS,
        IssueState.REVIEWING,
        IssueState.IMPLEMENTED,
    ]
    for current, following in zip(path, path[1:]):
        assert is_valid_transition(current, following)


class TestIssueLifecycle:
    def test_first_write_creates_record_and_emits(self):
        emitter = AsyncMock()

        async def scenario():
            lifecycle = IssueLifecycle(InMemoryIssueRepository(), event_emitter=emitter)
            return await lifecycle.record(
                "issue-1", "org-1", IssueState.PLANNING, agent_session_id="s-1"
            )

        record = run_async(scenario())
        assert record.state == IssueState.PLANNING
        assert record.agent_session_id == "s-1"

        event = emitter.emit.call_args[0][0]
        assert event.event_type == EventType.STATE_TRANSITION
        assert event.details == {"from_state": None, "to_state": "planning"}

    def test_self_transition_does_not_emit(self):
        emitter = AsyncMock()

        async def scenario():
            lifecycle = IssueLifecycle(InMemoryIssueRepository(), event_emitter=emitter)
            await lifecycle.record("issue-1", "org-1", IssueState.PLANNING)
            await lifecycle.record("issue-1", "org-1", IssueState.PLANNING, repo_path="/tmp/x")

        run_async(scenario())
        assert emitter.emit.call_count == 1

    def test_emitter_failure_does_not_break_write(self):
        emitter = AsyncMock()
        emitter.emit.side_effect = RuntimeError("sink down")

        async def scenario():
            repo = InMemoryIssueRepository()
            lifecycle = IssueLifecycle(repo, event_emitter=emitter)
            await lifecycle.record("issue-1", "org-1", IssueState.PLANNING)
            return await repo.get("issue-1")

        assert run_async(scenario()).state == IssueState.PLANNING

    def test_list_resumable(self):
        async def scenario():
            repo = InMemoryIssueRepository()
            for issue_id, state in [
                ("a", IssueState.PLANNING),
                ("b", IssueState.IN_PROGRESS),
                ("c", IssueState.REVIEWING),
                ("d", IssueState.IMPLEMENTED),
            ]:
                await repo.upsert(issue_id, "org", state)
            return await IssueLifecycle(repo).list_resumable()

        assert sorted(r.issue_id for r in run_async(scenario())) == ["b", "c"]

    def test_count_by_state(self):
        async def scenario():
            repo = InMemoryIssueRepository()
            for issue_id, state in [
                ("a", IssueState.IN_PROGRESS),
                ("b", IssueState.IN_PROGRESS),
                ("c", IssueState.IMPLEMENTED),
            ]:
                await repo.upsert(issue_id, "org", state)
            return await IssueLifecycle(repo).count_by_state()

        counts = run_async(scenario())
        assert counts["in_progress"] == 2
        assert counts["implemented"] == 1
        assert counts["planning"] == 0
        assert len(counts) == len(IssueState)


# =============================================================================
# Decisions
# =============================================================================


def _record(state: IssueState, **fields) -> IssueRecord:
    return IssueRecord(issue_id="issue-1", organization_id="org-1", state=state, **fields)


@given(states)
def test_should_plan_only_for_absent_or_planning(state: IssueState):
    assert should_plan(None)
    assert should_plan(_record(state)) == (state == IssueState.PLANNING)


@given(states)
def test_follow_ups_only_while_waiting(state: IssueState):
    assert not accepts_follow_up(None)
    assert accepts_follow_up(_record(state)) == (
        state in (IssueState.AWAITING_CLARIFICATION, IssueState.AWAITING_APPROVAL)
    )


class TestRequire:
    def test_missing_record(self):
        with pytest.raises(PreconditionError) as exc_info:
            require(None, "issue-1", "agent_session_id")
        assert exc_info.value.requirement == "an issue record"

    def test_missing_field(self):
        record = _record(IssueState.IN_PROGRESS, agent_session_id="s-1")
        with pytest.raises(PreconditionError) as exc_info:
            require(record, "issue-1", "agent_session_id", "plan_comment_id")
        assert exc_info.value.requirement == "plan_comment_id"
        assert exc_info.value.issue_id == "issue-1"

    def test_all_present(self):
        record = _record(IssueState.IN_PROGRESS, agent_session_id="s-1", plan_comment_id="c-1")
        assert require(record, "issue-1", "agent_session_id", "plan_comment_id") is record
