"""Unit tests for webhook signature verification and payload normalization."""

import hashlib
import hmac
from typing import Any, Dict, Optional

import pytest
from hypothesis import given, settings, strategies as st

from src.linear_pilot.webhook import (
    AssignmentEvent,
    ConversationReply,
    FollowUpEvent,
    GitHubWebhookHandler,
    InlineReply,
    LinearWebhookHandler,
    verify_signature,
)
from src.linear_pilot.webhook.handler import SYSTEM_THREAD_PREFIX


def _sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------


class TestVerifySignature:
    def test_skipped_without_secret(self):
        assert verify_signature(b"{}", None, None)
        assert verify_signature(b"{}", "garbage", "")

    def test_missing_signature_rejected(self):
        assert not verify_signature(b"{}", None, "s3cret")

    def test_linear_hex_digest(self):
        handler = LinearWebhookHandler(secret="s3cret")
        body = b'{"type":"AgentSessionEvent"}'
        assert handler.verify(body, _sign(body, "s3cret"))
        assert not handler.verify(body, _sign(body, "other"))
        assert not handler.verify(body + b" ", _sign(body, "s3cret"))

    def test_github_prefixed_digest(self):
        handler = GitHubWebhookHandler(secret="s3cret")
        body = b'{"action":"created"}'
        assert handler.verify(body, "sha256=" + _sign(body, "s3cret"))
        assert not handler.verify(body, _sign(body, "s3cret"))

    @settings(max_examples=50)
    @given(st.binary(max_size=200), st.text(min_size=1, max_size=20))
    def test_any_body_verifies_with_its_own_signature(self, body, secret):
        assert verify_signature(body, _sign(body, secret), secret)


# ---------------------------------------------------------------------------
# Linear
# ---------------------------------------------------------------------------


def _session_payload(
    action: str,
    prompt: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    session: Dict[str, Any] = {"id": "session-1", "issue": {"id": "issue-1"}}
    if prompt is not None:
        session["prompt"] = prompt
    payload: Dict[str, Any] = {
        "type": "AgentSessionEvent",
        "action": action,
        "organizationId": "org-1",
        "agentSession": session,
    }
    payload.update(extra or {})
    return payload


class TestLinearWebhookHandler:
    def setup_method(self):
        self.handler = LinearWebhookHandler()

    def test_session_created_is_assignment(self):
        event = self.handler.parse(_session_payload("created"))
        assert event == AssignmentEvent(
            issue_id="issue-1", organization_id="org-1", agent_session_id="session-1"
        )

    def test_session_prompted_is_follow_up(self):
        event = self.handler.parse(_session_payload("prompted", prompt="  approved  "))
        assert isinstance(event, FollowUpEvent)
        assert event.message == "approved"
        assert event.agent_session_id == "session-1"

    def test_prompt_falls_back_to_activity_body(self):
        payload = _session_payload(
            "prompted",
            prompt=f"{SYSTEM_THREAD_PREFIX} the agent",
            extra={"agentActivity": {"content": {"body": "use postgres"}}},
        )
        assert self.handler.parse(payload).message == "use postgres"

    def test_prompt_without_text_is_empty(self):
        assert self.handler.parse(_session_payload("prompted")).message == ""

    def test_session_without_issue_is_ignored(self):
        payload = _session_payload("created")
        payload["agentSession"] = {"id": "session-1"}
        assert self.handler.parse(payload) is None

    def test_missing_organization_is_ignored(self):
        payload = _session_payload("created")
        del payload["organizationId"]
        assert self.handler.parse(payload) is None

    def test_assignee_change_is_assignment(self):
        payload = {
            "type": "Issue",
            "action": "update",
            "organizationId": "org-1",
            "data": {"id": "issue-2", "assigneeId": "user-9"},
            "updatedFrom": {"assigneeId": None},
        }
        event = self.handler.parse(payload)
        assert event == AssignmentEvent(
            issue_id="issue-2", organization_id="org-1", assignee_id="user-9"
        )

    def test_issue_update_without_assignee_change_is_ignored(self):
        payload = {
            "type": "Issue",
            "action": "update",
            "organizationId": "org-1",
            "data": {"id": "issue-2", "assigneeId": "user-9"},
            "updatedFrom": {"title": "old"},
        }
        assert self.handler.parse(payload) is None

    @pytest.mark.parametrize("payload", [None, [], "text", {"type": "Comment", "organizationId": "o"}])
    def test_unsupported_payloads_are_ignored(self, payload):
        assert self.handler.parse(payload) is None


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


def _repository() -> Dict[str, Any]:
    return {"name": "widgets", "owner": {"login": "acme"}}


class TestGitHubWebhookHandler:
    def setup_method(self):
        self.handler = GitHubWebhookHandler(mention_handle="linear-pilot")

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("@linear-pilot rename the helper", "rename the helper"),
            ("@Linear-Pilot-bot add tests\nfor the parser", "add tests\nfor the parser"),
            ("Nice work. @linear-pilot fix the typo", "fix the typo"),
            ("@linear-pilot", None),
            ("no mention here", None),
            ("> @linear-pilot old instruction\n\nDone.", None),
            ("> @linear-pilot old instruction\n@linear-pilot new one", "new one"),
            (None, None),
        ],
    )
    def test_extract_instruction(self, text, expected):
        assert self.handler.extract_instruction(text) == expected

    def test_inline_review_comment(self):
        payload = {
            "action": "created",
            "repository": _repository(),
            "pull_request": {"number": 12},
            "comment": {"id": 555, "body": "@linear-pilot use a set", "user": {"login": "rev"}},
        }
        event = self.handler.parse("pull_request_review_comment", payload)
        assert event.pull_request == "acme/widgets#12"
        assert event.instruction == "use a set"
        assert event.reply == InlineReply(comment_id=555)
        assert event.author == "rev"

    def test_review_body(self):
        payload = {
            "action": "submitted",
            "repository": _repository(),
            "pull_request": {"number": 12},
            "review": {"body": "@linear-pilot squash helpers", "user": {"login": "rev"}},
        }
        event = self.handler.parse("pull_request_review", payload)
        assert event.reply == ConversationReply(original_body="@linear-pilot squash helpers")

    def test_pull_request_conversation_comment(self):
        payload = {
            "action": "created",
            "repository": _repository(),
            "issue": {"number": 3, "pull_request": {"url": "https://api.github.com/x"}},
            "comment": {"body": "@linear-pilot bump the version", "user": {"login": "dev"}},
        }
        event = self.handler.parse("issue_comment", payload)
        assert event.pr_number == 3
        assert event.reply.kind == "conversation"

    def test_plain_issue_comment_is_ignored(self):
        payload = {
            "action": "created",
            "repository": _repository(),
            "issue": {"number": 3},
            "comment": {"body": "@linear-pilot bump the version"},
        }
        assert self.handler.parse("issue_comment", payload) is None

    def test_agent_quote_reply_does_not_retrigger(self):
        payload = {
            "action": "created",
            "repository": _repository(),
            "issue": {"number": 3, "pull_request": {"url": "u"}},
            "comment": {"body": "> @linear-pilot bump the version\n\nGot it. Working on this now."},
        }
        assert self.handler.parse("issue_comment", payload) is None

    def test_review_comment_without_id_is_ignored(self):
        payload = {
            "action": "created",
            "repository": _repository(),
            "pull_request": {"number": 12},
            "comment": {"body": "@linear-pilot use a set"},
        }
        assert self.handler.parse("pull_request_review_comment", payload) is None

    def test_missing_pr_number_is_ignored(self):
        payload = {
            "action": "submitted",
            "repository": _repository(),
            "pull_request": {},
            "review": {"body": "@linear-pilot squash helpers"},
        }
        assert self.handler.parse("pull_request_review", payload) is None

    def test_other_events_are_ignored(self):
        payload = {"action": "opened", "repository": _repository()}
        assert self.handler.parse("pull_request", payload) is None
