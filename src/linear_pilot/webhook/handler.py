"""Webhook signature verification and payload normalization.

Linear payloads handled:
- ``AgentSessionEvent`` ``created``: the agent was delegated an issue
- ``AgentSessionEvent`` ``prompted``: the user replied in the session thread
- ``Issue`` ``update`` with a changed assignee: possible delegation

GitHub payloads handled (only when the text mentions ``@<handle>``):
- ``pull_request_review_comment`` ``created``: inline review comment
- ``pull_request_review`` ``submitted``: review body
- ``issue_comment`` ``created`` on a pull request: conversation comment

Anything else parses to ``None`` and is acknowledged without action.
"""

import hashlib
import hmac
import logging
import re
from typing import Any, Dict, Optional, Union

from .models import (
    AssignmentEvent,
    ConversationReply,
    FollowUpEvent,
    InlineReply,
    PullRequestTriggerEvent,
)

logger = logging.getLogger(__name__)

LinearEvent = Union[AssignmentEvent, FollowUpEvent]

# Linear fills some prompt fields with this boilerplate instead of the reply
SYSTEM_THREAD_PREFIX = "This thread is for an agent session with"


def verify_signature(
    raw_body: bytes,
    signature: Optional[str],
    secret: Optional[str],
    prefix: str = "",
) -> bool:
    """Check an HMAC-SHA256 hex signature over the raw request body.

    Always passes when ``secret`` is unset.
    """
    if not secret:
        return True
    if not signature:
        return False
    expected = prefix + hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.strip(), expected)


class LinearWebhookHandler:
    """Parses Linear webhook payloads into assignment and follow-up events."""

    SIGNATURE_HEADER = "linear-signature"

    def __init__(self, secret: Optional[str] = None) -> None:
        self.secret = secret

    def verify(self, raw_body: bytes, signature: Optional[str]) -> bool:
        return verify_signature(raw_body, signature, self.secret)

    def parse(self, payload: Dict[str, Any]) -> Optional[LinearEvent]:
        if not isinstance(payload, dict):
            logger.warning("Invalid Linear payload: expected dict, got %s", type(payload))
            return None

        event_type = payload.get("type")
        action = payload.get("action")
        organization_id = payload.get("organizationId")
        if not organization_id:
            logger.warning(
                "Linear payload without organizationId",
                extra={"type": event_type, "action": action},
            )
            return None

        if event_type == "AgentSessionEvent":
            return self._parse_agent_session(payload, action, organization_id)
        if event_type == "Issue" and action == "update":
            return self._parse_issue_update(payload, organization_id)

        logger.debug("Ignoring Linear event type=%s action=%s", event_type, action)
        return None

    def _parse_agent_session(
        self,
        payload: Dict[str, Any],
        action: Optional[str],
        organization_id: str,
    ) -> Optional[LinearEvent]:
        session = payload.get("agentSession") or {}
        session_id = session.get("id")
        issue_id = (session.get("issue") or {}).get("id") or session.get("issueId")

        if not session_id or not issue_id:
            logger.warning(
                "AgentSessionEvent without session or issue id",
                extra={"action": action, "agent_session_id": session_id},
            )
            return None

        if action == "created":
            logger.info(
                "Parsed agent session created",
                extra={"issue_id": issue_id, "agent_session_id": session_id},
            )
            return AssignmentEvent(
                issue_id=issue_id,
                organization_id=organization_id,
                agent_session_id=session_id,
            )

        if action == "prompted":
            message = self._extract_prompt(payload, session)
            logger.info(
                "Parsed agent session prompt",
                extra={
                    "issue_id": issue_id,
                    "agent_session_id": session_id,
                    "message_preview": message[:120],
                },
            )
            return FollowUpEvent(
                issue_id=issue_id,
                organization_id=organization_id,
                agent_session_id=session_id,
                message=message,
            )

        logger.debug("Ignoring AgentSessionEvent action=%s", action)
        return None

    @staticmethod
    def _extract_prompt(payload: Dict[str, Any], session: Dict[str, Any]) -> str:
        """Find the user's reply text; its location varies by payload version."""
        activity = payload.get("agentActivity") or {}
        data = payload.get("data") or {}
        candidates = [
            session.get("prompt"),
            (activity.get("content") or {}).get("body"),
            (data.get("comment") or {}).get("body"),
            data.get("body"),
            activity.get("body"),
            (session.get("comment") or {}).get("body"),
        ]
        for candidate in candidates:
            if (
                isinstance(candidate, str)
                and candidate.strip()
                and not candidate.startswith(SYSTEM_THREAD_PREFIX)
            ):
                return candidate.strip()
        return ""

    def _parse_issue_update(
        self,
        payload: Dict[str, Any],
        organization_id: str,
    ) -> Optional[AssignmentEvent]:
        data = payload.get("data") or {}
        updated_from = payload.get("updatedFrom") or {}
        assignee_id = data.get("assigneeId")

        if not assignee_id or "assigneeId" not in updated_from:
            return None
        if updated_from.get("assigneeId") == assignee_id or not data.get("id"):
            return None

        logger.info(
            "Parsed issue assignee change",
            extra={"issue_id": data["id"], "assignee_id": assignee_id},
        )
        return AssignmentEvent(
            issue_id=data["id"],
            organization_id=organization_id,
            assignee_id=assignee_id,
        )


class GitHubWebhookHandler:
    """Parses GitHub pull request comment payloads into trigger events.

    Attributes:
        secret: Webhook secret for ``x-hub-signature-256`` verification.
        mention_handle: Handle that triggers the agent (``@handle`` or
            ``@handle-bot``).
    """

    SIGNATURE_HEADER = "x-hub-signature-256"
    EVENT_HEADER = "x-github-event"

    def __init__(self, secret: Optional[str] = None, mention_handle: str = "linear-pilot") -> None:
        self.secret = secret
        self.mention_handle = mention_handle
        self._trigger = re.compile(
            rf"@{re.escape(mention_handle)}(?:-bot)?\s+(.+)",
            re.IGNORECASE | re.DOTALL,
        )

    def verify(self, raw_body: bytes, signature: Optional[str]) -> bool:
        return verify_signature(raw_body, signature, self.secret, prefix="sha256=")

    def extract_instruction(self, text: Optional[str]) -> Optional[str]:
        """Return the instruction following the mention, if any.

        Quoted lines are ignored so the agent's own quoting replies never
        trigger another run.
        """
        unquoted = "\n".join(
            line for line in (text or "").splitlines() if not line.lstrip().startswith(">")
        )
        match = self._trigger.search(unquoted.strip())
        if not match:
            return None
        instruction = match.group(1).strip()
        return instruction or None

    def parse(
        self,
        event_name: Optional[str],
        payload: Dict[str, Any],
    ) -> Optional[PullRequestTriggerEvent]:
        if not isinstance(payload, dict):
            logger.warning("Invalid GitHub payload: expected dict, got %s", type(payload))
            return None

        action = payload.get("action")
        repository = payload.get("repository") or {}
        owner = (repository.get("owner") or {}).get("login")
        repo = repository.get("name")
        if not owner or not repo:
            logger.debug("GitHub payload without repository, ignoring")
            return None

        if event_name == "pull_request_review_comment" and action == "created":
            comment = payload.get("comment") or {}
            number = (payload.get("pull_request") or {}).get("number")
            text = comment.get("body")
            author = (comment.get("user") or {}).get("login")
            if not isinstance(comment.get("id"), int):
                logger.warning("Review comment without id, ignoring")
                return None
            reply = InlineReply(comment_id=comment["id"])
        elif event_name == "pull_request_review" and action == "submitted":
            review = payload.get("review") or {}
            number = (payload.get("pull_request") or {}).get("number")
            text = review.get("body")
            author = (review.get("user") or {}).get("login")
            reply = ConversationReply(original_body=text or "")
        elif event_name == "issue_comment" and action == "created":
            issue = payload.get("issue") or {}
            if not issue.get("pull_request"):
                logger.debug("Comment on a plain issue, ignoring")
                return None
            comment = payload.get("comment") or {}
            number = issue.get("number")
            text = comment.get("body")
            author = (comment.get("user") or {}).get("login")
            reply = ConversationReply(original_body=text or "")
        else:
            logger.debug("Ignoring GitHub event=%s action=%s", event_name, action)
            return None

        if not isinstance(number, int) or number <= 0:
            logger.warning("GitHub payload without pull request number, ignoring")
            return None

        instruction = self.extract_instruction(text)
        if instruction is None:
            logger.debug(
                "No @%s mention on %s/%s#%s, ignoring",
                self.mention_handle,
                owner,
                repo,
                number,
            )
            return None

        event = PullRequestTriggerEvent(
            owner=owner,
            repo=repo,
            pr_number=number,
            instruction=instruction,
            reply=reply,
            author=author,
        )
        logger.info(
            "Parsed pull request trigger",
            extra={
                "pull_request": event.pull_request,
                "author": author,
                "reply_kind": reply.kind,
                "instruction_preview": instruction[:80],
            },
        )
        return event
