"""Normalized webhook events.

Linear and GitHub payloads are parsed into these models at the ingress
edge. Everything downstream of the webhook routes sees only these shapes,
never raw payloads.
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field


class AssignmentEvent(BaseModel):
    """The agent was delegated an issue.

    Attributes:
        issue_id: Linear issue id.
        organization_id: Linear organization the issue belongs to.
        agent_session_id: Session thread to post into, when the delegation
            came from an agent session.
        assignee_id: New assignee, when the delegation came from a plain
            assignee change. The dispatcher checks it against the app user.
    """

    issue_id: str = Field(..., min_length=1)
    organization_id: str = Field(..., min_length=1)
    agent_session_id: Optional[str] = None
    assignee_id: Optional[str] = None


class FollowUpEvent(BaseModel):
    """A user replied in an issue's agent session thread."""

    issue_id: str = Field(..., min_length=1)
    organization_id: str = Field(..., min_length=1)
    agent_session_id: str = Field(..., min_length=1)
    message: str = ""


class InlineReply(BaseModel):
    """Reply inside the inline review comment thread ``comment_id``."""

    kind: Literal["inline"] = "inline"
    comment_id: int


class ConversationReply(BaseModel):
    """Reply on the PR conversation, quoting the triggering comment."""

    kind: Literal["conversation"] = "conversation"
    original_body: str = ""


ReplyLocation = Union[InlineReply, ConversationReply]


class PullRequestTriggerEvent(BaseModel):
    """An ``@handle <instruction>`` mention on a pull request."""

    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)
    pr_number: int = Field(..., gt=0)
    instruction: str = Field(..., min_length=1)
    reply: ReplyLocation = Field(..., discriminator="kind")
    author: Optional[str] = None

    @property
    def pull_request(self) -> str:
        return f"{self.owner}/{self.repo}#{self.pr_number}"
