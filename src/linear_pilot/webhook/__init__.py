"""Webhook ingress for Linear and GitHub.

Verifies signatures and normalizes payloads into the events the
dispatcher consumes.
"""

from .handler import (
    GitHubWebhookHandler,
    LinearWebhookHandler,
    verify_signature,
)
from .models import (
    AssignmentEvent,
    ConversationReply,
    FollowUpEvent,
    InlineReply,
    PullRequestTriggerEvent,
    ReplyLocation,
)

__all__ = [
    "AssignmentEvent",
    "ConversationReply",
    "FollowUpEvent",
    "GitHubWebhookHandler",
    "InlineReply",
    "LinearWebhookHandler",
    "PullRequestTriggerEvent",
    "ReplyLocation",
    "verify_signature",
]
