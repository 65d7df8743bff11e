"""Observability event models.

This module defines the data models for agent events:
- EventType: Enum of all event types
- PilotEvent: Structured event with its subject and context

Events are emitted on lifecycle transitions, phase errors and phase
completions, and routed to logging and Prometheus metrics.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the agent.

    Attributes:
        STATE_TRANSITION: An issue record moved to a different lifecycle state.
        ERROR: A phase caught a collaborator failure at its boundary.
        COMPLETION: A phase finished its work successfully.
    """

    STATE_TRANSITION = "state_transition"
    ERROR = "error"
    COMPLETION = "completion"


class PilotEvent(BaseModel):
    """Structured event emitted by the agent.

    Attributes:
        event_type: The category of event.
        subject: What the event is about: a Linear issue id, or
            "{owner}/{repo}#{number}" for pull-request work.
        organization_id: Linear organization, when known.
        timestamp: When the event occurred (UTC).
        details: Additional context specific to the event type.

    Details Field Conventions:
        For STATE_TRANSITION events:
            - from_state: Previous lifecycle state (None on creation)
            - to_state: New lifecycle state

        For ERROR events:
            - phase: Phase that caught the error
            - error_type: Exception class name
            - error_message: Human-readable error description

        For COMPLETION events:
            - phase: Phase that completed
            - outcome: Short result label (e.g. "changes", "clean", "pr_opened")
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    subject: str = Field(
        ...,
        min_length=1,
        description="Issue id or pull request key the event is about",
    )

    organization_id: Optional[str] = Field(
        default=None,
        description="Linear organization id, when known",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten the event for structured logging."""
        return {
            "event_type": self.event_type.value,
            "subject": self.subject,
            "organization_id": self.organization_id,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
