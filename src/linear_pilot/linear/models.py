"""Linear data models returned by the Linear client."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class IssueComment(BaseModel):
    """One comment in an issue's thread."""

    id: str
    body: str = ""
    created_at: Optional[datetime] = None
    user_id: Optional[str] = None


class IssueDetails(BaseModel):
    """Issue fields the phases need, plus its comment thread (oldest first)."""

    id: str
    identifier: str = Field(..., description='Human identifier, e.g. "ENG-123"')
    title: str
    description: Optional[str] = None
    url: str = ""
    status_name: Optional[str] = None
    status_id: Optional[str] = None
    creator_name: Optional[str] = None
    comments: List[IssueComment] = Field(default_factory=list)

    @classmethod
    def from_graphql(cls, node: Dict[str, Any]) -> "IssueDetails":
        state = node.get("state") or {}
        creator = node.get("creator") or {}
        comment_nodes = (node.get("comments") or {}).get("nodes") or []

        comments = [
            IssueComment(
                id=c["id"],
                body=c.get("body") or "",
                created_at=c.get("createdAt"),
                user_id=(c.get("user") or {}).get("id"),
            )
            for c in comment_nodes
        ]
        comments.sort(key=lambda c: (c.created_at is None, c.created_at or datetime.min))

        return cls(
            id=node["id"],
            identifier=node["identifier"],
            title=node.get("title") or "",
            description=node.get("description"),
            url=node.get("url") or "",
            status_name=state.get("name"),
            status_id=state.get("id"),
            creator_name=creator.get("displayName") or creator.get("name"),
            comments=comments,
        )

    @property
    def last_comment_body(self) -> str:
        return self.comments[-1].body if self.comments else ""
