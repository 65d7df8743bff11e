"""GitHub pull request models."""

from typing import Any, Dict

from pydantic import BaseModel, Field


class PullRequestCreate(BaseModel):
    """Request to open a pull request."""

    title: str = Field(..., min_length=1)
    body: str = ""
    head: str = Field(..., min_length=1, description="Branch holding the changes")
    base: str = Field(..., min_length=1, description="Branch to merge into")


class PullRequest(BaseModel):
    """The parts of a GitHub pull request the agent uses."""

    number: int
    html_url: str
    head_ref: str
    base_ref: str
    state: str = "open"

    @classmethod
    def from_github_response(cls, data: Dict[str, Any]) -> "PullRequest":
        return cls(
            number=data["number"],
            html_url=data["html_url"],
            head_ref=data["head"]["ref"],
            base_ref=data["base"]["ref"],
            state=data.get("state", "open"),
        )
