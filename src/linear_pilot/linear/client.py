"""Linear GraphQL API client.

This module provides an async wrapper around the Linear GraphQL API for:
- Fetching an issue with its comment thread
- Posting agent session activities (thread messages)
- Creating, updating and fetching persistent comments
- Moving an issue to a named workflow status
- Resolving the authenticated viewer and organization

Includes retry logic with exponential backoff for transient failures.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from src.linear_pilot.linear.models import IssueDetails
from src.linear_pilot.retry import RETRYABLE_STATUS_CODES, jittered_backoff


logger = logging.getLogger(__name__)


class LinearAPIError(Exception):
    """Raised when a Linear API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code, if the failure was at the HTTP level.
        errors: GraphQL error objects, if the server returned any.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[list] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.errors = errors or []
        super().__init__(message)


ISSUE_WITH_COMMENTS_QUERY = """
query IssueWithComments($id: String!) {
  issue(id: $id) {
    id
    identifier
    title
    description
    url
    state { id name }
    creator { name displayName }
    comments(first: 250) {
      nodes { id body createdAt user { id } }
    }
  }
}
"""

TEAM_STATES_QUERY = """
query IssueTeamStates($id: String!) {
  issue(id: $id) {
    team {
      id
      states { nodes { id name } }
    }
  }
}
"""

AGENT_ACTIVITY_MUTATION = """
mutation AgentActivityCreate($input: AgentActivityCreateInput!) {
  agentActivityCreate(input: $input) { success }
}
"""

COMMENT_CREATE_MUTATION = """
mutation CommentCreate($input: CommentCreateInput!) {
  commentCreate(input: $input) {
    success
    comment { id }
  }
}
"""

COMMENT_UPDATE_MUTATION = """
mutation CommentUpdate($id: String!, $input: CommentUpdateInput!) {
  commentUpdate(id: $id, input: $input) { success }
}
"""

COMMENT_QUERY = """
query Comment($id: String!) {
  comment(id: $id) { id body }
}
"""

ISSUE_UPDATE_MUTATION = """
mutation IssueUpdate($id: String!, $input: IssueUpdateInput!) {
  issueUpdate(id: $id, input: $input) { success }
}
"""

VIEWER_QUERY = """
query Viewer {
  viewer { id }
}
"""

ORGANIZATION_QUERY = """
query Organization {
  organization { id name }
}
"""


class LinearClient:
    """Async Linear GraphQL client with retry logic.

    One client is bound to one access token (one installed workspace).

    Attributes:
        access_token: OAuth or API token for the workspace.
        api_url: GraphQL endpoint URL.
        max_retries: Maximum number of retry attempts for transient failures.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> async with LinearClient(access_token="lin_oauth_xxx") as linear:
        ...     issue = await linear.fetch_issue_with_comments("issue-uuid")
    """

    def __init__(
        self,
        access_token: str,
        api_url: str = "https://api.linear.app/graphql",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        timeout: float = 30.0,
    ):
        self.access_token = access_token
        self.api_url = api_url
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=self._default_headers(),
                timeout=self.timeout,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        # Personal API keys are sent bare; OAuth tokens use the Bearer scheme.
        authorization = (
            self.access_token
            if self.access_token.startswith("lin_api_")
            else f"Bearer {self.access_token}"
        )
        return {
            "Authorization": authorization,
            "Content-Type": "application/json",
            "User-Agent": "linear-pilot/1.0",
        }

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LinearClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _wait_before_retry(self, attempt: int, reason: str) -> None:
        delay = jittered_backoff(attempt, self.base_delay, self.max_delay)
        logger.warning(
            "Retrying Linear request after %s",
            reason,
            extra={"attempt": attempt + 1, "delay": round(delay, 2)},
        )
        await asyncio.sleep(delay)

    async def _execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Run a GraphQL operation and return its ``data`` object.

        Timeouts, network errors and 5xx are retried. GraphQL errors are
        never retried; Linear reports validation failures as a 400 whose
        body carries the ``errors`` list, so 400 bodies are read for them.

        Raises:
            LinearAPIError: On GraphQL errors, other HTTP errors, or when
                retries run out.
        """
        payload = {"query": query, "variables": variables or {}}
        attempt = 0
        while True:
            retries_left = attempt < self.max_retries
            try:
                response = await self.client.post(self.api_url, json=payload)
            except httpx.RequestError as exc:
                if not retries_left:
                    raise LinearAPIError(
                        f"Request failed after {self.max_retries} retries: {exc}"
                    ) from exc
                await self._wait_before_retry(attempt, type(exc).__name__)
                attempt += 1
                continue

            if response.status_code in RETRYABLE_STATUS_CODES and retries_left:
                await self._wait_before_retry(attempt, f"HTTP {response.status_code}")
                attempt += 1
                continue

            return self._read_data(response)

    def _read_data(self, response: httpx.Response) -> Dict[str, Any]:
        status = response.status_code
        if status > 400:
            logger.error(
                "Linear API error",
                extra={"status_code": status, "response_body": response.text[:500]},
            )
            raise LinearAPIError(f"Linear API error: {status}", status_code=status)

        try:
            body = response.json()
        except ValueError:
            raise LinearAPIError(
                f"Linear API returned a non-JSON body: {status}", status_code=status
            )

        errors = body.get("errors")
        if errors:
            summary = "; ".join(str(e.get("message", e)) for e in errors)
            logger.error("Linear GraphQL error", extra={"status_code": status, "errors": summary})
            raise LinearAPIError(
                f"Linear GraphQL error: {summary}", status_code=status, errors=errors
            )
        if status == 400:
            raise LinearAPIError(f"Linear API error: {status}", status_code=status)
        return body.get("data") or {}

    async def fetch_issue_with_comments(self, issue_id: str) -> IssueDetails:
        """Fetch an issue and its comment thread, oldest comment first.

        Raises:
            LinearAPIError: If the request fails or the issue does not exist.
        """
        data = await self._execute(ISSUE_WITH_COMMENTS_QUERY, {"id": issue_id})
        node = data.get("issue")
        if not node:
            raise LinearAPIError(f"Issue not found: {issue_id}")

        issue = IssueDetails.from_graphql(node)
        logger.debug(
            "Fetched issue",
            extra={
                "issue_id": issue_id,
                "identifier": issue.identifier,
                "comment_count": len(issue.comments),
            },
        )
        return issue

    async def post_agent_activity(
        self,
        agent_session_id: str,
        body: str,
        kind: str = "response",
    ) -> None:
        """Post a message to an agent session thread.

        Args:
            agent_session_id: The session to post into.
            body: Markdown message body.
            kind: Activity content type ("response", "thought", "error").
        """
        await self._execute(
            AGENT_ACTIVITY_MUTATION,
            {
                "input": {
                    "agentSessionId": agent_session_id,
                    "content": {"type": kind, "body": body},
                }
            },
        )
        logger.debug(
            "Posted agent activity",
            extra={"agent_session_id": agent_session_id, "kind": kind, "body_length": len(body)},
        )

    async def create_comment(self, issue_id: str, body: str) -> str:
        """Create a persistent comment on an issue and return its id."""
        data = await self._execute(
            COMMENT_CREATE_MUTATION,
            {"input": {"issueId": issue_id, "body": body}},
        )
        comment = (data.get("commentCreate") or {}).get("comment")
        if not comment or not comment.get("id"):
            raise LinearAPIError(f"Comment creation returned no comment for issue {issue_id}")

        logger.info(
            "Comment created",
            extra={"issue_id": issue_id, "comment_id": comment["id"]},
        )
        return comment["id"]

    async def update_comment(self, comment_id: str, body: str) -> None:
        await self._execute(
            COMMENT_UPDATE_MUTATION,
            {"id": comment_id, "input": {"body": body}},
        )
        logger.debug("Comment updated", extra={"comment_id": comment_id})

    async def fetch_comment(self, comment_id: str) -> str:
        """Return the body of a comment."""
        data = await self._execute(COMMENT_QUERY, {"id": comment_id})
        comment = data.get("comment")
        if not comment:
            raise LinearAPIError(f"Comment not found: {comment_id}")
        return comment.get("body") or ""

    async def update_issue_status(self, issue_id: str, status_name: str) -> bool:
        """Move an issue to the team workflow status named ``status_name``.

        Best-effort: an unknown status name or a missing team is logged and
        skipped. The name match is case-insensitive.

        Returns:
            True if the issue was updated.
        """
        data = await self._execute(TEAM_STATES_QUERY, {"id": issue_id})
        team = (data.get("issue") or {}).get("team")
        if not team:
            logger.warning(
                "No team found for issue, skipping status update",
                extra={"issue_id": issue_id, "status": status_name},
            )
            return False

        states = (team.get("states") or {}).get("nodes") or []
        target = next(
            (s for s in states if s.get("name", "").lower() == status_name.lower()),
            None,
        )
        if target is None:
            logger.warning(
                "Workflow status not found for team, skipping status update",
                extra={
                    "issue_id": issue_id,
                    "status": status_name,
                    "team_id": team.get("id"),
                    "available": ", ".join(s.get("name", "") for s in states),
                },
            )
            return False

        await self._execute(
            ISSUE_UPDATE_MUTATION,
            {"id": issue_id, "input": {"stateId": target["id"]}},
        )
        logger.info(
            "Issue status updated",
            extra={"issue_id": issue_id, "status": target.get("name")},
        )
        return True

    async def viewer_id(self) -> str:
        """Id of the user the token acts as (the app user for app installs)."""
        data = await self._execute(VIEWER_QUERY)
        viewer = data.get("viewer") or {}
        if not viewer.get("id"):
            raise LinearAPIError("Viewer query returned no id")
        return viewer["id"]

    async def organization_id(self) -> str:
        data = await self._execute(ORGANIZATION_QUERY)
        organization = data.get("organization") or {}
        if not organization.get("id"):
            raise LinearAPIError("Organization query returned no id")
        return organization["id"]
