"""GitHub REST client for pull request interactions.

Covers the four calls the agent makes against GitHub: opening a pull
request, reading one, commenting on its conversation and replying inside
an inline review thread. Transient failures are retried with jittered
backoff; an exhausted rate limit is raised immediately as RateLimitError.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx

from src.linear_pilot.github.models import PullRequest, PullRequestCreate
from src.linear_pilot.retry import RETRYABLE_STATUS_CODES, jittered_backoff


logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code, when GitHub answered.
        response_body: Raw response body, when GitHub answered.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class RateLimitError(GitHubAPIError):
    """The token's rate limit is exhausted.

    Attributes:
        reset_at: Unix time at which the limit resets, if reported.
        retry_after: Seconds to wait before retrying, if known.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


def _int_header(response: httpx.Response, name: str) -> Optional[int]:
    try:
        return int(response.headers[name])
    except (KeyError, ValueError):
        return None


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    return response.status_code == 403 and _int_header(response, "x-ratelimit-remaining") == 0


class GitHubClient:
    """Async GitHub API client with retry and rate-limit detection.

    Works against github.com and GitHub Enterprise Server through
    ``base_url``.

    Example:
        >>> async with GitHubClient(token="ghp_xxx") as github:
        ...     url = await github.create_pull_request(
        ...         "acme", "widgets", "Add export", "body", "linear-pilot/eng-1", "main"
        ...     )
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": "linear-pilot/1.0",
        }

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _wait_before_retry(self, attempt: int, path: str, reason: str) -> None:
        delay = jittered_backoff(attempt, self.base_delay, self.max_delay)
        logger.warning(
            "Retrying GitHub request after %s",
            reason,
            extra={"path": path, "attempt": attempt + 1, "delay": round(delay, 2)},
        )
        await asyncio.sleep(delay)

    def _rate_limit_error(self, response: httpx.Response) -> RateLimitError:
        reset_at = _int_header(response, "x-ratelimit-reset")
        retry_after = _int_header(response, "retry-after")
        if retry_after is None and reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        logger.warning(
            "GitHub rate limit exhausted",
            extra={"reset_at": reset_at, "retry_after": retry_after},
        )
        return RateLimitError(
            "GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.url),
        )

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send a request, retrying timeouts, network errors and 5xx.

        Raises:
            RateLimitError: The rate limit is exhausted (not retried).
            GitHubAPIError: Any other 4xx, or retries ran out.
        """
        attempt = 0
        while True:
            retries_left = attempt < self.max_retries
            try:
                response = await self.client.request(method, path, json=json_data, params=params)
            except httpx.RequestError as exc:
                if not retries_left:
                    raise GitHubAPIError(
                        f"Request failed after {self.max_retries} retries: {exc}",
                        request_url=f"{self.base_url}{path}",
                    ) from exc
                await self._wait_before_retry(attempt, path, type(exc).__name__)
                attempt += 1
                continue

            if _is_rate_limited(response):
                raise self._rate_limit_error(response)

            if response.status_code in RETRYABLE_STATUS_CODES and retries_left:
                await self._wait_before_retry(attempt, path, f"HTTP {response.status_code}")
                attempt += 1
                continue

            if response.is_error:
                logger.error(
                    "GitHub API error",
                    extra={
                        "method": method,
                        "path": path,
                        "status_code": response.status_code,
                        "response_body": response.text[:500],
                    },
                )
                raise GitHubAPIError(
                    f"GitHub API error: {response.status_code}",
                    status_code=response.status_code,
                    response_body=response.text,
                    request_url=str(response.url),
                )
            return response

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> str:
        """Open a pull request and return its web URL.

        Raises:
            GitHubAPIError: On failure, including the 422 GitHub returns
                when a pull request for ``head`` already exists.
        """
        request = PullRequestCreate(title=title, body=body, head=head, base=base)
        response = await self._request(
            "POST", f"/repos/{owner}/{repo}/pulls", json_data=request.model_dump()
        )
        pull_request = PullRequest.from_github_response(response.json())
        logger.info(
            "Opened pull request",
            extra={
                "repository": f"{owner}/{repo}",
                "head": head,
                "base": base,
                "pr_url": pull_request.html_url,
            },
        )
        return pull_request.html_url

    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        response = await self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}")
        return PullRequest.from_github_response(response.json())

    async def create_issue_comment(
        self,
        owner: str,
        repo: str,
        number: int,
        body: str,
    ) -> Dict[str, Any]:
        """Comment on a pull request's conversation (the issues comment API)."""
        response = await self._request(
            "POST", f"/repos/{owner}/{repo}/issues/{number}/comments", json_data={"body": body}
        )
        return response.json()

    async def reply_to_review_comment(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        comment_id: int,
        body: str,
    ) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{pr_number}/comments/{comment_id}/replies",
            json_data={"body": body},
        )
        return response.json()

    async def find_open_pull_request(
        self, owner: str, repo: str, branch: str
    ) -> Optional[PullRequest]:
        """Return the open pull request whose head is ``owner:branch``, if any."""
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls",
            params={"head": f"{owner}:{branch}", "state": "open"},
        )
        pulls = response.json()
        if not pulls:
            return None
        return PullRequest.from_github_response(pulls[0])
