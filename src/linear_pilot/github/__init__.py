"""GitHub API client for pull request interactions.

Includes rate limiting and retry logic for API resilience.
"""

from src.linear_pilot.github.client import (
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
)
from src.linear_pilot.github.models import PullRequest, PullRequestCreate

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "PullRequest",
    "PullRequestCreate",
    "RateLimitError",
]
