"""Git checkouts, branches, commits and pushes for agent work."""

from src.linear_pilot.git.repository import (
    GitCommandError,
    GitRepository,
    parse_remote_slug,
    repository_remote_url,
    to_https_url,
)

__all__ = [
    "GitCommandError",
    "GitRepository",
    "parse_remote_slug",
    "repository_remote_url",
    "to_https_url",
]
