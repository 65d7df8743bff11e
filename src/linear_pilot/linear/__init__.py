"""Linear API access: GraphQL client, issue models and OAuth install flow."""

from src.linear_pilot.linear.client import LinearAPIError, LinearClient
from src.linear_pilot.linear.models import IssueComment, IssueDetails
from src.linear_pilot.linear.oauth import (
    OAuthError,
    build_authorize_url,
    exchange_code,
)

__all__ = [
    "IssueComment",
    "IssueDetails",
    "LinearAPIError",
    "LinearClient",
    "OAuthError",
    "build_authorize_url",
    "exchange_code",
]
