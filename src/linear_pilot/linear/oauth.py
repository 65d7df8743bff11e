"""Linear OAuth application install flow.

A workspace admin visits ``/oauth/authorize``, is redirected to Linear with
``actor=app`` and comes back to ``/oauth/callback`` with a code. The code is
exchanged for an access token, which is stored per organization.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx


logger = logging.getLogger(__name__)


AUTHORIZE_URL = "https://linear.app/oauth/authorize"
TOKEN_URL = "https://api.linear.app/oauth/token"

DEFAULT_SCOPES = (
    "read",
    "write",
    "issues:create",
    "comments:create",
    "app:assignable",
    "app:mentionable",
)


class OAuthError(Exception):
    """Raised when the authorization code exchange fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the token endpoint, if any.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def build_authorize_url(
    client_id: str,
    redirect_uri: str,
    state: Optional[str] = None,
    scopes: tuple = DEFAULT_SCOPES,
) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": ",".join(scopes),
        "actor": "app",
    }
    if state:
        params["state"] = state
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


async def exchange_code(
    code: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    timeout: float = 30.0,
) -> str:
    """Exchange an authorization code for an access token.

    Raises:
        OAuthError: If Linear rejects the code or returns no token.
    """
    async with httpx.AsyncClient(timeout=timeout) as client:
        try:
            response = await client.post(
                TOKEN_URL,
                data={
                    "code": code,
                    "redirect_uri": redirect_uri,
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "grant_type": "authorization_code",
                },
            )
        except httpx.RequestError as e:
            raise OAuthError(f"Token request failed: {e}") from e

    if response.status_code >= 400:
        logger.error(
            "Linear token exchange failed",
            extra={
                "status_code": response.status_code,
                "response_body": response.text[:500],
            },
        )
        raise OAuthError(
            f"Token exchange failed: {response.status_code}",
            status_code=response.status_code,
        )

    access_token = response.json().get("access_token")
    if not access_token:
        raise OAuthError("Token response did not include an access token")

    logger.info("Linear token exchange succeeded")
    return access_token
