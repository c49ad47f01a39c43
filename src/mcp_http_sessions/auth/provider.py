from typing import Any, Protocol

from mcp.server.auth.provider import AccessToken


class AuthInfo(AccessToken):
    """Information about a validated access token."""

    resource: str | None = None  # RFC 8707 resource indicator
    extra: dict[str, Any] | None = None


class TokenVerifier(Protocol):
    """Verifies bearer tokens presented to the streamable HTTP endpoint."""

    async def verify_access_token(self, token: str) -> AuthInfo:
        """
        Verify an access token.

        Raises:
            OAuthError: If the token is rejected; subclasses such as
                InvalidTokenError select the HTTP status of the response
        """
        ...
