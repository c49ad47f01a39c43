"""
Bearer token authorization for the streamable HTTP endpoint.
"""

from mcp_http_sessions.auth.middleware import (
    AuthenticatedUser,
    BearerAuthMiddleware,
    BearerAuthOptions,
    get_auth_info,
)
from mcp_http_sessions.auth.provider import AuthInfo, TokenVerifier

__all__ = [
    "AuthInfo",
    "AuthenticatedUser",
    "BearerAuthMiddleware",
    "BearerAuthOptions",
    "TokenVerifier",
    "get_auth_info",
]
