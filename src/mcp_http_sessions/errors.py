"""Error taxonomy for the streamable HTTP session layer.

Two envelope families leave this package:

* protocol-layer errors, rendered as a JSON-RPC error object with a null id
  and HTTP 400;
* auth-layer errors, rendered as an OAuth 2.0 error object
  (``error``/``error_description``) with a status derived from the error kind
  and, for 401/403, a ``WWW-Authenticate`` challenge.
"""

from http import HTTPStatus
from typing import Any

from mcp.types import INVALID_REQUEST, ErrorData
from starlette.responses import JSONResponse

INVALID_SESSION_HEADER = -32001
SESSION_NOT_FOUND = -32003


class McpHttpError(Exception):
    """Protocol-layer error raised while routing a request to a session."""

    error: ErrorData

    def __init__(self, code: int, message: str):
        super().__init__(f"MCP error {code}: {message}")
        self.error = ErrorData(code=code, message=message)

    def to_response_object(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "error": {"code": self.error.code, "message": str(self)},
            "id": None,
        }


class InvalidRequestError(McpHttpError):
    """A POST without a session id did not carry an initialize request."""

    def __init__(self, message: str = "Invalid request"):
        super().__init__(INVALID_REQUEST, message)


class InvalidSessionHeaderError(McpHttpError):
    """A verb that requires a session arrived without the session header."""

    def __init__(self, message: str = "Invalid session header"):
        super().__init__(INVALID_SESSION_HEADER, message)


class SessionNotFoundError(McpHttpError):
    """The session header names a session this server does not know."""

    def __init__(self, message: str = "Session not found"):
        super().__init__(SESSION_NOT_FOUND, message)


def mcp_error_response(error: McpHttpError) -> JSONResponse:
    return JSONResponse(error.to_response_object(), status_code=HTTPStatus.BAD_REQUEST)


class OAuthError(Exception):
    """OAuth 2.0 error reported by the bearer gate or a token verifier.

    Args:
        error_code: The OAuth ``error`` code, e.g. ``invalid_grant``
        description: Human readable ``error_description``
        error_uri: Optional ``error_uri`` pointing at documentation
    """

    def __init__(self, error_code: str, description: str, error_uri: str | None = None):
        super().__init__(description)
        self.error_code = error_code
        self.description = description
        self.error_uri = error_uri

    def to_response_object(self) -> dict[str, str]:
        body = {"error": self.error_code, "error_description": self.description}
        if self.error_uri:
            body["error_uri"] = self.error_uri
        return body


class InvalidTokenError(OAuthError):
    def __init__(self, description: str, error_uri: str | None = None):
        super().__init__("invalid_token", description, error_uri)


class InsufficientScopeError(OAuthError):
    def __init__(self, description: str, error_uri: str | None = None):
        super().__init__("insufficient_scope", description, error_uri)


class ServerError(OAuthError):
    def __init__(self, description: str, error_uri: str | None = None):
        super().__init__("server_error", description, error_uri)


def build_www_authenticate_header(error: OAuthError, resource_metadata_url: str | None = None) -> str:
    parts = [f'error="{error.error_code}"', f'error_description="{error.description}"']
    if resource_metadata_url:
        parts.append(f'resource_metadata="{resource_metadata_url}"')
    return f"Bearer {', '.join(parts)}"


def oauth_error_response(error: OAuthError, resource_metadata_url: str | None = None) -> JSONResponse:
    """Map an OAuth error onto its HTTP status, body and challenge header."""
    headers: dict[str, str] = {}
    if isinstance(error, InvalidTokenError):
        status_code = HTTPStatus.UNAUTHORIZED
    elif isinstance(error, InsufficientScopeError):
        status_code = HTTPStatus.FORBIDDEN
    elif isinstance(error, ServerError):
        status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    else:
        status_code = HTTPStatus.BAD_REQUEST

    if status_code in (HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN):
        headers["WWW-Authenticate"] = build_www_authenticate_header(error, resource_metadata_url)

    return JSONResponse(error.to_response_object(), status_code=status_code, headers=headers)
