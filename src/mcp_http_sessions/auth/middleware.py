import contextvars
import logging
import time
from dataclasses import dataclass, field

from mcp.server.auth.middleware import bearer_auth
from mcp.server.lowlevel.server import request_ctx
from starlette.authentication import AuthCredentials
from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from mcp_http_sessions.auth.provider import AuthInfo, TokenVerifier
from mcp_http_sessions.errors import (
    InsufficientScopeError,
    InvalidTokenError,
    OAuthError,
    ServerError,
    oauth_error_response,
)

logger = logging.getLogger(__name__)

# Only meaningful in the HTTP layer; protocol engine tasks run with it unset
auth_info_var = contextvars.ContextVar[AuthInfo | None]("auth_info", default=None)


def get_auth_info() -> AuthInfo | None:
    """Return the auth info of the caller being served, if any.

    Inside an MCP request handler this is read from the HTTP request that
    carried the message being handled, so every message of a session is
    attributed to the token it was sent with. Outside a handler it is the
    auth info of the request passing through the bearer gate.
    """
    try:
        request = request_ctx.get().request
    except LookupError:
        return auth_info_var.get()

    if isinstance(request, Request):
        user = request.scope.get("user")
        return user.auth_info if isinstance(user, AuthenticatedUser) else None
    return auth_info_var.get()


class AuthenticatedUser(bearer_auth.AuthenticatedUser):
    """User with authentication info."""

    def __init__(self, auth_info: AuthInfo):
        super().__init__(auth_info)
        self.auth_info = auth_info


@dataclass
class BearerAuthOptions:
    verifier: TokenVerifier
    required_scopes: list[str] = field(default_factory=list)
    resource_metadata_url: str | None = None


class BearerAuthMiddleware:
    """Middleware that requires a valid Bearer token in the Authorization header.

    The token is validated with the configured verifier and the resulting auth
    info is stored in the ASGI scope (``user`` and ``auth``) and in a context
    variable for the rest of the request. Without options the middleware
    passes every request through.
    """

    def __init__(self, app: ASGIApp, options: BearerAuthOptions | None = None):
        self.app = app
        self.options = options

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self.options is None or scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        try:
            auth_info = await self._authenticate(Headers(scope=scope))
        except OAuthError as error:
            response = oauth_error_response(error, self.options.resource_metadata_url)
            await response(scope, receive, send)
            return

        scope["user"] = AuthenticatedUser(auth_info)
        scope["auth"] = AuthCredentials(auth_info.scopes)
        token = auth_info_var.set(auth_info)
        try:
            await self.app(scope, receive, send)
        finally:
            auth_info_var.reset(token)

    async def _authenticate(self, headers: Headers) -> AuthInfo:
        assert self.options is not None
        token = extract_bearer_token(headers.get("authorization"))

        try:
            auth_info = await self.options.verifier.verify_access_token(token)
        except OAuthError:
            raise
        except Exception:
            logger.exception("Unexpected error while verifying access token")
            raise ServerError("Internal Server Error")

        if not isinstance(auth_info, AuthInfo):
            logger.error(f"Token verifier returned {type(auth_info).__name__} instead of AuthInfo")
            raise ServerError("Internal Server Error")

        validate_required_scopes(auth_info, self.options.required_scopes)
        validate_token_expiration(auth_info)
        return auth_info


def extract_bearer_token(auth_header: str | None) -> str:
    if not auth_header:
        raise InvalidTokenError("Missing Authorization header")

    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise InvalidTokenError("Invalid Authorization header format, expected 'Bearer TOKEN'")
    return token


def validate_required_scopes(auth_info: AuthInfo, required_scopes: list[str]) -> None:
    if not required_scopes:
        return
    if not set(required_scopes).issubset(auth_info.scopes):
        raise InsufficientScopeError("Insufficient scope")


def validate_token_expiration(auth_info: AuthInfo) -> None:
    if auth_info.expires_at is not None and auth_info.expires_at < time.time():
        raise InvalidTokenError("Token has expired")
