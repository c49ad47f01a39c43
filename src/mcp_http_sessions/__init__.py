from mcp_http_sessions.auth import AuthInfo, BearerAuthMiddleware, BearerAuthOptions, TokenVerifier, get_auth_info
from mcp_http_sessions.errors import (
    InsufficientScopeError,
    InvalidRequestError,
    InvalidSessionHeaderError,
    InvalidTokenError,
    McpHttpError,
    OAuthError,
    ServerError,
    SessionNotFoundError,
)
from mcp_http_sessions.handlers import StreamableHTTPDispatcher
from mcp_http_sessions.server import McpHttpServer, ServerStats
from mcp_http_sessions.session_manager import SessionEvent, SessionManager
from mcp_http_sessions.session_validator import MissingHeader, SessionValidator, UnknownSession, Valid
from mcp_http_sessions.settings import Settings
from mcp_http_sessions.transport import StreamableHTTPSessionTransport, Transport

__all__ = [
    "AuthInfo",
    "BearerAuthMiddleware",
    "BearerAuthOptions",
    "InsufficientScopeError",
    "InvalidRequestError",
    "InvalidSessionHeaderError",
    "InvalidTokenError",
    "McpHttpError",
    "McpHttpServer",
    "MissingHeader",
    "OAuthError",
    "ServerError",
    "ServerStats",
    "SessionEvent",
    "SessionManager",
    "SessionNotFoundError",
    "SessionValidator",
    "Settings",
    "StreamableHTTPDispatcher",
    "StreamableHTTPSessionTransport",
    "TokenVerifier",
    "Transport",
    "UnknownSession",
    "Valid",
    "get_auth_info",
]
