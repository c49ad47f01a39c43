"""Per-verb request handlers for the streamable HTTP endpoint."""

from __future__ import annotations

import logging
from http import HTTPStatus

from mcp.types import InitializeRequestParams, JSONRPCMessage, JSONRPCRequest
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

from mcp_http_sessions.errors import (
    InvalidRequestError,
    InvalidSessionHeaderError,
    McpHttpError,
    SessionNotFoundError,
    mcp_error_response,
)
from mcp_http_sessions.session_manager import SessionManager
from mcp_http_sessions.session_validator import MissingHeader, SessionValidator, UnknownSession, Valid

logger = logging.getLogger(__name__)


def is_initialize_request(body: bytes) -> bool:
    """Check whether a raw POST body is a well-formed initialize request."""
    try:
        message = JSONRPCMessage.model_validate_json(body)
    except ValidationError:
        return False

    if not isinstance(message.root, JSONRPCRequest) or message.root.method != "initialize":
        return False

    try:
        InitializeRequestParams.model_validate(message.root.params or {})
    except ValidationError:
        return False
    return True


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """Feed an already consumed request body back to the next reader."""
    replayed = False

    async def replay() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class PostRequestHandler:
    """Creates a session for initialize requests, routes everything else."""

    def __init__(self, session_manager: SessionManager, validator: SessionValidator):
        self.session_manager = session_manager
        self.validator = validator

    async def handle(self, request: Request, send: Send) -> None:
        verdict = self.validator.validate(request.headers, session_required=False)

        if verdict is None:
            body = await request.body()
            if not is_initialize_request(body):
                raise InvalidRequestError()
            await self._create_and_forward(request.scope, _replay_body(body, request.receive), send)
            return

        match verdict:
            case Valid(transport=transport):
                logger.debug(f"Routing POST to session {verdict.session_id}")
                await transport.handle_request(request.scope, request.receive, send)
            case UnknownSession():
                raise SessionNotFoundError()
            case MissingHeader():
                raise InvalidSessionHeaderError()

    async def _create_and_forward(self, scope: Scope, receive: Receive, send: Send) -> None:
        transport = await self.session_manager.create_session()
        try:
            await transport.handle_request(scope, receive, send)
        finally:
            # The SDK rejected the initialize request, so no session owns this transport
            if transport.session_id is None:
                logger.debug("Initialize request did not establish a session, closing transport")
                await transport.close()


def _require_session(validator: SessionValidator, request: Request) -> Valid:
    verdict = validator.validate(request.headers, session_required=True)
    match verdict:
        case Valid():
            return verdict
        case UnknownSession():
            raise SessionNotFoundError()
        case _:
            raise InvalidSessionHeaderError()


class GetRequestHandler:
    """Opens the server-to-client stream of an existing session."""

    def __init__(self, session_manager: SessionManager, validator: SessionValidator):
        self.session_manager = session_manager
        self.validator = validator

    async def handle(self, request: Request, send: Send) -> None:
        verdict = _require_session(self.validator, request)
        logger.debug(f"Routing GET to session {verdict.session_id}")
        await verdict.transport.handle_request(request.scope, request.receive, send)


class DeleteRequestHandler:
    """Terminates an existing session."""

    def __init__(self, session_manager: SessionManager, validator: SessionValidator):
        self.session_manager = session_manager
        self.validator = validator

    async def handle(self, request: Request, send: Send) -> None:
        verdict = _require_session(self.validator, request)
        try:
            await verdict.transport.handle_request(request.scope, request.receive, send)
        finally:
            # The transport's close callback does not fire reliably, clean up eagerly
            await self.session_manager.destroy_session(verdict.session_id)


class StreamableHTTPDispatcher:
    """
    ASGI application serving the streamable HTTP endpoint.

    Picks the handler for the request's verb and renders routing failures as
    JSON-RPC error responses.
    """

    def __init__(self, session_manager: SessionManager):
        self.session_manager = session_manager
        validator = SessionValidator(session_manager)
        self.handlers: dict[str, PostRequestHandler | GetRequestHandler | DeleteRequestHandler] = {
            "POST": PostRequestHandler(session_manager, validator),
            "GET": GetRequestHandler(session_manager, validator),
            "DELETE": DeleteRequestHandler(session_manager, validator),
        }

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        handler = self.handlers.get(request.method)
        if handler is None:
            response = Response(
                "Method Not Allowed",
                status_code=HTTPStatus.METHOD_NOT_ALLOWED,
                headers={"Allow": ", ".join(self.handlers)},
            )
            await response(scope, receive, send)
            return

        try:
            await handler.handle(request, send)
        except McpHttpError as exc:
            logger.debug(f"Rejected {request.method} request: {exc}")
            await mcp_error_response(exc)(scope, receive, send)

