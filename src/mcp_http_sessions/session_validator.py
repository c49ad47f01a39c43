"""Classification of a request's session header against the session table."""

from collections.abc import Mapping
from dataclasses import dataclass

from mcp.server.streamable_http import MCP_SESSION_ID_HEADER
from starlette.datastructures import Headers

from mcp_http_sessions.session_manager import SessionManager
from mcp_http_sessions.transport import Transport


@dataclass(frozen=True)
class Valid:
    session_id: str
    transport: Transport


@dataclass(frozen=True)
class MissingHeader:
    pass


@dataclass(frozen=True)
class UnknownSession:
    session_id: str


ValidationVerdict = Valid | MissingHeader | UnknownSession


class SessionValidator:
    def __init__(self, session_manager: SessionManager):
        self.session_manager = session_manager

    def validate(self, headers: Headers | Mapping[str, str], session_required: bool = True) -> ValidationVerdict | None:
        """
        Match the ``mcp-session-id`` header against the known sessions.

        Args:
            headers: Request headers; plain mappings must use lowercase keys
                unless they are Starlette ``Headers``
            session_required: Whether a missing header is an error

        Returns:
            The verdict, or None when the header is absent but not required,
            meaning the caller has to create a session
        """
        session_id = headers.get(MCP_SESSION_ID_HEADER)
        if not session_id:
            return MissingHeader() if session_required else None

        transport = self.session_manager.get_session(session_id)
        if transport is None:
            return UnknownSession(session_id)
        return Valid(session_id, transport)
