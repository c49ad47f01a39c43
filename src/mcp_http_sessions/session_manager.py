"""Session table for stateful streamable HTTP sessions."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from enum import Enum
from typing import Any

import anyio
from anyio.abc import TaskGroup

from mcp_http_sessions.transport import Transport, TransportFactory, generate_session_id

logger = logging.getLogger(__name__)


class SessionEvent(str, Enum):
    SESSION_CREATED = "session_created"
    SESSION_DESTROYED = "session_destroyed"
    TRANSPORT_ERROR = "transport_error"


class SessionManager:
    """
    Owns the mapping from session ids to their transports.

    Sessions are created by ``create_session``, which returns a transport that
    is not yet visible to lookups. The transport reports the id assigned by
    the initialize exchange, at which point the session is published and a
    ``session_created`` event fires. Sessions leave the table through
    ``destroy_session`` (explicit DELETE or transport closure) or
    ``destroy_all_sessions`` (shutdown).

    All table mutations are serialized by one lock. Lookups are plain dict
    reads, which never yield to the event loop. Listeners are called after
    the lock is released, in registration order; a failing listener is logged
    and skipped.

    Only one ``run()`` context per instance is allowed. Create a new manager
    to run again.

    Args:
        transport_factory: Builds the transport for a new session
        session_id_generator: Source of candidate session ids
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        *,
        session_id_generator: Callable[[], str] = generate_session_id,
    ):
        self.transport_factory = transport_factory
        self.session_id_generator = session_id_generator

        self._sessions: dict[str, Transport] = {}
        # Transports returned by create_session that have no assigned id yet
        self._pending: set[Transport] = set()
        self._lock = anyio.Lock()
        self._listeners: dict[SessionEvent, list[Callable[..., Any]]] = {event: [] for event in SessionEvent}

        self._task_group: TaskGroup | None = None
        self._run_lock = anyio.Lock()
        self._has_started = False

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        """
        Run the task group that hosts the protocol engine of every session.

        Use this in the lifespan of the hosting application:

        @contextlib.asynccontextmanager
        async def lifespan(app: Starlette) -> AsyncIterator[None]:
            async with session_manager.run():
                yield
        """
        async with self._run_lock:
            if self._has_started:
                raise RuntimeError(
                    "SessionManager .run() can only be called once per instance. "
                    "Create a new instance if you need to run again."
                )
            self._has_started = True

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            logger.info("Session manager started")
            try:
                yield
            finally:
                logger.info("Session manager shutting down")
                with anyio.CancelScope(shield=True):
                    await self.destroy_all_sessions()
                # Stops engine tasks of transports that never got an id
                tg.cancel_scope.cancel()
                self._task_group = None

    def on(self, event: SessionEvent, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register a listener for a lifecycle event.

        ``session_created`` and ``session_destroyed`` listeners receive the
        session id; ``transport_error`` listeners receive the session id and
        the exception.

        Returns:
            A callable that unregisters the listener
        """
        listeners = self._listeners[SessionEvent(event)]
        listeners.append(callback)

        def unsubscribe() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def _emit(self, event: SessionEvent, *args: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(*args)
            except Exception:
                logger.exception(f"Listener for {event.value} failed")

    async def create_session(self) -> Transport:
        """
        Create a transport for a new session and connect it to the protocol engine.

        The session is published once the transport reports its assigned id.

        Raises:
            RuntimeError: If called outside ``run()``
        """
        if self._task_group is None:
            raise RuntimeError("Task group is not initialized. Make sure to use run().")

        transport: Transport

        async def on_session_initialized(session_id: str) -> None:
            await self._publish(session_id, transport)

        async def on_close() -> None:
            if transport.session_id is not None:
                await self.destroy_session(transport.session_id)
            else:
                async with self._lock:
                    self._pending.discard(transport)

        async def on_error(exc: Exception) -> None:
            if transport.session_id is not None:
                self._emit(SessionEvent.TRANSPORT_ERROR, transport.session_id, exc)

        transport = self.transport_factory(
            session_id_generator=self.session_id_generator,
            on_session_initialized=on_session_initialized,
            on_close=on_close,
            on_error=on_error,
        )
        self._pending.add(transport)
        try:
            await transport.start(self._task_group)
        except BaseException:
            self._pending.discard(transport)
            raise
        logger.debug("Created transport awaiting initialization")
        return transport

    async def _publish(self, session_id: str, transport: Transport) -> None:
        async with self._lock:
            if transport not in self._pending:
                logger.info(f"Not publishing session {session_id}, its transport was closed during initialization")
                return
            if session_id in self._sessions:
                raise RuntimeError(f"Session {session_id} is already registered")
            self._pending.remove(transport)
            self._sessions[session_id] = transport
        logger.info(f"Created new session with ID: {session_id}")
        self._emit(SessionEvent.SESSION_CREATED, session_id)

    def get_session(self, session_id: str) -> Transport | None:
        return self._sessions.get(session_id)

    async def destroy_session(self, session_id: str) -> bool:
        """Remove a session and close its transport.

        Returns:
            Whether the session existed
        """
        async with self._lock:
            transport = self._sessions.pop(session_id, None)
        if transport is None:
            return False

        logger.info(f"Destroyed session {session_id}")
        self._emit(SessionEvent.SESSION_DESTROYED, session_id)
        await transport.close()
        return True

    async def destroy_all_sessions(self) -> None:
        """Remove every session and close its transport, ending its engine task.

        Transports still waiting for their initialize exchange are closed too
        and will never be published.
        """
        async with self._lock:
            sessions = self._sessions
            pending = self._pending
            self._sessions = {}
            self._pending = set()

        for session_id in sessions:
            logger.info(f"Destroyed session {session_id}")
            self._emit(SessionEvent.SESSION_DESTROYED, session_id)
        for transport in [*sessions.values(), *pending]:
            await transport.close()

    def get_session_count(self) -> int:
        return len(self._sessions)
