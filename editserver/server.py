import logging
import os

import trio

from .config import ServerConfig
from .dispatcher import ProtocolDispatcher
from .errors import AuthenticationFailed, EditServerError, SessionDisconnected
from .executor import Executor
from .framing import frame_notice
from .session import ClientSession, SessionRegistry

logger = logging.getLogger(__name__)


class EditServer:
    """
    Ties the protocol engine to a Host.

    The ConnectionListener calls on_connect(), greet(), on_read() and
    on_disconnect() for every connection.  The host calls document_done(),
    surface_closed() and environment_ready() as things happen on its side.
    All of these run on the trio thread.
    """

    def __init__(self, host, config=None, registry=None):
        self.host = host
        self.config = config or ServerConfig()
        self.registry = registry if registry is not None else SessionRegistry()
        self.executor = Executor(host, self.close_session, self.config)
        self.dispatcher = ProtocolDispatcher(host, self.executor)
        self.pid = os.getpid()
        self._ready = trio.Event()

    def on_connect(self, stream, endpoint):
        session = ClientSession(self.registry.new_id(), stream, endpoint)
        self.registry.add(session)
        logger.info(f"session {session.id}: connected via {endpoint}")
        return session

    async def greet(self, session):
        # before anything else, so the client can signal us even if it
        # fails to authenticate
        await session.send(frame_notice("emacs-pid", self.pid))

    async def on_read(self, session, byts):
        session.feed(byts)
        try:
            await self.dispatcher.process_input(session)
            if session.continuation is not None:
                await self.resume_when_safe(session)
        except SessionDisconnected as e:
            logger.info(f"session {session.id}: lost connection: {e}")
            self.close_session(session, "disconnected")
        except AuthenticationFailed as e:
            logger.warning(f"session {session.id}: authentication failed: {e}")
            await self.fail(
                session, "Authentication failed", self.config.auth_failure_delay
            )
        except EditServerError as e:
            logger.warning(f"session {session.id}: {e}")
            await self.fail(session, str(e), self.config.error_delay)
        except Exception as e:
            # a host failure; report it to this client only
            logger.exception(f"session {session.id}: request failed")
            await self.fail(
                session, str(e) or type(e).__name__, self.config.error_delay
            )

    def on_disconnect(self, session):
        self.close_session(session, "disconnected")

    async def fail(self, session, message, delay):
        """Send one -error, give the client time to read it, then hang up."""
        try:
            await session.send(frame_notice("error", message))
        except SessionDisconnected:
            pass
        else:
            await trio.sleep(delay)
        self.close_session(session, "error")

    def close_session(self, session, reason):
        """
        Tear a session down.  Safe to call any number of times, from any
        task on the trio thread; only the first call does anything.
        """
        if session.closed:
            return
        session.closed = True
        self.registry.remove(session)
        session.discard_continuation()
        if session.owns_surface and session.surface is not None:
            surface, session.surface = session.surface, None
            session.owns_surface = False
            self.host.delete_surface(surface)
        # the session's own task owns the stream and closes it on its way out
        session.cancel_scope.cancel()
        logger.info(f"session {session.id}: closed ({reason})")

    async def wait_until_safe(self):
        while self.host.needs_unwind():
            await self._ready.wait()

    async def resume_when_safe(self, session):
        """
        The one place a continuation runs: after the host has unwound, and
        before the session reads its next request.  If the client hangs up in
        the meantime the session is closed and the continuation dropped.
        """
        async with trio.open_nursery() as nursery:
            nursery.start_soon(self._watch_hangup, session)
            await self.wait_until_safe()
            nursery.cancel_scope.cancel()
        await session.run_continuation()

    async def _watch_hangup(self, session):
        while True:
            try:
                byts = await session.stream.receive_some(4096)
            except (trio.BrokenResourceError, trio.ClosedResourceError):
                byts = b""
            if not byts:
                self.close_session(session, "disconnected")
                return
            # keep it for after the continuation
            session.feed(byts)

    # host events

    def environment_ready(self):
        """The host left its modal interaction; pending continuations may run."""
        self._ready.set()
        self._ready = trio.Event()

    def document_done(self, document):
        """The host is done with `document`; release clients waiting on it."""
        for session in self.registry.holding(document):
            session.documents.discard(document)
            if not session.documents:
                self.close_session(session, "documents done")

    def surface_closed(self, surface):
        for session in self.registry.showing(surface):
            session.surface = None
            session.owns_surface = False
            self.close_session(session, "surface closed")

    def clients(self):
        """(id, endpoint, document count) for every live session."""
        return [
            (s.id, str(s.endpoint), len(s.documents)) for s in self.registry
        ]
