import itertools
import logging
import threading

import trio

from .errors import SessionDisconnected

logger = logging.getLogger(__name__)


class ClientSession:
    """
    Server-side state for one connected client, from accept to teardown.

    The session owns its stream; only the session's own task reads from it or
    writes to it.  Other tasks end a session by cancelling `cancel_scope`.
    """

    def __init__(self, id, stream, endpoint):
        self.id = id
        self.stream = stream
        self.endpoint = endpoint
        # local endpoints are trusted through filesystem permissions
        self.authenticated = not endpoint.requires_auth
        self.auth_attempted = False
        self.pending_input = b""
        # "NAME=VALUE" strings, in the order the client sent them
        self.environment = []
        self.directory = None
        self.surface = None
        self.owns_surface = False
        self.documents = set()
        self.keep_alive = False
        self.continuation = None
        self.closed = False
        self.cancel_scope = trio.CancelScope()

    @property
    def expected_secret(self):
        return self.endpoint.secret

    def feed(self, byts):
        self.pending_input += byts

    def take_line(self):
        """Pop the first complete line off the pending input, if any."""
        if b"\n" not in self.pending_input:
            return None
        line, self.pending_input = self.pending_input.split(b"\n", maxsplit=1)
        return line

    async def send(self, msg):
        if self.closed:
            raise SessionDisconnected(f"session {self.id} is closed")
        try:
            await self.stream.send_all(msg)
        except (trio.BrokenResourceError, trio.ClosedResourceError) as e:
            raise SessionDisconnected(f"session {self.id}: {e}") from e

    async def send_lines(self, lines):
        for line in lines:
            await self.send(line)

    def arm_continuation(self, action):
        assert self.continuation is None, "a continuation is already armed"
        self.continuation = action

    async def run_continuation(self):
        # clear the slot first so the action runs exactly once
        action, self.continuation = self.continuation, None
        if action is not None:
            await action()

    def discard_continuation(self):
        if self.continuation is not None:
            logger.debug(f"session {self.id}: discarding continuation")
        self.continuation = None

    def __repr__(self):
        return f"ClientSession({self.id}, {self.endpoint.kind.value})"


class SessionRegistry:
    """
    Every live ClientSession, keyed by connection id.

    Host code may consult the registry from its own threads, so every access
    to the table goes through one lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        # dicts keep insertion order, which is handy for listing clients
        self._sessions = {}
        self._ids = itertools.count(1)

    def new_id(self):
        with self._lock:
            return next(self._ids)

    def add(self, session):
        with self._lock:
            if session.id in self._sessions:
                raise ValueError(f"session {session.id} is already registered")
            self._sessions[session.id] = session

    def remove(self, session):
        """Unregister a session; returns False if it was already gone."""
        with self._lock:
            return self._sessions.pop(session.id, None) is not None

    def get(self, id):
        with self._lock:
            return self._sessions.get(id)

    def find(self, predicate):
        return [s for s in self if predicate(s)]

    def holding(self, document):
        return self.find(lambda s: document in s.documents)

    def showing(self, surface):
        return self.find(lambda s: s.surface is surface)

    def __contains__(self, session):
        with self._lock:
            return self._sessions.get(session.id) is session

    def __iter__(self):
        # iterate over a snapshot so callers may remove as they go
        with self._lock:
            sessions = list(self._sessions.values())
        return iter(sessions)

    def __len__(self):
        with self._lock:
            return len(self._sessions)
