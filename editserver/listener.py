import contextlib
import logging
import os
import stat

import trio
from trio import socket

from .errors import ServerAlreadyRunning, SessionDisconnected
from .rendezvous import Kind, write_server_file

logger = logging.getLogger(__name__)

RECV_SIZE = 4096


class ConnectionListener:
    """
    Accepts client connections on every configured endpoint and feeds each
    one to the edit server, one task per connection.

        listener = ConnectionListener(config.endpoints())
        listener.set_edit_server(EditServer(host, config))
        trio.run(listener.run)
    """

    def __init__(self, endpoints, *, server_file=None):
        self.endpoints = list(endpoints)
        self.server_file = server_file
        self.edit_server = None
        # (endpoint, socket) pairs, with the ports we actually got
        self.bound = []
        self.nursery = None

    def set_edit_server(self, edit_server):
        assert self.edit_server is None, "edit_server is already set!"
        self.edit_server = edit_server

    async def claim_socket_path(self, endpoint):
        """Remove a stale socket file; refuse to touch a live one."""
        path = endpoint.path
        if not os.path.exists(path):
            os.makedirs(os.path.dirname(path) or ".", mode=0o700, exist_ok=True)
            return
        if not stat.S_ISSOCK(os.stat(path).st_mode):
            raise FileExistsError(f"{path} exists and is not a socket")
        with socket.socket(socket.AF_UNIX) as probe:
            try:
                await probe.connect(path)
            except OSError:
                logger.info(f"removing stale socket {path}")
                os.unlink(path)
                return
        raise ServerAlreadyRunning(endpoint)

    async def bind(self, endpoint):
        if endpoint.kind is Kind.LOCAL:
            await self.claim_socket_path(endpoint)
            sock = socket.socket(socket.AF_UNIX)
            addr = endpoint.path
        else:
            family = socket.AF_INET6 if ":" in endpoint.host else socket.AF_INET
            sock = socket.socket(family)
            addr = (endpoint.host, endpoint.port)
        try:
            await sock.bind(addr)
            sock.listen()
        except OSError as e:
            sock.close()
            raise ServerAlreadyRunning(endpoint) from e
        if endpoint.kind is Kind.TCP:
            endpoint = endpoint.with_port(sock.getsockname()[1])
        logger.info(f"listening on {endpoint}")
        return endpoint, sock

    def _remove_rendezvous(self, endpoint):
        path = endpoint.path if endpoint.kind is Kind.LOCAL else self.server_file
        if path is None:
            return
        with contextlib.suppress(FileNotFoundError):
            os.unlink(path)

    async def run(self, *, task_status=trio.TASK_STATUS_IGNORED):
        """
        Bind everything, then accept until cancelled.  With nursery.start(),
        the caller gets the listener back once every endpoint is listening.
        """
        assert self.edit_server is not None, "edit server is not set"
        with contextlib.ExitStack() as stack:
            for endpoint in self.endpoints:
                endpoint, sock = await self.bind(endpoint)
                stack.enter_context(sock)
                if endpoint.kind is Kind.LOCAL:
                    stack.callback(self._remove_rendezvous, endpoint)
                elif self.server_file is not None:
                    write_server_file(self.server_file, endpoint)
                    stack.callback(self._remove_rendezvous, endpoint)
                self.bound.append((endpoint, sock))

            async with trio.open_nursery() as self.nursery:
                for endpoint, sock in self.bound:
                    self.nursery.start_soon(self.acceptor, endpoint, sock)
                task_status.started(self)
        logger.info("listener stopped")

    def stop(self):
        if self.nursery is not None:
            self.nursery.cancel_scope.cancel()

    async def acceptor(self, endpoint, sock):
        while True:
            conn, _ = await sock.accept()
            self.nursery.start_soon(
                self.connection, endpoint, trio.SocketStream(conn)
            )

    async def connection(self, endpoint, stream):
        session = self.edit_server.on_connect(stream, endpoint)
        try:
            with session.cancel_scope:
                await self.edit_server.greet(session)
                await self.reader(session)
        except SessionDisconnected as e:
            logger.info(f"session {session.id}: {e}")
        finally:
            self.edit_server.on_disconnect(session)
            await trio.aclose_forcefully(stream)

    async def reader(self, session):
        while True:
            try:
                byts = await session.stream.receive_some(RECV_SIZE)
            except (trio.BrokenResourceError, trio.ClosedResourceError):
                byts = b""
            if not byts:
                logger.info(f"session {session.id}: client hung up")
                return
            await self.edit_server.on_read(session, byts)
