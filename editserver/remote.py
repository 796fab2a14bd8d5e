"""
Talk to another running edit server as a client.

    value = eval_at("~/.config/editserver/server", "len(host.documents)")

The target is either a unix socket path or a tcp server file; the result is
whatever the remote side printed, read back as a python literal.
"""

import ast
import logging
import os
import stat

import trio
from trio import socket

from .errors import EvaluationError, ServerUnreachable, UnreadableResult
from .framing import frame_request, read_payloads, reply_is_complete
from .rendezvous import Kind, RendezvousEndpoint, read_server_file

logger = logging.getLogger(__name__)

RECV_SIZE = 4096


def resolve_endpoint(target):
    """A RendezvousEndpoint, a unix socket path, or a tcp server file path."""
    if isinstance(target, RendezvousEndpoint):
        return target
    path = os.path.expanduser(os.fspath(target))
    try:
        mode = os.stat(path).st_mode
    except OSError as e:
        raise ServerUnreachable(f"no such server: {path}") from e
    if stat.S_ISSOCK(mode):
        return RendezvousEndpoint.local(path)
    try:
        return read_server_file(path)
    except (OSError, ValueError) as e:
        raise ServerUnreachable(f"invalid server file {path}: {e}") from e


def auth_prefix(endpoint):
    # the secret is compared byte for byte, so it goes on the wire unquoted
    if not endpoint.requires_auth:
        return b""
    return b"-auth %s " % endpoint.secret.encode("ascii")


async def connect(endpoint):
    if endpoint.kind is Kind.LOCAL:
        sock = socket.socket(socket.AF_UNIX)
        addr = endpoint.path
    else:
        family = socket.AF_INET6 if ":" in endpoint.host else socket.AF_INET
        sock = socket.socket(family)
        addr = (endpoint.host, endpoint.port)
    try:
        await sock.connect(addr)
    except OSError as e:
        sock.close()
        raise ServerUnreachable(f"unable to contact {endpoint}: {e}") from e
    return trio.SocketStream(sock)


class RemoteEvalClient:
    def __init__(self, target):
        self.endpoint = resolve_endpoint(target)

    def request(self, expression):
        return auth_prefix(self.endpoint) + frame_request([("-eval", expression)])

    async def evaluate(self, expression):
        logger.debug(f"evaluating at {self.endpoint}: {expression!r}")
        stream = await connect(self.endpoint)
        async with stream:
            try:
                await stream.send_all(self.request(expression))
                wire = await self.read_all(stream)
            except (trio.BrokenResourceError, trio.ClosedResourceError) as e:
                raise ServerUnreachable(f"{self.endpoint}: {e}") from e

        text, errors = read_payloads(wire)
        if errors:
            raise EvaluationError(errors[0])
        if not reply_is_complete(wire):
            raise UnreadableResult(f"incomplete reply: {text!r}")
        try:
            return ast.literal_eval(text)
        except (ValueError, SyntaxError) as e:
            raise UnreadableResult(f"not a literal: {text!r}") from e

    async def read_all(self, stream):
        chunks = []
        while True:
            byts = await stream.receive_some(RECV_SIZE)
            if not byts:
                return b"".join(chunks)
            chunks.append(byts)


def eval_at(target, expression):
    """Blocking version of RemoteEvalClient(target).evaluate(expression)."""
    client = RemoteEvalClient(target)
    return trio.run(client.evaluate, expression)
