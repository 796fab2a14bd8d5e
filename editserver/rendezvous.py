"""
How a client finds the server.

A LOCAL endpoint is a Unix-domain socket; the socket file itself is the
rendezvous, and filesystem permissions stand in for authentication.

A TCP endpoint is an address, a port and a shared secret.  Clients learn all
three from the server file, which looks like:

    127.0.0.1:39213
    <64 printable ascii characters>
"""

import enum
import os
import re
import secrets
from dataclasses import dataclass
from typing import Optional

SECRET_LENGTH = 64
# printable ascii, no spaces
SECRET_ALPHABET = "".join(chr(c) for c in range(ord("!"), ord("~") + 1))
_secret_re = re.compile(r"[!-~]+")
_server_file_re = re.compile(r"([0-9A-Za-z.:\[\]-]+):([0-9]+)")


class Kind(enum.Enum):
    LOCAL = "local"
    TCP = "tcp"


def generate_secret():
    return "".join(secrets.choice(SECRET_ALPHABET) for _ in range(SECRET_LENGTH))


@dataclass(frozen=True)
class RendezvousEndpoint:
    kind: Kind
    path: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    secret: Optional[str] = None

    def __post_init__(self):
        if self.kind is Kind.LOCAL:
            if not self.path:
                raise ValueError("a local endpoint needs a socket path")
            return
        if not self.host:
            raise ValueError("a tcp endpoint needs a host")
        if self.port is None or not 0 <= self.port <= 65535:
            raise ValueError(f"bad tcp port: {self.port!r}")
        if self.secret is None or len(self.secret) != SECRET_LENGTH:
            raise ValueError(
                f"a tcp endpoint needs a {SECRET_LENGTH}-character secret"
            )
        if not _secret_re.fullmatch(self.secret):
            raise ValueError("secret must be printable ascii without spaces")

    @classmethod
    def local(cls, path):
        return cls(Kind.LOCAL, path=os.fspath(path))

    @classmethod
    def tcp(cls, host, port, secret=None):
        return cls(
            Kind.TCP, host=host, port=port, secret=secret or generate_secret()
        )

    @property
    def requires_auth(self):
        return self.kind is Kind.TCP

    def with_port(self, port):
        """Same endpoint, with the port the kernel actually gave us."""
        return RendezvousEndpoint(
            self.kind, self.path, self.host, port, self.secret
        )

    def __str__(self):
        if self.kind is Kind.LOCAL:
            return self.path
        return f"{self.host}:{self.port}"


def parse_server_file(text):
    first, _, rest = text.partition("\n")
    match = _server_file_re.fullmatch(first.strip())
    if match is None:
        raise ValueError(f"invalid server file address line: {first!r}")
    secret = rest.split("\n", 1)[0]
    return RendezvousEndpoint(
        Kind.TCP,
        host=match.group(1),
        port=int(match.group(2)),
        secret=secret,
    )


def read_server_file(path):
    with open(path, encoding="ascii") as f:
        return parse_server_file(f.read())


def write_server_file(path, endpoint):
    """Write the server file readable by its owner only."""
    assert endpoint.kind is Kind.TCP, "only tcp endpoints have a server file"
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="ascii") as f:
        f.write(f"{endpoint.host}:{endpoint.port}\n{endpoint.secret}")
