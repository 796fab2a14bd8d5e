import os
from dataclasses import dataclass, field, replace
from typing import Optional

from .framing import MAX_MESSAGE_SIZE
from .rendezvous import RendezvousEndpoint


def default_socket_path():
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return os.path.join(runtime_dir, "editserver", "server")
    return os.path.join("/tmp", f"editserver{os.getuid()}", "server")


def default_server_file():
    config_home = os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser(
        "~/.config"
    )
    return os.path.join(config_home, "editserver", "server")


@dataclass
class ServerConfig:
    # unix-domain endpoint; None disables it
    socket_path: Optional[str] = field(default_factory=default_socket_path)
    # tcp endpoint; None disables it.  Port 0 lets the kernel pick.
    tcp_host: Optional[str] = None
    tcp_port: int = 0
    # where to publish "<host>:<port>\n<secret>" for tcp clients
    server_file: Optional[str] = None
    # give a rejected client time to read the error before we hang up
    auth_failure_delay: float = 1.0
    error_delay: float = 5.0
    max_message_size: int = MAX_MESSAGE_SIZE

    @classmethod
    def from_env(cls, environ=None):
        """
        Read EDITSERVER_* variables:

          EDITSERVER_SOCKET        unix socket path ("" disables it)
          EDITSERVER_TCP           [host:]port for the tcp endpoint
          EDITSERVER_SERVER_FILE   where to write the tcp server file
          EDITSERVER_AUTH_DELAY    seconds
          EDITSERVER_ERROR_DELAY   seconds
        """
        environ = os.environ if environ is None else environ
        config = cls()
        if "EDITSERVER_SOCKET" in environ:
            config.socket_path = environ["EDITSERVER_SOCKET"] or None
        if environ.get("EDITSERVER_TCP"):
            config.tcp_host, config.tcp_port = parse_tcp_address(
                environ["EDITSERVER_TCP"]
            )
        if environ.get("EDITSERVER_SERVER_FILE"):
            config.server_file = environ["EDITSERVER_SERVER_FILE"]
        if environ.get("EDITSERVER_AUTH_DELAY"):
            config.auth_failure_delay = float(environ["EDITSERVER_AUTH_DELAY"])
        if environ.get("EDITSERVER_ERROR_DELAY"):
            config.error_delay = float(environ["EDITSERVER_ERROR_DELAY"])
        return config

    def override(self, **changes):
        """A copy with every non-None keyword applied."""
        return replace(
            self, **{k: v for k, v in changes.items() if v is not None}
        )

    def endpoints(self):
        endpoints = []
        if self.socket_path:
            endpoints.append(RendezvousEndpoint.local(self.socket_path))
        if self.tcp_host:
            endpoints.append(
                RendezvousEndpoint.tcp(self.tcp_host, self.tcp_port)
            )
        if not endpoints:
            raise ValueError("no endpoint configured")
        return endpoints


def parse_tcp_address(text):
    """Parse "[host:]port"; the host defaults to the loopback address."""
    host, sep, port = text.rpartition(":")
    if not sep:
        host = ""
    try:
        port = int(port)
    except ValueError:
        raise ValueError(f"bad tcp address: {text!r}") from None
    return host or "127.0.0.1", port
