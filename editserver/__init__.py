from .config import ServerConfig
from .dispatcher import FilePosition, RequestPlan, parse_request
from .errors import (
    AuthenticationFailed,
    EditServerError,
    EvaluationError,
    ParseError,
    ServerAlreadyRunning,
    ServerUnreachable,
    SurfaceUnsupported,
    UnreadableResult,
)
from .framing import frame_reply, quote, unquote
from .host import Host, ScratchHost
from .listener import ConnectionListener
from .remote import RemoteEvalClient, eval_at
from .rendezvous import RendezvousEndpoint
from .server import EditServer
from .session import ClientSession, SessionRegistry

__version__ = "0.1.0"
