class EditServerError(Exception):
    """Base class for everything this package raises on purpose."""


class AuthenticationFailed(EditServerError):
    pass


class ParseError(EditServerError):
    """A request line could not be turned into a RequestPlan."""


class EvaluationError(EditServerError):
    """
    An expression failed to evaluate.  The message is the originating error's
    message, which is what the client gets to see.
    """


class SurfaceUnsupported(EditServerError):
    """The host has no way to build the requested kind of surface."""


class SessionDisconnected(EditServerError):
    """The peer went away while we were reading or writing."""


class ServerAlreadyRunning(EditServerError):
    def __init__(self, endpoint):
        super().__init__(f"a server is already running at {endpoint}")
        self.endpoint = endpoint


class ServerUnreachable(EditServerError):
    pass


class UnreadableResult(EditServerError):
    pass
