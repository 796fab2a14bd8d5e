"""
Turn one request line into a RequestPlan.

A request line is a space-separated list of tokens.  Commands start with "-"
and consume a fixed number of following tokens as their arguments:

    -env NAME=VALUE             add to the client's environment
    -dir PATH                   directory relative files are resolved against
    -current-frame              show things in the currently active surface
    -frame-parameters LITERAL   python literal, dict or list of pairs
    -nowait                     don't wait for the documents to be done
    -display NAME               display for a graphical surface
    -parent-id ID               embed a graphical surface in window ID
    -position +LINE[:COL]       position for the next -file only
    -file PATH                  visit PATH
    -eval EXPR                  evaluate EXPR and print the result
    -window-system              build a graphical surface
    -tty DEVICE TYPE            build a text surface on DEVICE
    -suspend                    suspend the client's terminal
    -resume                     resume the client's terminal
    -ignore COMMENT             keep the session alive, nothing else

"-auth KEY" may only lead the very first line of a session arriving over tcp;
it is consumed by authenticate() before the rest of the line is parsed.
"""

import ast
import collections
import hmac
import logging
import os
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import AuthenticationFailed, ParseError
from .framing import decode_line, split_request

logger = logging.getLogger(__name__)

# "-auth KEY" followed by the space before the next token or the newline
AUTH_RE = re.compile(rb"-auth ([!-~]+)[ \n]")
# an unauthenticated client gets this much input to produce its first line
MAX_AUTH_PREFIX = 4096

POSITION_RE = re.compile(r"\+([0-9]+)(?::([0-9]+))?")
ENV_RE = re.compile(r"[^=]+=")


@dataclass(frozen=True)
class FilePosition:
    line: int
    column: int = 0

    @classmethod
    def parse(cls, text):
        match = POSITION_RE.fullmatch(text)
        if match is None:
            raise ParseError(f"Invalid position: {text}")
        return cls(int(match.group(1)), int(match.group(2) or 0))


# surface requests

@dataclass(frozen=True)
class NoSurface:
    pass


@dataclass(frozen=True)
class ReuseCurrent:
    display: Optional[str] = None


@dataclass(frozen=True)
class MinimalSurface:
    device: str
    type: str


@dataclass(frozen=True)
class GraphicalSurface:
    display: Optional[str] = None
    parent_id: Optional[str] = None


@dataclass(frozen=True)
class TextSurface:
    device: str
    type: str


@dataclass(frozen=True)
class RequestPlan:
    """
    Everything one request line asks for.  Built by RequestParser, never
    modified afterwards.
    """
    tokens: Tuple[str, ...]
    wants_no_wait: bool = False
    wants_current_surface_only: bool = False
    keep_session_alive: bool = False
    files: Tuple[Tuple[str, Optional[FilePosition]], ...] = ()
    expressions: Tuple[str, ...] = ()
    # "suspend" and "resume", in the order they were requested
    actions: Tuple[str, ...] = ()
    environment: Tuple[str, ...] = ()
    directory: Optional[str] = None
    display: Optional[str] = None
    parent_id: Optional[str] = None
    surface_parameters: Optional[object] = None
    surface_request: object = NoSurface()


class RequestParser:
    """
    Walks the tokens of one line.  All the mutable state lives here; the
    result is a frozen RequestPlan.
    """

    def __init__(self, tokens, host, directory=None):
        self.tokens = tuple(tokens)
        self.host = host
        self.args = collections.deque(self.tokens)
        self.directory = directory
        self.nowait = False
        self.current_only = False
        self.keep_alive = False
        self.window_system = False
        self.tty_device = None
        self.tty_type = None
        self.display = None
        self.parent_id = None
        self.parameters = None
        self.position = None
        self.files = []
        self.expressions = []
        self.actions = []
        self.environment = []
        self.commands = {
            "-auth": self.cmd_auth,
            "-env": self.cmd_env,
            "-dir": self.cmd_dir,
            "-current-frame": self.cmd_current_frame,
            "-frame-parameters": self.cmd_frame_parameters,
            "-nowait": self.cmd_nowait,
            "-display": self.cmd_display,
            "-parent-id": self.cmd_parent_id,
            "-position": self.cmd_position,
            "-file": self.cmd_file,
            "-eval": self.cmd_eval,
            "-window-system": self.cmd_window_system,
            "-tty": self.cmd_tty,
            "-suspend": self.cmd_suspend,
            "-resume": self.cmd_resume,
            "-ignore": self.cmd_ignore,
        }

    def pop(self, command):
        if not self.args:
            raise ParseError(f"{command} needs an argument")
        return self.args.popleft()

    def parse(self):
        while self.args:
            arg = self.args.popleft()
            handler = self.commands.get(arg)
            if handler is None:
                raise ParseError(f"Unknown command: {arg}")
            handler(arg)
        return self.build()

    def cmd_auth(self, command):
        raise ParseError("Unexpected -auth")

    def cmd_env(self, command):
        var = self.pop(command)
        if not ENV_RE.match(var):
            raise ParseError(f"Invalid environment entry: {var}")
        self.environment.append(var)

    def cmd_dir(self, command):
        self.directory = os.path.expanduser(self.pop(command))

    def cmd_current_frame(self, command):
        self.current_only = True

    def cmd_frame_parameters(self, command):
        text = self.pop(command)
        try:
            parameters = ast.literal_eval(text)
        except (ValueError, SyntaxError) as e:
            raise ParseError(f"Invalid surface parameters: {text}") from e
        if isinstance(parameters, dict):
            parameters = list(parameters.items())
        if not isinstance(parameters, (list, tuple)) or not all(
            isinstance(p, tuple) and len(p) == 2 for p in parameters
        ):
            raise ParseError(f"Surface parameters are not pairs: {text}")
        self.parameters = tuple(parameters)

    def cmd_nowait(self, command):
        self.nowait = True

    def cmd_display(self, command):
        self.display = self.pop(command) or None

    def cmd_parent_id(self, command):
        self.parent_id = self.pop(command) or None

    def cmd_position(self, command):
        self.position = FilePosition.parse(self.pop(command))

    def cmd_file(self, command):
        path = os.path.expanduser(self.pop(command))
        if self.directory:
            path = os.path.join(self.directory, path)
        path = os.path.abspath(path)
        self.files.append((path, self.position))
        logger.debug(f"new file: {path} {self.position or ''}")
        # a position only ever applies to the next file
        self.position = None

    def cmd_eval(self, command):
        self.expressions.append(self.pop(command))
        self.position = None

    def cmd_window_system(self, command):
        self.window_system = True
        self.keep_alive = True

    def cmd_tty(self, command):
        self.tty_device = self.pop(command)
        self.tty_type = self.pop(command)

    def cmd_suspend(self, command):
        self.actions.append("suspend")
        self.keep_alive = True

    def cmd_resume(self, command):
        self.actions.append("resume")
        self.keep_alive = True

    def cmd_ignore(self, command):
        self.pop(command)
        self.keep_alive = True

    def decide_surface(self):
        if self.current_only and self.host.can_reuse_current():
            return ReuseCurrent(self.display)
        if self.tty_type == "dumb":
            return MinimalSurface(self.tty_device, self.tty_type)
        if self.window_system or (
            self.tty_device is not None and self.host.requires_graphical()
        ):
            return GraphicalSurface(self.display, self.parent_id)
        if self.tty_device is not None:
            return TextSurface(self.tty_device, self.tty_type)
        # nothing else to build, so the current surface it is
        if self.current_only:
            return ReuseCurrent(self.display)
        return NoSurface()

    def build(self):
        surface_request = self.decide_surface()
        keep_alive = self.keep_alive or (
            self.tty_device is not None
            and not isinstance(surface_request, ReuseCurrent)
        )
        return RequestPlan(
            tokens=self.tokens,
            wants_no_wait=self.nowait,
            wants_current_surface_only=self.current_only,
            keep_session_alive=keep_alive,
            files=tuple(self.files),
            expressions=tuple(self.expressions),
            actions=tuple(self.actions),
            environment=tuple(self.environment),
            directory=self.directory,
            display=self.display,
            parent_id=self.parent_id,
            surface_parameters=self.parameters,
            surface_request=surface_request,
        )


def parse_request(tokens, host, directory=None):
    return RequestParser(tokens, host, directory).parse()


class ProtocolDispatcher:
    """
    Consumes a session's buffered input: authenticates it if needed, takes
    at most one complete line, builds the plan and hands it to the executor.
    """

    def __init__(self, host, executor):
        self.host = host
        self.executor = executor

    def authenticate(self, session):
        """
        Check the "-auth KEY" prefix of the first line and strip it.

        Returns False while the first line is still incomplete.  Raises
        AuthenticationFailed on anything but the right key.
        """
        buf = session.pending_input
        if b"\n" not in buf:
            if len(buf) > MAX_AUTH_PREFIX:
                session.auth_attempted = True
                raise AuthenticationFailed("no -auth line from client")
            return False

        assert not session.auth_attempted, "authentication is attempted once"
        session.auth_attempted = True
        match = AUTH_RE.match(buf)
        if match is None:
            raise AuthenticationFailed("request without -auth")
        key = match.group(1)
        expected = session.expected_secret.encode("ascii")
        if not hmac.compare_digest(key, expected):
            raise AuthenticationFailed("wrong -auth key")

        session.pending_input = buf[match.end():]
        session.authenticated = True
        logger.info(f"session {session.id}: authenticated")
        return True

    async def process_input(self, session):
        if not session.authenticated and not self.authenticate(session):
            return
        line = session.take_line()
        if line is None:
            return
        line = decode_line(line)
        logger.debug(f"session {session.id}: request {line!r}")
        plan = self.build_plan(session, line)
        await self.executor.execute(session, plan)

    def build_plan(self, session, line):
        return parse_request(split_request(line), self.host, session.directory)
