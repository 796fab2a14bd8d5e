import os

import pytest
import trio

from editserver import dispatcher
from editserver.dispatcher import (
    FilePosition,
    GraphicalSurface,
    MinimalSurface,
    NoSurface,
    ReuseCurrent,
    TextSurface,
    parse_request,
)
from editserver.errors import AuthenticationFailed, ParseError
from editserver.rendezvous import RendezvousEndpoint
from editserver.session import ClientSession


class StubHost:
    def __init__(self, reusable=True, graphical_only=False):
        self.reusable = reusable
        self.graphical_only = graphical_only

    def can_reuse_current(self):
        return self.reusable

    def requires_graphical(self):
        return self.graphical_only


def parse(*tokens, host=None, directory="/work"):
    return parse_request(tokens, host or StubHost(), directory)


def test_position_attaches_to_next_file_only():
    plan = parse("-file", "a", "-position", "+5:2", "-file", "b", "-file", "c")
    expect = (
        ("/work/a", None),
        ("/work/b", FilePosition(5, 2)),
        ("/work/c", None),
    )
    assert plan.files == expect, plan.files

    plan = parse("-position", "+7", "-file", "/abs/x")
    assert plan.files == (("/abs/x", FilePosition(7, 0)),), plan.files

    # -eval swallows a pending position
    plan = parse("-position", "+7", "-eval", "1", "-file", "x")
    assert plan.files == (("/work/x", None),), plan.files


def test_bad_position():
    for bad in ["5", "+", "+5:", "+a", "+5:2:1", "-5"]:
        with pytest.raises(ParseError):
            parse("-position", bad, "-file", "x")


def test_unknown_command():
    with pytest.raises(ParseError) as info:
        parse("-bogus", "foo")
    assert "Unknown command: -bogus" in str(info.value), info.value

    # a valid prefix doesn't save the line
    with pytest.raises(ParseError):
        parse("-file", "a", "-eval", "1", "stray")


def test_missing_argument():
    for command in ["-file", "-eval", "-env", "-dir", "-display", "-ignore"]:
        with pytest.raises(ParseError):
            parse(command)
    with pytest.raises(ParseError):
        parse("-tty", "/dev/pts/1")


def test_env_and_dir():
    plan = parse(
        "-env", "HOME=/home/me", "-env", "EMPTY=", "-env", "HOME=/other",
        "-dir", "/src/", "-file", "main.c",
    )
    expect = ("HOME=/home/me", "EMPTY=", "HOME=/other")
    assert plan.environment == expect, plan.environment
    assert plan.directory == "/src/", plan.directory
    assert plan.files == (("/src/main.c", None),), plan.files

    with pytest.raises(ParseError):
        parse("-env", "=nope")
    with pytest.raises(ParseError):
        parse("-env", "NOEQUALS")


def test_relative_file_without_directory():
    plan = parse("-file", "x.txt", directory=None)
    assert plan.files == ((os.path.abspath("x.txt"), None),), plan.files


def test_expressions_in_order():
    plan = parse("-eval", "(+ 1 1)", "-nowait", "-eval", "second")
    assert plan.expressions == ("(+ 1 1)", "second"), plan.expressions
    assert plan.wants_no_wait
    assert not plan.keep_session_alive


def test_keep_alive_flags():
    for tokens in [("-suspend",), ("-resume",), ("-ignore", "hi"), ("-window-system",)]:
        plan = parse(*tokens)
        assert plan.keep_session_alive, tokens
    plan = parse("-suspend", "-resume", "-suspend")
    assert plan.actions == ("suspend", "resume", "suspend"), plan.actions


def test_frame_parameters():
    plan = parse("-frame-parameters", "{'width': 80}")
    assert plan.surface_parameters == (("width", 80),), plan.surface_parameters
    plan = parse("-frame-parameters", "[('a', 1), ('b', 'x')]")
    assert plan.surface_parameters == (("a", 1), ("b", "x")), plan.surface_parameters
    for bad in ["{", "42", "[1, 2]", "__import__('os')"]:
        with pytest.raises(ParseError):
            parse("-frame-parameters", bad)


def test_auth_after_authentication_is_an_error():
    with pytest.raises(ParseError):
        parse("-auth", "secret")
    # but a file may be called "-auth"
    plan = parse("-file", "-auth")
    assert plan.files == (("/work/-auth", None),), plan.files


def test_surface_decision():
    # rule 1: current only, current is usable
    plan = parse("-current-frame", "-display", "d:0")
    assert plan.surface_request == ReuseCurrent("d:0"), plan.surface_request

    # current is not usable and nothing else was offered: still reused, last
    plan = parse("-current-frame", "-display", "d:0", host=StubHost(reusable=False))
    assert plan.surface_request == ReuseCurrent("d:0"), plan.surface_request
    assert not plan.keep_session_alive

    # rule 1: current only with a fallback, current is usable
    plan = parse("-current-frame", "-tty", "/dev/pts/3", "xterm")
    assert plan.surface_request == ReuseCurrent(), plan.surface_request
    assert not plan.keep_session_alive

    # the current surface is not usable: fall back to the offered tty
    plan = parse(
        "-current-frame", "-tty", "/dev/pts/3", "xterm",
        host=StubHost(reusable=False),
    )
    assert plan.surface_request == TextSurface("/dev/pts/3", "xterm"), plan.surface_request
    assert plan.keep_session_alive

    # rule 2: dumb terminals get a minimal surface
    plan = parse("-tty", "/dev/pts/3", "dumb")
    assert plan.surface_request == MinimalSurface("/dev/pts/3", "dumb"), plan.surface_request

    # rule 3: explicit, and implied by the platform
    plan = parse("-window-system", "-display", "", "-parent-id", "77")
    assert plan.surface_request == GraphicalSurface(None, "77"), plan.surface_request
    plan = parse("-tty", "/dev/pts/3", "xterm", host=StubHost(graphical_only=True))
    assert plan.surface_request == GraphicalSurface(), plan.surface_request

    # rule 4
    plan = parse("-tty", "/dev/pts/3", "xterm")
    assert plan.surface_request == TextSurface("/dev/pts/3", "xterm"), plan.surface_request

    # nothing asked for
    plan = parse("-file", "a")
    assert plan.surface_request == NoSurface(), plan.surface_request


def test_plan_is_immutable():
    plan = parse("-file", "a")
    with pytest.raises(AttributeError):
        plan.files = ()


def tcp_session(secret="s" * 64):
    endpoint = RendezvousEndpoint.tcp("127.0.0.1", 1234, secret)
    return ClientSession(1, None, endpoint)


def test_authenticate():
    d = dispatcher.ProtocolDispatcher(StubHost(), None)
    secret = "k&-" * 21 + "x"

    session = tcp_session(secret)
    session.feed(b"-auth " + secret.encode())
    assert d.authenticate(session) is False
    assert not session.authenticated
    session.feed(b" -eval 1 \n")
    assert d.authenticate(session) is True
    assert session.authenticated
    assert session.pending_input == b"-eval 1 \n", session.pending_input

    # the auth line on its own
    session = tcp_session(secret)
    session.feed(b"-auth " + secret.encode() + b"\n-eval 2 \n")
    assert d.authenticate(session)
    assert session.pending_input == b"-eval 2 \n", session.pending_input


def test_authenticate_failures():
    d = dispatcher.ProtocolDispatcher(StubHost(), None)
    for wire in [
        b"-eval 1 \n",
        b"-auth " + b"t" * 64 + b" -eval 1\n",
        b"-auth " + b"s" * 63 + b" -eval 1\n",
        b"-auth\n",
        b"junk -auth " + b"s" * 64 + b" \n",
    ]:
        session = tcp_session()
        session.feed(wire)
        with pytest.raises(AuthenticationFailed):
            d.authenticate(session)
        assert not session.authenticated, wire

    session = tcp_session()
    session.feed(b"x" * (dispatcher.MAX_AUTH_PREFIX + 1))
    with pytest.raises(AuthenticationFailed):
        d.authenticate(session)


def test_local_sessions_skip_authentication():
    seen = []

    class Executor:
        async def execute(self, session, plan):
            seen.append(plan)

    d = dispatcher.ProtocolDispatcher(StubHost(), Executor())
    session = ClientSession(1, None, RendezvousEndpoint.local("/tmp/sock"))
    assert session.authenticated
    session.feed(b"-eval 1 \n-eval 2 \n")
    trio.run(d.process_input, session)
    # one line per read; the second stays buffered
    assert len(seen) == 1, seen
    assert seen[0].expressions == ("1",), seen[0]
    assert session.pending_input == b"-eval 2 \n", session.pending_input
