"""
editserver - a shared editing server and its clients.

Usage:
    # run a server on the default unix socket
    python -m editserver serve

    # also listen on tcp, publishing the address and secret
    python -m editserver serve --tcp :0 --server-file ~/.config/editserver/server

    # open files in the running server and wait until they are done
    python -m editserver client +12:3 notes.txt README

    # evaluate expressions
    python -m editserver client --eval "len(host.documents)"
    python -m editserver eval --server-file ~/.config/editserver/server "1 + 1"
"""

import argparse
import logging
import os
import sys

import trio

from .config import ServerConfig, default_server_file, parse_tcp_address
from .errors import EditServerError, ServerAlreadyRunning
from .framing import decode_line, frame_request, unquote
from .host import ScratchHost
from .listener import ConnectionListener
from .remote import RECV_SIZE, auth_prefix, connect, eval_at, resolve_endpoint
from .server import EditServer

logger = logging.getLogger(__name__)


def serve(args):
    tcp_host = tcp_port = None
    if args.tcp:
        tcp_host, tcp_port = parse_tcp_address(args.tcp)
    config = ServerConfig.from_env().override(
        socket_path=args.socket,
        tcp_host=tcp_host,
        tcp_port=tcp_port,
        server_file=args.server_file,
    )
    if args.no_socket:
        config.socket_path = None
    if config.tcp_host and not config.server_file:
        config.server_file = default_server_file()

    listener = ConnectionListener(
        config.endpoints(), server_file=config.server_file
    )
    listener.set_edit_server(EditServer(ScratchHost(), config))
    try:
        trio.run(listener.run)
    except ServerAlreadyRunning as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


def client_commands(args):
    commands = [("-env", f"{k}={v}") for k, v in os.environ.items()]
    commands.append(("-dir", os.getcwd() + os.sep))
    if args.nowait:
        commands.append(("-nowait",))
    if args.create_frame:
        commands.append(("-window-system",))
    elif args.tty:
        commands.append(
            ("-tty", os.ttyname(sys.stdin.fileno()), os.environ.get("TERM", "dumb"))
        )
    else:
        commands.append(("-current-frame",))

    if args.eval:
        commands.extend(("-eval", expr) for expr in args.args)
        return commands
    for arg in args.args:
        if arg.startswith("+"):
            commands.append(("-position", arg))
        else:
            commands.append(("-file", arg))
    return commands


async def run_client(endpoint, commands):
    """Send one request and relay the replies; returns the exit status."""
    stream = await connect(endpoint)
    status = 0
    pending = []
    buf = b""
    async with stream:
        await stream.send_all(auth_prefix(endpoint) + frame_request(commands))
        while True:
            byts = await stream.receive_some(RECV_SIZE)
            if not byts:
                break
            buf += byts
            while b"\n" in buf:
                line, buf = buf.split(b"\n", maxsplit=1)
                line = decode_line(line)
                keyword, _, payload = line.partition(" ")
                if keyword == "-print-nonl":
                    pending.append(payload)
                elif keyword == "-print":
                    pending.append(payload)
                    print(unquote("".join(pending)))
                    pending = []
                elif keyword == "-error":
                    print(f"*ERROR*: {unquote(payload)}", file=sys.stderr)
                    status = 1
                elif keyword == "-window-system-unsupported":
                    print("no window system available", file=sys.stderr)
                elif keyword == "-emacs-pid":
                    logger.debug(f"server pid {payload}")
                else:
                    logger.debug(f"unknown reply {line!r}")
    return status


def client(args):
    target = args.server_file or args.socket or ServerConfig.from_env().socket_path
    endpoint = resolve_endpoint(target)
    return trio.run(run_client, endpoint, client_commands(args))


def evaluate(args):
    target = args.server_file or args.socket or ServerConfig.from_env().socket_path
    print(repr(eval_at(target, args.expression)))
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="editserver",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Verbose logging"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="run an edit server")
    p.add_argument("--socket", metavar="PATH", help="unix socket path")
    p.add_argument(
        "--no-socket", action="store_true", help="don't listen on a unix socket"
    )
    p.add_argument("--tcp", metavar="[HOST:]PORT", help="also listen on tcp")
    p.add_argument(
        "--server-file", metavar="PATH", help="where to publish the tcp address"
    )
    p.set_defaults(func=serve)

    for name, func in (("client", client), ("eval", evaluate)):
        p = sub.add_parser(name)
        target = p.add_mutually_exclusive_group()
        target.add_argument("--socket", metavar="PATH")
        target.add_argument("--server-file", metavar="PATH")
        p.set_defaults(func=func)
        if name == "eval":
            p.add_argument("expression")
            continue
        p.add_argument("-n", "--nowait", action="store_true")
        p.add_argument("-c", "--create-frame", action="store_true")
        p.add_argument("-t", "--tty", action="store_true")
        p.add_argument("--eval", action="store_true",
                       help="treat the arguments as expressions")
        p.add_argument("args", nargs="*", metavar="[+LINE[:COL]] FILE")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except EditServerError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
