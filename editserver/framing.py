r"""
Wire framing for the editing protocol.

Requests and replies are newline-terminated lines of space-separated fields,
so a field must never contain a literal newline or space.  Four characters are
quoted with a two-character escape:

    &   ->  &&
    -   ->  &-      (a field can then never be mistaken for a command)
    \n  ->  &n
    " " ->  &_

Unquoting maps "&<c>" back, and any escape it does not know reads as a space.
A lone "&" at the very end of a field is not an escape and stays as it is.

Replies longer than MAX_MESSAGE_SIZE bytes (the whole line, prefix and newline
included) are cut into chunks:

    -print-nonl <chunk>\n
    -print-nonl <chunk>\n
    -print <last chunk>\n

A cut never lands inside an escape pair or inside a utf-8 sequence, and the
reader concatenates the chunks before unquoting.
"""

import logging

logger = logging.getLogger(__name__)

MAX_MESSAGE_SIZE = 1024

PRINT = b"-print "
PRINT_NONL = b"-print-nonl "

quoter = {
    "&": "&&",
    "-": "&-",
    "\n": "&n",
    " ": "&_",
}

unquoter = {
    "&": "&",
    "-": "-",
    "n": "\n",
    "_": " ",
}


def quote(text):
    return "".join(quoter.get(c, c) for c in text)


def unquote(wire_text):
    out = []
    i = 0

    while i < len(wire_text):
        c0 = wire_text[i]; i += 1
        if c0 != "&":
            out.append(c0)
            continue
        if i == len(wire_text):
            out.append(c0)
            break
        c1 = wire_text[i]; i += 1
        u = unquoter.get(c1)
        if u is None:
            logger.debug("suspicious escape '&%s' read as a space", c1)
            u = " "
        out.append(u)
    return "".join(out)


def decode_line(byts):
    """Wire bytes to text; undecodable bytes survive as surrogates."""
    return byts.decode("utf-8", "surrogateescape")


def encode_line(text):
    return text.encode("utf-8", "surrogateescape")


def split_request(line):
    """
    Split one request line (without its newline) into unquoted tokens.

    Clients terminate every field with a space, so a trailing empty field is
    dropped; an empty field anywhere else is an empty argument.
    """
    fields = line.split(" ")
    if fields and fields[-1] == "":
        fields.pop()
    return [unquote(f) for f in fields]


def frame_request(commands):
    """
    Build a request line from (command, *args) tuples.  Commands go on the
    wire as they are, arguments are quoted.
    """
    fields = []
    for command, *args in commands:
        fields.append(command)
        fields.extend(quote(a) for a in args)
    return encode_line("".join(f + " " for f in fields) + "\n")


def _split_point(payload, room):
    cut = room
    # never split a multi-byte utf-8 sequence; valid utf-8 has at most three
    # continuation bytes, anything longer is cut where it stands
    while cut > room - 3 and payload[cut] & 0xC0 == 0x80:
        cut -= 1
    if payload[cut] & 0xC0 == 0x80:
        cut = room
    # an odd run of "&" right before the cut means the cut splits a pair
    run = 0
    while run < cut and payload[cut - 1 - run] == 0x26:  # "&"
        run += 1
    if run % 2:
        cut -= 1
    return cut


def frame_reply(text, limit=MAX_MESSAGE_SIZE):
    """Return the list of wire lines that carry `text` as printed output."""
    if limit <= len(PRINT_NONL) + 8:
        raise ValueError(f"message size limit too small: {limit}")
    payload = encode_line(quote(text))
    # room for the payload, after the prefix and before the newline
    final_room = limit - len(PRINT) - 1
    room = limit - len(PRINT_NONL) - 1

    lines = []
    while len(payload) > final_room:
        cut = _split_point(payload, room)
        lines.append(PRINT_NONL + payload[:cut] + b"\n")
        payload = payload[cut:]
    lines.append(PRINT + payload + b"\n")
    return lines


def frame_notice(keyword, text=None):
    """
    Frame a single notice line, like:

        -emacs-pid 1234
        -error Unknown&_command
        -window-system-unsupported
    """
    if text is None:
        return encode_line(f"-{keyword}\n")
    return encode_line(f"-{keyword} {quote(str(text))}\n")


def read_payloads(wire_byts):
    """
    Collect the output carried by a stream of reply lines.

    Returns (text, errors): the concatenated, unquoted -print/-print-nonl
    payloads, and the unquoted messages of any -error lines.
    """
    chunks = []
    errors = []
    for line in wire_byts.split(b"\n"):
        line = decode_line(line)
        if line.startswith("-print-nonl "):
            chunks.append(line[len("-print-nonl "):])
        elif line.startswith("-print "):
            chunks.append(line[len("-print "):])
        elif line.startswith("-error "):
            errors.append(unquote(line[len("-error "):]))
    return unquote("".join(chunks)), errors


def reply_is_complete(wire_byts):
    """True when the last output line of a reply is a final -print."""
    last = None
    for line in wire_byts.split(b"\n"):
        if line.startswith((PRINT, PRINT_NONL)):
            last = line
    return last is not None and last.startswith(PRINT)
