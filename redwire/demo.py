"""Walk through a handful of basic commands against a server and print the replies."""

from __future__ import annotations

import sys
from typing import Any, Optional, Sequence, TextIO

from redwire.context import Context
from redwire.reader import RedisError, ReplyType

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 6379
CONNECT_TIMEOUT = 1.5


def _text(reply: Any) -> str:
    string = getattr(reply, "string", None)
    if string is None:
        return "(null)"
    return string.decode("utf-8", errors="replace")


def run_demo(context: Context, out: TextIO) -> None:
    """Issue the demo commands on a blocking ``context``, writing to ``out``."""
    reply = context.command("PING")
    out.write(f"PING: {_text(reply)}\n")

    reply = context.command("SET %s %s", "foo", "hello world")
    out.write(f"SET: {_text(reply)}\n")

    reply = context.command("SET %b %b", b"bar", b"hello")
    out.write(f"SET (binary API): {_text(reply)}\n")

    reply = context.command("GET foo")
    out.write(f"GET foo: {_text(reply)}\n")

    for _ in range(2):
        reply = context.command("INCR counter")
        out.write(f"INCR counter: {reply.integer}\n")

    context.command("DEL mylist")
    for j in range(10):
        context.command("LPUSH mylist element-%s", str(j))

    reply = context.command("LRANGE mylist 0 -1")
    if reply.type is ReplyType.ARRAY:
        for j, element in enumerate(reply.elements):
            out.write(f"{j}) {_text(element)}\n")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Connect to ``[host [port]]`` and run the demo; return an exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    host = args[0] if len(args) > 0 else DEFAULT_HOST
    port = int(args[1]) if len(args) > 1 else DEFAULT_PORT
    try:
        context = Context.connect(host, port, CONNECT_TIMEOUT)
    except RedisError as exc:
        print(f"Connection error: {exc.message}")
        return 1
    with context:
        run_demo(context, sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())