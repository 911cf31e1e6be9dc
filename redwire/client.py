"""A small blocking client that sends raw commands and optionally waits for replicas."""

from __future__ import annotations

from typing import Any

from redwire.context import Context
from redwire.reader import RedisError


class RedisClient:
    """Sends one command at a time over a blocking connection.

    When ``slaves`` is non-zero every command is followed by
    ``WAIT <slaves> 0`` so that it returns only once that many replicas
    have acknowledged the write.
    """

    def __init__(self, host: str, port: int, slaves: int = 0) -> None:
        self.slaves = slaves
        self.context = Context.connect(host, port)

    def command(self, cmd: str) -> Any:
        """Send ``cmd`` (a format string with no arguments) and return its reply.

        Raises RedisError if the reply cannot be read; the connection is
        closed in that case.
        """
        self.context.append_command(cmd)
        if self.slaves:
            self.context.append_command("WAIT %d %d", self.slaves, 0)
        reply = self._read(cmd)
        if self.slaves:
            self._read("WAIT")
        return reply

    def _read(self, hint: str) -> Any:
        try:
            return self.context.get_reply()
        except RedisError as exc:
            self.close()
            raise RedisError(exc.kind, f"{hint} error: {exc.message}") from exc

    def close(self) -> None:
        """Close the connection."""
        self.context.close()

    def __enter__(self) -> RedisClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()