"""Synchronous connection context: output buffering, reading and replies."""

from __future__ import annotations

import enum
import os
import socket
from typing import Any, Iterable, Optional

from redwire import net
from redwire.command import BytesLike, FormatError, format_command, format_command_argv
from redwire.net import NetError, Timeout
from redwire.reader import ErrorKind, RedisError, ReplyReader

READ_CHUNK = 16 * 1024


class ConnectionType(enum.Enum):
    """How a context reached its server."""

    TCP = "tcp"
    UNIX = "unix"


class Context:
    """A connection to a server together with its buffers and parser.

    In blocking mode ``command`` sends a request and waits for its reply.
    In non-blocking mode requests are only buffered; the caller drives
    ``buffer_write``, ``buffer_read`` and ``get_reply`` itself.

    Once a failure has been recorded in ``error`` the context refuses
    further I/O until it is reconnected.
    """

    def __init__(self, sock: Optional[socket.socket] = None,
                 blocking: bool = True) -> None:
        self.sock = sock
        self.blocking = blocking
        self.connected = sock is not None
        self.error: Optional[RedisError] = None
        self.connection_type: Optional[ConnectionType] = None
        self.timeout: Timeout = None
        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self.source_addr: Optional[str] = None
        self.reuse_addr = False
        self.path: Optional[str] = None
        self.reader = ReplyReader()
        self._obuf = bytearray()

    # ----------------------------------------------------------- construction

    @classmethod
    def connect(cls, host: str, port: int, timeout: Timeout = None) -> Context:
        """Open a blocking TCP connection."""
        ctx = cls(blocking=True)
        ctx._connect_tcp(host, port, timeout, None)
        return ctx

    @classmethod
    def connect_nonblock(cls, host: str, port: int) -> Context:
        """Open a non-blocking TCP connection."""
        ctx = cls(blocking=False)
        ctx._connect_tcp(host, port, None, None)
        return ctx

    @classmethod
    def connect_bind_nonblock(cls, host: str, port: int, source_addr: str,
                              reuse_addr: bool = False) -> Context:
        """Open a non-blocking TCP connection bound to ``source_addr``."""
        ctx = cls(blocking=False)
        ctx.reuse_addr = reuse_addr
        ctx._connect_tcp(host, port, None, source_addr)
        return ctx

    @classmethod
    def connect_unix(cls, path: str, timeout: Timeout = None,
                     blocking: bool = True) -> Context:
        """Open a connection to a Unix domain socket."""
        ctx = cls(blocking=blocking)
        ctx._connect_unix(path, timeout)
        return ctx

    @classmethod
    def connect_fd(cls, sock: socket.socket) -> Context:
        """Wrap an already connected socket in a blocking context."""
        return cls(sock, blocking=True)

    def _connect_tcp(self, host: str, port: int, timeout: Timeout,
                     source_addr: Optional[str]) -> None:
        self.connection_type = ConnectionType.TCP
        self.host = host
        self.port = port
        self.timeout = timeout
        self.source_addr = source_addr
        try:
            self.sock = net.connect_tcp(host, port, timeout, source_addr,
                                        self.blocking, self.reuse_addr)
        except NetError as exc:
            self.error = exc
            raise
        self.connected = True

    def _connect_unix(self, path: str, timeout: Timeout) -> None:
        self.connection_type = ConnectionType.UNIX
        self.path = path
        self.timeout = timeout
        try:
            self.sock = net.connect_unix(path, timeout, self.blocking)
        except NetError as exc:
            self.error = exc
            raise
        self.connected = True

    def reconnect(self) -> None:
        """Connect again with the options of the original connection."""
        self.error = None
        self.close()
        self._obuf = bytearray()
        self.reader = ReplyReader()
        if self.connection_type is ConnectionType.TCP:
            assert self.host is not None and self.port is not None
            self._connect_tcp(self.host, self.port, self.timeout, self.source_addr)
        elif self.connection_type is ConnectionType.UNIX:
            assert self.path is not None
            self._connect_unix(self.path, self.timeout)
        else:
            raise self._set_error(ErrorKind.OTHER, "Not enough information to reconnect")

    # ---------------------------------------------------------------- options

    def set_timeout(self, timeout: Timeout) -> None:
        """Set read and write timeouts; only blocking contexts support this."""
        if not self.blocking:
            raise RedisError(ErrorKind.OTHER,
                             "Timeouts are only supported on blocking connections")
        try:
            net.set_timeout(self._require_sock(), timeout)
        except NetError as exc:
            self.error = exc
            raise

    def enable_keepalive(self) -> None:
        """Turn on TCP keep-alive probes."""
        try:
            net.keep_alive(self._require_sock(), net.KEEPALIVE_INTERVAL)
        except NetError as exc:
            self.error = exc
            raise

    # -------------------------------------------------------------- lifecycle

    def close(self) -> None:
        """Close the socket, if any."""
        if self.sock is not None:
            self.sock.close()
            self.sock = None
        self.connected = False

    def detach(self) -> Optional[socket.socket]:
        """Give up ownership of the socket and return it still open."""
        sock, self.sock = self.sock, None
        self.connected = False
        return sock

    def __enter__(self) -> Context:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------------------------------------------------------- I/O

    @property
    def pending_output(self) -> bytes:
        """Bytes buffered for the server but not yet written."""
        return bytes(self._obuf)

    def _require_sock(self) -> socket.socket:
        if self.sock is None:
            raise RedisError(ErrorKind.OTHER, "Not connected")
        return self.sock

    def _set_error(self, kind: ErrorKind, message: str) -> RedisError:
        self.error = RedisError(kind, message)
        return self.error

    def _io_error(self, exc: OSError) -> RedisError:
        message = os.strerror(exc.errno) if exc.errno else str(exc)
        return self._set_error(ErrorKind.IO, message)

    def _check(self) -> socket.socket:
        if self.error is not None:
            raise self.error
        return self._require_sock()

    def buffer_read(self) -> None:
        """Read what the socket has and feed it to the reply parser."""
        sock = self._check()
        try:
            data = sock.recv(READ_CHUNK)
        except InterruptedError:
            return
        except BlockingIOError as exc:
            if not self.blocking:
                return
            raise self._io_error(exc) from exc
        except OSError as exc:
            raise self._io_error(exc) from exc
        if not data:
            raise self._set_error(ErrorKind.EOF, "Server closed the connection")
        try:
            self.reader.feed(data)
        except RedisError as exc:
            self.error = exc
            raise

    def buffer_write(self) -> bool:
        """Write part of the output buffer; return True once it is empty."""
        sock = self._check()
        if self._obuf:
            try:
                written = sock.send(self._obuf)
            except InterruptedError:
                written = 0
            except BlockingIOError as exc:
                if self.blocking:
                    raise self._io_error(exc) from exc
                written = 0
            except OSError as exc:
                raise self._io_error(exc) from exc
            del self._obuf[:written]
        return not self._obuf

    def _reply_from_reader(self) -> Any:
        try:
            return self.reader.get_reply()
        except RedisError as exc:
            self.error = exc
            raise

    def get_reply(self) -> Any:
        """Return the next reply.

        Replies already parsed come first. Otherwise a blocking context
        flushes its output and reads until a reply is complete; a
        non-blocking one returns None.
        """
        reply = self._reply_from_reader()
        if reply is None and self.blocking:
            while not self.buffer_write():
                pass
            while reply is None:
                self.buffer_read()
                reply = self._reply_from_reader()
        return reply

    def append_formatted_command(self, data: bytes) -> None:
        """Queue an already encoded request."""
        self._obuf += data

    def append_command(self, fmt: BytesLike, *args: Any) -> None:
        """Queue a request built from a printf-like format string."""
        try:
            data = format_command(fmt, *args)
        except FormatError as exc:
            self.error = exc
            raise
        self._obuf += data

    def append_command_argv(self, argv: Iterable[BytesLike]) -> None:
        """Queue a request built from a list of arguments."""
        self._obuf += format_command_argv(argv)

    def command(self, fmt: BytesLike, *args: Any) -> Any:
        """Send a formatted request; in blocking mode return its reply."""
        self.append_command(fmt, *args)
        return self.get_reply() if self.blocking else None

    def command_argv(self, argv: Iterable[BytesLike]) -> Any:
        """Send a request given as arguments; in blocking mode return its reply."""
        self.append_command_argv(argv)
        return self.get_reply() if self.blocking else None