"""Socket set-up for client connections: TCP, Unix domain and options."""

from __future__ import annotations

import errno as _errno
import math
import os
import selectors
import socket
import struct
import sys
from datetime import timedelta
from typing import Optional, Union

from redwire.reader import ErrorKind, RedisError

CONNECT_RETRIES = 10
KEEPALIVE_INTERVAL = 15
_LONG_MAX = 2**63 - 1
_INT_MAX = 2**31 - 1
_MAX_MSEC = (_LONG_MAX - 999) // 1000
_TIMEVAL = "@ll"

Timeout = Union[float, int, timedelta, None]


class NetError(RedisError):
    """A failure while creating, configuring or connecting a socket."""

    def __init__(self, kind: ErrorKind | int, message: str,
                 errno: Optional[int] = None) -> None:
        super().__init__(kind, message)
        self.errno = errno


def _errno_error(kind: ErrorKind, err: int, prefix: Optional[str] = None) -> NetError:
    text = os.strerror(err)
    if prefix is not None:
        text = f"{prefix}: {text}"
    return NetError(kind, text, err)


def _os_error(kind: ErrorKind, exc: OSError, prefix: Optional[str] = None) -> NetError:
    if exc.errno is None:
        text = str(exc) if prefix is None else f"{prefix}: {exc}"
        return NetError(kind, text)
    return _errno_error(kind, exc.errno, prefix)


def _split_timeout(timeout: float | int | timedelta) -> tuple[int, int]:
    """Split a timeout in seconds into whole seconds and microseconds."""
    if isinstance(timeout, timedelta):
        timeout = timeout.total_seconds()
    sec, usec = divmod(round(timeout * 1_000_000), 1_000_000)
    return int(sec), int(usec)


def _timeout_msec(timeout: Timeout) -> Optional[int]:
    if timeout is None:
        return None
    sec, usec = _split_timeout(timeout)
    if usec > 1_000_000 or sec > _MAX_MSEC:
        raise NetError(ErrorKind.IO, "Invalid timeout")
    msec = sec * 1000 + (usec + 999) // 1000
    if msec < 0 or msec > _INT_MAX:
        msec = _INT_MAX
    return msec


def _set_blocking(sock: socket.socket, blocking: bool) -> None:
    try:
        sock.setblocking(blocking)
    except OSError as exc:
        raise _os_error(ErrorKind.IO, exc, "fcntl(F_SETFL)") from exc


def _set_tcp_no_delay(sock: socket.socket) -> None:
    try:
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    except OSError as exc:
        raise _os_error(ErrorKind.IO, exc, "setsockopt(TCP_NODELAY)") from exc


def _wait_ready(sock: socket.socket, err: int, timeout: Timeout) -> None:
    """Wait for an in-progress connect to finish, raising on failure."""
    msec = _timeout_msec(timeout)
    if err != _errno.EINPROGRESS:
        raise _errno_error(ErrorKind.IO, err)
    try:
        with selectors.DefaultSelector() as selector:
            selector.register(sock, selectors.EVENT_WRITE)
            ready = selector.select(None if msec is None else msec / 1000)
    except OSError as exc:
        raise _os_error(ErrorKind.IO, exc, "poll(2)") from exc
    if not ready:
        raise _errno_error(ErrorKind.IO, _errno.ETIMEDOUT)
    check_socket_error(sock)


def check_socket_error(sock: socket.socket) -> None:
    """Raise NetError if the socket has a pending error (SO_ERROR)."""
    try:
        err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
    except OSError as exc:
        raise _os_error(ErrorKind.IO, exc, "getsockopt(SO_ERROR)") from exc
    if err:
        raise _errno_error(ErrorKind.IO, err)


def set_timeout(sock: socket.socket, timeout: float | int | timedelta) -> None:
    """Set the kernel receive and send timeouts of a socket."""
    sec, usec = _split_timeout(timeout)
    value = struct.pack(_TIMEVAL, sec, usec)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVTIMEO, value)
    except OSError as exc:
        raise _os_error(ErrorKind.IO, exc, "setsockopt(SO_RCVTIMEO)") from exc
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDTIMEO, value)
    except OSError as exc:
        raise _os_error(ErrorKind.IO, exc, "setsockopt(SO_SNDTIMEO)") from exc


def keep_alive(sock: socket.socket, interval: int = KEEPALIVE_INTERVAL) -> None:
    """Enable TCP keep-alive probes, every ``interval`` seconds where supported."""
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        if sys.platform == "darwin" and hasattr(socket, "TCP_KEEPALIVE"):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPALIVE, interval)
        elif sys.platform.startswith("linux"):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, interval)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPINTVL,
                            max(interval // 3, 1))
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPCNT, 3)
    except OSError as exc:
        raise _os_error(ErrorKind.OTHER, exc) from exc


def _bind_source(sock: socket.socket, family: int, source_addr: str,
                 reuse_addr: bool) -> None:
    try:
        candidates = socket.getaddrinfo(source_addr, None, family, socket.SOCK_STREAM)
    except socket.gaierror as exc:
        raise NetError(ErrorKind.OTHER, f"Can't get addr: {exc.strerror or exc}") from exc
    if reuse_addr:
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        except OSError as exc:
            raise _os_error(ErrorKind.IO, exc) from exc
    last = 0
    for *_, address in candidates:
        try:
            sock.bind(address)
            return
        except OSError as exc:
            last = exc.errno or 0
    raise NetError(ErrorKind.OTHER, f"Can't bind socket: {os.strerror(last)}", last)


_UNREACHABLE = "unreachable"
_RETRY = "retry"
_DONE = "done"


def _attempt(sock: socket.socket, family: int, address, timeout: Timeout,
             source_addr: Optional[str], blocking: bool, reuse_addr: bool) -> str:
    _set_blocking(sock, False)
    if source_addr is not None:
        _bind_source(sock, family, source_addr, reuse_addr)
    err = sock.connect_ex(address)
    if err:
        if err == _errno.EHOSTUNREACH:
            return _UNREACHABLE
        if err == _errno.EINPROGRESS and not blocking:
            pass
        elif err == _errno.EADDRNOTAVAIL and reuse_addr:
            return _RETRY
        else:
            _wait_ready(sock, err, timeout)
    if blocking:
        _set_blocking(sock, True)
    _set_tcp_no_delay(sock)
    return _DONE


def connect_tcp(host: str, port: int, timeout: Timeout = None,
                source_addr: Optional[str] = None, blocking: bool = True,
                reuse_addr: bool = False) -> socket.socket:
    """Open a TCP connection, preferring IPv4 and falling back to IPv6.

    In non-blocking mode the connect may still be in progress when the
    socket is returned.
    """
    try:
        infos = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_STREAM)
    except socket.gaierror:
        try:
            infos = socket.getaddrinfo(host, port, socket.AF_INET6, socket.SOCK_STREAM)
        except socket.gaierror as exc:
            raise NetError(ErrorKind.OTHER, exc.strerror or str(exc)) from exc

    last_errno = 0
    for family, socktype, proto, _, address in infos:
        for _ in range(CONNECT_RETRIES):
            try:
                sock = socket.socket(family, socktype, proto)
            except OSError as exc:
                last_errno = exc.errno or 0
                break
            try:
                outcome = _attempt(sock, family, address, timeout,
                                   source_addr, blocking, reuse_addr)
            except BaseException:
                sock.close()
                raise
            if outcome == _DONE:
                return sock
            sock.close()
            if outcome == _UNREACHABLE:
                last_errno = _errno.EHOSTUNREACH
                break
        else:
            raise _errno_error(ErrorKind.IO, _errno.EADDRNOTAVAIL)

    raise NetError(ErrorKind.OTHER,
                   f"Can't create socket: {os.strerror(last_errno)}", last_errno)


def connect_unix(path: str, timeout: Timeout = None,
                 blocking: bool = True) -> socket.socket:
    """Open a connection to a Unix domain socket at ``path``."""
    try:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    except OSError as exc:
        raise _os_error(ErrorKind.IO, exc) from exc
    try:
        _set_blocking(sock, False)
        try:
            err = sock.connect_ex(path)
        except OSError as exc:
            raise _os_error(ErrorKind.IO, exc) from exc
        if err and not (err == _errno.EINPROGRESS and not blocking):
            _wait_ready(sock, err, timeout)
        if blocking:
            _set_blocking(sock, True)
    except BaseException:
        sock.close()
        raise
    return sock