"""Incremental parser for replies in the Redis serialization protocol."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

MAX_ERROR_LENGTH = 127
DEFAULT_MAX_BUF = 16 * 1024
MAX_NESTING = 7
_COMPACT_THRESHOLD = 1024


class ReplyType(enum.IntEnum):
    """Kinds of reply a server can send."""

    STRING = 1
    ARRAY = 2
    INTEGER = 3
    NIL = 4
    STATUS = 5
    ERROR = 6


class ErrorKind(enum.IntEnum):
    """Categories of failure reported by readers and connections."""

    IO = 1
    OTHER = 2
    EOF = 3
    PROTOCOL = 4
    OOM = 5


class RedisError(Exception):
    """A protocol, I/O or other client-side failure."""

    def __init__(self, kind: ErrorKind | int, message: str) -> None:
        message = message[:MAX_ERROR_LENGTH]
        super().__init__(message)
        self.kind = ErrorKind(kind)
        self.message = message


@dataclass
class Reply:
    """A reply object as built by the default factory."""

    type: ReplyType
    integer: int = 0
    string: Optional[bytes] = None
    elements: list[Optional[Reply]] = field(default_factory=list)

    @property
    def value(self) -> Any:
        """The reply as plain Python data."""
        if self.type is ReplyType.INTEGER:
            return self.integer
        if self.type is ReplyType.NIL:
            return None
        if self.type is ReplyType.ARRAY:
            return [None if e is None else e.value for e in self.elements]
        return self.string


@dataclass(eq=False)
class ReadTask:
    """One level of the parser's stack of partially read replies."""

    type: Optional[ReplyType] = None
    elements: int = -1
    idx: int = -1
    obj: Any = None
    parent: Optional[ReadTask] = field(default=None, repr=False)
    privdata: Any = None


class ReplyFactory:
    """Builds reply objects; subclasses may build any other representation.

    Every method must return a non-None object and place it into the
    parent array (``task.parent.obj``) at ``task.idx`` when there is one.
    """

    def create_string(self, task: ReadTask, data: bytes) -> Any:
        return self._attach(task, Reply(ReplyType(task.type), string=bytes(data)))

    def create_array(self, task: ReadTask, count: int) -> Any:
        return self._attach(task, Reply(ReplyType.ARRAY, elements=[None] * max(count, 0)))

    def create_integer(self, task: ReadTask, value: int) -> Any:
        return self._attach(task, Reply(ReplyType.INTEGER, integer=value))

    def create_nil(self, task: ReadTask) -> Any:
        return self._attach(task, Reply(ReplyType.NIL))

    @staticmethod
    def _attach(task: ReadTask, reply: Reply) -> Reply:
        if task.parent is not None:
            task.parent.obj.elements[task.idx] = reply
        return reply


_TYPE_BYTES = {
    ord("-"): ReplyType.ERROR,
    ord("+"): ReplyType.STATUS,
    ord(":"): ReplyType.INTEGER,
    ord("$"): ReplyType.STRING,
    ord("*"): ReplyType.ARRAY,
}

_ESCAPES = {
    ord("\n"): "n",
    ord("\r"): "r",
    ord("\t"): "t",
    ord("\a"): "a",
    ord("\b"): "b",
}


def _chrtos(byte: int) -> str:
    if byte in (ord("\\"), ord('"')):
        return f'"\\{chr(byte)}"'
    if byte in _ESCAPES:
        return f'"\\{_ESCAPES[byte]}"'
    if 0x20 <= byte < 0x7F:
        return f'"{chr(byte)}"'
    return f'"\\x{byte:02x}"'


def _read_long_long(data: bytes) -> int:
    """Parse a signed decimal; any stray character yields -1."""
    digits = bytes(data).split(b"\r", 1)[0]
    mult = 1
    if digits[:1] == b"-":
        mult = -1
        digits = digits[1:]
    elif digits[:1] == b"+":
        digits = digits[1:]
    value = 0
    for c in digits:
        d = c - 48
        if not 0 <= d < 10:
            return -1
        value = value * 10 + d
    return mult * value


class ReplyReader:
    """Accumulates raw bytes and yields complete replies as they arrive."""

    def __init__(self, factory: Optional[ReplyFactory] = None,
                 max_buf: int = DEFAULT_MAX_BUF) -> None:
        self.factory = factory if factory is not None else ReplyFactory()
        self.max_buf = max_buf
        self.privdata: Any = None
        self._buf = bytearray()
        self._pos = 0
        self._stack = [ReadTask() for _ in range(MAX_NESTING + 2)]
        self._ridx = -1
        self._reply: Any = None
        self._error: Optional[RedisError] = None

    def feed(self, data: bytes) -> None:
        """Append bytes received from the server."""
        if self._error is not None:
            raise self._error
        if not data:
            return
        if (self._pos == len(self._buf) and self.max_buf
                and len(self._buf) > self.max_buf):
            self._buf = bytearray()
            self._pos = 0
        self._buf += data

    def get_reply(self) -> Any:
        """Return the next complete reply, or None if more data is needed."""
        if self._error is not None:
            raise self._error
        if not self._buf:
            return None

        if self._ridx == -1:
            root = self._stack[0]
            root.type = None
            root.elements = -1
            root.idx = -1
            root.obj = None
            root.parent = None
            root.privdata = self.privdata
            self._ridx = 0

        while self._ridx >= 0 and self._process_item():
            pass

        if self._error is not None:
            raise self._error

        if self._pos >= _COMPACT_THRESHOLD:
            del self._buf[:self._pos]
            self._pos = 0

        if self._ridx == -1:
            reply, self._reply = self._reply, None
            return reply
        return None

    def __iter__(self) -> Iterator[Any]:
        while (reply := self.get_reply()) is not None:
            yield reply

    def _fail(self, kind: ErrorKind, message: str) -> bool:
        self._reply = None
        self._buf = bytearray()
        self._pos = 0
        self._ridx = -1
        self._error = RedisError(kind, message)
        return False

    def _read_line(self) -> Optional[bytes]:
        end = self._buf.find(b"\r\n", self._pos)
        if end == -1:
            return None
        line = bytes(self._buf[self._pos:end])
        self._pos = end + 2
        return line

    def _move_to_next_task(self) -> None:
        while self._ridx >= 0:
            if self._ridx == 0:
                self._ridx -= 1
                return
            cur = self._stack[self._ridx]
            prv = self._stack[self._ridx - 1]
            if cur.idx == prv.elements - 1:
                self._ridx -= 1
            else:
                cur.type = None
                cur.elements = -1
                cur.idx += 1
                return

    def _finish(self, obj: Any) -> bool:
        if self._ridx == 0:
            self._reply = obj
        self._move_to_next_task()
        return True

    def _process_item(self) -> bool:
        cur = self._stack[self._ridx]
        if cur.type is None:
            if self._pos >= len(self._buf):
                return False
            byte = self._buf[self._pos]
            self._pos += 1
            kind = _TYPE_BYTES.get(byte)
            if kind is None:
                return self._fail(
                    ErrorKind.PROTOCOL,
                    f"Protocol error, got {_chrtos(byte)} as reply type byte",
                )
            cur.type = kind

        if cur.type is ReplyType.STRING:
            return self._process_bulk_item(cur)
        if cur.type is ReplyType.ARRAY:
            return self._process_multi_bulk_item(cur)
        return self._process_line_item(cur)

    def _process_line_item(self, cur: ReadTask) -> bool:
        line = self._read_line()
        if line is None:
            return False
        if cur.type is ReplyType.INTEGER:
            obj = self.factory.create_integer(cur, _read_long_long(line))
        else:
            obj = self.factory.create_string(cur, line)
        if obj is None:
            return self._fail(ErrorKind.OOM, "Out of memory")
        return self._finish(obj)

    def _process_bulk_item(self, cur: ReadTask) -> bool:
        end = self._buf.find(b"\r\n", self._pos)
        if end == -1:
            return False
        total = end - self._pos + 2
        length = _read_long_long(self._buf[self._pos:end])
        if length < 0:
            obj = self.factory.create_nil(cur)
        else:
            total += length + 2
            if self._pos + total > len(self._buf):
                return False
            start = end + 2
            obj = self.factory.create_string(cur, bytes(self._buf[start:start + length]))
        if obj is None:
            return self._fail(ErrorKind.OOM, "Out of memory")
        self._pos += total
        return self._finish(obj)

    def _process_multi_bulk_item(self, cur: ReadTask) -> bool:
        if self._ridx == MAX_NESTING + 1:
            return self._fail(
                ErrorKind.PROTOCOL,
                "No support for nested multi bulk replies with depth > 7",
            )
        line = self._read_line()
        if line is None:
            return False
        elements = _read_long_long(line)
        root = self._ridx == 0

        if elements == -1:
            obj = self.factory.create_nil(cur)
            if obj is None:
                return self._fail(ErrorKind.OOM, "Out of memory")
            self._move_to_next_task()
        else:
            obj = self.factory.create_array(cur, elements)
            if obj is None:
                return self._fail(ErrorKind.OOM, "Out of memory")
            if elements > 0:
                cur.elements = elements
                cur.obj = obj
                self._ridx += 1
                child = self._stack[self._ridx]
                child.type = None
                child.elements = -1
                child.idx = 0
                child.obj = None
                child.parent = cur
                child.privdata = self.privdata
            else:
                self._move_to_next_task()

        if root:
            self._reply = obj
        return True