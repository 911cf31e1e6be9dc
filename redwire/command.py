"""Encoding of commands into the Redis request protocol."""

from __future__ import annotations

import math
import operator
from typing import Any, Callable, Iterable, Union

from redwire.reader import ErrorKind, RedisError

BytesLike = Union[bytes, bytearray, memoryview, str]

_INT_CONVERSIONS = b"diouxX"
_FLOAT_CONVERSIONS = b"eEfFgGaA"
_FLAGS = b"#0-+ "
_MAX_SPEC_LENGTH = 14
_SIZE_BITS = {"hh": 8, "h": 16, "": 32, "l": 64, "ll": 64}


class FormatError(RedisError, ValueError):
    """A command format string that cannot be expanded."""

    def __init__(self, message: str = "Invalid format string") -> None:
        super().__init__(ErrorKind.OTHER, message)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"expected str or bytes, got {type(value).__name__}")


def _cstring(value: Any) -> bytes:
    """A %s argument: like a C string, it ends at the first NUL byte."""
    return _to_bytes(value).split(b"\0", 1)[0]


def _pad(prefix: str, body: str, flags: str, width: int, zero_ok: bool) -> str:
    fill = width - len(prefix) - len(body)
    if fill <= 0:
        return prefix + body
    if "-" in flags:
        return prefix + body + " " * fill
    if "0" in flags and zero_ok:
        return prefix + "0" * fill + body
    return " " * fill + prefix + body


def _sign(negative: bool, flags: str) -> str:
    if negative:
        return "-"
    if "+" in flags:
        return "+"
    if " " in flags:
        return " "
    return ""


def _format_int(arg: Any, conv: str, size: str, flags: str,
                width: int, precision: int | None) -> str:
    try:
        value = operator.index(arg)
    except TypeError:
        raise TypeError(
            f"%{conv} needs an integer, got {type(arg).__name__}"
        ) from None
    bits = _SIZE_BITS[size]
    value &= (1 << bits) - 1
    signed = conv in "di"
    if signed and value >= 1 << (bits - 1):
        value -= 1 << bits

    magnitude = abs(value)
    if conv in "diu":
        digits = str(magnitude)
    elif conv == "o":
        digits = format(magnitude, "o")
    elif conv == "x":
        digits = format(magnitude, "x")
    else:
        digits = format(magnitude, "X")

    if precision is not None:
        if precision == 0 and magnitude == 0:
            digits = ""
        digits = digits.zfill(precision)

    prefix = _sign(value < 0, flags) if signed else ""
    if "#" in flags:
        if conv == "o" and not digits.startswith("0"):
            digits = "0" + digits
        elif conv in "xX" and magnitude:
            prefix = "0" + conv
    return _pad(prefix, digits, flags, width, precision is None)


def _format_hex_float(x: float, upper: bool, flags: str,
                      width: int, precision: int | None) -> str:
    sign = _sign(math.copysign(1.0, x) < 0, flags)
    if math.isnan(x) or math.isinf(x):
        body = "nan" if math.isnan(x) else "inf"
        text = _pad(sign, body, flags, width, False)
        return text.upper() if upper else text

    ax = abs(x)
    if ax == 0:
        lead, frac, exp = 0, 0, 0
    else:
        m, e = math.frexp(ax)
        mant = int(m * (1 << 53))
        lead, frac, exp = 1, mant - (1 << 52), e - 1

    if precision is None:
        digits = f"{frac:013x}".rstrip("0")
    elif precision >= 13:
        digits = f"{frac:013x}" + "0" * (precision - 13)
    else:
        shift = 4 * (13 - precision)
        q, r = divmod(frac, 1 << shift)
        half = 1 << (shift - 1)
        if r > half or (r == half and q & 1):
            q += 1
        if q == 1 << (4 * precision):
            q = 0
            lead += 1
        digits = f"{q:0{precision}x}" if precision else ""

    point = "." if digits or "#" in flags else ""
    body = f"{lead:x}{point}{digits}p{exp:+d}"
    text = _pad(sign + "0x", body, flags, width, True)
    return text.upper() if upper else text


def _format_float(arg: Any, conv: str, flags: str,
                  width: int, precision: int | None) -> str:
    if isinstance(arg, bool) or not isinstance(arg, (int, float)):
        raise TypeError(f"%{conv} needs a number, got {type(arg).__name__}")
    value = float(arg)
    if conv in "aA":
        return _format_hex_float(value, conv == "A", flags, width, precision)
    spec = "%" + flags + (str(width) if width else "")
    if precision is not None:
        spec += f".{precision}"
    return (spec + conv) % value


def _expand_printf(fmt: bytes, start: int,
                   take: Callable[[], Any]) -> tuple[bytes, int]:
    """Expand the printf-style directive at ``fmt[start]``.

    Returns the produced text and the index just past the directive.
    """
    end = len(fmt)
    p = start + 1
    while p < end and fmt[p] in _FLAGS:
        p += 1
    flags = fmt[start + 1:p].decode("ascii")

    width_start = p
    while p < end and chr(fmt[p]).isdigit():
        p += 1
    width = int(fmt[width_start:p]) if p > width_start else 0

    precision: int | None = None
    if fmt[p:p + 1] == b".":
        p += 1
        prec_start = p
        while p < end and chr(fmt[p]).isdigit():
            p += 1
        precision = int(fmt[prec_start:p]) if p > prec_start else 0

    conv = fmt[p:p + 1]
    size = ""
    if conv and conv in _INT_CONVERSIONS:
        kind = "int"
    elif conv and conv in _FLOAT_CONVERSIONS:
        kind = "float"
    else:
        for size in ("hh", "h", "ll", "l"):
            if fmt[p:p + len(size)] == size.encode("ascii"):
                break
        else:
            raise FormatError()
        p += len(size)
        conv = fmt[p:p + 1]
        if not conv or conv not in _INT_CONVERSIONS:
            raise FormatError()
        kind = "int"

    arg = take()
    if p + 1 - start >= _MAX_SPEC_LENGTH:
        # An over-long directive swallows its argument and expands to
        # nothing; the rest of it is read as ordinary characters.
        return b"", start + 2

    conv_char = conv.decode("ascii")
    if kind == "int":
        text = _format_int(arg, conv_char, size, flags, width, precision)
    else:
        text = _format_float(arg, conv_char, flags, width, precision)
    return text.encode("ascii"), p + 1


def format_command(fmt: BytesLike, *args: Any) -> bytes:
    """Build a request from a printf-like format string.

    Spaces separate arguments. ``%s`` interpolates a string (up to its
    first NUL byte), ``%b`` interpolates binary-safe bytes, ``%%`` is a
    literal percent sign, and integer and floating point conversions
    (``%d``, ``%lld``, ``%5.2f``, ...) are formatted as printf would.
    Raises FormatError for an unknown directive or too few arguments.
    """
    pattern = _to_bytes(fmt).split(b"\0", 1)[0]
    remaining = iter(args)

    def take() -> Any:
        try:
            return next(remaining)
        except StopIteration:
            raise FormatError("Not enough arguments for format string") from None

    argv: list[bytes] = []
    current = bytearray()
    touched = False
    i = 0
    end = len(pattern)
    while i < end:
        c = pattern[i]
        if c != ord("%") or i + 1 == end:
            if c == ord(" "):
                if touched:
                    argv.append(bytes(current))
                    current = bytearray()
                    touched = False
            else:
                current.append(c)
                touched = True
            i += 1
            continue

        directive = pattern[i + 1]
        if directive == ord("s"):
            current += _cstring(take())
            i += 2
        elif directive == ord("b"):
            current += _to_bytes(take())
            i += 2
        elif directive == ord("%"):
            current.append(ord("%"))
            i += 2
        else:
            text, i = _expand_printf(pattern, i, take)
            current += text
        touched = True

    if touched:
        argv.append(bytes(current))
    return format_command_argv(argv)


def format_command_argv(argv: Iterable[BytesLike]) -> bytes:
    """Encode a sequence of arguments as a multi-bulk request."""
    items = [_to_bytes(arg) for arg in argv]
    parts = [b"*%d\r\n" % len(items)]
    for item in items:
        parts.append(b"$%d\r\n" % len(item))
        parts.append(item)
        parts.append(b"\r\n")
    return b"".join(parts)