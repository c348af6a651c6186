"""Building request payloads in the server's multi-bulk wire format."""

from __future__ import annotations

import math
import operator
from collections.abc import Callable, Iterable
from typing import Any, Optional, Union

__all__ = ["FormatError", "format_command", "format_command_argv"]

BytesLike = Union[bytes, bytearray, memoryview]

_FLAGS = b"#0-+ "
_DIGITS = b"0123456789"
_INT_CONVERSIONS = "diouxX"
_FLOAT_CONVERSIONS = "eEfFgGaA"
_LENGTH_MODIFIERS = (("hh", 8), ("h", 16), ("ll", 64), ("l", 64))
_DEFAULT_INT_BITS = 32
# A printf directive of this many characters or more is not expanded.
_MAX_DIRECTIVE = 14


class FormatError(ValueError):
    """Raised when a command format string cannot be expanded."""


def _as_bytes(arg: Any) -> bytes:
    if isinstance(arg, str):
        return arg.encode("utf-8")
    if isinstance(arg, (bytes, bytearray, memoryview)):
        return bytes(arg)
    raise TypeError(f"expected str or bytes argument, got {type(arg).__name__}")


def _c_string(arg: Any) -> bytes:
    """Text for ``%s``: the argument up to its first NUL byte."""
    return _as_bytes(arg).split(b"\0", 1)[0]


def _bulk(arg: bytes) -> bytes:
    return b"$%d\r\n%s\r\n" % (len(arg), arg)


def _multi_bulk(arguments: list[bytes]) -> bytes:
    return b"*%d\r\n" % len(arguments) + b"".join(_bulk(a) for a in arguments)


def _wrap_int(value: int, bits: int, signed: bool) -> int:
    mask = (1 << bits) - 1
    value &= mask
    if signed and value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def _format_int(
    flags: str, width: str, precision: Optional[int], conv: str, value: int
) -> str:
    if precision is not None:
        # An explicit precision disables zero padding.
        flags = flags.replace("0", "")
    if conv == "o" and "#" in flags:
        flags = flags.replace("#", "")
        if value != 0:
            precision = max(1 if precision is None else precision, len(f"{value:o}") + 1)
    if conv in "xX" and value == 0:
        flags = flags.replace("#", "")
    spec = "%" + flags + width
    if precision is not None:
        spec += f".{precision}"
    return (spec + conv) % value


def _hex_float(
    flags: str, width: str, precision: Optional[int], value: float, upper: bool
) -> str:
    negative = math.copysign(1.0, value) < 0
    finite = math.isfinite(value)
    if not finite:
        body = "nan" if math.isnan(value) else "inf"
    else:
        magnitude = abs(value)
        if magnitude == 0:
            mantissa, exponent = 0, 0
        else:
            fraction, exp = math.frexp(magnitude)
            mantissa = int(fraction * (1 << 53))
            exponent = exp - 1
        if precision is None:
            lead = mantissa >> 52
            digits = f"{mantissa & ((1 << 52) - 1):013x}".rstrip("0")
        else:
            if precision < 13:
                shift = 4 * (13 - precision)
                quotient, remainder = divmod(mantissa, 1 << shift)
                half = 1 << (shift - 1)
                if remainder > half or (remainder == half and quotient & 1):
                    quotient += 1
            else:
                quotient = mantissa << (4 * (precision - 13))
            lead = quotient >> (4 * precision)
            fraction_bits = quotient & ((1 << (4 * precision)) - 1)
            digits = f"{fraction_bits:0{precision}x}" if precision else ""
        point = "." if digits or "#" in flags else ""
        body = f"0x{lead:x}{point}{digits}p{exponent:+d}"
    if upper:
        body = body.upper()
    sign = "-" if negative else "+" if "+" in flags else " " if " " in flags else ""
    pad = (int(width) if width else 0) - len(sign) - len(body)
    if pad <= 0:
        return sign + body
    if "-" in flags:
        return sign + body + " " * pad
    if "0" in flags and finite:
        return sign + body[:2] + "0" * pad + body[2:]
    return " " * pad + sign + body


def _format_float(
    flags: str, width: str, precision: Optional[int], conv: str, value: float
) -> str:
    if conv in "aA":
        return _hex_float(flags, width, precision, value, conv == "A")
    spec = "%" + flags + width
    if precision is not None:
        spec += f".{precision}"
    return (spec + conv) % value


def _printf_directive(
    spec: bytes, start: int, take: Callable[[], Any]
) -> tuple[bytes, int]:
    """Expand the printf-style directive at ``start``; return text and next position."""
    end = len(spec)
    pos = start + 1
    while pos < end and spec[pos] in _FLAGS:
        pos += 1
    flags = spec[start + 1 : pos].decode("ascii")

    width_start = pos
    while pos < end and spec[pos] in _DIGITS:
        pos += 1
    width = spec[width_start:pos].decode("ascii")

    precision: Optional[int] = None
    if spec[pos : pos + 1] == b".":
        pos += 1
        precision_start = pos
        while pos < end and spec[pos] in _DIGITS:
            pos += 1
        precision = int(spec[precision_start:pos] or b"0")

    if pos >= end:
        raise FormatError("incomplete conversion specification")

    conv = chr(spec[pos])
    bits = _DEFAULT_INT_BITS
    if conv in _INT_CONVERSIONS:
        is_int = True
    elif conv in _FLOAT_CONVERSIONS:
        is_int = False
    else:
        for modifier, size in _LENGTH_MODIFIERS:
            if spec.startswith(modifier.encode("ascii"), pos):
                pos += len(modifier)
                if pos < end and chr(spec[pos]) in _INT_CONVERSIONS:
                    conv = chr(spec[pos])
                    bits = size
                    is_int = True
                    break
                raise FormatError(
                    f"invalid conversion after length modifier {modifier!r}"
                )
        else:
            raise FormatError(f"invalid conversion character {conv!r}")

    arg = take()
    if pos + 1 - start >= _MAX_DIRECTIVE:
        # Too long to expand: the argument is consumed, the text is skipped over.
        return b"", start + 2

    if is_int:
        value = _wrap_int(operator.index(arg), bits, signed=conv in "di")
        text = _format_int(flags, width, precision, conv, value)
    else:
        if not isinstance(arg, (int, float)) or isinstance(arg, bool):
            raise TypeError(f"expected a number for %{conv}, got {type(arg).__name__}")
        text = _format_float(flags, width, precision, conv, float(arg))
    return text.encode("ascii"), pos + 1


def format_command(fmt: Union[str, BytesLike], *args: Any) -> bytes:
    """Expand a command template into a multi-bulk request.

    Spaces in the template separate arguments. ``%s`` inserts text up to its
    first NUL byte, ``%b`` inserts bytes verbatim, ``%%`` inserts a percent
    sign, and printf integer and floating point directives (with the
    ``hh``/``h``/``l``/``ll`` modifiers) are formatted in place. Interpolated
    values never split an argument. Surplus arguments are ignored.
    """
    spec = fmt.encode("utf-8") if isinstance(fmt, str) else bytes(fmt)
    pending = iter(args)

    def take() -> Any:
        try:
            return next(pending)
        except StopIteration:
            raise FormatError("not enough arguments for format string") from None

    arguments: list[bytes] = []
    current = bytearray()
    touched = False
    pos = 0
    end = len(spec)
    while pos < end:
        char = spec[pos : pos + 1]
        if char != b"%" or pos + 1 == end:
            if char == b" ":
                if touched:
                    arguments.append(bytes(current))
                    current.clear()
                    touched = False
            else:
                current += char
                touched = True
            pos += 1
            continue

        conversion = spec[pos + 1 : pos + 2]
        if conversion == b"s":
            current += _c_string(take())
            pos += 2
        elif conversion == b"b":
            current += _as_bytes(take())
            pos += 2
        elif conversion == b"%":
            current += b"%"
            pos += 2
        else:
            piece, pos = _printf_directive(spec, pos, take)
            current += piece
        touched = True

    if touched:
        arguments.append(bytes(current))
    return _multi_bulk(arguments)


def format_command_argv(argv: Iterable[Union[str, BytesLike]]) -> bytes:
    """Encode a sequence of arguments as a multi-bulk request, binary safe."""
    return _multi_bulk([_as_bytes(arg) for arg in argv])