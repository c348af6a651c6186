"""Reply callbacks, their FIFO queue, and helpers for classifying pub/sub traffic."""

from __future__ import annotations

import dataclasses
import re
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Optional, Union

from .replies import Reply, ReplyType

__all__ = [
    "Callback",
    "CallbackList",
    "CallbackFn",
    "is_subscribe_reply",
    "is_spontaneous_push_reply",
    "iter_arguments",
]

# Called as fn(async_context, reply, privdata); reply is None when the
# callback is being cancelled.
CallbackFn = Callable[[Any, Optional[Reply], Any], None]

_MIN_TYPE_LENGTH = len(b"message")
_SUBSCRIBE = b"subscribe"
_MESSAGE = b"message"
_LENGTH = re.compile(rb"\s*([+-]?\d+)")


@dataclass
class Callback:
    """A reply handler together with its private data."""

    fn: Optional[CallbackFn] = None
    privdata: Any = None
    pending_subs: int = 1


class CallbackList:
    """First-in first-out queue of callbacks awaiting replies."""

    def __init__(self) -> None:
        self._items: deque[Callback] = deque()

    def push(self, callback: Optional[Callback]) -> None:
        """Append a copy of ``callback`` (an empty callback when None)."""
        stored = Callback() if callback is None else dataclasses.replace(callback)
        self._items.append(stored)

    def shift(self) -> Callback:
        """Remove and return the oldest callback; raise IndexError when empty."""
        try:
            return self._items.popleft()
        except IndexError:
            raise IndexError("shift from an empty callback list") from None

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[Callback]:
        return iter(self._items)


def _matches_type(name: bytes, target: bytes) -> bool:
    """Case-insensitive comparison of ``name`` against a prefix of ``target``.

    A NUL byte ends ``name`` early; the name must then equal ``target`` whole.
    """
    text = name.split(b"\0", 1)[0].lower()
    if len(text) < len(name):
        return text == target
    return target.startswith(text)


def is_subscribe_reply(reply: Reply) -> bool:
    """True when the reply is a (p)subscribe confirmation or a (p)message."""
    if not reply.elements:
        return False
    first = reply.elements[0]
    if first is None or first.type is not ReplyType.STRING or first.string is None:
        return False
    name = first.string
    if len(name) < _MIN_TYPE_LENGTH:
        return False
    if name[:1].lower() == b"p":
        name = name[1:]
    return _matches_type(name, _SUBSCRIBE) or _matches_type(name, _MESSAGE)


def is_spontaneous_push_reply(reply: Reply) -> bool:
    """True for push messages that are not pub/sub traffic."""
    return reply.is_push() and not is_subscribe_reply(reply)


def iter_arguments(cmd: Union[bytes, bytearray, memoryview]) -> Iterator[bytes]:
    """Yield the bulk arguments of an encoded multi-bulk request, in order."""
    data = bytes(cmd)
    pos = 0
    while pos < len(data):
        if data[pos : pos + 1] != b"$":
            pos = data.find(b"$", pos)
            if pos < 0:
                return
        match = _LENGTH.match(data, pos + 1)
        length = int(match.group(1)) if match else 0
        if length < 0:
            raise ValueError("negative bulk length in command")
        end_of_header = data.find(b"\r", pos)
        if end_of_header < 0:
            raise ValueError("bulk header is not terminated")
        start = end_of_header + 2
        stop = start + length
        if stop > len(data):
            raise ValueError("bulk argument runs past the end of the command")
        yield data[start:stop]
        pos = stop + 2