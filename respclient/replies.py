"""Reply objects and the factory functions a protocol reader uses to build them."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional


class ReplyType(enum.Enum):
    """Kinds of reply a server can send."""

    STRING = enum.auto()
    ARRAY = enum.auto()
    INTEGER = enum.auto()
    NIL = enum.auto()
    STATUS = enum.auto()
    ERROR = enum.auto()
    DOUBLE = enum.auto()
    BOOL = enum.auto()
    MAP = enum.auto()
    SET = enum.auto()
    ATTR = enum.auto()
    PUSH = enum.auto()
    BIGNUM = enum.auto()
    VERB = enum.auto()


_CONTAINER_TYPES = frozenset(
    {ReplyType.ARRAY, ReplyType.MAP, ReplyType.SET, ReplyType.PUSH}
)

_STRING_TYPES = frozenset(
    {
        ReplyType.ERROR,
        ReplyType.STATUS,
        ReplyType.STRING,
        ReplyType.VERB,
        ReplyType.BIGNUM,
    }
)


@dataclass
class Reply:
    """A single reply, possibly holding nested replies."""

    type: ReplyType
    integer: int = 0
    dval: float = 0.0
    string: Optional[bytes] = None
    vtype: str = ""
    elements: list[Optional["Reply"]] = field(default_factory=list)

    @property
    def length(self) -> int:
        """Length of the string payload, or 0 when there is none."""
        return 0 if self.string is None else len(self.string)

    def is_push(self) -> bool:
        """True when this is an out-of-band push message."""
        return self.type is ReplyType.PUSH


@dataclass
class ReadTask:
    """State of one value being read; links a child to its parent container."""

    type: ReplyType
    idx: int = -1
    parent: Optional["ReadTask"] = None
    obj: Optional[Reply] = None
    elements: int = -1


def _attach(task: ReadTask, reply: Reply) -> Reply:
    """Place the reply in its parent's element slot, if the task has a parent."""
    if task.parent is not None:
        parent = task.parent.obj
        if parent is None or parent.type not in _CONTAINER_TYPES:
            raise ValueError("parent of a nested reply must be an aggregate")
        parent.elements[task.idx] = reply
    return reply


def create_string_object(task: ReadTask, data: bytes) -> Reply:
    """Build a string-like reply; verbatim strings have their type prefix split off."""
    if task.type not in _STRING_TYPES:
        raise ValueError(f"{task.type.name} is not a string reply type")
    data = bytes(data)
    if task.type is ReplyType.VERB:
        if len(data) < 4:
            raise ValueError("verbatim string is missing its type header")
        reply = Reply(
            task.type,
            vtype=data[:3].decode("latin-1"),
            string=data[4:],
        )
    else:
        reply = Reply(task.type, string=data)
    return _attach(task, reply)


def create_array_object(task: ReadTask, elements: int) -> Reply:
    """Build an aggregate reply with empty slots for its elements."""
    if elements < 0:
        raise ValueError("element count must not be negative")
    return _attach(task, Reply(task.type, elements=[None] * elements))


def create_integer_object(task: ReadTask, value: int) -> Reply:
    """Build an integer reply."""
    return _attach(task, Reply(ReplyType.INTEGER, integer=value))


def create_double_object(task: ReadTask, value: float, text: bytes) -> Reply:
    """Build a double reply that also keeps the server's textual form."""
    return _attach(task, Reply(ReplyType.DOUBLE, dval=value, string=bytes(text)))


def create_nil_object(task: ReadTask) -> Reply:
    """Build a nil reply."""
    return _attach(task, Reply(ReplyType.NIL))


def create_bool_object(task: ReadTask, value: int) -> Reply:
    """Build a boolean reply, stored as 0 or 1 in ``integer``."""
    return _attach(task, Reply(ReplyType.BOOL, integer=int(value != 0)))