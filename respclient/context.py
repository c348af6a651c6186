"""A connection context: output buffering, reply reading and error state."""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterable
from typing import Any, Optional, Protocol, Union

from .command import FormatError, format_command, format_command_argv
from .replies import Reply

__all__ = [
    "ContextFlag",
    "ErrorKind",
    "RedisError",
    "Context",
    "Transport",
    "Reader",
    "READ_SIZE",
    "MAX_ERRSTR",
    "KEEPALIVE_INTERVAL",
    "CONNECT_RETRIES",
]

READ_SIZE = 16 * 1024
MAX_ERRSTR = 127
KEEPALIVE_INTERVAL = 15
CONNECT_RETRIES = 10

PushCallback = Callable[[Reply], None]


class ContextFlag(enum.IntFlag):
    """State bits kept on a context."""

    NONE = 0
    BLOCK = 0x1
    CONNECTED = 0x2
    DISCONNECTING = 0x4
    FREEING = 0x8
    IN_CALLBACK = 0x10
    SUBSCRIBED = 0x20
    MONITORING = 0x40
    REUSEADDR = 0x80
    NO_AUTO_FREE = 0x200
    NO_AUTO_FREE_REPLIES = 0x400


class ErrorKind(enum.Enum):
    """Categories of error a context can record."""

    IO = enum.auto()
    OTHER = enum.auto()
    EOF = enum.auto()
    PROTOCOL = enum.auto()
    OOM = enum.auto()
    TIMEOUT = enum.auto()


class RedisError(Exception):
    """An error recorded on a context, or reported by a transport or reader."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class Transport(Protocol):
    """Byte stream a context talks over.

    ``read`` returns received bytes, ``b""`` at end of stream, and raises
    BlockingIOError when no data is available yet. ``write`` returns the
    number of bytes accepted.
    """

    def read(self, size: int) -> bytes: ...

    def write(self, data: bytes) -> int: ...

    def close(self) -> None: ...


class Reader(Protocol):
    """Incremental protocol parser; raises RedisError on malformed input."""

    def feed(self, data: bytes) -> None: ...

    def get_reply(self) -> Optional[Reply]: ...


def _discard_push(reply: Reply) -> None:
    """Default push handler: drop the message."""


_DEFAULT_PUSH = _discard_push


class Context:
    """A connection to a server over a given transport.

    Commands are buffered in ``obuf`` until written. In a blocking context,
    ``command`` flushes the buffer and waits for the reply. Push messages are
    handed to ``push_callback`` (dropped by default); with ``None`` they are
    returned in band like any other reply.
    """

    def __init__(
        self,
        transport: Transport,
        reader: Reader,
        blocking: bool = True,
        push_callback: Optional[PushCallback] = _DEFAULT_PUSH,
    ) -> None:
        self.transport = transport
        self.reader = reader
        self.flags = ContextFlag.CONNECTED
        if blocking:
            self.flags |= ContextFlag.BLOCK
        self.err: Optional[ErrorKind] = None
        self.errstr = ""
        self.obuf = bytearray()
        self.push_callback = push_callback

    @property
    def blocking(self) -> bool:
        return ContextFlag.BLOCK in self.flags

    def __enter__(self) -> "Context":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def set_error(self, kind: ErrorKind, message: Optional[str]) -> RedisError:
        """Record an error on the context and return the matching exception."""
        if message is None:
            if kind is not ErrorKind.IO:
                raise ValueError("only I/O errors may lack a description")
            message = "I/O error"
        self.err = kind
        self.errstr = message[:MAX_ERRSTR]
        return RedisError(kind, self.errstr)

    def _raise_if_failed(self) -> None:
        if self.err is not None:
            raise RedisError(self.err, self.errstr)

    def set_push_callback(self, fn: Optional[PushCallback]) -> Optional[PushCallback]:
        """Install a push handler and return the previous one."""
        old, self.push_callback = self.push_callback, fn
        return old

    def append_formatted_command(self, cmd: Union[bytes, bytearray, memoryview]) -> None:
        """Append an already encoded request to the output buffer."""
        self.obuf += cmd

    def append_command(self, fmt: Union[str, bytes], *args: Any) -> None:
        """Format a command from a template and append it to the output buffer."""
        try:
            cmd = format_command(fmt, *args)
        except FormatError as exc:
            raise self.set_error(ErrorKind.OTHER, "Invalid format string") from exc
        self.append_formatted_command(cmd)

    def append_command_argv(self, argv: Iterable[Union[str, bytes]]) -> None:
        """Encode an argument list and append it to the output buffer."""
        self.append_formatted_command(format_command_argv(argv))

    def buffer_read(self) -> None:
        """Read what the transport has and feed it to the reader."""
        self._raise_if_failed()
        try:
            data = self.transport.read(READ_SIZE)
        except BlockingIOError as exc:
            if self.blocking:
                raise self.set_error(
                    ErrorKind.IO, "Resource temporarily unavailable"
                ) from exc
            return
        except RedisError as exc:
            raise self.set_error(exc.kind, exc.message) from exc
        except OSError as exc:
            raise self.set_error(ErrorKind.IO, exc.strerror or str(exc)) from exc
        if not data:
            raise self.set_error(ErrorKind.EOF, "Server closed the connection")
        try:
            self.reader.feed(data)
        except RedisError as exc:
            raise self.set_error(exc.kind, exc.message) from exc

    def buffer_write(self) -> bool:
        """Write part of the output buffer; return True once it is empty."""
        self._raise_if_failed()
        if self.obuf:
            try:
                written = self.transport.write(bytes(self.obuf))
            except BlockingIOError as exc:
                if self.blocking:
                    raise self.set_error(
                        ErrorKind.IO, "Resource temporarily unavailable"
                    ) from exc
                written = 0
            except RedisError as exc:
                raise self.set_error(exc.kind, exc.message) from exc
            except OSError as exc:
                raise self.set_error(ErrorKind.IO, exc.strerror or str(exc)) from exc
            if written > 0:
                del self.obuf[:written]
        return not self.obuf

    def get_reply_from_reader(self) -> Optional[Reply]:
        """Return the next complete reply the reader holds, or None."""
        try:
            return self.reader.get_reply()
        except RedisError as exc:
            raise self.set_error(exc.kind, exc.message) from exc

    def _next_in_band_reply(self) -> Optional[Reply]:
        while True:
            reply = self.get_reply_from_reader()
            if reply is None or self.push_callback is None or not reply.is_push():
                return reply
            self.push_callback(reply)

    def get_reply(self) -> Optional[Reply]:
        """Return the next reply.

        A blocking context flushes its output and reads until a reply is
        complete; a non-blocking one returns None when none is ready.
        """
        reply = self._next_in_band_reply()
        if reply is None and self.blocking:
            while not self.buffer_write():
                pass
            while reply is None:
                self.buffer_read()
                reply = self._next_in_band_reply()
        return reply

    def _block_for_reply(self) -> Optional[Reply]:
        return self.get_reply() if self.blocking else None

    def command(self, fmt: Union[str, bytes], *args: Any) -> Optional[Reply]:
        """Append a formatted command; in a blocking context wait for its reply."""
        self.append_command(fmt, *args)
        return self._block_for_reply()

    def command_argv(self, argv: Iterable[Union[str, bytes]]) -> Optional[Reply]:
        """Append an argument list; in a blocking context wait for its reply."""
        self.append_command_argv(argv)
        return self._block_for_reply()

    def close(self) -> None:
        """Close the transport and mark the context as disconnected."""
        if ContextFlag.CONNECTED in self.flags:
            self.flags &= ~ContextFlag.CONNECTED
            self.transport.close()