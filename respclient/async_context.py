"""Callback-driven connection handling for use with an external event loop."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Optional, Union

from .callbacks import (
    Callback,
    CallbackFn,
    CallbackList,
    is_spontaneous_push_reply,
    iter_arguments,
)
from .chaindict import ChainedDict, gen_hash_function
from .command import format_command, format_command_argv
from .context import Context, ContextFlag, ErrorKind, RedisError
from .replies import Reply, ReplyType

__all__ = ["EventHooks", "AsyncContext", "ConnectCallback", "AsyncPushCallback"]

# Called as fn(async_context, ok) once the connection is up, has failed or ended.
ConnectCallback = Callable[["AsyncContext", bool], None]
AsyncPushCallback = Callable[["AsyncContext", Reply], None]

_Hook = Optional[Callable[[], None]]


@dataclass
class EventHooks:
    """Hooks the context calls when it wants the event loop to watch the socket.

    The read and write hooks should be idempotent. ``cleanup`` is called at
    most once.
    """

    add_read: _Hook = None
    del_read: _Hook = None
    add_write: _Hook = None
    del_write: _Hook = None
    cleanup: _Hook = None


def _subscription_table() -> ChainedDict:
    return ChainedDict(gen_hash_function)


class AsyncContext:
    """Non-blocking connection that dispatches replies to registered callbacks.

    The event loop calls ``handle_read``, ``handle_write`` and
    ``handle_timeout``; the context calls back through ``hooks`` to ask for
    read or write readiness.
    """

    def __init__(self, context: Context, hooks: Optional[EventHooks] = None) -> None:
        self.context = context
        self.hooks = hooks if hooks is not None else EventHooks()
        # Connection is confirmed by the first read or write event.
        context.flags &= ~(ContextFlag.CONNECTED | ContextFlag.BLOCK)
        # Push messages are dispatched here rather than by the plain context.
        context.push_callback = None

        self.err: Optional[ErrorKind] = None
        self.errstr = ""
        self.data: Any = None
        self.data_cleanup: Optional[Callable[[Any], None]] = None
        self.on_connect: Optional[ConnectCallback] = None
        self.on_disconnect: Optional[ConnectCallback] = None
        self.push_callback: Optional[AsyncPushCallback] = None
        self.command_timeout: Optional[float] = None

        self.replies = CallbackList()
        self.sub_invalid = CallbackList()
        self.channels = _subscription_table()
        self.patterns = _subscription_table()
        self._freed = False
        self._copy_error()

    @property
    def flags(self) -> ContextFlag:
        return self.context.flags

    # -- event loop hooks -------------------------------------------------

    def _add_read(self) -> None:
        if self.hooks.add_read is not None:
            self.hooks.add_read()

    def _add_write(self) -> None:
        if self.hooks.add_write is not None:
            self.hooks.add_write()

    def _del_write(self) -> None:
        if self.hooks.del_write is not None:
            self.hooks.del_write()

    def _cleanup(self) -> None:
        cleanup, self.hooks.cleanup = self.hooks.cleanup, None
        if cleanup is not None:
            cleanup()

    # -- configuration ----------------------------------------------------

    def _copy_error(self) -> None:
        self.err = self.context.err
        self.errstr = self.context.errstr

    def set_connect_callback(self, fn: ConnectCallback) -> None:
        """Install the connect callback; it may be set only once."""
        if self.on_connect is not None:
            raise ValueError("connect callback is already set")
        self.on_connect = fn
        # The first write event signals an established connection.
        self._add_write()

    def set_disconnect_callback(self, fn: ConnectCallback) -> None:
        """Install the disconnect callback; it may be set only once."""
        if self.on_disconnect is not None:
            raise ValueError("disconnect callback is already set")
        self.on_disconnect = fn

    def set_push_callback(
        self, fn: Optional[AsyncPushCallback]
    ) -> Optional[AsyncPushCallback]:
        """Install a handler for push messages and return the previous one."""
        old, self.push_callback = self.push_callback, fn
        return old

    def set_timeout(self, seconds: float) -> None:
        """Set the command timeout, in seconds."""
        if self.command_timeout != seconds:
            self.command_timeout = seconds

    # -- running callbacks ------------------------------------------------

    def _run_callback(self, cb: Callback, reply: Optional[Reply]) -> None:
        if cb.fn is not None:
            self.context.flags |= ContextFlag.IN_CALLBACK
            try:
                cb.fn(self, reply, cb.privdata)
            finally:
                self.context.flags &= ~ContextFlag.IN_CALLBACK

    def _run_push_callback(self, reply: Reply) -> None:
        if self.push_callback is not None:
            self.context.flags |= ContextFlag.IN_CALLBACK
            try:
                self.push_callback(self, reply)
            finally:
                self.context.flags &= ~ContextFlag.IN_CALLBACK

    # -- teardown ---------------------------------------------------------

    def _free(self) -> None:
        if self._freed:
            return
        self._freed = True

        while self.replies:
            self._run_callback(self.replies.shift(), None)
        while self.sub_invalid:
            self._run_callback(self.sub_invalid.shift(), None)
        for table in (self.channels, self.patterns):
            for key in table:
                self._run_callback(table.find(key), None)
            table.clear()

        self._cleanup()

        flags = self.context.flags
        if self.on_disconnect is not None and ContextFlag.CONNECTED in flags:
            if ContextFlag.FREEING in flags:
                self.on_disconnect(self, True)
            else:
                self.on_disconnect(self, self.err is None)

        if self.data_cleanup is not None:
            self.data_cleanup(self.data)

        self.context.transport.close()
        self.context.flags &= ~ContextFlag.CONNECTED

    def free(self) -> None:
        """Release the context, running pending callbacks with no reply.

        Inside a callback the release is deferred until control returns to
        ``process_callbacks``.
        """
        self.context.flags |= ContextFlag.FREEING
        if ContextFlag.IN_CALLBACK not in self.context.flags:
            self._free()

    def _disconnect(self) -> None:
        self._copy_error()
        if self.err is not None:
            # Pending callbacks must not be able to issue new commands.
            self.context.flags |= ContextFlag.DISCONNECTING
        self._cleanup()
        if ContextFlag.NO_AUTO_FREE not in self.context.flags:
            self._free()

    def disconnect(self) -> None:
        """Stop accepting commands and disconnect once pending replies are in."""
        self.context.flags |= ContextFlag.DISCONNECTING
        self.context.flags &= ~ContextFlag.NO_AUTO_FREE
        if ContextFlag.IN_CALLBACK not in self.context.flags and not self.replies:
            self._disconnect()

    # -- reply dispatch ---------------------------------------------------

    def _get_subscribe_callback(self, reply: Reply) -> Optional[Callback]:
        if reply.type not in (ReplyType.ARRAY, ReplyType.PUSH):
            return self.sub_invalid.shift() if self.sub_invalid else None

        elements = reply.elements
        if (
            len(elements) < 2
            or elements[0] is None
            or elements[0].type is not ReplyType.STRING
            or elements[1] is None
            or elements[1].type is not ReplyType.STRING
        ):
            raise ValueError("malformed subscription reply")
        stype = elements[0].string or b""
        pvariant = 1 if stype[:1].lower() == b"p" else 0
        table = self.patterns if pvariant else self.channels
        kind = stype[pvariant:].lower()
        name = elements[1].string or b""

        try:
            cb: Callback = table.find(name)
        except KeyError:
            return None

        if kind == b"subscribe":
            cb.pending_subs -= 1
        found = dataclasses.replace(cb)

        if kind == b"unsubscribe":
            if cb.pending_subs == 0:
                table.delete(name)
            if len(elements) < 3 or elements[2] is None or (
                elements[2].type is not ReplyType.INTEGER
            ):
                raise ValueError("malformed unsubscribe reply")
            if elements[2].integer == 0 and not self.channels and not self.patterns:
                self.context.flags &= ~ContextFlag.SUBSCRIBED
        return found

    def process_callbacks(self) -> None:
        """Dispatch every complete reply the reader holds to its callback."""
        c = self.context
        cb = Callback(fn=None, privdata=None, pending_subs=0)
        while True:
            try:
                reply = c.get_reply()
            except RedisError:
                self._disconnect()
                return

            if reply is None:
                if (
                    ContextFlag.DISCONNECTING in c.flags
                    and not c.obuf
                    and not self.replies
                ):
                    self._disconnect()
                    return
                if ContextFlag.MONITORING in c.flags:
                    self.replies.push(cb)
                return

            if is_spontaneous_push_reply(reply):
                self._run_push_callback(reply)
                continue

            if self.replies:
                cb = self.replies.shift()
            else:
                if reply.type is ReplyType.ERROR:
                    # The server closes the connection after such an error.
                    text = (reply.string or b"").decode("utf-8", "replace")
                    c.set_error(ErrorKind.OTHER, text)
                    self._disconnect()
                    return
                if ContextFlag.SUBSCRIBED in c.flags:
                    found = self._get_subscribe_callback(reply)
                    cb = found if found is not None else Callback(fn=None)
                elif ContextFlag.MONITORING not in c.flags:
                    cb = Callback(fn=None)

            if cb.fn is not None:
                self._run_callback(cb, reply)
                if ContextFlag.FREEING in c.flags:
                    self._free()
                    return

    # -- socket events ----------------------------------------------------

    def _connect_failed(self) -> None:
        if self.on_connect is not None:
            self.on_connect(self, False)
        self._disconnect()

    def _handle_connect(self) -> bool:
        c = self.context
        check = getattr(c.transport, "check_connect", None)
        try:
            completed = True if check is None else bool(check())
        except OSError as exc:
            c.set_error(ErrorKind.IO, exc.strerror or str(exc))
            self._copy_error()
            self._connect_failed()
            return False
        if completed:
            if self.on_connect is not None:
                self.on_connect(self, True)
            c.flags |= ContextFlag.CONNECTED
        return True

    def _ensure_connected(self) -> bool:
        if ContextFlag.CONNECTED not in self.context.flags:
            if not self._handle_connect():
                return False
            if ContextFlag.CONNECTED not in self.context.flags:
                return False
        return True

    def handle_read(self) -> None:
        """Read what is available and dispatch complete replies."""
        if not self._ensure_connected():
            return
        try:
            self.context.buffer_read()
        except RedisError:
            self._disconnect()
            return
        self._add_read()
        self.process_callbacks()

    def handle_write(self) -> None:
        """Write pending output and keep the loop's interest up to date."""
        if not self._ensure_connected():
            return
        try:
            done = self.context.buffer_write()
        except RedisError:
            self._disconnect()
            return
        if done:
            self._del_write()
        else:
            self._add_write()
        self._add_read()

    def handle_timeout(self) -> None:
        """Fail pending callbacks and disconnect after a connect or command timeout."""
        c = self.context
        if ContextFlag.CONNECTED in c.flags:
            if not self.replies:
                return
            if not self.command_timeout:
                return

        if c.err is None:
            c.set_error(ErrorKind.TIMEOUT, "Timeout")
            self._copy_error()

        if ContextFlag.CONNECTED not in c.flags and self.on_connect is not None:
            self.on_connect(self, False)

        while self.replies:
            self._run_callback(self.replies.shift(), None)

        self._disconnect()

    # -- commands ---------------------------------------------------------

    def formatted_command(
        self,
        fn: Optional[CallbackFn],
        privdata: Any,
        cmd: Union[bytes, bytearray, memoryview],
    ) -> None:
        """Queue an encoded request and register ``fn`` for its reply."""
        c = self.context
        if c.flags & (ContextFlag.DISCONNECTING | ContextFlag.FREEING):
            raise RedisError(ErrorKind.OTHER, "Connection is closing")

        arguments = iter_arguments(cmd)
        try:
            first = next(arguments)
        except StopIteration:
            raise ValueError("command has no arguments") from None
        rest = list(arguments)

        pvariant = 1 if first[:1].lower() == b"p" else 0
        name = first[pvariant:].lower()

        if rest and name == b"subscribe":
            c.flags |= ContextFlag.SUBSCRIBED
            table = self.patterns if pvariant else self.channels
            for channel in rest:
                cb = Callback(fn=fn, privdata=privdata, pending_subs=1)
                try:
                    existing: Callback = table.find(channel)
                except KeyError:
                    pass
                else:
                    cb.pending_subs = existing.pending_subs + 1
                table.replace(channel, cb)
        elif name == b"unsubscribe":
            # Each unsubscribed channel answers on its own subscription.
            if ContextFlag.SUBSCRIBED not in c.flags:
                raise RedisError(ErrorKind.OTHER, "Not subscribed")
        elif name == b"monitor":
            c.flags |= ContextFlag.MONITORING
            self.replies.push(Callback(fn=fn, privdata=privdata))
        elif ContextFlag.SUBSCRIBED in c.flags:
            self.sub_invalid.push(Callback(fn=fn, privdata=privdata))
        else:
            self.replies.push(Callback(fn=fn, privdata=privdata))

        c.append_formatted_command(cmd)
        self._add_write()

    def command(
        self, fn: Optional[CallbackFn], privdata: Any, fmt: Union[str, bytes], *args: Any
    ) -> None:
        """Format a command from a template, queue it and register ``fn``."""
        self.formatted_command(fn, privdata, format_command(fmt, *args))

    def command_argv(
        self,
        fn: Optional[CallbackFn],
        privdata: Any,
        argv: Iterable[Union[str, bytes]],
    ) -> None:
        """Encode an argument list, queue it and register ``fn``."""
        self.formatted_command(fn, privdata, format_command_argv(argv))