import pytest

from respclient.context import (
    MAX_ERRSTR,
    Context,
    ContextFlag,
    ErrorKind,
    RedisError,
)
from respclient.replies import Reply, ReplyType

SET_WIRE = b"*3\r\n$3\r\nSET\r\n$3\r\nfoo\r\n$3\r\nbar\r\n"


class FakeTransport:
    def __init__(self, inbound=(), chunk=None, eof=False, fail=None):
        self.inbound = list(inbound)
        self.chunk = chunk
        self.eof = eof
        self.fail = fail
        self.written = bytearray()
        self.closed = 0

    def read(self, size):
        if self.fail is not None:
            raise self.fail
        if self.inbound:
            return self.inbound.pop(0)
        if self.eof:
            return b""
        raise BlockingIOError

    def write(self, data):
        n = len(data) if self.chunk is None else min(self.chunk, len(data))
        self.written += data[:n]
        return n

    def close(self):
        self.closed += 1


class FakeReader:
    def __init__(self):
        self.buf = bytearray()

    def feed(self, data):
        self.buf += data

    def get_reply(self):
        idx = self.buf.find(b"\r\n")
        if idx < 0:
            return None
        line = bytes(self.buf[:idx])
        del self.buf[: idx + 2]
        kind, body = line[:1], line[1:]
        if kind == b"+":
            return Reply(ReplyType.STATUS, string=body)
        if kind == b":":
            return Reply(ReplyType.INTEGER, integer=int(body))
        if kind == b">":
            return Reply(ReplyType.PUSH, elements=[Reply(ReplyType.STRING, string=body)])
        raise RedisError(ErrorKind.PROTOCOL, "Protocol error")


def make(inbound=(), **kwargs):
    transport = FakeTransport(inbound, **{k: v for k, v in kwargs.items() if k in ("chunk", "eof", "fail")})
    ctx_kwargs = {k: v for k, v in kwargs.items() if k in ("blocking", "push_callback")}
    return Context(transport, FakeReader(), **ctx_kwargs), transport


def test_blocking_command_writes_and_returns_reply():
    ctx, transport = make([b"+OK\r\n"])
    reply = ctx.command("SET %s %s", "foo", "bar")
    assert bytes(transport.written) == SET_WIRE
    assert reply.type is ReplyType.STATUS
    assert reply.string == b"OK"
    assert ctx.obuf == bytearray()


def test_command_argv_blocking():
    ctx, transport = make([b":7\r\n"])
    reply = ctx.command_argv(["SET", b"foo", "bar"])
    assert bytes(transport.written) == SET_WIRE
    assert reply.integer == 7


def test_nonblocking_command_only_buffers():
    ctx, transport = make(blocking=False)
    assert ctx.command("SET foo bar") is None
    assert bytes(ctx.obuf) == SET_WIRE
    assert transport.written == bytearray()


def test_nonblocking_get_reply_returns_none_when_nothing_ready():
    ctx, _ = make(blocking=False)
    ctx.buffer_read()
    assert ctx.get_reply() is None
    assert ctx.err is None


def test_partial_writes_report_done_only_when_empty():
    ctx, transport = make(chunk=5, blocking=False)
    ctx.append_command("SET foo bar")
    results = []
    while True:
        done = ctx.buffer_write()
        results.append(done)
        if done:
            break
    assert results[-1] is True
    assert all(r is False for r in results[:-1])
    assert bytes(transport.written) == SET_WIRE


def test_invalid_format_sets_error():
    ctx, _ = make()
    with pytest.raises(RedisError) as info:
        ctx.append_command("GET %y", 1)
    assert info.value.kind is ErrorKind.OTHER
    assert ctx.err is ErrorKind.OTHER
    assert ctx.errstr == "Invalid format string"
    assert ctx.obuf == bytearray()


def test_eof_is_recorded_and_sticky():
    ctx, _ = make(eof=True, blocking=False)
    with pytest.raises(RedisError) as info:
        ctx.buffer_read()
    assert info.value.kind is ErrorKind.EOF
    assert ctx.errstr == "Server closed the connection"
    with pytest.raises(RedisError):
        ctx.buffer_write()


def test_transport_oserror_becomes_io_error():
    ctx, _ = make(fail=ConnectionResetError(104, "Connection reset by peer"))
    with pytest.raises(RedisError) as info:
        ctx.buffer_read()
    assert info.value.kind is ErrorKind.IO
    assert ctx.errstr == "Connection reset by peer"


def test_reader_error_is_recorded():
    ctx, _ = make([b"?bad\r\n"])
    with pytest.raises(RedisError) as info:
        ctx.command("PING")
    assert info.value.kind is ErrorKind.PROTOCOL
    assert ctx.err is ErrorKind.PROTOCOL


def test_push_replies_go_to_callback():
    seen = []
    ctx, _ = make([b">invalidate\r\n+PONG\r\n"], push_callback=seen.append)
    reply = ctx.command("PING")
    assert reply.string == b"PONG"
    assert len(seen) == 1
    assert seen[0].elements[0].string == b"invalidate"


def test_push_replies_dropped_by_default():
    ctx, _ = make([b">msg\r\n+PONG\r\n"])
    assert ctx.command("PING").type is ReplyType.STATUS


def test_push_in_band_without_callback():
    ctx, _ = make([b">msg\r\n"], push_callback=None)
    reply = ctx.command("PING")
    assert reply.is_push()


def test_set_push_callback_returns_previous():
    ctx, _ = make(push_callback=None)
    first = []
    assert ctx.set_push_callback(first.append) is None
    assert ctx.set_push_callback(None) == first.append


def test_set_error_truncates_message():
    ctx, _ = make()
    exc = ctx.set_error(ErrorKind.OTHER, "x" * 500)
    assert len(ctx.errstr) == MAX_ERRSTR
    assert exc.message == ctx.errstr


def test_set_error_without_message_only_for_io():
    ctx, _ = make()
    with pytest.raises(ValueError):
        ctx.set_error(ErrorKind.OTHER, None)
    ctx.set_error(ErrorKind.IO, None)
    assert ctx.err is ErrorKind.IO
    assert ctx.errstr


def test_close_is_idempotent_and_clears_connected():
    ctx, transport = make()
    with ctx:
        assert ContextFlag.CONNECTED in ctx.flags
    ctx.close()
    assert transport.closed == 1
    assert ContextFlag.CONNECTED not in ctx.flags


def test_blocking_flag_follows_argument():
    blocking, _ = make()
    nonblocking, _ = make(blocking=False)
    assert blocking.blocking and ContextFlag.BLOCK in blocking.flags
    assert not nonblocking.blocking and ContextFlag.BLOCK not in nonblocking.flags


def test_pipeline_replies_in_order():
    ctx, transport = make([b"+OK\r\n:1\r\n"])
    ctx.append_command("SET foo bar")
    ctx.append_command_argv(["INCR", "n"])
    first = ctx.get_reply()
    second = ctx.get_reply()
    assert first.string == b"OK"
    assert second.integer == 1
    assert bytes(transport.written).startswith(SET_WIRE)