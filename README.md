# respclient

respclient is a small client library for the Redis serialization protocol
(RESP). It has four jobs:

- turn commands into protocol bytes;
- buffer outgoing requests until they are written;
- match replies to the callbacks that are waiting for them;
- build reply objects.

The library opens no sockets and parses no bytes. You hand it a transport and
a reader, so it fits any I/O layer.

## Installing

```
pip install respclient
```

To run the test suite, install the test extra and run pytest:

```
pip install "respclient[test]"
pytest
```

## Formatting commands

`respclient.command` turns a printf-style template, or a sequence of
arguments, into a RESP multi-bulk request:

```python
from respclient.command import format_command, format_command_argv

format_command("SET %s %s", "foo", "hello world")
# b'*3\r\n$3\r\nSET\r\n$3\r\nfoo\r\n$11\r\nhello world\r\n'

format_command_argv([b"GET", b"foo"])
# b'*2\r\n$3\r\nGET\r\n$3\r\nfoo\r\n'
```

Spaces in a template separate the arguments. An interpolated value never
splits an argument.

| Directive | What it inserts |
|-----------|-----------------|
| `%s` | the text up to its first NUL byte |
| `%b` | bytes, unchanged |
| `%%` | a percent sign |

printf integer and floating-point directives also work: flags, width,
precision and the `hh`/`h`/`l`/`ll` modifiers, for example `%d`, `%05x`,
`%.2f`, `%lld`. Arguments left over after the template is filled are ignored.

`FormatError` (a `ValueError`) is raised in two cases:

- the template has a directive it cannot expand;
- the template has more directives than there are arguments.

## Replies

Replies are `respclient.replies.Reply` dataclasses. A reply has these fields:

- `type`, a `ReplyType`: `STRING`, `ARRAY`, `INTEGER`, `NIL`, `STATUS`, `ERROR`, `DOUBLE`, `BOOL`, `MAP`, `SET`, `ATTR`, `PUSH`, `BIGNUM` or `VERB`;
- `integer`;
- `dval`;
- `string` (bytes);
- `vtype`, the three-letter type of a verbatim string;
- `elements`.

`length` gives the length of the string payload. `is_push()` says whether the
reply is a push message.

The `create_string_object`, `create_array_object`, `create_integer_object`,
`create_double_object`, `create_nil_object` and `create_bool_object` functions
build a reply from a `ReadTask`. If the task has a parent, the new reply is
put into the right slot of the parent aggregate. A reader implementation
calls these functions.

## Blocking and non-blocking contexts

`respclient.context.Context` wraps a transport and a reader:

```python
from respclient.context import Context

with Context(transport, reader, blocking=True) as ctx:
    reply = ctx.command("GET %s", "foo")
```

The transport needs three methods:

- `read(size)` returns bytes. It returns `b""` at end of stream, and raises `BlockingIOError` when no data is ready.
- `write(data)` returns the number of bytes accepted.
- `close()`.

The reader needs two methods: `feed(data)`, and `get_reply()`, which returns
a `Reply` or `None`.

To pipeline, queue several commands with `append_command`,
`append_command_argv` or `append_formatted_command`, then call `get_reply`
once for each reply. A blocking context flushes its output buffer and reads
until a reply is complete. A non-blocking context returns `None` when no reply
is ready.

Push messages go to `push_callback`. By default they are dropped. Pass `None`
to get them back in band, like any other reply. `set_push_callback` swaps the
handler and returns the old one.

Failures raise `RedisError`, which carries an `ErrorKind` (`IO`, `OTHER`,
`EOF`, `PROTOCOL`, `OOM`, `TIMEOUT`). The failure is also recorded in `err`
and `errstr`. After that, reads and writes on the context keep raising.

## Callback-driven use

`respclient.async_context.AsyncContext` runs on top of a `Context` and turns
it non-blocking. It sends each reply to the callback that was registered with
its command. It also keeps track of:

- SUBSCRIBE/PSUBSCRIBE channels and patterns;
- MONITOR mode;
- push messages, which go to the handler installed with `set_push_callback`.

```python
from respclient.async_context import AsyncContext, EventHooks

def on_reply(actx, reply, privdata):
    ...

actx = AsyncContext(context, EventHooks(add_read=..., add_write=..., del_write=...))
actx.set_connect_callback(lambda actx, ok: ...)
actx.set_disconnect_callback(lambda actx, ok: ...)
actx.command(on_reply, None, "GET %s", "foo")

# From your event loop:
actx.handle_write()
actx.handle_read()
```

The connection counts as established on the first read or write event. If the
transport has a `check_connect()` method, that method decides.

The `EventHooks` fields are called whenever the context wants the loop to
watch the socket for reading or writing, or to stop watching it.

`disconnect()` stops new commands from being queued. The context then closes
once the pending replies have arrived. `free()` tears the context down: every
callback still pending is called with a `None` reply. When `free()` is called
from inside a callback, the teardown waits until `process_callbacks` regains
control.

`set_timeout(seconds)` records a command timeout. The context does not keep
time itself: your loop calls `handle_timeout()` when the timeout expires.
`handle_timeout()` then fails the pending callbacks and disconnects.

`respclient.chaindict.ChainedDict` holds the subscription callbacks. It is a
hash table that chains colliding keys and doubles in size when it is full. It
can also be used on its own with any hash function, for example
`gen_hash_function`. `add` and `delete` raise `KeyError` for a duplicate key
and for a missing key. `replace` inserts the key or overwrites its value.

## What is not included

The package has no RESP protocol reader and no network transport. It does not
connect to a server, resolve hosts or set socket options. `Context` and
`AsyncContext` work only with a transport and a reader that you provide.