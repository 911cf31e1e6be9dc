# redwire

A compact Redis client that needs nothing outside the standard library.

## What it provides

- `redwire.reader`: `ReplyReader`, an incremental parser for the Redis reply
  protocol. Feed it bytes in chunks of any size with `feed()` and take complete
  replies out with `get_reply()` (which returns `None` while more data is
  needed) or by iterating over it. Replies are `Reply` objects with a `type`
  (`ReplyType`), `integer`, `string` (bytes) and `elements`; `Reply.value`
  gives the reply as plain Python data. Arrays may nest at most seven deep.
  A `ReplyFactory` subclass can be passed to build replies in another form.
- `redwire.command`: `format_command(fmt, *args)` and
  `format_command_argv(argv)` encode a request into the wire format.
  `format_command` takes a printf-like format: spaces separate arguments,
  `%s` inserts a string (up to its first NUL byte), `%b` inserts binary data,
  `%%` is a literal percent sign, and integer and float conversions such as
  `%d`, `%lld` or `%.2f` are formatted as printf would. An unknown directive
  or too few arguments raise `FormatError`.
- `redwire.net`: socket set-up — `connect_tcp` (IPv4 first, then IPv6,
  optional source address), `connect_unix`, `set_timeout`, `keep_alive` and
  `check_socket_error`. Failures raise `NetError`.
- `redwire.context`: `Context`, a blocking or non-blocking connection over TCP
  or a Unix socket, with an output buffer so that commands can be pipelined.
  Constructors: `Context.connect`, `connect_nonblock`, `connect_bind_nonblock`,
  `connect_unix` and `connect_fd`. A context records its last failure in
  `error` and refuses further I/O until `reconnect()` is called.
- `redwire.client`: `RedisClient`, which sends one command at a time and, when
  `slaves` is non-zero, follows each one with `WAIT <slaves> 0`.
- `redwire.hashtable`: `HashTable`, a chained hash table whose slot count is a
  power of two and doubles when full, and `gen_hash_function`, the djb2 hash.

All errors derive from `redwire.reader.RedisError`, which carries a `kind`
(`ErrorKind`: `IO`, `OTHER`, `EOF`, `PROTOCOL`, `OOM`) and a `message`.

## Installation

```
pip install .
```

## Usage

```python
from redwire.context import Context

with Context.connect("127.0.0.1", 6379, timeout=1.5) as ctx:
    print(ctx.command("PING").string)          # b'PONG'
    ctx.command("SET %s %s", "foo", "hello world")
    ctx.command("SET %b %b", b"bar", b"hello")
    print(ctx.command("GET foo").value)        # b'hello world'
    print(ctx.command("INCR counter").integer)
```

To pipeline, append several commands and then collect their replies in order:

```python
ctx.append_command("SET key %s", "1")
ctx.append_command("GET key")
first = ctx.get_reply()
second = ctx.get_reply()
```

In a non-blocking context, `command` only queues the request; drive
`buffer_write()`, `buffer_read()` and `get_reply()` yourself.

The reader works on its own too:

```python
from redwire.reader import ReplyReader

reader = ReplyReader()
reader.feed(b"*2\r\n$3\r\nfoo\r\n:42\r\n")
print(reader.get_reply().value)   # [b'foo', 42]
```

The hash table:

```python
from redwire.hashtable import HashTable

table = HashTable()
table.add(b"a", 1)          # KeyError if b"a" is already present
table.replace(b"a", 2)      # returns False: the key existed
print(table.find(b"a"), len(table), table.slots())
```

## Demo

The package installs a command that connects to a server, runs PING, SET,
GET, INCR, DEL, LPUSH and LRANGE, and prints each reply:

```
redwire-demo [host] [port]
```

The host defaults to `127.0.0.1` and the port to `6379`; the connection
timeout is 1.5 seconds.

## What it does not do

There is no asynchronous (event-loop) API, no publish/subscribe handling, no
connection pooling and no higher-level per-command methods: requests are
sent as format strings or argument lists and replies come back as `Reply`
objects.

## Tests

```
pip install .[test]
pytest
```