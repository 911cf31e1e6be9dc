import pytest

from redwire.reader import (
    MAX_ERROR_LENGTH,
    ErrorKind,
    RedisError,
    Reply,
    ReplyFactory,
    ReplyReader,
    ReplyType,
)


def parse_one(data):
    reader = ReplyReader()
    reader.feed(data)
    return reader.get_reply()


def test_empty_reader_has_no_reply():
    reader = ReplyReader()
    assert reader.get_reply() is None
    reader.feed(b"")
    assert reader.get_reply() is None


def test_status_reply():
    reply = parse_one(b"+OK\r\n")
    assert reply.type is ReplyType.STATUS
    assert reply.string == b"OK"


def test_error_reply():
    reply = parse_one(b"-ERR bad\r\n")
    assert reply.type is ReplyType.ERROR
    assert reply.value == b"ERR bad"


@pytest.mark.parametrize("raw,expected", [(b":1234\r\n", 1234), (b":-5\r\n", -5), (b":+7\r\n", 7)])
def test_integer_reply(raw, expected):
    reply = parse_one(raw)
    assert reply.type is ReplyType.INTEGER
    assert reply.integer == expected


def test_integer_with_stray_character_reads_as_minus_one():
    assert parse_one(b":12a\r\n").integer == -1


def test_bulk_string():
    reply = parse_one(b"$5\r\nhello\r\n")
    assert reply.type is ReplyType.STRING
    assert reply.string == b"hello"


def test_bulk_string_is_binary_safe():
    assert parse_one(b"$4\r\na\r\nb\r\n").string == b"a\r\nb"


def test_nil_bulk():
    reply = parse_one(b"$-1\r\n")
    assert reply.type is ReplyType.NIL
    assert reply.value is None


def test_nil_array():
    assert parse_one(b"*-1\r\n").type is ReplyType.NIL


@pytest.mark.parametrize("raw", [b"*0\r\n", b"*-3\r\n"])
def test_empty_array(raw):
    reply = parse_one(raw)
    assert reply.type is ReplyType.ARRAY
    assert reply.elements == []


def test_nested_array():
    reply = parse_one(b"*3\r\n*2\r\n:1\r\n:2\r\n$3\r\nfoo\r\n$-1\r\n")
    assert reply.type is ReplyType.ARRAY
    assert reply.value == [[1, 2], b"foo", None]
    assert reply.elements[0].elements[1] == Reply(ReplyType.INTEGER, integer=2)


@pytest.mark.parametrize(
    "raw",
    [
        b"+OK\r\n",
        b":42\r\n",
        b"$5\r\nhello\r\n",
        b"*2\r\n$1\r\na\r\n*1\r\n:3\r\n",
    ],
)
def test_byte_by_byte_feed_matches_whole_feed(raw):
    reader = ReplyReader()
    results = []
    for i in range(len(raw)):
        reader.feed(raw[i:i + 1])
        results.append(reader.get_reply())
    assert all(r is None for r in results[:-1])
    assert results[-1] == parse_one(raw)


def test_partial_bulk_waits_for_body():
    reader = ReplyReader()
    reader.feed(b"$5\r\nhel")
    assert reader.get_reply() is None
    reader.feed(b"lo\r\n")
    assert reader.get_reply().string == b"hello"


def test_pipelined_replies_iterate_in_order():
    reader = ReplyReader()
    reader.feed(b"+OK\r\n:5\r\n$-1\r\n$2\r\nhi\r\n")
    values = [r.value for r in reader]
    assert values == [b"OK", 5, None, b"hi"]
    assert reader.get_reply() is None


def test_many_replies_beyond_compaction_threshold():
    reader = ReplyReader()
    count = 600
    payload = b"+OK\r\n" * count
    for start in range(0, len(payload), 37):
        reader.feed(payload[start:start + 37])
    replies = list(reader)
    assert len(replies) == count
    assert all(r.string == b"OK" for r in replies)


def test_protocol_error_and_sticky_state():
    reader = ReplyReader()
    reader.feed(b"@oops\r\n")
    with pytest.raises(RedisError) as info:
        reader.get_reply()
    assert info.value.kind is ErrorKind.PROTOCOL
    assert str(info.value) == 'Protocol error, got "@" as reply type byte'
    with pytest.raises(RedisError):
        reader.feed(b"+OK\r\n")
    with pytest.raises(RedisError):
        reader.get_reply()


@pytest.mark.parametrize(
    "byte,shown",
    [(b"\r", '"\\r"'), (b"\x01", '"\\x01"'), (b'"', '"\\""'), (b"\\", '"\\\\"')],
)
def test_protocol_error_escapes_type_byte(byte, shown):
    reader = ReplyReader()
    reader.feed(byte)
    with pytest.raises(RedisError) as info:
        reader.get_reply()
    assert info.value.message == f"Protocol error, got {shown} as reply type byte"


def test_nesting_limit():
    ok = ReplyReader()
    ok.feed(b"*1\r\n" * 8 + b":1\r\n")
    value = ok.get_reply().value
    for _ in range(8):
        assert len(value) == 1
        value = value[0]
    assert value == 1

    bad = ReplyReader()
    bad.feed(b"*1\r\n" * 9 + b":1\r\n")
    with pytest.raises(RedisError) as info:
        bad.get_reply()
    assert info.value.kind is ErrorKind.PROTOCOL
    assert info.value.message == "No support for nested multi bulk replies with depth > 7"


class PlainFactory(ReplyFactory):
    NIL = "nil"

    def __init__(self):
        self.seen = []

    def _place(self, task, obj):
        self.seen.append((task.idx, task.privdata))
        if task.parent is not None:
            task.parent.obj[task.idx] = obj
        return obj

    def create_string(self, task, data):
        return self._place(task, bytes(data))

    def create_array(self, task, count):
        return self._place(task, [None] * max(count, 0))

    def create_integer(self, task, value):
        return self._place(task, value)

    def create_nil(self, task):
        return self._place(task, self.NIL)


def test_custom_factory_and_privdata():
    factory = PlainFactory()
    reader = ReplyReader(factory)
    reader.privdata = "ctx"
    reader.feed(b"*3\r\n:1\r\n$1\r\nx\r\n$-1\r\n")
    assert reader.get_reply() == [1, b"x", PlainFactory.NIL]
    assert [idx for idx, _ in factory.seen] == [-1, 0, 1, 2]
    assert {priv for _, priv in factory.seen} == {"ctx"}


class NoneFactory(ReplyFactory):
    def create_integer(self, task, value):
        return None


def test_factory_returning_none_is_out_of_memory():
    reader = ReplyReader(NoneFactory())
    reader.feed(b":1\r\n")
    with pytest.raises(RedisError) as info:
        reader.get_reply()
    assert info.value.kind is ErrorKind.OOM
    assert info.value.message == "Out of memory"


def test_error_message_is_truncated():
    err = RedisError(ErrorKind.OTHER, "x" * 300)
    assert len(str(err)) == MAX_ERROR_LENGTH
    assert err.kind is ErrorKind.OTHER