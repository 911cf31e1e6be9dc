import socket
import threading

import pytest

from redwire.client import RedisClient
from redwire.net import NetError
from redwire.reader import ErrorKind, RedisError, ReplyReader, ReplyType


class FakeServer:
    def __init__(self, respond):
        self.respond = respond
        self.commands = []
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.bind(("127.0.0.1", 0))
        self.listener.listen(1)
        self.listener.settimeout(5)
        self.port = self.listener.getsockname()[1]
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _serve(self):
        try:
            conn, _ = self.listener.accept()
        except OSError:
            return
        with conn:
            reader = ReplyReader()
            while True:
                try:
                    data = conn.recv(65536)
                except OSError:
                    return
                if not data:
                    return
                reader.feed(data)
                for request in reader:
                    args = request.value
                    self.commands.append(args)
                    response = self.respond(args)
                    if response is None:
                        return
                    conn.sendall(response)

    def close(self):
        self.listener.close()
        self.thread.join(timeout=5)


def simple_responder(args):
    name = args[0].upper()
    if name == b"WAIT":
        return b":" + args[1] + b"\r\n"
    if name == b"GET":
        return b"$5\r\nvalue\r\n"
    return b"+OK\r\n"


@pytest.fixture
def server():
    srv = FakeServer(simple_responder)
    yield srv
    srv.close()


def test_command_returns_reply(server):
    with RedisClient("127.0.0.1", server.port) as client:
        reply = client.command("SET k v")
    assert reply.type is ReplyType.STATUS
    assert reply.string == b"OK"
    assert server.commands == [[b"SET", b"k", b"v"]]


def test_command_bulk_reply(server):
    with RedisClient("127.0.0.1", server.port) as client:
        reply = client.command("GET k")
    assert reply.value == b"value"


def test_slaves_appends_wait(server):
    with RedisClient("127.0.0.1", server.port, slaves=2) as client:
        reply = client.command("SET k v")
        assert reply.string == b"OK"
    assert server.commands == [[b"SET", b"k", b"v"], [b"WAIT", b"2", b"0"]]


def test_multiple_commands_in_sequence(server):
    with RedisClient("127.0.0.1", server.port, slaves=1) as client:
        client.command("SET a 1")
        client.command("SET b 2")
    assert [c[0] for c in server.commands] == [b"SET", b"WAIT", b"SET", b"WAIT"]


def test_connect_refused():
    probe = socket.socket()
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    with pytest.raises(NetError):
        RedisClient("127.0.0.1", port)


def test_closed_connection_raises():
    srv = FakeServer(lambda args: None)
    try:
        client = RedisClient("127.0.0.1", srv.port)
        with pytest.raises(RedisError) as info:
            client.command("GET k")
        assert info.value.kind is ErrorKind.EOF
        assert info.value.message.startswith("GET k error:")
        assert client.context.sock is None
    finally:
        srv.close()


def test_close_releases_socket(server):
    client = RedisClient("127.0.0.1", server.port)
    client.close()
    assert client.context.sock is None
    assert client.context.connected is False