#!/usr/bin/env python3
"""Unit tests for SocketBridge against a real Unix-domain console socket."""

import os
import shutil
import socket
import tempfile
import threading
from unittest.mock import Mock

import pytest

from vm_console.bridge import SocketBridge, _relay


@pytest.fixture
def console():
    """A listening Unix socket standing in for a graphical console."""
    directory = tempfile.mkdtemp(prefix="vmc")
    path = os.path.join(directory, "vnc.sock")
    server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    server.bind(path)
    server.listen(1)
    server.settimeout(10)
    yield path, server
    server.close()
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def started(console):
    """A started bridge, the console's side of it, and a connected TCP client."""
    path, server = console
    bridge = SocketBridge(path)
    port = bridge.start()
    console_conn, _ = server.accept()
    console_conn.settimeout(10)
    client = socket.create_connection(("127.0.0.1", port), timeout=10)
    yield bridge, port, console_conn, client
    client.close()
    console_conn.close()
    bridge.close()


def _recv_exactly(sock, size):
    data = bytearray()
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data.extend(chunk)
    return bytes(data)


def test_start_returns_ephemeral_port(console):
    path, server = console
    bridge = SocketBridge(path)
    try:
        port = bridge.start()
        assert 0 < port < 65536
        assert bridge.port == port
    finally:
        bridge.close()


def test_missing_console_socket_raises():
    bridge = SocketBridge("/nonexistent/vnc.sock")
    with pytest.raises(OSError):
        bridge.start()


def test_relays_both_directions(started):
    bridge, port, console_conn, client = started
    client.sendall(b"RFB 003.008\n")
    assert _recv_exactly(console_conn, 12) == b"RFB 003.008\n"
    console_conn.sendall(b"\x00\x00\x00\x01")
    assert _recv_exactly(client, 4) == b"\x00\x00\x00\x01"


def test_large_transfer_is_byte_exact(started):
    bridge, port, console_conn, client = started
    payload = os.urandom(200000)
    console_conn.sendall(payload)
    assert _recv_exactly(client, len(payload)) == payload


def test_second_client_is_refused(started):
    bridge, port, console_conn, client = started
    client.sendall(b"ping")
    assert _recv_exactly(console_conn, 4) == b"ping"
    with pytest.raises(ConnectionRefusedError):
        socket.create_connection(("127.0.0.1", port), timeout=5)


def test_client_disconnect_ends_bridge(started):
    bridge, port, console_conn, client = started
    client.close()
    assert bridge.wait(timeout=10)
    assert console_conn.recv(10) == b""


def test_console_disconnect_ends_bridge(started):
    bridge, port, console_conn, client = started
    console_conn.close()
    assert bridge.wait(timeout=10)
    assert client.recv(10) == b""


def test_close_before_any_client(console):
    path, server = console
    bridge = SocketBridge(path)
    bridge.start()
    bridge.close()
    assert bridge.wait(timeout=10)


class TestRelay:
    """Tests for a single relay direction."""

    def test_io_error_is_reported(self, capsys):
        source = Mock()
        source.recv.side_effect = ConnectionResetError(104, "Connection reset by peer")
        done = threading.Event()
        _relay(source, Mock(), done, "unix->tcp", 1024)
        assert done.is_set()
        assert "Warning: Bridge relay unix->tcp stopped" in capsys.readouterr().err

    def test_error_after_other_direction_finished_is_quiet(self, capsys):
        source = Mock()
        source.recv.side_effect = OSError(9, "Bad file descriptor")
        done = threading.Event()
        done.set()
        _relay(source, Mock(), done, "tcp->unix", 1024)
        assert capsys.readouterr().err == ""

    def test_copies_until_end_of_stream(self, capsys):
        source = Mock()
        source.recv.side_effect = [b"abc", b"def", b""]
        destination = Mock()
        done = threading.Event()
        _relay(source, destination, done, "tcp->unix", 1024)
        assert [c.args[0] for c in destination.sendall.call_args_list] == [b"abc", b"def"]
        assert done.is_set()
        assert capsys.readouterr().err == ""
