import socket
import threading
import time

import pytest

from docserve.cache import BaseCache
from docserve.loop import EpollLoop, SocketGC


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _make_doc(root, idstr, content):
    d = root / idstr
    d.mkdir()
    (d / "doc.pdf").write_bytes(content)


def _request(addr, idstr):
    with socket.create_connection(addr, timeout=5) as conn:
        conn.sendall(idstr.encode())
        chunks = []
        while True:
            chunk = conn.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)


@pytest.fixture
def server(tmp_path):
    listener = socket.create_server(("127.0.0.1", 0))
    ev = EpollLoop(BaseCache(tmp_path, 10))
    thread = threading.Thread(target=ev.loop, args=(listener,), daemon=True)
    thread.start()
    yield ev, listener.getsockname(), tmp_path
    ev.stop()
    thread.join(5)
    listener.close()


def test_gc_closes_socket_with_unread_data():
    a, b = socket.socketpair()
    b.sendall(b"pending")
    gc = SocketGC()
    gc.push(a)
    assert gc.collect() is True
    assert a.fileno() == -1
    b.close()


def test_gc_closes_socket_after_peer_closed():
    a, b = socket.socketpair()
    b.close()
    gc = SocketGC()
    gc.push(a)
    assert gc.collect() is True
    assert a.fileno() == -1


def test_gc_drops_already_closed_socket():
    a, b = socket.socketpair()
    a.close()
    gc = SocketGC()
    gc.push(a)
    assert gc.collect() is True
    b.close()


def test_gc_empty_queue():
    assert SocketGC().collect() is True


def test_gc_run_thread_closes_pushed_sockets():
    gc = SocketGC()
    thread = threading.Thread(target=gc.run, daemon=True)
    thread.start()
    a, b = socket.socketpair()
    gc.push(a)
    assert _wait_until(lambda: a.fileno() == -1)
    gc.stop()
    thread.join(5)
    assert not thread.is_alive()
    b.close()


def test_loop_serves_document(server):
    ev, addr, root = server
    content = b"%PDF-1.7 served over tcp" * 10
    _make_doc(root, "ABCD1234", content)
    assert _request(addr, "ABCD1234") == content
    assert _wait_until(lambda: ev.handled == 1)


def test_loop_replies_zero_byte_for_missing(server):
    ev, addr, _ = server
    assert _request(addr, "MISSING1") == b"\0"


def test_loop_counts_handled_requests(server):
    ev, addr, root = server
    _make_doc(root, "DOCA", b"alpha")
    _make_doc(root, "DOCB", b"beta")
    assert _request(addr, "DOCA") == b"alpha"
    assert _request(addr, "DOCB") == b"beta"
    assert _request(addr, "DOCA") == b"alpha"
    assert _wait_until(lambda: ev.handled == 3)


def test_loop_stop_returns(tmp_path):
    listener = socket.create_server(("127.0.0.1", 0))
    ev = EpollLoop(BaseCache(tmp_path, 1))
    thread = threading.Thread(target=ev.loop, args=(listener,), daemon=True)
    thread.start()
    ev.stop()
    thread.join(5)
    listener.close()
    assert not thread.is_alive()
    assert ev.handled == 0