import socket
import time

import pytest

from docserve.cache import BaseCache, MutexCache


def _make_doc(root, idstr, content):
    d = root / idstr
    d.mkdir()
    f = d / "doc.pdf"
    f.write_bytes(content)
    return f


def _recv_exact(sock, n):
    sock.settimeout(5)
    chunks = []
    got = 0
    while got < n:
        chunk = sock.recv(n - got)
        if not chunk:
            break
        chunks.append(chunk)
        got += len(chunk)
    return b"".join(chunks)


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    yield a, b
    a.close()
    b.close()


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_base_cache_sends_and_caches(tmp_path, pair):
    content = b"%PDF-1.4 first document"
    _make_doc(tmp_path, "DOC1", content)
    cache = BaseCache(tmp_path, 10)
    a, b = pair
    sent = cache.send("DOC1", a)
    assert sent == len(content)
    assert _recv_exact(b, len(content)) == content
    assert cache.cache_be["DOC1"] == content


def test_base_cache_serves_from_memory(tmp_path, pair):
    content = b"%PDF cached body"
    f = _make_doc(tmp_path, "DOC2", content)
    cache = BaseCache(tmp_path, 10)
    a, b = pair
    cache.send("DOC2", a)
    _recv_exact(b, len(content))
    f.unlink()
    assert cache.send("DOC2", a) == len(content)
    assert _recv_exact(b, len(content)) == content


def test_base_cache_missing_document(tmp_path, pair):
    (tmp_path / "EMPTY").mkdir()
    cache = BaseCache(tmp_path, 10)
    with pytest.raises(FileNotFoundError):
        cache.send("EMPTY", pair[0])
    assert "EMPTY" not in cache.cache_be


def test_base_cache_unknown_id(tmp_path, pair):
    cache = BaseCache(tmp_path, 10)
    with pytest.raises(FileNotFoundError):
        cache.send("NOPE", pair[0])


def test_trivial_map_never_caches(tmp_path, pair):
    content = b"%PDF uncached"
    f = _make_doc(tmp_path, "DOC3", content)
    cache = BaseCache(tmp_path, 10, map_kind="none")
    a, b = pair
    assert cache.send("DOC3", a) == len(content)
    assert _recv_exact(b, len(content)) == content
    f.unlink()
    with pytest.raises(FileNotFoundError):
        cache.send("DOC3", a)


def test_unknown_map_kind(tmp_path):
    with pytest.raises(ValueError):
        BaseCache(tmp_path, 10, map_kind="bogus")


def test_mutex_cache_evicts_least_recently_used(tmp_path, pair):
    _make_doc(tmp_path, "A", b"%PDF a")
    _make_doc(tmp_path, "B", b"%PDF bb")
    a, b = pair
    with MutexCache(tmp_path, 1) as cache:
        cache.send("A", a)
        _recv_exact(b, len(b"%PDF a"))
        cache.send("B", a)
        _recv_exact(b, len(b"%PDF bb"))
        assert _wait_until(lambda: len(cache.cache_be) <= 1)
        assert "B" in cache.cache_be
        assert "A" not in cache.cache_be


def test_mutex_cache_keeps_within_capacity(tmp_path, pair):
    names = ["D0", "D1", "D2", "D3"]
    for name in names:
        _make_doc(tmp_path, name, name.encode() * 3)
    a, b = pair
    with MutexCache(tmp_path, 2) as cache:
        for name in names:
            sent = cache.send(name, a)
            assert _recv_exact(b, sent) == name.encode() * 3
        assert _wait_until(lambda: len(cache.cache_be) <= 2)
        assert "D3" in cache.cache_be


def test_mutex_cache_recently_reused_survives(tmp_path, pair):
    for name in ("X", "Y", "Z"):
        _make_doc(tmp_path, name, name.encode())
    a, b = pair
    with MutexCache(tmp_path, 2) as cache:
        for name in ("X", "Y", "X", "Z"):
            sent = cache.send(name, a)
            _recv_exact(b, sent)
        assert _wait_until(lambda: len(cache.cache_be) <= 2)
        assert set(cache.cache_be) == {"X", "Z"}


def test_mutex_cache_missing_document(tmp_path, pair):
    with MutexCache(tmp_path, 1) as cache:
        with pytest.raises(FileNotFoundError):
            cache.send("GONE", pair[0])
        assert len(cache.cache_be) == 0