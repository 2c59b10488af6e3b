"""Document caches that sit in front of a file backend."""

from __future__ import annotations

import os
import socket
import threading
from collections import Counter, deque
from collections.abc import Callable
from typing import Any

from .backend import FSBackend, make_map


class BaseCache:
    """Serves documents from memory when cached, otherwise from the backend.

    Every document fetched from the backend is kept; nothing is ever evicted.
    """

    def __init__(
        self,
        srv: str | os.PathLike[str],
        ndocs: int,
        map_kind: str = "umap",
        backend_factory: Callable[[str | os.PathLike[str]], Any] = FSBackend,
    ) -> None:
        self.ndocs = ndocs
        self.cache_be = make_map(map_kind)
        self.file_be = backend_factory(srv)

    def send(self, idstr: str, sock: socket.socket) -> int:
        """Send document ``idstr`` over ``sock`` and return the number of bytes sent.

        Raises FileNotFoundError if the document does not exist and OSError
        if it cannot be read or sent.
        """
        if idstr in self.cache_be:
            buf = self.cache_be[idstr]
            sock.sendall(buf)
            return len(buf)
        sent, data = self.file_be.send_and_cache(idstr, sock)
        self.cache_be[idstr] = data
        return sent


class MutexCache(BaseCache):
    """A cache holding at most ``ndocs`` documents, evicting the least recently used.

    Requests are recorded in a use queue; a background thread trims the cache
    whenever it grows beyond its capacity.
    """

    def __init__(
        self,
        srv: str | os.PathLike[str],
        ndocs: int,
        map_kind: str = "umap",
        backend_factory: Callable[[str | os.PathLike[str]], Any] = FSBackend,
    ) -> None:
        super().__init__(srv, ndocs, map_kind, backend_factory)
        self._cv = threading.Condition()
        self._useq: deque[str] = deque()
        self._usecount: Counter[str] = Counter()
        self._closed = False
        self._gcthread = threading.Thread(target=self._gc, name="cache-gc", daemon=True)
        self._gcthread.start()

    def __enter__(self) -> MutexCache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _over_capacity(self) -> bool:
        return len(self.cache_be) > self.ndocs

    def _evict(self) -> None:
        while self._useq and self._over_capacity():
            idstr = self._useq.popleft()
            self._usecount[idstr] -= 1
            if self._usecount[idstr] <= 0:
                del self._usecount[idstr]
                if idstr in self.cache_be:
                    del self.cache_be[idstr]

    def _gc(self) -> None:
        with self._cv:
            while True:
                self._cv.wait_for(
                    lambda: self._closed or (bool(self._useq) and self._over_capacity())
                )
                if self._closed:
                    return
                self._evict()

    def send(self, idstr: str, sock: socket.socket) -> int:
        """Send document ``idstr`` over ``sock``, recording the use for eviction."""
        with self._cv:
            sent = super().send(idstr, sock)
            self._useq.append(idstr)
            self._usecount[idstr] += 1
            if self._over_capacity():
                self._cv.notify()
            return sent

    def close(self) -> None:
        """Stop the eviction thread."""
        with self._cv:
            self._closed = True
            self._cv.notify_all()
        self._gcthread.join()