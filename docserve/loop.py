"""The event loop that accepts connections and answers document requests."""

from __future__ import annotations

import fcntl
import selectors
import socket
import struct
import sys
import termios
import threading
from collections import deque
from typing import Any

from .backend import make_map
from .utils import FatalError, debug, log_error

DOC_ID_BUFLEN = 32
MAX_LISTEN_BACKLOG = 4096
GC_INTERVAL_MS = 1000

_TIOCOUTQ = getattr(termios, "TIOCOUTQ", None)
_FIONREAD = termios.FIONREAD


def _queued_bytes(sock: socket.socket, request: int | None) -> int:
    if request is None:
        return 0
    result = fcntl.ioctl(sock.fileno(), request, struct.pack("i", 0))
    return struct.unpack("i", result)[0]


class SocketGC:
    """Closes finished client sockets once their outgoing data has drained."""

    def __init__(self) -> None:
        self._queue: deque[socket.socket] = deque()
        self._cv = threading.Condition()
        self._stopped = False

    def push(self, sock: socket.socket) -> None:
        """Hand ``sock`` over to be closed once it is safe to do so."""
        with self._cv:
            self._queue.append(sock)
            self._cv.notify()

    def collect(self) -> bool:
        """Close every queued socket that has nothing left to send.

        Stops at the first socket still holding unsent data. Returns True if
        the queue is empty afterwards.
        """
        with self._cv:
            while self._queue:
                sock = self._queue[0]
                try:
                    remaining = _queued_bytes(sock, _TIOCOUTQ)
                    unread = _queued_bytes(sock, _FIONREAD)
                except (OSError, ValueError) as exc:
                    log_error(f"Error when checking socket data: {exc}\n")
                    sock.close()
                    self._queue.popleft()
                    continue

                if remaining > 0:
                    debug(f"gc: {remaining} bytes left to send, not closing yet\n")
                    break
                if unread == 0:
                    debug("gc: socket closed by remote peer\n")
                else:
                    debug("gc: closing socket\n")
                sock.close()
                self._queue.popleft()
            return not self._queue

    def run(self) -> None:
        """Collect sockets until stopped, retrying pending ones periodically."""
        with self._cv:
            while not self._stopped:
                if self.collect():
                    self._cv.wait()
                else:
                    self._cv.wait(GC_INTERVAL_MS / 1000)

    def stop(self) -> None:
        """Make ``run`` return."""
        with self._cv:
            self._stopped = True
            self._cv.notify_all()


class EpollLoop:
    """A readiness-driven loop: read a document id from each client, then reply.

    A client gets the document's bytes, or a single zero byte if the document
    cannot be served.
    """

    def __init__(self, cache: Any, request_map_kind: str = "umap") -> None:
        self.cache = cache
        self.request_map_kind = request_map_kind
        self.handled = 0
        self.sockgc = SocketGC()
        self._stopped = False
        self._wake_r, self._wake_w = socket.socketpair()
        self._wake_r.setblocking(False)
        self._selector: selectors.BaseSelector | None = None
        self.gcthread = threading.Thread(target=self.sockgc.run, name="socket-gc", daemon=True)
        self.gcthread.start()

    def _close_conn(self, sock: socket.socket) -> None:
        assert self._selector is not None
        self._selector.unregister(sock)
        self.sockgc.push(sock)
        self.handled += 1

    def _accept(self, listener: socket.socket) -> None:
        assert self._selector is not None
        try:
            conn, _ = listener.accept()
        except OSError as exc:
            raise FatalError(f"accept connection failed: {exc}") from exc
        self._selector.register(conn, selectors.EVENT_READ | selectors.EVENT_WRITE)

    def _serve(self, sock: socket.socket, mask: int, reqmap: Any) -> None:
        fd = sock.fileno()
        idbuf = reqmap[fd] if fd in reqmap else b""

        if idbuf and mask & selectors.EVENT_WRITE:
            idstr = idbuf.decode("utf-8", errors="replace")
            try:
                sent = self.cache.send(idstr, sock)
            except OSError:
                try:
                    sock.send(b"\0")
                except OSError:
                    pass
            else:
                debug(f"Sent {sent} bytes for {idstr}\n")
            del reqmap[fd]
            self._close_conn(sock)
        elif not idbuf and mask & selectors.EVENT_READ:
            try:
                data = sock.recv(DOC_ID_BUFLEN)
            except OSError:
                data = b""
            if data:
                reqmap[fd] = data
            else:
                if fd in reqmap:
                    del reqmap[fd]
                self._close_conn(sock)

    def loop(self, listener: socket.socket) -> None:
        """Serve connections arriving on ``listener`` until ``stop`` is called."""
        reqmap = make_map(self.request_map_kind)
        with selectors.DefaultSelector() as selector:
            self._selector = selector
            selector.register(listener, selectors.EVENT_READ)
            selector.register(self._wake_r, selectors.EVENT_READ)
            print("Listening for connections...")
            try:
                while not self._stopped:
                    for key, mask in selector.select():
                        sock = key.fileobj
                        if sock is self._wake_r:
                            try:
                                while self._wake_r.recv(64):
                                    pass
                            except BlockingIOError:
                                pass
                        elif sock is listener:
                            self._accept(listener)
                        else:
                            self._serve(sock, mask, reqmap)
                    sys.stdout.write(f"num requests handled: {self.handled}\r")
                    sys.stdout.flush()
            finally:
                self._selector = None

    def stop(self) -> None:
        """Make ``loop`` return and stop the socket collector."""
        self._stopped = True
        try:
            self._wake_w.send(b"x")
        except OSError:
            pass
        self.sockgc.stop()