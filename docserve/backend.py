"""Key-value maps for caching and a filesystem document backend."""

from __future__ import annotations

import os
import socket
import sys
from collections.abc import Callable, MutableMapping
from pathlib import Path
from typing import Any

from .utils import find_pdf, log_error


class TrivialMap:
    """A map that stores nothing: every lookup misses and writes are discarded.

    All keys share a single sink slot, so reading any key yields whatever was
    last written to any key. Its reported size is always as large as possible,
    so any capacity check against it considers it over-full.
    """

    def __init__(self, default_factory: Callable[[], Any] = bytes) -> None:
        self._devnull = default_factory()

    def __contains__(self, key: object) -> bool:
        # Keys must still be hashable, as with any other map kind.
        hash(key)
        return False

    def __getitem__(self, key: object) -> Any:
        hash(key)
        return self._devnull

    def __setitem__(self, key: object, value: Any) -> None:
        hash(key)
        self._devnull = value

    def __delitem__(self, key: object) -> None:
        hash(key)

    def __len__(self) -> int:
        return sys.maxsize


_MAP_KINDS: dict[str, Callable[[], Any]] = {
    "umap": dict,
    "khash": dict,
    "none": TrivialMap,
}


def make_map(name: str) -> MutableMapping[Any, Any] | TrivialMap:
    """Create an empty map of the kind called ``name`` ("umap", "khash" or "none")."""
    try:
        factory = _MAP_KINDS[name]
    except KeyError:
        raise ValueError(f"unknown map implementation {name!r}") from None
    return factory()


class FSBackend:
    """Serves documents stored as ``<root>/<id>/<something>.pdf``."""

    def __init__(self, srv: str | os.PathLike[str]) -> None:
        self.dpath = Path(srv)

    def send_and_cache(self, idstr: str, sock: socket.socket) -> tuple[int, bytes]:
        """Send the document ``idstr`` over ``sock``.

        Returns the number of bytes sent and the document's contents, so the
        caller can cache them. Raises FileNotFoundError if the document does
        not exist and OSError if it cannot be read or sent.
        """
        fpath = find_pdf(self.dpath / idstr)
        if fpath is None:
            raise FileNotFoundError(f"no document found for {idstr}")

        try:
            with open(fpath, "rb") as f:
                size = os.fstat(f.fileno()).st_size
                sent = sock.sendfile(f, 0, size)
                f.seek(0)
                data = f.read(size)
        except OSError as exc:
            log_error(f"Error sending {fpath}: {exc}\n")
            raise
        return sent, data