"""Shared helpers: hashing, document lookup and diagnostic output."""

from __future__ import annotations

import hashlib
import os
import sys
import threading
from pathlib import Path

DEBUG = os.environ.get("DOCSERVE_DEBUG", "") not in ("", "0")

_output_lock = threading.Lock()


class FatalError(Exception):
    """An unrecoverable error that should end the program."""


def sha256(msg: bytes | bytearray | memoryview) -> bytes:
    """Return the SHA-256 digest of ``msg``."""
    return hashlib.sha256(bytes(msg)).digest()


def find_pdf(dpath: str | os.PathLike[str]) -> Path | None:
    """Return the first ``.pdf`` file found in ``dpath``, or None if there is none.

    Raises FileNotFoundError or NotADirectoryError if ``dpath`` is not a
    readable directory.
    """
    with os.scandir(dpath) as entries:
        for entry in entries:
            path = Path(entry.path)
            if path.suffix == ".pdf":
                return path
    return None


def log_error(message: str) -> None:
    """Write ``message`` to standard error without interleaving between threads."""
    with _output_lock:
        sys.stderr.write(message)
        sys.stderr.flush()


def debug(message: str) -> None:
    """Write ``message`` to standard output when debugging output is enabled."""
    if not DEBUG:
        return
    with _output_lock:
        sys.stdout.write(message)
        sys.stdout.flush()