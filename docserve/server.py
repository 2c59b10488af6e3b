"""Command-line entry point for the document server."""

from __future__ import annotations

import getopt
import socket
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .backend import FSBackend
from .cache import BaseCache, MutexCache
from .loop import MAX_LISTEN_BACKLOG, EpollLoop
from .utils import DEBUG, FatalError, log_error

PROG = "docserve-server"

USAGE = (
    "Usage: {} -l <loop> -r <request map> -c <cache eviction> -m <cache map> "
    "-f <file backend> [ -n cache capacity ] <port> <content directory>\n"
    "supported -l: epoll\n"
    "supported -r: umap\n"
    "supported -c: none, mutex\n"
    "supported -m: umap, khash\n"
    "supported -f: filesystem\n"
)

_LOOPS: dict[str, type[EpollLoop]] = {"epoll": EpollLoop}
_REQUEST_MAPS = ("umap", "khash")
_CACHES: dict[str, type[BaseCache]] = {"mutex": MutexCache, "none": BaseCache}
_CACHE_MAPS = ("umap", "khash", "none")
_FILE_BACKENDS: dict[str, Callable[[Any], Any]] = {"filesystem": FSBackend}


@dataclass
class ServerConfig:
    """Settings chosen on the server's command line."""

    loop: str = ""
    rmap: str = ""
    cache: str = ""
    cmap: str = ""
    filebe: str = ""
    cache_capacity: int = 100
    port: int = 0
    srv: Path = field(default_factory=Path)


def _usage(prog: str = PROG) -> str:
    return USAGE.format(prog)


def parse_server_args(argv: list[str]) -> ServerConfig:
    """Build a ServerConfig from command-line arguments (without the program name).

    Raises FatalError if the arguments are malformed or the content
    directory does not exist.
    """
    try:
        opts, args = getopt.gnu_getopt(list(argv), "l:r:c:m:f:n:")
    except getopt.GetoptError as exc:
        raise FatalError(f"{exc}\n{_usage()}") from None

    config = ServerConfig()
    names = {"-l": "loop", "-r": "rmap", "-c": "cache", "-m": "cmap", "-f": "filebe"}
    for opt, value in opts:
        if opt == "-n":
            try:
                config.cache_capacity = int(value.strip())
            except ValueError:
                raise FatalError(f"Parsing {opt} failed.") from None
        else:
            setattr(config, names[opt], value)

    if len(args) < 2:
        raise FatalError(
            f"Insufficient arguments provided (expected 2, got {len(args)}).\n{_usage()}"
        )

    port_text, srv_text = args[0], args[1]
    try:
        port = int(port_text.strip())
    except ValueError:
        raise FatalError("Port parsing failed.") from None
    if not 0 <= port <= 0xFFFF:
        raise FatalError("Port parsing failed.")
    config.port = port

    config.srv = Path(srv_text)
    if not config.srv.is_dir():
        raise FatalError("Data directory path is not a directory.")
    return config


def _choose(value: str, choices: Any, desc: str) -> str:
    if value in choices:
        return value
    usage = _usage("<program name>")
    if not value:
        raise FatalError(f"{usage}{desc} implementation not specified.")
    raise FatalError(f"{usage}{desc} implementation {value} unknown")


def build_loop(config: ServerConfig) -> EpollLoop:
    """Assemble the event loop, cache, maps and backend that ``config`` selects.

    Raises FatalError naming the first component that is missing or unknown.
    """
    loop_cls = _LOOPS[_choose(config.loop, _LOOPS, "Loop")]
    rmap = _choose(config.rmap, _REQUEST_MAPS, "Request mapping")
    cache_cls = _CACHES[_choose(config.cache, _CACHES, "Cache eviction")]
    cmap = _choose(config.cmap, _CACHE_MAPS, "Cache mapping")
    backend = _FILE_BACKENDS[_choose(config.filebe, _FILE_BACKENDS, "File backend")]

    cache = cache_cls(
        config.srv, config.cache_capacity, map_kind=cmap, backend_factory=backend
    )
    return loop_cls(cache, request_map_kind=rmap)


def _open_listener(port: int) -> socket.socket:
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    except OSError as exc:
        raise FatalError(f"Socket construction failed: {exc}") from exc
    try:
        if DEBUG and hasattr(socket, "SO_REUSEPORT"):
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            except OSError as exc:
                raise FatalError(f"setsockopt failed: {exc}") from exc
        try:
            sock.bind(("", port))
        except OSError as exc:
            raise FatalError(f"Socket bind failed: {exc}") from exc
        try:
            sock.listen(MAX_LISTEN_BACKLOG)
        except OSError as exc:
            raise FatalError(f"Socket listen failed: {exc}") from exc
    except BaseException:
        sock.close()
        raise
    return sock


def main(argv: list[str] | None = None) -> int:
    """Run the document server; returns the process exit status."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        config = parse_server_args(argv)
        with _open_listener(config.port) as listener:
            server_loop = build_loop(config)
            try:
                server_loop.loop(listener)
            except KeyboardInterrupt:
                pass
            finally:
                server_loop.stop()
                if isinstance(server_loop.cache, MutexCache):
                    server_loop.cache.close()
    except FatalError as exc:
        log_error(f"{exc}\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())