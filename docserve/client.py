"""Load-generating client that requests documents and checks the replies."""

from __future__ import annotations

import getopt
import random
import signal
import socket
import statistics
import string
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

from .utils import FatalError, find_pdf, log_error, sha256

SERVER_RESP_SZ = 1
RANDOM_ID_LEN = 8
_ID_ALPHABET = string.digits + string.ascii_uppercase

PROG = "docserve-client"

USAGE = (
    "Usage: {} [-a avg sleep ms] [-d sleep stddev ms] [-r num requestors] "
    "[-n num reps per requestor] <server addr> <content directory>\n"
)


class Index:
    """The document ids available under a content directory.

    Each id is the name of a non-hidden subdirectory of the content directory.
    """

    def __init__(self, srv: str | Path | None = None) -> None:
        self.dpath = Path()
        self.ids: list[str] = []
        self.id_set: set[str] = set()
        if srv is None:
            return
        srv = Path(srv)
        if not srv.is_dir():
            raise FatalError("Data directory path is not a directory.")
        self.dpath = srv
        for entry in srv.iterdir():
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            self.ids.append(entry.name)
            self.id_set.add(entry.name)


@dataclass
class Record:
    """What one requestor observed: request counts and round-trip times in ms."""

    incorrect: int = 0
    real: int = 0
    rtts: list[float] = field(default_factory=list)


@dataclass
class ClientConfig:
    """Settings chosen on the client's command line."""

    sleep_avg_ms: float = 100.0
    sleep_stddev_ms: float = 50.0
    reqs: int = 10
    reps: int = 30
    index: Index = field(default_factory=Index)
    server_addr: tuple[str, int] = ("0.0.0.0", 0)


def _usage() -> str:
    return USAGE.format(PROG)


def parse_client_args(argv: list[str]) -> ClientConfig:
    """Build a ClientConfig from command-line arguments (without the program name).

    Raises FatalError if the arguments are malformed or the content
    directory does not exist.
    """
    try:
        opts, args = getopt.gnu_getopt(list(argv), "a:d:r:n:")
    except getopt.GetoptError as exc:
        raise FatalError(f"{exc}\n{_usage()}") from None

    config = ClientConfig()
    converters = {
        "-a": ("sleep_avg_ms", float),
        "-d": ("sleep_stddev_ms", float),
        "-r": ("reqs", int),
        "-n": ("reps", int),
    }
    for opt, value in opts:
        name, convert = converters[opt]
        try:
            setattr(config, name, convert(value.strip()))
        except ValueError:
            raise FatalError(f"Parsing {opt} failed.") from None

    if len(args) < 2:
        raise FatalError(
            f"Insufficient arguments provided (expected 2, got {len(args)}).\n{_usage()}"
        )

    server_str, srv_text = args[0], args[1]
    host, sep, port_text = server_str.partition(":")
    if not sep:
        raise FatalError(f"Port delimiter not found in {server_str}.")
    try:
        socket.inet_pton(socket.AF_INET, host)
    except OSError as exc:
        raise FatalError(f"Address parsing failed: {exc}") from None
    try:
        port = int(port_text.strip())
    except ValueError:
        raise FatalError(f"Port parsing from {server_str} failed.") from None
    if not 0 <= port <= 0xFFFF:
        raise FatalError(f"Port parsing from {server_str} failed.")
    config.server_addr = (host, port)

    config.index = Index(srv_text)
    return config


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    chunks = bytearray()
    while len(chunks) < size:
        chunk = sock.recv(size - len(chunks))
        if not chunk:
            break
        chunks += chunk
    return bytes(chunks)


class Requestor:
    """Issues requests to the server and records the outcome in a Record."""

    def __init__(
        self,
        record: Record,
        index: Index,
        server_addr: tuple[str, int],
        rng: random.Random | None = None,
    ) -> None:
        self.record = record
        self.index = index
        self.server_addr = server_addr
        self.rng = rng if rng is not None else random.Random()

    def request(self, p: float = 0.0) -> None:
        """Make one request: with probability ``p`` for an unknown id, else a known one."""
        res = self.rng.random()
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as exc:
            raise FatalError(f"Socket construction failed: {exc}") from exc
        with sock:
            try:
                sock.connect(self.server_addr)
            except OSError as exc:
                log_error(f"connecting to server failed: {exc}\n")
                return
            if res < p:
                self._request_rand(sock)
            else:
                self._request_exist(sock)

    def _request_exist(self, sock: socket.socket) -> None:
        if not self.index.ids:
            return
        self._request_id(sock, self.rng.choice(self.index.ids))

    def _request_id(self, sock: socket.socket, doc_id: str) -> None:
        try:
            fpath = find_pdf(self.index.dpath / doc_id)
            if fpath is None:
                return
            expected = fpath.read_bytes()
        except OSError:
            return
        fhash = sha256(expected)

        start = time.monotonic()
        try:
            sock.sendall(doc_id.encode())
        except OSError as exc:
            log_error(f"error on write: {exc}\n")
            return
        record = self.record
        try:
            received = _recv_exact(sock, len(expected))
        except InterruptedError as exc:
            log_error(f"error on read: {exc}\n")
            received = None
        except OSError as exc:
            record.real += 1
            record.incorrect += 1
            log_error(f"error on read: {exc}\n")
            received = None
        else:
            record.real += 1
        end = time.monotonic()

        if received is not None:
            if len(received) != len(expected):
                record.incorrect += 1
                log_error(
                    f"incorrect size for {doc_id} "
                    f"(expected {len(expected)}, got {len(received)})\n"
                )
            elif sha256(received) != fhash:
                log_error(f"corrupted data for {doc_id}\n")
                record.incorrect += 1
        record.rtts.append((end - start) * 1000.0)

    def _random_unknown_id(self) -> str:
        while True:
            doc_id = "".join(self.rng.choices(_ID_ALPHABET, k=RANDOM_ID_LEN))
            if doc_id not in self.index.id_set:
                return doc_id

    def _request_rand(self, sock: socket.socket) -> None:
        doc_id = self._random_unknown_id()
        start = time.monotonic()
        try:
            sock.sendall(doc_id.encode())
        except OSError as exc:
            log_error(f"error on write: {exc}\n")
            return
        try:
            sock.recv(SERVER_RESP_SZ)
        except OSError as exc:
            log_error(f"error on read: {exc}\n")
            return
        end = time.monotonic()
        self.record.rtts.append((end - start) * 1000.0)


def request_thread(
    config: ClientConfig, record: Record, stop_event: threading.Event
) -> None:
    """Make up to ``config.reps`` requests, pausing a random time between them."""
    requestor = Requestor(record, config.index, config.server_addr)
    rng = random.Random()
    for _ in range(config.reps):
        if stop_event.is_set():
            break
        requestor.request()
        sleep_ms = rng.gauss(config.sleep_avg_ms, config.sleep_stddev_ms)
        if sleep_ms <= 0:
            sleep_ms = config.sleep_avg_ms - sleep_ms
        stop_event.wait(sleep_ms / 1000.0)


@dataclass
class Summary:
    """Aggregate statistics over all requestors' records."""

    rtt_avg: float
    rtt_stddev: float
    rtt_max: float
    errors: int
    total: int

    @property
    def error_percent(self) -> float:
        return 100.0 * self.errors / self.total if self.total else 0.0

    def __str__(self) -> str:
        return (
            f"RTT {self.rtt_avg:.2f} +/- {self.rtt_stddev:.2f} ms\t"
            f"Worst {self.rtt_max:.2f} ms\t"
            f"Errors {self.errors} / {self.total} ({self.error_percent:.1f}%)"
        )


def summarize(records: list[Record]) -> Summary:
    """Combine the records into mean, spread and worst round-trip time and error counts."""
    rtts = [rtt for rec in records for rtt in rec.rtts]
    total = sum(rec.real for rec in records)
    errors = sum(rec.incorrect for rec in records)
    avg = statistics.fmean(rtts) if rtts else 0.0
    stddev = statistics.stdev(rtts) if len(rtts) > 1 else 0.0
    worst = max(rtts, default=0.0)
    return Summary(avg, stddev, worst, errors, total)


def main(argv: list[str] | None = None) -> int:
    """Run the load generator; returns the process exit status."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        config = parse_client_args(argv)
    except FatalError as exc:
        log_error(f"{exc}\n")
        return 1

    stop_event = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda signum, frame: stop_event.set())
    try:
        records = [Record() for _ in range(config.reqs)]
        threads = [
            threading.Thread(target=request_thread, args=(config, rec, stop_event))
            for rec in records
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            while thread.is_alive():
                thread.join(0.1)
    finally:
        signal.signal(signal.SIGINT, previous)

    print(summarize(records))
    return 0


if __name__ == "__main__":
    sys.exit(main())