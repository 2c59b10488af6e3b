# docserve

docserve serves documents from a directory over plain TCP. It also has a client that puts load on the server and checks every document it gets back.

The server relies on POSIX socket queries (`fcntl`/`termios`), so it runs on Linux and similar systems.

## The protocol

The content directory holds one subdirectory per document. The subdirectory's name is the document's identifier. The first file ending in `.pdf` inside it is the document.

1. A client connects and sends an identifier. The server reads at most 32 bytes of it in a single read.
2. If the document exists, the server sends its bytes back.
3. If the document does not exist or cannot be read, the server sends back a single zero byte.
4. In both cases the server then closes the connection. Sockets are closed once their outgoing data has drained.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Running the server

```
docserve-server -l epoll -r umap -c mutex -m umap -f filesystem [-n CAPACITY] PORT DIRECTORY
```

All five component options are required. If one is missing or unknown, the server prints its usage, names that component, and exits with status 1.

| Option | Chooses | Accepted values |
|--------|---------|-----------------|
| `-l` | the event loop | `epoll` |
| `-r` | the map that holds requests in progress | `umap`, `khash` |
| `-c` | how documents are evicted from the cache | `none`, `mutex` |
| `-m` | the map the cache keeps documents in | `umap`, `khash`, `none` |
| `-f` | where documents are read from | `filesystem` |
| `-n` | how many documents the cache holds | an integer; the default is 100 |

- `umap` and `khash` are both ordinary in-memory maps.
- With `-m none`, nothing is cached, and every request reads the document from disk.
- With `-c none`, every document that has been served stays in the cache.
- With `-c mutex`, a background thread evicts documents in order of their least recent use once the cache holds more than the capacity.

The server listens on all IPv4 addresses at `PORT`. While it runs, it prints how many requests it has handled so far. Ctrl-C stops it.

Set the environment variable `DOCSERVE_DEBUG` to a value other than `0` to get debug output. This also sets `SO_REUSEPORT` on the listening socket.

## Running the client

```
docserve-client [-a AVG_MS] [-d STDDEV_MS] [-r REQUESTORS] [-n REPS] HOST:PORT DIRECTORY
```

`HOST` must be an IPv4 address.

The client starts the given number of requestor threads (default 10). Each thread makes up to the given number of requests (default 30). Each request is for a randomly chosen document from `DIRECTORY`. Between requests a thread sleeps for a normally distributed time, with a mean of 100 ms and a standard deviation of 50 ms by default. If the drawn time is negative, the client uses the mean plus the amount by which the draw fell below zero.

Give the client the same content directory as the server. Its document identifiers are the names of the subdirectories that do not start with a dot. For each reply, the client counts the request as an error if either of these holds:

- the reply's size differs from the copy on disk;
- the reply's SHA-256 differs from that of the copy on disk.

Press Ctrl-C to stop the client early. When it finishes, it prints the mean round-trip time, the sample standard deviation, the worst round-trip time, and the error count:

```
RTT 1.23 +/- 0.45 ms	Worst 3.21 ms	Errors 0 / 300 (0.0%)
```

## Library use

The pieces can also be used on their own:

- `docserve.utils`
  - `sha256(msg)` returns a digest.
  - `find_pdf(dpath)` returns the first `.pdf` path in a directory, or `None`.
  - `log_error` and `debug` print diagnostics.
  - `FatalError` is raised for unrecoverable errors.
- `docserve.backend`
  - `FSBackend(srv).send_and_cache(idstr, sock)` sends a document and returns `(bytes_sent, contents)`.
  - `TrivialMap` is a map that stores nothing.
  - `make_map(name)` builds a map for `"umap"`, `"khash"` or `"none"`.
- `docserve.cache`
  - `BaseCache` and `MutexCache` both take `srv`, `ndocs`, `map_kind` and `backend_factory`.
  - Their `send(idstr, sock)` returns the number of bytes sent. It raises `FileNotFoundError` for unknown documents.
  - `MutexCache` also provides `close()` and works as a context manager.
- `docserve.loop`
  - `EpollLoop(cache, request_map_kind)` has `loop(listener)` and `stop()`.
  - `SocketGC` has `push`, `collect`, `run` and `stop`.
- `docserve.server`
  - `parse_server_args(argv)` returns a `ServerConfig`.
  - `build_loop(config)` returns an `EpollLoop`.
  - `main(argv)` runs the server.
- `docserve.client`
  - `parse_client_args(argv)` returns a `ClientConfig`.
  - `Index`, `Record` and `Requestor` are also provided. `Requestor.request(p)` asks for an unknown random 8-character identifier with probability `p`.
  - `request_thread(config, record, stop_event)` runs one requestor.
  - `summarize(records)` returns a `Summary`.
  - `main(argv)` runs the client.

## What it does not do

- There is no encryption and no authentication.
- Requests are not framed: an identifier must arrive in one read of at most 32 bytes.
- The command-line client only requests documents that exist. Requests for unknown identifiers are made only through `Requestor.request(p)` with `p > 0`, and their replies are timed but not checked.