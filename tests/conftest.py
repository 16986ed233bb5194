"""Shared test fixtures and line protocol helpers."""

import socket
import threading
from typing import List

import pytest


def tokenize(line: str) -> List[str]:
    """Split an encoded line into fields, undoing quoting.

    Inside double quotes a backslash escapes the next character; outside
    quotes it is literal, matching how the encoder emits bare values.
    """
    tokens = []
    current = []
    in_token = False
    in_quotes = False
    escaped = False
    for ch in line:
        if in_quotes:
            if escaped:
                current.append(ch)
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_quotes = False
            else:
                current.append(ch)
        elif ch == '"':
            in_quotes = True
            in_token = True
        elif ch.isspace():
            if in_token:
                tokens.append(''.join(current))
                current = []
                in_token = False
        else:
            current.append(ch)
            in_token = True
    assert not in_quotes, f"unterminated quote in {line!r}"
    if in_token:
        tokens.append(''.join(current))
    return tokens


def split_pair(token: str):
    key, _, value = token.partition('=')
    return key, value


def parse_metric_line(line: str) -> dict:
    """Parse '<name> <value> [<timestamp>] source=<source> [tags]'."""
    tokens = tokenize(line)
    name, value = tokens[0], float(tokens[1])
    rest = tokens[2:]
    timestamp = None
    if not rest[0].startswith('source='):
        timestamp = int(rest.pop(0))
    source = split_pair(rest.pop(0))[1]
    tags = dict(split_pair(token) for token in rest)
    return {'name': name, 'value': value, 'timestamp': timestamp, 'source': source, 'tags': tags}


class ProxyServer:
    """Loopback TCP server that records every line it receives."""

    def __init__(self):
        self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._server.bind(('127.0.0.1', 0))
        self._server.listen(8)
        self.port = self._server.getsockname()[1]
        self.lines: List[str] = []
        self.connections = 0
        self._lock = threading.Lock()
        self._received = threading.Condition(self._lock)
        self._running = True
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()

    def _accept_loop(self):
        while self._running:
            try:
                conn, _ = self._server.accept()
            except OSError:
                return
            with self._lock:
                self.connections += 1
            threading.Thread(target=self._read_loop, args=(conn,), daemon=True).start()

    def _read_loop(self, conn):
        buffer = b''
        with conn:
            while True:
                try:
                    chunk = conn.recv(4096)
                except OSError:
                    return
                if not chunk:
                    return
                buffer += chunk
                *complete, buffer = buffer.split(b'\n')
                with self._received:
                    self.lines.extend(line.decode('utf-8') for line in complete)
                    self._received.notify_all()

    def wait_for_lines(self, count: int, timeout: float = 5.0) -> List[str]:
        with self._received:
            self._received.wait_for(lambda: len(self.lines) >= count, timeout=timeout)
            return list(self.lines)

    def stop(self):
        self._running = False
        self._server.close()


@pytest.fixture
def proxy_server():
    """Provide a running loopback proxy server."""
    server = ProxyServer()
    yield server
    server.stop()


@pytest.fixture
def unused_port() -> int:
    """Provide a local port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
