"""
Client for sending telemetry to a Wavefront proxy over plaintext sockets.

One persistent connection is kept per telemetry kind (metrics, distributions,
tracing). Connections are opened lazily on first use and reopened at most
once per send after a failure; the proxy buffers and retries downstream.
"""
import logging
import socket
import threading
from enum import Enum
from typing import Dict, List, Optional

from retrying import retry

from . import config
from .client import WavefrontClient
from .exceptions import ProxyConnectionError, UnsupportedOperation

logger = logging.getLogger(__name__)

# A failed write is retried once over a fresh connection
MAX_SEND_ATTEMPTS = 2


class ConnectionState(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'


def _is_socket_error(exception: Exception) -> bool:
    return isinstance(exception, OSError)


class ProxyConnectionHandler:
    """Owns one socket to a single proxy port."""

    def __init__(self, host: str, port: int, connect_timeout: Optional[float] = None):
        """
        Initialize the connection handler. No connection is opened yet.

        Args:
            host (str): Proxy host name
            port (int): Proxy port for this telemetry kind
            connect_timeout (float, optional): Seconds to wait for a connection
                or a write. Defaults to config.CONNECT_TIMEOUT.
        """
        self.host = host
        self.port = int(port)
        self.connect_timeout = config.positive(connect_timeout, config.CONNECT_TIMEOUT, 'connect_timeout')
        self.state = ConnectionState.DISCONNECTED
        self._sock = None
        self._lock = threading.Lock()
        self._failures = 0

    def __repr__(self):
        return f"ProxyConnectionHandler({self.host}:{self.port}, {self.state.value})"

    def _connect(self) -> None:
        self.state = ConnectionState.CONNECTING
        try:
            self._sock = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
        except OSError:
            self.state = ConnectionState.DISCONNECTED
            raise
        self.state = ConnectionState.CONNECTED
        logger.info(f"Connected to proxy at {self.host}:{self.port}")

    def _disconnect(self) -> None:
        sock, self._sock = self._sock, None
        self.state = ConnectionState.DISCONNECTED
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer already gone
            pass
        sock.close()

    def _write(self, data: bytes) -> None:
        # Only a write on an already open socket earns a reconnect. When there
        # is no socket on entry, the connect below is the one attempt.
        was_connected = self._sock is not None

        def _should_reconnect(exception: Exception) -> bool:
            return was_connected and _is_socket_error(exception)

        @retry(
            retry_on_exception=_should_reconnect,
            stop_max_attempt_number=MAX_SEND_ATTEMPTS,
            wrap_exception=False
        )
        def _attempt():
            if self._sock is None:
                self._connect()
            try:
                self._sock.sendall(data)
            except OSError as e:
                logger.warning(f"Write to proxy {self.host}:{self.port} failed: {str(e)}")
                self._disconnect()
                raise

        try:
            _attempt()
        except OSError as e:
            self._failures += 1
            raise ProxyConnectionError(self.host, self.port, e) from e

    def send_lines(self, lines: List[str]) -> None:
        """
        Write lines to the proxy, one newline-terminated frame per line.

        The connection lock is held for all lines so frames from concurrent
        senders are never interleaved.

        Args:
            lines (list): Encoded lines without terminators

        Raises:
            ProxyConnectionError: If a write fails after one reconnect attempt
        """
        with self._lock:
            for line in lines:
                self._write(f"{line}\n".encode('utf-8'))

    def close(self) -> None:
        """Close the connection. Waits for an in-flight write to finish."""
        with self._lock:
            if self._sock is not None:
                logger.info(f"Closing proxy connection to {self.host}:{self.port}")
            self._disconnect()

    @property
    def failure_count(self) -> int:
        return self._failures


class WavefrontProxyClient(WavefrontClient):
    """Sends metrics, distributions and spans to a Wavefront proxy."""

    def __init__(
        self,
        host: Optional[str] = None,
        metrics_port: Optional[int] = None,
        distribution_port: Optional[int] = None,
        tracing_port: Optional[int] = None,
        connect_timeout: Optional[float] = None
    ):
        """
        Initialize the proxy client. Sockets are opened on first send.

        Args:
            host (str, optional): Proxy host. Defaults to config.PROXY_HOST.
            metrics_port (int, optional): Port for point metrics. Defaults to config.METRICS_PORT.
            distribution_port (int, optional): Port for histograms. Defaults to config.DISTRIBUTION_PORT.
            tracing_port (int, optional): Port for spans. Defaults to config.TRACING_PORT.
            connect_timeout (float, optional): Connect and write timeout in seconds.
                Defaults to config.CONNECT_TIMEOUT.
        """
        self.host = host or config.PROXY_HOST
        self.connect_timeout = config.positive(connect_timeout, config.CONNECT_TIMEOUT, 'connect_timeout')

        ports = {
            'metrics': metrics_port or config.METRICS_PORT,
            'distribution': distribution_port or config.DISTRIBUTION_PORT,
            'tracing': tracing_port or config.TRACING_PORT,
        }
        self._handlers: Dict[str, ProxyConnectionHandler] = {
            kind: ProxyConnectionHandler(self.host, port, self.connect_timeout)
            for kind, port in ports.items() if port
        }
        if not self._handlers:
            logger.warning(f"Proxy client for {self.host} has no ports configured")

    def _handler(self, kind: str) -> ProxyConnectionHandler:
        handler = self._handlers.get(kind)
        if handler is None:
            raise UnsupportedOperation(f"No {kind} port configured for proxy {self.host}")
        return handler

    def send_metric(self, name, value, timestamp, source, tags=None) -> None:
        handler = self._handler('metrics')
        line = self._metric_line(name, value, timestamp, source, tags)
        handler.send_lines([line])

    def send_distribution(self, name, centroids, granularities, timestamp, source, tags=None) -> None:
        handler = self._handler('distribution')
        lines = self._distribution_lines(name, centroids, granularities, timestamp, source, tags)
        handler.send_lines(lines)

    def send_span(self, name, start_millis, duration_millis, source, trace_id, span_id,
                  parents=None, follows_from=None, tags=None, span_logs=None) -> None:
        handler = self._handler('tracing')
        span_line, span_log_line = self._span_lines(
            name, start_millis, duration_millis, source, trace_id, span_id,
            parents, follows_from, tags, span_logs)
        lines = [span_line] if span_log_line is None else [span_line, span_log_line]
        handler.send_lines(lines)

    def close(self) -> int:
        for handler in self._handlers.values():
            handler.close()
        return 0

    def get_failure_count(self) -> int:
        return sum(handler.failure_count for handler in self._handlers.values())

    def connection_state(self, kind: str) -> ConnectionState:
        """
        Get the connection state for a telemetry kind.

        Args:
            kind (str): 'metrics', 'distribution' or 'tracing'

        Returns:
            ConnectionState: The current state of that connection
        """
        return self._handler(kind).state
