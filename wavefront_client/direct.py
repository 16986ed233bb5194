"""
Client for sending telemetry directly to a Wavefront ingestion endpoint.

Encoded lines are buffered in one bounded queue per telemetry kind. A
background thread ships them as gzip-compressed, newline-delimited batches,
so callers never wait on the network.
"""
import gzip
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests

from . import config
from .client import WavefrontClient
from .exceptions import DeliveryFailure, QueueOverflow

logger = logging.getLogger(__name__)

METRICS = 'metrics'
HISTOGRAMS = 'histograms'
SPANS = 'spans'
SPAN_LOGS = 'span_logs'

# Report format for each telemetry kind
REPORT_FORMATS = {
    METRICS: 'wavefront',
    HISTOGRAMS: 'histogram',
    SPANS: 'trace',
    SPAN_LOGS: 'spanLogs',
}


class LineQueue:
    """Thread-safe bounded FIFO of encoded lines."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("Queue capacity must be at least 1")
        self.capacity = capacity
        self._lines = deque()
        self._lock = threading.Lock()
        self._closed = False

    def put_all(self, lines: List[str]) -> int:
        """
        Append lines, all or none. Never blocks.

        Args:
            lines (list): Encoded lines

        Returns:
            int: Queue length after the append

        Raises:
            QueueOverflow: If the lines do not fit or the queue is closed
        """
        with self._lock:
            if self._closed:
                raise QueueOverflow(len(lines), closed=True)
            if len(self._lines) + len(lines) > self.capacity:
                raise QueueOverflow(len(lines))
            self._lines.extend(lines)
            return len(self._lines)

    def drain(self, max_items: int) -> List[str]:
        """Remove and return up to max_items lines from the front."""
        with self._lock:
            count = min(max_items, len(self._lines))
            return [self._lines.popleft() for _ in range(count)]

    def requeue(self, lines: List[str]) -> int:
        """
        Put lines back at the front, ahead of anything queued since.

        If that exceeds capacity the oldest lines are dropped.

        Returns:
            int: Number of lines dropped
        """
        with self._lock:
            if self._closed:
                return len(lines)
            self._lines.extendleft(reversed(lines))
            dropped = 0
            while len(self._lines) > self.capacity:
                self._lines.popleft()
                dropped += 1
            return dropped

    def close(self) -> int:
        """Refuse further lines and discard what is left; returns the discarded count."""
        with self._lock:
            self._closed = True
            discarded = len(self._lines)
            self._lines.clear()
            return discarded

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._lines)


@dataclass
class _KindState:
    """Per-kind queue and retry bookkeeping, touched only under the flush lock."""
    queue: LineQueue
    consecutive_failures: int = 0
    retry_at: float = 0.0


class WavefrontDirectIngestionClient(WavefrontClient):
    """Buffers telemetry and ships it in batches to a Wavefront server."""

    def __init__(
        self,
        server: Optional[str] = None,
        token: Optional[str] = None,
        queue_capacity: Optional[int] = None,
        batch_size: Optional[int] = None,
        flush_interval: Optional[float] = None,
        request_timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        shutdown_timeout: Optional[float] = None,
        compress: Optional[bool] = None
    ):
        """
        Initialize the client and start its flush thread.

        Args:
            server (str, optional): Server URL, e.g. 'https://example.wavefront.com'.
                Defaults to config.SERVER_URL.
            token (str, optional): API token sent as a bearer token. Defaults to config.API_TOKEN.
            queue_capacity (int, optional): Maximum queued lines per kind. Defaults to config.QUEUE_CAPACITY.
            batch_size (int, optional): Maximum lines per request, and the queue
                length that triggers an early flush. Defaults to config.BATCH_SIZE.
            flush_interval (float, optional): Seconds between flushes. Defaults to config.FLUSH_INTERVAL.
            request_timeout (float, optional): Read timeout in seconds. Defaults to config.REQUEST_TIMEOUT.
            connect_timeout (float, optional): Connect timeout in seconds. Defaults to config.CONNECT_TIMEOUT.
            backoff_base (float, optional): First retry delay after a failed flush.
                Defaults to config.BACKOFF_BASE.
            backoff_max (float, optional): Cap on the retry delay. Defaults to config.BACKOFF_MAX.
            shutdown_timeout (float, optional): Time allowed for the final flush on close.
                Defaults to config.SHUTDOWN_TIMEOUT.
            compress (bool, optional): Gzip request bodies. Defaults to config.COMPRESS.

        Raises:
            ValueError: If no server URL or token is available, or a numeric
                setting is zero or negative
        """
        self.server = server or config.SERVER_URL
        self.token = token or config.API_TOKEN
        if not self.server:
            raise ValueError("A server URL is required for direct ingestion")
        if not self.token:
            raise ValueError("An API token is required for direct ingestion")
        self.server = self.server.rstrip('/')

        self.queue_capacity = config.positive(queue_capacity, config.QUEUE_CAPACITY, 'queue_capacity')
        self.batch_size = config.positive(batch_size, config.BATCH_SIZE, 'batch_size')
        self.flush_interval = config.positive(flush_interval, config.FLUSH_INTERVAL, 'flush_interval')
        self.request_timeout = config.positive(request_timeout, config.REQUEST_TIMEOUT, 'request_timeout')
        self.connect_timeout = config.positive(connect_timeout, config.CONNECT_TIMEOUT, 'connect_timeout')
        self.backoff_base = config.positive(backoff_base, config.BACKOFF_BASE, 'backoff_base')
        self.backoff_max = config.positive(backoff_max, config.BACKOFF_MAX, 'backoff_max')
        self.shutdown_timeout = config.positive(shutdown_timeout, config.SHUTDOWN_TIMEOUT, 'shutdown_timeout')
        self.compress = config.COMPRESS if compress is None else compress

        self._kinds: Dict[str, _KindState] = {
            kind: _KindState(LineQueue(self.queue_capacity)) for kind in REPORT_FORMATS
        }
        self._session = requests.Session()
        self._session.headers.update({
            'Authorization': f"Bearer {self.token}",
            'Content-Type': 'application/octet-stream',
        })

        self._counter_lock = threading.Lock()
        self._overflow_count = 0
        self._dropped_on_close_count = 0
        self._failure_count = 0

        self._flush_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._closed = False
        self._stop = threading.Event()
        self._wakeup = threading.Event()
        self._thread = threading.Thread(
            target=self._run_flush_loop, name='wavefront-direct-flush', daemon=True)
        self._thread.start()

    # Sending

    def send_metric(self, name, value, timestamp, source, tags=None) -> None:
        line = self._metric_line(name, value, timestamp, source, tags)
        self._enqueue(METRICS, [line])

    def send_distribution(self, name, centroids, granularities, timestamp, source, tags=None) -> None:
        lines = self._distribution_lines(name, centroids, granularities, timestamp, source, tags)
        self._enqueue(HISTOGRAMS, lines)

    def send_span(self, name, start_millis, duration_millis, source, trace_id, span_id,
                  parents=None, follows_from=None, tags=None, span_logs=None) -> None:
        span_line, span_log_line = self._span_lines(
            name, start_millis, duration_millis, source, trace_id, span_id,
            parents, follows_from, tags, span_logs)
        # A span log record is only useful if its span was queued
        if self._enqueue(SPANS, [span_line]) and span_log_line is not None:
            self._enqueue(SPAN_LOGS, [span_log_line])

    def _enqueue(self, kind: str, lines: List[str]) -> bool:
        """Queue lines for a kind; returns False if they were dropped."""
        try:
            size = self._kinds[kind].queue.put_all(lines)
        except QueueOverflow as e:
            with self._counter_lock:
                if e.closed:
                    self._dropped_on_close_count += e.dropped
                else:
                    self._overflow_count += e.dropped
            logger.debug(f"Dropped {e.dropped} {kind} line(s): {str(e)}")
            return False
        if size >= self.batch_size:
            self._wakeup.set()
        return True

    # Flushing

    def _run_flush_loop(self) -> None:
        logger.debug(f"Starting flush loop for {self.server}")
        while not self._stop.is_set():
            self._wakeup.wait(self.flush_interval)
            self._wakeup.clear()
            if self._stop.is_set():
                break
            try:
                self._flush_due()
            except Exception as e:
                logger.error(f"Unexpected error in flush loop: {str(e)}")
        logger.debug(f"Flush loop for {self.server} stopped")

    def _flush_due(self) -> None:
        now = time.monotonic()
        with self._flush_lock:
            for kind, state in self._kinds.items():
                if len(state.queue) and now >= state.retry_at:
                    self._flush_kind(kind, state)
                    if len(state.queue) >= self.batch_size and state.consecutive_failures == 0:
                        self._wakeup.set()

    def _flush_kind(self, kind: str, state: _KindState, deadline: Optional[float] = None) -> bool:
        """
        Send one batch for a kind. Caller holds the flush lock.

        Args:
            kind (str): Telemetry kind
            state (_KindState): Queue and retry state of that kind
            deadline (float, optional): time.monotonic() value the request
                must finish by

        Returns:
            bool: True if the batch was accepted or the queue was empty
        """
        lines = state.queue.drain(self.batch_size)
        if not lines:
            return True
        try:
            self._post_batch(kind, lines, deadline)
        except DeliveryFailure as e:
            dropped = state.queue.requeue(lines)
            state.consecutive_failures += 1
            delay = self._backoff_delay(state.consecutive_failures)
            state.retry_at = time.monotonic() + delay
            with self._counter_lock:
                self._failure_count += 1
                if state.queue.closed:
                    self._dropped_on_close_count += dropped
                else:
                    self._overflow_count += dropped
            logger.error(f"{str(e)}; retrying {len(lines)} {kind} line(s) in {delay:.1f}s")
            if dropped:
                logger.warning(f"Dropped {dropped} oldest {kind} line(s) on requeue")
            return False
        if state.consecutive_failures:
            logger.info(f"Delivery of {kind} recovered after {state.consecutive_failures} failure(s)")
        state.consecutive_failures = 0
        state.retry_at = 0.0
        logger.debug(f"Sent {len(lines)} {kind} line(s)")
        return True

    def _backoff_delay(self, failures: int) -> float:
        return min(self.backoff_base * (2 ** (failures - 1)), self.backoff_max)

    def _request_timeout(self, deadline: Optional[float]):
        if deadline is None:
            return (self.connect_timeout, self.request_timeout)
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        return (min(self.connect_timeout, remaining), min(self.request_timeout, remaining))

    def _post_batch(self, kind: str, lines: List[str], deadline: Optional[float] = None) -> None:
        """
        POST one batch to the report endpoint for a kind.

        With a deadline, both the connect and the read timeout are capped at
        the time left before it.

        Raises:
            DeliveryFailure: On a non-2xx status, a request error or an expired deadline
        """
        timeout = self._request_timeout(deadline)
        if timeout is None:
            raise DeliveryFailure(kind, cause=TimeoutError("Shutdown deadline expired"))
        body = '\n'.join(lines).encode('utf-8')
        headers = {}
        if self.compress:
            body = gzip.compress(body)
            headers['Content-Encoding'] = 'gzip'
        try:
            response = self._session.post(
                f"{self.server}/report",
                params={'f': REPORT_FORMATS[kind]},
                data=body,
                headers=headers,
                timeout=timeout
            )
        except requests.exceptions.RequestException as e:
            raise DeliveryFailure(kind, cause=e) from e
        if not 200 <= response.status_code < 300:
            raise DeliveryFailure(kind, status_code=response.status_code)

    def flush_now(self) -> None:
        """Send one batch per non-empty queue immediately, ignoring any backoff."""
        with self._flush_lock:
            for kind, state in self._kinds.items():
                if len(state.queue):
                    self._flush_kind(kind, state)

    # Shutdown

    def close(self) -> int:
        """
        Stop the flush thread, make a final best-effort flush and release HTTP resources.

        Lines still queued when the shutdown timeout elapses, or after a
        failed final flush, are discarded.

        Returns:
            int: Number of lines discarded on close
        """
        with self._close_lock:
            if self._closed:
                return 0
            self._closed = True

        deadline = time.monotonic() + self.shutdown_timeout
        self._stop.set()
        self._wakeup.set()
        self._thread.join(timeout=self.shutdown_timeout)
        if self._thread.is_alive():
            logger.warning("Flush thread did not stop cleanly")

        discarded = 0
        acquired = self._flush_lock.acquire(timeout=max(deadline - time.monotonic(), 0))
        try:
            for kind, state in self._kinds.items():
                if acquired:
                    while len(state.queue) and time.monotonic() < deadline:
                        if not self._flush_kind(kind, state, deadline):
                            break
                discarded += state.queue.close()
        finally:
            if acquired:
                self._flush_lock.release()
        self._session.close()

        with self._counter_lock:
            self._dropped_on_close_count += discarded
        if discarded:
            logger.warning(f"Discarded {discarded} queued line(s) on close")
        logger.info(f"Closed direct ingestion client for {self.server}")
        return discarded

    # Counters

    @property
    def overflow_count(self) -> int:
        """Lines dropped because a queue was full."""
        with self._counter_lock:
            return self._overflow_count

    @property
    def dropped_on_close_count(self) -> int:
        """Lines discarded at or after close."""
        with self._counter_lock:
            return self._dropped_on_close_count

    def get_failure_count(self) -> int:
        with self._counter_lock:
            return self._failure_count

    def queue_size(self, kind: str) -> int:
        """
        Get the number of lines waiting for a telemetry kind.

        Args:
            kind (str): One of METRICS, HISTOGRAMS, SPANS, SPAN_LOGS

        Returns:
            int: Number of queued lines
        """
        return len(self._kinds[kind].queue)
