"""
Exceptions raised by the Wavefront client.
"""


class WavefrontClientError(Exception):
    """Base class for all client errors."""


class ValidationError(WavefrontClientError, ValueError):
    """A name, source, tag, identifier or value cannot be encoded."""


class UnsupportedOperation(WavefrontClientError):
    """The client has no configuration for the requested telemetry kind."""


class ProxyConnectionError(WavefrontClientError, ConnectionError):
    """Writing to the proxy failed, including the single reconnect attempt."""

    def __init__(self, host, port, cause=None):
        self.host = host
        self.port = port
        self.cause = cause
        message = f"Unable to send to proxy at {host}:{port}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class DeliveryFailure(WavefrontClientError):
    """A batch could not be delivered to the ingestion endpoint.

    Only used internally by the direct ingestion client, which logs it and
    requeues the batch instead of raising it to callers.
    """

    def __init__(self, kind, status_code=None, cause=None):
        self.kind = kind
        self.status_code = status_code
        self.cause = cause
        if status_code is not None:
            message = f"Ingestion of {kind} batch failed with HTTP {status_code}"
        else:
            message = f"Ingestion of {kind} batch failed: {cause}"
        super().__init__(message)


class QueueOverflow(WavefrontClientError):
    """A queue refused lines because it is full or already closed.

    Raised by :class:`~wavefront_client.direct.LineQueue`; the direct
    ingestion client catches it and counts the dropped lines, so callers of
    ``send_*`` never see it.
    """

    def __init__(self, dropped, closed=False):
        self.dropped = dropped
        self.closed = closed
        reason = 'closed' if closed else 'full'
        super().__init__(f"Queue is {reason}, dropped {dropped} line(s)")
