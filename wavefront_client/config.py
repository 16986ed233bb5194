"""
Configuration settings for the Wavefront client.
"""
import os


def _env_int(name, default):
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name, default):
    value = os.getenv(name)
    return float(value) if value else default


# Direct ingestion configuration
SERVER_URL = os.getenv('WAVEFRONT_SERVER')
API_TOKEN = os.getenv('WAVEFRONT_API_TOKEN')

# Proxy configuration (unset ports disable that telemetry kind)
PROXY_HOST = os.getenv('WAVEFRONT_PROXY_HOST', 'localhost')
METRICS_PORT = _env_int('WAVEFRONT_METRICS_PORT', None)
DISTRIBUTION_PORT = _env_int('WAVEFRONT_DISTRIBUTION_PORT', None)
TRACING_PORT = _env_int('WAVEFRONT_TRACING_PORT', None)

# Queue configuration
QUEUE_CAPACITY = _env_int('WAVEFRONT_QUEUE_CAPACITY', 50000)  # lines per telemetry kind
BATCH_SIZE = _env_int('WAVEFRONT_BATCH_SIZE', 10000)  # lines per request
FLUSH_INTERVAL = _env_float('WAVEFRONT_FLUSH_INTERVAL', 5.0)  # seconds

# Network configuration
CONNECT_TIMEOUT = _env_float('WAVEFRONT_CONNECT_TIMEOUT', 5.0)  # seconds
REQUEST_TIMEOUT = _env_float('WAVEFRONT_REQUEST_TIMEOUT', 10.0)  # seconds
COMPRESS = os.getenv('WAVEFRONT_COMPRESS', 'true').lower() in ('1', 'true', 'yes')

# Retry configuration
BACKOFF_BASE = _env_float('WAVEFRONT_BACKOFF_BASE', 1.0)  # seconds
BACKOFF_MAX = _env_float('WAVEFRONT_BACKOFF_MAX', 60.0)  # seconds
SHUTDOWN_TIMEOUT = _env_float('WAVEFRONT_SHUTDOWN_TIMEOUT', 10.0)  # seconds


def positive(value, default, name):
    """
    Resolve an optional numeric setting against its configured default.

    None selects the default. Zero and negative values are rejected rather
    than silently replaced.

    Raises:
        ValueError: If the value is not a positive number
    """
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"{name} must be a positive number, got {value!r}")
    return value
