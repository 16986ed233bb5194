"""
Build a client from a single URL.

    proxy://localhost:2878?distribution_port=40000&tracing_port=30000
    https://<token>@example.wavefront.com
"""
import logging
from urllib.parse import parse_qs, urlsplit, unquote

from .client import WavefrontClient
from .direct import WavefrontDirectIngestionClient
from .proxy import WavefrontProxyClient

logger = logging.getLogger(__name__)


def _port_option(query, name):
    values = query.get(name)
    if not values:
        return None
    try:
        return int(values[-1])
    except ValueError:
        raise ValueError(f"Invalid {name}: {values[-1]!r}")


def create_client(url: str, **options) -> WavefrontClient:
    """
    Create a proxy or direct ingestion client from a URL.

    Args:
        url (str): 'proxy://host:metrics_port' with optional distribution_port
            and tracing_port query parameters, or 'http(s)://token@host[:port]'
        **options: Extra keyword arguments for the client constructor

    Returns:
        WavefrontClient: The configured client

    Raises:
        ValueError: If the URL scheme is unsupported or a required part is missing
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()

    if scheme == 'proxy':
        if not parts.hostname:
            raise ValueError(f"Proxy URL has no host: {url!r}")
        query = parse_qs(parts.query)
        logger.debug(f"Creating proxy client for {parts.hostname}")
        return WavefrontProxyClient(
            parts.hostname,
            metrics_port=parts.port,
            distribution_port=_port_option(query, 'distribution_port'),
            tracing_port=_port_option(query, 'tracing_port'),
            **options
        )

    if scheme in ('http', 'https'):
        if not parts.username:
            raise ValueError("Direct ingestion URL must carry the API token as user info")
        server = f"{scheme}://{parts.hostname}"
        if parts.port:
            server = f"{server}:{parts.port}"
        if parts.path and parts.path != '/':
            server = f"{server}{parts.path.rstrip('/')}"
        logger.debug(f"Creating direct ingestion client for {server}")
        return WavefrontDirectIngestionClient(server, unquote(parts.username), **options)

    raise ValueError(f"Unsupported client URL scheme: {parts.scheme!r}")
