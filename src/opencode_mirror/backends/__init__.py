"""Transport backends."""

from ..config import MirrorConfig
from ..transport import SessionTransport
from .opencode import OpenCodeTransport


def create_transport(config: MirrorConfig) -> SessionTransport:
    """Build the transport for the configured server."""
    return OpenCodeTransport(base_url=config.server_url)
