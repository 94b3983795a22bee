"""
Transport abstractions for provider streaming connections.
"""

from diagram_engine.transports.base import ProviderRequest, TransportBase, TransportConfig
from diagram_engine.transports.http import HTTPStreamTransport

__all__ = [
    "HTTPStreamTransport",
    "ProviderRequest",
    "TransportBase",
    "TransportConfig",
]
