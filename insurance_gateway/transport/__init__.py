"""Transport layer for provider APIs.

Provides the HTTPS transport and the typed, encrypted provider session
built on top of it.
"""

from .http import OPERATION_PATHS, HTTPTransport, Transport
from .session import ProviderSession, utcnow

__all__ = [
    "OPERATION_PATHS",
    "HTTPTransport",
    "Transport",
    "ProviderSession",
    "utcnow",
]
