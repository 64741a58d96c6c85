"""Authentication for insurance providers.

Provides the per-provider token and session lifecycle manager.
"""

from .session_manager import AuthSessionManager, validate_credentials

__all__ = [
    "AuthSessionManager",
    "validate_credentials",
]
