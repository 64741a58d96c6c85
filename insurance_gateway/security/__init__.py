"""Security module for payload encryption.

Provides the cipher used to encrypt requests to and responses from
insurance providers.
"""

from .encryption import FernetPayloadCipher, PayloadCipher

__all__ = [
    "FernetPayloadCipher",
    "PayloadCipher",
]
