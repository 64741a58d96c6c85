"""Error taxonomy for the insurance gateway.

Every public operation either returns a typed value or raises exactly one of
the exceptions below, so callers can branch on the class (or on ``code``)
instead of parsing messages.
"""

from __future__ import annotations


class InsuranceError(Exception):
    """Base exception for insurance gateway errors."""

    code = "insurance_error"
    transient = False

    def __init__(self, message: str, provider_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id


# --- Configuration ---


class ProviderNotFound(InsuranceError):
    """Raised when an operation targets an unregistered provider."""

    code = "provider_not_found"

    def __init__(self, provider_id: str) -> None:
        super().__init__(f"Insurance provider not found: {provider_id}", provider_id)


class InvalidProviderConfig(InsuranceError):
    """Raised when a provider configuration fails validation."""

    code = "invalid_provider_config"

    def __init__(self, message: str, provider_id: str | None = None) -> None:
        super().__init__(f"Invalid provider configuration: {message}", provider_id)


# --- Authentication ---


class InvalidCredentials(InsuranceError):
    code = "invalid_credentials"

    def __init__(self, message: str, provider_id: str | None = None) -> None:
        super().__init__(f"Invalid credentials: {message}", provider_id)


class InvalidAuthResponse(InsuranceError):
    code = "invalid_auth_response"

    def __init__(self, message: str, provider_id: str | None = None) -> None:
        super().__init__(f"Invalid authentication response: {message}", provider_id)


class NoActiveToken(InsuranceError):
    code = "no_active_token"

    def __init__(self, provider_id: str) -> None:
        super().__init__(f"No active token for provider: {provider_id}", provider_id)


class NoActiveSession(InsuranceError):
    code = "no_active_session"

    def __init__(self, provider_id: str) -> None:
        super().__init__(f"No active session for provider: {provider_id}", provider_id)


# --- Rate ---


class RateLimitExceeded(InsuranceError):
    """Raised when the provider's sliding window denies admission."""

    code = "rate_limit_exceeded"

    def __init__(self, provider_id: str) -> None:
        super().__init__(f"Rate limit exceeded for provider: {provider_id}", provider_id)


# --- Domain validation ---


class InvalidClaim(InsuranceError):
    code = "invalid_claim"

    def __init__(self, message: str, provider_id: str | None = None) -> None:
        super().__init__(f"Invalid claim: {message}", provider_id)


class InvalidResponse(InsuranceError):
    code = "invalid_response"

    def __init__(self, message: str, provider_id: str | None = None) -> None:
        super().__init__(f"Invalid response: {message}", provider_id)


# --- Infrastructure (retryable) ---


class NetworkError(InsuranceError):
    """Raised when the transport fails, times out, or the provider rejects a call.

    ``status_code`` is set when the provider answered with an HTTP error,
    ``timed_out`` when the bounded timeout elapsed first.
    """

    code = "network_error"
    transient = True

    def __init__(
        self,
        message: str,
        provider_id: str | None = None,
        status_code: int | None = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(f"Network error: {message}", provider_id)
        self.status_code = status_code
        self.timed_out = timed_out

    @property
    def auth_rejected(self) -> bool:
        """True when the provider refused the bearer token."""
        return self.status_code in (401, 403)


class EncryptionError(InsuranceError):
    code = "encryption_error"
    transient = True

    def __init__(self, message: str, provider_id: str | None = None) -> None:
        super().__init__(f"Encryption error: {message}", provider_id)


# --- Advisory ---


class ComplianceViolation(InsuranceError):
    """Recorded by the compliance monitor; never raised on a call path."""

    code = "compliance_violation"

    def __init__(self, message: str, provider_id: str | None = None) -> None:
        super().__init__(f"Compliance violation: {message}", provider_id)
