"""Pydantic models for the insurance gateway.

Defines provider configuration, credentials, tokens, claims, sync results,
the per-operation wire envelopes exchanged with providers, and the read
models returned by the monitoring operations.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from .config import TOKEN_REFRESH_MARGIN_SECONDS

# Bumped whenever a request or response envelope changes shape
WIRE_SCHEMA_VERSION = "1"


class ClaimType(str, Enum):
    """Kinds of insurance claims a provider accepts."""

    MEDICAL = "medical"
    DENTAL = "dental"
    VISION = "vision"
    PRESCRIPTION = "prescription"
    MENTAL_HEALTH = "mental_health"
    REHABILITATION = "rehabilitation"


class DataType(str, Enum):
    """Entity types that can be synchronized from a provider."""

    CLAIMS = "claims"
    BENEFITS = "benefits"
    COVERAGE = "coverage"
    PROVIDERS = "providers"
    MEDICATIONS = "medications"
    AUTHORIZATIONS = "authorizations"


class AuthState(str, Enum):
    """Authentication lifecycle of a single provider."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    REVOKED = "revoked"
    EXPIRED = "expired"


class RetryKind(str, Enum):
    """Operations that are safe to re-execute."""

    AUTHENTICATE = "authenticate"
    SUBMIT_CLAIM = "submit_claim"
    GET_CLAIM_STATUS = "get_claim_status"


# --- Provider configuration ---


class RateLimitPolicy(BaseModel):
    """Sliding-window limits for a provider."""

    model_config = ConfigDict(frozen=True)

    requests_per_minute: int = Field(..., ge=1)
    requests_per_hour: int = Field(..., ge=1)


class ProviderConfig(BaseModel):
    """Immutable registration data for an insurance provider.

    Contract checks (non-empty id, https endpoint) are performed by the
    registry so that they surface as ``InvalidProviderConfig``.
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str
    name: str
    base_url: str
    api_version: str = "v1"
    rate_limit: RateLimitPolicy
    auto_connect: bool = False

    @field_validator("provider_id", "name", "base_url", "api_version")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()


class Credentials(BaseModel):
    """Client credentials, consumed once per authentication attempt."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: SecretStr
    scope: str | None = None


class AuthToken(BaseModel):
    """The single live token held for a provider."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str = ""
    expires_at: datetime
    token_type: str = "Bearer"

    def needs_refresh(self, now: datetime) -> bool:
        """Check whether the token is inside the refresh margin.

        Args:
            now: Current time (timezone-aware)

        Returns:
            True once ``now + 5 minutes >= expires_at``
        """
        return now + timedelta(seconds=TOKEN_REFRESH_MARGIN_SECONDS) >= self.expires_at

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


# --- Claims ---


class Claim(BaseModel):
    """A claim as built by the caller.

    ``amount`` is deliberately unconstrained here; the claims service
    rejects non-positive amounts with ``InvalidClaim``.
    """

    model_config = ConfigDict(frozen=True)

    claim_id: str
    patient_id: str
    provider_id: str
    amount: Decimal
    description: str = ""
    date_of_service: date
    claim_type: ClaimType = ClaimType.MEDICAL


class ClaimStatus(BaseModel):
    """Last known processing status of a claim."""

    claim_id: str
    status: str
    last_updated: datetime
    next_update: datetime | None = None


class ClaimResponse(BaseModel):
    """Provider answer to a submission or update."""

    claim_id: str
    status: ClaimStatus
    response_date: datetime
    approved_amount: Decimal | None = None
    denial_reason: str | None = None


class BatchSubmissionResult(BaseModel):
    """Outcome of one claim inside a batch submission."""

    claim_id: str
    success: bool
    response: ClaimResponse | None = None
    error_code: str | None = None
    error_message: str | None = None


# --- Synchronization ---


class SyncResult(BaseModel):
    provider_id: str
    data: dict[str, Any] = {}
    timestamp: datetime
    data_types: list[DataType] = []


class SyncStatus(BaseModel):
    provider_id: str
    is_connected: bool
    has_valid_token: bool
    last_sync: datetime | None = None
    next_sync: datetime | None = None


# --- Monitoring read models ---


class APIMetrics(BaseModel):
    provider_id: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time_ms: float = 0.0
    last_request_time: datetime | None = None


class ErrorStatistics(BaseModel):
    provider_id: str
    total_errors: int = 0
    error_types: dict[str, int] = {}
    last_error_time: datetime | None = None


class ComplianceStatus(BaseModel):
    provider_id: str
    is_compliant: bool = True
    compliance_issues: list[str] = []
    last_compliance_check: datetime


class CacheStatistics(BaseModel):
    provider_id: str
    claim_statuses: int = 0
    claim_responses: int = 0
    has_sync_data: bool = False
    hits: int = 0
    misses: int = 0


# --- Wire envelopes ---


class WireRequest(BaseModel):
    """Fields shared by every request sent to a provider."""

    schema_version: str = WIRE_SCHEMA_VERSION
    provider_id: str
    request_id: str
    timestamp: datetime


class AuthRequest(WireRequest):
    client_id: str
    client_secret: str
    scope: str | None = None


class TokenRefreshRequest(WireRequest):
    refresh_token: str


class TokenRevocationRequest(WireRequest):
    access_token: str


class ClaimRequest(WireRequest):
    access_token: str
    claim: Claim


class ClaimStatusRequest(WireRequest):
    access_token: str
    claim_id: str


class SyncRequest(WireRequest):
    access_token: str
    data_types: list[DataType]
    last_sync: datetime | None = None


class AuthResponse(BaseModel):
    """Token exchange answer.

    Providers send either an absolute ``expires_at`` or an OAuth2-style
    ``expires_in`` lifetime in seconds.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    expires_in: int | None = None
    token_type: str = "Bearer"


class ClaimStatusResponse(BaseModel):
    claim_id: str
    status: str
    last_updated: datetime
    next_update: datetime | None = None


class SyncResponse(BaseModel):
    data: dict[str, Any] = {}
    data_types: list[DataType] = []
