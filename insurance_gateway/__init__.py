"""Multi-provider insurance API gateway.

Registers external insurance providers, authenticates against them,
submits and tracks claims, synchronizes data, and retries transient
failures under per-provider rate limits.

Example usage:
    from insurance_gateway import (
        Credentials,
        FernetPayloadCipher,
        ProviderRegistry,
        get_preset_config,
    )

    registry = ProviderRegistry(cipher=FernetPayloadCipher.from_env())
    await registry.register_provider(get_preset_config("aetna"))
    await registry.authenticate(
        "aetna", Credentials(client_id="app", client_secret="secret")
    )
    response = await registry.submit_claim(claim, "aetna")

Modules:
    registry: Composition root and public operations
    auth: Token and session lifecycle
    claims: Claim submission, status and updates
    sync: Incremental data synchronization
    retry: Retry queue with exponential backoff
    rate_limiter: Sliding-window admission control
    transport: HTTPS transport and encrypted provider session
    security: Payload encryption
    scheduler: APScheduler background jobs
"""

from .config_loader import (
    PROVIDER_PRESETS,
    ConfigLoader,
    ConfigValidationError,
    get_preset_config,
    load_providers_from_config,
)
from .errors import (
    ComplianceViolation,
    EncryptionError,
    InsuranceError,
    InvalidAuthResponse,
    InvalidClaim,
    InvalidCredentials,
    InvalidProviderConfig,
    InvalidResponse,
    NetworkError,
    NoActiveSession,
    NoActiveToken,
    ProviderNotFound,
    RateLimitExceeded,
)
from .models import (
    APIMetrics,
    AuthState,
    AuthToken,
    Claim,
    ClaimResponse,
    ClaimStatus,
    ClaimType,
    ComplianceStatus,
    Credentials,
    DataType,
    ErrorStatistics,
    ProviderConfig,
    RateLimitPolicy,
    SyncResult,
    SyncStatus,
)
from .registry import ProviderRegistry
from .retry import DrainReport, RetryOperation
from .security import FernetPayloadCipher

__version__ = "0.1.0"

__all__ = [
    # Registry
    "ProviderRegistry",
    # Models
    "APIMetrics",
    "AuthState",
    "AuthToken",
    "Claim",
    "ClaimResponse",
    "ClaimStatus",
    "ClaimType",
    "ComplianceStatus",
    "Credentials",
    "DataType",
    "ErrorStatistics",
    "ProviderConfig",
    "RateLimitPolicy",
    "SyncResult",
    "SyncStatus",
    # Retries
    "DrainReport",
    "RetryOperation",
    # Exceptions
    "InsuranceError",
    "ProviderNotFound",
    "InvalidProviderConfig",
    "InvalidCredentials",
    "InvalidAuthResponse",
    "NoActiveToken",
    "NoActiveSession",
    "RateLimitExceeded",
    "InvalidClaim",
    "InvalidResponse",
    "NetworkError",
    "EncryptionError",
    "ComplianceViolation",
    # Config
    "PROVIDER_PRESETS",
    "ConfigLoader",
    "ConfigValidationError",
    "get_preset_config",
    "load_providers_from_config",
    # Security
    "FernetPayloadCipher",
]
