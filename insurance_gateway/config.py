"""Shared configuration for the insurance gateway.

This module centralizes environment variable access and default values
to prevent drift between modules.
"""

import os

# Remote calls
REQUEST_TIMEOUT_SECONDS = float(os.getenv("INSURANCE_REQUEST_TIMEOUT", "30"))
CONNECT_TIMEOUT_SECONDS = float(os.getenv("INSURANCE_CONNECT_TIMEOUT", "10"))

# Tokens are refreshed this long before they expire
TOKEN_REFRESH_MARGIN_SECONDS = 300
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

# Retry queue
RETRY_MAX_ATTEMPTS = int(os.getenv("INSURANCE_RETRY_MAX_ATTEMPTS", "5"))
RETRY_BASE_DELAY_SECONDS = float(os.getenv("INSURANCE_RETRY_BASE_DELAY", "2"))
RETRY_MAX_DELAY_SECONDS = float(os.getenv("INSURANCE_RETRY_MAX_DELAY", "300"))
RETRY_DRAIN_INTERVAL_SECONDS = float(os.getenv("INSURANCE_RETRY_DRAIN_INTERVAL", "30"))
RETRY_FAILED_HISTORY_LIMIT = int(os.getenv("INSURANCE_RETRY_FAILED_HISTORY_LIMIT", "100"))

# Synchronization
SYNC_INTERVAL_SECONDS = float(os.getenv("INSURANCE_SYNC_INTERVAL", "3600"))
SYNC_HISTORY_LIMIT = int(os.getenv("INSURANCE_SYNC_HISTORY_LIMIT", "100"))

# Fernet key used to encrypt request/response payloads
PAYLOAD_ENCRYPTION_KEY = os.getenv("INSURANCE_PAYLOAD_KEY")

# Directory scanned for provider YAML/JSON files
PROVIDER_CONFIG_DIR = os.getenv("INSURANCE_PROVIDER_CONFIG_DIR", "./config/providers")
