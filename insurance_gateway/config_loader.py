"""Configuration file loader for insurance providers.

Supports loading provider configurations from YAML and JSON files, with
``${VAR}`` / ``${VAR:-default}`` environment substitution, and ships the
built-in provider presets.

Example file::

    providers:
      - provider_id: bluecross
        name: Blue Cross Blue Shield
        base_url: ${BCBS_BASE_URL:-https://api.bcbs.com}
        api_version: v2
        rate_limit:
          requests_per_minute: 60
          requests_per_hour: 1000
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import PROVIDER_CONFIG_DIR
from .models import ProviderConfig, RateLimitPolicy

logger = logging.getLogger(__name__)

ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

PROVIDER_PRESETS: dict[str, ProviderConfig] = {
    "bluecross": ProviderConfig(
        provider_id="bluecross",
        name="Blue Cross Blue Shield",
        base_url="https://api.bcbs.com",
        api_version="v2",
        rate_limit=RateLimitPolicy(requests_per_minute=60, requests_per_hour=1000),
    ),
    "aetna": ProviderConfig(
        provider_id="aetna",
        name="Aetna",
        base_url="https://api.aetna.com",
        api_version="v1",
        rate_limit=RateLimitPolicy(requests_per_minute=50, requests_per_hour=800),
    ),
    "cigna": ProviderConfig(
        provider_id="cigna",
        name="Cigna",
        base_url="https://api.cigna.com",
        api_version="v2",
        rate_limit=RateLimitPolicy(requests_per_minute=40, requests_per_hour=600),
    ),
}


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


def get_preset_config(preset: str, **overrides: Any) -> ProviderConfig:
    """Get a provider config from a preset.

    Args:
        preset: Preset name (bluecross, aetna, cigna)
        **overrides: Fields to override

    Returns:
        ProviderConfig
    """
    if preset not in PROVIDER_PRESETS:
        raise ValueError(
            f"Unknown preset: {preset}. Available: {list(PROVIDER_PRESETS.keys())}"
        )
    return PROVIDER_PRESETS[preset].model_copy(update=overrides)


def substitute_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment values."""
    if isinstance(value, str):

        def replace(match: re.Match[str]) -> str:
            name, default = match.group(1), match.group(2)
            resolved = os.getenv(name, default)
            if resolved is None:
                raise ConfigValidationError(
                    f"Environment variable not set: {name}",
                    errors=[{"variable": name, "error": "not set"}],
                )
            return resolved

        return ENV_PATTERN.sub(replace, value)
    if isinstance(value, dict):
        return {k: substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_env(v) for v in value]
    return value


class ConfigLoader:
    """Loads and validates provider configurations from files."""

    def __init__(self, config_dir: str | Path | None = None):
        """Initialize the config loader.

        Args:
            config_dir: Directory containing config files.
                        Defaults to INSURANCE_PROVIDER_CONFIG_DIR.
        """
        self.config_dir = Path(config_dir or PROVIDER_CONFIG_DIR)

    def load_file(self, file_path: str | Path) -> list[ProviderConfig]:
        """Load provider configurations from a single file.

        Raises:
            ConfigValidationError: If validation fails
            FileNotFoundError: If file doesn't exist
        """
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        suffix = path.suffix.lower()
        with open(path) as f:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif suffix == ".json":
                data = json.load(f)
            else:
                raise ValueError(f"Unsupported config format: {suffix}")

        return self._parse_config(data, str(path))

    def load_directory(self, directory: str | Path | None = None) -> list[ProviderConfig]:
        """Load all provider configurations from a directory.

        Raises:
            ConfigValidationError: If any file fails validation
        """
        config_dir = Path(directory) if directory else self.config_dir

        if not config_dir.exists():
            logger.warning(f"Config directory does not exist: {config_dir}")
            return []

        providers: list[ProviderConfig] = []
        errors: list[dict[str, Any]] = []

        for pattern in ("*.yaml", "*.yml", "*.json"):
            for file_path in sorted(config_dir.glob(pattern)):
                try:
                    file_providers = self.load_file(file_path)
                    providers.extend(file_providers)
                    logger.info(
                        f"Loaded {len(file_providers)} provider(s) from {file_path.name}"
                    )
                except ConfigValidationError as e:
                    errors.extend(e.errors)
                except (OSError, ValueError, yaml.YAMLError) as e:
                    errors.append({"file": str(file_path), "error": str(e)})

        if errors:
            raise ConfigValidationError(
                f"Validation failed for {len(errors)} item(s)", errors=errors
            )

        return providers

    def _parse_config(self, data: Any, source: str) -> list[ProviderConfig]:
        if isinstance(data, dict):
            configs = data["providers"] if "providers" in data else [data]
        elif isinstance(data, list):
            configs = data
        else:
            raise ConfigValidationError(
                f"Invalid config format in {source}",
                errors=[{"file": source, "error": "Expected dict or list"}],
            )

        providers = []
        errors: list[dict[str, Any]] = []

        for idx, raw in enumerate(configs):
            try:
                providers.append(ProviderConfig.model_validate(substitute_env(raw)))
            except ValidationError as e:
                for err in e.errors():
                    errors.append(
                        {
                            "file": source,
                            "index": idx,
                            "field": ".".join(str(p) for p in err["loc"]),
                            "error": err["msg"],
                        }
                    )
            except ConfigValidationError as e:
                errors.extend({"file": source, "index": idx, **err} for err in e.errors)

        if errors:
            raise ConfigValidationError(
                f"Invalid provider config in {source}", errors=errors
            )
        return providers


def load_providers_from_config(path: str | Path | None = None) -> list[ProviderConfig]:
    """Load providers from a file or directory.

    Args:
        path: File or directory (default: INSURANCE_PROVIDER_CONFIG_DIR)
    """
    loader = ConfigLoader()
    if path is not None and Path(path).is_file():
        return loader.load_file(path)
    return loader.load_directory(path)
