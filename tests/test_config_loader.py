"""Tests for provider configuration loading and presets."""

from __future__ import annotations

import json

import pytest

from insurance_gateway import (
    ConfigLoader,
    ConfigValidationError,
    get_preset_config,
    load_providers_from_config,
)
from insurance_gateway.config_loader import substitute_env

YAML_CONFIG = """
providers:
  - provider_id: bluecross
    name: Blue Cross Blue Shield
    base_url: ${BCBS_BASE_URL:-https://api.bcbs.com}
    api_version: v2
    rate_limit:
      requests_per_minute: 60
      requests_per_hour: 1000
  - provider_id: humana
    name: Humana
    base_url: https://api.humana.example
    rate_limit:
      requests_per_minute: 30
      requests_per_hour: 500
    auto_connect: true
"""


class TestPresets:
    def test_preset(self):
        config = get_preset_config("aetna")

        assert config.base_url == "https://api.aetna.com"
        assert config.rate_limit.requests_per_minute == 50

    def test_preset_overrides(self):
        config = get_preset_config("cigna", base_url="https://sandbox.cigna.example")

        assert config.base_url == "https://sandbox.cigna.example"
        assert config.provider_id == "cigna"
        assert get_preset_config("cigna").base_url == "https://api.cigna.com"

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="Unknown preset"):
            get_preset_config("acme")


class TestEnvSubstitution:
    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("GATEWAY_TEST_URL", raising=False)

        assert substitute_env("${GATEWAY_TEST_URL:-https://x.example}") == "https://x.example"

    def test_variable_wins_over_default(self, monkeypatch):
        monkeypatch.setenv("GATEWAY_TEST_URL", "https://y.example")

        assert substitute_env({"url": ["${GATEWAY_TEST_URL:-https://x.example}"]}) == {
            "url": ["https://y.example"]
        }

    def test_missing_variable_without_default(self, monkeypatch):
        monkeypatch.delenv("GATEWAY_TEST_URL", raising=False)

        with pytest.raises(ConfigValidationError):
            substitute_env("${GATEWAY_TEST_URL}")

    def test_non_strings_untouched(self):
        assert substitute_env({"n": 5, "flag": True}) == {"n": 5, "flag": True}


class TestConfigLoader:
    def test_load_yaml(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BCBS_BASE_URL", "https://sandbox.bcbs.example")
        path = tmp_path / "providers.yaml"
        path.write_text(YAML_CONFIG)

        configs = ConfigLoader().load_file(path)

        assert [c.provider_id for c in configs] == ["bluecross", "humana"]
        assert configs[0].base_url == "https://sandbox.bcbs.example"
        assert configs[0].api_version == "v2"
        assert configs[1].api_version == "v1"
        assert configs[1].auto_connect

    def test_load_json_single_provider(self, tmp_path):
        path = tmp_path / "aetna.json"
        path.write_text(
            json.dumps(
                {
                    "provider_id": "aetna",
                    "name": "Aetna",
                    "base_url": "https://api.aetna.com",
                    "rate_limit": {"requests_per_minute": 50, "requests_per_hour": 800},
                }
            )
        )

        [config] = ConfigLoader().load_file(path)

        assert config.provider_id == "aetna"

    def test_validation_errors_collected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(
            "providers:\n"
            "  - provider_id: broken\n"
            "    name: Broken\n"
            "    base_url: https://broken.example\n"
            "    rate_limit:\n"
            "      requests_per_minute: 0\n"
            "      requests_per_hour: 10\n"
        )

        with pytest.raises(ConfigValidationError) as exc_info:
            ConfigLoader().load_file(path)

        [error] = exc_info.value.errors
        assert error["field"] == "rate_limit.requests_per_minute"
        assert error["index"] == 0

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigLoader().load_file(tmp_path / "nope.yaml")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "providers.toml"
        path.write_text("")

        with pytest.raises(ValueError, match="Unsupported"):
            ConfigLoader().load_file(path)

    def test_load_directory(self, tmp_path):
        (tmp_path / "a.yaml").write_text(YAML_CONFIG)
        (tmp_path / "notes.txt").write_text("ignored")

        configs = ConfigLoader(tmp_path).load_directory()

        assert len(configs) == 2

    def test_missing_directory_is_empty(self, tmp_path):
        assert ConfigLoader(tmp_path / "absent").load_directory() == []

    def test_load_providers_from_file_or_directory(self, tmp_path):
        path = tmp_path / "providers.yml"
        path.write_text(YAML_CONFIG)

        assert len(load_providers_from_config(path)) == 2
        assert len(load_providers_from_config(tmp_path)) == 2
