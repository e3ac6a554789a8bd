"""Tests for config.py."""
from __future__ import annotations

import os

import pytest
from pydantic import ValidationError

from lockup_batch.config import (
    MULTI_SEND_CALL_ONLY_ADDRESS,
    BatchSettings,
    SafeSettings,
    SourceSettings,
    load_settings,
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run without a stray .env file or LOCKUP_ variables."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("LOCKUP_"):
            monkeypatch.delenv(name)
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


class TestDefaults:
    def test_defaults(self):
        settings = BatchSettings()
        assert settings.source.base_id == "appkFOEdAZ6NruSV8"
        assert settings.source.table_name == "Batch_001"
        assert settings.source.view == "Grid view"
        assert settings.source.amount_unit == "base"
        assert settings.safe.chain_id == 10
        assert settings.safe.address == "0xd4b9093c2EA7841C19715e16FC1135B11c6eC1a0"
        assert settings.contracts.factory_address == "0x31075DD5B0CAFF37690B2f700dB60Ad0A317a57a"
        assert settings.contracts.multi_send_address == MULTI_SEND_CALL_ONLY_ADDRESS
        assert settings.contracts.include_approval is False
        assert settings.signer.kind == "ledger"
        assert settings.signer.derivation_path == "44'/60'/1'/0/0"
        assert settings.log_level == "INFO"


class TestEnvironment:
    def test_nested_variables(self, monkeypatch):
        monkeypatch.setenv("LOCKUP_SOURCE__API_KEY", "key_env")
        monkeypatch.setenv("LOCKUP_SOURCE__TABLE_NAME", "Batch_007")
        monkeypatch.setenv("LOCKUP_SAFE__CHAIN_ID", "1")
        monkeypatch.setenv("LOCKUP_SIGNER__KIND", "local")
        monkeypatch.setenv("LOCKUP_LOG_LEVEL", "debug")

        settings = BatchSettings()

        assert settings.source.api_key == "key_env"
        assert settings.source.table_name == "Batch_007"
        assert settings.safe.chain_id == 1
        assert settings.signer.kind == "local"
        assert settings.log_level == "DEBUG"

    def test_env_file(self, tmp_path):
        env_file = tmp_path / "batch.env"
        env_file.write_text("LOCKUP_SOURCE__TABLE_NAME=Batch_003\n")
        assert load_settings(str(env_file)).source.table_name == "Batch_003"

    def test_load_settings_cached(self):
        assert load_settings() is load_settings()


class TestValidation:
    def test_unknown_log_level(self):
        with pytest.raises(ValidationError):
            BatchSettings(log_level="LOUD")

    def test_unknown_signer_kind(self, monkeypatch):
        monkeypatch.setenv("LOCKUP_SIGNER__KIND", "yubikey")
        with pytest.raises(ValidationError):
            BatchSettings()

    def test_decimals_range(self):
        with pytest.raises(ValidationError):
            SourceSettings(token_decimals=78)

    def test_retries_at_least_one(self):
        with pytest.raises(ValidationError):
            SafeSettings(max_retries=0)

    def test_immutable(self):
        settings = BatchSettings()
        with pytest.raises(ValidationError):
            settings.log_level = "DEBUG"
        with pytest.raises(ValidationError):
            settings.source.table_name = "Batch_999"


class TestOverrides:
    def test_with_overrides_copies(self):
        settings = BatchSettings()
        updated = settings.with_overrides(source={"table_name": "Batch_002"}, signer={"kind": None})

        assert updated.source.table_name == "Batch_002"
        assert updated.source.base_id == settings.source.base_id
        assert updated.signer == settings.signer
        assert settings.source.table_name == "Batch_001"

    def test_no_overrides_returns_same(self):
        settings = BatchSettings()
        assert settings.with_overrides(source={"table_name": None}) is settings
