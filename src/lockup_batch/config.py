"""Configuration surface for lockup-batch.

Settings are read once at process start (environment, optional ``.env`` file)
into an immutable :class:`BatchSettings`. Components receive the section they
need in their constructor and never look at the environment themselves.

Environment variables use the ``LOCKUP_`` prefix and ``__`` for nesting, e.g.
``LOCKUP_SOURCE__API_KEY`` or ``LOCKUP_SAFE__ADDRESS``.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

# Safe MultiSendCallOnly v1.3.0, canonical deployment
MULTI_SEND_CALL_ONLY_ADDRESS = "0x40A2aCCbd92BCA938b02010E17A5b8929b49130D"


class SourceSettings(BaseModel):
    """Airtable table holding the transfer rows."""
    api_key: str = ""
    base_url: str = "https://api.airtable.com/v0"
    base_id: str = "appkFOEdAZ6NruSV8"
    table_name: str = "Batch_001"
    view: str = "Grid view"

    # Column names
    beneficiary_field: str = "WalletAddress"
    amount_field: str = "AmountWLD"
    name_field: str = "Name"

    # "base": amounts are integers in the token's smallest unit
    # "token": amounts are decimals in whole tokens, scaled by token_decimals
    amount_unit: Literal["base", "token"] = "base"
    token_decimals: int = 18

    timeout: float = 30.0

    class Config:
        frozen = True

    @field_validator("token_decimals")
    @classmethod
    def validate_decimals(cls, v: int) -> int:
        if v < 0 or v > 77:
            raise ValueError("token_decimals must be between 0 and 77")
        return v


class SafeSettings(BaseModel):
    """Multisig account and the Safe Transaction Service that coordinates it."""
    address: str = "0xd4b9093c2EA7841C19715e16FC1135B11c6eC1a0"
    chain_id: int = 10  # Optimism
    service_url: str = "https://safe-transaction-optimism.safe.global"
    service_api_key: str = ""
    origin: str = "lockup-batch"
    timeout: float = 30.0
    max_retries: int = 3

    class Config:
        frozen = True

    @field_validator("max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_retries must be at least 1")
        return v


class ContractSettings(BaseModel):
    """Contracts touched by the batch."""
    token_address: str = "0xdc6ff44d5d932cbd77b52e5612ba0529dc6226f1"
    factory_address: str = "0x31075DD5B0CAFF37690B2f700dB60Ad0A317a57a"
    # Prepend token.approve(factory, total) to the batch
    include_approval: bool = False
    multi_send_address: str = MULTI_SEND_CALL_ONLY_ADDRESS

    class Config:
        frozen = True


class SignerSettings(BaseModel):
    """Signing key location."""
    kind: Literal["ledger", "local"] = "ledger"
    derivation_path: str = "44'/60'/1'/0/0"
    # Only used by the local signer (development and testing)
    private_key: str = ""

    class Config:
        frozen = True


class BatchSettings(BaseSettings):
    """Main lockup-batch configuration."""

    source: SourceSettings = Field(default_factory=SourceSettings)
    safe: SafeSettings = Field(default_factory=SafeSettings)
    contracts: ContractSettings = Field(default_factory=ContractSettings)
    signer: SignerSettings = Field(default_factory=SignerSettings)

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    class Config:
        env_prefix = "LOCKUP_"
        env_nested_delimiter = "__"
        env_file = ".env"
        extra = "ignore"
        frozen = True

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    def with_overrides(self, **sections: dict) -> "BatchSettings":
        """Return a copy with some fields of the named sections replaced.

        ``settings.with_overrides(source={"table_name": "Batch_002"})``
        """
        update = {}
        for name, values in sections.items():
            values = {k: v for k, v in values.items() if v is not None}
            if not values:
                continue
            section = getattr(self, name)
            update[name] = section.model_copy(update=values)
        if not update:
            return self
        return self.model_copy(update=update)


@lru_cache
def load_settings(env_file: Optional[str] = None) -> BatchSettings:
    """Load BatchSettings once per process."""
    if env_file:
        return BatchSettings(_env_file=Path(env_file))
    return BatchSettings()
