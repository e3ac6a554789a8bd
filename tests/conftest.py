"""
Pytest configuration for lockup-batch tests.
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
if str(package_src) not in sys.path:
    sys.path.insert(0, str(package_src))

from lockup_batch.config import BatchSettings, ContractSettings, SafeSettings, SignerSettings, SourceSettings
from lockup_batch.encoding import ContractInterface
from lockup_batch.models import TransferInstruction


# ============ Reference values ============

CHAIN_ID = 10
SAFE_ADDRESS = "0xd4b9093c2EA7841C19715e16FC1135B11c6eC1a0"
FACTORY_ADDRESS = "0x31075DD5B0CAFF37690B2f700dB60Ad0A317a57a"
TOKEN_ADDRESS = "0xdc6ff44d5d932cbd77b52e5612ba0529dc6226f1"
BENEFICIARY = "0xABCD000000000000000000000000000000001234"

# Foundry default accounts #0 and #1
OWNER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
OWNER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
OTHER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
OTHER_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


@pytest.fixture
def instruction() -> TransferInstruction:
    return TransferInstruction(beneficiary=BENEFICIARY, amount="1000000", name="Alice")


@pytest.fixture
def factory_interface() -> ContractInterface:
    return ContractInterface.load("TokenLockupFactory")


@pytest.fixture
def token_interface() -> ContractInterface:
    return ContractInterface.load("ERC20")


@pytest.fixture
def settings() -> BatchSettings:
    """Settings that never touch the environment or a .env file."""
    return BatchSettings.model_construct(
        source=SourceSettings(api_key="key_test", base_id="appTest", table_name="Batch_001"),
        safe=SafeSettings(address=SAFE_ADDRESS, chain_id=CHAIN_ID, service_url="https://safe.test"),
        contracts=ContractSettings(token_address=TOKEN_ADDRESS, factory_address=FACTORY_ADDRESS),
        signer=SignerSettings(kind="local", private_key=OWNER_KEY),
        log_level="INFO",
        log_json=False,
    )


class RecordingTransport:
    """httpx.MockTransport handler that records requests and replays responses."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self._handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    def client(self, base_url: str) -> httpx.Client:
        return httpx.Client(base_url=base_url, transport=httpx.MockTransport(self))

    def bodies(self, method: str = "POST") -> List[Dict]:
        return [json.loads(r.content) for r in self.requests if r.method == method]


@pytest.fixture
def recording_transport():
    """Factory for RecordingTransport instances."""
    return RecordingTransport


class FakeTransport:
    """In-memory hardware device: signs with a local key, or raises a queued error."""

    def __init__(self, key: str = OWNER_KEY, address: Optional[str] = None):
        self._account = Account.from_key(key)
        self._address = address or self._account.address
        self.errors: List[Exception] = []
        self.sign_calls = 0
        self.reconnects = 0
        self.closes = 0

    def get_address(self, derivation_path: str) -> str:
        return self._address.lower()

    def sign_hash(self, derivation_path: str, message_hash: bytes):
        self.sign_calls += 1
        if self.errors:
            raise self.errors.pop(0)
        signed = self._account.sign_message(encode_defunct(primitive=message_hash))
        return signed.v, signed.r, signed.s

    def reconnect(self) -> None:
        self.reconnects += 1

    def close(self) -> None:
        self.closes += 1
