"""Value objects passed between pipeline stages.

Every stage produces a new immutable value and hands it to the next one;
nothing here is mutated after construction.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class OperationType(IntEnum):
    """Safe operation kind."""
    CALL = 0
    DELEGATE_CALL = 1


@dataclass(frozen=True)
class TransferInstruction:
    """One beneficiary row, normalized.

    ``beneficiary`` is checksummed, ``amount`` is a decimal integer string in
    the token's smallest unit.
    """
    beneficiary: str
    amount: str
    name: Optional[str] = None

    @property
    def amount_base_units(self) -> int:
        return int(self.amount)

    def as_struct(self) -> Dict[str, Any]:
        """TransferDetails struct value for the encoder."""
        return {"beneficiary": self.beneficiary, "amount": self.amount_base_units}


@dataclass(frozen=True)
class EncodedCall:
    """A single call the multisig will make."""
    target: str
    calldata: bytes
    value: int = 0
    operation: OperationType = OperationType.CALL
    description: str = ""


@dataclass(frozen=True)
class TransactionEnvelope:
    """A Safe transaction wrapping one or more calls.

    ``to``/``value``/``data``/``operation`` are the fields the Safe executes:
    the call itself for a single call, or a MultiSend delegate call.
    """
    safe_address: str
    calls: Tuple[EncodedCall, ...]
    nonce: int
    to: str
    value: int
    data: bytes
    operation: OperationType
    safe_tx_gas: int = 0
    base_gas: int = 0
    gas_price: int = 0
    gas_token: str = ZERO_ADDRESS
    refund_receiver: str = ZERO_ADDRESS

    @property
    def is_multi_send(self) -> bool:
        return len(self.calls) > 1


@dataclass(frozen=True)
class ProposalHash:
    """EIP-712 safeTxHash of an envelope."""
    value: bytes

    def __post_init__(self) -> None:
        if len(self.value) != 32:
            raise ValueError(f"Proposal hash must be 32 bytes, got {len(self.value)}")

    def hex(self) -> str:
        return "0x" + self.value.hex()

    def __str__(self) -> str:
        return self.hex()


@dataclass(frozen=True)
class Signature:
    """65-byte ``r || s || v`` signature bound to its signer."""
    signer_address: str
    data: bytes

    def __post_init__(self) -> None:
        if len(self.data) != 65:
            raise ValueError(f"Signature must be 65 bytes, got {len(self.data)}")

    @property
    def r(self) -> int:
        return int.from_bytes(self.data[:32], "big")

    @property
    def s(self) -> int:
        return int.from_bytes(self.data[32:64], "big")

    @property
    def v(self) -> int:
        return self.data[64]

    def hex(self) -> str:
        return "0x" + self.data.hex()


@dataclass(frozen=True)
class Proposal:
    """The unit sent to the coordination service."""
    envelope: TransactionEnvelope
    hash: ProposalHash
    signer_address: str
    signature: Signature
    origin: Optional[str] = None

    def to_service_payload(self) -> Dict[str, Any]:
        """Body for ``POST /api/v1/safes/{address}/multisig-transactions/``."""
        env = self.envelope
        payload = {
            "to": env.to,
            "value": str(env.value),
            "data": "0x" + env.data.hex() if env.data else None,
            "operation": int(env.operation),
            "safeTxGas": str(env.safe_tx_gas),
            "baseGas": str(env.base_gas),
            "gasPrice": str(env.gas_price),
            "gasToken": env.gas_token,
            "refundReceiver": env.refund_receiver,
            "nonce": env.nonce,
            "contractTransactionHash": self.hash.hex(),
            "sender": self.signer_address,
            "signature": self.signature.hex(),
        }
        if self.origin:
            payload["origin"] = self.origin
        return payload


@dataclass(frozen=True)
class SafeInfo:
    """Subset of the Safe state reported by the coordination service."""
    address: str
    nonce: int
    threshold: int
    owners: Tuple[str, ...] = field(default_factory=tuple)
    version: Optional[str] = None

    def is_owner(self, address: str) -> bool:
        return address.lower() in {o.lower() for o in self.owners}


def summarize_calls(calls: List[EncodedCall]) -> List[Dict[str, Any]]:
    """Loggable view of a call list."""
    return [
        {
            "target": c.target,
            "value": c.value,
            "operation": c.operation.name,
            "calldata_bytes": len(c.calldata),
            "description": c.description,
        }
        for c in calls
    ]
