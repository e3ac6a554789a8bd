"""EIP-712 ``safeTxHash`` computation.

Reproduces ``Safe.getTransactionHash()``:

    domainSeparator = keccak256(abi.encode(DOMAIN_SEPARATOR_TYPEHASH, chainId, safe))
    safeTxHash = keccak256(0x19 || 0x01 || domainSeparator || keccak256(abi.encode(
        SAFE_TX_TYPEHASH, to, value, keccak256(data), operation,
        safeTxGas, baseGas, gasPrice, gasToken, refundReceiver, nonce)))

Safes older than 1.3.0 use a domain without ``chainId``.
"""
from __future__ import annotations

from typing import Optional, Tuple

from eth_abi import encode
from web3 import Web3

from .models import ProposalHash, TransactionEnvelope

DOMAIN_SEPARATOR_TYPEHASH = Web3.keccak(
    text="EIP712Domain(uint256 chainId,address verifyingContract)"
)
LEGACY_DOMAIN_SEPARATOR_TYPEHASH = Web3.keccak(text="EIP712Domain(address verifyingContract)")
SAFE_TX_TYPEHASH = Web3.keccak(
    text=(
        "SafeTx(address to,uint256 value,bytes data,uint8 operation,uint256 safeTxGas,"
        "uint256 baseGas,uint256 gasPrice,address gasToken,address refundReceiver,uint256 nonce)"
    )
)


def _version_tuple(version: str) -> Tuple[int, ...]:
    # "1.3.0+L2" -> (1, 3, 0)
    core = version.split("+")[0].split("-")[0]
    parts = core.split(".")
    if not all(p.isdigit() for p in parts):
        return ()
    return tuple(int(p) for p in parts)


def uses_legacy_domain(safe_version: Optional[str]) -> bool:
    if not safe_version:
        return False
    parsed = _version_tuple(safe_version)
    # Unparseable versions get the current domain
    return bool(parsed) and parsed < (1, 3, 0)


def domain_separator(
    chain_id: int,
    safe_address: str,
    safe_version: Optional[str] = None,
) -> bytes:
    """EIP-712 domain separator of a Safe."""
    safe = Web3.to_checksum_address(safe_address)
    if uses_legacy_domain(safe_version):
        return Web3.keccak(encode(["bytes32", "address"], [LEGACY_DOMAIN_SEPARATOR_TYPEHASH, safe]))
    return Web3.keccak(
        encode(["bytes32", "uint256", "address"], [DOMAIN_SEPARATOR_TYPEHASH, chain_id, safe])
    )


def safe_tx_struct_hash(envelope: TransactionEnvelope) -> bytes:
    return Web3.keccak(
        encode(
            [
                "bytes32",
                "address",
                "uint256",
                "bytes32",
                "uint8",
                "uint256",
                "uint256",
                "uint256",
                "address",
                "address",
                "uint256",
            ],
            [
                SAFE_TX_TYPEHASH,
                Web3.to_checksum_address(envelope.to),
                envelope.value,
                Web3.keccak(envelope.data),
                int(envelope.operation),
                envelope.safe_tx_gas,
                envelope.base_gas,
                envelope.gas_price,
                Web3.to_checksum_address(envelope.gas_token),
                Web3.to_checksum_address(envelope.refund_receiver),
                envelope.nonce,
            ],
        )
    )


def compute_safe_tx_hash(
    envelope: TransactionEnvelope,
    chain_id: int,
    safe_version: Optional[str] = None,
) -> ProposalHash:
    """Deterministic hash binding the envelope to its chain and Safe."""
    digest = Web3.keccak(
        b"\x19\x01"
        + domain_separator(chain_id, envelope.safe_address, safe_version)
        + safe_tx_struct_hash(envelope)
    )
    return ProposalHash(bytes(digest))
