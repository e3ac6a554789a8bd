"""Safe transaction envelope construction.

A batch of one call is executed by the Safe directly. Several calls are packed
for MultiSendCallOnly and executed through a single delegate call:

    multiSend(bytes transactions)
    transactions = concat(uint8 operation, address to, uint256 value,
                          uint256 dataLength, bytes data)

References:
- https://github.com/safe-global/safe-smart-account/blob/main/contracts/libraries/MultiSendCallOnly.sol
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol, Sequence

from eth_abi import encode
from web3 import Web3

from .errors import EmptyBatch, InvalidAddress
from .models import EncodedCall, OperationType, TransactionEnvelope

logger = logging.getLogger(__name__)

MULTI_SEND_SELECTOR = bytes(Web3.keccak(text="multiSend(bytes)")[:4])


class NonceSource(Protocol):
    """Authority for the next valid nonce of a multisig account."""

    def next_nonce(self, safe_address: str) -> int:
        ...


def checksum_address(address: str, what: str = "Address") -> str:
    """Checksummed form of ``address`` or :class:`InvalidAddress`."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidAddress(f"{what} is not a valid address: {address!r}", address)
    return Web3.to_checksum_address(address)


def pack_multi_send_transactions(calls: Iterable[EncodedCall]) -> bytes:
    """Tightly packed transaction list understood by MultiSend."""
    packed = b""
    for call in calls:
        packed += int(call.operation).to_bytes(1, "big")
        packed += bytes.fromhex(checksum_address(call.target, "Call target")[2:])
        packed += call.value.to_bytes(32, "big")
        packed += len(call.calldata).to_bytes(32, "big")
        packed += call.calldata
    return packed


def encode_multi_send(calls: Iterable[EncodedCall]) -> bytes:
    """``multiSend(bytes)`` call data for a list of calls."""
    return MULTI_SEND_SELECTOR + encode(["bytes"], [pack_multi_send_transactions(calls)])


class EnvelopeBuilder:
    """Assembles calls and a multisig address into a Safe transaction."""

    def __init__(self, multi_send_address: str, nonce_source: Optional[NonceSource] = None):
        self._multi_send_address = multi_send_address
        self._nonce_source = nonce_source

    def build(
        self,
        safe_address: str,
        calls: Sequence[EncodedCall],
        nonce: Optional[int] = None,
    ) -> TransactionEnvelope:
        """Build the envelope.

        Args:
            safe_address: Multisig account
            calls: Calls to execute, in order
            nonce: Explicit nonce; when omitted the nonce source is asked

        Raises:
            EmptyBatch: no calls
            InvalidAddress: malformed Safe, target or MultiSend address
        """
        calls = tuple(calls)
        if not calls:
            raise EmptyBatch("Cannot build a Safe transaction without calls")

        safe = checksum_address(safe_address, "Safe address")
        for call in calls:
            checksum_address(call.target, "Call target")

        if nonce is None:
            if self._nonce_source is None:
                raise ValueError("No nonce given and no nonce source configured")
            nonce = self._nonce_source.next_nonce(safe)
        if nonce < 0:
            raise ValueError(f"Nonce must be non-negative, got {nonce}")

        if len(calls) == 1:
            call = calls[0]
            to = checksum_address(call.target, "Call target")
            value = call.value
            data = call.calldata
            operation = call.operation
        else:
            # MultiSendCallOnly rejects nested delegate calls
            if any(c.operation != OperationType.CALL for c in calls):
                raise ValueError("Batched calls must all use OperationType.CALL")
            to = checksum_address(self._multi_send_address, "MultiSend address")
            value = 0
            data = encode_multi_send(calls)
            operation = OperationType.DELEGATE_CALL

        envelope = TransactionEnvelope(
            safe_address=safe,
            calls=calls,
            nonce=nonce,
            to=to,
            value=value,
            data=data,
            operation=operation,
        )
        logger.info(
            f"Built Safe transaction for {safe}: {len(calls)} call(s), nonce={nonce}, "
            f"operation={operation.name}"
        )
        return envelope
