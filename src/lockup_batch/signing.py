"""Signers for Safe transaction hashes.

Signatures use Safe's ``eth_sign`` flavour: the device signs the 32-byte
``safeTxHash`` as an EIP-191 personal message and ``v`` is shifted by 4
(27/28 -> 31/32) so the Safe contract knows to apply the message prefix when
recovering the owner.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Protocol, Tuple

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from .errors import (
    ConfigurationError,
    DeviceNotConnected,
    SignatureMismatch,
    SignerError,
    TransportTimeout,
    UserRejectedOnDevice,
)
from .models import ProposalHash, Signature

logger = logging.getLogger(__name__)

ETH_SIGN_V_OFFSET = 4

# APDU status word for "conditions of use not satisfied" (denied on device)
SW_USER_REJECTED = 0x6985


def to_safe_signature(v: int, r: int, s: int) -> bytes:
    """Pack an ``eth_sign`` signature the way Safe expects it."""
    if v in (0, 1):
        v += 27
    if v not in (27, 28):
        raise SignerError(f"Unexpected signature recovery id v={v}")
    return r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([v + ETH_SIGN_V_OFFSET])


def recover_signer(proposal_hash: ProposalHash, signature: bytes) -> str:
    """Address that produced a Safe ``eth_sign`` signature over the hash."""
    if len(signature) != 65:
        raise SignatureMismatch(f"Signature must be 65 bytes, got {len(signature)}", expected="")
    v = signature[64]
    if v not in (31, 32):
        raise SignatureMismatch(f"Unsupported Safe signature type v={v}", expected="")
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    return Account.recover_message(
        encode_defunct(primitive=proposal_hash.value),
        vrs=(v - ETH_SIGN_V_OFFSET, r, s),
    )


def verify_signature(proposal_hash: ProposalHash, signature: Signature) -> bool:
    """True if ``signature`` recovers to its declared signer."""
    try:
        recovered = recover_signer(proposal_hash, signature.data)
    except Exception as e:
        logger.warning(f"Signature verification failed: {e}")
        return False
    return recovered.lower() == signature.signer_address.lower()


def _checked(proposal_hash: ProposalHash, address: str, data: bytes) -> Signature:
    signature = Signature(signer_address=address, data=data)
    if not verify_signature(proposal_hash, signature):
        raise SignatureMismatch(
            f"Signature over {proposal_hash.hex()} does not recover to {address}",
            expected=address,
        )
    return signature


class Signer(ABC):
    """Abstract interface for signing a proposal hash."""

    @abstractmethod
    def get_address(self, derivation_path: str) -> str:
        """Get the signing address for a derivation path."""
        pass

    @abstractmethod
    def sign(self, proposal_hash: ProposalHash, derivation_path: str) -> Signature:
        """Sign the hash; the result is verified before it is returned."""
        pass

    def reconnect(self) -> None:
        """Re-establish the transport after a connection failure."""

    def close(self) -> None:
        """Release the device, if any."""


class LocalAccountSigner(Signer):
    """Software signer backed by an in-memory key (development and tests).

    Signatures are deterministic (RFC 6979), so a fixed key yields
    known-answer signatures.
    """

    def __init__(self, private_key: str):
        if not private_key:
            raise ConfigurationError("Local signer needs a private key", "signer.private_key")
        self._account = Account.from_key(private_key)

    def get_address(self, derivation_path: str = "") -> str:
        return self._account.address

    def sign(self, proposal_hash: ProposalHash, derivation_path: str = "") -> Signature:
        signed = self._account.sign_message(encode_defunct(primitive=proposal_hash.value))
        data = to_safe_signature(signed.v, signed.r, signed.s)
        logger.debug(f"Signed {proposal_hash.hex()} with local key {self._account.address}")
        return _checked(proposal_hash, self._account.address, data)


# ============ Hardware ============


class HardwareTransport(Protocol):
    """Device channel: address lookup and ``eth_sign`` over a 32-byte hash.

    Implementations raise DeviceNotConnected, UserRejectedOnDevice or
    TransportTimeout for device-level failures.
    """

    def get_address(self, derivation_path: str) -> str:
        ...

    def sign_hash(self, derivation_path: str, message_hash: bytes) -> Tuple[int, int, int]:
        ...


class LedgerTransport:
    """Ledger Nano over USB HID via ``ledgereth``.

    The Ethereum app must be open on the device. The dongle is opened lazily
    and reused until :meth:`reconnect`.
    """

    def __init__(self, dongle: Any = None):
        self._dongle = dongle

    @contextmanager
    def _device_errors(self, action: str) -> Iterator[None]:
        from ledgereth import exceptions as ledger_errors

        try:
            yield
        except ledger_errors.LedgerCancel as e:
            raise UserRejectedOnDevice(f"{action} rejected on device") from e
        except (ledger_errors.LedgerNotFound, ledger_errors.LedgerLocked) as e:
            raise DeviceNotConnected(f"Ledger not available for {action}: {e}") from e
        except ledger_errors.LedgerAppNotOpened as e:
            raise DeviceNotConnected(f"Open the Ethereum app on the Ledger ({action})") from e
        except TimeoutError as e:
            raise TransportTimeout(f"Ledger did not answer during {action}") from e
        except ledger_errors.LedgerError as e:
            raise SignerError(f"Ledger error during {action}: {e}") from e
        except Exception as e:
            # ledgerblue CommException carries the APDU status word
            if getattr(e, "sw", None) == SW_USER_REJECTED:
                raise UserRejectedOnDevice(f"{action} rejected on device") from e
            if isinstance(e, OSError):
                raise DeviceNotConnected(f"Ledger transport error during {action}: {e}") from e
            raise

    def _get_dongle(self) -> Any:
        if self._dongle is None:
            from ledgereth.comms import init_dongle

            with self._device_errors("connect"):
                self._dongle = init_dongle()
        return self._dongle

    def close(self) -> None:
        if self._dongle is not None:
            close = getattr(self._dongle, "close", None)
            if close:
                close()
        self._dongle = None

    def reconnect(self) -> None:
        self.close()

    def get_address(self, derivation_path: str) -> str:
        from ledgereth.accounts import get_account_by_path

        dongle = self._get_dongle()
        with self._device_errors("get_address"):
            account = get_account_by_path(derivation_path, dongle=dongle)
        return account.address

    def sign_hash(self, derivation_path: str, message_hash: bytes) -> Tuple[int, int, int]:
        from ledgereth.messages import sign_message

        dongle = self._get_dongle()
        with self._device_errors("sign"):
            signed = sign_message(message_hash, sender_path=derivation_path, dongle=dongle)
        return signed.v, signed.r, signed.s


class HardwareSigner(Signer):
    """Signer whose key never leaves the device.

    Never retries by itself: a refusal on the device is final, and connection
    problems are surfaced so the operator can decide to reconnect.
    """

    def __init__(self, transport: HardwareTransport):
        self._transport = transport
        self._addresses: Dict[str, str] = {}

    def get_address(self, derivation_path: str) -> str:
        if derivation_path not in self._addresses:
            address = self._transport.get_address(derivation_path)
            self._addresses[derivation_path] = Web3.to_checksum_address(address)
        return self._addresses[derivation_path]

    def sign(self, proposal_hash: ProposalHash, derivation_path: str) -> Signature:
        address = self.get_address(derivation_path)
        logger.info(f"Requesting signature for {proposal_hash.hex()} from device ({derivation_path})")
        v, r, s = self._transport.sign_hash(derivation_path, proposal_hash.value)
        return _checked(proposal_hash, address, to_safe_signature(v, r, s))

    def reconnect(self) -> None:
        reconnect = getattr(self._transport, "reconnect", None)
        if reconnect:
            reconnect()
        self._addresses.clear()

    def close(self) -> None:
        close = getattr(self._transport, "close", None)
        if close:
            close()


def create_signer(kind: str, private_key: str = "", transport: Optional[HardwareTransport] = None) -> Signer:
    """Signer for the configured kind."""
    if kind == "local":
        return LocalAccountSigner(private_key)
    if kind == "ledger":
        return HardwareSigner(transport or LedgerTransport())
    raise ConfigurationError(f"Unknown signer kind: {kind}", "signer.kind")
