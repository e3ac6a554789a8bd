"""Contract call encoding against bundled ABI descriptions.

Struct arguments may be passed the way ethers accepts them: as mappings keyed
by component name, or as positional sequences. Integer parameters accept
``int`` or numeric strings. Everything else must already be a value eth_abi
can encode for the declared type.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi import is_encodable
from eth_abi.exceptions import DecodingError, EncodingError as AbiEncodingError
from web3 import Web3

from .errors import EncodingError
from .models import EncodedCall, OperationType, TransferInstruction

logger = logging.getLogger(__name__)

ABI_DIR = Path(__file__).parent / "abi"


def _canonical_type(param: Dict[str, Any]) -> str:
    """ABI type with tuples expanded, e.g. ``(address,uint256)[]``."""
    typ = param["type"]
    if typ.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    return typ


def _element_param(param: Dict[str, Any]) -> Dict[str, Any]:
    typ = param["type"]
    return {**param, "type": typ[: typ.rindex("[")]}


class ContractInterface:
    """Callable function signatures of one contract."""

    def __init__(self, name: str, abi: List[Dict[str, Any]]):
        self.name = name
        self.abi = abi
        self._functions = [e for e in abi if e.get("type") == "function"]

    @classmethod
    def load(cls, name: str, abi_dir: Optional[Path] = None) -> "ContractInterface":
        """Load a bundled ABI artifact (``abi/<name>.json``)."""
        path = (abi_dir or ABI_DIR) / f"{name}.json"
        with open(path) as f:
            artifact = json.load(f)
        abi = artifact["abi"] if isinstance(artifact, dict) else artifact
        return cls(name, abi)

    @property
    def function_names(self) -> List[str]:
        return sorted({f["name"] for f in self._functions})

    def functions_named(self, name: str) -> List[Dict[str, Any]]:
        return [f for f in self._functions if f["name"] == name]

    def function(self, name: str, arity: Optional[int] = None) -> Dict[str, Any]:
        """Find a function entry by name (and argument count for overloads)."""
        candidates = self.functions_named(name)
        if not candidates:
            raise EncodingError(
                f"Function '{name}' not found in {self.name} interface", name
            )
        if arity is None:
            return candidates[0]
        for fn in candidates:
            if len(fn.get("inputs", [])) == arity:
                return fn
        expected = sorted({len(f.get("inputs", [])) for f in candidates})
        raise EncodingError(
            f"{self.name}.{name} takes {expected} argument(s), got {arity}", name
        )

    @staticmethod
    def signature(fn: Dict[str, Any]) -> str:
        types = ",".join(_canonical_type(p) for p in fn.get("inputs", []))
        return f"{fn['name']}({types})"

    def selector(self, fn: Dict[str, Any]) -> bytes:
        return bytes(Web3.keccak(text=self.signature(fn))[:4])


# ============ Argument normalization ============


def _normalize(param: Dict[str, Any], value: Any, fn_name: str) -> Any:
    typ = param["type"]
    label = param.get("name") or typ

    if typ.endswith("]"):
        if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Sequence):
            raise EncodingError(f"Argument '{label}' must be an array for type {typ}", fn_name)
        element = _element_param(param)
        return [_normalize(element, v, fn_name) for v in value]

    if typ == "tuple":
        components = param.get("components", [])
        if isinstance(value, Mapping):
            missing = [c["name"] for c in components if c["name"] not in value]
            if missing:
                raise EncodingError(
                    f"Struct '{label}' is missing field(s): {', '.join(missing)}", fn_name
                )
            value = [value[c["name"]] for c in components]
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            raise EncodingError(f"Argument '{label}' must be a struct", fn_name)
        if len(value) != len(components):
            raise EncodingError(
                f"Struct '{label}' expects {len(components)} fields, got {len(value)}", fn_name
            )
        return tuple(_normalize(c, v, fn_name) for c, v in zip(components, value))

    if typ.startswith(("uint", "int")):
        if isinstance(value, bool):
            raise EncodingError(f"Argument '{label}' must be an integer, got bool", fn_name)
        if isinstance(value, str):
            text = value.strip()
            try:
                return int(text, 16) if text.lower().startswith("0x") else int(text)
            except ValueError:
                raise EncodingError(
                    f"Argument '{label}' is not an integer: {value!r}", fn_name
                ) from None
        return value

    if typ == "address":
        if isinstance(value, str) and Web3.is_address(value):
            return Web3.to_checksum_address(value)
        return value

    if typ.startswith("bytes") and isinstance(value, str) and value.startswith("0x"):
        try:
            return bytes.fromhex(value[2:])
        except ValueError:
            raise EncodingError(f"Argument '{label}' is not valid hex", fn_name) from None

    return value


def _denormalize(param: Dict[str, Any], value: Any) -> Any:
    typ = param["type"]
    if typ.endswith("]"):
        element = _element_param(param)
        return [_denormalize(element, v) for v in value]
    if typ == "tuple":
        return {
            c["name"]: _denormalize(c, v)
            for c, v in zip(param.get("components", []), value)
        }
    if typ == "address":
        return Web3.to_checksum_address(value)
    return value


# ============ Encode / decode ============


def encode(function_name: str, interface: ContractInterface, args: Iterable[Any]) -> bytes:
    """Encode a function call: 4-byte selector followed by ABI-encoded args."""
    args = list(args)
    fn = interface.function(function_name, len(args))
    params = fn.get("inputs", [])

    normalized = [_normalize(p, a, function_name) for p, a in zip(params, args)]
    types = [_canonical_type(p) for p in params]

    for param, typ, value in zip(params, types, normalized):
        if not is_encodable(typ, value):
            raise EncodingError(
                f"Argument '{param.get('name') or typ}' is not a valid {typ}: {value!r}",
                function_name,
            )

    try:
        encoded = abi_encode(types, normalized)
    except AbiEncodingError as e:
        raise EncodingError(str(e), function_name) from e

    return interface.selector(fn) + encoded


def decode(function_name: str, interface: ContractInterface, calldata: bytes) -> List[Any]:
    """Decode call data produced by :func:`encode` back into arguments."""
    if len(calldata) < 4:
        raise EncodingError("Call data shorter than a selector", function_name)

    selector = calldata[:4]
    candidates = [
        f for f in interface.functions_named(function_name)
        if interface.selector(f) == selector
    ]
    if not candidates:
        interface.function(function_name)  # raises if the name is unknown
        raise EncodingError(
            f"Selector 0x{selector.hex()} does not match {interface.name}.{function_name}",
            function_name,
        )

    params = candidates[0].get("inputs", [])
    types = [_canonical_type(p) for p in params]
    try:
        values = abi_decode(types, calldata[4:])
    except DecodingError as e:
        raise EncodingError(str(e), function_name) from e

    return [_denormalize(p, v) for p, v in zip(params, values)]


# ============ Batch calls ============


def encode_lockup_transfer(
    interface: ContractInterface,
    token_address: str,
    instructions: Iterable[TransferInstruction],
) -> bytes:
    """``TokenLockupFactory.transfer(token, TransferDetails[])`` call data."""
    return encode(
        "transfer",
        interface,
        [token_address, [i.as_struct() for i in instructions]],
    )


def encode_erc20_approve(interface: ContractInterface, spender: str, amount: int) -> bytes:
    """``ERC20.approve(spender, amount)`` call data."""
    return encode("approve", interface, [spender, amount])


def _checksum(address: str, what: str) -> str:
    if not isinstance(address, str) or not Web3.is_address(address):
        raise EncodingError(f"{what} is not a valid address: {address!r}")
    return Web3.to_checksum_address(address)


def build_batch_calls(
    instructions: Iterable[TransferInstruction],
    token_address: str,
    factory_address: str,
    factory_interface: ContractInterface,
    token_interface: Optional[ContractInterface] = None,
    include_approval: bool = False,
) -> List[EncodedCall]:
    """Calls for one batch: optional token approval, then the lockup transfer."""
    instructions = list(instructions)
    calls: List[EncodedCall] = []

    if include_approval:
        if token_interface is None:
            raise EncodingError("Approval requested without a token interface", "approve")
        total = sum(i.amount_base_units for i in instructions)
        calls.append(
            EncodedCall(
                target=_checksum(token_address, "Token address"),
                calldata=encode_erc20_approve(token_interface, factory_address, total),
                value=0,
                operation=OperationType.CALL,
                description=f"approve {total} to factory",
            )
        )

    calls.append(
        EncodedCall(
            target=_checksum(factory_address, "Factory address"),
            calldata=encode_lockup_transfer(factory_interface, token_address, instructions),
            value=0,
            operation=OperationType.CALL,
            description=f"lockup transfer x{len(instructions)}",
        )
    )
    logger.debug(f"Encoded {len(calls)} call(s) for {len(instructions)} transfer(s)")
    return calls
