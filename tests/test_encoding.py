"""Tests for encoding.py: ABI-driven call encoding."""
from __future__ import annotations

import pytest
from web3 import Web3

from lockup_batch.encoding import (
    ContractInterface,
    build_batch_calls,
    decode,
    encode,
    encode_erc20_approve,
    encode_lockup_transfer,
)
from lockup_batch.errors import EncodingError
from lockup_batch.models import OperationType, TransferInstruction

from conftest import BENEFICIARY, FACTORY_ADDRESS, TOKEN_ADDRESS

TRANSFER_CALLDATA = (
    "0x9ab58a1e"
    "000000000000000000000000dc6ff44d5d932cbd77b52e5612ba0529dc6226f1"
    "0000000000000000000000000000000000000000000000000000000000000040"
    "0000000000000000000000000000000000000000000000000000000000000001"
    "000000000000000000000000abcd000000000000000000000000000000001234"
    "00000000000000000000000000000000000000000000000000000000000f4240"
)

APPROVE_CALLDATA = (
    "0x095ea7b3"
    "00000000000000000000000031075dd5b0caff37690b2f700db60ad0a317a57a"
    "00000000000000000000000000000000000000000000000000000000000f4240"
)


# ============ ContractInterface ============


class TestContractInterface:
    def test_loads_bundled_abi(self, factory_interface):
        assert factory_interface.name == "TokenLockupFactory"
        assert factory_interface.function_names == ["transfer"]

    def test_signature_expands_tuples(self, factory_interface):
        fn = factory_interface.function("transfer")
        assert ContractInterface.signature(fn) == "transfer(address,(address,uint256)[])"

    def test_selector(self, factory_interface, token_interface):
        assert factory_interface.selector(factory_interface.function("transfer")).hex() == "9ab58a1e"
        assert token_interface.selector(token_interface.function("approve")).hex() == "095ea7b3"

    def test_unknown_function(self, factory_interface):
        with pytest.raises(EncodingError) as exc_info:
            factory_interface.function("withdraw")
        assert exc_info.value.function_name == "withdraw"

    def test_wrong_arity(self, factory_interface):
        with pytest.raises(EncodingError, match="argument"):
            factory_interface.function("transfer", 3)


# ============ encode / decode ============


class TestEncode:
    def test_known_transfer_calldata(self, factory_interface, instruction):
        """A single transfer encodes to the reference call data."""
        data = encode_lockup_transfer(factory_interface, TOKEN_ADDRESS, [instruction])
        assert "0x" + data.hex() == TRANSFER_CALLDATA

    def test_known_approve_calldata(self, token_interface):
        data = encode_erc20_approve(token_interface, FACTORY_ADDRESS, 1000000)
        assert "0x" + data.hex() == APPROVE_CALLDATA

    def test_struct_as_sequence_matches_mapping(self, factory_interface):
        as_mapping = encode(
            "transfer", factory_interface,
            [TOKEN_ADDRESS, [{"beneficiary": BENEFICIARY, "amount": 1000000}]],
        )
        as_sequence = encode("transfer", factory_interface, [TOKEN_ADDRESS, [(BENEFICIARY, "1000000")]])
        assert as_mapping == as_sequence

    def test_deterministic(self, factory_interface, instruction):
        first = encode_lockup_transfer(factory_interface, TOKEN_ADDRESS, [instruction])
        second = encode_lockup_transfer(factory_interface, TOKEN_ADDRESS, [instruction])
        assert first == second

    def test_decode_reproduces_arguments(self, factory_interface, instruction):
        data = encode_lockup_transfer(factory_interface, TOKEN_ADDRESS, [instruction])
        token, transfers = decode("transfer", factory_interface, data)
        assert token == Web3.to_checksum_address(TOKEN_ADDRESS)
        assert transfers == [{"beneficiary": Web3.to_checksum_address(BENEFICIARY), "amount": 1000000}]

    def test_empty_transfer_list_is_encodable(self, factory_interface):
        data = encode("transfer", factory_interface, [TOKEN_ADDRESS, []])
        assert decode("transfer", factory_interface, data)[1] == []

    def test_invalid_address_rejected(self, factory_interface):
        with pytest.raises(EncodingError):
            encode("transfer", factory_interface, ["0x1234", []])

    def test_negative_amount_rejected(self, factory_interface):
        with pytest.raises(EncodingError):
            encode("transfer", factory_interface, [TOKEN_ADDRESS, [(BENEFICIARY, -1)]])

    def test_non_numeric_amount_rejected(self, factory_interface):
        with pytest.raises(EncodingError, match="not an integer"):
            encode("transfer", factory_interface, [TOKEN_ADDRESS, [(BENEFICIARY, "lots")]])

    def test_bool_amount_rejected(self, factory_interface):
        with pytest.raises(EncodingError):
            encode("transfer", factory_interface, [TOKEN_ADDRESS, [(BENEFICIARY, True)]])

    def test_struct_missing_field(self, factory_interface):
        with pytest.raises(EncodingError, match="missing field"):
            encode("transfer", factory_interface, [TOKEN_ADDRESS, [{"beneficiary": BENEFICIARY}]])

    def test_array_expected(self, factory_interface):
        with pytest.raises(EncodingError, match="must be an array"):
            encode("transfer", factory_interface, [TOKEN_ADDRESS, "not-a-list"])

    def test_decode_rejects_foreign_selector(self, factory_interface):
        with pytest.raises(EncodingError, match="does not match"):
            decode("transfer", factory_interface, bytes.fromhex(APPROVE_CALLDATA[2:]))

    def test_decode_rejects_short_calldata(self, factory_interface):
        with pytest.raises(EncodingError):
            decode("transfer", factory_interface, b"\x9a\xb5")


# ============ build_batch_calls ============


class TestBuildBatchCalls:
    def test_transfer_only(self, factory_interface, instruction):
        calls = build_batch_calls([instruction], TOKEN_ADDRESS, FACTORY_ADDRESS, factory_interface)
        assert len(calls) == 1
        assert calls[0].target == Web3.to_checksum_address(FACTORY_ADDRESS)
        assert calls[0].operation == OperationType.CALL
        assert calls[0].value == 0
        assert "0x" + calls[0].calldata.hex() == TRANSFER_CALLDATA

    def test_with_approval_for_total(self, factory_interface, token_interface):
        instructions = [
            TransferInstruction(beneficiary=BENEFICIARY, amount="400000"),
            TransferInstruction(beneficiary=BENEFICIARY, amount="600000"),
        ]
        calls = build_batch_calls(
            instructions, TOKEN_ADDRESS, FACTORY_ADDRESS, factory_interface,
            token_interface=token_interface, include_approval=True,
        )
        assert len(calls) == 2
        assert calls[0].target == Web3.to_checksum_address(TOKEN_ADDRESS)
        assert "0x" + calls[0].calldata.hex() == APPROVE_CALLDATA
        assert calls[1].target == Web3.to_checksum_address(FACTORY_ADDRESS)

    def test_approval_needs_token_interface(self, factory_interface, instruction):
        with pytest.raises(EncodingError):
            build_batch_calls(
                [instruction], TOKEN_ADDRESS, FACTORY_ADDRESS, factory_interface, include_approval=True
            )

    def test_invalid_factory_address(self, factory_interface, instruction):
        with pytest.raises(EncodingError, match="Factory address"):
            build_batch_calls([instruction], TOKEN_ADDRESS, "0xnope", factory_interface)
