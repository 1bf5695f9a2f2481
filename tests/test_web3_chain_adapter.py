"""Tests for decoding web3 events into chain-neutral models."""

from hexbytes import HexBytes
from web3.datastructures import AttributeDict

from jobpipe.adapters.web3_chain_adapter import TRANSFER_EVENT_ABI, decode_transfer

TOKEN = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


class TestDecodeTransfer:
    def test_decodes_attribute_dict_event(self):
        event = AttributeDict(
            {
                "args": AttributeDict(
                    {"from": "0x" + "B" * 40, "to": "0x" + "A" * 40, "value": 50_000_000}
                ),
                "event": "Transfer",
                "transactionHash": HexBytes("0x" + "12" * 32),
                "blockNumber": 1234,
                "address": TOKEN,
            }
        )

        transfer = decode_transfer(event)

        assert transfer.transaction_hash == "0x" + "12" * 32
        assert transfer.block_number == 1234
        assert transfer.value == 50_000_000
        assert transfer.from_address == "0x" + "B" * 40
        assert transfer.token_address == TOKEN

    def test_string_hashes_pass_through(self):
        event = {
            "args": {"from": "0x" + "1" * 40, "to": "0x" + "2" * 40, "value": 1},
            "transactionHash": "0x" + "ab" * 32,
            "blockNumber": 1,
        }

        transfer = decode_transfer(event)

        assert transfer.transaction_hash == "0x" + "ab" * 32
        assert transfer.token_address is None

    def test_abi_declares_indexed_transfer_parties(self):
        (event_abi,) = TRANSFER_EVENT_ABI
        indexed = [entry["name"] for entry in event_abi["inputs"] if entry["indexed"]]

        assert event_abi["name"] == "Transfer"
        assert indexed == ["from", "to"]
