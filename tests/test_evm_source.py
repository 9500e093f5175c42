"""
Tests for ghbounties/evm_source.py

Log decoding, block-range paging and the start block rule.
"""

import threading
from unittest.mock import Mock

import pytest
from eth_abi import encode as abi_encode

from ghbounties.bounty_types import Cursor
from ghbounties.errors import MalformedEventError, SourceConfigError
from ghbounties.evm_source import (
    BOUNTY_EVENTS_ABI, EVMLedgerSource, decode_log, event_signature, event_topic,
)

from conftest import BOUNTY_ID, CONTRACT, FUNDER, REPO_HASH, TOKEN


ABI_BY_NAME = {abi["name"]: abi for abi in BOUNTY_EVENTS_ABI}


def topic(type_: str, value) -> bytes:
    return abi_encode([type_], [value])


def make_log(name: str, indexed: list, data_types: list = None, data_values: list = None,
             block: int = 10, log_index: int = 0, tx_byte: int = 0xAA) -> dict:
    """Build a raw log the way eth_getLogs returns it."""
    abi = ABI_BY_NAME[name]
    types = [i["type"] for i in abi["inputs"] if i["indexed"]]
    return {
        "address": CONTRACT,
        "topics": [event_topic(abi)] + [topic(t, v) for t, v in zip(types, indexed)],
        "data": abi_encode(data_types, data_values) if data_types else b"",
        "blockNumber": block,
        "transactionHash": bytes([tx_byte]) * 32,
        "logIndex": log_index,
        "removed": False,
    }


def funded_log(block: int = 10, log_index: int = 0, amount: int = 5 * 10 ** 6) -> dict:
    return make_log("BountyFunded",
                    [bytes.fromhex(BOUNTY_ID[2:]), TOKEN, FUNDER],
                    ["uint256", "uint64"], [amount, 1_700_000_000],
                    block=block, log_index=log_index)


def make_source(head: int = 100, logs=None, **kwargs) -> EVMLedgerSource:
    w3 = Mock()
    w3.eth.block_number = head
    w3.eth.chain_id = 31337
    w3.eth.get_logs.return_value = logs or []
    return EVMLedgerSource(w3, 31337, CONTRACT, **kwargs)


# ============================================================================
# DECODING
# ============================================================================

class TestDecodeLog:
    """Tests for raw log decoding."""

    def test_signature(self):
        assert event_signature(ABI_BY_NAME["BountyFunded"]) == \
            "BountyFunded(bytes32,address,address,uint256,uint64)"

    def test_funded(self):
        event = decode_log(funded_log(block=12, log_index=3))
        assert event.kind == "BountyFunded"
        assert event.fields == {
            "bounty_id": BOUNTY_ID,
            "token": TOKEN,
            "funder": FUNDER,
            "amount": 5 * 10 ** 6,
            "locked_until": 1_700_000_000,
        }
        assert event.dedup_key == "0x" + "aa" * 32 + ":3"
        assert event.position == 12
        assert event.seq == 3

    def test_created_with_string(self):
        entry = make_log("BountyCreated",
                         [bytes.fromhex(BOUNTY_ID[2:]), bytes.fromhex(REPO_HASH[2:]), 7],
                         ["string"], ["https://github.com/acme/widgets/issues/7"])
        event = decode_log(entry)
        assert event.fields["repo_hash"] == REPO_HASH
        assert event.fields["issue_number"] == 7
        assert event.fields["metadata_uri"] == "https://github.com/acme/widgets/issues/7"

    def test_hex_string_topics(self):
        """Topics given as 0x strings decode like bytes."""
        entry = funded_log()
        entry["topics"] = ["0x" + t.hex() if isinstance(t, bytes) else t for t in entry["topics"]]
        assert decode_log(entry).fields["token"] == TOKEN

    def test_unknown_topic(self):
        entry = funded_log()
        entry["topics"][0] = "0x" + "00" * 32
        with pytest.raises(MalformedEventError):
            decode_log(entry)

    def test_truncated_data(self):
        entry = funded_log()
        entry["data"] = entry["data"][:10]
        with pytest.raises(MalformedEventError):
            decode_log(entry)


# ============================================================================
# PAGING
# ============================================================================

class TestQueryEvents:
    """Tests for block-range pages."""

    def test_page_covers_chunk(self):
        source = make_source(head=100, logs=[funded_log(block=52)], block_chunk=10)
        page = source.query_events(Cursor(position=49))
        source.w3.eth.get_logs.assert_called_with({
            "address": source.contract_address, "fromBlock": 50, "toBlock": 59,
        })
        assert page.next_cursor.position == 59
        assert page.has_more is True
        assert len(page.events) == 1

    def test_last_page_stops_at_head(self):
        source = make_source(head=55, block_chunk=10)
        page = source.query_events(Cursor(position=49))
        assert page.next_cursor.position == 55
        assert page.has_more is False

    def test_caught_up_page_is_empty(self):
        source = make_source(head=55)
        page = source.query_events(Cursor(position=55))
        assert page.events == []
        assert page.next_cursor.position == 55
        assert not source.w3.eth.get_logs.called

    def test_logs_sorted_and_removed_dropped(self):
        second = funded_log(block=20, log_index=1)
        first = funded_log(block=20, log_index=0)
        removed = funded_log(block=21)
        removed["removed"] = True
        source = make_source(head=100, logs=[second, removed, first])
        events = source.query_events(Cursor(position=15)).events
        assert [e.seq for e in events] == [0, 1]

    def test_undecodable_log_dropped(self):
        bad = funded_log(block=20)
        bad["topics"][0] = "0x" + "00" * 32
        source = make_source(head=100, logs=[bad, funded_log(block=21)])
        assert len(source.query_events(Cursor(position=15)).events) == 1


class TestStartCursor:
    """Tests for where backfill begins."""

    def test_persisted_cursor(self):
        source = make_source(head=10_000)
        assert source.start_cursor(Cursor(position=9_500), safety_window=2000).position == 9_500

    def test_safety_window_floor(self):
        """An old cursor is lifted to head - safety_window."""
        source = make_source(head=10_000)
        assert source.start_cursor(Cursor(position=10), safety_window=2000).position == 7_999

    def test_configured_start_block(self):
        source = make_source(head=10_000, start_block=9_000)
        assert source.start_cursor(None, safety_window=2000).position == 8_999

    def test_clamped_to_head(self):
        source = make_source(head=100, start_block=500)
        assert source.start_cursor(None).position == 99

    def test_genesis_without_window(self):
        source = make_source(head=100)
        assert source.start_cursor(None).position == -1


# ============================================================================
# VERIFY / SUBSCRIBE
# ============================================================================

class TestVerify:
    """Tests for deployment checks."""

    def test_wrong_chain(self):
        source = make_source()
        source.w3.eth.chain_id = 1
        with pytest.raises(SourceConfigError):
            source.verify()

    def test_missing_code(self):
        source = make_source()
        source.w3.eth.get_code.return_value = b""
        with pytest.raises(SourceConfigError):
            source.verify()

    def test_ok(self):
        source = make_source()
        source.w3.eth.get_code.return_value = b"\x60\x80"
        source.verify()


class TestSubscribe:
    """Tests for the log filter subscription."""

    def test_catch_up_then_filter(self):
        """Blocks between the cursor and the filter are fetched, then filter entries."""
        source = make_source(head=30, logs=[funded_log(block=25)], block_chunk=100,
                             poll_interval=0.01)
        log_filter = Mock()
        log_filter.get_new_entries.side_effect = [[funded_log(block=31, log_index=2)], []] + [[]] * 1000
        source.w3.eth.filter.return_value = log_filter

        pages = []
        got_filter_page = threading.Event()

        def on_page(page):
            pages.append(page)
            if page.next_cursor.position == 31:
                got_filter_page.set()

        subscription = source.subscribe(Cursor(position=20), on_page)
        assert got_filter_page.wait(5)
        subscription.close()

        source.w3.eth.filter.assert_called_with({"address": source.contract_address,
                                                 "fromBlock": 21})
        assert pages[0].next_cursor.position == 30
        assert len(pages[0].events) == 1
        assert pages[-1].events[0].position == 31
        assert not subscription.active

    def test_filter_reinstalled_after_error(self):
        source = make_source(head=30, block_chunk=100, poll_interval=0.01)
        broken = Mock()
        broken.get_new_entries.side_effect = ValueError("filter not found")
        healthy = Mock()
        healthy.get_new_entries.return_value = []
        reinstalled = threading.Event()

        def make_filter(params):
            if source.w3.eth.filter.call_count >= 2:
                reinstalled.set()
                return healthy
            return broken

        source.w3.eth.filter.side_effect = make_filter
        subscription = source.subscribe(Cursor(position=30), lambda page: None)
        assert reinstalled.wait(5)
        subscription.close()

    def test_token_meta(self):
        source = make_source()
        erc20 = Mock()
        erc20.functions.decimals.return_value.call.return_value = 6
        erc20.functions.symbol.return_value.call.return_value = "USDC"
        source.w3.eth.contract.return_value = erc20
        assert source.token_meta(TOKEN) == (6, "USDC")
