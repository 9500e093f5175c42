"""
Shared fixtures for the gh-bounties settlement tests.
"""

from typing import List, Optional

import pytest

from ghbounties.bounty_types import (
    Bounty, Cursor, EventPage, FundingStatus, LedgerEvent, TreasuryFundingIntent,
    TreasuryPayoutIntent,
)
from ghbounties.settlement import BridgeResult
from ghbounties.sources import PullLedgerSource
from ghbounties.store import SettlementStore


# Well-known development keys (Hardhat accounts #0 and #1)
KEY_A = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ADDR_A = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
KEY_B = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
ADDR_B = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

BOUNTY_ID = "0x" + "ab" * 32
OTHER_BOUNTY_ID = "0x" + "cd" * 32
REPO_HASH = "0x" + "11" * 32
TOKEN = "0x" + "22" * 20
FUNDER = "0x" + "33" * 20
RECIPIENT = "0x" + "44" * 20
CONTRACT = "0x" + "55" * 20


# ============================================================================
# TEST DATA
# ============================================================================

def make_event(kind: str, position: int, log_index: int = 0, **fields) -> LedgerEvent:
    """Create a ledger event keyed like an EVM log."""
    tx_id = "0x" + f"{position:04x}{log_index:04x}".rjust(64, "0")
    fields.setdefault("bounty_id", BOUNTY_ID)
    return LedgerEvent(
        dedup_key=f"{tx_id}:{log_index}",
        kind=kind,
        fields=fields,
        position=position,
        tx_id=tx_id,
        seq=log_index,
    )


def created_event(position: int = 1, **fields) -> LedgerEvent:
    fields.setdefault("repo_hash", REPO_HASH)
    fields.setdefault("issue_number", 7)
    fields.setdefault("metadata_uri", "https://github.com/acme/widgets/issues/7")
    return make_event("BountyCreated", position, **fields)


def funded_event(position: int = 2, amount: int = 1000, log_index: int = 0, **fields) -> LedgerEvent:
    fields.setdefault("token", TOKEN)
    fields.setdefault("funder", FUNDER)
    fields.setdefault("locked_until", 0)
    return make_event("BountyFunded", position, log_index, amount=amount, **fields)


def paid_event(position: int = 3, amount: int = 400, log_index: int = 0) -> LedgerEvent:
    return make_event("PaidOut", position, log_index, token=TOKEN, recipient=RECIPIENT,
                      amount=amount)


def refunded_event(position: int = 4, amount: int = 100, log_index: int = 0) -> LedgerEvent:
    return make_event("Refunded", position, log_index, token=TOKEN, funder=FUNDER,
                      amount=amount)


class FakeSource(PullLedgerSource):
    """In-memory source paging a fixed event list by position."""

    def __init__(self, events: List[LedgerEvent] = None, page_size: int = 10,
                 source_key: str = "evm:31337:" + CONTRACT):
        self.events = list(events or [])
        self.page_size = page_size
        self.poll_interval = 0.01
        self.source_key = source_key
        self.queries: List[Optional[Cursor]] = []

    def query_events(self, cursor: Optional[Cursor], page_size: int = None) -> EventPage:
        self.queries.append(cursor)
        after = cursor.position if cursor is not None else 0
        pending = [e for e in self.events if e.position > after]
        page = pending[: page_size or self.page_size]
        if not page:
            return EventPage([], cursor or Cursor(position=0), False)
        return EventPage(page, Cursor(position=page[-1].position), len(pending) > len(page))


class FakeMinter:
    """Records mint calls; fails with `error` when set."""

    def __init__(self, error: Exception = None):
        self.calls = []
        self.error = error

    def mint(self, destination_chain, attestation, signature):
        self.calls.append((destination_chain, attestation, signature))
        if self.error is not None:
            raise self.error
        return "0x" + f"{len(self.calls):064x}"


class FakeBridge:
    """Records bridge calls; fails with `error` when set."""

    def __init__(self, error: Exception = None):
        self.calls = []
        self.error = error

    def bridge(self, source_chain, destination_chain, recipient, amount):
        self.calls.append((source_chain, destination_chain, recipient, amount))
        if self.error is not None:
            raise self.error
        return BridgeResult(tx_ids=["0x" + "aa" * 32, "0x" + "bb" * 32])


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def store(tmp_path):
    """File-backed store in a temp dir."""
    s = SettlementStore(str(tmp_path / "ghbounties.db"))
    yield s
    s.close()


@pytest.fixture
def bounty(store):
    """An indexed bounty."""
    b = Bounty(bounty_id=BOUNTY_ID, source_key="evm:31337:" + CONTRACT, repo_hash=REPO_HASH,
               issue_number=7, metadata_uri="https://github.com/acme/widgets/issues/7")
    store.upsert_bounty(b)
    return b


def add_credit(store: SettlementStore, bounty_id: str = BOUNTY_ID, amount: int = 100):
    """Credit the treasury ledger as a minted funding would."""
    store.ensure_ledger(bounty_id)
    store.adjust_ledger(bounty_id, funded=amount, available=amount)


def submitted_funding(store: SettlementStore, intent_id: str = "fund-1",
                      amount: int = 50) -> TreasuryFundingIntent:
    """A funding intent already carrying a Gateway attestation."""
    intent = TreasuryFundingIntent(
        id=intent_id, bounty_id=BOUNTY_ID, sender=ADDR_A.lower(), source_chain="84532",
        amount=amount,
    )
    store.create_funding_intent(intent)
    store.transition_funding_intent(
        intent_id, FundingStatus.CREATED, FundingStatus.TRANSFER_SUBMITTED,
        signature="0xsig", attestation="0x" + "01" * 8, attestation_signature="0x" + "02" * 8,
    )
    return store.get_funding_intent(intent_id)


def payout_intent(intent_id: str = "pay-1", amount: int = 40) -> TreasuryPayoutIntent:
    return TreasuryPayoutIntent(id=intent_id, bounty_id=BOUNTY_ID, recipient=RECIPIENT,
                                destination_chain="Base_Sepolia", amount=amount)
