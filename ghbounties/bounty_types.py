"""
gh-bounties settlement - Data Types

Read-model rows, source cursors and treasury intents.

Amounts are integers in base units (wei, mist, USDC 6-decimal subunits).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import time


ZERO_ADDRESS = "0x" + "0" * 40
SUI_COIN_TYPE = "0x2::sui::SUI"


class BountyStatus(Enum):
    """Bounty lifecycle as reported by the escrow contract."""
    OPEN = "OPEN"
    IMPLEMENTED = "IMPLEMENTED"
    CLOSED = "CLOSED"

    @classmethod
    def from_chain(cls, value: Any) -> "BountyStatus":
        """Map the on-chain uint8 (0 open, 1 implemented, anything else closed)."""
        if isinstance(value, BountyStatus):
            return value
        if isinstance(value, str) and value.upper() in cls.__members__:
            return cls[value.upper()]
        code = int(value)
        if code == 0:
            return cls.OPEN
        if code == 1:
            return cls.IMPLEMENTED
        return cls.CLOSED


class FundingStatus(Enum):
    CREATED = "created"
    TRANSFER_SUBMITTED = "transfer_submitted"
    CREDITED = "credited"
    FAILED = "failed"


class PayoutStatus(Enum):
    CREATED = "created"
    EXECUTING = "executing"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# =============================================================================
# SOURCE EVENTS
# =============================================================================

@dataclass(frozen=True)
class Cursor:
    """
    Resume point for one ledger source.

    position is monotonic: the last processed block on EVM, the number of
    events consumed on Sui. tx_id/seq carry the opaque page cursor for
    sources that need one.
    """
    position: int
    tx_id: str = ""
    seq: int = 0

    def to_dict(self) -> dict:
        return {"position": self.position, "tx_id": self.tx_id, "seq": self.seq}


@dataclass
class LedgerEvent:
    """One decoded chain event, keyed for idempotent application."""
    dedup_key: str
    kind: str
    fields: Dict[str, Any]
    position: int = 0
    tx_id: str = ""
    seq: int = 0


@dataclass
class EventPage:
    events: List[LedgerEvent]
    next_cursor: Cursor
    has_more: bool = False


# =============================================================================
# READ MODEL
# =============================================================================

@dataclass
class Repo:
    repo_hash: str
    maintainer: str = ZERO_ADDRESS


@dataclass
class Bounty:
    bounty_id: str
    source_key: str = ""
    repo_hash: str = ""
    issue_number: int = 0
    metadata_uri: str = ""
    status: BountyStatus = BountyStatus.OPEN
    admin: str = ""

    def to_dict(self) -> dict:
        return {
            "bounty_id": self.bounty_id,
            "source_key": self.source_key,
            "repo_hash": self.repo_hash,
            "issue_number": self.issue_number,
            "metadata_uri": self.metadata_uri,
            "status": self.status.value,
            "admin": self.admin,
        }


@dataclass
class BountyAsset:
    """Per (bounty, token) totals. escrowed = funded - paid - refunded."""
    bounty_id: str
    token: str
    funded: int = 0
    escrowed: int = 0
    paid: int = 0
    refunded: int = 0


# =============================================================================
# TREASURY
# =============================================================================

@dataclass
class TreasuryFundingIntent:
    """
    A deposit travelling from a source chain into the Arc treasury.

    created -> transfer_submitted (signature + attestation attached)
            -> credited (minted on Arc) | failed
    """
    id: str
    bounty_id: str
    sender: str
    source_chain: str
    amount: int
    status: FundingStatus = FundingStatus.CREATED
    burn_intent: Optional[Dict[str, Any]] = None
    signature: str = ""
    attestation: str = ""
    attestation_signature: str = ""
    mint_tx_id: str = ""
    error: str = ""
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bounty_id": self.bounty_id,
            "sender": self.sender,
            "source_chain": self.source_chain,
            "amount": str(self.amount),
            "status": self.status.value,
            "burn_intent": self.burn_intent,
            "signature": self.signature,
            "attestation": self.attestation,
            "attestation_signature": self.attestation_signature,
            "mint_tx_id": self.mint_tx_id,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class TreasuryPayoutIntent:
    """
    A payout leaving the Arc treasury through the bridge.

    created (available reserved) -> executing -> confirmed | failed (restored)
    """
    id: str
    bounty_id: str
    recipient: str
    destination_chain: str
    amount: int
    status: PayoutStatus = PayoutStatus.CREATED
    bridge_tx_id: str = ""
    final_tx_id: str = ""
    error: str = ""
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bounty_id": self.bounty_id,
            "recipient": self.recipient,
            "destination_chain": self.destination_chain,
            "amount": str(self.amount),
            "status": self.status.value,
            "bridge_tx_id": self.bridge_tx_id,
            "final_tx_id": self.final_tx_id,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class TreasuryBountyLedger:
    bounty_id: str
    total_funded: int = 0
    total_paid: int = 0
    available: int = 0

    def to_dict(self) -> dict:
        return {
            "bounty_id": self.bounty_id,
            "total_funded": str(self.total_funded),
            "total_paid": str(self.total_paid),
            "available": str(self.available),
        }
