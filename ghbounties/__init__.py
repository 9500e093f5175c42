"""
gh-bounties settlement

Off-chain side of the GitHub bounty escrow.

Architecture:
  - Escrow contracts (EVM, Sui) = source of truth for bounty funds
  - Projectors = fold contract events into a SQLite read model
  - Treasury = Gateway deposits into Arc, bridge payouts out of it

Usage:
    from ghbounties import SettlementStore, EventProjector, EVMLedgerSource

    store = SettlementStore("ghbounties.db")
    source = EVMLedgerSource.from_config(EVMIndexerConfig.from_env())
    projector = EventProjector(source, store)
    projector.start()
"""

from .bounty_types import (
    Bounty, BountyAsset, BountyStatus, Cursor, EventPage, FundingStatus, LedgerEvent,
    PayoutStatus, TreasuryBountyLedger, TreasuryFundingIntent, TreasuryPayoutIntent,
)
from .config import EVMIndexerConfig, SuiIndexerConfig, TreasuryConfig
from .errors import (
    GatewayError, InsufficientFundsError, IntentError, MalformedEventError, SettlementError,
    TransientError, VerificationError,
)
from .evm_source import EVMLedgerSource
from .intents import IntentDesk, PayoutAuthorizer
from .orchestrator import SettlementOrchestrator
from .projector import EventProjector
from .settlement import ArcMinter, BridgeClient, GatewayClient, RetryPolicy
from .store import SettlementStore
from .sui_source import SuiLedgerSource
from .typed_data import (
    build_burn_intent_typed_data, build_claim_typed_data, build_payout_typed_data,
    build_refund_typed_data, recover_typed_data_signer, sign_typed_data,
    verify_typed_data_signer,
)

__version__ = "0.1.0"
__all__ = [
    # Types
    "Bounty", "BountyAsset", "BountyStatus", "Cursor", "EventPage", "FundingStatus",
    "LedgerEvent", "PayoutStatus", "TreasuryBountyLedger", "TreasuryFundingIntent",
    "TreasuryPayoutIntent",
    # Config
    "EVMIndexerConfig", "SuiIndexerConfig", "TreasuryConfig",
    # Errors
    "GatewayError", "InsufficientFundsError", "IntentError", "MalformedEventError",
    "SettlementError", "TransientError", "VerificationError",
    # Projection
    "SettlementStore", "EventProjector", "EVMLedgerSource", "SuiLedgerSource",
    # Treasury
    "IntentDesk", "PayoutAuthorizer", "SettlementOrchestrator", "ArcMinter",
    "BridgeClient", "GatewayClient", "RetryPolicy",
    # Typed data
    "build_burn_intent_typed_data", "build_claim_typed_data", "build_payout_typed_data",
    "build_refund_typed_data", "recover_typed_data_signer", "sign_typed_data",
    "verify_typed_data_signer",
]
