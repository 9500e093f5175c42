"""
gh-bounties settlement - Intent Desk

Entry points that create treasury intents and backend-signed authorizations.
Transport (HTTP routes, sessions) and the GitHub permission check live with
the caller; identity checks are injected as callables that raise
VerificationError.

Funding:
    desk.open_funding_intent(bounty_id, "25.5", 84532, sender)
        -> intent + BurnIntent typed data for the sender's wallet to sign
    desk.submit_funding_signature(intent_id, signature)
        -> signer verified, Gateway attestation attached (transfer_submitted)

Payout:
    desk.open_payout_intent(bounty_id, recipient, "Base_Sepolia", "40")
        -> created, amount reserved from the bounty's available balance
"""

import logging
import re
import time
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

from web3 import Web3

from .bounty_types import (
    Bounty, FundingStatus, TreasuryBountyLedger, TreasuryFundingIntent, TreasuryPayoutIntent,
)
from .config import (
    GATEWAY_DOMAIN_BY_CHAIN_ID, USDC_DECIMALS, TreasuryConfig, usdc_address_for_chain_id,
)
from .errors import IntentError, VerificationError
from .expiring import ExpiringStore
from .settlement import GatewayClient, domain_contracts
from .store import SettlementStore
from .typed_data import (
    ADDRESS_RE, BYTES32_RE, BurnIntent, TransferSpec, address_to_bytes32,
    build_burn_intent_typed_data, build_claim_typed_data, build_payout_typed_data,
    build_refund_typed_data, default_deadline, sign_typed_data, verify_typed_data_signer,
)

log = logging.getLogger(__name__)

IdentityCheck = Callable[[Bounty], None]

DECIMAL_RE = re.compile(r"^\d+(\.\d+)?$")


def parse_units(amount: str, decimals: int = USDC_DECIMALS) -> int:
    """'25.5' -> 25500000 for 6 decimals. Rejects excess precision."""
    text = str(amount).strip()
    if not DECIMAL_RE.match(text):
        raise VerificationError(f"invalid amount: {amount!r}")
    try:
        scaled = Decimal(text).scaleb(decimals)
    except InvalidOperation as e:
        raise VerificationError(f"invalid amount: {amount!r}") from e
    if scaled != scaled.to_integral_value():
        raise VerificationError(f"amount {amount} has more than {decimals} decimals")
    return int(scaled)


def _require(pattern: re.Pattern, value: str, what: str) -> str:
    if not isinstance(value, str) or not pattern.match(value):
        raise VerificationError(f"invalid {what}: {value!r}")
    return value


class IntentDesk:

    def __init__(self, store: SettlementStore, gateway: GatewayClient, config: TreasuryConfig,
                 info_cache: ExpiringStore = None, admin_check: IdentityCheck = None,
                 new_id: Callable[[], str] = None):
        self.store = store
        self.gateway = gateway
        self.config = config
        self.info_cache = info_cache or ExpiringStore(ttl=300)
        self.admin_check = admin_check
        self._new_id = new_id or (lambda: uuid.uuid4().hex)

    def gateway_info(self) -> Dict[str, Any]:
        return self.info_cache.get_or_load("gateway-info", self.gateway.get_info)

    def _bounty(self, bounty_id: str) -> Bounty:
        _require(BYTES32_RE, bounty_id, "bountyId")
        bounty = self.store.get_bounty(bounty_id.lower()) or self.store.get_bounty(bounty_id)
        if bounty is None:
            raise IntentError(f"Unknown bountyId {bounty_id} (not indexed yet)")
        return bounty

    # =========================================================================
    # FUNDING
    # =========================================================================

    def build_transfer_spec(self, source_chain_id: int, sender: str, value: int) -> TransferSpec:
        source = GATEWAY_DOMAIN_BY_CHAIN_ID.get(int(source_chain_id))
        if source is None:
            raise IntentError(f"Unsupported sourceChainId: {source_chain_id}")
        usdc = usdc_address_for_chain_id(source_chain_id)
        if not usdc:
            raise IntentError(f"USDC not configured for chainId {source_chain_id}")

        info = self.gateway_info()
        sender_b32 = address_to_bytes32(sender)
        return TransferSpec(
            source_domain=source["domain"],
            destination_domain=self.config.arc_domain,
            source_contract=address_to_bytes32(domain_contracts(info, source["domain"], "wallet")),
            destination_contract=address_to_bytes32(
                domain_contracts(info, self.config.arc_domain, "minter")),
            source_token=address_to_bytes32(usdc),
            destination_token=address_to_bytes32(self.config.arc_usdc),
            source_depositor=sender_b32,
            destination_recipient=address_to_bytes32(self.config.treasury_address),
            source_signer=sender_b32,
            destination_caller=address_to_bytes32(self.config.destination_caller_address),
            value=value,
        )

    def open_funding_intent(self, bounty_id: str, amount_usdc: str, source_chain_id: int,
                            sender: str) -> Dict[str, Any]:
        _require(ADDRESS_RE, sender, "sender")
        bounty = self._bounty(bounty_id)
        value = parse_units(amount_usdc)
        if value <= 0:
            raise VerificationError("amount must be > 0")

        spec = self.build_transfer_spec(source_chain_id, sender, value)
        burn_intent = BurnIntent.from_dict(self.gateway.estimate_burn(spec))
        quoted = burn_intent.spec
        if (quoted.value != value
                or quoted.destination_recipient != spec.destination_recipient
                or quoted.source_signer != spec.source_signer):
            raise VerificationError("Gateway estimate altered the transfer spec")

        intent = TreasuryFundingIntent(
            id=self._new_id(),
            bounty_id=bounty.bounty_id,
            sender=sender.lower(),
            source_chain=str(source_chain_id),
            amount=value,
            burn_intent=burn_intent.to_dict(),
        )
        self.store.create_funding_intent(intent)
        log.info(f"Funding intent {intent.id} opened: {value} from {intent.sender} "
                 f"on chain {source_chain_id} for {bounty.bounty_id}")
        return {"intent": intent, "typed_data": build_burn_intent_typed_data(burn_intent)}

    def submit_funding_signature(self, intent_id: str, signature: str) -> TreasuryFundingIntent:
        """
        Verify the sender signed the stored burn intent, then submit it.

        Nothing is written and nothing is sent to Gateway unless the signature
        recovers to the intent's sender.
        """
        intent = self.store.get_funding_intent(intent_id)
        if intent is None:
            raise IntentError(f"Unknown intent {intent_id}")
        if not intent.burn_intent:
            raise IntentError(f"Intent {intent_id} has no burnIntent")
        if intent.status != FundingStatus.CREATED:
            raise IntentError(f"Intent {intent_id} is {intent.status.value}")

        typed = build_burn_intent_typed_data(intent.burn_intent)
        verify_typed_data_signer(typed, signature, intent.sender)

        attestation = self.gateway.submit_burn(intent.burn_intent, signature)
        if not self.store.transition_funding_intent(
            intent.id, FundingStatus.CREATED, FundingStatus.TRANSFER_SUBMITTED,
            signature=signature,
            attestation=attestation.attestation,
            attestation_signature=attestation.signature,
        ):
            raise IntentError(f"Intent {intent_id} changed while submitting")
        log.info(f"Funding intent {intent.id} submitted to Gateway")
        return self.store.get_funding_intent(intent.id)

    # =========================================================================
    # PAYOUT
    # =========================================================================

    def open_payout_intent(self, bounty_id: str, recipient: str, destination_chain: str,
                           amount_usdc: str) -> TreasuryPayoutIntent:
        _require(ADDRESS_RE, recipient, "recipient")
        if not destination_chain:
            raise VerificationError("destination chain is required")
        bounty = self._bounty(bounty_id)
        if self.admin_check is not None:
            self.admin_check(bounty)
        amount = parse_units(amount_usdc)
        if amount <= 0:
            raise VerificationError("amount must be > 0")

        intent = TreasuryPayoutIntent(
            id=self._new_id(),
            bounty_id=bounty.bounty_id,
            recipient=recipient,
            destination_chain=destination_chain,
            amount=amount,
        )
        self.store.create_payout_intent(intent)
        log.info(f"Payout intent {intent.id} opened: {amount} to {recipient} "
                 f"on {destination_chain}")
        return intent

    def ledger(self, bounty_id: str) -> TreasuryBountyLedger:
        return self.store.get_ledger(bounty_id) or TreasuryBountyLedger(bounty_id)


# =============================================================================
# BACKEND AUTHORIZATIONS
# =============================================================================

AUTH_NONCE_ABI = [
    {"type": "function", "name": "payoutNonces", "stateMutability": "view",
     "inputs": [{"name": "bountyId", "type": "bytes32"}],
     "outputs": [{"name": "", "type": "uint256"}]},
    {"type": "function", "name": "refundNonces", "stateMutability": "view",
     "inputs": [{"name": "bountyId", "type": "bytes32"}],
     "outputs": [{"name": "", "type": "uint256"}]},
    {"type": "function", "name": "claimNonces", "stateMutability": "view",
     "inputs": [{"name": "bountyId", "type": "bytes32"}, {"name": "claimer", "type": "address"}],
     "outputs": [{"name": "", "type": "uint256"}]},
]


class ContractNonceReader:
    """Reads authorization nonces from the GHBounties contract."""

    def __init__(self, w3: Web3, contract_address: str):
        self.contract = w3.eth.contract(address=Web3.to_checksum_address(contract_address),
                                        abi=AUTH_NONCE_ABI)

    def __call__(self, kind: str, bounty_id: str, account: Optional[str] = None) -> int:
        bounty = bytes.fromhex(bounty_id[2:])
        if kind == "payout":
            return int(self.contract.functions.payoutNonces(bounty).call())
        if kind == "refund":
            return int(self.contract.functions.refundNonces(bounty).call())
        if kind == "claim":
            claimer = Web3.to_checksum_address(account)
            return int(self.contract.functions.claimNonces(bounty, claimer).call())
        raise ValueError(f"unknown nonce kind: {kind}")


class PayoutAuthorizer:
    """
    Signs Payout/Claim/Refund authorizations the escrow contract accepts.

    `identity_check(bounty, action)` must raise VerificationError when the
    requester may not perform `action` on the bounty.
    """

    def __init__(self, store: SettlementStore, signer_key: str, chain_id: int,
                 contract_address: str, nonce_reader: Callable[..., int],
                 identity_check: Callable[[Bounty, str], None],
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.signer_key = signer_key
        self.chain_id = chain_id
        self.contract_address = contract_address
        self.nonce_reader = nonce_reader
        self.identity_check = identity_check
        self.clock = clock

    def _prepare(self, bounty_id: str, action: str) -> Bounty:
        _require(BYTES32_RE, bounty_id, "bountyId")
        bounty = self.store.get_bounty(bounty_id)
        if bounty is None:
            raise IntentError(f"Unknown bountyId {bounty_id}")
        self.identity_check(bounty, action)
        return bounty

    def _signed(self, typed: Dict[str, Any]) -> Dict[str, Any]:
        message = typed["message"]
        return {
            "typed_data": typed,
            "signature": sign_typed_data(typed, self.signer_key),
            "nonce": str(message["nonce"]),
            "deadline": str(message["deadline"]),
        }

    def authorize_payout(self, bounty_id: str, token: str, recipient: str,
                         amount: int) -> Dict[str, Any]:
        self._prepare(bounty_id, "payout")
        _require(ADDRESS_RE, token, "token")
        _require(ADDRESS_RE, recipient, "recipient")
        typed = build_payout_typed_data(
            self.chain_id, self.contract_address, bounty_id, token, recipient, amount,
            nonce=self.nonce_reader("payout", bounty_id),
            deadline=default_deadline(self.clock()),
        )
        return self._signed(typed)

    def authorize_claim(self, bounty_id: str, claimer: str,
                        claim_metadata_uri: str) -> Dict[str, Any]:
        self._prepare(bounty_id, "claim")
        _require(ADDRESS_RE, claimer, "claimer")
        typed = build_claim_typed_data(
            self.chain_id, self.contract_address, bounty_id, claimer, claim_metadata_uri,
            nonce=self.nonce_reader("claim", bounty_id, claimer),
            deadline=default_deadline(self.clock()),
        )
        signed = self._signed(typed)
        signed["claim_hash"] = typed["message"]["claimHash"]
        return signed

    def authorize_refund(self, bounty_id: str, token: str, funder: str,
                         amount: int) -> Dict[str, Any]:
        self._prepare(bounty_id, "refund")
        _require(ADDRESS_RE, token, "token")
        _require(ADDRESS_RE, funder, "funder")
        typed = build_refund_typed_data(
            self.chain_id, self.contract_address, bounty_id, token, funder, amount,
            nonce=self.nonce_reader("refund", bounty_id),
            deadline=default_deadline(self.clock()),
        )
        return self._signed(typed)
