"""
Tests for ghbounties/intents.py

Funding and payout intent entry points, backend authorizations.
"""

from unittest.mock import Mock

import pytest

from ghbounties.bounty_types import FundingStatus, PayoutStatus
from ghbounties.config import TreasuryConfig
from ghbounties.errors import (
    InsufficientFundsError, IntentError, SettlementError, VerificationError,
)
from ghbounties.intents import IntentDesk, PayoutAuthorizer, parse_units
from ghbounties.settlement import Attestation
from ghbounties.typed_data import (
    BurnIntent, address_to_bytes32, recover_typed_data_signer, sign_typed_data,
)

from conftest import (
    ADDR_A, ADDR_B, BOUNTY_ID, CONTRACT, KEY_A, KEY_B, RECIPIENT, TOKEN, add_credit,
)


GATEWAY_INFO = {
    "domains": [
        {"domain": 6, "walletContract": "0x0077082b6F6B16128C9e0C6d2e2C16c5305c47fE"},
        {"domain": 26, "minterContract": "0x0022222ABE238Cc2f7e7eF3Fdd8a49AfaE42F35B"},
    ]
}


def make_gateway():
    """Mock Gateway client that quotes back the submitted spec."""
    gateway = Mock()
    gateway.get_info.return_value = GATEWAY_INFO

    def estimate(spec, *args, **kwargs):
        return {"maxBlockHeight": "1000000", "maxFee": "2010000", "spec": spec.to_dict()}

    gateway.estimate_burn.side_effect = estimate
    gateway.submit_burn.return_value = Attestation(attestation="0xa77e", signature="0x5167")
    return gateway


def make_desk(store, gateway=None, **kwargs):
    # Treasury is Hardhat account #1 so the funder (account #0) is distinct
    config = TreasuryConfig(treasury_address=ADDR_B, destination_caller_key=KEY_B)
    counter = iter(range(1000))
    kwargs.setdefault("new_id", lambda: f"intent-{next(counter)}")
    return IntentDesk(store, gateway or make_gateway(), config, **kwargs)


# ============================================================================
# AMOUNTS
# ============================================================================

class TestParseUnits:
    """Tests for decimal amount parsing."""

    def test_decimal(self):
        assert parse_units("25.5") == 25_500_000

    def test_integer(self):
        assert parse_units("40") == 40_000_000

    def test_excess_precision_rejected(self):
        with pytest.raises(VerificationError):
            parse_units("0.0000001")

    @pytest.mark.parametrize("bad", ["", "-1", "1e6", "abc", "1.", ".5"])
    def test_invalid_rejected(self, bad):
        with pytest.raises(VerificationError):
            parse_units(bad)


# ============================================================================
# FUNDING
# ============================================================================

class TestFundingIntent:
    """Tests for opening and signing funding intents."""

    def test_open_builds_burn_intent(self, store, bounty):
        desk = make_desk(store)
        result = desk.open_funding_intent(BOUNTY_ID, "25.5", 84532, ADDR_A)

        intent = result["intent"]
        assert intent.status == FundingStatus.CREATED
        assert intent.amount == 25_500_000
        assert intent.sender == ADDR_A.lower()
        assert intent.source_chain == "84532"

        message = result["typed_data"]["message"]
        assert message["spec"]["value"] == "25500000"
        assert message["spec"]["sourceDomain"] == 6
        assert message["spec"]["destinationDomain"] == 26
        assert message["spec"]["destinationRecipient"] == address_to_bytes32(ADDR_B)
        assert message["spec"]["sourceSigner"] == address_to_bytes32(ADDR_A)
        assert store.get_funding_intent(intent.id).burn_intent == message

    def test_unknown_bounty_rejected(self, store):
        with pytest.raises(IntentError):
            make_desk(store).open_funding_intent(BOUNTY_ID, "1", 84532, ADDR_A)

    def test_unsupported_chain_rejected(self, store, bounty):
        with pytest.raises(IntentError):
            make_desk(store).open_funding_intent(BOUNTY_ID, "1", 1, ADDR_A)

    def test_zero_amount_rejected(self, store, bounty):
        with pytest.raises(VerificationError):
            make_desk(store).open_funding_intent(BOUNTY_ID, "0", 84532, ADDR_A)

    def test_altered_estimate_rejected(self, store, bounty):
        """Gateway may fill fees, not change value or parties."""
        gateway = make_gateway()

        def estimate(spec, *args, **kwargs):
            data = spec.to_dict()
            data["value"] = "1"
            return {"maxBlockHeight": "1", "maxFee": "0", "spec": data}

        gateway.estimate_burn.side_effect = estimate
        with pytest.raises(VerificationError):
            make_desk(store, gateway).open_funding_intent(BOUNTY_ID, "5", 84532, ADDR_A)

    def test_missing_domain_contract(self, store, bounty):
        gateway = make_gateway()
        gateway.get_info.return_value = {"domains": []}
        with pytest.raises(SettlementError):
            make_desk(store, gateway).open_funding_intent(BOUNTY_ID, "5", 84532, ADDR_A)

    def test_gateway_info_cached(self, store, bounty):
        gateway = make_gateway()
        desk = make_desk(store, gateway)
        desk.open_funding_intent(BOUNTY_ID, "1", 84532, ADDR_A)
        desk.open_funding_intent(BOUNTY_ID, "2", 84532, ADDR_A)
        assert gateway.get_info.call_count == 1

    def test_signature_submits_transfer(self, store, bounty):
        gateway = make_gateway()
        desk = make_desk(store, gateway)
        opened = desk.open_funding_intent(BOUNTY_ID, "25.5", 84532, ADDR_A)
        signature = sign_typed_data(opened["typed_data"], KEY_A)

        intent = desk.submit_funding_signature(opened["intent"].id, signature)
        assert intent.status == FundingStatus.TRANSFER_SUBMITTED
        assert intent.attestation == "0xa77e"
        assert intent.attestation_signature == "0x5167"
        assert intent.signature == signature
        burn_arg = gateway.submit_burn.call_args[0][0]
        assert BurnIntent.from_dict(burn_arg).spec.value == 25_500_000

    def test_wrong_signer_changes_nothing(self, store, bounty):
        """A mismatched signature never reaches Gateway or the store."""
        gateway = make_gateway()
        desk = make_desk(store, gateway)
        opened = desk.open_funding_intent(BOUNTY_ID, "25.5", 84532, ADDR_A)
        signature = sign_typed_data(opened["typed_data"], KEY_B)

        with pytest.raises(VerificationError):
            desk.submit_funding_signature(opened["intent"].id, signature)
        assert not gateway.submit_burn.called
        intent = store.get_funding_intent(opened["intent"].id)
        assert intent.status == FundingStatus.CREATED
        assert intent.signature == ""

    def test_second_submission_rejected(self, store, bounty):
        desk = make_desk(store)
        opened = desk.open_funding_intent(BOUNTY_ID, "1", 84532, ADDR_A)
        signature = sign_typed_data(opened["typed_data"], KEY_A)
        desk.submit_funding_signature(opened["intent"].id, signature)
        with pytest.raises(IntentError):
            desk.submit_funding_signature(opened["intent"].id, signature)

    def test_unknown_intent(self, store):
        with pytest.raises(IntentError):
            make_desk(store).submit_funding_signature("missing", "0x" + "00" * 65)


# ============================================================================
# PAYOUT
# ============================================================================

class TestPayoutIntent:
    """Tests for opening payout intents."""

    def test_reserves_available(self, store, bounty):
        add_credit(store, amount=100_000_000)
        intent = make_desk(store).open_payout_intent(BOUNTY_ID, RECIPIENT, "Base_Sepolia", "40")
        assert intent.status == PayoutStatus.CREATED
        assert store.get_ledger(BOUNTY_ID).available == 60_000_000

    def test_insufficient_funds(self, store, bounty):
        add_credit(store, amount=10_000_000)
        with pytest.raises(InsufficientFundsError):
            make_desk(store).open_payout_intent(BOUNTY_ID, RECIPIENT, "Base_Sepolia", "40")
        assert store.get_ledger(BOUNTY_ID).available == 10_000_000

    def test_admin_check_runs_first(self, store, bounty):
        add_credit(store, amount=100_000_000)
        check = Mock(side_effect=VerificationError("not a repo admin"))
        with pytest.raises(VerificationError):
            make_desk(store, admin_check=check).open_payout_intent(
                BOUNTY_ID, RECIPIENT, "Base_Sepolia", "40")
        assert check.call_args[0][0].bounty_id == BOUNTY_ID
        assert store.get_ledger(BOUNTY_ID).available == 100_000_000

    def test_ledger_for_unknown_bounty(self, store):
        ledger = make_desk(store).ledger(BOUNTY_ID)
        assert (ledger.total_funded, ledger.available) == (0, 0)


# ============================================================================
# AUTHORIZATIONS
# ============================================================================

class TestPayoutAuthorizer:
    """Tests for backend-signed authorizations."""

    def make_authorizer(self, store, identity_check=None):
        nonces = Mock(return_value=4)
        authorizer = PayoutAuthorizer(
            store, KEY_A, 84532, CONTRACT, nonces,
            identity_check=identity_check or Mock(), clock=lambda: 1_700_000_000,
        )
        return authorizer, nonces

    def test_payout_signed_by_backend(self, store, bounty):
        authorizer, nonces = self.make_authorizer(store)
        result = authorizer.authorize_payout(BOUNTY_ID, TOKEN, RECIPIENT, 10)
        assert result["nonce"] == "4"
        assert result["deadline"] == str(1_700_000_000 + 600)
        assert recover_typed_data_signer(result["typed_data"], result["signature"]) == ADDR_A
        nonces.assert_called_with("payout", BOUNTY_ID)

    def test_claim_reads_claimer_nonce(self, store, bounty):
        authorizer, nonces = self.make_authorizer(store)
        result = authorizer.authorize_claim(BOUNTY_ID, ADDR_B, "https://github.com/a/b/pull/2")
        nonces.assert_called_with("claim", BOUNTY_ID, ADDR_B)
        assert result["claim_hash"] == result["typed_data"]["message"]["claimHash"]

    def test_refund(self, store, bounty):
        authorizer, nonces = self.make_authorizer(store)
        result = authorizer.authorize_refund(BOUNTY_ID, TOKEN, ADDR_B, 5)
        assert result["typed_data"]["primaryType"] == "Refund"
        nonces.assert_called_with("refund", BOUNTY_ID)

    def test_identity_check_blocks_signing(self, store, bounty):
        check = Mock(side_effect=VerificationError("not a repo admin"))
        authorizer, nonces = self.make_authorizer(store, identity_check=check)
        with pytest.raises(VerificationError):
            authorizer.authorize_payout(BOUNTY_ID, TOKEN, RECIPIENT, 10)
        assert not nonces.called
        assert check.call_args[0][1] == "payout"

    def test_unknown_bounty(self, store):
        authorizer, _ = self.make_authorizer(store)
        with pytest.raises(IntentError):
            authorizer.authorize_payout(BOUNTY_ID, TOKEN, RECIPIENT, 10)
