"""
gh-bounties settlement - Settlement Orchestrator

Drives treasury intents through their external steps.

Funding:  transfer_submitted --mint--> credited   (totalFunded, available += amount)
                             \\-------> failed
Payout:   created -> executing --bridge--> confirmed (totalPaid += amount)
                              \\---------> failed    (available += amount)

Every status change is a compare-and-set committed together with its
ledger delta, so a replayed or concurrent step can never apply twice.
Intents found in `executing` at startup were interrupted mid-bridge; they
are reported and left alone, since re-bridging could pay twice.
"""

import logging
import threading
import time
from typing import Callable, Optional

from .bounty_types import (
    FundingStatus, PayoutStatus, TreasuryFundingIntent, TreasuryPayoutIntent,
)
from .settlement import NO_RETRY, RetryPolicy, call_with_retry
from .store import SettlementStore

log = logging.getLogger(__name__)


class SettlementOrchestrator:
    """
    Timer loop over the treasury intent buckets.

    Usage:
        orchestrator = SettlementOrchestrator(store, minter, bridge)
        orchestrator.start()
    """

    def __init__(self, store: SettlementStore, minter, bridge,
                 destination_chain: str = "Arc_Testnet",
                 source_chain: str = "Arc_Testnet",
                 interval: float = 2.5, funding_batch: int = 5, payout_batch: int = 3,
                 mint_retry: RetryPolicy = None, bridge_retry: RetryPolicy = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.minter = minter
        self.bridge = bridge
        self.destination_chain = destination_chain
        self.source_chain = source_chain
        self.interval = max(0.25, interval)
        self.funding_batch = funding_batch
        self.payout_batch = payout_batch
        self.mint_retry = mint_retry or RetryPolicy()
        self.bridge_retry = bridge_retry or NO_RETRY
        self._sleep = sleep
        self._tick_guard = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.running = False

    # =========================================================================
    # TICK
    # =========================================================================

    def tick(self) -> bool:
        """Advance both buckets once. False if a previous tick is still running."""
        if not self._tick_guard.acquire(blocking=False):
            log.debug("Previous orchestrator tick still running, skipping")
            return False
        try:
            self.advance_fundings()
            self.advance_payouts()
        except Exception as e:
            log.warning(f"Orchestrator tick failed: {e}")
        finally:
            self._tick_guard.release()
        return True

    def advance_fundings(self) -> int:
        intents = self.store.list_funding_intents(
            FundingStatus.TRANSFER_SUBMITTED, limit=self.funding_batch, with_attestation=True
        )
        for intent in intents:
            try:
                self._advance_funding(intent)
            except Exception as e:
                log.error(f"Funding intent {intent.id} could not be advanced: {e}")
        return len(intents)

    def advance_payouts(self) -> int:
        intents = self.store.list_payout_intents(PayoutStatus.CREATED, limit=self.payout_batch)
        for intent in intents:
            try:
                self._advance_payout(intent)
            except Exception as e:
                log.error(f"Payout intent {intent.id} could not be advanced: {e}")
        return len(intents)

    def _advance_funding(self, intent: TreasuryFundingIntent):
        try:
            tx_id = call_with_retry(
                lambda: self.minter.mint(self.destination_chain, intent.attestation,
                                         intent.attestation_signature),
                self.mint_retry,
                what=f"mint for funding {intent.id}",
                sleep=self._sleep,
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            self.store.transition_funding_intent(
                intent.id, FundingStatus.TRANSFER_SUBMITTED, FundingStatus.FAILED, error=error
            )
            log.warning(f"Funding {intent.id} mint failed: {error}")
            return

        with self.store.transaction():
            credited = self.store.transition_funding_intent(
                intent.id, FundingStatus.TRANSFER_SUBMITTED, FundingStatus.CREDITED,
                mint_tx_id=tx_id,
            )
            if credited:
                self.store.adjust_ledger(intent.bounty_id, funded=intent.amount,
                                         available=intent.amount)
        if credited:
            log.info(f"Funding {intent.id} minted ({tx_id}) and credited "
                     f"{intent.amount} to {intent.bounty_id}")
        else:
            log.warning(f"Funding {intent.id} left transfer_submitted before credit; "
                        f"mint {tx_id} not credited twice")

    def _advance_payout(self, intent: TreasuryPayoutIntent):
        if not self.store.transition_payout_intent(intent.id, PayoutStatus.CREATED,
                                                   PayoutStatus.EXECUTING):
            return

        try:
            result = call_with_retry(
                lambda: self.bridge.bridge(self.source_chain, intent.destination_chain,
                                           intent.recipient, intent.amount),
                self.bridge_retry,
                what=f"bridge for payout {intent.id}",
                sleep=self._sleep,
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            with self.store.transaction():
                failed = self.store.transition_payout_intent(
                    intent.id, PayoutStatus.EXECUTING, PayoutStatus.FAILED, error=error,
                )
                if failed:
                    self.store.adjust_ledger(intent.bounty_id, available=intent.amount)
            if failed:
                log.warning(f"Payout {intent.id} failed, restored {intent.amount} "
                            f"to {intent.bounty_id}: {error}")
            else:
                log.warning(f"Payout {intent.id} left executing before failure was "
                            f"recorded; {intent.amount} not restored: {error}")
            return

        with self.store.transaction():
            confirmed = self.store.transition_payout_intent(
                intent.id, PayoutStatus.EXECUTING, PayoutStatus.CONFIRMED,
                bridge_tx_id=result.first, final_tx_id=result.last,
            )
            if confirmed:
                self.store.adjust_ledger(intent.bounty_id, paid=intent.amount)
        if confirmed:
            log.info(f"Payout {intent.id} confirmed to {intent.destination_chain} "
                     f"({result.first or 'no tx hash'})")
        else:
            log.warning(f"Payout {intent.id} left executing before confirmation; "
                        f"bridge {result.first or 'no tx hash'} not booked as paid")

    # =========================================================================
    # LOOP
    # =========================================================================

    def report_interrupted(self) -> int:
        """Log payouts a previous process left in `executing`."""
        stuck = self.store.list_payout_intents(PayoutStatus.EXECUTING, limit=1000)
        for intent in stuck:
            log.warning(f"Payout {intent.id} ({intent.amount} to {intent.recipient} on "
                        f"{intent.destination_chain}) was interrupted while bridging; "
                        f"reconcile it manually")
        return len(stuck)

    def run(self):
        self.running = True
        try:
            while not self._stop.is_set():
                self.tick()
                self._stop.wait(self.interval)
        finally:
            self.running = False

    def start(self):
        self.report_interrupted()
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="settlement-orchestrator",
                                        daemon=True)
        self._thread.start()
        log.info(f"Settlement orchestrator started (interval {self.interval}s)")

    def stop(self, timeout: float = 10.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        log.info("Settlement orchestrator stopped")
