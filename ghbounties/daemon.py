#!/usr/bin/env python3
# Copyright (c) 2025 The gh-bounties developers
# Distributed under the MIT software license

"""
gh-bounties settlement - Daemon

Runs the ledger projectors and the settlement orchestrator against one
SQLite database.

This daemon:
  1. Backfills every configured ledger source into the read model
  2. Follows each source (EVM log filter, Sui polling)
  3. Mints credited Gateway deposits on Arc and bridges payouts out

Usage:
    ghbounties-daemon --env-file .env
    ghbounties-daemon --no-sui --debug
"""

import argparse
import logging
import os
import signal
import sys
import threading
from typing import List, Optional

from .config import (
    EVMIndexerConfig, SuiIndexerConfig, TreasuryConfig, load_env_file,
)
from .errors import ConfigError, SourceConfigError
from .evm_source import EVMLedgerSource
from .expiring import ExpiringStore
from .intents import IntentDesk
from .notifier import IssueNotifier, TokenMetaCache
from .orchestrator import SettlementOrchestrator
from .projector import EventProjector
from .settlement import ArcMinter, BridgeClient, GatewayClient
from .store import SettlementStore
from .sui_source import SuiLedgerSource

log = logging.getLogger(__name__)


class SettlementDaemon:
    """
    Wires configured components together.

    `desk` is exposed for an embedding HTTP layer; the daemon itself only
    runs the background loops.
    """

    def __init__(self, store: SettlementStore, notifier: IssueNotifier = None):
        self.store = store
        self.notifier = notifier or IssueNotifier()
        self.projectors: List[EventProjector] = []
        self.orchestrator: Optional[SettlementOrchestrator] = None
        self.desk: Optional[IntentDesk] = None

    def add_evm(self, cfg: EVMIndexerConfig):
        source = EVMLedgerSource.from_config(cfg)
        token_meta = TokenMetaCache(source.token_meta, ExpiringStore(ttl=3600))
        self.projectors.append(EventProjector(source, self.store, self.notifier,
                                              token_meta=token_meta,
                                              safety_window=cfg.safety_window))
        log.info(f"EVM source {cfg.source_key} from {cfg.rpc_urls[0]}")

    def add_sui(self, cfg: SuiIndexerConfig):
        source = SuiLedgerSource.from_config(cfg)
        token_meta = TokenMetaCache(lambda token: (9, "SUI"))
        self.projectors.append(EventProjector(source, self.store, self.notifier,
                                              token_meta=token_meta))
        log.info(f"Sui source {cfg.source_key} from {cfg.rpc_url}")

    def add_treasury(self, cfg: TreasuryConfig):
        gateway = GatewayClient(cfg.gateway_api_url, timeout=cfg.request_timeout)
        self.desk = IntentDesk(self.store, gateway, cfg)
        if not cfg.orchestrator_enabled:
            log.info("Treasury orchestrator disabled")
            return
        if not cfg.bridge_api_url:
            raise ConfigError("TREASURY_BRIDGE_API_URL is required for the orchestrator")
        self.orchestrator = SettlementOrchestrator(
            self.store,
            ArcMinter.from_config(cfg),
            BridgeClient(cfg.bridge_api_url),
            destination_chain=cfg.arc_chain_name,
            source_chain=cfg.arc_chain_name,
            interval=cfg.interval,
            funding_batch=cfg.funding_batch,
            payout_batch=cfg.payout_batch,
        )
        log.info(f"Treasury: {cfg.describe()}")

    def start(self) -> int:
        """Start everything that verifies. Returns how many loops are running."""
        started = 0
        for projector in self.projectors:
            try:
                projector.start()
                started += 1
            except SourceConfigError as e:
                log.error(f"[{projector.source_key}] Not started: {e}")
        if self.orchestrator is not None:
            self.orchestrator.start()
            started += 1
        return started

    def stop(self):
        if self.orchestrator is not None:
            self.orchestrator.stop()
        for projector in self.projectors:
            projector.stop()
        self.store.close()


def build_daemon(args, env=None) -> SettlementDaemon:
    env = os.environ if env is None else env
    db_path = args.db or env.get("DATABASE_PATH") or "ghbounties.db"
    daemon = SettlementDaemon(SettlementStore(db_path))
    log.info(f"Database: {db_path}")

    if not args.no_evm:
        evm = EVMIndexerConfig.from_env(env)
        if evm is not None:
            daemon.add_evm(evm)
    if not args.no_sui:
        sui = SuiIndexerConfig.from_env(env)
        if sui is not None:
            daemon.add_sui(sui)
    if not args.no_treasury:
        treasury = TreasuryConfig.from_env(env)
        if treasury is not None:
            daemon.add_treasury(treasury)
    return daemon


def main():
    parser = argparse.ArgumentParser(description="gh-bounties settlement daemon")
    parser.add_argument("--db", default=None, help="SQLite path (default $DATABASE_PATH)")
    parser.add_argument("--env-file", default=".env", help="KEY=VALUE file to load")
    parser.add_argument("--no-evm", action="store_true", help="Do not index the EVM contract")
    parser.add_argument("--no-sui", action="store_true", help="Do not index the Sui package")
    parser.add_argument("--no-treasury", action="store_true", help="Do not run settlement")
    parser.add_argument("--debug", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    loaded = load_env_file(args.env_file)
    if loaded:
        log.info(f"Loaded {loaded} settings from {args.env_file}")

    try:
        daemon = build_daemon(args)
    except ConfigError as e:
        log.error(f"Configuration error: {e}")
        sys.exit(2)

    if daemon.start() == 0:
        log.error("Nothing to run: configure CONTRACT_ADDRESS, SUI_PACKAGE_ID or TREASURY_ENABLED=1")
        daemon.stop()
        sys.exit(1)

    stopped = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stopped.set())
    try:
        while not stopped.wait(1.0):
            pass
    except KeyboardInterrupt:
        log.info("Interrupted")
    finally:
        daemon.stop()


if __name__ == "__main__":
    main()
