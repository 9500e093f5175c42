"""
Tests for ghbounties/config.py and ghbounties/daemon.py wiring
"""

import os
from argparse import Namespace

import pytest

from ghbounties.config import (
    EVMIndexerConfig, SuiIndexerConfig, TreasuryConfig, load_env_file, mask_secret,
    parse_rpc_urls, sanitize_rpc_url, supported_source_chains,
)
from ghbounties.daemon import build_daemon
from ghbounties.errors import ConfigError

from conftest import ADDR_A, ADDR_B, CONTRACT, KEY_A


# ============================================================================
# ENV PARSING
# ============================================================================

class TestRpcUrls:
    """Tests for RPC URL parsing."""

    def test_comma_separated(self):
        assert parse_rpc_urls("http://a, http://b") == ["http://a", "http://b"]

    def test_json_array(self):
        assert parse_rpc_urls('["http://a", "http://b"]') == ["http://a", "http://b"]

    def test_repairs_pasted_urls(self):
        assert sanitize_rpc_url("'https:/rpc.example.org'") == "https://rpc.example.org"

    def test_empty(self):
        assert parse_rpc_urls("") == []


class TestEnvFile:
    """Tests for .env loading."""

    def test_does_not_override(self, tmp_path, monkeypatch):
        path = tmp_path / ".env"
        path.write_text("# comment\nGHB_TEST_A=from-file\nGHB_TEST_B='quoted'\n")
        monkeypatch.setenv("GHB_TEST_A", "from-env")
        monkeypatch.setenv("GHB_TEST_B", "")
        monkeypatch.delenv("GHB_TEST_B")
        assert load_env_file(str(path)) == 2
        assert os.environ["GHB_TEST_A"] == "from-env"
        assert os.environ["GHB_TEST_B"] == "quoted"

    def test_missing_file(self):
        assert load_env_file("/nonexistent/.env") == 0


# ============================================================================
# CONFIG OBJECTS
# ============================================================================

class TestIndexerConfig:
    """Tests for indexer configs."""

    def test_evm_from_env(self):
        cfg = EVMIndexerConfig.from_env({
            "RPC_URL": "http://localhost:8545",
            "CHAIN_ID": "84532",
            "CONTRACT_ADDRESS": CONTRACT,
            "INDEXER_START_BLOCK": "100",
        })
        assert cfg.chain_id == 84532
        assert cfg.start_block == 100
        assert cfg.block_chunk == 10
        assert cfg.safety_window == 2000
        assert cfg.source_key == f"evm:84532:{CONTRACT}"

    def test_evm_disabled_without_contract(self):
        assert EVMIndexerConfig.from_env({}) is None

    def test_evm_bad_integer(self):
        with pytest.raises(ConfigError):
            EVMIndexerConfig.from_env({"RPC_URL": "http://x", "CONTRACT_ADDRESS": CONTRACT,
                                       "CHAIN_ID": "base"})

    def test_sui_limits(self):
        cfg = SuiIndexerConfig.from_env({"SUI_RPC_URL": "http://sui", "SUI_PACKAGE_ID": "0xAB",
                                         "SUI_POLL_INTERVAL_MS": "500"})
        assert cfg.poll_interval == 0.5
        assert cfg.source_key == "sui:0xab"
        with pytest.raises(ConfigError):
            SuiIndexerConfig.from_env({"SUI_RPC_URL": "http://sui", "SUI_PACKAGE_ID": "0xAB",
                                       "SUI_EVENT_PAGE_SIZE": "500"})


class TestTreasuryConfig:
    """Tests for the treasury config."""

    def test_caller_must_match_treasury(self):
        with pytest.raises(ConfigError):
            TreasuryConfig(treasury_address=ADDR_B, destination_caller_key=KEY_A)

    def test_from_env(self):
        cfg = TreasuryConfig.from_env({
            "TREASURY_ENABLED": "1",
            "TREASURY_ADDRESS": ADDR_A,
            "TREASURY_DESTINATION_CALLER_PRIVATE_KEY": KEY_A,
            "TREASURY_ORCHESTRATOR_INTERVAL_MS": "100",
        })
        assert cfg.destination_caller_address == ADDR_A
        assert cfg.interval == 0.25
        assert KEY_A not in str(cfg.describe())

    def test_disabled(self):
        assert TreasuryConfig.from_env({"TREASURY_ADDRESS": ADDR_A}) is None

    def test_supported_chains_have_usdc(self):
        chains = supported_source_chains()
        assert chains
        assert all(c["usdc"] for c in chains)

    def test_mask_secret(self):
        assert mask_secret(KEY_A) == KEY_A[:6] + "..." + KEY_A[-4:]


# ============================================================================
# DAEMON WIRING
# ============================================================================

class TestBuildDaemon:
    """Tests for assembling the daemon from the environment."""

    def args(self, tmp_path, **flags):
        values = dict(db=str(tmp_path / "d.db"), no_evm=False, no_sui=False, no_treasury=False)
        values.update(flags)
        return Namespace(**values)

    def test_nothing_configured(self, tmp_path):
        daemon = build_daemon(self.args(tmp_path), env={})
        assert daemon.projectors == []
        assert daemon.orchestrator is None
        daemon.store.close()

    def test_sources_and_treasury(self, tmp_path):
        env = {
            "RPC_URL": "http://localhost:8545",
            "CHAIN_ID": "31337",
            "CONTRACT_ADDRESS": CONTRACT,
            "SUI_RPC_URL": "http://sui",
            "SUI_PACKAGE_ID": "0xab",
            "TREASURY_ENABLED": "1",
            "TREASURY_ADDRESS": ADDR_A,
            "TREASURY_DESTINATION_CALLER_PRIVATE_KEY": KEY_A,
            "TREASURY_BRIDGE_API_URL": "http://bridge",
        }
        daemon = build_daemon(self.args(tmp_path), env=env)
        assert [p.source_key for p in daemon.projectors] == [f"evm:31337:{CONTRACT}", "sui:0xab"]
        assert daemon.projectors[0].safety_window == 2000
        assert daemon.orchestrator is not None
        assert daemon.desk is not None
        daemon.store.close()

    def test_custom_arc_chain_name_reaches_orchestrator(self, tmp_path):
        """Minter and orchestrator agree on a non-testnet Arc chain."""
        env = {
            "TREASURY_ENABLED": "1",
            "TREASURY_ADDRESS": ADDR_A,
            "TREASURY_DESTINATION_CALLER_PRIVATE_KEY": KEY_A,
            "TREASURY_BRIDGE_API_URL": "http://bridge",
            "TREASURY_ARC_CHAIN_ID": "1234",
        }
        daemon = build_daemon(self.args(tmp_path, no_evm=True, no_sui=True), env=env)
        orchestrator = daemon.orchestrator
        assert orchestrator.minter.chain_name == "Arc_1234"
        assert orchestrator.destination_chain == "Arc_1234"
        assert orchestrator.source_chain == "Arc_1234"
        assert orchestrator.minter.serves(orchestrator.destination_chain)
        daemon.store.close()

    def test_orchestrator_needs_bridge(self, tmp_path):
        env = {
            "TREASURY_ENABLED": "1",
            "TREASURY_ADDRESS": ADDR_A,
            "TREASURY_DESTINATION_CALLER_PRIVATE_KEY": KEY_A,
        }
        with pytest.raises(ConfigError):
            build_daemon(self.args(tmp_path), env=env)

    def test_flags_skip_components(self, tmp_path):
        env = {"RPC_URL": "http://x", "CONTRACT_ADDRESS": CONTRACT}
        daemon = build_daemon(self.args(tmp_path, no_evm=True), env=env)
        assert daemon.projectors == []
        daemon.store.close()
