"""
gh-bounties settlement - Configuration

Network tables for the Gateway testnet deployment plus the dataclass configs
the daemon builds from the environment.

Environment:
    DATABASE_PATH                 SQLite file (default ./ghbounties.db)
    RPC_URL                       EVM RPC, comma separated or JSON array
    CHAIN_ID, CONTRACT_ADDRESS    GHBounties deployment to index
    INDEXER_START_BLOCK           first block when no cursor exists
    INDEXER_BACKFILL_BLOCK_CHUNK  blocks per get_logs call (default 10)
    INDEXER_SAFETY_WINDOW         head - N floor for the start block (default 2000)
    SUI_RPC_URL, SUI_PACKAGE_ID   Sui deployment to index
    SUI_POLL_INTERVAL_MS          default 2000, min 250
    SUI_EVENT_PAGE_SIZE           default 50, 1..200
    TREASURY_ENABLED=1            enables the settlement orchestrator
    CIRCLE_GATEWAY_API_URL, TREASURY_ARC_RPC_URL, TREASURY_ARC_CHAIN_ID,
    TREASURY_ADDRESS, TREASURY_DESTINATION_CALLER_PRIVATE_KEY,
    TREASURY_BRIDGE_API_URL, TREASURY_ORCHESTRATOR_ENABLED,
    TREASURY_ORCHESTRATOR_INTERVAL_MS
"""

import json
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from eth_account import Account

from .errors import ConfigError


# =============================================================================
# NETWORK TABLES
# =============================================================================

GATEWAY_TESTNET_CONTRACTS = {
    "wallet": "0x0077082b6F6B16128C9e0C6d2e2C16c5305c47fE",
    "minter": "0x0022222ABE238Cc2f7e7eF3Fdd8a49AfaE42F35B",
}

# Gateway-supported testnet source chains: chain id -> Gateway domain
GATEWAY_DOMAIN_BY_CHAIN_ID = {
    11155111: {"domain": 0, "label": "Ethereum Sepolia"},
    43113: {"domain": 1, "label": "Avalanche Fuji"},
    84532: {"domain": 6, "label": "Base Sepolia"},
    57054: {"domain": 13, "label": "Sonic Blaze Testnet"},
    4801: {"domain": 14, "label": "World Chain Sepolia"},
    1328: {"domain": 16, "label": "Sei Atlantic"},
    998: {"domain": 19, "label": "HyperEVM Testnet"},
}

ARC_TESTNET = {
    "name": "Arc Testnet",
    "chain_id": 5042002,
    "rpc": "https://rpc.testnet.arc.network",
    "domain": 26,
    "usdc": "0x3600000000000000000000000000000000000000",
}

USDC_BY_CHAIN_ID = {
    1: "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    11155111: "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
    43113: "0x5425890298aed601595a70AB815c96711a31Bc65",
    84532: "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    57054: "0xA4879Fed32Ecbef99399e5cbC247E533421C4eC6",
    4801: "0x66145f38cBAC35Ca6F1Dfb4914dF98F1614aeA88",
    1328: "0x4fCF1784B31630811181f670Aea7A7bEF803eaED",
    998: "0x2B3370eE501B4a559b57D449569354196457D8Ab",
    5042002: "0x3600000000000000000000000000000000000000",
    # CCTP-only, not Gateway
    421614: "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d",
    11155420: "0x5fd84259d66Cd46123540766Be93DFE6D43130D7",
}

USDC_DECIMALS = 6
DEFAULT_GATEWAY_API_URL = "https://gateway-api-testnet.circle.com"

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def usdc_address_for_chain_id(chain_id: int) -> Optional[str]:
    return USDC_BY_CHAIN_ID.get(int(chain_id))


def supported_source_chains() -> List[dict]:
    """Gateway source chains that also have a known USDC deployment."""
    chains = []
    for chain_id, cfg in GATEWAY_DOMAIN_BY_CHAIN_ID.items():
        usdc = usdc_address_for_chain_id(chain_id)
        if not usdc:
            continue
        chains.append({
            "chain_id": chain_id,
            "label": cfg["label"],
            "domain": cfg["domain"],
            "usdc": usdc,
        })
    return chains


# =============================================================================
# ENV HELPERS
# =============================================================================

def load_env_file(path: str) -> int:
    """Load KEY=VALUE lines into os.environ without overriding set values."""
    if not path or not os.path.exists(path):
        return 0
    loaded = 0
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, value = line.split("=", 1)
                os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))
                loaded += 1
    return loaded


def sanitize_rpc_url(url: str) -> str:
    """Strip pasted quotes and repair a missing slash in 'https:/host'."""
    url = url.strip().strip("'\"`").strip()
    return re.sub(r"^(https?):/(?!/)", r"\1://", url, flags=re.IGNORECASE)


def parse_rpc_urls(value: str) -> List[str]:
    """Accept a comma separated list or a JSON array of RPC URLs."""
    raw = (value or "").strip()
    if not raw:
        return []
    if raw.startswith("[") and raw.endswith("]"):
        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return [u for u in (sanitize_rpc_url(str(v)) for v in parsed) if u]
    return [u for u in (sanitize_rpc_url(part) for part in raw.split(",")) if u]


def _int(env: Mapping[str, str], key: str, default: Optional[int],
         minimum: Optional[int] = None, maximum: Optional[int] = None) -> Optional[int]:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")
    if minimum is not None and value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{key} must be <= {maximum}")
    return value


def mask_secret(value: str) -> str:
    if not value:
        return ""
    return value[:6] + "..." + value[-4:] if len(value) > 12 else "***"


# =============================================================================
# CONFIG OBJECTS
# =============================================================================

@dataclass
class EVMIndexerConfig:
    rpc_urls: List[str]
    chain_id: int
    contract_address: str
    start_block: Optional[int] = None
    block_chunk: int = 10
    safety_window: int = 2000
    poll_interval: float = 4.0
    request_timeout: int = 30

    def __post_init__(self):
        if not self.rpc_urls:
            raise ConfigError("EVM indexer needs at least one RPC URL")
        if not ADDRESS_RE.match(self.contract_address or ""):
            raise ConfigError(f"invalid CONTRACT_ADDRESS: {self.contract_address!r}")
        if self.block_chunk < 1:
            raise ConfigError("block_chunk must be >= 1")

    @property
    def source_key(self) -> str:
        return f"evm:{self.chain_id}:{self.contract_address.lower()}"

    @classmethod
    def from_env(cls, env: Mapping[str, str] = None) -> Optional["EVMIndexerConfig"]:
        """None when no contract is configured."""
        env = os.environ if env is None else env
        contract = (env.get("CONTRACT_ADDRESS") or "").strip()
        if not contract:
            return None
        return cls(
            rpc_urls=parse_rpc_urls(env.get("RPC_URL", "")),
            chain_id=_int(env, "CHAIN_ID", 31337, minimum=1),
            contract_address=contract,
            start_block=_int(env, "INDEXER_START_BLOCK", None, minimum=0),
            block_chunk=_int(env, "INDEXER_BACKFILL_BLOCK_CHUNK", 10, minimum=1),
            safety_window=_int(env, "INDEXER_SAFETY_WINDOW", 2000, minimum=0),
        )


@dataclass
class SuiIndexerConfig:
    rpc_url: str
    package_id: str
    module: str = "gh_bounties"
    poll_interval: float = 2.0
    page_size: int = 50
    request_timeout: int = 30

    def __post_init__(self):
        if not self.rpc_url:
            raise ConfigError("SUI_RPC_URL is required")
        if not self.package_id:
            raise ConfigError("SUI_PACKAGE_ID is required")
        if not 1 <= self.page_size <= 200:
            raise ConfigError("page_size must be within 1..200")
        self.poll_interval = max(0.25, self.poll_interval)

    @property
    def source_key(self) -> str:
        return f"sui:{self.package_id.lower()}"

    @classmethod
    def from_env(cls, env: Mapping[str, str] = None) -> Optional["SuiIndexerConfig"]:
        env = os.environ if env is None else env
        package_id = (env.get("SUI_PACKAGE_ID") or "").strip()
        if not package_id:
            return None
        return cls(
            rpc_url=(env.get("SUI_RPC_URL") or "").strip(),
            package_id=package_id,
            poll_interval=_int(env, "SUI_POLL_INTERVAL_MS", 2000, minimum=250) / 1000.0,
            page_size=_int(env, "SUI_EVENT_PAGE_SIZE", 50, minimum=1, maximum=200),
        )


@dataclass
class TreasuryConfig:
    """Settlement side: Gateway deposits into Arc, bridge payouts out of it."""
    treasury_address: str
    destination_caller_key: str
    gateway_api_url: str = DEFAULT_GATEWAY_API_URL
    bridge_api_url: str = ""
    arc_chain_id: int = ARC_TESTNET["chain_id"]
    arc_rpc_url: str = ARC_TESTNET["rpc"]
    arc_domain: int = ARC_TESTNET["domain"]
    arc_usdc: str = ARC_TESTNET["usdc"]
    orchestrator_enabled: bool = True
    interval: float = 2.5
    funding_batch: int = 5
    payout_batch: int = 3
    request_timeout: int = 30
    destination_caller_address: str = field(default="", init=False)

    def __post_init__(self):
        if not ADDRESS_RE.match(self.treasury_address or ""):
            raise ConfigError("Missing TREASURY_ADDRESS")
        if not PRIVATE_KEY_RE.match(self.destination_caller_key or ""):
            raise ConfigError("Missing TREASURY_DESTINATION_CALLER_PRIVATE_KEY")
        self.destination_caller_address = Account.from_key(self.destination_caller_key).address
        if self.destination_caller_address.lower() != self.treasury_address.lower():
            raise ConfigError(
                "TREASURY_ADDRESS must match the TREASURY_DESTINATION_CALLER_PRIVATE_KEY address"
            )
        self.interval = max(0.25, self.interval)

    @property
    def arc_chain_name(self) -> str:
        """Chain name the minter and the bridge service know Arc by."""
        if self.arc_chain_id == ARC_TESTNET["chain_id"]:
            return "Arc_Testnet"
        return f"Arc_{self.arc_chain_id}"

    @classmethod
    def from_env(cls, env: Mapping[str, str] = None) -> Optional["TreasuryConfig"]:
        """None unless TREASURY_ENABLED=1."""
        env = os.environ if env is None else env
        if env.get("TREASURY_ENABLED") != "1":
            return None
        return cls(
            treasury_address=(env.get("TREASURY_ADDRESS") or "").strip(),
            destination_caller_key=(env.get("TREASURY_DESTINATION_CALLER_PRIVATE_KEY") or "").strip(),
            gateway_api_url=(env.get("CIRCLE_GATEWAY_API_URL") or DEFAULT_GATEWAY_API_URL).strip(),
            bridge_api_url=(env.get("TREASURY_BRIDGE_API_URL") or "").strip(),
            arc_chain_id=_int(env, "TREASURY_ARC_CHAIN_ID", ARC_TESTNET["chain_id"], minimum=1),
            arc_rpc_url=(env.get("TREASURY_ARC_RPC_URL") or ARC_TESTNET["rpc"]).strip(),
            orchestrator_enabled=(env.get("TREASURY_ORCHESTRATOR_ENABLED") or "1") == "1",
            interval=_int(env, "TREASURY_ORCHESTRATOR_INTERVAL_MS", 2500) / 1000.0,
        )

    def describe(self) -> Dict[str, object]:
        return {
            "treasury": self.treasury_address,
            "caller_key": mask_secret(self.destination_caller_key),
            "gateway": self.gateway_api_url,
            "arc_chain_id": self.arc_chain_id,
            "interval": self.interval,
        }
