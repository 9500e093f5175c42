"""
gh-bounties settlement - Settlement Services

Clients for the external steps of the treasury saga:

  GatewayClient   Circle Gateway API: info, burn estimate, burn transfer
  ArcMinter       gatewayMint(bytes,bytes) on the Arc minter contract
  BridgeClient    bridge service moving USDC out of Arc to a payout chain

Timeouts, connection failures and HTTP 429/5xx raise TransientError; every
other failure raises SettlementError. Whether a transient failure is retried
is the caller's RetryPolicy.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from .config import GATEWAY_TESTNET_CONTRACTS, USDC_DECIMALS, TreasuryConfig
from .errors import GatewayError, SettlementError, TransientError, TransientGatewayError
from .notifier import format_units
from .typed_data import BurnIntent, TransferSpec

log = logging.getLogger(__name__)

T = TypeVar("T")

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

GATEWAY_MINTER_ABI = [
    {
        "type": "function",
        "name": "gatewayMint",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "payload", "type": "bytes"},
            {"name": "signature", "type": "bytes"},
        ],
        "outputs": [],
    }
]


# =============================================================================
# RETRY
# =============================================================================

@dataclass
class RetryPolicy:
    """Bounded exponential backoff for TransientError only."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 15.0

    def delay(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


NO_RETRY = RetryPolicy(max_attempts=1)


def call_with_retry(fn: Callable[[], T], policy: RetryPolicy, what: str = "call",
                    sleep: Callable[[float], None] = time.sleep) -> T:
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except TransientError as e:
            if attempt >= policy.max_attempts:
                raise
            delay = policy.delay(attempt)
            log.warning(f"{what} failed (attempt {attempt}/{policy.max_attempts}), "
                        f"retrying in {delay:.1f}s: {e}")
            sleep(delay)


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class Attestation:
    attestation: str
    signature: str


@dataclass
class BridgeResult:
    tx_ids: List[str] = field(default_factory=list)
    raw: Any = None

    @property
    def first(self) -> str:
        return self.tx_ids[0] if self.tx_ids else ""

    @property
    def last(self) -> str:
        return self.tx_ids[-1] if self.tx_ids else ""


def extract_tx_hashes(result: Any) -> List[str]:
    """Every 32-byte hex string in a JSON-like structure, depth first."""
    hashes: List[str] = []

    def walk(value: Any):
        if isinstance(value, str):
            if TX_HASH_RE.match(value):
                hashes.append(value)
        elif isinstance(value, dict):
            for item in value.values():
                walk(item)
        elif isinstance(value, (list, tuple)):
            for item in value:
                walk(item)

    walk(result)
    return hashes


def _first(data: Any) -> Dict[str, Any]:
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict):
        raise SettlementError(f"unexpected response shape: {data!r}")
    return data


def _hex_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


# =============================================================================
# GATEWAY
# =============================================================================

class GatewayClient:
    """
    Circle Gateway REST client.

    Usage:
        gateway = GatewayClient("https://gateway-api-testnet.circle.com")
        burn_intent = gateway.estimate_burn(spec)
        attestation = gateway.submit_burn(burn_intent, signature)
    """

    def __init__(self, base_url: str, timeout: int = 30, session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, body: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url,
                json=body,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise TransientError(f"Gateway {path} unreachable: {e}") from e
        except requests.exceptions.RequestException as e:
            raise SettlementError(f"Gateway {path} request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.ok:
            message = response.reason or "error"
            if isinstance(data, dict):
                if isinstance(data.get("error"), str):
                    message = data["error"]
                elif isinstance(data.get("message"), str):
                    message = data["message"]
            if data is not None:
                message = f"{message} :: {json.dumps(data)}"
            status = response.status_code
            if status == 429 or status >= 500:
                raise TransientGatewayError(status, message)
            raise GatewayError(status, message)
        return data

    def get_info(self) -> Dict[str, Any]:
        return self._request("GET", "/v1/info") or {}

    def estimate_burn(self, transfer_spec: Union[TransferSpec, dict],
                      max_block_height: Optional[int] = None,
                      max_fee: Optional[int] = None) -> Dict[str, Any]:
        """Ask Gateway to complete a transfer spec into a burn intent (fees, expiry)."""
        spec = transfer_spec.to_dict() if isinstance(transfer_spec, TransferSpec) else transfer_spec
        body: Dict[str, Any] = {"spec": spec}
        if max_block_height is not None:
            body["maxBlockHeight"] = str(max_block_height)
        if max_fee is not None:
            body["maxFee"] = str(max_fee)
        result = _first(self._request("POST", "/v1/estimate", [body]))
        burn_intent = result.get("burnIntent")
        if not isinstance(burn_intent, dict):
            raise SettlementError(f"Gateway estimate returned no burnIntent: {result!r}")
        return burn_intent

    def submit_burn(self, burn_intent: Union[BurnIntent, dict], signature: str) -> Attestation:
        """Submit the signed burn intent; Gateway answers with a mint attestation."""
        intent = burn_intent.to_dict() if isinstance(burn_intent, BurnIntent) else burn_intent
        result = _first(self._request("POST", "/v1/transfer",
                                      [{"burnIntent": intent, "signature": signature}]))
        attestation = result.get("attestation")
        attestation_signature = result.get("signature")
        if not attestation or not attestation_signature:
            raise SettlementError(f"Gateway transfer returned no attestation: {result!r}")
        return Attestation(attestation=attestation, signature=attestation_signature)


def domain_contracts(info: Dict[str, Any], domain: int, role: str) -> str:
    """walletContract or minterContract Gateway advertises for a domain."""
    key = {"wallet": "walletContract", "minter": "minterContract"}[role]
    for entry in (info or {}).get("domains") or []:
        if str(entry.get("domain")) == str(domain) and entry.get(key):
            return entry[key]
    raise SettlementError(f"Gateway info missing {key} for domain {domain}")


# =============================================================================
# ARC MINT
# =============================================================================

class ArcMinter:
    """
    Mints attested Gateway transfers on Arc.

    Failures before the transaction is broadcast are transient. Once a
    transaction is out, failures are terminal: the attestation is single-use,
    so a resend could only revert.
    """

    def __init__(self, w3: Web3, chain_id: int, private_key: str,
                 minter_address: str = GATEWAY_TESTNET_CONTRACTS["minter"],
                 chain_name: str = "Arc_Testnet", receipt_timeout: int = 120):
        self.w3 = w3
        self.chain_id = chain_id
        self.chain_name = chain_name
        self.account = Account.from_key(private_key)
        self.receipt_timeout = receipt_timeout
        self.contract = w3.eth.contract(
            address=Web3.to_checksum_address(minter_address),
            abi=GATEWAY_MINTER_ABI,
        )

    @classmethod
    def from_config(cls, cfg: TreasuryConfig) -> "ArcMinter":
        w3 = Web3(Web3.HTTPProvider(cfg.arc_rpc_url,
                                    request_kwargs={"timeout": cfg.request_timeout}))
        return cls(w3, cfg.arc_chain_id, cfg.destination_caller_key,
                   chain_name=cfg.arc_chain_name)

    def serves(self, chain: Union[str, int]) -> bool:
        return str(chain) in (str(self.chain_id), self.chain_name)

    def mint(self, destination_chain: Union[str, int], attestation: str, signature: str) -> str:
        if not self.serves(destination_chain):
            raise SettlementError(f"minter serves {self.chain_name}, not {destination_chain}")

        try:
            tx = self.contract.functions.gatewayMint(
                _hex_bytes(attestation), _hex_bytes(signature)
            ).build_transaction({
                "from": self.account.address,
                "chainId": self.chain_id,
                "nonce": self.w3.eth.get_transaction_count(self.account.address),
            })
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise TransientError(f"Arc RPC unreachable: {e}") from e
        except ContractLogicError as e:
            raise SettlementError(f"gatewayMint would revert: {e}") from e

        tx_hex = "0x" + bytes(tx_hash).hex()
        log.info(f"gatewayMint sent: {tx_hex}")
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as e:
            raise SettlementError(f"gatewayMint {tx_hex} not mined after "
                                  f"{self.receipt_timeout}s") from e
        if receipt["status"] != 1:
            raise SettlementError(f"gatewayMint {tx_hex} reverted")
        return tx_hex


# =============================================================================
# BRIDGE
# =============================================================================

class BridgeClient:
    """
    HTTP bridge service.

    POST {base}/v1/bridge {from, to, recipient, amount} where amount is a
    USDC decimal string. Every tx hash in the reply is collected; the first
    is the source-side burn, the last the destination-side mint.
    """

    def __init__(self, base_url: str, timeout: int = 120, session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def bridge(self, source_chain: str, destination_chain: str, recipient: str,
               amount: int) -> BridgeResult:
        body = {
            "from": source_chain,
            "to": destination_chain,
            "recipient": recipient,
            "amount": format_units(amount, USDC_DECIMALS),
        }
        try:
            response = self.session.post(f"{self.base_url}/v1/bridge", json=body,
                                         timeout=self.timeout)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise TransientError(f"bridge unreachable: {e}") from e
        except requests.exceptions.RequestException as e:
            raise SettlementError(f"bridge request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None
        if not response.ok:
            message = data.get("error") if isinstance(data, dict) else None
            text = f"bridge error ({response.status_code}): {message or response.reason}"
            if response.status_code == 429 or response.status_code >= 500:
                raise TransientError(text)
            raise SettlementError(text)

        hashes = extract_tx_hashes(data)
        if not hashes:
            log.warning(f"Bridge to {destination_chain} returned no tx hashes")
        return BridgeResult(tx_ids=hashes, raw=data)
