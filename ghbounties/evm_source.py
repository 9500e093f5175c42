"""
gh-bounties settlement - EVM Source

Reads GHBounties contract logs from an EVM chain.

Backfill walks block ranges with eth_getLogs. Tailing installs an
eth_newFilter log filter and polls it from a background thread, catching up
the gap between the stored cursor and the filter's creation with getLogs.

Cursor position = last fully processed block.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak
from web3 import Web3

from .bounty_types import Cursor, EventPage, LedgerEvent
from .config import EVMIndexerConfig
from .errors import MalformedEventError, SourceConfigError
from .sources import PushLedgerSource, Subscription

log = logging.getLogger(__name__)


# =============================================================================
# CONTRACT EVENTS
# =============================================================================

def _event(name: str, *inputs) -> dict:
    return {
        "type": "event",
        "name": name,
        "inputs": [{"name": n, "type": t, "indexed": i} for n, t, i in inputs],
    }


BOUNTY_EVENTS_ABI = [
    _event("RepoRegistered",
           ("repoHash", "bytes32", True), ("maintainer", "address", True)),
    _event("RepoMaintainerChanged",
           ("repoHash", "bytes32", True), ("oldMaintainer", "address", True),
           ("newMaintainer", "address", True)),
    _event("BountyCreated",
           ("bountyId", "bytes32", True), ("repoHash", "bytes32", True),
           ("issueNumber", "uint256", True), ("metadataURI", "string", False)),
    _event("BountyFunded",
           ("bountyId", "bytes32", True), ("token", "address", True),
           ("funder", "address", True), ("amount", "uint256", False),
           ("lockedUntil", "uint64", False)),
    _event("ClaimSubmitted",
           ("bountyId", "bytes32", True), ("claimId", "uint256", True),
           ("claimer", "address", True), ("metadataURI", "string", False)),
    _event("StatusChanged",
           ("bountyId", "bytes32", True), ("status", "uint8", False)),
    _event("PaidOut",
           ("bountyId", "bytes32", True), ("token", "address", True),
           ("recipient", "address", True), ("amount", "uint256", False)),
    _event("Refunded",
           ("bountyId", "bytes32", True), ("token", "address", True),
           ("funder", "address", True), ("amount", "uint256", False)),
]

FIELD_NAMES = {
    "repoHash": "repo_hash",
    "maintainer": "maintainer",
    "oldMaintainer": "old_maintainer",
    "newMaintainer": "new_maintainer",
    "bountyId": "bounty_id",
    "issueNumber": "issue_number",
    "metadataURI": "metadata_uri",
    "token": "token",
    "funder": "funder",
    "amount": "amount",
    "lockedUntil": "locked_until",
    "claimId": "claim_id",
    "claimer": "claimer",
    "status": "status",
    "recipient": "recipient",
}


def event_signature(abi: dict) -> str:
    return f"{abi['name']}({','.join(i['type'] for i in abi['inputs'])})"


def event_topic(abi: dict) -> str:
    return "0x" + keccak(text=event_signature(abi)).hex()


EVENTS_BY_TOPIC = {event_topic(abi): abi for abi in BOUNTY_EVENTS_ABI}

ERC20_META_ABI = [
    {"type": "function", "name": "decimals", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "uint8"}]},
    {"type": "function", "name": "symbol", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "string"}]},
]


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = str(value)
    return bytes.fromhex(text[2:] if text.startswith("0x") else text)


def _hex(value: Any) -> str:
    return "0x" + _to_bytes(value).hex()


def _normalize(kind: str, value: Any) -> Any:
    if kind == "address":
        return value.lower()
    if kind.startswith("bytes"):
        return "0x" + bytes(value).hex()
    return value


def decode_log(entry: Dict[str, Any]) -> LedgerEvent:
    """Decode one GHBounties log into a LedgerEvent keyed by txHash:logIndex."""
    topics = [_to_bytes(t) for t in entry.get("topics") or []]
    if not topics:
        raise MalformedEventError("unknown", "log has no topics")
    abi = EVENTS_BY_TOPIC.get("0x" + topics[0].hex())
    if abi is None:
        raise MalformedEventError("unknown", f"unrecognized topic 0x{topics[0].hex()}")

    indexed = [i for i in abi["inputs"] if i["indexed"]]
    plain = [i for i in abi["inputs"] if not i["indexed"]]
    if len(topics) - 1 != len(indexed):
        raise MalformedEventError(abi["name"], f"expected {len(indexed)} indexed topics, "
                                               f"got {len(topics) - 1}")

    fields: Dict[str, Any] = {}
    try:
        for inp, topic in zip(indexed, topics[1:]):
            value = abi_decode([inp["type"]], topic)[0]
            fields[FIELD_NAMES[inp["name"]]] = _normalize(inp["type"], value)
        if plain:
            values = abi_decode([i["type"] for i in plain], _to_bytes(entry.get("data") or b""))
            for inp, value in zip(plain, values):
                fields[FIELD_NAMES[inp["name"]]] = _normalize(inp["type"], value)
    except (DecodingError, ValueError) as e:
        raise MalformedEventError(abi["name"], f"cannot decode log: {e}") from e

    tx_hash = _hex(entry["transactionHash"])
    log_index = int(entry["logIndex"])
    return LedgerEvent(
        dedup_key=f"{tx_hash}:{log_index}",
        kind=abi["name"],
        fields=fields,
        position=int(entry["blockNumber"]),
        tx_id=tx_hash,
        seq=log_index,
    )


# =============================================================================
# SOURCE
# =============================================================================

class EVMLedgerSource(PushLedgerSource):
    """
    GHBounties deployment on an EVM chain.

    Usage:
        source = EVMLedgerSource.from_config(cfg)
        source.verify()
        page = source.query_events(Cursor(position=1000))
    """

    def __init__(self, w3: Web3, chain_id: int, contract_address: str,
                 block_chunk: int = 10, poll_interval: float = 4.0,
                 start_block: Optional[int] = None):
        self.w3 = w3
        self.chain_id = chain_id
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.source_key = f"evm:{chain_id}:{contract_address.lower()}"
        self.page_size = block_chunk
        self.poll_interval = poll_interval
        self.start_block = start_block

    @classmethod
    def from_config(cls, cfg: EVMIndexerConfig) -> "EVMLedgerSource":
        w3 = Web3(Web3.HTTPProvider(cfg.rpc_urls[0],
                                    request_kwargs={"timeout": cfg.request_timeout}))
        return cls(
            w3,
            chain_id=cfg.chain_id,
            contract_address=cfg.contract_address,
            block_chunk=cfg.block_chunk,
            poll_interval=cfg.poll_interval,
            start_block=cfg.start_block,
        )

    def head(self) -> int:
        return int(self.w3.eth.block_number)

    def verify(self):
        chain_id = int(self.w3.eth.chain_id)
        if chain_id != self.chain_id:
            raise SourceConfigError(f"RPC chain id {chain_id} does not match "
                                    f"configured chain id {self.chain_id}")
        code = self.w3.eth.get_code(self.contract_address)
        if not code or len(code) == 0:
            raise SourceConfigError(f"no contract code at {self.contract_address} "
                                    f"on chain {self.chain_id}")

    def token_meta(self, token: str) -> Tuple[int, str]:
        """(decimals, symbol) of an ERC20 token, read from the chain."""
        erc20 = self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_META_ABI)
        return int(erc20.functions.decimals().call()), str(erc20.functions.symbol().call())

    def start_cursor(self, persisted: Optional[Cursor], safety_window: int = 0) -> Cursor:
        """
        Position before the first block to backfill.

        from = max(persisted + 1, head - safety_window), clamped to head.
        Without a persisted cursor the configured start block is the floor.
        """
        head = self.head()
        if persisted is not None:
            from_block = persisted.position + 1
        elif self.start_block is not None:
            from_block = self.start_block
        else:
            from_block = 0
        if safety_window:
            from_block = max(from_block, head - safety_window)
        from_block = max(0, min(from_block, head))
        return Cursor(position=from_block - 1)

    def get_logs(self, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        return self.w3.eth.get_logs({
            "address": self.contract_address,
            "fromBlock": from_block,
            "toBlock": to_block,
        })

    def decode_logs(self, entries: List[Dict[str, Any]]) -> List[LedgerEvent]:
        """Decode in (block, logIndex) order. Undecodable logs are logged and dropped."""
        events = []
        for entry in sorted(entries, key=lambda e: (int(e["blockNumber"]), int(e["logIndex"]))):
            if entry.get("removed"):
                log.debug(f"[{self.source_key}] Skipping removed log in block {entry['blockNumber']}")
                continue
            try:
                events.append(decode_log(entry))
            except MalformedEventError as e:
                log.warning(f"[{self.source_key}] Skipping undecodable log "
                            f"{_hex(entry.get('transactionHash', b''))}:{entry.get('logIndex')}: {e}")
        return events

    def query_events(self, cursor: Optional[Cursor], page_size: int = None) -> EventPage:
        chunk = page_size or self.page_size
        from_block = cursor.position + 1 if cursor is not None else 0
        head = self.head()
        if from_block > head:
            return EventPage([], cursor or Cursor(position=from_block - 1), False)
        to_block = min(from_block + chunk - 1, head)
        events = self.decode_logs(self.get_logs(from_block, to_block))
        return EventPage(events, Cursor(position=to_block), to_block < head)

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def subscribe(self, cursor: Optional[Cursor],
                  on_page: Callable[[EventPage], None]) -> Subscription:
        stop = threading.Event()
        thread = threading.Thread(
            target=self._watch,
            args=(cursor, on_page, stop),
            name=f"watch-{self.source_key}",
            daemon=True,
        )
        thread.start()
        return Subscription(thread, stop)

    def _catch_up(self, last: int, on_page: Callable[[EventPage], None],
                  stop: threading.Event) -> int:
        while not stop.is_set():
            page = self.query_events(Cursor(position=last))
            on_page(page)
            last = page.next_cursor.position
            if not page.has_more:
                break
        return last

    def _watch(self, cursor: Optional[Cursor], on_page: Callable[[EventPage], None],
               stop: threading.Event):
        last = cursor.position if cursor is not None else self.head()
        log_filter = None
        while not stop.is_set():
            try:
                if log_filter is None:
                    log_filter = self.w3.eth.filter({
                        "address": self.contract_address,
                        "fromBlock": last + 1,
                    })
                    last = self._catch_up(last, on_page, stop)
                entries = log_filter.get_new_entries()
                if entries:
                    last = max(last, max(int(e["blockNumber"]) for e in entries))
                    on_page(EventPage(self.decode_logs(entries), Cursor(position=last), False))
            except Exception as e:
                # Nodes drop idle filters; reinstall from the last delivered block
                log.warning(f"[{self.source_key}] Log filter failed at block {last}, "
                            f"reinstalling: {e}")
                log_filter = None
            stop.wait(self.poll_interval)
        log.info(f"[{self.source_key}] Subscription closed at block {last}")
