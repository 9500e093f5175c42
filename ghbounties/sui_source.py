"""
gh-bounties settlement - Sui Source

Pull-paginated reader for the gh_bounties Move module.

Events are paged with suix_queryEvents using the (txDigest, eventSeq) id of
the last consumed event as the opaque cursor. Cursor.position counts events
consumed so far, which keeps it monotonic across pages.
"""

import base64
import logging
from typing import Any, Dict, Optional

from .bounty_types import SUI_COIN_TYPE, Cursor, EventPage, LedgerEvent
from .config import SuiIndexerConfig
from .errors import RPCError, TransientError
from .rpc_client import RPCClient
from .sources import PullLedgerSource

log = logging.getLogger(__name__)


# Move event type suffix -> ledger event kind
EVENT_KINDS = {
    "BountyCreated": "BountyCreated",
    "BountyFunded": "BountyFunded",
    "Payout": "PaidOut",
    "Refund": "Refunded",
    "ClaimSubmitted": "ClaimSubmitted",
}


def move_string(value: Any) -> str:
    """Decode a Move String, which RPCs render as text or as {bytes: hex|base64|[..]}."""
    if isinstance(value, str):
        return value
    if not isinstance(value, dict) or "bytes" not in value:
        return ""
    raw = value["bytes"]
    try:
        if isinstance(raw, str):
            if raw.startswith("0x"):
                return bytes.fromhex(raw[2:]).decode("utf-8")
            return base64.b64decode(raw).decode("utf-8")
        if isinstance(raw, list):
            return bytes(raw).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        log.debug(f"Undecodable Move string {raw!r}: {e}")
    return ""


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def _object_fields(obj: Dict[str, Any]) -> Dict[str, Any]:
    data = (obj or {}).get("data") or {}
    content = data.get("content") or {}
    return content.get("fields") or {}


class SuiLedgerSource(PullLedgerSource):
    """
    gh_bounties package on Sui.

    Usage:
        source = SuiLedgerSource(RPCClient(url), package_id)
        page = source.query_events(None)
    """

    def __init__(self, rpc: RPCClient, package_id: str, module: str = "gh_bounties",
                 page_size: int = 50, poll_interval: float = 2.0):
        self.rpc = rpc
        self.package_id = package_id
        self.module = module
        self.page_size = page_size
        self.poll_interval = poll_interval
        self.source_key = f"sui:{package_id.lower()}"

    @classmethod
    def from_config(cls, cfg: SuiIndexerConfig) -> "SuiLedgerSource":
        return cls(
            RPCClient(cfg.rpc_url, timeout=cfg.request_timeout),
            cfg.package_id,
            module=cfg.module,
            page_size=cfg.page_size,
            poll_interval=cfg.poll_interval,
        )

    def verify(self):
        log.info(f"[{self.source_key}] Connected to Sui chain {self.rpc.get_chain_identifier()}")

    def query_events(self, cursor: Optional[Cursor], page_size: int = None) -> EventPage:
        rpc_cursor = None
        if cursor is not None and cursor.tx_id:
            rpc_cursor = {"txDigest": cursor.tx_id, "eventSeq": str(cursor.seq)}

        page = self.rpc.query_events(
            {"MoveEventModule": {"package": self.package_id, "module": self.module}},
            cursor=rpc_cursor,
            limit=page_size or self.page_size,
            descending=False,
        )
        data = page.get("data") or []
        if not data:
            return EventPage([], cursor or Cursor(position=0), False)

        base = cursor.position if cursor is not None else 0
        events = [self.decode_event(raw) for raw in data]
        for offset, event in enumerate(events, start=1):
            event.position = base + offset
        last_id = data[-1].get("id") or {}
        next_cursor = Cursor(
            position=base + len(data),
            tx_id=last_id.get("txDigest", ""),
            seq=_int(last_id.get("eventSeq")),
        )
        return EventPage(events, next_cursor, bool(page.get("hasNextPage")))

    def decode_event(self, raw: Dict[str, Any]) -> LedgerEvent:
        """Normalize a Sui event into the field names the projector expects."""
        event_id = raw.get("id") or {}
        tx_digest = event_id.get("txDigest", "")
        seq = _int(event_id.get("eventSeq"))
        suffix = (raw.get("type") or "").rsplit("::", 1)[-1]
        kind = EVENT_KINDS.get(suffix, suffix)
        parsed = raw.get("parsedJson") if isinstance(raw.get("parsedJson"), dict) else {}
        sender = raw.get("sender") or ""

        def text(key: str) -> str:
            value = parsed.get(key)
            return value if isinstance(value, str) else ""

        fields: Dict[str, Any] = {"bounty_id": text("bounty_id") or text("bountyId")}
        if kind == "BountyCreated" and fields["bounty_id"]:
            fields.update(self.read_bounty(fields["bounty_id"]))
        elif kind == "BountyFunded":
            fields.update({
                "token": SUI_COIN_TYPE,
                "funder": (text("funder") or sender).lower(),
                "amount": _int(parsed.get("amount_mist")),
                "locked_until": _int(parsed.get("locked_until_ms")),
                "receipt_id": text("receipt_id"),
            })
        elif kind == "PaidOut":
            fields.update({
                "token": SUI_COIN_TYPE,
                "recipient": text("recipient").lower(),
                "amount": _int(parsed.get("amount_mist")),
            })
        elif kind == "Refunded":
            fields.update({
                "token": SUI_COIN_TYPE,
                "funder": text("funder").lower(),
                "amount": _int(parsed.get("amount_mist")),
            })
        elif kind == "ClaimSubmitted":
            claim_id = text("claim_id")
            fields.update({
                "claim_id": claim_id,
                "claimer": (text("claimer") or sender).lower(),
                "metadata_uri": self.read_claim_url(claim_id) if claim_id else "",
            })

        return LedgerEvent(
            dedup_key=f"{tx_digest}:{seq}",
            kind=kind,
            fields=fields,
            tx_id=tx_digest,
            seq=seq,
        )

    def read_bounty(self, bounty_id: str) -> Dict[str, Any]:
        """
        Bounty object fields; BountyCreated only carries the object id.

        An unreadable object yields an empty placeholder so the rest of the
        page still applies. Transient node failures propagate and the page is
        polled again.
        """
        try:
            obj = self.rpc.get_object(bounty_id)
        except TransientError:
            raise
        except RPCError as e:
            log.warning(f"[{self.source_key}] Bounty object {bounty_id} unreadable, "
                        f"indexing without metadata: {e}")
            return {}
        fields = _object_fields(obj)
        status = fields.get("status")
        return {
            "repo_hash": move_string(fields.get("repo")),
            "metadata_uri": move_string(fields.get("issue_url")),
            "issue_number": _int(fields.get("issue_number")),
            "admin": fields.get("admin") if isinstance(fields.get("admin"), str) else "",
            "status": status if isinstance(status, (int, str)) else 0,
        }

    def read_claim_url(self, claim_id: str) -> str:
        try:
            return move_string(_object_fields(self.rpc.get_object(claim_id)).get("claim_url"))
        except RPCError as e:
            log.debug(f"[{self.source_key}] Claim object {claim_id} unreadable: {e}")
            return ""
