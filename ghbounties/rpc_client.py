"""
gh-bounties settlement - RPC Client

JSON-RPC 2.0 client for Sui fullnodes.
"""

import logging
from typing import Any, Dict, Optional

import requests

from .errors import RPCError, TransientError

log = logging.getLogger(__name__)


class TransientRPCError(RPCError, TransientError):
    """Connection failure or timeout talking to the node."""


class RPCClient:
    """
    JSON-RPC client.

    Usage:
        rpc = RPCClient("https://fullnode.testnet.sui.io")
        page = rpc.query_events({"MoveEventModule": {...}}, cursor=None, limit=50)
        obj = rpc.get_object("0x...")
    """

    def __init__(self, url: str, timeout: int = 30, session: requests.Session = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._id = 0

    def _call(self, method: str, params: list = None) -> Any:
        """Make RPC call."""
        self._id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._id,
            "method": method,
            "params": params or []
        }

        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise TransientRPCError(-1, f"Connection failed: {e}") from e

        try:
            result = response.json()
        except ValueError as e:
            raise RPCError(-32700, f"Invalid JSON from {method}: {e}") from e

        if "error" in result and result["error"]:
            err = result["error"]
            raise RPCError(err.get("code", -1), err.get("message", str(err)))

        return result.get("result")

    def __getattr__(self, name: str):
        """Allow calling RPC methods as attributes."""
        if name.startswith("_"):
            raise AttributeError(name)

        def method(*args):
            return self._call(name, list(args))
        return method

    # ═══════════════════════════════════════════════════════════════════════
    # SUI METHODS
    # ═══════════════════════════════════════════════════════════════════════

    def query_events(self, query: Dict[str, Any], cursor: Optional[Dict[str, str]] = None,
                     limit: int = 50, descending: bool = False) -> Dict[str, Any]:
        """suix_queryEvents: {data: [...], nextCursor, hasNextPage}."""
        return self._call("suix_queryEvents", [query, cursor, limit, descending]) or {}

    def get_object(self, object_id: str, show_content: bool = True) -> Dict[str, Any]:
        return self._call("sui_getObject", [object_id, {"showContent": show_content}]) or {}

    def get_chain_identifier(self) -> str:
        return self._call("sui_getChainIdentifier")

    def ping(self) -> bool:
        """Check connection."""
        try:
            self.get_chain_identifier()
            return True
        except RPCError as e:
            log.debug(f"Sui RPC unreachable at {self.url}: {e}")
            return False
