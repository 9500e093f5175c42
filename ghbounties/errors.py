"""
gh-bounties settlement - Errors

Exception types raised at the chain, service and store boundaries.
"""


class RPCError(Exception):
    """JSON-RPC call failed."""
    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"RPC Error {code}: {message}")


class ConfigError(ValueError):
    """Environment or constructor configuration is invalid."""


class SourceConfigError(RuntimeError):
    """A ledger source points at the wrong chain or at a missing contract."""


class MalformedEventError(ValueError):
    """A decoded event is missing fields or carries values of the wrong shape."""
    def __init__(self, kind: str, message: str):
        self.kind = kind
        super().__init__(f"{kind}: {message}")


class VerificationError(ValueError):
    """Signature, schema or balance check failed. Never retried."""


class InsufficientFundsError(VerificationError):
    def __init__(self, bounty_id: str, available: int, requested: int):
        self.bounty_id = bounty_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"insufficient treasury balance for {bounty_id}: "
            f"available={available} requested={requested}"
        )


class IntentError(ValueError):
    """An intent is missing or not in the state the operation requires."""


class SettlementError(RuntimeError):
    """An external settlement step (estimate, transfer, mint, bridge) failed."""


class TransientError(SettlementError):
    """Timeout, connection failure or a retryable HTTP status."""


class GatewayError(SettlementError):
    """Gateway API replied with an error status."""
    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"Gateway API error ({status}): {message}")


class TransientGatewayError(GatewayError, TransientError):
    """Gateway API replied 429 or 5xx."""


class StoreError(RuntimeError):
    """A ledger write would break a counter invariant."""
