"""
gh-bounties settlement - Issue Notifier

Best-effort side calls made after the projector commits: label sync and
activity comments on the bounty's GitHub issue. The GitHub client itself
lives outside this package; IssueNotifier is the seam it plugs into.
"""

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from .bounty_types import Bounty, BountyStatus, SUI_COIN_TYPE, ZERO_ADDRESS
from .expiring import ExpiringStore

log = logging.getLogger(__name__)

ISSUE_URL_RE = re.compile(
    r"^(?:https?://)?(?:www\.)?github\.com/([^/]+)/([^/]+)/issues/(\d+)", re.IGNORECASE
)

TokenMeta = Tuple[int, str]


def parse_github_issue_url(url: str) -> Tuple[str, str, int]:
    """(owner, repo, issue number). Raises ValueError for non-issue URLs."""
    m = ISSUE_URL_RE.match((url or "").strip())
    if not m:
        raise ValueError(f"Invalid GitHub issue URL: {url!r}")
    repo = re.sub(r"\.git$", "", m.group(2), flags=re.IGNORECASE)
    return m.group(1), repo, int(m.group(3))


def activity_marker(source_key: str, kind: str, dedup_key: str) -> str:
    """Stable per-event marker so a notifier can post each comment once."""
    return f"ghb:{source_key}:{kind}:{dedup_key}"


class IssueNotifier:
    """Does nothing. Subclass and override what the deployment supports."""

    def bounty_status_changed(self, bounty: Bounty, status: BountyStatus):
        pass

    def activity(self, bounty: Bounty, body: str, marker: str):
        pass


class RecordingNotifier(IssueNotifier):
    """Keeps every call in memory. Handy for dry runs."""

    def __init__(self):
        self.calls: List[Tuple[str, Any]] = []

    def bounty_status_changed(self, bounty: Bounty, status: BountyStatus):
        self.calls.append(("status", (bounty.bounty_id, status)))

    def activity(self, bounty: Bounty, body: str, marker: str):
        self.calls.append(("activity", (bounty.bounty_id, body, marker)))


# =============================================================================
# TOKEN LABELS
# =============================================================================

class TokenMetaCache:
    """
    (decimals, symbol) per token, cached in an injected ExpiringStore.

    `lookup` does the chain read and may raise; failures fall back to
    18 decimals and an abbreviated address.
    """

    def __init__(self, lookup: Callable[[str], TokenMeta], store: ExpiringStore = None):
        self.lookup = lookup
        self.store = store or ExpiringStore(ttl=3600)

    def get(self, token: str) -> TokenMeta:
        if token == SUI_COIN_TYPE:
            return 9, "SUI"
        if token.lower() == ZERO_ADDRESS:
            return 18, "ETH"
        meta = self.store.get(token.lower())
        if meta is not None:
            return meta
        try:
            meta = self.lookup(token)
        except Exception as e:
            log.debug(f"Token metadata lookup failed for {token}: {e}")
            return 18, f"{token[:6]}...{token[-4:]}"
        self.store.put(token.lower(), meta)
        return meta


def format_units(amount: int, decimals: int) -> str:
    value = Decimal(amount).scaleb(-decimals)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_activity(kind: str, fields: Dict[str, Any],
                    meta: Optional[TokenMeta] = None) -> Optional[str]:
    """Comment body for an applied event, or None if the event is not announced."""
    decimals, symbol = meta or (18, "")
    amount = format_units(int(fields.get("amount", 0)), decimals)
    label = symbol or fields.get("token", "")

    if kind == "BountyFunded":
        lines = [f"Bounty funded: {amount} {label}", f"Funder: {fields.get('funder')}"]
        locked = int(fields.get("locked_until") or 0)
        if locked > 0:
            # Sui reports milliseconds
            seconds = locked / 1000 if fields.get("token") == SUI_COIN_TYPE else locked
            when = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
            lines.append(f"Lock until: {when}")
        return "\n".join(lines)
    if kind == "ClaimSubmitted":
        lines = [f"Claim submitted by {fields.get('claimer')}"]
        if fields.get("metadata_uri"):
            lines.append(f"Claim: {fields['metadata_uri']}")
        return "\n".join(lines)
    if kind == "PaidOut":
        return f"Payout completed: {amount} {label}\nRecipient: {fields.get('recipient')}"
    if kind == "Refunded":
        return f"Refund completed: {amount} {label}\nFunder: {fields.get('funder')}"
    return None
