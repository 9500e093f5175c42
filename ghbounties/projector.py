"""
gh-bounties settlement - Event Projector

Applies ledger source events to the read model, idempotently.

Each event is one store transaction: the record upsert and any counter
delta commit together, and counters move only when the dedup key is new.
The source cursor is saved after every page, empty pages included, so a
restart re-reads at most one page and dedup keys absorb the replay.

Usage:
    projector = EventProjector(source, store, notifier)
    projector.start()       # backfill, then follow the source
    ...
    projector.stop()
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .bounty_types import Bounty, BountyStatus, EventPage, LedgerEvent
from .errors import MalformedEventError
from .notifier import (
    IssueNotifier, TokenMetaCache, activity_marker, format_activity, parse_github_issue_url,
)
from .sources import LedgerSource
from .store import SettlementStore

log = logging.getLogger(__name__)

SideCall = Callable[[], None]


def _require_str(event: LedgerEvent, key: str) -> str:
    value = event.fields.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedEventError(event.kind, f"missing {key}")
    return value


def _require_int(event: LedgerEvent, key: str) -> int:
    value = event.fields.get(key)
    if value is None or isinstance(value, bool):
        raise MalformedEventError(event.kind, f"missing {key}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise MalformedEventError(event.kind, f"{key} is not an integer: {value!r}")
    if number < 0:
        raise MalformedEventError(event.kind, f"{key} is negative: {number}")
    return number


class EventProjector:

    def __init__(self, source: LedgerSource, store: SettlementStore,
                 notifier: IssueNotifier = None, token_meta: TokenMetaCache = None,
                 safety_window: int = 0, page_size: int = None):
        self.source = source
        self.store = store
        self.notifier = notifier or IssueNotifier()
        self.token_meta = token_meta
        self.safety_window = safety_window
        self.page_size = page_size
        self.running = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._handlers: Dict[str, Callable[[LedgerEvent], Optional[SideCall]]] = {
            "RepoRegistered": self._repo_registered,
            "RepoMaintainerChanged": self._repo_maintainer_changed,
            "BountyCreated": self._bounty_created,
            "BountyFunded": self._bounty_funded,
            "ClaimSubmitted": self._claim_submitted,
            "StatusChanged": self._status_changed,
            "PaidOut": self._paid_out,
            "Refunded": self._refunded,
        }

    @property
    def source_key(self) -> str:
        return self.source.source_key

    # =========================================================================
    # BATCHES
    # =========================================================================

    def process_batch(self, events: List[LedgerEvent]) -> int:
        """Apply events in order. Returns how many were applied."""
        applied = 0
        for event in events:
            handler = self._handlers.get(event.kind)
            if handler is None:
                log.debug(f"[{self.source_key}] Ignoring {event.kind} {event.dedup_key}")
                continue
            try:
                if not event.tx_id:
                    raise MalformedEventError(event.kind, "missing transaction id")
                with self.store.transaction():
                    side_call = handler(event)
            except MalformedEventError as e:
                log.warning(f"[{self.source_key}] Skipping malformed event {event.dedup_key}: {e}")
                continue
            except Exception as e:
                log.error(f"[{self.source_key}] Failed to apply {event.kind} "
                          f"{event.dedup_key}: {e}")
                continue
            applied += 1
            if side_call is not None:
                self._side_call(side_call, event)
        return applied

    def process_page(self, page: EventPage) -> int:
        applied = self.process_batch(page.events)
        self.store.save_cursor(self.source_key, page.next_cursor)
        if page.events:
            log.info(f"[{self.source_key}] Applied {applied}/{len(page.events)} events, "
                     f"cursor {page.next_cursor.position}")
        return applied

    def deliver(self, page: EventPage):
        """Push delivery entry point. Never raises."""
        try:
            self.process_page(page)
        except Exception as e:
            log.error(f"[{self.source_key}] Failed to process pushed page "
                      f"at {page.next_cursor.position}: {e}")

    def tick(self) -> bool:
        """One poll from the stored cursor. True when the source has more pages."""
        cursor = None
        try:
            cursor = self.store.get_cursor(self.source_key)
            page = self.source.query_events(cursor, self.page_size)
            self.process_page(page)
            return page.has_more
        except Exception as e:
            log.error(f"[{self.source_key}] Poll failed at cursor "
                      f"{cursor.position if cursor else 'none'}: {e}")
            return False

    def backfill(self) -> int:
        """Catch up from the start cursor until the source reports no more pages."""
        cursor = self.source.start_cursor(self.store.get_cursor(self.source_key),
                                          self.safety_window)
        log.info(f"[{self.source_key}] Backfill from "
                 f"{cursor.position if cursor else 'genesis'}")
        pages = 0
        while not self._stop.is_set():
            page = self.source.query_events(cursor, self.page_size)
            self.process_page(page)
            pages += 1
            cursor = page.next_cursor
            if not page.has_more:
                break
        log.info(f"[{self.source_key}] Backfill done after {pages} pages at {cursor.position}")
        return pages

    # =========================================================================
    # LOOP
    # =========================================================================

    def run(self):
        """Backfill (retrying until it succeeds), then follow the source."""
        self.running = True
        try:
            while not self._stop.is_set():
                try:
                    self.backfill()
                    break
                except Exception as e:
                    log.error(f"[{self.source_key}] Backfill failed, retrying: {e}")
                    self._stop.wait(self.source.poll_interval)
            if not self._stop.is_set():
                self.source.follow(self, self._stop)
        finally:
            self.running = False

    def start(self):
        self.source.verify()
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name=f"projector-{self.source_key}",
                                        daemon=True)
        self._thread.start()
        log.info(f"[{self.source_key}] Projector started")

    def stop(self, timeout: float = 10.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        log.info(f"[{self.source_key}] Projector stopped")

    # =========================================================================
    # HANDLERS (run inside the event's transaction)
    # =========================================================================

    def _record_meta(self, event: LedgerEvent) -> Dict[str, Any]:
        return {"tx_id": event.tx_id, "seq": event.seq, "position": event.position}

    def _repo_registered(self, event: LedgerEvent) -> Optional[SideCall]:
        self.store.upsert_repo(_require_str(event, "repo_hash"),
                               _require_str(event, "maintainer"))
        return None

    def _repo_maintainer_changed(self, event: LedgerEvent) -> Optional[SideCall]:
        self.store.upsert_repo(_require_str(event, "repo_hash"),
                               _require_str(event, "new_maintainer"))
        return None

    def _bounty_created(self, event: LedgerEvent) -> Optional[SideCall]:
        bounty_id = _require_str(event, "bounty_id")
        if "metadata_uri" not in event.fields:
            # source could not read the bounty object
            self.store.ensure_bounty(bounty_id, self.source_key)
            return None
        repo_hash = event.fields.get("repo_hash") or ""
        if repo_hash:
            self.store.ensure_repo(repo_hash)
        try:
            status = BountyStatus.from_chain(event.fields.get("status", 0))
        except (TypeError, ValueError):
            raise MalformedEventError(event.kind, f"bad status {event.fields.get('status')!r}")
        bounty = Bounty(
            bounty_id=bounty_id,
            source_key=self.source_key,
            repo_hash=repo_hash,
            issue_number=int(event.fields.get("issue_number") or 0),
            metadata_uri=event.fields.get("metadata_uri") or "",
            status=status,
            admin=event.fields.get("admin") or "",
        )
        self.store.upsert_bounty(bounty)
        return self._status_notice(bounty_id, status)

    def _status_changed(self, event: LedgerEvent) -> Optional[SideCall]:
        bounty_id = _require_str(event, "bounty_id")
        status = BountyStatus.from_chain(_require_int(event, "status"))
        self.store.ensure_bounty(bounty_id, self.source_key)
        self.store.set_bounty_status(bounty_id, status)
        return self._status_notice(bounty_id, status)

    def _bounty_funded(self, event: LedgerEvent) -> Optional[SideCall]:
        bounty_id = _require_str(event, "bounty_id")
        token = _require_str(event, "token")
        amount = _require_int(event, "amount")
        values = {
            "token": token,
            "funder": _require_str(event, "funder"),
            "amount": str(amount),
            "locked_until": int(event.fields.get("locked_until") or 0),
        }
        values.update(self._record_meta(event))
        self.store.ensure_bounty(bounty_id, self.source_key)
        if not self.store.insert_record("fundings", event.dedup_key, bounty_id, values):
            return None
        self.store.apply_asset_delta(bounty_id, token, funded=amount)
        return self._announcement(event, bounty_id, token)

    def _claim_submitted(self, event: LedgerEvent) -> Optional[SideCall]:
        bounty_id = _require_str(event, "bounty_id")
        claim_id = event.fields.get("claim_id")
        if claim_id is None or claim_id == "":
            raise MalformedEventError(event.kind, "missing claim_id")
        values = {
            "claim_id": str(claim_id),
            "claimer": _require_str(event, "claimer"),
            "metadata_uri": event.fields.get("metadata_uri") or "",
        }
        values.update(self._record_meta(event))
        self.store.ensure_bounty(bounty_id, self.source_key)
        if not self.store.insert_record("claims", event.dedup_key, bounty_id, values):
            return None
        return self._announcement(event, bounty_id, None)

    def _paid_out(self, event: LedgerEvent) -> Optional[SideCall]:
        bounty_id = _require_str(event, "bounty_id")
        token = _require_str(event, "token")
        amount = _require_int(event, "amount")
        values = {"token": token, "recipient": _require_str(event, "recipient"),
                  "amount": str(amount)}
        values.update(self._record_meta(event))
        self.store.ensure_bounty(bounty_id, self.source_key)
        if not self.store.insert_record("payouts", event.dedup_key, bounty_id, values):
            return None
        self.store.apply_asset_delta(bounty_id, token, paid=amount)
        return self._announcement(event, bounty_id, token)

    def _refunded(self, event: LedgerEvent) -> Optional[SideCall]:
        bounty_id = _require_str(event, "bounty_id")
        token = _require_str(event, "token")
        amount = _require_int(event, "amount")
        values = {"token": token, "funder": _require_str(event, "funder"),
                  "amount": str(amount)}
        values.update(self._record_meta(event))
        self.store.ensure_bounty(bounty_id, self.source_key)
        if not self.store.insert_record("refunds", event.dedup_key, bounty_id, values):
            return None
        self.store.apply_asset_delta(bounty_id, token, refunded=amount)
        return self._announcement(event, bounty_id, token)

    # =========================================================================
    # SIDE CALLS (after commit, best-effort)
    # =========================================================================

    def _announcement(self, event: LedgerEvent, bounty_id: str,
                      token: Optional[str]) -> SideCall:
        def announce():
            bounty = self._issue_bounty(bounty_id)
            if bounty is None:
                return
            meta = self.token_meta.get(token) if token and self.token_meta else None
            body = format_activity(event.kind, event.fields, meta)
            if body:
                marker = activity_marker(self.source_key, event.kind, event.dedup_key)
                self.notifier.activity(bounty, body, marker)
        return announce

    def _status_notice(self, bounty_id: str, status: BountyStatus) -> SideCall:
        def notify():
            bounty = self._issue_bounty(bounty_id)
            if bounty is not None:
                self.notifier.bounty_status_changed(bounty, status)
        return notify

    def _issue_bounty(self, bounty_id: str) -> Optional[Bounty]:
        """The bounty, when its metadata points at a GitHub issue."""
        bounty = self.store.get_bounty(bounty_id)
        if bounty is None or not bounty.metadata_uri:
            return None
        try:
            parse_github_issue_url(bounty.metadata_uri)
        except ValueError:
            log.debug(f"[{self.source_key}] Bounty {bounty_id} is not tied to a GitHub issue: "
                      f"{bounty.metadata_uri}")
            return None
        return bounty

    def _side_call(self, side_call: SideCall, event: LedgerEvent):
        try:
            side_call()
        except Exception as e:
            log.debug(f"[{self.source_key}] Notifier failed for {event.kind} "
                      f"{event.dedup_key}: {e}")
