"""
gh-bounties settlement - Ledger Sources

Uniform page interface over chains that are read in different ways.

Every source answers query_events() so startup backfill is identical. How a
source keeps up afterwards is its own business: pull sources poll the
projector on an interval, push sources open a subscription that delivers
pages as they arrive. The projector calls follow() and never branches on the
variant.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

from .bounty_types import Cursor, EventPage

log = logging.getLogger(__name__)


class LedgerSource(ABC):
    """One chain deployment emitting bounty events."""

    source_key: str = ""
    page_size: int = 50
    poll_interval: float = 5.0

    @abstractmethod
    def query_events(self, cursor: Optional[Cursor], page_size: int = None) -> EventPage:
        """Events strictly after `cursor`, in delivery order."""

    def head(self) -> Optional[int]:
        """Latest position the source can serve, or None if it has no such notion."""
        return None

    def verify(self):
        """Check that the source points at the configured deployment."""

    def start_cursor(self, persisted: Optional[Cursor], safety_window: int = 0) -> Optional[Cursor]:
        return persisted

    @abstractmethod
    def follow(self, projector, stop: threading.Event):
        """Keep the projector fed until `stop` is set."""


class PullLedgerSource(LedgerSource):
    """Polled: each tick reads the stored cursor and pulls one page."""

    def follow(self, projector, stop: threading.Event):
        while not stop.is_set():
            more = projector.tick()
            if not more:
                stop.wait(self.poll_interval)


class Subscription:
    """Handle returned by PushLedgerSource.subscribe()."""

    def __init__(self, thread: threading.Thread, stop: threading.Event):
        self.thread = thread
        self._stop = stop

    @property
    def active(self) -> bool:
        return self.thread.is_alive()

    def close(self, timeout: float = 5.0):
        self._stop.set()
        if self.thread is not threading.current_thread():
            self.thread.join(timeout)


class PushLedgerSource(LedgerSource):
    """Subscribed: the source calls back with pages as they arrive."""

    @abstractmethod
    def subscribe(self, cursor: Optional[Cursor],
                  on_page: Callable[[EventPage], None]) -> Subscription:
        """Deliver every page after `cursor` to `on_page` until closed."""

    def follow(self, projector, stop: threading.Event):
        cursor = projector.store.get_cursor(self.source_key)
        subscription = self.subscribe(cursor, projector.deliver)
        log.info(f"[{self.source_key}] Subscribed from "
                 f"{cursor.position if cursor else 'genesis'}")
        try:
            stop.wait()
        finally:
            subscription.close()
