"""
gh-bounties settlement - Settlement Store

SQLite read model and treasury ledger.

All multi-row updates go through transaction(), which opens BEGIN IMMEDIATE
on the calling thread's connection. Nested transaction() blocks join the
outer one, so store methods compose into a single atomic unit:

    with store.transaction():
        if store.insert_record("fundings", key, values):
            store.apply_asset_delta(bounty_id, token, funded=amount)

Amounts are stored as decimal TEXT so uint256 values round-trip.
"""

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from .bounty_types import (
    Bounty, BountyAsset, BountyStatus, Cursor, FundingStatus, PayoutStatus,
    Repo, TreasuryBountyLedger, TreasuryFundingIntent, TreasuryPayoutIntent,
    ZERO_ADDRESS,
)
from .errors import InsufficientFundsError, StoreError

log = logging.getLogger(__name__)


# Columns each chain record table accepts besides dedup_key/bounty_id
RECORD_COLUMNS = {
    "fundings": ("token", "funder", "amount", "locked_until"),
    "claims": ("claim_id", "claimer", "metadata_uri"),
    "payouts": ("token", "recipient", "amount"),
    "refunds": ("token", "funder", "amount"),
}
RECORD_META_COLUMNS = ("tx_id", "seq", "position")

FUNDING_FIELDS = (
    "burn_intent", "signature", "attestation", "attestation_signature",
    "mint_tx_id", "error",
)
PAYOUT_FIELDS = ("bridge_tx_id", "final_tx_id", "error")

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS repos (
        repo_hash TEXT PRIMARY KEY,
        maintainer TEXT NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bounties (
        bounty_id TEXT PRIMARY KEY,
        source_key TEXT NOT NULL DEFAULT '',
        repo_hash TEXT NOT NULL DEFAULT '',
        issue_number INTEGER NOT NULL DEFAULT 0,
        metadata_uri TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'OPEN',
        admin TEXT NOT NULL DEFAULT '',
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bounty_assets (
        bounty_id TEXT NOT NULL,
        token TEXT NOT NULL,
        funded TEXT NOT NULL DEFAULT '0',
        escrowed TEXT NOT NULL DEFAULT '0',
        paid TEXT NOT NULL DEFAULT '0',
        refunded TEXT NOT NULL DEFAULT '0',
        PRIMARY KEY (bounty_id, token)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fundings (
        dedup_key TEXT PRIMARY KEY,
        bounty_id TEXT NOT NULL,
        token TEXT NOT NULL,
        funder TEXT NOT NULL,
        amount TEXT NOT NULL,
        locked_until INTEGER NOT NULL DEFAULT 0,
        tx_id TEXT NOT NULL DEFAULT '',
        seq INTEGER NOT NULL DEFAULT 0,
        position INTEGER NOT NULL DEFAULT 0,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS claims (
        dedup_key TEXT PRIMARY KEY,
        bounty_id TEXT NOT NULL,
        claim_id TEXT NOT NULL,
        claimer TEXT NOT NULL,
        metadata_uri TEXT NOT NULL DEFAULT '',
        tx_id TEXT NOT NULL DEFAULT '',
        seq INTEGER NOT NULL DEFAULT 0,
        position INTEGER NOT NULL DEFAULT 0,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payouts (
        dedup_key TEXT PRIMARY KEY,
        bounty_id TEXT NOT NULL,
        token TEXT NOT NULL,
        recipient TEXT NOT NULL,
        amount TEXT NOT NULL,
        tx_id TEXT NOT NULL DEFAULT '',
        seq INTEGER NOT NULL DEFAULT 0,
        position INTEGER NOT NULL DEFAULT 0,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS refunds (
        dedup_key TEXT PRIMARY KEY,
        bounty_id TEXT NOT NULL,
        token TEXT NOT NULL,
        funder TEXT NOT NULL,
        amount TEXT NOT NULL,
        tx_id TEXT NOT NULL DEFAULT '',
        seq INTEGER NOT NULL DEFAULT 0,
        position INTEGER NOT NULL DEFAULT 0,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS indexer_cursors (
        source_key TEXT PRIMARY KEY,
        position INTEGER NOT NULL,
        tx_id TEXT NOT NULL DEFAULT '',
        seq INTEGER NOT NULL DEFAULT 0,
        updated_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS treasury_funding_intents (
        id TEXT PRIMARY KEY,
        bounty_id TEXT NOT NULL,
        sender TEXT NOT NULL,
        source_chain TEXT NOT NULL,
        amount TEXT NOT NULL,
        status TEXT NOT NULL,
        burn_intent TEXT,
        signature TEXT NOT NULL DEFAULT '',
        attestation TEXT NOT NULL DEFAULT '',
        attestation_signature TEXT NOT NULL DEFAULT '',
        mint_tx_id TEXT NOT NULL DEFAULT '',
        error TEXT NOT NULL DEFAULT '',
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_funding_status ON treasury_funding_intents (status, created_at)",
    """
    CREATE TABLE IF NOT EXISTS treasury_payout_intents (
        id TEXT PRIMARY KEY,
        bounty_id TEXT NOT NULL,
        recipient TEXT NOT NULL,
        destination_chain TEXT NOT NULL,
        amount TEXT NOT NULL,
        status TEXT NOT NULL,
        bridge_tx_id TEXT NOT NULL DEFAULT '',
        final_tx_id TEXT NOT NULL DEFAULT '',
        error TEXT NOT NULL DEFAULT '',
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_payout_status ON treasury_payout_intents (status, created_at)",
    """
    CREATE TABLE IF NOT EXISTS treasury_bounty_ledgers (
        bounty_id TEXT PRIMARY KEY,
        total_funded TEXT NOT NULL DEFAULT '0',
        total_paid TEXT NOT NULL DEFAULT '0',
        available TEXT NOT NULL DEFAULT '0',
        updated_at REAL NOT NULL
    )
    """,
]


class SettlementStore:
    """
    Thread-safe SQLite store.

    Each thread gets its own connection to the database file; writers
    serialize on BEGIN IMMEDIATE with a busy timeout. An in-memory database
    uses one shared connection and is meant for single-threaded use.
    """

    def __init__(self, path: str = "ghbounties.db", timeout: float = 30.0):
        self.path = path
        self.timeout = timeout
        self._local = threading.local()
        self._shared: Optional[sqlite3.Connection] = None
        if path == ":memory:":
            self._shared = self._open()
        self.initialize_tables()

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.path,
            timeout=self.timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        if self.path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if self._shared is not None:
            return self._shared
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._open()
            self._local.conn = conn
        return conn

    def initialize_tables(self):
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    def close(self):
        conn = self._shared or getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
        self._local.conn = None
        self._shared = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Atomic unit. Joins the caller's transaction when one is open."""
        conn = self._get_connection()
        if conn.in_transaction:
            yield conn
            return
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    # =========================================================================
    # REPOS & BOUNTIES
    # =========================================================================

    def upsert_repo(self, repo_hash: str, maintainer: str):
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO repos (repo_hash, maintainer, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(repo_hash) DO UPDATE SET
                    maintainer = excluded.maintainer, updated_at = excluded.updated_at
                """,
                (repo_hash, maintainer, time.time()),
            )

    def ensure_repo(self, repo_hash: str):
        """Create the repo with a zero maintainer if it is unknown."""
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO repos (repo_hash, maintainer, updated_at) VALUES (?, ?, ?)",
                (repo_hash, ZERO_ADDRESS, time.time()),
            )

    def get_repo(self, repo_hash: str) -> Optional[Repo]:
        row = self._get_connection().execute(
            "SELECT * FROM repos WHERE repo_hash = ?", (repo_hash,)
        ).fetchone()
        return Repo(row["repo_hash"], row["maintainer"]) if row else None

    def ensure_bounty(self, bounty_id: str, source_key: str = ""):
        """Create an empty placeholder so child rows never miss their parent."""
        now = time.time()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO bounties (bounty_id, source_key, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (bounty_id, source_key, now, now),
            )

    def upsert_bounty(self, bounty: Bounty):
        now = time.time()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO bounties (bounty_id, source_key, repo_hash, issue_number,
                                      metadata_uri, status, admin, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(bounty_id) DO UPDATE SET
                    source_key = excluded.source_key,
                    repo_hash = excluded.repo_hash,
                    issue_number = excluded.issue_number,
                    metadata_uri = excluded.metadata_uri,
                    status = excluded.status,
                    admin = excluded.admin,
                    updated_at = excluded.updated_at
                """,
                (bounty.bounty_id, bounty.source_key, bounty.repo_hash, bounty.issue_number,
                 bounty.metadata_uri, bounty.status.value, bounty.admin, now, now),
            )

    def set_bounty_status(self, bounty_id: str, status: BountyStatus):
        with self.transaction() as conn:
            conn.execute(
                "UPDATE bounties SET status = ?, updated_at = ? WHERE bounty_id = ?",
                (status.value, time.time(), bounty_id),
            )

    def get_bounty(self, bounty_id: str) -> Optional[Bounty]:
        row = self._get_connection().execute(
            "SELECT * FROM bounties WHERE bounty_id = ?", (bounty_id,)
        ).fetchone()
        if row is None:
            return None
        return Bounty(
            bounty_id=row["bounty_id"],
            source_key=row["source_key"],
            repo_hash=row["repo_hash"],
            issue_number=row["issue_number"],
            metadata_uri=row["metadata_uri"],
            status=BountyStatus(row["status"]),
            admin=row["admin"],
        )

    # =========================================================================
    # CHAIN RECORDS
    # =========================================================================

    def insert_record(self, table: str, dedup_key: str, bounty_id: str,
                      values: Dict[str, Any]) -> bool:
        """
        Upsert an immutable chain record by dedup key.

        Returns True only when the row did not exist before, so callers bump
        counters exactly once per event.
        """
        if table not in RECORD_COLUMNS:
            raise ValueError(f"unknown record table: {table}")
        allowed = RECORD_COLUMNS[table] + RECORD_META_COLUMNS
        unknown = set(values) - set(allowed)
        if unknown:
            raise ValueError(f"unknown columns for {table}: {sorted(unknown)}")
        cols = [c for c in allowed if c in values]
        params = [_db_value(values[c]) for c in cols]

        with self.transaction() as conn:
            exists = conn.execute(
                f"SELECT 1 FROM {table} WHERE dedup_key = ?", (dedup_key,)
            ).fetchone()
            if exists:
                if cols:
                    sets = ", ".join(f"{c} = ?" for c in cols)
                    conn.execute(
                        f"UPDATE {table} SET {sets} WHERE dedup_key = ?",
                        params + [dedup_key],
                    )
                return False
            names = ", ".join(["dedup_key", "bounty_id"] + cols + ["created_at"])
            marks = ", ".join("?" * (len(cols) + 3))
            conn.execute(
                f"INSERT INTO {table} ({names}) VALUES ({marks})",
                [dedup_key, bounty_id] + params + [time.time()],
            )
            return True

    def count_records(self, table: str, bounty_id: str = None) -> int:
        if table not in RECORD_COLUMNS:
            raise ValueError(f"unknown record table: {table}")
        if bounty_id is None:
            row = self._get_connection().execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        else:
            row = self._get_connection().execute(
                f"SELECT COUNT(*) FROM {table} WHERE bounty_id = ?", (bounty_id,)
            ).fetchone()
        return row[0]

    def apply_asset_delta(self, bounty_id: str, token: str, funded: int = 0,
                          paid: int = 0, refunded: int = 0) -> BountyAsset:
        with self.transaction() as conn:
            asset = self.get_asset(bounty_id, token) or BountyAsset(bounty_id, token)
            asset.funded += funded
            asset.paid += paid
            asset.refunded += refunded
            asset.escrowed = asset.funded - asset.paid - asset.refunded
            if asset.escrowed < 0:
                log.warning(f"Escrow for {bounty_id}/{token} is negative ({asset.escrowed}); "
                            f"waiting for the matching funding event")
            conn.execute(
                """
                INSERT INTO bounty_assets (bounty_id, token, funded, escrowed, paid, refunded)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(bounty_id, token) DO UPDATE SET
                    funded = excluded.funded, escrowed = excluded.escrowed,
                    paid = excluded.paid, refunded = excluded.refunded
                """,
                (bounty_id, token, str(asset.funded), str(asset.escrowed),
                 str(asset.paid), str(asset.refunded)),
            )
            return asset

    def get_asset(self, bounty_id: str, token: str) -> Optional[BountyAsset]:
        row = self._get_connection().execute(
            "SELECT * FROM bounty_assets WHERE bounty_id = ? AND token = ?", (bounty_id, token)
        ).fetchone()
        return _asset_from_row(row) if row else None

    # =========================================================================
    # CURSORS
    # =========================================================================

    def get_cursor(self, source_key: str) -> Optional[Cursor]:
        row = self._get_connection().execute(
            "SELECT * FROM indexer_cursors WHERE source_key = ?", (source_key,)
        ).fetchone()
        if row is None:
            return None
        return Cursor(position=row["position"], tx_id=row["tx_id"], seq=row["seq"])

    def save_cursor(self, source_key: str, cursor: Cursor) -> Cursor:
        """Persist a cursor. A lower position than the stored one is ignored."""
        with self.transaction() as conn:
            current = self.get_cursor(source_key)
            if current is not None and cursor.position < current.position:
                log.warning(f"[{source_key}] Ignoring cursor regression "
                            f"{current.position} -> {cursor.position}")
                return current
            conn.execute(
                """
                INSERT INTO indexer_cursors (source_key, position, tx_id, seq, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(source_key) DO UPDATE SET
                    position = excluded.position, tx_id = excluded.tx_id,
                    seq = excluded.seq, updated_at = excluded.updated_at
                """,
                (source_key, cursor.position, cursor.tx_id, cursor.seq, time.time()),
            )
            return cursor

    # =========================================================================
    # TREASURY LEDGER
    # =========================================================================

    def get_ledger(self, bounty_id: str) -> Optional[TreasuryBountyLedger]:
        row = self._get_connection().execute(
            "SELECT * FROM treasury_bounty_ledgers WHERE bounty_id = ?", (bounty_id,)
        ).fetchone()
        if row is None:
            return None
        return TreasuryBountyLedger(
            bounty_id=row["bounty_id"],
            total_funded=int(row["total_funded"]),
            total_paid=int(row["total_paid"]),
            available=int(row["available"]),
        )

    def ensure_ledger(self, bounty_id: str) -> TreasuryBountyLedger:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO treasury_bounty_ledgers (bounty_id, updated_at) VALUES (?, ?)",
                (bounty_id, time.time()),
            )
            return self.get_ledger(bounty_id)

    def adjust_ledger(self, bounty_id: str, funded: int = 0, paid: int = 0,
                      available: int = 0) -> TreasuryBountyLedger:
        """Apply counter deltas. Raises StoreError if any counter would go negative."""
        with self.transaction() as conn:
            ledger = self.get_ledger(bounty_id) or TreasuryBountyLedger(bounty_id)
            ledger.total_funded += funded
            ledger.total_paid += paid
            ledger.available += available
            if min(ledger.total_funded, ledger.total_paid, ledger.available) < 0:
                raise StoreError(f"ledger for {bounty_id} would go negative: {ledger.to_dict()}")
            conn.execute(
                """
                INSERT INTO treasury_bounty_ledgers (bounty_id, total_funded, total_paid,
                                                     available, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(bounty_id) DO UPDATE SET
                    total_funded = excluded.total_funded, total_paid = excluded.total_paid,
                    available = excluded.available, updated_at = excluded.updated_at
                """,
                (bounty_id, str(ledger.total_funded), str(ledger.total_paid),
                 str(ledger.available), time.time()),
            )
            return ledger

    def reserved_amount(self, bounty_id: str) -> int:
        """Sum of payouts reserved but not yet confirmed or failed."""
        rows = self._get_connection().execute(
            "SELECT amount FROM treasury_payout_intents WHERE bounty_id = ? AND status IN (?, ?)",
            (bounty_id, PayoutStatus.CREATED.value, PayoutStatus.EXECUTING.value),
        ).fetchall()
        return sum(int(r["amount"]) for r in rows)

    # =========================================================================
    # FUNDING INTENTS
    # =========================================================================

    def create_funding_intent(self, intent: TreasuryFundingIntent) -> TreasuryFundingIntent:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO treasury_funding_intents (
                    id, bounty_id, sender, source_chain, amount, status, burn_intent,
                    signature, attestation, attestation_signature, mint_tx_id, error,
                    created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (intent.id, intent.bounty_id, intent.sender, intent.source_chain,
                 str(intent.amount), intent.status.value, _db_value(intent.burn_intent),
                 intent.signature, intent.attestation, intent.attestation_signature,
                 intent.mint_tx_id, intent.error, intent.created_at, intent.updated_at),
            )
            self.ensure_ledger(intent.bounty_id)
        return intent

    def get_funding_intent(self, intent_id: str) -> Optional[TreasuryFundingIntent]:
        row = self._get_connection().execute(
            "SELECT * FROM treasury_funding_intents WHERE id = ?", (intent_id,)
        ).fetchone()
        return _funding_from_row(row) if row else None

    def list_funding_intents(self, status: FundingStatus, limit: int = 100,
                             with_attestation: bool = False) -> List[TreasuryFundingIntent]:
        """Oldest first."""
        sql = "SELECT * FROM treasury_funding_intents WHERE status = ?"
        if with_attestation:
            sql += " AND attestation != '' AND attestation_signature != ''"
        sql += " ORDER BY created_at, rowid LIMIT ?"
        rows = self._get_connection().execute(sql, (status.value, limit)).fetchall()
        return [_funding_from_row(r) for r in rows]

    def transition_funding_intent(self, intent_id: str, expected: FundingStatus,
                                  status: FundingStatus, **fields) -> bool:
        """Compare-and-set the status. False if the intent left `expected` already."""
        return self._transition("treasury_funding_intents", FUNDING_FIELDS,
                                intent_id, expected.value, status.value, fields)

    # =========================================================================
    # PAYOUT INTENTS
    # =========================================================================

    def create_payout_intent(self, intent: TreasuryPayoutIntent) -> TreasuryPayoutIntent:
        """Insert the intent and reserve its amount from `available` atomically."""
        with self.transaction() as conn:
            ledger = self.get_ledger(intent.bounty_id)
            available = ledger.available if ledger else 0
            if available < intent.amount:
                raise InsufficientFundsError(intent.bounty_id, available, intent.amount)
            conn.execute(
                """
                INSERT INTO treasury_payout_intents (
                    id, bounty_id, recipient, destination_chain, amount, status,
                    bridge_tx_id, final_tx_id, error, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (intent.id, intent.bounty_id, intent.recipient, intent.destination_chain,
                 str(intent.amount), intent.status.value, intent.bridge_tx_id,
                 intent.final_tx_id, intent.error, intent.created_at, intent.updated_at),
            )
            self.adjust_ledger(intent.bounty_id, available=-intent.amount)
        return intent

    def get_payout_intent(self, intent_id: str) -> Optional[TreasuryPayoutIntent]:
        row = self._get_connection().execute(
            "SELECT * FROM treasury_payout_intents WHERE id = ?", (intent_id,)
        ).fetchone()
        return _payout_from_row(row) if row else None

    def list_payout_intents(self, status: PayoutStatus, limit: int = 100) -> List[TreasuryPayoutIntent]:
        """Oldest first."""
        rows = self._get_connection().execute(
            "SELECT * FROM treasury_payout_intents WHERE status = ? "
            "ORDER BY created_at, rowid LIMIT ?",
            (status.value, limit),
        ).fetchall()
        return [_payout_from_row(r) for r in rows]

    def transition_payout_intent(self, intent_id: str, expected: PayoutStatus,
                                 status: PayoutStatus, **fields) -> bool:
        return self._transition("treasury_payout_intents", PAYOUT_FIELDS,
                                intent_id, expected.value, status.value, fields)

    def _transition(self, table: str, allowed: tuple, intent_id: str,
                    expected: str, status: str, fields: Dict[str, Any]) -> bool:
        unknown = set(fields) - set(allowed)
        if unknown:
            raise ValueError(f"unknown columns for {table}: {sorted(unknown)}")
        cols = sorted(fields)
        sets = ", ".join(["status = ?", "updated_at = ?"] + [f"{c} = ?" for c in cols])
        params = [status, time.time()] + [_db_value(fields[c]) for c in cols]
        with self.transaction() as conn:
            cur = conn.execute(
                f"UPDATE {table} SET {sets} WHERE id = ? AND status = ?",
                params + [intent_id, expected],
            )
            return cur.rowcount == 1


# =============================================================================
# ROW HELPERS
# =============================================================================

def _db_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        # uint256 overflows SQLite INTEGER
        return str(value) if abs(value) > 2 ** 62 else value
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return value


def _asset_from_row(row: sqlite3.Row) -> BountyAsset:
    return BountyAsset(
        bounty_id=row["bounty_id"],
        token=row["token"],
        funded=int(row["funded"]),
        escrowed=int(row["escrowed"]),
        paid=int(row["paid"]),
        refunded=int(row["refunded"]),
    )


def _funding_from_row(row: sqlite3.Row) -> TreasuryFundingIntent:
    return TreasuryFundingIntent(
        id=row["id"],
        bounty_id=row["bounty_id"],
        sender=row["sender"],
        source_chain=row["source_chain"],
        amount=int(row["amount"]),
        status=FundingStatus(row["status"]),
        burn_intent=json.loads(row["burn_intent"]) if row["burn_intent"] else None,
        signature=row["signature"],
        attestation=row["attestation"],
        attestation_signature=row["attestation_signature"],
        mint_tx_id=row["mint_tx_id"],
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _payout_from_row(row: sqlite3.Row) -> TreasuryPayoutIntent:
    return TreasuryPayoutIntent(
        id=row["id"],
        bounty_id=row["bounty_id"],
        recipient=row["recipient"],
        destination_chain=row["destination_chain"],
        amount=int(row["amount"]),
        status=PayoutStatus(row["status"]),
        bridge_tx_id=row["bridge_tx_id"],
        final_tx_id=row["final_tx_id"],
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
