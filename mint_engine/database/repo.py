"""
Ledger repository for the mint engine.
SQLite storage for tiers, serial usage, whitelist balances, economics and mint records.
"""
import json
import sqlite3
import logging
from contextlib import contextmanager
from dataclasses import asdict
from typing import Optional, List, Dict, Iterable, Tuple
from datetime import datetime
from .models import (
    DiscountTier,
    SerialUsageRecord,
    WhitelistBalance,
    EconomicsConfig,
    MintTiming,
    LedgerSnapshot,
    MintRecord,
    utcnow,
)
from mint_engine.errors import ConcurrentModificationError, InvalidConfigurationError, UnitAlreadyMintedError
from mint_engine.security.audit import AuditLogger, AuditEventType

logger = logging.getLogger(__name__)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _is_busy(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


class Database:
    """Ledger repository."""

    def __init__(
        self,
        db_path: str = "mint_ledger.db",
        lock_timeout: float = 5.0,
        default_economics: Optional[EconomicsConfig] = None,
        default_timing: Optional[MintTiming] = None,
    ):
        self.db_path = db_path
        self.lock_timeout = lock_timeout
        self._init_db(default_economics, default_timing)

    def connect(self) -> sqlite3.Connection:
        """Open a connection. Callers own closing it."""
        conn = sqlite3.connect(self.db_path, timeout=self.lock_timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self, default_economics: Optional[EconomicsConfig], default_timing: Optional[MintTiming]):
        """Initialize database schema and seed settings on a fresh ledger."""
        conn = sqlite3.connect(self.db_path, timeout=self.lock_timeout)
        cursor = conn.cursor()

        # WAL lets quotes read the last committed state while a mint holds the write lock
        cursor.execute("PRAGMA journal_mode=WAL")

        # Discount tiers (one per collection, 0% = removed)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS discount_tiers (
                collection_id TEXT PRIMARY KEY,
                discount_percent INTEGER NOT NULL,
                max_uses_per_unit INTEGER NOT NULL,
                updated_at TEXT
            )
        """)

        # Serial usage (never deleted, survives tier removal)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS serial_usage (
                collection_id TEXT NOT NULL,
                unit_id INTEGER NOT NULL,
                uses_consumed INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT,
                PRIMARY KEY (collection_id, unit_id)
            )
        """)

        # Whitelist slot balances
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS whitelist (
                account_id TEXT PRIMARY KEY,
                slots INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT
            )
        """)

        # Economics (single row) and per-currency base prices
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS economics (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                wl_discount_percent INTEGER NOT NULL,
                sacrifice_discount_percent INTEGER NOT NULL,
                max_units_per_tx INTEGER NOT NULL,
                max_sacrifice_units INTEGER NOT NULL,
                max_units_per_wallet INTEGER NOT NULL DEFAULT 0,
                wl_slot_cost INTEGER NOT NULL DEFAULT 0,
                wl_slot_currency TEXT,
                wl_slots_per_purchase INTEGER NOT NULL DEFAULT 1,
                burn_percentage INTEGER NOT NULL DEFAULT 0,
                burn_currency TEXT,
                updated_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS base_prices (
                currency TEXT PRIMARY KEY,
                price INTEGER NOT NULL,
                position INTEGER NOT NULL
            )
        """)

        # Mint timing (single row)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS mint_timing (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                start_time TEXT,
                paused INTEGER NOT NULL DEFAULT 1,
                refund_window_seconds INTEGER NOT NULL DEFAULT 3600,
                refund_percentage INTEGER NOT NULL DEFAULT 60,
                wl_only INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT
            )
        """)

        # Lifetime mint count per account
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS wallet_mints (
                account_id TEXT PRIMARY KEY,
                minted INTEGER NOT NULL DEFAULT 0
            )
        """)

        # Delivered units and what was paid (for refunds)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS mint_records (
                unit_id INTEGER PRIMARY KEY,
                account_id TEXT NOT NULL,
                payment TEXT NOT NULL,
                minted_at TEXT NOT NULL,
                refunded INTEGER NOT NULL DEFAULT 0,
                refunded_at TEXT
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_serial_usage_collection ON serial_usage(collection_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_mint_records_account ON mint_records(account_id)")

        conn.commit()
        conn.close()

        if default_economics is not None and not self._has_row("economics"):
            self.save_economics(default_economics)
            logger.info("Seeded economics with defaults")
        if default_timing is not None and not self._has_row("mint_timing"):
            self.save_timing(default_timing)
            logger.info("Seeded mint timing with defaults")

        logger.info(f"Ledger initialized at {self.db_path}")

    def _has_row(self, table: str) -> bool:
        conn = self.connect()
        cursor = conn.cursor()
        cursor.execute(f"SELECT 1 FROM {table} WHERE id = 1")
        row = cursor.fetchone()
        conn.close()
        return row is not None

    # === Transactions ===

    @contextmanager
    def exclusive_transaction(self):
        """Run a block holding the ledger's single write lock.

        Writers are serialized; snapshot readers are not blocked and keep
        seeing the last committed state. Commits when the block completes
        and rolls back if it raises. A lock that cannot be acquired within
        lock_timeout surfaces as ConcurrentModificationError.
        """
        conn = self.connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if _is_busy(e):
                    raise ConcurrentModificationError(f"Ledger busy: {e}") from e
                raise

            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        finally:
            conn.close()

    # === Tier Operations ===

    def save_tier(self, tier: DiscountTier):
        """Insert or replace a discount tier."""
        conn = self.connect()
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO discount_tiers (collection_id, discount_percent, max_uses_per_unit, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(collection_id) DO UPDATE SET
                discount_percent=excluded.discount_percent,
                max_uses_per_unit=excluded.max_uses_per_unit,
                updated_at=excluded.updated_at
        """, (tier.collection_id, tier.discount_percent, tier.max_uses_per_unit, utcnow().isoformat()))
        conn.commit()
        conn.close()

    def get_tier_record(self, collection_id: str) -> Optional[DiscountTier]:
        """Get stored tier for a collection, including removed (0%) tiers."""
        conn = self.connect()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM discount_tiers WHERE collection_id = ?", (collection_id,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None
        return self._row_to_tier(row)

    def get_tier(self, collection_id: str) -> Optional[DiscountTier]:
        """Get the active tier for a collection. Removed tiers read as None."""
        tier = self.get_tier_record(collection_id)
        if tier is None or not tier.is_active:
            return None
        return tier

    def list_tiers(self, active_only: bool = True) -> List[DiscountTier]:
        """List discount tiers ordered by collection id."""
        conn = self.connect()
        cursor = conn.cursor()
        query = "SELECT * FROM discount_tiers"
        if active_only:
            query += " WHERE discount_percent > 0"
        cursor.execute(query + " ORDER BY collection_id")
        rows = cursor.fetchall()
        conn.close()
        return [self._row_to_tier(row) for row in rows]

    def _row_to_tier(self, row: sqlite3.Row) -> DiscountTier:
        return DiscountTier(
            collection_id=row["collection_id"],
            discount_percent=row["discount_percent"],
            max_uses_per_unit=row["max_uses_per_unit"],
        )

    # === Serial Usage Operations ===

    def get_serial_usage(self, collection_id: str, unit_id: int) -> int:
        """Uses consumed by a holder unit (0 if never used)."""
        conn = self.connect()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT uses_consumed FROM serial_usage WHERE collection_id = ? AND unit_id = ?",
            (collection_id, unit_id),
        )
        row = cursor.fetchone()
        conn.close()
        return row["uses_consumed"] if row else 0

    def get_usage_records(self, collection_id: str) -> List[SerialUsageRecord]:
        """All usage records for a collection."""
        conn = self.connect()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM serial_usage WHERE collection_id = ? ORDER BY unit_id",
            (collection_id,),
        )
        rows = cursor.fetchall()
        conn.close()
        return [
            SerialUsageRecord(
                collection_id=row["collection_id"],
                unit_id=row["unit_id"],
                uses_consumed=row["uses_consumed"],
                updated_at=_parse_dt(row["updated_at"]) or utcnow(),
            )
            for row in rows
        ]

    def apply_serial_usage(self, conn: sqlite3.Connection, collection_id: str, unit_id: int,
                           expected: int, increment: int):
        """Compare-and-set increment of a serial's usage inside an open transaction."""
        cursor = conn.cursor()
        now = utcnow().isoformat()
        if expected == 0:
            cursor.execute("""
                INSERT INTO serial_usage (collection_id, unit_id, uses_consumed, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(collection_id, unit_id) DO UPDATE SET
                    uses_consumed = serial_usage.uses_consumed + excluded.uses_consumed,
                    updated_at = excluded.updated_at
                WHERE serial_usage.uses_consumed = 0
            """, (collection_id, unit_id, increment, now))
        else:
            cursor.execute("""
                UPDATE serial_usage SET uses_consumed = ?, updated_at = ?
                WHERE collection_id = ? AND unit_id = ? AND uses_consumed = ?
            """, (expected + increment, now, collection_id, unit_id, expected))

        if cursor.rowcount != 1:
            raise ConcurrentModificationError(
                f"Usage of {collection_id}#{unit_id} changed since it was read (expected {expected})"
            )

    # === Whitelist Operations ===

    def get_whitelist_slots(self, account_id: str) -> int:
        """Whitelist slots for an account (0 if unknown)."""
        conn = self.connect()
        cursor = conn.cursor()
        cursor.execute("SELECT slots FROM whitelist WHERE account_id = ?", (account_id,))
        row = cursor.fetchone()
        conn.close()
        return row["slots"] if row else 0

    def get_whitelist_balances(self, account_ids: Iterable[str]) -> List[WhitelistBalance]:
        """Whitelist balances for several accounts, in the given order."""
        conn = self.connect()
        cursor = conn.cursor()
        balances = []
        for account_id in account_ids:
            cursor.execute("SELECT * FROM whitelist WHERE account_id = ?", (account_id,))
            row = cursor.fetchone()
            if row:
                balances.append(WhitelistBalance(
                    account_id=account_id,
                    slots=row["slots"],
                    updated_at=_parse_dt(row["updated_at"]) or utcnow(),
                ))
            else:
                balances.append(WhitelistBalance(account_id=account_id))
        conn.close()
        return balances

    def add_whitelist_slots(self, account_id: str, slots: int, conn: Optional[sqlite3.Connection] = None):
        """Add slots to an account, inside conn's transaction if given."""
        own_conn = conn is None
        if own_conn:
            conn = self.connect()
        conn.execute("""
            INSERT INTO whitelist (account_id, slots, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
                slots = whitelist.slots + excluded.slots,
                updated_at = excluded.updated_at
        """, (account_id, slots, utcnow().isoformat()))
        if own_conn:
            conn.commit()
            conn.close()

    def set_whitelist_slots(self, account_id: str, slots: int):
        """Overwrite an account's slots (0 clears purchased slots too)."""
        conn = self.connect()
        conn.execute("""
            INSERT INTO whitelist (account_id, slots, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
                slots = excluded.slots,
                updated_at = excluded.updated_at
        """, (account_id, slots, utcnow().isoformat()))
        conn.commit()
        conn.close()

    def apply_whitelist_debit(self, conn: sqlite3.Connection, account_id: str, expected: int, debit: int):
        """Compare-and-set decrement of an account's slots inside an open transaction."""
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE whitelist SET slots = ?, updated_at = ?
            WHERE account_id = ? AND slots = ?
        """, (expected - debit, utcnow().isoformat(), account_id, expected))

        if cursor.rowcount != 1:
            raise ConcurrentModificationError(
                f"Whitelist balance of {account_id} changed since it was read (expected {expected})"
            )

    # === Wallet Mint Counts ===

    def get_wallet_mint_count(self, account_id: str) -> int:
        conn = self.connect()
        cursor = conn.cursor()
        cursor.execute("SELECT minted FROM wallet_mints WHERE account_id = ?", (account_id,))
        row = cursor.fetchone()
        conn.close()
        return row["minted"] if row else 0

    def apply_wallet_mints(self, conn: sqlite3.Connection, account_id: str, expected: int, quantity: int):
        """Compare-and-set increment of an account's lifetime mint count."""
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO wallet_mints (account_id, minted) VALUES (?, ?)
            ON CONFLICT(account_id) DO UPDATE SET minted = excluded.minted
            WHERE wallet_mints.minted = ?
        """, (account_id, expected + quantity, expected))

        if cursor.rowcount != 1:
            raise ConcurrentModificationError(
                f"Mint count of {account_id} changed since it was read (expected {expected})"
            )

    # === Economics & Timing ===

    def save_economics(self, economics: EconomicsConfig):
        """Validate and replace the economics config."""
        economics.validate()

        conn = self.connect()
        cursor = conn.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE")
            cursor.execute("""
                INSERT OR REPLACE INTO economics (
                    id, wl_discount_percent, sacrifice_discount_percent, max_units_per_tx,
                    max_sacrifice_units, max_units_per_wallet, wl_slot_cost, wl_slot_currency,
                    wl_slots_per_purchase, burn_percentage, burn_currency, updated_at
                ) VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                economics.wl_discount_percent, economics.sacrifice_discount_percent,
                economics.max_units_per_tx, economics.max_sacrifice_units,
                economics.max_units_per_wallet, economics.wl_slot_cost, economics.wl_slot_currency,
                economics.wl_slots_per_purchase, economics.burn_percentage, economics.burn_currency,
                utcnow().isoformat(),
            ))
            cursor.execute("DELETE FROM base_prices")
            for position, (currency, price) in enumerate(economics.base_prices.items()):
                cursor.execute(
                    "INSERT INTO base_prices (currency, price, position) VALUES (?, ?, ?)",
                    (currency, price, position),
                )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info(f"Economics updated: prices {economics.base_prices}")
        AuditLogger(self.db_path).log(AuditEventType.ECONOMICS_UPDATED, details=asdict(economics))

    def get_economics(self) -> EconomicsConfig:
        conn = self.connect()
        try:
            return self._read_economics(conn)
        finally:
            conn.close()

    def _read_economics(self, conn: sqlite3.Connection) -> EconomicsConfig:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM economics WHERE id = 1")
        row = cursor.fetchone()
        if not row:
            raise InvalidConfigurationError("Mint economics have not been configured")

        cursor.execute("SELECT currency, price FROM base_prices ORDER BY position")
        prices = {r["currency"]: r["price"] for r in cursor.fetchall()}

        return EconomicsConfig(
            base_prices=prices,
            wl_discount_percent=row["wl_discount_percent"],
            sacrifice_discount_percent=row["sacrifice_discount_percent"],
            max_units_per_tx=row["max_units_per_tx"],
            max_sacrifice_units=row["max_sacrifice_units"],
            max_units_per_wallet=row["max_units_per_wallet"],
            wl_slot_cost=row["wl_slot_cost"],
            wl_slot_currency=row["wl_slot_currency"],
            wl_slots_per_purchase=row["wl_slots_per_purchase"],
            burn_percentage=row["burn_percentage"],
            burn_currency=row["burn_currency"],
        )

    def save_timing(self, timing: MintTiming):
        """Validate and replace the mint timing."""
        timing.validate()

        conn = self.connect()
        conn.execute("""
            INSERT OR REPLACE INTO mint_timing (
                id, start_time, paused, refund_window_seconds, refund_percentage, wl_only, updated_at
            ) VALUES (1, ?, ?, ?, ?, ?, ?)
        """, (
            timing.start_time.isoformat() if timing.start_time else None,
            int(timing.paused), timing.refund_window_seconds, timing.refund_percentage,
            int(timing.wl_only), utcnow().isoformat(),
        ))
        conn.commit()
        conn.close()

        logger.info(f"Mint timing updated: paused={timing.paused} wl_only={timing.wl_only}")
        AuditLogger(self.db_path).log(
            AuditEventType.TIMING_UPDATED,
            details=asdict(timing),
        )

    def get_timing(self) -> MintTiming:
        conn = self.connect()
        try:
            return self._read_timing(conn)
        finally:
            conn.close()

    def _read_timing(self, conn: sqlite3.Connection) -> MintTiming:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM mint_timing WHERE id = 1")
        row = cursor.fetchone()
        if not row:
            return MintTiming()
        return MintTiming(
            start_time=_parse_dt(row["start_time"]),
            paused=bool(row["paused"]),
            refund_window_seconds=row["refund_window_seconds"],
            refund_percentage=row["refund_percentage"],
            wl_only=bool(row["wl_only"]),
        )

    # === Snapshots ===

    def read_snapshot(
        self,
        conn: sqlite3.Connection,
        account_id: str,
        contributions: Iterable[Tuple[str, int]] = (),
    ) -> LedgerSnapshot:
        """Read everything a quote needs through an already-open transaction."""
        cursor = conn.cursor()

        tiers: Dict[str, DiscountTier] = {}
        usage: Dict[Tuple[str, int], int] = {}
        for collection_id, unit_id in contributions:
            if collection_id not in tiers:
                cursor.execute("SELECT * FROM discount_tiers WHERE collection_id = ?", (collection_id,))
                row = cursor.fetchone()
                if row:
                    tiers[collection_id] = self._row_to_tier(row)
            key = (collection_id, unit_id)
            if key not in usage:
                cursor.execute(
                    "SELECT uses_consumed FROM serial_usage WHERE collection_id = ? AND unit_id = ?",
                    key,
                )
                row = cursor.fetchone()
                usage[key] = row["uses_consumed"] if row else 0

        cursor.execute("SELECT slots FROM whitelist WHERE account_id = ?", (account_id,))
        row = cursor.fetchone()
        wl_slots = row["slots"] if row else 0

        cursor.execute("SELECT minted FROM wallet_mints WHERE account_id = ?", (account_id,))
        row = cursor.fetchone()
        minted = row["minted"] if row else 0

        return LedgerSnapshot(
            account_id=account_id,
            economics=self._read_economics(conn),
            timing=self._read_timing(conn),
            tiers=tiers,
            usage=usage,
            wl_slots=wl_slots,
            wallet_mint_count=minted,
        )

    def load_snapshot(self, account_id: str, contributions: Iterable[Tuple[str, int]] = ()) -> LedgerSnapshot:
        """Read a consistent snapshot in a single read transaction.

        Raises:
            ConcurrentModificationError: The ledger could not be read within lock_timeout
        """
        conn = self.connect()
        try:
            conn.execute("BEGIN")
            return self.read_snapshot(conn, account_id, list(contributions))
        except sqlite3.OperationalError as e:
            if _is_busy(e):
                raise ConcurrentModificationError(f"Ledger busy: {e}") from e
            raise
        finally:
            conn.rollback()
            conn.close()

    # === Mint Records ===

    def save_mint_records(self, conn: sqlite3.Connection, records: Iterable[MintRecord]):
        """Store delivered units inside an open transaction.

        A unit may only be recorded again once its previous mint was refunded.

        Raises:
            UnitAlreadyMintedError: A unit is still held by an unrefunded mint
        """
        cursor = conn.cursor()
        for record in records:
            cursor.execute("""
                INSERT INTO mint_records (
                    unit_id, account_id, payment, minted_at, refunded, refunded_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(unit_id) DO UPDATE SET
                    account_id = excluded.account_id,
                    payment = excluded.payment,
                    minted_at = excluded.minted_at,
                    refunded = excluded.refunded,
                    refunded_at = excluded.refunded_at
                WHERE mint_records.refunded = 1
            """, (
                record.unit_id, record.account_id, json.dumps(record.payment),
                record.minted_at.isoformat(), int(record.refunded),
                record.refunded_at.isoformat() if record.refunded_at else None,
            ))

            if cursor.rowcount != 1:
                raise UnitAlreadyMintedError(record.unit_id)

    def get_mint_record(self, unit_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[MintRecord]:
        own_conn = conn is None
        if own_conn:
            conn = self.connect()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM mint_records WHERE unit_id = ?", (unit_id,))
        row = cursor.fetchone()
        if own_conn:
            conn.close()

        if not row:
            return None
        return self._row_to_mint_record(row)

    def get_account_mint_records(self, account_id: str) -> List[MintRecord]:
        conn = self.connect()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM mint_records WHERE account_id = ? ORDER BY minted_at, unit_id",
            (account_id,),
        )
        rows = cursor.fetchall()
        conn.close()
        return [self._row_to_mint_record(row) for row in rows]

    def mark_refunded(self, conn: sqlite3.Connection, unit_id: int, refunded_at: datetime):
        """Flag a unit as refunded inside an open transaction."""
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE mint_records SET refunded = 1, refunded_at = ?
            WHERE unit_id = ? AND refunded = 0
        """, (refunded_at.isoformat(), unit_id))

        if cursor.rowcount != 1:
            raise ConcurrentModificationError(f"Unit {unit_id} was refunded concurrently")

    def _row_to_mint_record(self, row: sqlite3.Row) -> MintRecord:
        return MintRecord(
            unit_id=row["unit_id"],
            account_id=row["account_id"],
            payment=json.loads(row["payment"]),
            minted_at=_parse_dt(row["minted_at"]),
            refunded=bool(row["refunded"]),
            refunded_at=_parse_dt(row["refunded_at"]),
        )
