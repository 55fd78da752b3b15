"""
Mint execution: quote a batch, then commit it atomically with the caller's
payment and inventory work.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from mint_engine.database import (
    Database,
    CostQuote,
    HolderContribution,
    LedgerSnapshot,
    MintRecord,
    utcnow,
)
from mint_engine.errors import (
    MintEngineError,
    MintPausedError,
    MintNotStartedError,
    WhitelistOnlyError,
    ExceedsWalletLimitError,
    InvalidQuantityError,
    CurrencyOverflowError,
)
from mint_engine.pricing import calculate_mint_cost, calculate_burn_split, per_unit_payment
from mint_engine.security import AuditLogger, AuditEventType, AuditSeverity
from mint_engine.utils.validation import is_valid_serial

logger = logging.getLogger(__name__)


def check_mint_window(snapshot: LedgerSnapshot, quantity: int, now: datetime):
    """Check that the account may mint this many units right now.

    Raises:
        MintPausedError: Minting is paused
        MintNotStartedError: Start time not reached
        WhitelistOnlyError: WL-only phase and not enough WL slots
        ExceedsWalletLimitError: Lifetime per-wallet cap would be exceeded
    """
    timing = snapshot.timing
    if timing.paused:
        raise MintPausedError("Minting is paused")

    if timing.start_time is not None and now < timing.start_time:
        raise MintNotStartedError(f"Minting opens at {timing.start_time.isoformat()}")

    if timing.wl_only and snapshot.wl_slots < quantity:
        raise WhitelistOnlyError(
            f"Whitelist-only minting: {snapshot.account_id} has {snapshot.wl_slots} WL slots, needs {quantity}"
        )

    limit = snapshot.economics.max_units_per_wallet
    if limit and snapshot.wallet_mint_count + quantity > limit:
        raise ExceedsWalletLimitError(snapshot.account_id, snapshot.wallet_mint_count, quantity, limit)


def _normalize_contributions(contributions: Iterable[Tuple[str, int]]) -> List[HolderContribution]:
    normalized = []
    for collection_id, unit_id in contributions:
        valid, error = is_valid_serial(unit_id)
        if not valid:
            raise InvalidQuantityError(f"{collection_id} #{unit_id!r}: {error}")
        normalized.append(HolderContribution(collection_id, unit_id))
    return normalized


class PendingMint:
    """A mint whose ledger debits are applied but not yet committed.

    Handed to the caller inside MintService.mint(). The caller draws
    inventory, takes payment and reports the delivered units via deliver().
    """

    def __init__(self, account_id: str, quote: CostQuote, snapshot: LedgerSnapshot, minted_at: datetime):
        self.account_id = account_id
        self.quote = quote
        self.snapshot = snapshot
        self.minted_at = minted_at
        self.delivered_units: List[int] = []

    @property
    def burn_split(self) -> Dict:
        return calculate_burn_split(self.quote, self.snapshot.economics)

    @property
    def unit_payment(self) -> Dict[str, int]:
        return per_unit_payment(self.quote)

    def deliver(self, unit_ids: Iterable[int]):
        """Record units handed to the account so they can be refunded later."""
        unit_ids = [int(u) for u in unit_ids]
        if len(set(unit_ids)) != len(unit_ids) or set(unit_ids) & set(self.delivered_units):
            raise ValueError("A unit can only be delivered once per mint")
        if len(self.delivered_units) + len(unit_ids) > self.quote.quantity:
            raise InvalidQuantityError(
                f"Cannot deliver {len(self.delivered_units) + len(unit_ids)} units for a mint of {self.quote.quantity}"
            )
        self.delivered_units.extend(unit_ids)

    def records(self) -> List[MintRecord]:
        payment = self.unit_payment
        return [
            MintRecord(unit_id=unit_id, account_id=self.account_id, payment=dict(payment), minted_at=self.minted_at)
            for unit_id in self.delivered_units
        ]


class MintService:
    """Quotes and commits mints against the ledger."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.audit = AuditLogger(db.db_path)

    def quote(
        self,
        account_id: str,
        quantity: int,
        contributions: Iterable[Tuple[str, int]] = (),
        sacrifice_units: int = 0,
    ) -> CostQuote:
        """Price a batch from a consistent ledger snapshot. Changes nothing."""
        contributions = _normalize_contributions(contributions)
        snapshot = self.db.load_snapshot(account_id, contributions)
        return calculate_mint_cost(
            quantity,
            contributions,
            sacrifice_units,
            snapshot.wl_slots,
            snapshot.tiers,
            snapshot.usage,
            snapshot.economics,
        )

    @contextmanager
    def mint(
        self,
        account_id: str,
        quantity: int,
        contributions: Iterable[Tuple[str, int]] = (),
        sacrifice_units: int = 0,
    ):
        """Commit a mint around the caller's block.

        Usage:
            with service.mint("0.0.5005", 4, contributions) as pending:
                units = draw_inventory(pending.quote.quantity)
                take_payment(pending.quote.totals)
                pending.deliver(units)

        The quote is recomputed inside an exclusive ledger transaction and
        its slot usage applied with compare-and-set guards. If anything in
        the block raises, every ledger change is rolled back and the error
        propagates.
        """
        contributions = _normalize_contributions(contributions)
        pending = None

        try:
            with self.db.exclusive_transaction() as conn:
                snapshot = self.db.read_snapshot(conn, account_id, contributions)
                now = self.clock()
                check_mint_window(snapshot, quantity, now)

                quote = calculate_mint_cost(
                    quantity,
                    contributions,
                    sacrifice_units,
                    snapshot.wl_slots,
                    snapshot.tiers,
                    snapshot.usage,
                    snapshot.economics,
                )
                self._apply(conn, snapshot, quote)

                pending = PendingMint(account_id, quote, snapshot, now)
                yield pending

                self.db.save_mint_records(conn, pending.records())

        except Exception as e:
            self._record_abort(account_id, quantity, e)
            raise

        logger.info(
            f"Mint committed: {account_id} x{quantity} for {pending.quote.totals} "
            f"({pending.quote.blended_discount_percent}% avg discount)"
        )
        self.audit.log(
            AuditEventType.MINT_COMMITTED,
            account_id=account_id,
            details={
                "quantity": quantity,
                "totals": pending.quote.totals,
                "blended_discount_percent": pending.quote.blended_discount_percent,
                "holder_slots_consumed": pending.quote.holder_slots_consumed,
                "wl_slots_consumed": pending.quote.wl_slots_consumed,
                "units": pending.delivered_units,
            },
        )

    def execute_mint(
        self,
        account_id: str,
        quantity: int,
        contributions: Iterable[Tuple[str, int]] = (),
        sacrifice_units: int = 0,
        finalize: Optional[Callable[[PendingMint], None]] = None,
    ) -> CostQuote:
        """Commit a mint, running finalize(pending) inside the transaction.

        Returns:
            The committed quote
        """
        with self.mint(account_id, quantity, contributions, sacrifice_units) as pending:
            if finalize is not None:
                finalize(pending)
        return pending.quote

    def get_wallet_status(self, account_id: str) -> Dict:
        """Lifetime mints for an account against the per-wallet cap."""
        minted = self.db.get_wallet_mint_count(account_id)
        limit = self.db.get_economics().max_units_per_wallet
        return {
            "account_id": account_id,
            "minted": minted,
            "limit": limit or None,
            "remaining": max(limit - minted, 0) if limit else None,
            "wl_slots": self.db.get_whitelist_slots(account_id),
        }

    def _apply(self, conn, snapshot: LedgerSnapshot, quote: CostQuote):
        """Debit the ledgers for a quote inside the open transaction."""
        for (collection_id, unit_id), units in quote.serial_usage().items():
            self.db.apply_serial_usage(
                conn, collection_id, unit_id, snapshot.usage.get((collection_id, unit_id), 0), units
            )

        if quote.wl_slots_consumed:
            self.db.apply_whitelist_debit(conn, snapshot.account_id, snapshot.wl_slots, quote.wl_slots_consumed)

        self.db.apply_wallet_mints(conn, snapshot.account_id, snapshot.wallet_mint_count, quote.quantity)

    def _record_abort(self, account_id: str, quantity: int, error: Exception):
        if isinstance(error, CurrencyOverflowError):
            severity = AuditSeverity.CRITICAL
            logger.critical(f"Mint aborted for {account_id} x{quantity}: {error}")
        elif isinstance(error, MintEngineError):
            severity = AuditSeverity.WARNING
            logger.warning(f"Mint rejected for {account_id} x{quantity}: {error}")
        else:
            severity = AuditSeverity.WARNING
            logger.error(f"Mint aborted for {account_id} x{quantity}: {error}", exc_info=True)

        self.audit.log(
            AuditEventType.MINT_ABORTED,
            severity=severity,
            account_id=account_id,
            details={"quantity": quantity, "error": type(error).__name__, "message": str(error)},
        )
