"""
Refunds for recently minted units.

A unit is refundable by the account that minted it until
minted_at + refund_window_seconds, for refund_percentage of what was paid
for it in each currency. The window and percentage in force at refund time
apply.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from mint_engine.database import Database, MintRecord, MintTiming, RefundEligibility, utcnow
from mint_engine.errors import RefundNotOwedError
from mint_engine.pricing import calculate_refund, sum_amounts
from mint_engine.security import AuditLogger, AuditEventType

logger = logging.getLogger(__name__)


def _eligibility(unit_id: int, record: Optional[MintRecord], timing: MintTiming, now: datetime) -> RefundEligibility:
    # Units the engine never minted have no refund and no expiry
    if record is None:
        return RefundEligibility(unit_id=unit_id, owed=False, expires_at=None, refund={})

    expires_at = record.minted_at + timedelta(seconds=timing.refund_window_seconds)
    owed = not record.refunded and now < expires_at
    return RefundEligibility(
        unit_id=unit_id,
        owed=owed,
        expires_at=expires_at,
        refund=calculate_refund(record.payment, timing.refund_percentage) if owed else {},
    )


class RefundService:
    """Checks and processes refunds against the ledger."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.audit = AuditLogger(db.db_path)

    def check_refund_eligibility(self, unit_ids: Iterable[int], now: Optional[datetime] = None) -> List[RefundEligibility]:
        """Refund status for each unit, in the given order."""
        now = now or self.clock()
        timing = self.db.get_timing()
        return [
            _eligibility(unit_id, self.db.get_mint_record(unit_id), timing, now)
            for unit_id in unit_ids
        ]

    def refund(
        self,
        account_id: str,
        unit_ids: Iterable[int],
        now: Optional[datetime] = None,
        return_funds: Optional[Callable[[Dict[str, int]], None]] = None,
    ) -> Dict[str, int]:
        """Refund units minted by account_id.

        return_funds receives the total refund and runs inside the ledger
        transaction; if it raises, no unit is marked refunded.

        Returns:
            Total refund per currency

        Raises:
            RefundNotOwedError: Any unit is unknown, minted by another account,
                already refunded or past its window. Nothing is refunded.
        """
        unit_ids = [int(u) for u in unit_ids]
        if not unit_ids:
            raise RefundNotOwedError("No units to refund")
        if len(set(unit_ids)) != len(unit_ids):
            raise ValueError("Duplicate unit ids in refund request")

        now = now or self.clock()

        with self.db.exclusive_transaction() as conn:
            timing = self.db.read_snapshot(conn, account_id).timing

            refunds = []
            rejected = []
            for unit_id in unit_ids:
                record = self.db.get_mint_record(unit_id, conn=conn)
                eligibility = _eligibility(unit_id, record, timing, now)
                if not eligibility.owed or record.account_id != account_id:
                    rejected.append(unit_id)
                    continue
                refunds.append(eligibility.refund)

            if rejected:
                logger.warning(f"Refund rejected for {account_id}: units {rejected} not refundable")
                raise RefundNotOwedError(f"Units not refundable for {account_id}: {rejected}")

            total = sum_amounts(refunds)
            if return_funds is not None:
                return_funds(total)

            for unit_id in unit_ids:
                self.db.mark_refunded(conn, unit_id, now)

        logger.info(f"Refunded {len(unit_ids)} units to {account_id}: {total}")
        self.audit.log(
            AuditEventType.REFUND_PROCESSED,
            account_id=account_id,
            details={"units": unit_ids, "refund": total},
        )
        return total
