"""
Whitelist slot management: admin grants, removal and paid slot purchases.
"""
import logging
from typing import Callable, Dict, Optional, Sequence

from mint_engine.database import Database, EconomicsConfig
from mint_engine.errors import InvalidQuantityError, InvalidConfigurationError
from mint_engine.security import AuditLogger, AuditEventType
from mint_engine.utils.validation import is_valid_entity_id

logger = logging.getLogger(__name__)


def _require_positive(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidQuantityError(f"{name} must be a positive integer, got {value!r}")
    return value


def _require_account(account_id: str) -> str:
    valid, error = is_valid_entity_id(account_id)
    if not valid:
        raise ValueError(error)
    return account_id


def add_to_whitelist(db: Database, account_id: str, slots: int) -> int:
    """Grant whitelist slots to an account (adds to any existing balance).

    Returns:
        New slot balance
    """
    _require_account(account_id)
    _require_positive("slots", slots)
    db.add_whitelist_slots(account_id, slots)
    balance = db.get_whitelist_slots(account_id)

    logger.info(f"Granted {slots} WL slots to {account_id} (now {balance})")
    AuditLogger(db.db_path).log(
        AuditEventType.WHITELIST_GRANTED,
        account_id=account_id,
        details={"slots": slots, "balance": balance},
    )
    return balance


def batch_add_to_whitelist(db: Database, account_ids: Sequence[str], slots: Sequence[int]) -> Dict[str, int]:
    """Grant slots to several accounts in one transaction.

    Args:
        account_ids: Accounts to grant
        slots: Slots per account, same length as account_ids

    Returns:
        account_id -> new balance
    """
    if len(account_ids) != len(slots):
        raise ValueError(
            f"Number of accounts ({len(account_ids)}) must match number of slot counts ({len(slots)})"
        )
    for account_id in account_ids:
        _require_account(account_id)
    for count in slots:
        _require_positive("slots", count)

    with db.exclusive_transaction() as conn:
        for account_id, count in zip(account_ids, slots):
            db.add_whitelist_slots(account_id, count, conn=conn)

    balances = {account_id: db.get_whitelist_slots(account_id) for account_id in account_ids}

    logger.info(f"Granted WL slots to {len(account_ids)} accounts")
    audit = AuditLogger(db.db_path)
    for account_id, count in zip(account_ids, slots):
        audit.log(
            AuditEventType.WHITELIST_GRANTED,
            account_id=account_id,
            details={"slots": count, "balance": balances[account_id]},
        )
    return balances


def remove_from_whitelist(db: Database, account_ids: Sequence[str]):
    """Clear whitelist slots for accounts, purchased slots included."""
    audit = AuditLogger(db.db_path)
    for account_id in account_ids:
        previous = db.get_whitelist_slots(account_id)
        db.set_whitelist_slots(account_id, 0)
        logger.info(f"Cleared {previous} WL slots from {account_id}")
        audit.log(
            AuditEventType.WHITELIST_CLEARED,
            account_id=account_id,
            details={"previous_slots": previous},
        )


def quote_slot_purchase(economics: EconomicsConfig, purchases: int) -> Dict:
    """Cost of buying whitelist slots.

    Args:
        economics: Current economics config
        purchases: Number of purchase lots (each grants wl_slots_per_purchase slots)

    Returns:
        Dict with "currency", "cost" and "slots"
    """
    _require_positive("purchases", purchases)
    if economics.wl_slot_cost == 0 or economics.wl_slot_currency is None:
        raise InvalidConfigurationError("Whitelist slots are not for sale")

    return {
        "currency": economics.wl_slot_currency,
        "cost": economics.wl_slot_cost * purchases,
        "slots": economics.wl_slots_per_purchase * purchases,
    }


def purchase_whitelist_slots(
    db: Database,
    account_id: str,
    purchases: int,
    collect_payment: Optional[Callable[[Dict], None]] = None,
) -> int:
    """Buy whitelist slots atomically.

    collect_payment receives the purchase quote and runs inside the ledger
    transaction; if it raises, no slots are granted.

    Returns:
        New slot balance
    """
    _require_account(account_id)

    with db.exclusive_transaction() as conn:
        snapshot = db.read_snapshot(conn, account_id)
        purchase = quote_slot_purchase(snapshot.economics, purchases)

        if collect_payment is not None:
            collect_payment(purchase)

        db.add_whitelist_slots(account_id, purchase["slots"], conn=conn)
        balance = snapshot.wl_slots + purchase["slots"]

    logger.info(
        f"{account_id} bought {purchase['slots']} WL slots for "
        f"{purchase['cost']} {purchase['currency']} (now {balance})"
    )
    AuditLogger(db.db_path).log(
        AuditEventType.WHITELIST_PURCHASED,
        account_id=account_id,
        details={**purchase, "balance": balance},
    )
    return balance
