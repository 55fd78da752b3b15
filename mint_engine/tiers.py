"""
Discount tiers for holders of partner collections.

Each collection has at most one tier. Removing a tier zeroes its discount
but keeps the row and every serial's usage count, so re-adding the tier
later does not hand out fresh uses.
"""
import logging
from typing import Iterable, List, NamedTuple, Optional, Tuple

from mint_engine.database import Database, DiscountTier, HolderContribution
from mint_engine.errors import InvalidConfigurationError
from mint_engine.security import AuditLogger, AuditEventType
from mint_engine.utils.validation import is_valid_entity_id

logger = logging.getLogger(__name__)


class SerialDiscountInfo(NamedTuple):
    """Discount status of one holder unit."""
    collection_id: str
    unit_id: int
    tier: Optional[DiscountTier]
    uses_consumed: int
    uses_remaining: int
    is_eligible: bool


def _audit(db: Database, event_type: AuditEventType, tier: DiscountTier):
    AuditLogger(db.db_path).log(
        event_type,
        details={
            "collection_id": tier.collection_id,
            "discount_percent": tier.discount_percent,
            "max_uses_per_unit": tier.max_uses_per_unit,
        },
    )


def add_discount_tier(db: Database, collection_id: str, discount_percent: int, max_uses_per_unit: int) -> DiscountTier:
    """Add a tier for a collection, replacing any existing one.

    Args:
        db: Ledger
        collection_id: Discount collection (e.g. "0.0.1001")
        discount_percent: 1-100 (0 is reserved for removed tiers)
        max_uses_per_unit: Discounted mints each held unit can grant

    Returns:
        Stored DiscountTier
    """
    valid, error = is_valid_entity_id(collection_id)
    if not valid:
        raise InvalidConfigurationError(error)
    if discount_percent == 0:
        raise InvalidConfigurationError("Use remove_discount_tier to disable a tier")

    tier = DiscountTier(collection_id, discount_percent, max_uses_per_unit)
    tier.validate()

    existing = db.get_tier_record(collection_id)
    db.save_tier(tier)

    if existing is None or not existing.is_active:
        logger.info(f"Discount tier added: {collection_id} {discount_percent}% x{max_uses_per_unit}")
        _audit(db, AuditEventType.TIER_ADDED, tier)
    else:
        logger.info(
            f"Discount tier replaced: {collection_id} {existing.discount_percent}% → {discount_percent}% "
            f"(uses {existing.max_uses_per_unit} → {max_uses_per_unit})"
        )
        _audit(db, AuditEventType.TIER_UPDATED, tier)

    return tier


def update_discount_tier(
    db: Database,
    collection_id: str,
    discount_percent: Optional[int] = None,
    max_uses_per_unit: Optional[int] = None,
) -> DiscountTier:
    """Change an existing tier. Omitted fields keep their current value.

    Raises:
        InvalidConfigurationError: No tier exists for the collection
    """
    existing = db.get_tier_record(collection_id)
    if existing is None:
        raise InvalidConfigurationError(f"No discount tier for {collection_id}")

    tier = DiscountTier(
        collection_id,
        existing.discount_percent if discount_percent is None else discount_percent,
        existing.max_uses_per_unit if max_uses_per_unit is None else max_uses_per_unit,
    )
    tier.validate()
    db.save_tier(tier)

    logger.info(f"Discount tier updated: {collection_id} {tier.discount_percent}% x{tier.max_uses_per_unit}")
    _audit(db, AuditEventType.TIER_UPDATED, tier)
    return tier


def remove_discount_tier(db: Database, collection_id: str) -> bool:
    """Disable a collection's tier.

    Returns:
        True if an active tier was removed, False if there was none
    """
    existing = db.get_tier_record(collection_id)
    if existing is None or not existing.is_active:
        logger.warning(f"No active discount tier to remove for {collection_id}")
        return False

    tier = DiscountTier(collection_id, 0, existing.max_uses_per_unit)
    db.save_tier(tier)

    logger.info(f"Discount tier removed: {collection_id}")
    _audit(db, AuditEventType.TIER_REMOVED, tier)
    return True


def list_active_tiers(db: Database) -> List[DiscountTier]:
    return db.list_tiers(active_only=True)


def get_serial_discount_info(
    db: Database,
    contributions: Iterable[Tuple[str, int]],
) -> List[SerialDiscountInfo]:
    """Report each holder unit's tier and remaining uses, as stored right now.

    Duplicate entries are reported independently; the calculator is what
    prevents them from overdrawing a serial.
    """
    results = []
    tiers = {}
    for collection_id, unit_id in contributions:
        if collection_id not in tiers:
            tiers[collection_id] = db.get_tier(collection_id)
        tier = tiers[collection_id]

        consumed = db.get_serial_usage(collection_id, unit_id)
        remaining = max(tier.max_uses_per_unit - consumed, 0) if tier else 0

        results.append(SerialDiscountInfo(
            collection_id=collection_id,
            unit_id=unit_id,
            tier=tier,
            uses_consumed=consumed,
            uses_remaining=remaining,
            is_eligible=remaining > 0,
        ))

    return results


def eligible_contributions(db: Database, contributions: Iterable[Tuple[str, int]]) -> List[HolderContribution]:
    """Filter contributions down to units that still grant a discount, keeping order."""
    return [
        HolderContribution(info.collection_id, info.unit_id)
        for info in get_serial_discount_info(db, contributions)
        if info.is_eligible
    ]
