"""
Waterfall mint cost calculation.

Units of a batch are priced from the best discount source down to full price:

    1. Sacrifice discount (exclusive, never stacks)
    2. Holder discounts, in the order the caller supplied them
       (stack with WL while WL slots last)
    3. WL-only discount
    4. Full price

Every run of units is priced with its own floor division, so a batch split
across several holder slots can cost a few minor units less than the same
batch priced in one go. Callers depend on that exact figure.
"""
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from mint_engine.database.models import (
    CostQuote,
    DiscountTier,
    EconomicsConfig,
    HolderContribution,
    PricedSegment,
    SegmentKind,
    MAX_CURRENCY_AMOUNT,
)
from mint_engine.errors import (
    CurrencyOverflowError,
    ExceedsMaxSacrificeError,
    ExceedsMaxUnitsError,
    InvalidQuantityError,
)

logger = logging.getLogger(__name__)


def _require_count(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidQuantityError(f"{name} must be a non-negative integer, got {value!r}")
    return value


def _price_units(base_prices: Mapping[str, int], units: int, discount_percent: int) -> Dict[str, int]:
    """Price a run of units at one discount rate (floor division over the run)."""
    return {
        currency: price * units * (100 - discount_percent) // 100
        for currency, price in base_prices.items()
    }


def _segment(
    kind: SegmentKind,
    units: int,
    discount_percent: int,
    base_prices: Mapping[str, int],
    contribution: Optional[HolderContribution] = None,
) -> PricedSegment:
    return PricedSegment(
        kind=kind,
        units=units,
        discount_percent=discount_percent,
        costs=_price_units(base_prices, units, discount_percent),
        collection_id=contribution.collection_id if contribution else None,
        unit_id=contribution.unit_id if contribution else None,
    )


def check_batch_limits(quantity: int, sacrifice_units: int, economics: EconomicsConfig):
    """Validate quantity and sacrifice count against the configured caps.

    Raises:
        InvalidQuantityError: quantity below 1 or a negative count
        ExceedsMaxUnitsError: quantity above max_units_per_tx
        ExceedsMaxSacrificeError: sacrifice above min(quantity, max_sacrifice_units)
    """
    _require_count("quantity", quantity)
    _require_count("sacrifice_units", sacrifice_units)
    if quantity < 1:
        raise InvalidQuantityError("Quantity must be at least 1")

    if economics.max_units_per_tx and quantity > economics.max_units_per_tx:
        raise ExceedsMaxUnitsError(quantity, economics.max_units_per_tx)

    sacrifice_limit = min(quantity, economics.max_sacrifice_units)
    if sacrifice_units > sacrifice_limit:
        raise ExceedsMaxSacrificeError(sacrifice_units, sacrifice_limit)


def calculate_mint_cost(
    quantity: int,
    holder_contributions: Iterable[Tuple[str, int]],
    sacrifice_units: int,
    wl_slots: int,
    tier_registry: Mapping[str, DiscountTier],
    usage_ledger: Mapping[Tuple[str, int], int],
    economics: EconomicsConfig,
) -> CostQuote:
    """Calculate the cost of minting a batch.

    Pure function: the registries are only read, never changed.

    Args:
        quantity: Units to mint (>= 1)
        holder_contributions: Ordered (collection_id, unit_id) pairs offered
            for holder discounts. Used first-come-first-served, never sorted.
        sacrifice_units: Leading units priced at the sacrifice discount
        wl_slots: Caller's whitelist slot balance
        tier_registry: collection_id -> DiscountTier
        usage_ledger: (collection_id, unit_id) -> uses already consumed
        economics: Current economics config

    Returns:
        CostQuote with per-currency totals, blended discount and slot usage

    Raises:
        InvalidQuantityError, ExceedsMaxUnitsError, ExceedsMaxSacrificeError,
        CurrencyOverflowError
    """
    check_batch_limits(quantity, sacrifice_units, economics)
    _require_count("wl_slots", wl_slots)

    base_prices = economics.base_prices
    segments: List[PricedSegment] = []
    remaining = quantity

    # 1. Sacrifice: exclusive, touches no holder or WL state
    if sacrifice_units > 0:
        segments.append(_segment(
            SegmentKind.SACRIFICE, sacrifice_units, economics.sacrifice_discount_percent, base_prices
        ))
        remaining -= sacrifice_units

    # 2. Holder slots, stacking with WL while it lasts
    wl_remaining = wl_slots
    holder_slots_consumed = 0
    wl_slots_consumed = 0
    attributed: Dict[Tuple[str, int], int] = {}

    for collection_id, unit_id in holder_contributions:
        if remaining == 0:
            break

        tier = tier_registry.get(collection_id)
        if tier is None or not tier.is_active:
            continue

        contribution = HolderContribution(collection_id, unit_id)
        available = (
            tier.max_uses_per_unit
            - usage_ledger.get(contribution, 0)
            - attributed.get(contribution, 0)
        )
        if available <= 0:
            continue

        units = min(remaining, available)

        stacked = min(units, wl_remaining)
        if stacked > 0:
            combined = min(tier.discount_percent + economics.wl_discount_percent, 100)
            segments.append(_segment(SegmentKind.HOLDER_WL, stacked, combined, base_prices, contribution))
            wl_remaining -= stacked
            wl_slots_consumed += stacked

        holder_only = units - stacked
        if holder_only > 0:
            segments.append(_segment(
                SegmentKind.HOLDER, holder_only, tier.discount_percent, base_prices, contribution
            ))

        holder_slots_consumed += units
        attributed[contribution] = attributed.get(contribution, 0) + units
        remaining -= units

    # 3. WL only
    if remaining > 0 and wl_remaining > 0:
        wl_units = min(remaining, wl_remaining)
        segments.append(_segment(
            SegmentKind.WHITELIST, wl_units, economics.wl_discount_percent, base_prices
        ))
        wl_slots_consumed += wl_units
        remaining -= wl_units

    # 4. Full price
    if remaining > 0:
        segments.append(_segment(SegmentKind.FULL_PRICE, remaining, 0, base_prices))

    # 5. Aggregate
    totals = {currency: 0 for currency in base_prices}
    for segment in segments:
        for currency, cost in segment.costs.items():
            totals[currency] += cost

    for currency, total in totals.items():
        if total > MAX_CURRENCY_AMOUNT:
            logger.critical(f"Mint cost overflow: {total} {currency} for {quantity} units")
            raise CurrencyOverflowError(
                f"Total {currency} cost {total} exceeds ledger range; check base price configuration"
            )

    weighted = sum(s.units * s.discount_percent for s in segments)

    quote = CostQuote(
        totals=totals,
        blended_discount_percent=weighted // quantity,
        holder_slots_consumed=holder_slots_consumed,
        wl_slots_consumed=wl_slots_consumed,
        quantity=quantity,
        segments=tuple(segments),
    )

    logger.debug(
        f"Quote for {quantity} units: {totals} ({quote.blended_discount_percent}% avg), "
        f"holder slots {holder_slots_consumed}, WL slots {wl_slots_consumed}"
    )
    return quote


def expand_serial_groups(
    collection_ids: Sequence[str],
    serial_groups: Sequence[Sequence[int]],
) -> List[HolderContribution]:
    """Flatten per-collection serial lists into ordered holder contributions.

    Args:
        collection_ids: Discount collections, e.g. ["0.0.1001", "0.0.1002"]
        serial_groups: One list of serials per collection, e.g. [[1, 2], [7]]

    Returns:
        [(collection, serial), ...] in the given order
    """
    if len(collection_ids) != len(serial_groups):
        raise ValueError(
            f"Number of discount collections ({len(collection_ids)}) must match "
            f"number of serial groups ({len(serial_groups)})"
        )

    return [
        HolderContribution(collection_id, int(serial))
        for collection_id, serials in zip(collection_ids, serial_groups)
        for serial in serials
    ]
